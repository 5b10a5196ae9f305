"""Loguru configuration for image checks.

Every record carries three extras used by the sinks: ``source`` (the
component that logged it), ``job_id`` (the run it belongs to) and ``tags``.
Components get a logger with these bound from LoggerFactory; a whole run is
wrapped in operation_context(), which assigns the job id and times it.

Levels:
    - ERROR: Fatal failures (attach, mount, repair) and cleanup problems
    - SUCCESS/INFO: Check results and repairs
    - DEBUG: Commands run, partitions found, PARTUUIDs read
    - TRACE: Raw command output
"""

from __future__ import annotations

import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <10}</cyan> | "
    "{message}"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <10} | {extra[job_id]: <20} | {message}"
)
DEBUG_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <10} | {extra[job_id]: <20} | {extra[tags]} | {message}"
)


def _add_file_sink(path: Path, level: str, retention: str, **options) -> None:
    logger.add(
        path,
        level=level,
        rotation=options.pop("rotation", "10 MB"),
        retention=retention,
        compression="zip",
        **options,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Replace loguru's default handler with the console sink and, when a log
    directory is given, the persistent sinks.

    Files written to log_dir:
    - operations.log: INFO and above, 7 days
    - debug.log: DEBUG (TRACE with --trace) and above, 3 days, only with
      --debug or --trace
    - structured.jsonl: INFO and above as JSON records, 7 days

    Args:
        debug: Show DEBUG records on the console
        trace: Show TRACE records on the console (implies debug)
        log_dir: Directory for log files, created if missing
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    console_level = "TRACE" if trace else "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        colorize=True,
        format=CONSOLE_FORMAT,
    )

    if log_dir is None:
        return logger
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(
        log_dir / "operations.log",
        "INFO",
        "7 days",
        rotation="5 MB",
        backtrace=False,
        diagnose=False,
        format=FILE_FORMAT,
    )
    if debug or trace:
        _add_file_sink(
            log_dir / "debug.log",
            "TRACE" if trace else "DEBUG",
            "3 days",
            backtrace=True,
            diagnose=True,
            format=DEBUG_FILE_FORMAT,
        )
    _add_file_sink(
        log_dir / "structured.jsonl",
        "INFO",
        "7 days",
        serialize=True,
        format="{message}",
    )
    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Return a logger with the given extras bound. Unset extras fall back to
    the defaults configured by setup_logging().
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Log the start, completion or failure of an operation with its duration.

    Every record emitted inside the block, by any logger, carries the
    operation's job id and details.

    Example:
        with operation_context("quickcheck", image="raspios.img") as log:
            log.info("Checking references")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    title = operation.capitalize()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = get_logger(job_id=job_id, tags=[operation], source=operation)
        started = time.monotonic()
        log.info(f"{title} started", **details)
        try:
            yield log
        except BaseException as error:
            log.error(
                f"{title} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(
            f"{title} completed",
            duration_seconds=round(time.monotonic() - started, 2),
        )


class LoggerFactory:
    """Loggers with source and tags bound per component."""

    @staticmethod
    def for_image() -> Logger:
        """Loop device attach, enumeration and detach."""
        return get_logger(source="loop", tags=["loop", "storage"])

    @staticmethod
    def for_mount() -> Logger:
        """Scratch mounts and cleanup."""
        return get_logger(source="mount", tags=["mount", "storage"])

    @staticmethod
    def for_bootconfig() -> Logger:
        """PARTUUID extraction, checks and repairs."""
        return get_logger(source="bootcfg", tags=["bootcfg"])

    @staticmethod
    def for_command() -> Logger:
        """Raw stdout and stderr of external commands."""
        return get_logger(source="command", tags=["command-output"])

    @staticmethod
    def for_system() -> Logger:
        """Startup, privileges and configuration."""
        return get_logger(source="system", tags=["system"])
