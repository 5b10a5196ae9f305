"""Guaranteed release of loop devices, mounts and scratch directories.

Every resource a run acquires is registered here right after it is acquired,
together with the action that releases it. Releases run in reverse order of
acquisition, exactly once, when the coordinator closes: on normal completion,
on any exception, and on KeyboardInterrupt or a SIGTERM converted by the CLI.
SIGTERM is held back while the releases run and delivered afterwards.

Release is best-effort: a failing unmount, rmdir or detach is logged and the
remaining releases still run. Nothing raised during cleanup hides the error
that ended the run.

Usage:
    context = RunContext(image=image)
    with CleanupCoordinator(context) as cleanup:
        handle = attacher.attach(image, cleanup)
        ...
"""

from __future__ import annotations

import os
import signal
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from rpi_image_quickcheck.domain import DeviceHandle, DiskImage
from rpi_image_quickcheck.logging import LoggerFactory


log = LoggerFactory.for_mount()


@contextmanager
def _termination_deferred():
    """Hold back SIGTERM until the block exits; a pending one is then delivered."""
    blocked = signal.pthread_sigmask(signal.SIG_BLOCK, {signal.SIGTERM})
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, blocked)


@dataclass
class RunContext:
    """Resources currently held by a run."""

    image: DiskImage
    device: DeviceHandle | None = None
    scratch_dirs: list[Path] = field(default_factory=list)
    mountpoints: list[Path] = field(default_factory=list)

    @property
    def holds_resources(self) -> bool:
        return bool(self.device or self.scratch_dirs or self.mountpoints)


class CleanupCoordinator:
    """Scoped release of everything registered during a run."""

    def __init__(self, context: RunContext):
        self.context = context
        self._stack = ExitStack()
        self._closed = False

    def __enter__(self) -> CleanupCoordinator:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def register_device(
        self, handle: DeviceHandle, detach: Callable[[DeviceHandle], None]
    ) -> None:
        self._ensure_open()
        self.context.device = handle
        self._stack.callback(self._release_device, handle, detach)

    def register_scratch_dir(self, path: Path) -> None:
        self._ensure_open()
        self.context.scratch_dirs.append(path)
        self._stack.callback(self._release_scratch_dir, path)

    def register_mount(self, path: Path, unmount: Callable[[Path], None]) -> None:
        self._ensure_open()
        self.context.mountpoints.append(path)
        self._stack.callback(self._release_mount, path, unmount)

    def close(self) -> None:
        """Release everything registered so far. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if self.context.holds_resources:
            log.debug("Releasing run resources")
        # A SIGTERM must not interrupt an unmount or detach half way
        with _termination_deferred():
            self._stack.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Cleanup already ran for this run")

    def _release_mount(self, path: Path, unmount: Callable[[Path], None]) -> None:
        try:
            unmount(path)
        except Exception as error:
            log.error(f"Cleanup: failed to unmount {path}: {error}")
        finally:
            if path in self.context.mountpoints:
                self.context.mountpoints.remove(path)

    def _release_scratch_dir(self, path: Path) -> None:
        try:
            os.rmdir(path)
            log.debug(f"Removed scratch directory {path}")
        except FileNotFoundError:
            pass
        except OSError as error:
            log.error(f"Cleanup: failed to remove {path}: {error}")
        finally:
            if path in self.context.scratch_dirs:
                self.context.scratch_dirs.remove(path)

    def _release_device(
        self, handle: DeviceHandle, detach: Callable[[DeviceHandle], None]
    ) -> None:
        try:
            detach(handle)
        except Exception as error:
            log.error(f"Cleanup: failed to detach {handle.device_node}: {error}")
        finally:
            if self.context.device == handle:
                self.context.device = None
