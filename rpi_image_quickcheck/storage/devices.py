"""Block device queries using lsblk and udevadm.

This module wraps the external commands used to inspect an attached image:

    - run_command(): Run a command with an argument list and log it
    - settle_devices(): Wait for udev to finish creating partition nodes
    - list_partitions(): Enumerate partitions of a loop device (lsblk -J)
    - get_partuuid(): Read the PARTUUID of a partition node (lsblk -n)

Commands are never run through a shell. Failures of the query helpers are
raised as DeviceQueryError so callers see one exception type per concern.

Example:
    >>> from rpi_image_quickcheck.storage.devices import list_partitions
    >>> [p.device_node for p in list_partitions("/dev/loop0")]
    ['/dev/loop0p1', '/dev/loop0p2']
"""
from __future__ import annotations

import json
import subprocess
from typing import Sequence

from rpi_image_quickcheck.domain import Partition
from rpi_image_quickcheck.logging import LoggerFactory

from .exceptions import DeviceQueryError


log = LoggerFactory.for_image()
command_log = LoggerFactory.for_command()


def run_command(
    command: Sequence[str],
    check: bool = True,
    timeout: float | None = None,
) -> subprocess.CompletedProcess:
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            list(command),
            check=check,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            command_log.trace(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            command_log.trace(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout:
        command_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr:
        command_log.trace(f"stderr: {result.stderr.strip()}")
    log.debug(f"Command completed with return code {result.returncode}")
    return result


def _error_text(error: Exception) -> str:
    stderr = getattr(error, "stderr", None)
    if stderr:
        return stderr.strip()
    return str(error)


def settle_devices(timeout_seconds: float | None = None) -> None:
    """Wait until udev has processed all pending block device events."""
    command = ["udevadm", "settle"]
    if timeout_seconds:
        command.append(f"--timeout={int(timeout_seconds)}")
    try:
        run_command(command)
    except (subprocess.CalledProcessError, OSError) as error:
        raise DeviceQueryError("udev", _error_text(error)) from error


def list_partitions(device_node: str) -> list[Partition]:
    """Return the partitions of a block device ordered by partition number.

    Args:
        device_node: Whole-disk device (e.g., '/dev/loop0')

    Raises:
        DeviceQueryError: If lsblk fails or returns unusable output
    """
    try:
        result = run_command(["lsblk", "-J", "-o", "NAME,TYPE", device_node])
        data = json.loads(result.stdout)
    except (subprocess.CalledProcessError, OSError, json.JSONDecodeError) as error:
        raise DeviceQueryError(device_node, _error_text(error)) from error

    devices = data.get("blockdevices", []) or []
    if not devices:
        raise DeviceQueryError(device_node, "lsblk returned no device")

    children = devices[0].get("children", []) or []
    try:
        partitions = [
            Partition.from_lsblk_dict(child)
            for child in children
            if child.get("type", "part") == "part"
        ]
    except (KeyError, ValueError) as error:
        raise DeviceQueryError(device_node, str(error)) from error

    partitions.sort(key=lambda partition: partition.index)
    log.debug(
        f"{device_node} has {len(partitions)} partitions: "
        f"{', '.join(p.name for p in partitions) or 'none'}"
    )
    return partitions


def get_partuuid(device_node: str) -> str | None:
    """Return the lower-cased PARTUUID of a partition, or None if unset.

    Raises:
        DeviceQueryError: If lsblk fails
    """
    try:
        result = run_command(["lsblk", "-n", "-o", "PARTUUID", device_node])
    except (subprocess.CalledProcessError, OSError) as error:
        raise DeviceQueryError(device_node, _error_text(error)) from error
    lines = result.stdout.strip().splitlines()
    if not lines or not lines[0].strip():
        return None
    return lines[0].strip().lower()
