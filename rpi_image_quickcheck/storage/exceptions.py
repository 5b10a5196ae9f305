"""Custom exceptions for image check operations.

This module defines a hierarchy of exceptions for loop devices, mounts and boot
configuration repair, so callers can tell fatal failures apart from images that
are simply not supported.

Exception Hierarchy:
    StorageError (base)
        ├── InvalidImageError
        ├── PrivilegeError
        ├── DeviceError
        │   ├── AttachError
        │   ├── DetachError
        │   └── DeviceQueryError
        ├── MountError
        │   ├── MountFailedError
        │   └── UnmountFailedError
        ├── UnsupportedImageError
        │   ├── UnsupportedTopologyError
        │   ├── UnsupportedContentError
        │   └── MissingPartuuidError
        ├── ReferenceReadError
        ├── FixError
        │   ├── ReferenceNotFoundError
        │   ├── StaleReferenceError
        │   └── FixWriteError
        └── RunInterruptedError

UnsupportedImageError is not a failure of the run: the orchestrator turns it
into the UNSUPPORTED classification. Every other StorageError is fatal.

Usage:
    from rpi_image_quickcheck.storage.exceptions import UnsupportedTopologyError

    if len(partitions) != 2:
        raise UnsupportedTopologyError(device_node, len(partitions))
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all image check operations."""


class InvalidImageError(StorageError):
    """Image path does not reference a regular, readable file."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid image {path}: {reason}")


class PrivilegeError(StorageError):
    """The process lacks the privileges needed for loop devices and mounts."""

    def __init__(self, message: str = "Must be run as root"):
        super().__init__(message)


class DeviceError(StorageError):
    """Base exception for loop device errors."""


class AttachError(DeviceError):
    """Failed to attach an image to a loop device."""

    def __init__(self, image_path: str, reason: str = ""):
        self.image_path = image_path
        self.reason = reason
        msg = f"Failed to attach {image_path} to a loop device"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DetachError(DeviceError):
    """Failed to detach a loop device."""

    def __init__(self, device_node: str, reason: str = ""):
        self.device_node = device_node
        self.reason = reason
        msg = f"Failed to detach {device_node}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DeviceQueryError(DeviceError):
    """Block device metadata could not be read (lsblk, udevadm)."""

    def __init__(self, device_node: str, reason: str):
        self.device_node = device_node
        self.reason = reason
        super().__init__(f"Failed to query {device_node}: {reason}")


class MountError(StorageError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """Failed to mount a partition."""

    def __init__(self, device_node: str, mountpoint: str, reason: str = ""):
        self.device_node = device_node
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to mount {device_node} at {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnmountFailedError(MountError):
    """Failed to unmount a scratch mount point."""

    def __init__(self, mountpoint: str, reason: str = ""):
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to unmount {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnsupportedImageError(StorageError):
    """Image layout is not one this tool can check."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class UnsupportedTopologyError(UnsupportedImageError):
    """Attached device does not have exactly two partitions."""

    def __init__(self, device_node: str, partition_count: int):
        self.device_node = device_node
        self.partition_count = partition_count
        super().__init__(
            f"Only 2 partitions are supported, {device_node} has "
            f"{partition_count} partitions"
        )


class UnsupportedContentError(UnsupportedImageError):
    """A required boot configuration file is missing."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            "Required boot configuration files are not present: "
            + ", ".join(missing)
        )


class MissingPartuuidError(UnsupportedImageError):
    """A partition has no PARTUUID that the boot files could reference."""

    def __init__(self, partition_index: int):
        self.partition_index = partition_index
        super().__init__(f"Partition {partition_index} has no PARTUUID")


class ReferenceReadError(StorageError):
    """A boot configuration file could not be read."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to read {path}: {reason}")


class FixError(StorageError):
    """Base exception for boot configuration repair."""


class ReferenceNotFoundError(FixError):
    """The line to repair has no PARTUUID token."""

    def __init__(self, path: str, line_number: int):
        self.path = path
        self.line_number = line_number
        super().__init__(f"No PARTUUID token on line {line_number} of {path}")


class StaleReferenceError(FixError):
    """The token on disk no longer carries the value that was checked."""

    def __init__(self, path: str, line_number: int, expected: str, actual: str):
        self.path = path
        self.line_number = line_number
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"PARTUUID on line {line_number} of {path} changed since check: "
            f"expected {expected}, found {actual}"
        )


class FixWriteError(FixError):
    """A repaired boot configuration file could not be written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write {path}: {reason}")


class RunInterruptedError(StorageError):
    """The run was interrupted by a termination signal."""

    def __init__(self, signal_name: str):
        self.signal_name = signal_name
        super().__init__(f"Interrupted by {signal_name}")
