"""Domain model for PARTUUID checks on two-partition disk images.

Type-safe objects for the image, its loop device, its partitions and the
PARTUUID references found in the boot configuration files.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any


# Boot configuration layout of a Raspberry Pi style image
BOOT_PARAMETER_FILE = "cmdline.txt"
MOUNT_TABLE_FILE = "etc/fstab"
SUPPORTED_PARTITION_COUNT = 2


# ==============================================================================
# Image and Device Domain
# ==============================================================================


@dataclass(frozen=True)
class DiskImage:
    """An image file to be attached to a loop device."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class DeviceHandle:
    """A loop device the image is attached to."""

    device_node: str  # e.g., "/dev/loop0"

    @property
    def name(self) -> str:
        """Device name without /dev/ (e.g., loop0)."""
        return Path(self.device_node).name


@dataclass(frozen=True)
class Partition:
    """A partition of the attached image."""

    index: int  # 1-based partition number
    device_node: str  # e.g., "/dev/loop0p1"
    mountpoint: Path | None = None  # Only valid while mounted
    partuuid: str | None = None  # Actual PARTUUID from block device metadata

    @property
    def name(self) -> str:
        return Path(self.device_node).name

    def with_mountpoint(self, mountpoint: Path | None) -> Partition:
        return replace(self, mountpoint=mountpoint)

    def with_partuuid(self, partuuid: str | None) -> Partition:
        return replace(self, partuuid=partuuid)

    @classmethod
    def from_lsblk_dict(cls, device: dict[str, Any]) -> Partition:
        """Convert an lsblk child entry to a Partition.

        Args:
            device: Child dict from `lsblk -J` with at least a name key

        Raises:
            KeyError: If the name key is missing
            ValueError: If the name carries no partition number
        """
        name = device["name"]
        index = get_partition_number(name)
        if index is None:
            raise ValueError(f"Cannot determine partition number for {name}")
        partuuid = device.get("partuuid")
        return cls(
            index=index,
            device_node=f"/dev/{name}",
            partuuid=partuuid.strip().lower() if partuuid else None,
        )


def get_partition_number(name: str) -> int | None:
    """Extract partition number from device name (loop0p2 -> 2)."""
    if not name:
        return None
    match = re.search(r"(?:p)?(\d+)$", name)
    if not match:
        return None
    return int(match.group(1))


# ==============================================================================
# Boot Configuration Domain
# ==============================================================================


@dataclass(frozen=True)
class BootFiles:
    """Boot configuration files of a mounted image."""

    cmdline: Path  # Partition 1: kernel parameters
    fstab: Path  # Partition 2: mount table


@dataclass(frozen=True)
class BootConfigReference:
    """A PARTUUID reference on a fixed line of a boot configuration file."""

    partition: int  # Partition holding the file
    path: Path
    line_number: int  # 1-based
    target: int  # Partition the reference points at
    value: str | None  # None when the line has no PARTUUID token

    @property
    def label(self) -> str:
        return f"{self.path.name} line {self.line_number}"


@dataclass(frozen=True)
class Mismatch:
    """A reference that does not match its partition's actual PARTUUID."""

    reference: BootConfigReference
    expected: str
    found: str | None

    def describe(self) -> str:
        found = self.found if self.found is not None else "(absent)"
        return (
            f"PARTUUID of partition {self.reference.target} is {self.expected} "
            f"but according to {self.reference.label} the value is {found}"
        )


# ==============================================================================
# Classification Domain
# ==============================================================================


class Status(Enum):
    """Outcome of checking an image."""

    OK = "ok"
    NEEDS_FIX = "needs_fix"  # Intermediate, becomes FIXED or BLOCKED
    FIXED = "fixed"
    BLOCKED = "blocked"
    UNSUPPORTED = "unsupported"


class ResultCode(IntEnum):
    """Process exit codes."""

    OK = 0
    FIXED = 1
    BLOCKED = 2
    INVALID_INPUT = 3
    FAILED = 4
    NOT_ROOT = 5
    UNSUPPORTED = 9
    INTERRUPTED = 130


_STATUS_RESULT_CODES = {
    Status.OK: ResultCode.OK,
    Status.FIXED: ResultCode.FIXED,
    Status.BLOCKED: ResultCode.BLOCKED,
    Status.UNSUPPORTED: ResultCode.UNSUPPORTED,
}


@dataclass(frozen=True)
class Classification:
    """Classification of an image plus the mismatches behind it."""

    status: Status
    mismatches: tuple[Mismatch, ...] = ()
    reason: str | None = None  # Why the image is unsupported

    @property
    def is_terminal(self) -> bool:
        return self.status in _STATUS_RESULT_CODES

    @property
    def result_code(self) -> ResultCode:
        """Exit code for a terminal classification.

        Raises:
            ValueError: If the classification is still NEEDS_FIX
        """
        try:
            return _STATUS_RESULT_CODES[self.status]
        except KeyError:
            raise ValueError(
                f"{self.status.name} is not a terminal classification"
            ) from None

    def resolve(self, status: Status) -> Classification:
        return replace(self, status=status)

    @classmethod
    def unsupported(cls, reason: str) -> Classification:
        return cls(status=Status.UNSUPPORTED, reason=reason)


# ==============================================================================
# Run Domain
# ==============================================================================


@dataclass
class RunReport:
    """Everything learned about an image during one run."""

    image: DiskImage
    device: DeviceHandle | None = None
    partitions: list[Partition] = field(default_factory=list)
    references: list[BootConfigReference] = field(default_factory=list)
    classification: Classification | None = None

    @property
    def result_code(self) -> ResultCode:
        if self.classification is None:
            raise ValueError("Run has not been classified")
        return self.classification.result_code
