"""Domain models for PARTUUID checks on disk images.

This package contains type-safe domain objects shared by the storage and
boot configuration layers.
"""

from __future__ import annotations

from .models import (
    BOOT_PARAMETER_FILE,
    MOUNT_TABLE_FILE,
    SUPPORTED_PARTITION_COUNT,
    BootConfigReference,
    BootFiles,
    Classification,
    DeviceHandle,
    DiskImage,
    Mismatch,
    Partition,
    ResultCode,
    RunReport,
    Status,
    get_partition_number,
)


__all__ = [
    "BOOT_PARAMETER_FILE",
    "MOUNT_TABLE_FILE",
    "SUPPORTED_PARTITION_COUNT",
    "BootConfigReference",
    "BootFiles",
    "Classification",
    "DeviceHandle",
    "DiskImage",
    "Mismatch",
    "Partition",
    "ResultCode",
    "RunReport",
    "Status",
    "get_partition_number",
]
