"""Scratch mounts for the partitions of an attached image.

Each partition is mounted on its own directory created with tempfile.mkdtemp
under the configured mount root, so concurrent or leftover runs never collide
on a mount point. The directory removal and the unmount are registered with
the run's CleanupCoordinator as soon as each one exists.

Functions:
    - PartitionMounter.mount(): Mount one partition on a fresh scratch dir
    - PartitionMounter.unmount(): Unmount a scratch dir
    - PartitionMounter.mount_boot_partitions(): Mount both partitions and
      locate cmdline.txt and etc/fstab
"""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path
from typing import Sequence

from rpi_image_quickcheck.config import settings
from rpi_image_quickcheck.domain import (
    BOOT_PARAMETER_FILE,
    MOUNT_TABLE_FILE,
    BootFiles,
    Partition,
)
from rpi_image_quickcheck.logging import LoggerFactory

from . import devices
from .cleanup import CleanupCoordinator
from .exceptions import MountFailedError, UnmountFailedError, UnsupportedContentError


log = LoggerFactory.for_mount()


def _validate_device_node(device_node: str) -> None:
    if not isinstance(device_node, str) or not device_node.startswith("/dev/"):
        raise ValueError(f"Invalid partition path: {device_node}")
    if any(char in device_node for char in [";", "&", "|", "$", "`", "\n", "\r", " "]):
        raise ValueError(f"Partition path contains invalid characters: {device_node}")


class PartitionMounter:
    """Mounts partitions for the duration of a run."""

    def __init__(
        self,
        cleanup: CleanupCoordinator,
        mount_root: Path | None = None,
        scratch_prefix: str | None = None,
    ):
        self.cleanup = cleanup
        self.mount_root = mount_root or settings.get_path(
            "mount_root", settings.DEFAULT_MOUNT_ROOT
        )
        self.scratch_prefix = scratch_prefix or settings.get_setting(
            "scratch_prefix", settings.DEFAULT_SCRATCH_PREFIX
        )

    def mount(self, partition: Partition) -> Path:
        """Mount a partition on a new scratch directory.

        Returns:
            Path of the mounted filesystem

        Raises:
            ValueError: If the device node is malformed
            MountFailedError: If the scratch directory cannot be created or the
                mount command fails
        """
        _validate_device_node(partition.device_node)

        try:
            scratch = Path(
                tempfile.mkdtemp(
                    prefix=f"{self.scratch_prefix}{partition.index}-",
                    dir=str(self.mount_root) if self.mount_root else None,
                )
            )
        except OSError as error:
            raise MountFailedError(
                partition.device_node,
                str(self.mount_root),
                f"cannot create scratch directory: {error.strerror or error}",
            ) from error
        self.cleanup.register_scratch_dir(scratch)

        try:
            devices.run_command(["mount", partition.device_node, str(scratch)])
        except (subprocess.CalledProcessError, OSError) as error:
            stderr = getattr(error, "stderr", None)
            raise MountFailedError(
                partition.device_node,
                str(scratch),
                stderr.strip() if stderr else str(error),
            ) from error

        self.cleanup.register_mount(scratch, self.unmount)
        log.debug(f"Mounted {partition.device_node} at {scratch}")
        return scratch

    def unmount(self, mountpoint: Path) -> None:
        """Unmount a scratch directory.

        Raises:
            UnmountFailedError: If the umount command fails
        """
        try:
            devices.run_command(["umount", str(mountpoint)])
        except (subprocess.CalledProcessError, OSError) as error:
            stderr = getattr(error, "stderr", None)
            raise UnmountFailedError(
                str(mountpoint), stderr.strip() if stderr else str(error)
            ) from error
        log.debug(f"Unmounted {mountpoint}")

    def mount_boot_partitions(
        self, partitions: Sequence[Partition]
    ) -> tuple[list[Partition], BootFiles]:
        """Mount both partitions and locate the boot configuration files.

        Returns:
            The partitions with their mountpoints set, and the file locations

        Raises:
            MountFailedError: If either mount fails
            UnsupportedContentError: If cmdline.txt is missing from partition 1
                or etc/fstab is missing from partition 2
        """
        mounted = [
            partition.with_mountpoint(self.mount(partition)) for partition in partitions
        ]
        boot, root = mounted[0], mounted[1]

        cmdline = boot.mountpoint / BOOT_PARAMETER_FILE
        fstab = root.mountpoint / MOUNT_TABLE_FILE

        missing = []
        if not cmdline.is_file():
            missing.append(f"partition {boot.index}: {BOOT_PARAMETER_FILE}")
        if not fstab.is_file():
            missing.append(f"partition {root.index}: /{MOUNT_TABLE_FILE}")
        if missing:
            raise UnsupportedContentError(missing)

        return mounted, BootFiles(cmdline=cmdline, fstab=fstab)
