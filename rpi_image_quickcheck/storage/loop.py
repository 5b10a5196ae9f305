"""Attach disk images to loop devices and enumerate their partitions.

The image is attached with partition scanning (losetup -P) on the first free
loop device. Partition nodes only appear once udev has processed the new
device, so attach() settles udev before returning. The detach action is
registered with the run's CleanupCoordinator as soon as the device exists.
"""

from __future__ import annotations

import subprocess

from rpi_image_quickcheck.config import settings
from rpi_image_quickcheck.domain import (
    SUPPORTED_PARTITION_COUNT,
    DeviceHandle,
    DiskImage,
    Partition,
)
from rpi_image_quickcheck.logging import LoggerFactory

from . import devices
from .cleanup import CleanupCoordinator
from .exceptions import AttachError, DetachError, UnsupportedTopologyError
from .validation import validate_image_path


log = LoggerFactory.for_image()


class ImageAttacher:
    """Loop device lifecycle for one image."""

    def __init__(self, settle_timeout: float | None = None):
        if settle_timeout is None:
            settle_timeout = settings.get_float(
                "settle_timeout_seconds", settings.DEFAULT_SETTLE_TIMEOUT_SECONDS
            )
        self.settle_timeout = settle_timeout

    def attach(self, image: DiskImage, cleanup: CleanupCoordinator) -> DeviceHandle:
        """Attach an image and register its release.

        Raises:
            InvalidImageError: If the image is not a regular, readable file
            AttachError: If losetup fails
            DeviceQueryError: If udev does not settle
        """
        validate_image_path(image.path)
        try:
            result = devices.run_command(
                ["losetup", "-P", "-f", "--show", str(image.path)]
            )
        except (subprocess.CalledProcessError, OSError) as error:
            stderr = getattr(error, "stderr", None)
            raise AttachError(
                str(image.path), stderr.strip() if stderr else str(error)
            ) from error

        device_node = result.stdout.strip()
        if not device_node:
            raise AttachError(str(image.path), "losetup did not report a device")

        handle = DeviceHandle(device_node=device_node)
        cleanup.register_device(handle, self.detach)
        log.info(f"Attached {image.name} to {device_node}")

        devices.settle_devices(self.settle_timeout)
        return handle

    def enumerate_partitions(self, handle: DeviceHandle) -> list[Partition]:
        """Return the image's partitions, which must number exactly two.

        Raises:
            UnsupportedTopologyError: If the partition count is not two
            DeviceQueryError: If lsblk fails
        """
        partitions = devices.list_partitions(handle.device_node)
        if len(partitions) != SUPPORTED_PARTITION_COUNT:
            raise UnsupportedTopologyError(handle.device_node, len(partitions))
        return partitions

    def detach(self, handle: DeviceHandle) -> None:
        """Detach a loop device.

        Raises:
            DetachError: If losetup -d fails
        """
        try:
            devices.run_command(["losetup", "-d", handle.device_node])
        except (subprocess.CalledProcessError, OSError) as error:
            stderr = getattr(error, "stderr", None)
            raise DetachError(
                handle.device_node, stderr.strip() if stderr else str(error)
            ) from error
        log.debug(f"Detached {handle.device_node}")
