"""Input validation run before any resource is acquired.

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values, making error handling more explicit.

Example:
    from rpi_image_quickcheck.storage.validation import validate_image_path

    try:
        image = validate_image_path(args.image)
    except InvalidImageError:
        # Report and exit before attaching anything
        ...
"""

from __future__ import annotations

import os
from pathlib import Path

from rpi_image_quickcheck.domain import DiskImage

from .exceptions import InvalidImageError, PrivilegeError


def validate_image_path(path: str | Path) -> DiskImage:
    """Validate that an image path references a regular, readable file.

    Args:
        path: Path to the image file

    Returns:
        DiskImage for the resolved path

    Raises:
        InvalidImageError: If the path is empty, missing, not a regular file,
            or not readable
    """
    if path is None or not str(path).strip():
        raise InvalidImageError("(empty path)", "no image file given")

    image_path = Path(path)
    if not image_path.exists():
        raise InvalidImageError(str(path), "file does not exist")
    if not image_path.is_file():
        raise InvalidImageError(str(path), "not a regular file")
    if not os.access(image_path, os.R_OK):
        raise InvalidImageError(str(path), "file is not readable")

    return DiskImage(path=image_path.resolve())


def ensure_root() -> None:
    """Validate that the process runs with root privileges.

    Raises:
        PrivilegeError: If the effective user is not root
    """
    if os.geteuid() != 0:
        raise PrivilegeError()
