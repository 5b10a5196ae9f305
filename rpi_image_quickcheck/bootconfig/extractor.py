"""Read actual and referenced PARTUUIDs.

The actual PARTUUID of a partition comes from block device metadata. The
referenced PARTUUIDs come from fixed lines of the boot configuration files:

    cmdline.txt  line 1  ->  partition 2 (root=PARTUUID=...)
    etc/fstab    line 2  ->  partition 1 (/boot)
    etc/fstab    line 3  ->  partition 2 (/)

Only the requested line is inspected. References elsewhere in the files are
ignored.

Files are handled as bytes split on b"\\n". A repair writes back every other
byte unchanged, CRLF endings and non-UTF-8 content included.
"""

from __future__ import annotations

import re
from pathlib import Path

from rpi_image_quickcheck.domain import BootConfigReference, BootFiles
from rpi_image_quickcheck.logging import LoggerFactory
from rpi_image_quickcheck.storage import devices
from rpi_image_quickcheck.storage.exceptions import ReferenceReadError


log = LoggerFactory.for_bootconfig()

PARTUUID_TOKEN = re.compile(rb"PARTUUID=(\S*)")

# (file attribute of BootFiles, owning partition, line number, target partition)
REFERENCE_LAYOUT = (
    ("cmdline", 1, 1, 2),
    ("fstab", 2, 2, 1),
    ("fstab", 2, 3, 2),
)


def split_lines(data: bytes) -> list[bytes]:
    """Split file content on newlines; b"\\n".join() restores it exactly."""
    return data.split(b"\n")


def find_token(line: bytes) -> re.Match | None:
    """Return the PARTUUID token match on a line (the last one if several)."""
    matches = list(PARTUUID_TOKEN.finditer(line))
    return matches[-1] if matches else None


def decode_value(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


def encode_value(value: str) -> bytes:
    return value.encode("utf-8", errors="surrogateescape")


def read_boot_file(path: Path) -> bytes:
    """Read a boot configuration file, raising ReferenceReadError on failure."""
    try:
        return Path(path).read_bytes()
    except OSError as error:
        raise ReferenceReadError(str(path), error.strerror or str(error)) from error


def actual_uuid(device_node: str) -> str | None:
    """Return the partition's PARTUUID from block device metadata."""
    partuuid = devices.get_partuuid(device_node)
    log.debug(f"PARTUUID of {device_node} is {partuuid}")
    return partuuid


def referenced_uuid(path: Path, line_number: int) -> str | None:
    """Return the PARTUUID referenced on one line of a file.

    Args:
        path: File to read
        line_number: 1-based line to inspect

    Returns:
        The referenced value, or None if the line is missing or has no
        PARTUUID token

    Raises:
        ReferenceReadError: If the file cannot be read
    """
    if line_number < 1:
        raise ValueError(f"Line numbers start at 1, got {line_number}")
    lines = split_lines(read_boot_file(path))
    if line_number > len(lines):
        return None
    match = find_token(lines[line_number - 1])
    if match is None:
        return None
    return decode_value(match.group(1))


def read_references(boot_files: BootFiles) -> list[BootConfigReference]:
    """Read the three PARTUUID references in checking order."""
    references = []
    for attribute, partition, line_number, target in REFERENCE_LAYOUT:
        path = getattr(boot_files, attribute)
        value = referenced_uuid(path, line_number)
        reference = BootConfigReference(
            partition=partition,
            path=path,
            line_number=line_number,
            target=target,
            value=value,
        )
        log.debug(
            f"PARTUUID of partition {target} according to {reference.label}: {value}"
        )
        references.append(reference)
    return references
