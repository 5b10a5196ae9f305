"""In-place repair of mismatched PARTUUID references.

Only the value of the PARTUUID token on the referenced line changes. Every
other byte of the file, the rest of that line and its line ending included,
is written back untouched. Each file is read and written once, and nothing
is written unless every mismatch could be patched.

A token that already holds the expected value is left alone, so applying
the same mismatches twice leaves the file byte-identical to the first pass.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from rpi_image_quickcheck.domain import Mismatch
from rpi_image_quickcheck.logging import LoggerFactory
from rpi_image_quickcheck.storage.exceptions import (
    FixWriteError,
    ReferenceNotFoundError,
    StaleReferenceError,
)

from .extractor import (
    decode_value,
    encode_value,
    find_token,
    read_boot_file,
    split_lines,
)


log = LoggerFactory.for_bootconfig()


def _replace_token(line: bytes, mismatch: Mismatch) -> bytes:
    reference = mismatch.reference
    match = find_token(line)
    if match is None:
        raise ReferenceNotFoundError(str(reference.path), reference.line_number)

    current = decode_value(match.group(1))
    if current == mismatch.expected:
        return line
    if current != mismatch.found:
        raise StaleReferenceError(
            str(reference.path), reference.line_number, mismatch.found or "", current
        )

    start, end = match.span(1)
    return line[:start] + encode_value(mismatch.expected) + line[end:]


def _patch(path: Path, original: bytes, mismatches: list[Mismatch]) -> bytes:
    lines = split_lines(original)
    for mismatch in mismatches:
        index = mismatch.reference.line_number - 1
        if index >= len(lines):
            raise ReferenceNotFoundError(str(path), mismatch.reference.line_number)
        lines[index] = _replace_token(lines[index], mismatch)
    return b"\n".join(lines)


def apply(mismatches: Iterable[Mismatch]) -> list[Path]:
    """Rewrite the PARTUUID token of every mismatched reference.

    Args:
        mismatches: Mismatches from check(); only call when repair is authorized

    Returns:
        Files whose content changed

    Raises:
        ReferenceNotFoundError: If a referenced line has no PARTUUID token
        StaleReferenceError: If a token changed since it was checked
        ReferenceReadError: If a file cannot be read
        FixWriteError: If a file cannot be written
    """
    by_path: dict[Path, list[Mismatch]] = {}
    for mismatch in mismatches:
        by_path.setdefault(mismatch.reference.path, []).append(mismatch)

    # No file is written until every file has been patched in memory
    pending: list[tuple[Path, bytes, list[Mismatch]]] = []
    for path, file_mismatches in by_path.items():
        original = read_boot_file(path)
        updated = _patch(path, original, file_mismatches)
        if updated == original:
            log.debug(f"{path} already up to date")
            continue
        pending.append((path, updated, file_mismatches))

    changed = []
    for path, updated, file_mismatches in pending:
        try:
            path.write_bytes(updated)
        except OSError as error:
            raise FixWriteError(str(path), error.strerror or str(error)) from error
        changed.append(path)
        for mismatch in file_mismatches:
            log.info(
                f"Fixed {mismatch.reference.label}: "
                f"PARTUUID={mismatch.found} -> PARTUUID={mismatch.expected}"
            )
    return changed
