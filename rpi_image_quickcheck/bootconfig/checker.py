"""Compare referenced PARTUUIDs against the partitions' actual ones."""

from __future__ import annotations

from typing import Sequence

from rpi_image_quickcheck.domain import (
    BootConfigReference,
    Classification,
    Mismatch,
    Partition,
    Status,
)
from rpi_image_quickcheck.logging import LoggerFactory
from rpi_image_quickcheck.storage.exceptions import MissingPartuuidError


log = LoggerFactory.for_bootconfig()


def check(
    actual1: str | None,
    actual2: str | None,
    cmdline_p2: BootConfigReference,
    fstab_p1: BootConfigReference,
    fstab_p2: BootConfigReference,
) -> Classification:
    """Classify an image from its actual and referenced PARTUUIDs.

    The image is OK only if cmdline.txt line 1 references partition 2, fstab
    line 2 references partition 1 and fstab line 3 references partition 2.
    Otherwise it NEEDS_FIX, with one Mismatch per failing comparison in that
    same order. An absent reference never matches.

    Raises:
        MissingPartuuidError: If a partition has no PARTUUID at all
    """
    if not actual1:
        raise MissingPartuuidError(1)
    if not actual2:
        raise MissingPartuuidError(2)

    comparisons = (
        (cmdline_p2, actual2),
        (fstab_p1, actual1),
        (fstab_p2, actual2),
    )
    mismatches = [
        Mismatch(reference=reference, expected=actual, found=reference.value)
        for reference, actual in comparisons
        if reference.value != actual
    ]

    if not mismatches:
        log.info("Image checks OK, no fixup required")
        return Classification(status=Status.OK)

    log.info("Image needs correction to boot successfully")
    for mismatch in mismatches:
        log.info(mismatch.describe())
    return Classification(status=Status.NEEDS_FIX, mismatches=tuple(mismatches))


def check_references(
    partitions: Sequence[Partition], references: Sequence[BootConfigReference]
) -> Classification:
    """Run check() on the partition list and the references in reading order."""
    actual = {partition.index: partition.partuuid for partition in partitions}
    cmdline_p2, fstab_p1, fstab_p2 = references
    return check(actual.get(1), actual.get(2), cmdline_p2, fstab_p1, fstab_p2)
