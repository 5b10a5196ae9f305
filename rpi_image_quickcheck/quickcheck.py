"""One PARTUUID check run over a disk image.

A run walks the image through attach, settle, enumerate, mount, verify,
extract, check and (when authorized) fix. Every resource is registered with a
CleanupCoordinator as it is acquired, so the loop device is detached and the
scratch mounts are gone when run_quickcheck() returns or raises.

Outcomes:
    - OK: all three references match (result code 0)
    - FIXED: mismatches were repaired and re-checked (result code 1)
    - BLOCKED: mismatches found but repair was not authorized (result code 2)
    - UNSUPPORTED: wrong partition count or missing boot files (result code 9)

Any other StorageError is fatal and propagates after cleanup.
"""

from __future__ import annotations

from pathlib import Path

from rpi_image_quickcheck.bootconfig import (
    actual_uuid,
    apply,
    check_references,
    read_references,
)
from rpi_image_quickcheck.domain import (
    BootFiles,
    Classification,
    RunReport,
    Status,
)
from rpi_image_quickcheck.logging import get_logger, operation_context
from rpi_image_quickcheck.storage.cleanup import CleanupCoordinator, RunContext
from rpi_image_quickcheck.storage.exceptions import FixError, UnsupportedImageError
from rpi_image_quickcheck.storage.loop import ImageAttacher
from rpi_image_quickcheck.storage.mount import PartitionMounter
from rpi_image_quickcheck.storage.validation import validate_image_path


log = get_logger(source="quickcheck", tags=["quickcheck"])


def run_quickcheck(
    image_path: str | Path,
    *,
    fix: bool = False,
    mount_root: Path | None = None,
    attacher: ImageAttacher | None = None,
) -> RunReport:
    """Check an image's PARTUUID references and optionally repair them.

    Args:
        image_path: Path to the image file
        fix: Repair mismatched references; when False they surface as BLOCKED
        mount_root: Directory for scratch mount points (default from settings)
        attacher: Loop device handler, replaceable for tests

    Returns:
        RunReport with a terminal classification

    Raises:
        InvalidImageError: If the image path is not a regular, readable file
        StorageError: On attach, mount, query or repair failures
    """
    image = validate_image_path(image_path)
    report = RunReport(image=image)
    attacher = attacher or ImageAttacher()

    with operation_context("quickcheck", image=str(image.path)) as run_log:
        with CleanupCoordinator(RunContext(image=image)) as cleanup:
            try:
                report.classification = _check_image(
                    report, cleanup, attacher, fix=fix, mount_root=mount_root
                )
            except UnsupportedImageError as error:
                run_log.error(f"CANNOT FIX: {error.reason}")
                report.classification = Classification.unsupported(error.reason)

        report.partitions = [p.with_mountpoint(None) for p in report.partitions]
        run_log.info(
            f"Image check complete: {report.classification.status.name} "
            f"(result code {int(report.result_code)})"
        )
    return report


def _check_image(
    report: RunReport,
    cleanup: CleanupCoordinator,
    attacher: ImageAttacher,
    *,
    fix: bool,
    mount_root: Path | None,
) -> Classification:
    report.device = attacher.attach(report.image, cleanup)
    log.info(f"Beginning PARTUUID checks on block device {report.device.device_node}")
    report.partitions = attacher.enumerate_partitions(report.device)

    mounter = PartitionMounter(cleanup, mount_root=mount_root)
    partitions, boot_files = mounter.mount_boot_partitions(report.partitions)
    report.partitions = [
        partition.with_partuuid(actual_uuid(partition.device_node))
        for partition in partitions
    ]

    report.references = read_references(boot_files)
    classification = check_references(report.partitions, report.references)
    if classification.status is Status.OK:
        return classification

    if not fix:
        log.warning("----- Repair not authorized, skipping fix -----")
        return classification.resolve(Status.BLOCKED)

    log.info("Fixing image")
    apply(classification.mismatches)
    _verify_fixed(report, boot_files)
    log.success("Image fix complete")
    return classification.resolve(Status.FIXED)


def _verify_fixed(report: RunReport, boot_files: BootFiles) -> None:
    recheck = check_references(report.partitions, read_references(boot_files))
    if recheck.status is not Status.OK:
        remaining = ", ".join(m.reference.label for m in recheck.mismatches)
        raise FixError(f"References still mismatched after repair: {remaining}")


def format_report(report: RunReport) -> list[str]:
    """Render the diagnostic report printed with --debug."""
    lines = ["", "************ Debugging statements follow ****************", ""]
    if report.classification is not None:
        lines.append(f"Return code is {int(report.result_code)}")
        if report.classification.reason:
            lines.append(f"Reason: {report.classification.reason}")
    device = report.device.device_node if report.device else "(not attached)"
    lines.append(f"The block device is {device}")
    lines.append("")
    lines.append(f"There are {len(report.partitions)} partitions")
    for partition in report.partitions:
        lines.append(f"partition {partition.index} = {partition.device_node}")

    lines.append("")
    lines.append("PARTUUIDs")
    for partition in report.partitions:
        lines.append(f"PARTUUID of partition {partition.index} is: {partition.partuuid}")
    for reference in report.references:
        lines.append(
            f"PARTUUID of partition {reference.target}, according to partition "
            f"{reference.partition}'s {reference.label}: {reference.value}"
        )
    return lines
