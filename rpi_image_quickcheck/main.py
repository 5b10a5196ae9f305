import argparse
import signal
from pathlib import Path

from rpi_image_quickcheck.__version__ import __version__
from rpi_image_quickcheck.config import settings
from rpi_image_quickcheck.domain import ResultCode
from rpi_image_quickcheck.logging import LoggerFactory, setup_logging
from rpi_image_quickcheck.quickcheck import format_report, run_quickcheck
from rpi_image_quickcheck.storage.exceptions import (
    InvalidImageError,
    PrivilegeError,
    RunInterruptedError,
    StorageError,
)
from rpi_image_quickcheck.storage.validation import ensure_root


def build_parser():
    parser = argparse.ArgumentParser(
        prog="rpi-image-quickcheck",
        description=(
            "Check that cmdline.txt and /etc/fstab of a two-partition image "
            "reference the image's actual PARTUUIDs, and optionally fix them."
        ),
    )
    parser.add_argument("image", help="Path to the image file")
    fix_group = parser.add_mutually_exclusive_group()
    fix_group.add_argument(
        "--fix",
        dest="fix",
        action="store_true",
        help="Rewrite mismatched PARTUUIDs in place",
    )
    fix_group.add_argument(
        "--no-fix",
        dest="fix",
        action="store_false",
        help="Only report mismatches (default)",
    )
    parser.set_defaults(fix=False)
    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable verbose debug output"
    )
    parser.add_argument(
        "--trace", action="store_true", help="Also log raw command output"
    )
    parser.add_argument(
        "--mount-root",
        type=Path,
        default=None,
        help="Directory for scratch mount points (default: /mnt)",
    )
    parser.add_argument(
        "--log-dir", type=Path, default=None, help="Also write log files here"
    )
    parser.add_argument(
        "--skip-root-check",
        action="store_true",
        help="Do not require root (for unprivileged test setups)",
    )
    parser.add_argument("--version", action="version", version=__version__)
    return parser


def _raise_interrupted(signum, frame):
    raise RunInterruptedError(signal.Signals(signum).name)


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=args.log_dir or settings.get_path("log_dir"),
    )
    log = LoggerFactory.for_system()

    if not args.skip_root_check:
        try:
            ensure_root()
        except PrivilegeError as error:
            log.error(str(error))
            return int(ResultCode.NOT_ROOT)

    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupted)
    try:
        report = run_quickcheck(args.image, fix=args.fix, mount_root=args.mount_root)
    except InvalidImageError as error:
        log.error(f"{error}. Enter a valid image file name as the first parameter")
        return int(ResultCode.INVALID_INPUT)
    except (RunInterruptedError, KeyboardInterrupt) as error:
        log.warning(f"Run interrupted: {error or 'SIGINT'}")
        return int(ResultCode.INTERRUPTED)
    except (StorageError, OSError) as error:
        log.error(f"Image check failed: {error}")
        return int(ResultCode.FAILED)
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    if args.debug:
        print("\n".join(format_report(report)))
    return int(report.result_code)


if __name__ == "__main__":
    raise SystemExit(main())
