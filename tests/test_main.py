"""Tests for the command line entry point."""

import errno
import signal
from pathlib import Path

import pytest

from rpi_image_quickcheck import main
from rpi_image_quickcheck.domain import (
    Classification,
    DeviceHandle,
    DiskImage,
    ResultCode,
    RunReport,
    Status,
)
from rpi_image_quickcheck.storage.exceptions import (
    DeviceQueryError,
    InvalidImageError,
    RunInterruptedError,
)

from conftest import FSTAB_OK, P1_UUID


@pytest.fixture(autouse=True)
def mock_setup_logging(mocker):
    """Keep the CLI from replacing the test session's loguru sinks."""
    return mocker.patch("rpi_image_quickcheck.main.setup_logging")


@pytest.fixture
def as_root(mocker):
    return mocker.patch("os.geteuid", return_value=0)


def blocked_report():
    return RunReport(
        image=DiskImage(path=Path("/images/a.img")),
        device=DeviceHandle("/dev/loop0"),
        classification=Classification(status=Status.BLOCKED),
    )


# ==============================================================================
# Argument Parsing Tests
# ==============================================================================


class TestBuildParser:
    def test_defaults(self):
        args = main.build_parser().parse_args(["raspios.img"])

        assert args.image == "raspios.img"
        assert args.fix is False
        assert args.debug is False
        assert args.mount_root is None

    def test_fix_flag(self):
        assert main.build_parser().parse_args(["--fix", "a.img"]).fix is True
        assert main.build_parser().parse_args(["--no-fix", "a.img"]).fix is False

    def test_fix_and_no_fix_are_exclusive(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(["--fix", "--no-fix", "a.img"])

    def test_image_is_required(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args([])

    def test_paths(self):
        args = main.build_parser().parse_args(
            ["--mount-root", "/tmp/mnt", "--log-dir", "/tmp/logs", "a.img"]
        )

        assert args.mount_root == Path("/tmp/mnt")
        assert args.log_dir == Path("/tmp/logs")


# ==============================================================================
# Exit Code Tests
# ==============================================================================


class TestMain:
    """Test main() exit codes."""

    def test_not_root(self, mocker, image_file):
        mocker.patch("os.geteuid", return_value=1000)
        run = mocker.patch("rpi_image_quickcheck.main.run_quickcheck")

        assert main.main([str(image_file)]) == ResultCode.NOT_ROOT
        run.assert_not_called()

    def test_skip_root_check(self, mocker, image_file):
        mocker.patch("os.geteuid", return_value=1000)
        run = mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", return_value=blocked_report()
        )

        assert main.main(["--skip-root-check", str(image_file)]) == ResultCode.BLOCKED
        run.assert_called_once_with(str(image_file), fix=False, mount_root=None)

    def test_passes_fix_and_mount_root(self, mocker, as_root, image_file, tmp_path):
        run = mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", return_value=blocked_report()
        )

        main.main(["--fix", "--mount-root", str(tmp_path), str(image_file)])

        run.assert_called_once_with(str(image_file), fix=True, mount_root=tmp_path)

    def test_invalid_image(self, as_root, tmp_path):
        assert main.main([str(tmp_path / "missing.img")]) == ResultCode.INVALID_INPUT

    def test_invalid_image_from_run(self, mocker, as_root):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck",
            side_effect=InvalidImageError("a.img", "not a regular file"),
        )

        assert main.main(["a.img"]) == ResultCode.INVALID_INPUT

    def test_fatal_storage_error(self, mocker, as_root):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck",
            side_effect=DeviceQueryError("/dev/loop0", "lsblk failed"),
        )

        assert main.main(["a.img"]) == ResultCode.FAILED

    def test_unexpected_os_error(self, mocker, as_root):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck",
            side_effect=PermissionError(13, "Permission denied"),
        )

        assert main.main(["a.img"]) == ResultCode.FAILED

    def test_sigterm(self, mocker, as_root):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck",
            side_effect=RunInterruptedError("SIGTERM"),
        )

        assert main.main(["a.img"]) == ResultCode.INTERRUPTED

    def test_keyboard_interrupt(self, mocker, as_root):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", side_effect=KeyboardInterrupt
        )

        assert main.main(["a.img"]) == ResultCode.INTERRUPTED

    def test_restores_sigterm_handler(self, mocker, as_root):
        previous = signal.getsignal(signal.SIGTERM)
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", return_value=blocked_report()
        )

        main.main(["a.img"])

        assert signal.getsignal(signal.SIGTERM) == previous

    def test_sigterm_handler_raises_interrupted(self):
        with pytest.raises(RunInterruptedError, match="SIGTERM"):
            main._raise_interrupted(signal.SIGTERM, None)

    def test_debug_prints_report(self, mocker, as_root, capsys):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", return_value=blocked_report()
        )

        assert main.main(["--debug", "a.img"]) == ResultCode.BLOCKED

        out = capsys.readouterr().out
        assert "Return code is 2" in out
        assert "The block device is /dev/loop0" in out

    def test_no_report_without_debug(self, mocker, as_root, capsys):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", return_value=blocked_report()
        )

        main.main(["a.img"])

        assert capsys.readouterr().out == ""

    def test_logging_options(self, mocker, as_root, mock_setup_logging, tmp_path):
        mocker.patch(
            "rpi_image_quickcheck.main.run_quickcheck", return_value=blocked_report()
        )

        main.main(["--trace", "--log-dir", str(tmp_path), "a.img"])

        mock_setup_logging.assert_called_once_with(
            debug=False, trace=True, log_dir=tmp_path
        )


class TestEndToEnd:
    """main() over FakeBlockDevices."""

    def test_fix_exit_code(self, fake_devices, as_root, image_file, mount_root, partition_dirs):
        fstab = partition_dirs[2] / "etc" / "fstab"
        fstab.write_text(FSTAB_OK.replace(P1_UUID, "ffff0000-01", 1))

        code = main.main(["--fix", "--mount-root", str(mount_root), str(image_file)])

        assert code == ResultCode.FIXED
        assert fstab.read_text() == FSTAB_OK

    def test_ok_exit_code(self, fake_devices, as_root, image_file, mount_root):
        code = main.main(["--mount-root", str(mount_root), str(image_file)])

        assert code == ResultCode.OK

    def test_missing_mount_root_fails(self, fake_devices, image_file, tmp_path):
        code = main.main(
            ["--skip-root-check", "--mount-root", str(tmp_path / "nope"), str(image_file)]
        )

        assert code == ResultCode.FAILED
        assert fake_devices.attached == set()

    def test_read_only_image_fails(
        self, fake_devices, as_root, image_file, mount_root, partition_dirs, mocker
    ):
        fstab = partition_dirs[2] / "etc" / "fstab"
        fstab.write_text(FSTAB_OK.replace(P1_UUID, "ffff0000-01", 1))
        mocker.patch.object(
            Path, "write_bytes", side_effect=OSError(errno.EROFS, "Read-only file system")
        )

        code = main.main(["--fix", "--mount-root", str(mount_root), str(image_file)])

        assert code == ResultCode.FAILED
        assert fake_devices.mounted == {}
