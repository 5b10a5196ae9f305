"""
Pytest configuration and shared fixtures for rpi-image-quickcheck tests.

No test touches real loop devices or mounts. FakeBlockDevices stands in for
the command runner and simulates losetup, udevadm, lsblk, mount and umount on
top of plain directories.
"""

import contextlib
import json
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest
from loguru import logger


P1_UUID = "aaaa1111-01"
P2_UUID = "aaaa1111-02"

CMDLINE_OK = (
    f"console=serial0,115200 console=tty1 root=PARTUUID={P2_UUID} "
    "rootfstype=ext4 fsck.repair=yes rootwait quiet splash\n"
)
FSTAB_OK = (
    "proc            /proc           proc    defaults          0       0\n"
    f"PARTUUID={P1_UUID}  /boot/firmware  vfat    defaults          0       2\n"
    f"PARTUUID={P2_UUID}  /               ext4    defaults,noatime  0       1\n"
    "# a swapfile is not a swap partition, no line here for that\n"
)


def completed(command, stdout: str = "", stderr: str = "", returncode: int = 0):
    return subprocess.CompletedProcess(list(command), returncode, stdout, stderr)


class FakeBlockDevices:
    """Callable replacement for storage.devices.run_command.

    Each partition is backed by a directory. mount copies the directory into
    the scratch mount point; umount copies it back and empties the mount
    point, so edits made while mounted persist like on a real filesystem.
    """

    def __init__(
        self,
        partition_dirs: Dict[int, Path],
        partuuids: Dict[int, str],
        device_node: str = "/dev/loop7",
        fail_on: Optional[set] = None,
    ):
        self.partition_dirs = partition_dirs
        self.partuuids = partuuids
        self.device_node = device_node
        self.fail_on = fail_on or set()
        self.calls: List[List[str]] = []
        self.attached: set = set()
        self.mounted: Dict[str, int] = {}

    def node(self, index: int) -> str:
        return f"{self.device_node}p{index}"

    def _index(self, node: str) -> int:
        return int(node.rsplit("p", 1)[1])

    def _fail(self, key: str, command):
        if key in self.fail_on:
            raise subprocess.CalledProcessError(
                32, list(command), output="", stderr=f"{key}: simulated failure"
            )

    def __call__(self, command, check=True, timeout=None):
        command = list(command)
        self.calls.append(command)
        program = command[0]

        if program == "losetup" and "--show" in command:
            self._fail("attach", command)
            self.attached.add(self.device_node)
            return completed(command, stdout=f"{self.device_node}\n")

        if program == "losetup" and command[1] == "-d":
            self._fail("detach", command)
            self.attached.discard(command[2])
            return completed(command)

        if program == "udevadm":
            self._fail("settle", command)
            return completed(command)

        if program == "lsblk" and "-J" in command:
            self._fail("lsblk", command)
            children = [
                {"name": Path(self.node(index)).name, "type": "part"}
                for index in sorted(self.partition_dirs)
            ]
            data = {
                "blockdevices": [
                    {
                        "name": Path(self.device_node).name,
                        "type": "loop",
                        "children": children,
                    }
                ]
            }
            return completed(command, stdout=json.dumps(data))

        if program == "lsblk":
            index = self._index(command[-1])
            return completed(command, stdout=f"{self.partuuids.get(index, '')}\n")

        if program == "mount":
            node, mountpoint = command[1], command[2]
            index = self._index(node)
            self._fail(f"mount:{index}", command)
            shutil.copytree(self.partition_dirs[index], mountpoint, dirs_exist_ok=True)
            self.mounted[mountpoint] = index
            return completed(command)

        if program == "umount":
            mountpoint = command[1]
            self._fail("umount", command)
            index = self.mounted.pop(mountpoint)
            source = self.partition_dirs[index]
            shutil.rmtree(source)
            shutil.copytree(mountpoint, source)
            for child in Path(mountpoint).iterdir():
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            return completed(command)

        raise AssertionError(f"Unexpected command: {command}")


# ==============================================================================
# Subprocess Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """
    Fixture providing a mock subprocess.run that always succeeds.

    Returns:
        Mock object for subprocess.run.
    """
    mock_result = Mock()
    mock_result.returncode = 0
    mock_result.stdout = ""
    mock_result.stderr = ""
    return mocker.patch("subprocess.run", return_value=mock_result)


@pytest.fixture
def mock_subprocess_failure(mocker) -> Mock:
    """
    Fixture providing a mock subprocess.run that always fails.

    Returns:
        Mock object for subprocess.run that raises CalledProcessError.
    """

    def raise_error(*args, **kwargs):
        raise subprocess.CalledProcessError(1, args[0], stderr="Mock error")

    return mocker.patch("subprocess.run", side_effect=raise_error)


# ==============================================================================
# Image Fixtures
# ==============================================================================


@pytest.fixture
def image_file(tmp_path) -> Path:
    """A small regular file standing in for a disk image."""
    image = tmp_path / "raspios.img"
    image.write_bytes(b"\x00" * 1024)
    return image


@pytest.fixture
def mount_root(tmp_path) -> Path:
    root = tmp_path / "mnt"
    root.mkdir()
    return root


@pytest.fixture
def partition_dirs(tmp_path) -> Dict[int, Path]:
    """Partition contents of a consistent image."""
    boot = tmp_path / "part1"
    root = tmp_path / "part2"
    boot.mkdir()
    (root / "etc").mkdir(parents=True)
    (boot / "cmdline.txt").write_text(CMDLINE_OK)
    (root / "etc" / "fstab").write_text(FSTAB_OK)
    return {1: boot, 2: root}


@pytest.fixture
def fake_devices(mocker, partition_dirs) -> FakeBlockDevices:
    """Install FakeBlockDevices as the command runner."""
    fake = FakeBlockDevices(partition_dirs, {1: P1_UUID, 2: P2_UUID})
    mocker.patch("rpi_image_quickcheck.storage.devices.run_command", side_effect=fake)
    return fake


# ==============================================================================
# Boot File Fixtures
# ==============================================================================


@pytest.fixture
def boot_files(tmp_path):
    """cmdline.txt and fstab of a consistent image, outside any mount."""
    from rpi_image_quickcheck.domain import BootFiles

    cmdline = tmp_path / "cmdline.txt"
    fstab = tmp_path / "fstab"
    cmdline.write_text(CMDLINE_OK)
    fstab.write_text(FSTAB_OK)
    return BootFiles(cmdline=cmdline, fstab=fstab)


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records():
    """Capture loguru records emitted during a test."""
    records: List[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    with contextlib.suppress(ValueError):
        logger.remove(handler_id)
