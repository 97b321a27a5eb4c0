from pathlib import Path
from unittest.mock import Mock, call, patch

import pytest
from archinstall.lib.exceptions import SysCallError

from zroot_installer.disk.partition import PartitionConfig, PartitionInfo, SgdiskPartitionTool

SGDISK_PRINT = """Disk /dev/disk/by-id/nvme-A: 1953525168 sectors, 931.5 GiB
Model: Samsung SSD 980
Sector size (logical/physical): 512/512 bytes
Disk identifier (GUID): 4F3C1B0E-2D59-4E5A-9C11-2B0E5D3F7A10
Partition table holds up to 128 entries
Main partition table begins at sector 2 and ends at sector 33
First usable sector is 34, last usable sector is 1953525134
Partitions will be aligned on 2048-sector boundaries
Total free space is 2014 sectors (1007.0 KiB)

Number  Start (sector)    End (sector)  Size       Code  Name
   1            2048         1050623   512.0 MiB   EF00  EFI system partition
   2         1050624      1953525134   931.0 GiB   BF00  Solaris root
"""

DISK = Path("/dev/disk/by-id/nvme-A")


def decoded(text: str) -> Mock:
    result = Mock()
    result.decode.return_value = text
    return result


class TestPartitionConfig:
    def test_defaults(self) -> None:
        config = PartitionConfig()
        assert config.efi_size == "512M"
        assert config.expected_layout() == [PartitionInfo(number=1, type_code="EF00"), PartitionInfo(number=2, type_code="BF00")]


class TestReadLayout:
    """Parsing `sgdisk --print`."""

    @patch("zroot_installer.disk.partition.SysCommand")
    def test_parses_rows(self, mock_syscmd: Mock) -> None:
        mock_syscmd.return_value = decoded(SGDISK_PRINT)

        layout = SgdiskPartitionTool().read_layout(DISK)

        assert layout == [PartitionInfo(number=1, type_code="EF00"), PartitionInfo(number=2, type_code="BF00")]
        mock_syscmd.assert_called_once_with(f"sgdisk --print {DISK}")

    @patch("zroot_installer.disk.partition.SysCommand")
    def test_unreadable_table_is_empty(self, mock_syscmd: Mock) -> None:
        mock_syscmd.side_effect = SysCallError("Invalid partition data!", exit_code=2)

        assert SgdiskPartitionTool().read_layout(DISK) == []

    @patch("zroot_installer.disk.partition.SysCommand")
    def test_has_layout(self, mock_syscmd: Mock) -> None:
        mock_syscmd.return_value = decoded(SGDISK_PRINT)
        assert SgdiskPartitionTool().has_layout(DISK, PartitionConfig())

    @patch("zroot_installer.disk.partition.SysCommand")
    def test_has_layout_rejects_extra_partitions(self, mock_syscmd: Mock) -> None:
        extra = SGDISK_PRINT + "   3      1953525135      1953525160   12.0 KiB    8300  Linux filesystem\n"
        mock_syscmd.return_value = decoded(extra)
        assert not SgdiskPartitionTool().has_layout(DISK, PartitionConfig())

    @patch("zroot_installer.disk.partition.SysCommand")
    def test_has_layout_rejects_wrong_types(self, mock_syscmd: Mock) -> None:
        mock_syscmd.return_value = decoded(SGDISK_PRINT.replace("BF00", "8300"))
        assert not SgdiskPartitionTool().has_layout(DISK, PartitionConfig())


class TestPartition:
    """Commands issued to lay out a disk."""

    @patch.object(SgdiskPartitionTool, "_wait_for_partition")
    @patch("zroot_installer.disk.partition.SysCommand")
    def test_command_sequence(self, mock_syscmd: Mock, mock_wait: Mock) -> None:
        SgdiskPartitionTool().partition(DISK, PartitionConfig())

        assert mock_syscmd.call_args_list == [
            call(f"sgdisk -Z {DISK}"),
            call(f"sgdisk -o {DISK}"),
            call(f"sgdisk -n 1:0:+512M -t 1:EF00 {DISK}"),
            call(f"sgdisk -n 2:0:0 -t 2:BF00 {DISK}"),
            call(f"partprobe {DISK}"),
            call("udevadm settle"),
            call(f"wipefs -a {DISK}-part2"),
            call(f"mkfs.fat -I -F32 {DISK}-part1"),
        ]
        assert mock_wait.call_args_list == [call(Path(f"{DISK}-part1")), call(Path(f"{DISK}-part2"))]

    @patch("zroot_installer.disk.partition.SysCommand")
    def test_failure_is_reraised(self, mock_syscmd: Mock) -> None:
        mock_syscmd.side_effect = SysCallError("sgdisk -Z failed", exit_code=2)

        with pytest.raises(SysCallError):
            SgdiskPartitionTool().partition(DISK, PartitionConfig())
        assert mock_syscmd.call_count == 1

    def test_wait_for_partition_times_out(self, tmp_path: Path) -> None:
        tool = SgdiskPartitionTool(symlink_timeout=0.05)
        with pytest.raises(TimeoutError):
            tool._wait_for_partition(tmp_path / "never", poll_interval=0.01)

    def test_wait_for_partition_returns_when_present(self, tmp_path: Path) -> None:
        node = tmp_path / "part1"
        node.touch()
        SgdiskPartitionTool(symlink_timeout=0.05)._wait_for_partition(node)
