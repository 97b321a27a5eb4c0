from unittest.mock import Mock, patch

import pytest
from archinstall.lib.exceptions import SysCallError

from zroot_installer.environment import REQUIRED_TOOLS, check_environment, check_zfs_module, missing_tools
from zroot_installer.errors import EnvironmentPreconditionError


@patch("zroot_installer.environment.check_zfs_module", return_value=True)
@patch("zroot_installer.environment.missing_tools", return_value=[])
@patch("zroot_installer.environment.SysInfo")
@patch("zroot_installer.environment.os.geteuid", return_value=0)
class TestCheckEnvironment:
    def test_all_good(self, mock_euid: Mock, mock_sysinfo: Mock, mock_missing: Mock, mock_module: Mock) -> None:
        mock_sysinfo.has_uefi.return_value = True
        check_environment()

    def test_requires_root(self, mock_euid: Mock, mock_sysinfo: Mock, mock_missing: Mock, mock_module: Mock) -> None:
        mock_euid.return_value = 1000
        with pytest.raises(EnvironmentPreconditionError, match="root privileges"):
            check_environment()

    def test_requires_uefi(self, mock_euid: Mock, mock_sysinfo: Mock, mock_missing: Mock, mock_module: Mock) -> None:
        mock_sysinfo.has_uefi.return_value = False
        with pytest.raises(EnvironmentPreconditionError, match="EFI boot mode required"):
            check_environment()

    def test_missing_tools(self, mock_euid: Mock, mock_sysinfo: Mock, mock_missing: Mock, mock_module: Mock) -> None:
        mock_sysinfo.has_uefi.return_value = True
        mock_missing.return_value = ["sgdisk", "zpool"]
        with pytest.raises(EnvironmentPreconditionError, match="sgdisk, zpool"):
            check_environment()

    def test_zfs_module(self, mock_euid: Mock, mock_sysinfo: Mock, mock_missing: Mock, mock_module: Mock) -> None:
        mock_sysinfo.has_uefi.return_value = True
        mock_module.return_value = False
        with pytest.raises(EnvironmentPreconditionError, match="ZFS kernel module"):
            check_environment()


class TestHostChecks:
    @patch("zroot_installer.environment.which")
    def test_missing_tools(self, mock_which: Mock) -> None:
        mock_which.side_effect = lambda tool: None if tool == "cryptsetup" else f"/usr/bin/{tool}"
        assert missing_tools() == ["cryptsetup"]
        assert mock_which.call_count == len(REQUIRED_TOOLS)

    @patch("zroot_installer.environment.SysCommand")
    def test_zfs_module(self, mock_syscmd: Mock) -> None:
        assert check_zfs_module()
        mock_syscmd.assert_called_once_with("modprobe zfs")

        mock_syscmd.side_effect = SysCallError("modprobe: FATAL: Module zfs not found", exit_code=1)
        assert not check_zfs_module()
