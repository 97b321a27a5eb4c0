import os
from shutil import which

from archinstall import SysInfo, debug, info
from archinstall.lib.exceptions import SysCallError
from archinstall.lib.general import SysCommand

from zroot_installer.errors import EnvironmentPreconditionError

REQUIRED_TOOLS = ["lsblk", "blkid", "wipefs", "sgdisk", "partprobe", "udevadm", "mkfs.fat", "cryptsetup", "zpool", "zfs"]


def check_zfs_module() -> bool:
    debug("Checking ZFS kernel module")
    try:
        SysCommand("modprobe zfs")
        info("ZFS module loaded successfully")
        return True
    except SysCallError:
        return False


def missing_tools() -> list[str]:
    return [tool for tool in REQUIRED_TOOLS if which(tool) is None]


def check_environment() -> None:
    """Raise EnvironmentPreconditionError when the host cannot run the installer."""
    if os.geteuid() != 0:
        raise EnvironmentPreconditionError("This installer must be run with root privileges")

    if not SysInfo.has_uefi():
        raise EnvironmentPreconditionError("EFI boot mode required")

    missing = missing_tools()
    if missing:
        raise EnvironmentPreconditionError(f"Required tools not found: {', '.join(missing)}")

    if not check_zfs_module():
        raise EnvironmentPreconditionError("ZFS kernel module could not be loaded")

    debug("Environment checks passed")
