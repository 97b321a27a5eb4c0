import re
from pathlib import Path

IEC_UNITS = ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]

SIZE_PATTERN = re.compile(r"^\d+[KMGT]?$")


def format_iec_size(size_bytes: int) -> str:
    """Format a byte count with binary (IEC) units

    Args:
        size_bytes: Size in bytes

    Returns:
        Human readable size such as "931.5 GiB"
    """
    if size_bytes < 0:
        raise ValueError(f"Size cannot be negative: {size_bytes}")

    value = float(size_bytes)
    unit = IEC_UNITS[0]
    for unit in IEC_UNITS:
        if value < 1024 or unit == IEC_UNITS[-1]:
            break
        value /= 1024

    if unit == "B":
        return f"{size_bytes} B"
    return f"{value:.1f} {unit}"


def is_valid_size(size: str) -> bool:
    """Return True for ZFS style sizes ("0", "512M", "16G")."""
    return bool(SIZE_PATTERN.match(size))


def partition_path(disk: Path, number: int) -> Path:
    """Path of partition `number` on `disk`

    by-id disks expose partitions as `<disk>-part<N>`, kernel names whose last
    character is a digit (nvme0n1, mmcblk0) use a `p` separator.
    """
    if disk.is_relative_to("/dev/disk/by-id") or disk.parent.name == "by-id":
        return Path(f"{disk}-part{number}")
    if disk.name[-1].isdigit():
        return Path(f"{disk}p{number}")
    return Path(f"{disk}{number}")
