from __future__ import annotations

from enum import Enum


class PoolTopology(Enum):
    """Redundancy scheme used to combine pool members."""

    STRIPE = "stripe"
    MIRROR = "mirror"
    RAIDZ = "raidz"

    @property
    def minimum_drives(self) -> int:
        return {PoolTopology.STRIPE: 1, PoolTopology.MIRROR: 2, PoolTopology.RAIDZ: 3}[self]

    @property
    def description(self) -> str:
        return {
            PoolTopology.STRIPE: "No redundancy",
            PoolTopology.MIRROR: "Two-way mirror (RAID1)",
            PoolTopology.RAIDZ: "Single parity (RAIDZ1)",
        }[self]


class BusClass(Enum):
    """Bus a block device is attached through."""

    USB = "usb"
    DISK = "disk"
    NVME = "nvme"


class CompressionAlgo(Enum):
    OFF = "off"
    LZ4 = "lz4"
    ZSTD = "zstd"
    ZSTD_5 = "zstd-5"
    ZSTD_10 = "zstd-10"
