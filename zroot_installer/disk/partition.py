import re
import time
from abc import ABC, abstractmethod
from pathlib import Path

from archinstall.lib.exceptions import SysCallError
from archinstall.lib.general import SysCommand
from pydantic import BaseModel, ConfigDict, Field

from zroot_installer.reporter import ExecutionReporter
from zroot_installer.utils import partition_path

# sgdisk --print table row: "   1            2048         1050623   512.0 MiB   EF00  EFI system partition"
PARTITION_ROW = re.compile(r"^\s*(\d+)\s+\d+\s+\d+\s+\S+\s+\S+\s+([0-9A-Fa-f]{4})\b")


class PartitionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    type_code: str


class PartitionConfig(BaseModel):
    """Configuration for partition sizes and types"""

    model_config = ConfigDict(frozen=True)

    efi_size: str = Field(default="512M")
    efi_partition_type: str = Field(default="EF00")  # EFI System Partition
    pool_partition_type: str = Field(default="BF00")  # Solaris/ZFS

    def expected_layout(self) -> list[PartitionInfo]:
        return [
            PartitionInfo(number=1, type_code=self.efi_partition_type),
            PartitionInfo(number=2, type_code=self.pool_partition_type),
        ]


class PartitionTool(ABC):
    """Partition-table capability used by the pipeline."""

    @abstractmethod
    def read_layout(self, disk: Path) -> list[PartitionInfo]:
        """Return the partitions currently on `disk` (empty when unpartitioned)."""

    @abstractmethod
    def partition(self, disk: Path, layout: PartitionConfig) -> None:
        """Wipe `disk` and create the EFI + pool-member partitions."""

    def partition_path(self, disk: Path, number: int) -> Path:
        return partition_path(disk, number)

    def has_layout(self, disk: Path, layout: PartitionConfig) -> bool:
        current = [(p.number, p.type_code.upper()) for p in self.read_layout(disk)]
        expected = [(p.number, p.type_code.upper()) for p in layout.expected_layout()]
        return current == expected


class SgdiskPartitionTool(PartitionTool):
    """Handles disk partitioning through sgdisk"""

    def __init__(self, symlink_timeout: float = 10.0, reporter: ExecutionReporter | None = None):
        self.symlink_timeout = symlink_timeout
        self.reporter = reporter or ExecutionReporter()

    def read_layout(self, disk: Path) -> list[PartitionInfo]:
        self.reporter.debug(f"Reading partition table of {disk}")
        try:
            output = SysCommand(f"sgdisk --print {disk}").decode()
        except SysCallError:
            # No valid GPT (or a damaged one), treat as unpartitioned
            self.reporter.debug(f"No readable GPT on {disk}")
            return []

        partitions = []
        for line in output.splitlines():
            match = PARTITION_ROW.match(line)
            if match:
                partitions.append(PartitionInfo(number=int(match.group(1)), type_code=match.group(2).upper()))
        return partitions

    def partition(self, disk: Path, layout: PartitionConfig) -> None:
        """Creates fresh GPT and partitions for EFI and the pool member"""
        self.reporter.debug(f"Creating partition table on {disk}")
        try:
            self.reporter.debug("Zapping existing partitions")
            SysCommand(f"sgdisk -Z {disk}")
            self.reporter.debug("Creating fresh GPT")
            SysCommand(f"sgdisk -o {disk}")

            self.reporter.debug(f"Creating EFI partition ({layout.efi_size})")
            SysCommand(f"sgdisk -n 1:0:+{layout.efi_size} -t 1:{layout.efi_partition_type} {disk}")

            self.reporter.debug("Creating pool partition (rest of disk)")
            SysCommand(f"sgdisk -n 2:0:0 -t 2:{layout.pool_partition_type} {disk}")

            self.reporter.debug("Updating kernel partition table")
            SysCommand(f"partprobe {disk}")
            self.reporter.debug("Waiting for udev to settle")
            SysCommand("udevadm settle")

            for number in (1, 2):
                self._wait_for_partition(self.partition_path(disk, number))

            self._clear_pool_partition(disk)
            self._format_efi_partition(disk)
        except SysCallError as e:
            self.reporter.error(f"Failed to create partitions on {disk}: {e!s}")
            raise
        self.reporter.info(f"Partitioned {disk}")

    def _clear_pool_partition(self, disk: Path) -> None:
        # sgdisk -Z leaves old pool labels inside a partition created at the same offsets
        pool_part = self.partition_path(disk, 2)
        self.reporter.debug(f"Clearing old signatures on {pool_part}")
        SysCommand(f"wipefs -a {pool_part}")

    def _format_efi_partition(self, disk: Path) -> None:
        efi_part = self.partition_path(disk, 1)
        self.reporter.debug(f"Formatting EFI partition {efi_part}")
        SysCommand(f"mkfs.fat -I -F32 {efi_part}")

    def _wait_for_partition(self, path: Path, poll_interval: float = 0.2) -> None:
        """Wait until a partition node exists, or raise on timeout."""
        deadline = time.monotonic() + self.symlink_timeout
        while time.monotonic() < deadline:
            if path.exists():
                return
            time.sleep(poll_interval)
        raise TimeoutError(f"Partition node did not appear: {path}")
