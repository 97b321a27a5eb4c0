"""
Shared fixtures: in-memory capability tools, a scripted dialog and a
static device catalog, so nothing here touches a real block device.
"""

from pathlib import Path
from typing import Any

import pytest
from archinstall.lib.exceptions import SysCallError

from zroot_installer.crypto import EncryptionTool
from zroot_installer.disk.catalog import BlockDevice, DeviceCatalog, PersistentIdentifier
from zroot_installer.disk.partition import PartitionConfig, PartitionInfo, PartitionTool
from zroot_installer.errors import Cancelled
from zroot_installer.menu.dialog import Dialog
from zroot_installer.shared import BusClass
from zroot_installer.zfs import PoolTool

ONE_TB = 1_000_204_886_016

CANCEL = object()


class FakePartitionTool(PartitionTool):
    def __init__(self, fail_on: set[Path] | None = None) -> None:
        self.layouts: dict[Path, list[PartitionInfo]] = {}
        self.partition_calls: list[Path] = []
        self.fail_on = fail_on or set()

    def read_layout(self, disk: Path) -> list[PartitionInfo]:
        return list(self.layouts.get(disk, []))

    def partition(self, disk: Path, layout: PartitionConfig) -> None:
        self.partition_calls.append(disk)
        if disk in self.fail_on:
            raise SysCallError(f"sgdisk -Z {disk} exited with abnormal exit code [2]", exit_code=2)
        self.layouts[disk] = layout.expected_layout()


class FakeEncryptionTool(EncryptionTool):
    def __init__(self, fail_format: bool = False) -> None:
        self.headers: set[Path] = set()
        self.mappings: dict[str, Path] = {}
        self.format_calls: list[Path] = []
        self.open_calls: list[tuple[Path, str]] = []
        self.secrets_seen: list[str] = []
        self.fail_format = fail_format

    def is_encrypted(self, partition: Path) -> bool:
        return partition in self.headers

    def format(self, partition: Path, secret: str) -> None:
        self.format_calls.append(partition)
        self.secrets_seen.append(secret)
        if self.fail_format:
            raise SysCallError("cryptsetup luksFormat exited with abnormal exit code [1]", exit_code=1)
        self.headers.add(partition)

    def open(self, partition: Path, name: str, secret: str) -> Path:
        self.open_calls.append((partition, name))
        self.mappings[name] = partition
        return self.mapping_path(name)

    def is_open(self, name: str) -> bool:
        return name in self.mappings

    def backing_device(self, name: str) -> Path | None:
        return self.mappings.get(name)


class FakePoolTool(PoolTool):
    def __init__(self) -> None:
        self.pools: dict[str, list[str]] = {}
        self.in_use: dict[Path, str] = {}
        self.datasets: list[str] = []
        self.properties: dict[tuple[str, str], str] = {}
        self.create_pool_calls: list[tuple[str, list[str], Path]] = []
        self.create_dataset_calls: list[tuple[str, dict[str, str]]] = []
        self.set_property_calls: list[tuple[str, str, str]] = []

    def pool_exists(self, pool: str) -> bool:
        return pool in self.pools

    def pool_members(self, pool: str) -> list[str]:
        return list(self.pools.get(pool, []))

    def in_use_by(self, device: Path) -> str | None:
        return self.in_use.get(device)

    def create_pool(self, pool: str, vdevs: list[str], altroot: Path) -> None:
        self.create_pool_calls.append((pool, list(vdevs), altroot))
        self.pools[pool] = [v for v in vdevs if v.startswith("/")]
        self.datasets.append(pool)

    def list_datasets(self, pool: str) -> list[str]:
        return [d for d in self.datasets if d == pool or d.startswith(f"{pool}/")]

    def create_dataset(self, name: str, properties: dict[str, str]) -> None:
        self.create_dataset_calls.append((name, properties))
        self.datasets.append(name)

    def get_property(self, dataset: str, prop: str) -> str:
        return self.properties.get((dataset, prop), "-")

    def set_property(self, dataset: str, prop: str, value: str) -> None:
        self.set_property_calls.append((dataset, prop, value))
        self.properties[(dataset, prop)] = value


class FakeDialog(Dialog):
    """Replays scripted answers in order; `CANCEL` raises Cancelled."""

    def __init__(self, answers: list[Any]) -> None:
        self.answers = list(answers)
        self.prompts: list[tuple[str, str]] = []
        self.notifications: list[str] = []
        self.preselected: list[Any] | None = None

    def _next(self, kind: str, header: str) -> Any:
        self.prompts.append((kind, header))
        if not self.answers:
            raise AssertionError(f"No scripted answer left for {kind}: {header}")
        answer = self.answers.pop(0)
        if answer is CANCEL:
            raise Cancelled(header)
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def checklist(self, header: str, items: list[tuple[str, Any]], preselected: list[Any] | None = None) -> list[Any]:
        self.preselected = preselected
        return self._next("checklist", header)

    def select(self, header: str, items: list[tuple[str, Any]], preset: Any = None) -> Any:
        return self._next("select", header)

    def text(self, title: str, header: str, default: str | None = None) -> str:
        return self._next("text", title)

    def secret(self, title: str, header: str) -> str:
        return self._next("secret", title)

    def notify(self, header: str) -> None:
        self.notifications.append(header)


class StaticCatalog(DeviceCatalog):
    def __init__(self, devices: list[BlockDevice]) -> None:
        super().__init__()
        self.devices = devices
        self.scans = 0

    def scan(self) -> list[BlockDevice]:
        self.scans += 1
        return list(self.devices)


def make_device(kernel_name: str, alias: str, bus: BusClass = BusClass.NVME, size: int = ONE_TB, model: str = "Samsung SSD 980") -> BlockDevice:
    return BlockDevice(
        kernel_name=kernel_name,
        size_bytes=size,
        bus=bus,
        model=model,
        identifiers=(PersistentIdentifier(name=alias, kernel_name=kernel_name),),
    )


@pytest.fixture
def nvme_pair() -> list[BlockDevice]:
    return [make_device("nvme0n1", "nvme-A"), make_device("nvme1n1", "nvme-B")]


@pytest.fixture
def partition_tool() -> FakePartitionTool:
    return FakePartitionTool()


@pytest.fixture
def encryption_tool() -> FakeEncryptionTool:
    return FakeEncryptionTool()


@pytest.fixture
def pool_tool() -> FakePoolTool:
    return FakePoolTool()
