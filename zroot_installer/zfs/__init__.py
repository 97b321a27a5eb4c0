from abc import ABC, abstractmethod
from pathlib import Path
from typing import ClassVar

from archinstall.lib.exceptions import SysCallError
from archinstall.lib.general import SysCommand
from pydantic import BaseModel, ConfigDict

from zroot_installer.reporter import ExecutionReporter

SYSFS_BLOCK = Path("/sys/class/block")


class DatasetConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    properties: dict[str, str]

    @property
    def mountpoint(self) -> str | None:
        return self.properties.get("mountpoint")


DEFAULT_DATASETS = [
    DatasetConfig(name="ROOT", properties={"mountpoint": "none", "canmount": "off"}),
    DatasetConfig(name="ROOT/default", properties={"mountpoint": "/", "canmount": "noauto"}),
    DatasetConfig(name="home", properties={"mountpoint": "/home"}),
    DatasetConfig(name="var", properties={"mountpoint": "/var", "canmount": "off"}),
    DatasetConfig(name="var/cache", properties={"mountpoint": "/var/cache"}),
    DatasetConfig(name="var/log", properties={"mountpoint": "/var/log"}),
    DatasetConfig(name="var/spool", properties={"mountpoint": "/var/spool"}),
    DatasetConfig(name="var/tmp", properties={"mountpoint": "/var/tmp"}),
]

ROOT_DATASET = "ROOT/default"
HOME_DATASET = "home"


def build_dataset_tree(root_size: str = "0", home_size: str = "0") -> list[DatasetConfig]:
    """Return the fixed dataset tree, with quotas for sized root/home.

    A size of "0" means the dataset may use the remaining pool space.
    """
    quotas = {ROOT_DATASET: root_size, HOME_DATASET: home_size}
    tree = []
    for dataset in DEFAULT_DATASETS:
        size = quotas.get(dataset.name, "0")
        if size != "0":
            dataset = DatasetConfig(name=dataset.name, properties={**dataset.properties, "quota": size})
        tree.append(dataset)
    return tree


class PoolTool(ABC):
    """Pool-management capability used by the pipeline."""

    DEFAULT_POOL_OPTIONS: ClassVar[dict[str, str]] = {
        "ashift": "12",
        "autotrim": "on",
    }

    DEFAULT_FS_OPTIONS: ClassVar[dict[str, str]] = {
        "acltype": "posixacl",
        "relatime": "on",
        "xattr": "sa",
        "dnodesize": "auto",
        "normalization": "formD",
        "canmount": "off",
        "devices": "off",
    }

    @abstractmethod
    def pool_exists(self, pool: str) -> bool: ...

    @abstractmethod
    def pool_members(self, pool: str) -> list[str]:
        """Full paths of the leaf devices of `pool`; empty when it is not imported."""

    @abstractmethod
    def in_use_by(self, device: Path) -> str | None:
        """Describe what already claims `device`, or None when it is free."""

    @abstractmethod
    def create_pool(self, pool: str, vdevs: list[str], altroot: Path) -> None: ...

    @abstractmethod
    def list_datasets(self, pool: str) -> list[str]:
        """Full names of every dataset in `pool`, the pool root included."""

    @abstractmethod
    def create_dataset(self, name: str, properties: dict[str, str]) -> None: ...

    @abstractmethod
    def get_property(self, dataset: str, prop: str) -> str: ...

    @abstractmethod
    def set_property(self, dataset: str, prop: str, value: str) -> None: ...


class ZfsPoolTool(PoolTool):
    """Handles ZFS pool and dataset operations"""

    def __init__(self, reporter: ExecutionReporter | None = None):
        self.reporter = reporter or ExecutionReporter()

    def pool_exists(self, pool: str) -> bool:
        try:
            SysCommand(f"zpool list -H -o name {pool}")
            return True
        except SysCallError:
            return False

    def pool_members(self, pool: str) -> list[str]:
        try:
            output = SysCommand(f"zpool status -P {pool}").decode()
        except SysCallError:
            return []
        # Leaf vdev rows are the only config rows that start with a full path
        members = []
        for line in output.splitlines():
            fields = line.split()
            if fields and fields[0].startswith("/"):
                members.append(fields[0])
        return members

    def in_use_by(self, device: Path) -> str | None:
        holders = SYSFS_BLOCK / device.resolve().name / "holders"
        if holders.is_dir():
            names = sorted(holder.name for holder in holders.iterdir())
            if names:
                return f"held by {', '.join(names)}"

        try:
            signature = SysCommand(f"blkid -p -o value -s TYPE {device}").decode().strip()
        except SysCallError:
            # blkid exits 2 when no signature is found
            return None
        if signature == "zfs_member":
            return "carries a ZFS pool label"
        if signature:
            return f"carries a {signature} signature"
        return None

    def create_pool(self, pool: str, vdevs: list[str], altroot: Path) -> None:
        """Creates a new ZFS pool with the default options"""
        options = [f"-o {k}={v}" for k, v in self.DEFAULT_POOL_OPTIONS.items()]
        options += [f"-O {k}={v}" for k, v in self.DEFAULT_FS_OPTIONS.items()]
        options += ["-m none", f"-R {altroot}"]

        self.reporter.debug(f"Creating ZFS pool {pool} on {' '.join(vdevs)}")
        try:
            SysCommand(f"zpool create -f {' '.join(options)} {pool} {' '.join(vdevs)}")
        except SysCallError as e:
            self.reporter.error(f"Failed to create pool: {e!s}")
            raise
        self.reporter.info(f"Created pool {pool}")

    def list_datasets(self, pool: str) -> list[str]:
        try:
            output = SysCommand(f"zfs list -H -o name -r {pool}").decode()
        except SysCallError:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def create_dataset(self, name: str, properties: dict[str, str]) -> None:
        props_str = " ".join(f"-o {k}={v}" for k, v in properties.items())
        self.reporter.debug(f"Creating dataset: {name}")
        try:
            SysCommand(f"zfs create {props_str} {name}")
        except SysCallError as e:
            self.reporter.error(f"Failed to create dataset {name}: {e!s}")
            raise

    def get_property(self, dataset: str, prop: str) -> str:
        return SysCommand(f"zfs get -H -o value {prop} {dataset}").decode().strip()

    def set_property(self, dataset: str, prop: str, value: str) -> None:
        self.reporter.debug(f"Setting {prop}={value} on {dataset}")
        try:
            SysCommand(f"zfs set {prop}={value} {dataset}")
        except SysCallError as e:
            self.reporter.error(f"Failed to set {prop} on {dataset}: {e!s}")
            raise
