import json
import re
from pathlib import Path
from typing import Any

from archinstall import debug, info, warn
from archinstall.lib.exceptions import SysCallError
from archinstall.lib.general import SysCommand
from pydantic import BaseModel, ConfigDict, Field, field_validator

from zroot_installer.errors import EnvironmentPreconditionError
from zroot_installer.shared import BusClass
from zroot_installer.utils import format_iec_size

BY_ID_DIR = Path("/dev/disk/by-id")

# Aliases that name the medium rather than a stable disk path
EXCLUDED_ALIAS_PREFIXES = ("wwn-", "nvme-eui.")
PARTITION_ALIAS = re.compile(r"-part\d+$")

PSEUDO_DEVICE_TYPES = {"loop", "rom"}
PSEUDO_DEVICE_PREFIXES = ("loop", "sr")

LSBLK_COMMAND = "lsblk --json --bytes --nodeps -o NAME,SIZE,TYPE,TRAN,MODEL"


class PersistentIdentifier(BaseModel):
    """Stable alias for a block device, or a synthetic fallback."""

    model_config = ConfigDict(frozen=True)

    name: str
    kernel_name: str
    synthetic: bool = False

    @property
    def path(self) -> Path:
        # The synthetic name has no node on disk, fall back to the kernel path
        if self.synthetic:
            return Path("/dev") / self.kernel_name
        return BY_ID_DIR / self.name

    @classmethod
    def fallback(cls, kernel_name: str) -> "PersistentIdentifier":
        return cls(name=f"disk-{kernel_name}", kernel_name=kernel_name, synthetic=True)


class BlockDevice(BaseModel):
    """One disk visible to the host, as seen by a single catalog scan."""

    model_config = ConfigDict(frozen=True)

    kernel_name: str
    size_bytes: int
    bus: BusClass
    model: str = ""
    identifiers: tuple[PersistentIdentifier, ...] = Field(min_length=1)

    # noinspection PyMethodParameters
    @field_validator("size_bytes")
    def validate_size(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Device size cannot be negative: {v}")
        return v

    @property
    def identifier(self) -> PersistentIdentifier:
        return self.identifiers[0]

    @property
    def path(self) -> Path:
        return self.identifier.path

    @property
    def human_size(self) -> str:
        return format_iec_size(self.size_bytes)

    @property
    def label(self) -> str:
        model = self.model or "Unknown model"
        return f"{self.identifier.name} ({self.human_size} - {model}, {self.bus.value})"


def is_pseudo_device(name: str, dev_type: str | None) -> bool:
    if dev_type in PSEUDO_DEVICE_TYPES:
        return True
    return name.startswith(PSEUDO_DEVICE_PREFIXES)


def classify_bus(name: str, transport: str | None) -> BusClass:
    tran = (transport or "").lower()
    if tran == "usb":
        return BusClass.USB
    if tran == "nvme" or name.startswith("nvme"):
        return BusClass.NVME
    return BusClass.DISK


def is_qualifying_alias(alias: str) -> bool:
    """Whole-device aliases that are neither WWN nor NVMe EUI names."""
    if alias.startswith(EXCLUDED_ALIAS_PREFIXES):
        return False
    return not PARTITION_ALIAS.search(alias)


def select_identifier(kernel_name: str, aliases: list[str]) -> PersistentIdentifier:
    """Pick the persistent identifier for a device.

    Tie-break policy: qualifying aliases are sorted with plain string
    ordering and the first one wins. With no qualifying alias the result is
    the synthetic `disk-<kernelname>` identifier.
    """
    candidates = sorted(a for a in aliases if is_qualifying_alias(a))
    if not candidates:
        return PersistentIdentifier.fallback(kernel_name)
    return PersistentIdentifier(name=candidates[0], kernel_name=kernel_name)


class DeviceCatalog:
    """Point-in-time snapshot of the block devices on the host"""

    def __init__(self, by_id_dir: Path = BY_ID_DIR):
        self.by_id_dir = by_id_dir

    def scan(self) -> list[BlockDevice]:
        """Enumerate disks and resolve their persistent identifiers"""
        debug("Scanning block devices")
        alias_map = self._alias_map()
        devices: list[BlockDevice] = []

        for entry in self._list_block_devices():
            name = str(entry.get("name") or "")
            if not name or is_pseudo_device(name, entry.get("type")):
                debug(f"Skipping pseudo device: {name or entry}")
                continue

            try:
                device = self._build_device(name, entry, alias_map.get(name, []))
            except (TypeError, ValueError) as e:
                warn(f"Excluding device {name}: {e!s}")
                continue

            debug(f"Found disk: {device.label}")
            devices.append(device)

        info(f"Found {len(devices)} available disks")
        return devices

    def find(self, path: Path | str, devices: list[BlockDevice] | None = None) -> BlockDevice | None:
        """Match a saved drive path against a (fresh) scan."""
        wanted = Path(path)
        for device in devices if devices is not None else self.scan():
            if device.path == wanted or any(ident.path == wanted for ident in device.identifiers):
                return device
        return None

    def _build_device(self, name: str, entry: dict[str, Any], aliases: list[str]) -> BlockDevice:
        size = entry.get("size")
        if size is None:
            raise ValueError("size is unknown")

        identifier = select_identifier(name, aliases)
        others = tuple(
            PersistentIdentifier(name=a, kernel_name=name)
            for a in sorted(aliases)
            if is_qualifying_alias(a) and a != identifier.name
        )
        return BlockDevice(
            kernel_name=name,
            size_bytes=int(size),
            bus=classify_bus(name, entry.get("tran")),
            model=(entry.get("model") or "").strip(),
            identifiers=(identifier, *others),
        )

    # noinspection PyMethodMayBeStatic
    def _list_block_devices(self) -> list[dict[str, Any]]:
        try:
            output = SysCommand(LSBLK_COMMAND).decode()
        except SysCallError as e:
            raise EnvironmentPreconditionError(f"Unable to list block devices: {e!s}") from e

        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise EnvironmentPreconditionError(f"Unexpected lsblk output: {e!s}") from e
        return list(data.get("blockdevices", []))

    def _alias_map(self) -> dict[str, list[str]]:
        """Map kernel names to every alias symlink pointing at them"""
        aliases: dict[str, list[str]] = {}
        if not self.by_id_dir.exists():
            warn(f"{self.by_id_dir} does not exist, using synthetic identifiers")
            return aliases

        for path in self.by_id_dir.iterdir():
            if not path.is_symlink():
                continue
            target = path.readlink().name
            aliases.setdefault(target, []).append(path.name)
        return aliases
