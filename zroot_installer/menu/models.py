from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from zroot_installer.shared import CompressionAlgo, PoolTopology
from zroot_installer.topology import validate
from zroot_installer.utils import is_valid_size
from zroot_installer.zfs import DatasetConfig, build_dataset_tree

SCHEMA_VERSION = 1


class InstallConfiguration(BaseModel):
    """Everything the provisioning pipeline needs, produced once by the wizard.

    The model is frozen. Secrets are held as SecretStr and excluded from every
    dump, so the persisted document can never contain them.
    """

    model_config = ConfigDict(frozen=True)

    pool_name: str = "zroot"
    topology: PoolTopology
    selected_drives: tuple[Path, ...] = Field(min_length=1)

    # Sizing; "0" means remaining space
    swap_size: str = "0"
    root_size: str = "0"
    home_size: str = "0"

    compression: CompressionAlgo = CompressionAlgo.LZ4
    atime: str = "off"
    mountpoint: Path = Path("/mnt")

    encryption_password: SecretStr | None = Field(default=None, exclude=True, repr=False)
    user_password: SecretStr | None = Field(default=None, exclude=True, repr=False)

    # Passed through to the system configuration stage
    hostname: str = "archzfs"
    username: str | None = None
    locale: str = "en_US.UTF-8"
    keymap: str = "us"
    timezone: str = "UTC"

    @field_validator("pool_name")
    @classmethod
    def _validate_pool_name(cls, v: str) -> str:
        if not v or not v.isalnum():
            raise ValueError("Pool name must be alphanumeric")
        return v

    @field_validator("selected_drives")
    @classmethod
    def _validate_drives(cls, v: tuple[Path, ...]) -> tuple[Path, ...]:
        for path in v:
            if not path.is_absolute():
                raise ValueError(f"Drive path {path} must be absolute")
        if len(set(v)) != len(v):
            raise ValueError("Selected drives must be unique")
        return v

    @field_validator("swap_size", "root_size", "home_size", mode="before")
    @classmethod
    def _coerce_size(cls, v: object) -> object:
        # Hand-written documents often say `swap_size: 0`
        return str(v) if isinstance(v, int) else v

    @field_validator("swap_size", "root_size", "home_size")
    @classmethod
    def _validate_size(cls, v: str) -> str:
        if not is_valid_size(v):
            raise ValueError(f"Invalid size '{v}', expected e.g. 0, 512M or 16G")
        return v

    @field_validator("atime")
    @classmethod
    def _validate_atime(cls, v: str) -> str:
        if v not in {"on", "off"}:
            raise ValueError("atime must be 'on' or 'off'")
        return v

    @field_validator("mountpoint")
    @classmethod
    def _validate_mountpoint(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError(f"Path {v} must be absolute")
        return v

    @property
    def encrypted(self) -> bool:
        return bool(self.encryption_password and self.encryption_password.get_secret_value())

    @property
    def datasets(self) -> list[DatasetConfig]:
        return build_dataset_tree(self.root_size, self.home_size)

    def validate_for_install(self) -> list[str]:
        """Return a list of validation errors; empty when valid."""
        errors: list[str] = []

        verdict = validate(self.topology, len(self.selected_drives))
        if not verdict.ok:
            errors.append(f"Topology rejected: {verdict.reason}")

        if self.encryption_password is not None and not self.encryption_password.get_secret_value():
            errors.append("Disk encryption passphrase must not be empty when encryption is enabled")

        return errors

    def to_document(self) -> dict[str, Any]:
        """Serializable form for audit/replay. Never contains secrets."""
        data = self.model_dump(mode="json", exclude_none=True)
        return {
            "schema_version": SCHEMA_VERSION,
            "pool_type": data.pop("topology"),
            "selected_drives": data.pop("selected_drives"),
            **data,
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> InstallConfiguration:
        fields = {k: v for k, v in data.items() if k in cls.model_fields and k not in {"encryption_password", "user_password"}}
        fields["topology"] = data.get("pool_type")
        fields["selected_drives"] = tuple(Path(p) for p in data.get("selected_drives") or ())
        return cls.model_validate(fields)
