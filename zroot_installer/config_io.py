from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
import yaml
from archinstall import debug, info

from zroot_installer.errors import ValidationError
from zroot_installer.menu.models import InstallConfiguration

DEFAULT_CONFIG_FILE = "zfs_config.yaml"
LEGACY_CONFIG_KEY = "zfs_configuration"
SECRET_KEYS = {"encryption_password", "user_password"}


def dump_configuration(config: InstallConfiguration) -> str:
    document = config.to_document()
    # to_document already excludes secrets; keep the guarantee local to the writer too
    leaked = SECRET_KEYS & document.keys()
    if leaked:
        raise ValueError(f"Refusing to serialize secret fields: {', '.join(sorted(leaked))}")
    return "---\n" + yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


def parse_configuration(text: str) -> InstallConfiguration:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Configuration is not valid YAML: {e!s}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Configuration must be a mapping, got {type(data).__name__}")

    # Older documents nest everything under a single key
    if LEGACY_CONFIG_KEY in data and isinstance(data[LEGACY_CONFIG_KEY], dict):
        data = data[LEGACY_CONFIG_KEY]

    if not data.get("selected_drives"):
        raise ValidationError("Configuration lists no selected_drives")

    cleaned: dict[str, Any] = {k: v for k, v in data.items() if k not in SECRET_KEYS}
    try:
        return InstallConfiguration.from_document(cleaned)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid configuration: {e}") from e


def save_configuration(config: InstallConfiguration, dest: Path) -> Path:
    """Write the audit/replay document for `config` to `dest`."""
    if dest.is_dir():
        dest = dest / DEFAULT_CONFIG_FILE
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(dump_configuration(config))
    info(f"Configuration has been saved to: {dest}")
    return dest


def load_configuration(path: Path) -> InstallConfiguration:
    debug(f"Loading configuration from {path}")
    return parse_configuration(path.read_text())
