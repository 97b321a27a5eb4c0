"""
Configuration wizard.

An explicit state machine over the dialog primitives. Each handler returns
the next state; retries are back-edges to the same or an earlier state and
are listed in TRANSITIONS. The only product is one frozen
InstallConfiguration; cancellation discards every answer collected so far.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import pydantic
from pydantic import SecretStr

from zroot_installer.disk.catalog import BlockDevice, DeviceCatalog
from zroot_installer.errors import Cancelled, EnvironmentPreconditionError, InputMismatchError, ValidationError
from zroot_installer.menu.dialog import Dialog
from zroot_installer.menu.models import InstallConfiguration
from zroot_installer.reporter import ExecutionReporter
from zroot_installer.shared import BusClass, CompressionAlgo, PoolTopology
from zroot_installer.topology import allowed_topologies, validate


class WizardState(Enum):
    START = "start"
    DEVICE_DISCOVERY = "device_discovery"
    DRIVE_SELECTION = "drive_selection"
    TOPOLOGY_CHOICE = "topology_choice"
    PARAMETER_ENTRY = "parameter_entry"
    SECRET_ENTRY = "secret_entry"
    CONFIRMATION = "confirmation"
    CANCELLED = "cancelled"
    READY = "ready"


TRANSITIONS: dict[WizardState, set[WizardState]] = {
    WizardState.START: {WizardState.DEVICE_DISCOVERY},
    # rescan
    WizardState.DEVICE_DISCOVERY: {WizardState.DEVICE_DISCOVERY, WizardState.DRIVE_SELECTION},
    # invalid selection
    WizardState.DRIVE_SELECTION: {WizardState.DRIVE_SELECTION, WizardState.TOPOLOGY_CHOICE},
    # rejected topology, back to drive selection
    WizardState.TOPOLOGY_CHOICE: {WizardState.TOPOLOGY_CHOICE, WizardState.DRIVE_SELECTION, WizardState.PARAMETER_ENTRY},
    WizardState.PARAMETER_ENTRY: {WizardState.SECRET_ENTRY},
    # one secret sub-state per pass, mismatch repeats it
    WizardState.SECRET_ENTRY: {WizardState.SECRET_ENTRY, WizardState.CONFIRMATION},
    WizardState.CONFIRMATION: {WizardState.READY, WizardState.CANCELLED},
}

BACK = "__back__"
CONTINUE = "__continue__"

PARAMETER_FIELDS: list[tuple[str, str]] = [
    ("pool_name", "Pool name"),
    ("swap_size", "Swap size"),
    ("root_size", "Root dataset quota"),
    ("home_size", "Home dataset quota"),
    ("compression", "Compression"),
    ("atime", "Access time updates"),
    ("hostname", "Hostname"),
    ("username", "Primary user"),
    ("locale", "Locale"),
    ("keymap", "Keymap"),
    ("timezone", "Timezone"),
]


@dataclass(frozen=True)
class DeviceRequirement:
    """Host policy: at least `minimum` selected devices on `bus`."""

    bus: BusClass
    minimum: int

    @classmethod
    def parse(cls, value: str) -> DeviceRequirement:
        """Parse `BUS:COUNT`, e.g. `nvme:2`."""
        bus, _, count = value.partition(":")
        try:
            return cls(BusClass(bus.strip().lower()), int(count))
        except ValueError as e:
            raise ValueError(f"Invalid device requirement '{value}', expected BUS:COUNT") from e

    def check(self, devices: list[BlockDevice]) -> str | None:
        matching = sum(1 for d in devices if d.bus == self.bus)
        if matching < self.minimum:
            return f"At least {self.minimum} {self.bus.value} device(s) required, {matching} selected"
        return None


@dataclass
class WizardAnswers:
    """Ephemeral answer storage, discarded on cancellation."""

    devices: list[BlockDevice] = field(default_factory=list)
    selected: list[BlockDevice] = field(default_factory=list)
    topology: PoolTopology | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    encrypt: bool | None = None
    encryption_password: str | None = None
    user_password: str | None = None

    def clear(self) -> None:
        self.devices.clear()
        self.selected.clear()
        self.topology = None
        self.parameters.clear()
        self.encrypt = None
        self.encryption_password = None
        self.user_password = None


def default_parameters(seed: InstallConfiguration | None = None) -> dict[str, Any]:
    if seed is not None:
        return {name: getattr(seed, name) for name, _ in PARAMETER_FIELDS}
    return {name: InstallConfiguration.model_fields[name].default for name, _ in PARAMETER_FIELDS}


class ConfigurationWizard:
    def __init__(
        self,
        catalog: DeviceCatalog,
        dialog: Dialog,
        reporter: ExecutionReporter | None = None,
        requirement: DeviceRequirement | None = None,
        seed: InstallConfiguration | None = None,
        mountpoint: Path = Path("/mnt"),
    ):
        self.catalog = catalog
        self.dialog = dialog
        self.reporter = reporter or ExecutionReporter()
        self.requirement = requirement
        self.seed = seed
        self.mountpoint = mountpoint
        self.answers = WizardAnswers()
        self.state = WizardState.START

        self._handlers = {
            WizardState.START: self._start,
            WizardState.DEVICE_DISCOVERY: self._discover_devices,
            WizardState.DRIVE_SELECTION: self._select_drives,
            WizardState.TOPOLOGY_CHOICE: self._choose_topology,
            WizardState.PARAMETER_ENTRY: self._enter_parameters,
            WizardState.SECRET_ENTRY: self._enter_secrets,
            WizardState.CONFIRMATION: self._confirm,
        }

    def run(self) -> InstallConfiguration:
        """Drive the state machine to READY, or raise Cancelled."""
        self.state = WizardState.START
        try:
            while self.state not in (WizardState.READY, WizardState.CANCELLED):
                next_state = self._handlers[self.state]()
                if next_state not in TRANSITIONS[self.state]:
                    raise RuntimeError(f"Illegal wizard transition {self.state.value} -> {next_state.value}")
                self.reporter.debug(f"Wizard: {self.state.value} -> {next_state.value}")
                self.state = next_state

            if self.state is WizardState.CANCELLED:
                raise Cancelled("Installation was not confirmed")
            return self._build_configuration()
        except (Cancelled, KeyboardInterrupt) as e:
            self.state = WizardState.CANCELLED
            self.reporter.cancelled()
            raise Cancelled(str(e) or "Interrupted") from e
        finally:
            self.answers.clear()

    # States

    def _start(self) -> WizardState:
        self.answers = WizardAnswers(parameters=default_parameters(self.seed))
        if self.seed is not None:
            self.answers.topology = self.seed.topology
            self.reporter.wizard_decision("start", "Seeded from saved configuration")
        return WizardState.DEVICE_DISCOVERY

    def _discover_devices(self) -> WizardState:
        devices = self.catalog.scan()
        if not devices:
            rescan = self.dialog.select("No installable disks found", [("Rescan devices", True), ("Abort", False)])
            if rescan:
                return WizardState.DEVICE_DISCOVERY
            raise EnvironmentPreconditionError("No installable disks found")

        self.answers.devices = devices
        if self.seed is not None and not self.answers.selected:
            for path in self.seed.selected_drives:
                device = self.catalog.find(path, devices)
                if device is None:
                    self.reporter.warn(f"Saved drive {path} is not present, ignoring it")
                elif device not in self.answers.selected:
                    self.answers.selected.append(device)
        return WizardState.DRIVE_SELECTION

    def _select_drives(self) -> WizardState:
        items = [(device.label, str(device.path)) for device in self.answers.devices]
        preselected = [str(device.path) for device in self.answers.selected]
        chosen = self.dialog.checklist("Select drives for the ZFS pool (all data will be destroyed)", items, preselected)

        try:
            selected = self._check_selection(chosen)
        except ValidationError as e:
            self.reporter.wizard_decision("drive_selection", f"Rejected: {e!s}")
            self.dialog.notify(str(e))
            return WizardState.DRIVE_SELECTION

        self.answers.selected = selected
        self.reporter.wizard_decision("drive_selection", "Selected " + ", ".join(str(d.path) for d in selected))
        return WizardState.TOPOLOGY_CHOICE

    def _check_selection(self, chosen: list[str]) -> list[BlockDevice]:
        if not chosen:
            raise ValidationError("Select at least one drive")
        if len(set(chosen)) != len(chosen):
            raise ValidationError("The same drive was selected more than once")

        # Catalog order, not click order
        selected = [device for device in self.answers.devices if str(device.path) in chosen]
        if self.requirement is not None:
            problem = self.requirement.check(selected)
            if problem:
                raise ValidationError(problem)
        return selected

    def _choose_topology(self) -> WizardState:
        count = len(self.answers.selected)
        allowed = allowed_topologies(count)
        items: list[tuple[str, Any]] = [
            (f"{topology.value} - {topology.description}" + ("" if topology in allowed else " [not possible]"), topology)
            for topology in PoolTopology
        ]
        items.append(("Back to drive selection", BACK))

        choice = self.dialog.select(f"Select pool topology for {count} drive(s)", items, self.answers.topology)
        if choice == BACK:
            return WizardState.DRIVE_SELECTION

        verdict = validate(choice, count)
        if not verdict:
            self.reporter.wizard_decision("topology_choice", f"Rejected {choice.value}: {verdict.reason}")
            self.dialog.notify(f"Topology rejected: {verdict.reason}")
            return WizardState.TOPOLOGY_CHOICE

        self.answers.topology = choice
        self.reporter.wizard_decision("topology_choice", f"{choice.value} over {count} drive(s)")
        return WizardState.PARAMETER_ENTRY

    def _enter_parameters(self) -> WizardState:
        params = self.answers.parameters
        while True:
            items: list[tuple[str, Any]] = [(f"{label}: {self._display(params[name])}", name) for name, label in PARAMETER_FIELDS]
            items.append(("Continue", CONTINUE))

            choice = self.dialog.select("Installation parameters", items)
            if choice == CONTINUE:
                error_msg = self._check_parameters(params)
                if error_msg is None:
                    self.reporter.wizard_decision("parameter_entry", f"Pool {params['pool_name']}, compression {self._display(params['compression'])}")
                    return WizardState.SECRET_ENTRY
                self.dialog.notify(error_msg)
                continue

            value = self._edit_parameter(choice, dict(PARAMETER_FIELDS)[choice], params[choice])
            trial = {**params, choice: value}
            error_msg = self._check_parameters(trial)
            if error_msg is not None:
                self.dialog.notify(error_msg)
                continue
            params[choice] = value

    def _edit_parameter(self, name: str, label: str, current: Any) -> Any:
        if name == "compression":
            return self.dialog.select("Select ZFS compression", [(algo.value, algo) for algo in CompressionAlgo], current)
        if name == "atime":
            return self.dialog.select("Access time updates", [("off", "off"), ("on", "on")], current)

        text = self.dialog.text(label, f"Enter {label.lower()}", None if current is None else str(current)).strip()
        if name == "username":
            return text or None
        return text

    def _check_parameters(self, params: dict[str, Any]) -> str | None:
        try:
            InstallConfiguration(
                topology=self.answers.topology or PoolTopology.STRIPE,
                selected_drives=tuple(d.path for d in self.answers.selected) or (Path("/dev/null"),),
                **params,
            )
        except pydantic.ValidationError as e:
            return "; ".join(err["msg"] for err in e.errors())
        return None

    def _enter_secrets(self) -> WizardState:
        answers = self.answers

        if answers.encrypt is None:
            answers.encrypt = self.dialog.select(
                "Encrypt pool members with LUKS?", [("Yes", True), ("No", False)], self.seed is not None and self.seed.encrypted
            )
            self.reporter.wizard_decision("secret_entry", "Encryption enabled" if answers.encrypt else "Encryption disabled")
            return WizardState.SECRET_ENTRY

        if answers.encrypt and answers.encryption_password is None:
            try:
                answers.encryption_password = self._read_secret("Disk encryption passphrase")
            except InputMismatchError as e:
                self.dialog.notify(str(e))
            return WizardState.SECRET_ENTRY

        if answers.parameters.get("username") and answers.user_password is None:
            try:
                answers.user_password = self._read_secret(f"Password for {answers.parameters['username']}")
            except InputMismatchError as e:
                self.dialog.notify(str(e))
            return WizardState.SECRET_ENTRY

        return WizardState.CONFIRMATION

    def _read_secret(self, title: str) -> str:
        first = self.dialog.secret(title, f"Enter {title.lower()}")
        if not first:
            raise InputMismatchError(f"{title} must not be empty")
        second = self.dialog.secret(f"Verify {title.lower()}", "Enter it again")
        if first != second:
            self.reporter.wizard_decision("secret_entry", f"{title}: entries did not match")
            raise InputMismatchError(f"{title}: entries did not match")
        return first

    def _confirm(self) -> WizardState:
        answers = self.answers
        assert answers.topology is not None
        lines = [
            "ALL DATA ON THE FOLLOWING DRIVES WILL BE DESTROYED",
            "",
            f"Pool: {answers.parameters['pool_name']}",
            f"Topology: {answers.topology.value} ({answers.topology.description})",
            f"Encryption: {'LUKS' if answers.encrypt else 'none'}",
            "",
            *(f"  {device.path} ({device.human_size}, {device.model or 'Unknown model'})" for device in answers.selected),
        ]
        confirmed = self.dialog.select("\n".join(lines), [("Yes, install", True), ("No, cancel", False)], False)
        self.reporter.wizard_decision("confirmation", "Confirmed" if confirmed else "Declined")
        return WizardState.READY if confirmed else WizardState.CANCELLED

    def _build_configuration(self) -> InstallConfiguration:
        answers = self.answers
        assert answers.topology is not None
        return InstallConfiguration(
            topology=answers.topology,
            selected_drives=tuple(device.path for device in answers.selected),
            mountpoint=self.mountpoint,
            encryption_password=SecretStr(answers.encryption_password) if answers.encrypt and answers.encryption_password else None,
            user_password=SecretStr(answers.user_password) if answers.user_password else None,
            **answers.parameters,
        )

    @staticmethod
    def _display(value: Any) -> str:
        if value is None:
            return "(not set)"
        if isinstance(value, Enum):
            return str(value.value)
        return str(value)
