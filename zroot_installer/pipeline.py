"""
Provisioning pipeline: partition -> encrypt -> pool create -> dataset create
-> property apply.

Every step checks whether its postcondition already holds before doing
anything destructive, so re-running the installer after an interrupted run
resumes where the previous run stopped. There is no rollback: a failing
step stops the pipeline and leaves the disks as the last successful step
left them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from archinstall.lib.exceptions import SysCallError

from zroot_installer.crypto import EncryptionTool
from zroot_installer.disk.partition import PartitionConfig, PartitionTool
from zroot_installer.errors import ExternalOperationError, InstallerError, ValidationError
from zroot_installer.menu.models import InstallConfiguration
from zroot_installer.reporter import ExecutionReporter
from zroot_installer.topology import require_valid, vdev_layout
from zroot_installer.zfs import DatasetConfig, PoolTool

POOL_MEMBER_PARTITION = 2


@dataclass
class PipelineContext:
    config: InstallConfiguration
    partition_tool: PartitionTool
    encryption_tool: EncryptionTool
    pool_tool: PoolTool
    layout: PartitionConfig
    reporter: ExecutionReporter

    def member_partition(self, disk: Path) -> Path:
        return self.partition_tool.partition_path(disk, POOL_MEMBER_PARTITION)

    def mapping_name(self, index: int) -> str:
        return f"{self.config.pool_name}-crypt{index}"

    def pool_targets(self) -> list[Path]:
        """Per-device pool members: decrypted mappings, or raw partitions."""
        if self.config.encrypted:
            return [self.encryption_tool.mapping_path(self.mapping_name(i)) for i in range(len(self.config.selected_drives))]
        return [self.member_partition(disk) for disk in self.config.selected_drives]

    def dataset_name(self, dataset: DatasetConfig) -> str:
        return f"{self.config.pool_name}/{dataset.name}"

    @property
    def secret(self) -> str:
        assert self.config.encryption_password is not None
        return self.config.encryption_password.get_secret_value()


class ProvisioningStep(ABC):
    """A named pipeline stage with explicit pre- and postconditions.

    A step works on one or more units (a disk, a dataset, or the pool). For
    each unit the pipeline first asks `is_satisfied`; only when the
    postcondition does not hold yet is the precondition checked and `apply`
    run, after which the postcondition must hold.
    """

    name: ClassVar[str]

    def enabled(self, ctx: PipelineContext) -> bool:
        return True

    def units(self, ctx: PipelineContext) -> list[Any]:
        return [None]

    def describe(self, ctx: PipelineContext, unit: Any) -> str:
        return ctx.config.pool_name

    @abstractmethod
    def is_satisfied(self, ctx: PipelineContext, unit: Any) -> bool:
        """Postcondition for `unit` already holds."""

    @abstractmethod
    def check_precondition(self, ctx: PipelineContext, unit: Any) -> str | None:
        """Return a description of the unmet precondition, or None."""

    @abstractmethod
    def operation(self, ctx: PipelineContext, unit: Any) -> str:
        """Human readable form of the operation `apply` performs."""

    @abstractmethod
    def apply(self, ctx: PipelineContext, unit: Any) -> None: ...


class PartitionStep(ProvisioningStep):
    name = "partition"

    def units(self, ctx: PipelineContext) -> list[Path]:
        return list(ctx.config.selected_drives)

    def describe(self, ctx: PipelineContext, unit: Path) -> str:
        return str(unit)

    def is_satisfied(self, ctx: PipelineContext, unit: Path) -> bool:
        return ctx.partition_tool.has_layout(unit, ctx.layout)

    def check_precondition(self, ctx: PipelineContext, unit: Path) -> str | None:
        if unit not in ctx.config.selected_drives:
            return f"{unit} is not part of the selected drive set"
        return None

    def operation(self, ctx: PipelineContext, unit: Path) -> str:
        return (
            f"wipe partition table of {unit}, create EFI partition ({ctx.layout.efi_size}, "
            f"{ctx.layout.efi_partition_type}) and pool partition ({ctx.layout.pool_partition_type})"
        )

    def apply(self, ctx: PipelineContext, unit: Path) -> None:
        ctx.partition_tool.partition(unit, ctx.layout)


class EncryptStep(ProvisioningStep):
    name = "encrypt"

    def enabled(self, ctx: PipelineContext) -> bool:
        return ctx.config.encrypted

    def units(self, ctx: PipelineContext) -> list[tuple[int, Path]]:
        return list(enumerate(ctx.config.selected_drives))

    def describe(self, ctx: PipelineContext, unit: tuple[int, Path]) -> str:
        return str(ctx.member_partition(unit[1]))

    def is_satisfied(self, ctx: PipelineContext, unit: tuple[int, Path]) -> bool:
        index, disk = unit
        return ctx.encryption_tool.is_mapped_from(ctx.mapping_name(index), ctx.member_partition(disk))

    def check_precondition(self, ctx: PipelineContext, unit: tuple[int, Path]) -> str | None:
        index, disk = unit
        if not ctx.partition_tool.has_layout(disk, ctx.layout):
            return f"pool partition {ctx.member_partition(disk)} does not exist"
        backing = ctx.encryption_tool.backing_device(ctx.mapping_name(index))
        if backing is not None:
            return f"mapping {ctx.mapping_name(index)} is already open on {backing}"
        return None

    def operation(self, ctx: PipelineContext, unit: tuple[int, Path]) -> str:
        index, disk = unit
        return f"luksFormat/open {ctx.member_partition(disk)} as {ctx.mapping_name(index)}"

    def apply(self, ctx: PipelineContext, unit: tuple[int, Path]) -> None:
        index, disk = unit
        partition = ctx.member_partition(disk)
        # A header from an interrupted run is reused, not overwritten
        if ctx.encryption_tool.is_encrypted(partition):
            ctx.reporter.info(f"[{self.name}] {partition} already encrypted, opening only")
        else:
            ctx.encryption_tool.format(partition, ctx.secret)
        ctx.encryption_tool.open(partition, ctx.mapping_name(index), ctx.secret)


def same_devices(left: list[Path], right: list[Path]) -> bool:
    """Compare two device lists as multisets of resolved nodes."""
    return sorted(str(p.resolve()) for p in left) == sorted(str(p.resolve()) for p in right)


class PoolCreateStep(ProvisioningStep):
    name = "pool_create"

    def is_satisfied(self, ctx: PipelineContext, unit: None) -> bool:
        if not ctx.pool_tool.pool_exists(ctx.config.pool_name):
            return False
        members = [Path(m) for m in ctx.pool_tool.pool_members(ctx.config.pool_name)]
        return same_devices(members, ctx.pool_targets())

    def check_precondition(self, ctx: PipelineContext, unit: None) -> str | None:
        pool = ctx.config.pool_name
        if ctx.pool_tool.pool_exists(pool):
            members = ctx.pool_tool.pool_members(pool)
            return f"a different pool named {pool} is imported on {', '.join(members) or 'unknown devices'}"

        for index, disk in enumerate(ctx.config.selected_drives):
            if ctx.config.encrypted:
                partition = ctx.member_partition(disk)
                if not ctx.encryption_tool.is_mapped_from(ctx.mapping_name(index), partition):
                    return f"mapping {ctx.mapping_name(index)} is not open on {partition}"
            elif not ctx.partition_tool.has_layout(disk, ctx.layout):
                return f"pool partition {ctx.member_partition(disk)} does not exist"

        for target in ctx.pool_targets():
            usage = ctx.pool_tool.in_use_by(target)
            if usage:
                return f"target {target} is in use: {usage}"
        return None

    def operation(self, ctx: PipelineContext, unit: None) -> str:
        targets = [str(t) for t in ctx.pool_targets()]
        return f"zpool create {ctx.config.pool_name} {' '.join(vdev_layout(ctx.config.topology, targets))}"

    def apply(self, ctx: PipelineContext, unit: None) -> None:
        targets = [str(t) for t in ctx.pool_targets()]
        ctx.pool_tool.create_pool(ctx.config.pool_name, vdev_layout(ctx.config.topology, targets), ctx.config.mountpoint)


class DatasetCreateStep(ProvisioningStep):
    name = "dataset_create"

    def units(self, ctx: PipelineContext) -> list[DatasetConfig]:
        # Tree order lists every parent before its children
        return list(ctx.config.datasets)

    def describe(self, ctx: PipelineContext, unit: DatasetConfig) -> str:
        return ctx.dataset_name(unit)

    def is_satisfied(self, ctx: PipelineContext, unit: DatasetConfig) -> bool:
        return ctx.dataset_name(unit) in ctx.pool_tool.list_datasets(ctx.config.pool_name)

    def check_precondition(self, ctx: PipelineContext, unit: DatasetConfig) -> str | None:
        if not ctx.pool_tool.pool_exists(ctx.config.pool_name):
            return f"pool {ctx.config.pool_name} does not exist"
        parent = ctx.dataset_name(unit).rsplit("/", 1)[0]
        if parent not in ctx.pool_tool.list_datasets(ctx.config.pool_name):
            return f"parent dataset {parent} does not exist"
        return None

    def operation(self, ctx: PipelineContext, unit: DatasetConfig) -> str:
        props = " ".join(f"-o {k}={v}" for k, v in unit.properties.items())
        return f"zfs create {props} {ctx.dataset_name(unit)}"

    def apply(self, ctx: PipelineContext, unit: DatasetConfig) -> None:
        ctx.pool_tool.create_dataset(ctx.dataset_name(unit), dict(unit.properties))


class PropertyApplyStep(ProvisioningStep):
    name = "property_apply"

    @staticmethod
    def wanted(ctx: PipelineContext) -> dict[str, str]:
        return {"compression": ctx.config.compression.value, "atime": ctx.config.atime}

    def is_satisfied(self, ctx: PipelineContext, unit: None) -> bool:
        if not ctx.pool_tool.pool_exists(ctx.config.pool_name):
            return False
        return all(ctx.pool_tool.get_property(ctx.config.pool_name, k) == v for k, v in self.wanted(ctx).items())

    def check_precondition(self, ctx: PipelineContext, unit: None) -> str | None:
        existing = set(ctx.pool_tool.list_datasets(ctx.config.pool_name))
        missing = [ctx.dataset_name(d) for d in ctx.config.datasets if ctx.dataset_name(d) not in existing]
        if missing:
            return f"datasets missing: {', '.join(missing)}"
        return None

    def operation(self, ctx: PipelineContext, unit: None) -> str:
        props = " ".join(f"{k}={v}" for k, v in self.wanted(ctx).items())
        return f"zfs set {props} {ctx.config.pool_name}"

    def apply(self, ctx: PipelineContext, unit: None) -> None:
        for prop, value in self.wanted(ctx).items():
            ctx.pool_tool.set_property(ctx.config.pool_name, prop, value)


DEFAULT_STEPS: list[type[ProvisioningStep]] = [
    PartitionStep,
    EncryptStep,
    PoolCreateStep,
    DatasetCreateStep,
    PropertyApplyStep,
]


@dataclass(frozen=True)
class PipelineResult:
    ran_steps: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    failed_step: str | None = None
    # ValidationError for the pre-run check, ExternalOperationError for a step
    error: InstallerError | None = None

    @property
    def ok(self) -> bool:
        return self.failed_step is None


class ProvisioningPipeline:
    """Runs the provisioning steps strictly in order, one unit at a time"""

    def __init__(
        self,
        partition_tool: PartitionTool,
        encryption_tool: EncryptionTool,
        pool_tool: PoolTool,
        reporter: ExecutionReporter | None = None,
        layout: PartitionConfig | None = None,
        steps: list[ProvisioningStep] | None = None,
    ):
        self.partition_tool = partition_tool
        self.encryption_tool = encryption_tool
        self.pool_tool = pool_tool
        self.reporter = reporter or ExecutionReporter()
        self.layout = layout or PartitionConfig()
        self.steps = steps if steps is not None else [step() for step in DEFAULT_STEPS]

    def execute(self, config: InstallConfiguration) -> PipelineResult:
        ran: list[str] = []
        skipped: list[str] = []

        # Re-check the configuration right before anything destructive
        try:
            require_valid(config.topology, len(config.selected_drives))
            errors = config.validate_for_install()
            if errors:
                raise ValidationError("; ".join(errors))
        except ValidationError as e:
            self.reporter.fatal(f"[validate] configuration rejected: {e!s}")
            return PipelineResult(ran, skipped, "validate", e)

        ctx = PipelineContext(
            config=config,
            partition_tool=self.partition_tool,
            encryption_tool=self.encryption_tool,
            pool_tool=self.pool_tool,
            layout=self.layout,
            reporter=self.reporter,
        )

        for step in self.steps:
            if not step.enabled(ctx):
                self.reporter.step_skipped(step.name, "not enabled for this configuration")
                skipped.append(step.name)
                continue

            try:
                performed = self._run_step(step, ctx)
            except ExternalOperationError as e:
                self.reporter.step_failed(e)
                return PipelineResult(ran, skipped, step.name, e)

            if performed:
                ran.append(step.name)
                self.reporter.step_finished(step.name)
            else:
                skipped.append(step.name)

        self.reporter.info(f"Pool {config.pool_name} provisioned")
        return PipelineResult(ran, skipped)

    def _run_step(self, step: ProvisioningStep, ctx: PipelineContext) -> bool:
        """Run every unit of `step`; return True if any unit did work."""
        performed = False
        for unit in step.units(ctx):
            subject = step.describe(ctx, unit)
            operation = step.operation(ctx, unit)
            try:
                if step.is_satisfied(ctx, unit):
                    self.reporter.step_skipped(step.name, f"{subject} already done")
                    continue

                problem = step.check_precondition(ctx, unit)
                if problem:
                    raise ExternalOperationError(step.name, operation, None, f"precondition not met: {problem}")

                self.reporter.step_started(step.name, subject)
                step.apply(ctx, unit)
                performed = True

                if not step.is_satisfied(ctx, unit):
                    raise ExternalOperationError(step.name, operation, None, f"postcondition not met for {subject}")
            except SysCallError as e:
                raise ExternalOperationError(step.name, operation, e.exit_code, str(e)) from e
            except OSError as e:
                raise ExternalOperationError(step.name, operation, None, str(e)) from e
        return performed
