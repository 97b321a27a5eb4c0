"""
Error taxonomy for the installer.

Wizard-level errors (ValidationError, InputMismatchError) are recovered
locally by looping back to the offending state. Everything raised from the
provisioning pipeline is fatal for the current run.
"""

from __future__ import annotations


class InstallerError(Exception):
    """Base class for all installer errors."""


class ValidationError(InstallerError):
    """Illegal topology/drive-count combination or invalid selection."""


class InputMismatchError(InstallerError):
    """The two entries of a secret did not match."""


class EnvironmentPreconditionError(InstallerError):
    """The host cannot run the installer (privilege, boot mode, tools)."""


class ExternalOperationError(InstallerError):
    """A destructive storage command failed."""

    def __init__(self, step: str, command: str, exit_status: int | None, cause: str) -> None:
        self.step = step
        self.command = command
        self.exit_status = exit_status
        self.cause = cause
        super().__init__(f"Step '{step}' failed (exit status {exit_status}) running: {command}: {cause}")


class Cancelled(InstallerError):  # noqa: N818
    """Operator withdrew from the wizard. Not a failure."""
