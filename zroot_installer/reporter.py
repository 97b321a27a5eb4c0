"""
Progress and failure reporting for the wizard and the pipeline.

Messages go through archinstall's leveled output functions, which print to
the terminal and append to the timestamped install log. Logging is
best-effort: a failing log write never aborts the run.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field

from archinstall import debug, error, info, warn

from zroot_installer.errors import ExternalOperationError


@dataclass
class ReportEvent:
    level: str
    message: str


@dataclass
class ExecutionReporter:
    events: list[ReportEvent] = field(default_factory=list)

    def _emit(self, level: str, writer: Callable[..., None], message: str) -> None:
        self.events.append(ReportEvent(level, message))
        with contextlib.suppress(OSError):
            writer(message)

    def debug(self, message: str) -> None:
        self._emit("debug", debug, message)

    def info(self, message: str) -> None:
        self._emit("info", info, message)

    def warn(self, message: str) -> None:
        self._emit("warn", warn, message)

    def error(self, message: str) -> None:
        self._emit("error", error, message)

    # Wizard
    def wizard_decision(self, state: str, detail: str) -> None:
        self.info(f"[wizard:{state}] {detail}")

    def cancelled(self, reason: str = "Selection cancelled.") -> None:
        self.warn(reason)

    # Pipeline
    def step_started(self, step: str, subject: str | None = None) -> None:
        self.info(f"[{step}] started" + (f" on {subject}" if subject else ""))

    def step_skipped(self, step: str, reason: str) -> None:
        self.info(f"[{step}] skipped: {reason}")

    def step_finished(self, step: str) -> None:
        self.info(f"[{step}] completed")

    def step_failed(self, exc: ExternalOperationError) -> None:
        self.error(f"[{exc.step}] failed with exit status {exc.exit_status}")
        self.error(f"[{exc.step}] command: {exc.command}")
        self.error(f"[{exc.step}] cause: {exc.cause}")

    def fatal(self, message: str) -> None:
        self.error(message)
