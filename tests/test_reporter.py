from unittest.mock import Mock, patch

from zroot_installer.errors import ExternalOperationError
from zroot_installer.reporter import ExecutionReporter


class TestExecutionReporter:
    def test_events_are_recorded(self) -> None:
        reporter = ExecutionReporter()
        reporter.wizard_decision("topology_choice", "mirror over 2 drive(s)")
        reporter.step_started("partition", "/dev/disk/by-id/nvme-A")
        reporter.step_finished("partition")

        assert [(e.level, e.message) for e in reporter.events] == [
            ("info", "[wizard:topology_choice] mirror over 2 drive(s)"),
            ("info", "[partition] started on /dev/disk/by-id/nvme-A"),
            ("info", "[partition] completed"),
        ]

    def test_step_failed_names_step_command_and_status(self) -> None:
        reporter = ExecutionReporter()
        reporter.step_failed(ExternalOperationError("pool_create", "zpool create zroot mirror a b", 1, "no such device"))

        messages = [e.message for e in reporter.events]
        assert all(e.level == "error" for e in reporter.events)
        assert "[pool_create] failed with exit status 1" in messages
        assert "[pool_create] command: zpool create zroot mirror a b" in messages
        assert "[pool_create] cause: no such device" in messages

    @patch("zroot_installer.reporter.warn")
    def test_cancelled_warns(self, mock_warn: Mock) -> None:
        ExecutionReporter().cancelled()
        mock_warn.assert_called_once_with("Selection cancelled.")

    @patch("zroot_installer.reporter.error")
    def test_log_write_failure_does_not_abort(self, mock_error: Mock) -> None:
        mock_error.side_effect = OSError("read-only file system")
        reporter = ExecutionReporter()

        reporter.fatal("boom")

        assert reporter.events[-1].message == "boom"
