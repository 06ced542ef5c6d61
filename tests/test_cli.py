"""
Tests for the command line interface.

The orchestrator is patched out; these tests cover option handling,
output and exit codes.
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from host_hardener.cli import cli
from host_hardener.core.errors import PrivilegeError, UnsupportedPlatformError
from host_hardener.core.models import (
    RunReport, RunStatus, StepCriticality, StepResult, StepStatus
)


def make_report(status=RunStatus.COMPLETED, results=(), snapshots=(), aborted_by=None):
    report = RunReport(run_id="test-run", status=status, results=list(results),
                       snapshots=list(snapshots), aborted_by=aborted_by)
    report.calculate_summary()
    return report


def result(ordinal, name, status=StepStatus.SUCCEEDED, criticality=StepCriticality.FATAL, **kwargs):
    return StepResult(name=name, ordinal=ordinal, title=name, criticality=criticality,
                      status=status, **kwargs)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def hardener():
    with patch('host_hardener.cli.HostHardener') as hardener_class:
        yield hardener_class.return_value


class TestCli:
    """Test the hardening command."""

    def test_clean_run(self, runner, hardener):
        hardener.run.return_value = make_report(results=[result(1, "firewall")])

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 0
        assert "Hardening Steps" in outcome.output
        assert "firewall" in outcome.output
        assert "System hardening complete!" in outcome.output
        assert "ssh -p 2222" in outcome.output

    def test_degraded_run(self, runner, hardener):
        hardener.run.return_value = make_report(results=[
            result(1, "firewall"),
            result(2, "antivirus", StepStatus.FAILED, StepCriticality.DEGRADED_CONTINUE,
                   error_kind="command_error", reason="freshclam exited with 1"),
        ])

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 2
        assert "degraded steps" in outcome.output
        assert "freshclam exited with 1" in outcome.output

    def test_aborted_run(self, runner, hardener):
        hardener.run.return_value = make_report(
            status=RunStatus.ABORTED,
            aborted_by="remote-access",
            results=[
                result(1, "firewall"),
                result(2, "remote-access", StepStatus.FAILED, error_kind="verification_failed",
                       reason="ssh.service is not listening on port 2222",
                       subject="ssh.service"),
                result(3, "brute-force-ban", StepStatus.PENDING),
            ],
            snapshots=["/etc/ssh/sshd_config.bak.1700000000"],
        )

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 1
        assert "Hardening Aborted" in outcome.output
        assert "verification_failed" in outcome.output
        assert "/etc/ssh/sshd_config.bak.1700000000" in outcome.output
        assert "System hardening complete!" not in outcome.output

    def test_aborted_without_ssh_snapshot(self, runner, hardener):
        hardener.run.return_value = make_report(
            status=RunStatus.ABORTED,
            aborted_by="package-index",
            results=[result(1, "package-index", StepStatus.FAILED,
                            error_kind="package_install_error",
                            reason="Failed to refresh the package index")],
        )

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 1
        assert ".bak.<timestamp>" in outcome.output

    def test_not_root(self, runner, hardener):
        hardener.run.side_effect = PrivilegeError("This tool must be run as root. Please use sudo.")

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 1
        assert "must be run as root" in outcome.output

    def test_unsupported_platform(self, runner, hardener):
        hardener.run.side_effect = UnsupportedPlatformError("Unsupported platform", subject="dnf")

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 1
        assert "Detected: dnf" in outcome.output

    def test_invalid_config(self, runner, hardener, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("ssh_port: 0\n")

        outcome = runner.invoke(cli, ["--yes", "--config", str(config_file)])

        assert outcome.exit_code == 1
        assert "Invalid configuration" in outcome.output
        hardener.run.assert_not_called()

    def test_config_passed_to_orchestrator(self, runner, tmp_path):
        config_file = tmp_path / "hardener.yaml"
        config_file.write_text("ssh_port: 2200\n")

        with patch('host_hardener.cli.HostHardener') as hardener_class:
            hardener_class.return_value.run.return_value = make_report()
            outcome = runner.invoke(cli, ["--yes", "-c", str(config_file)])

        assert outcome.exit_code == 0
        assert hardener_class.call_args[1]["config"].ssh_port == 2200

    def test_report_saved(self, runner, hardener, tmp_path):
        hardener.run.return_value = make_report(results=[result(1, "firewall")])
        output_file = tmp_path / "report.json"

        outcome = runner.invoke(cli, ["--yes", "--output", str(output_file)])

        assert outcome.exit_code == 0
        assert output_file.exists()
        assert '"run_id": "test-run"' in output_file.read_text()

    def test_markup_in_details_escaped(self, runner, hardener):
        hardener.run.return_value = make_report(results=[
            result(1, "file-integrity", StepStatus.FAILED, StepCriticality.DEGRADED_CONTINUE,
                   error_kind="command_error", reason="cp of [red]aide.db[/red] failed"),
        ])

        outcome = runner.invoke(cli, ["--yes"])

        assert outcome.exit_code == 2
        assert "[red]aide.db[/red]" in outcome.output

    def test_cancelled_at_prompt(self, runner, hardener):
        with patch('host_hardener.cli.sys') as mock_sys, \
             patch('host_hardener.cli.click.confirm', return_value=False):
            mock_sys.stdin.isatty.return_value = True
            outcome = runner.invoke(cli, [])

        assert outcome.exit_code == 0
        assert "Operation cancelled" in outcome.output
        hardener.run.assert_not_called()

    def test_version(self, runner):
        outcome = runner.invoke(cli, ["--version"])
        assert outcome.exit_code == 0
        assert "1.0.0" in outcome.output
