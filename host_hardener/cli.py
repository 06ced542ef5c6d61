"""
Command Line Interface for the host hardener.

A single command that hardens the local Debian/Ubuntu host and prints a
step-by-step report.
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import HardenerConfig, load_config
from .core.errors import ConfigurationError, PrivilegeError, UnsupportedPlatformError
from .core.models import EXIT_FATAL, RunReport, RunStatus
from .core.orchestrator import HostHardener, save_report


console = Console()
err_console = Console(stderr=True)

STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "dim",
    "pending": "yellow",
    "running": "yellow",
}


def setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    """Route package logs to stderr via rich, and optionally to a file."""
    logger = logging.getLogger("host_hardener")
    logger.setLevel(logging.DEBUG)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = RichHandler(console=err_console, show_path=False, rich_tracebacks=True)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)


@click.command()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(dir_okay=False), help="Path to YAML configuration file")
@click.option('--verbose', '-v', is_flag=True, help="Enable verbose output")
@click.option('--log-file', type=click.Path(dir_okay=False), help="Also write a debug log to this file")
@click.option('--output', '-o', type=click.Path(dir_okay=False), help="Save the run report as JSON")
@click.option('--yes', '-y', is_flag=True, help="Do not ask for confirmation")
def cli(config: Optional[str], verbose: bool, log_file: Optional[str],
        output: Optional[str], yes: bool):
    """
    Harden a freshly provisioned Debian/Ubuntu host.

    Enables automatic security updates, the UFW firewall, SSH hardening,
    Fail2Ban, AIDE, ClamAV, rkhunter, AppArmor, auditd and Logwatch, and
    installs a placeholder backup script. Must be run as root.
    """
    try:
        hardener_config = load_config(config)
    except ConfigurationError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(EXIT_FATAL)

    setup_logging(verbose, log_file or hardener_config.log_file)

    if not yes and sys.stdin.isatty():
        console.print(
            "[yellow]Warning: This will make changes to your system configuration![/yellow]\n"
            f"SSH will move to port {hardener_config.ssh_port} with key-only authentication.\n"
            "Make sure your public key is installed before continuing.\n"
        )
        if not click.confirm("Do you want to continue?"):
            console.print("Operation cancelled.")
            return

    hardener = HostHardener(config=hardener_config)

    try:
        report = hardener.run()
    except PrivilegeError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(EXIT_FATAL)
    except UnsupportedPlatformError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]\nDetected: {escape(e.subject or '')}")
        sys.exit(EXIT_FATAL)

    _display_report(report)

    if output:
        path = save_report(report, output)
        console.print(f"\n[green]Report saved to: {path}[/green]")

    if report.status == RunStatus.ABORTED:
        _display_abort(report, hardener_config)
    elif report.degraded:
        _display_degraded(report)
        _display_next_steps(hardener_config)
    else:
        _display_next_steps(hardener_config)

    sys.exit(report.exit_code)


def _display_report(report: RunReport):
    """Display per-step results in table format."""
    table = Table(title="Hardening Steps")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Criticality", style="dim")
    table.add_column("Details", max_width=50)

    for result in report.results:
        color = STATUS_COLORS.get(result.status.value, "white")
        if result.reason:
            details = f"{result.reason}" + (f" [{result.subject}]" if result.subject else "")
        else:
            details = "; ".join(result.notes)

        table.add_row(
            str(result.ordinal),
            result.name,
            f"[{color}]{result.status.value.upper()}[/{color}]",
            result.criticality.value,
            escape(details)
        )

    console.print(table)

    summary = Table(title="Run Summary")
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Status", report.status.value.upper())
    summary.add_row("Succeeded", f"[green]{report.succeeded_steps}[/green]")
    summary.add_row("Failed", f"[red]{report.failed_steps}[/red]" if report.failed_steps else "0")
    summary.add_row("Skipped", str(report.skipped_steps))
    summary.add_row("Not run", str(report.pending_steps))
    console.print(summary)

    if report.snapshots:
        console.print("\n[bold]Snapshots taken:[/bold]")
        for path in report.snapshots:
            console.print(f"  • {path}")


def _display_abort(report: RunReport, config: HardenerConfig):
    """Explain a fatal failure on stderr and point at the SSH rollback copy."""
    failure = report.fatal_failure
    if failure is not None:
        message = (
            f"[bold]Step {failure.ordinal} ({failure.name}) failed[/bold]\n"
            f"Error: {failure.error_kind}\n"
            f"Reason: {escape(failure.reason or '')}\n"
            + (f"Subject: {escape(failure.subject)}\n" if failure.subject else "")
        )
    else:
        message = f"[bold]Run aborted[/bold]\nReason: {escape(report.abort_reason or '')}\n"

    ssh_snapshots = [p for p in report.snapshots if p.startswith(f"{config.sshd_config_path}.bak.")]
    if ssh_snapshots:
        message += f"\nThe original SSH configuration is saved at {ssh_snapshots[0]}"
    else:
        message += (
            "\nAny earlier SSH configuration backup is stored with a timestamp, "
            f"like: {config.sshd_config_path}.bak.<timestamp>"
        )

    err_console.print(Panel(message.rstrip(), title="Hardening Aborted", border_style="red"))


def _display_degraded(report: RunReport):
    err_console.print("\n[yellow]⚠ Hardening completed with degraded steps:[/yellow]")
    for failure in report.failures:
        err_console.print(f"  • {failure.name}: {escape(failure.reason or '')}")


def _display_next_steps(config: HardenerConfig):
    console.print(Panel(
        "[bold]System hardening complete![/bold]\n\n"
        "Key protections applied:\n"
        "  • Unattended security updates\n"
        "  • UFW firewall (default deny inbound)\n"
        f"  • SSH on custom port {config.ssh_port}, key-only auth, protected by Fail2Ban\n"
        "  • AIDE file-integrity monitoring\n"
        "  • ClamAV anti-virus scanner\n"
        "  • rkhunter rootkit checker\n"
        "  • AppArmor in enforcing mode\n"
        "  • auditd + logwatch for auditing & daily logs\n"
        "  • Starter backup script (customise destination)\n\n"
        "Next steps you may want to take:\n"
        f"  • Verify SSH connectivity:   ssh -p {config.ssh_port} user@your-host\n"
        "  • Add any additional UFW rules for services you actually run.\n"
        "  • Schedule regular AIDE / rkhunter scans via cron or systemd timers.\n"
        f"  • Edit DEST_DIR in {config.backup_script_path}.\n"
        f"  • Review {config.sshd_config_path} for any extra hardening options you need.",
        title="Summary",
        border_style="green"
    ))


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
