"""
The fixed, ordered hardening step list.

Order matters: the firewall must allow the new SSH port before the SSH
daemon is restarted on it, and the SSH step verifies the daemon is back
up and listening before anything else runs.
"""

import logging
import re
from typing import Dict, List, Optional

from ..core.config import HardenerConfig
from ..core.errors import ConfigAccessError, HardeningError, VerificationFailedError
from ..core.models import Directive, Step, StepCriticality
from ..engine.runner import StepContext
from .templates import render_backup_stub, render_fail2ban_jail, render_unattended_upgrades


logger = logging.getLogger(__name__)

FATAL = StepCriticality.FATAL
DEGRADED = StepCriticality.DEGRADED_CONTINUE

DEFAULT_SSH_PORT = 22
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

SSHD_PROCESS = "sshd"

# sshd -T reports some settings under their current name
EFFECTIVE_KEYWORDS = {"ChallengeResponseAuthentication": "kbdinteractiveauthentication"}


def ssh_directives(config: HardenerConfig) -> List[Directive]:
    """The sshd_config settings enforced by the remote-access step."""
    settings = [
        ("Port", str(config.ssh_port)),
        ("Protocol", "2"),
        ("PermitRootLogin", "no"),
        ("PasswordAuthentication", "no"),
        ("ChallengeResponseAuthentication", "no"),
        ("PubkeyAuthentication", "yes"),
        ("X11Forwarding", "no"),
        ("AllowTcpForwarding", "no"),
        ("MaxAuthTries", "3"),
        ("LogLevel", "VERBOSE"),
    ]
    return [Directive(path=config.sshd_config_path, key=key, value=value) for key, value in settings]


def ufw_allows(status_output: str, rule: str) -> bool:
    """Whether ``ufw status`` output has a line for ``rule`` (e.g. ``22/tcp``)."""
    return re.search(r'^\s*' + re.escape(rule) + r'(\s|$)', status_output, re.MULTILINE) is not None


def write_owned_file(ctx: StepContext, file_path: str, content: str,
                     mode: Optional[int] = None) -> bool:
    """
    Write a file the hardener owns, snapshotting a differing prior version.

    Returns:
        bool: True if the file was written
    """
    try:
        if ctx.state.file_exists(file_path) and ctx.state.read_file(file_path) == content:
            return False
        ctx.snapshots.ensure_snapshot(file_path)
        ctx.state.write_file(file_path, content, mode=mode)
    except (OSError, UnicodeError) as e:
        raise ConfigAccessError(f"Cannot write {file_path}: {e}", path=file_path)
    logger.info("Wrote %s", file_path)
    return True


# 1. Package index

def refresh_package_index(ctx: StepContext) -> None:
    ctx.packages.refresh_index()


# 2. Automatic security updates

def configure_automatic_updates(ctx: StepContext) -> None:
    ctx.packages.install("unattended-upgrades", "apt-listchanges")
    write_owned_file(ctx, ctx.config.unattended_upgrades_path,
                     render_unattended_upgrades(ctx.config))
    ctx.run("dpkg-reconfigure", "-f", "noninteractive", "-plow", "unattended-upgrades",
            env=APT_ENV)


def verify_automatic_updates(ctx: StepContext) -> bool:
    path = ctx.config.unattended_upgrades_path
    return (ctx.state.file_exists(path)
            and ctx.state.read_file(path) == render_unattended_upgrades(ctx.config))


# 3. Firewall

def current_ssh_port(ctx: StepContext) -> Optional[int]:
    """Port sshd is configured for right now, before this run changes it."""
    path = ctx.config.sshd_config_path
    if not ctx.state.file_exists(path):
        return None
    value = ctx.editor.read(path, "Port")
    if value and value.isdigit():
        return int(value)
    return DEFAULT_SSH_PORT


def configure_firewall(ctx: StepContext) -> None:
    port = ctx.config.ssh_port
    previous = current_ssh_port(ctx)

    ctx.packages.install("ufw")
    ctx.run("ufw", "default", "deny", "incoming")
    ctx.run("ufw", "default", "allow", "outgoing")
    ctx.run("ufw", "allow", f"{port}/tcp", "comment", "SSH (custom port)")

    # Keep the port sshd is on now reachable until it has moved
    if previous is not None and previous != port:
        ctx.run("ufw", "allow", f"{previous}/tcp", "comment", "SSH (until port change)")
        ctx.facts["previous_ssh_port"] = previous

    for rule in ctx.config.extra_allowed_ports:
        ctx.run("ufw", "allow", rule)

    ctx.run("ufw", "--force", "enable")


def verify_firewall(ctx: StepContext) -> bool:
    output = ctx.run("ufw", "status")['stdout']
    if "Status: active" not in output:
        raise VerificationFailedError("ufw is not active", subject="ufw")
    if not ufw_allows(output, f"{ctx.config.ssh_port}/tcp"):
        raise VerificationFailedError(
            f"ufw does not allow {ctx.config.ssh_port}/tcp", subject="ufw"
        )
    return True


# 4. Remote access

def harden_remote_access(ctx: StepContext) -> None:
    path = ctx.config.sshd_config_path
    ctx.editor.apply_directives(ssh_directives(ctx.config))

    try:
        ctx.run("sshd", "-t", "-f", path)
    except HardeningError:
        _restore_snapshot(ctx, path)
        raise

    handle = ctx.services.resolve(ctx.config.ssh_service_candidates, logical_name="ssh")
    ctx.services.restart(handle)
    ctx.note(f"SSH restarted on port {ctx.config.ssh_port} (unit: {handle.identity})")


def _restore_snapshot(ctx: StepContext, path: str) -> None:
    snapshot = ctx.snapshots.snapshot_for(path)
    if snapshot is None:
        return
    try:
        ctx.state.write_file(path, ctx.state.read_file(snapshot.path))
    except (OSError, UnicodeError) as e:
        raise ConfigAccessError(
            f"sshd rejected the new configuration and restoring {snapshot.path} failed: {e}",
            path=path
        )
    ctx.note(f"sshd rejected the new configuration; restored {path} from {snapshot.path}")


def effective_sshd_settings(output: str) -> Dict[str, List[str]]:
    """Parse ``sshd -T`` output into lowercased keywords and their values."""
    settings: Dict[str, List[str]] = {}
    for line in output.splitlines():
        keyword, _, value = line.strip().partition(' ')
        if keyword:
            settings.setdefault(keyword.lower(), []).append(value.strip())
    return settings


def verify_remote_access(ctx: StepContext) -> bool:
    path = ctx.config.sshd_config_path
    handle = ctx.services.resolve(ctx.config.ssh_service_candidates, logical_name="ssh")

    if not ctx.services.is_running(handle):
        raise VerificationFailedError(f"{handle.identity} is not running", subject=handle.identity)
    if not ctx.state.is_listening(ctx.config.ssh_port, process=SSHD_PROCESS):
        raise VerificationFailedError(
            f"{handle.identity} is not listening on port {ctx.config.ssh_port}",
            subject=handle.identity
        )

    directives = ssh_directives(ctx.config)
    for directive in directives:
        actual = ctx.editor.read(directive.path, directive.key)
        if actual != directive.value:
            raise VerificationFailedError(
                f"{directive.key} is {actual!r}, expected {directive.value!r}",
                subject=f"{directive.path}: {directive.key}"
            )

    # Drop-ins pulled in by Include can override the main file
    effective = effective_sshd_settings(ctx.run("sshd", "-T", "-f", path)['stdout'])
    for directive in directives:
        keyword = EFFECTIVE_KEYWORDS.get(directive.key, directive.key.lower())
        if keyword not in effective:
            continue
        if directive.value.lower() not in [v.lower() for v in effective[keyword]]:
            raise VerificationFailedError(
                f"Effective {directive.line!r} is overridden by {effective[keyword][0]!r}"
                f" (check files included from {path})",
                subject=f"{directive.path}: {directive.key}"
            )
    return True


# 5. Firewall rule for the old SSH port

def legacy_ssh_port_open(ctx: StepContext) -> bool:
    previous = ctx.facts.get("previous_ssh_port")
    if previous is None or previous == ctx.config.ssh_port:
        return False
    return f"{previous}/tcp" not in ctx.config.extra_allowed_ports


def close_legacy_ssh_port(ctx: StepContext) -> None:
    previous = ctx.facts["previous_ssh_port"]
    ctx.run("ufw", "delete", "allow", f"{previous}/tcp")
    ctx.note(f"Closed former SSH port {previous}/tcp")


def verify_legacy_ssh_port_closed(ctx: StepContext) -> bool:
    previous = ctx.facts["previous_ssh_port"]
    return not ufw_allows(ctx.run("ufw", "status")['stdout'], f"{previous}/tcp")


# 6. Fail2Ban

def configure_fail2ban(ctx: StepContext) -> None:
    ctx.packages.install("fail2ban")
    write_owned_file(ctx, ctx.config.fail2ban_jail_path, render_fail2ban_jail(ctx.config))
    handle = ctx.services.resolve(["fail2ban"])
    ctx.services.enable(handle)
    ctx.services.restart(handle)


def verify_fail2ban(ctx: StepContext) -> bool:
    return ctx.services.is_running(ctx.services.resolve(["fail2ban"]))


# 7. AIDE

def initialise_aide(ctx: StepContext) -> None:
    db_dir = ctx.config.aide_db_dir
    ctx.packages.install("aide")
    ctx.run("aideinit", "-y", "-f")
    ctx.run("cp", f"{db_dir}/aide.db.new", f"{db_dir}/aide.db")
    ctx.note("AIDE database initialized")


def verify_aide(ctx: StepContext) -> bool:
    return ctx.state.file_exists(f"{ctx.config.aide_db_dir}/aide.db")


# 8. ClamAV

def configure_clamav(ctx: StepContext) -> None:
    ctx.packages.install("clamav", "clamav-daemon")

    freshclam = ctx.services.resolve(["clamav-freshclam"])
    # freshclam cannot run while the updater daemon holds its lock
    if ctx.services.is_running(freshclam):
        ctx.note("Signatures are kept current by clamav-freshclam")
    else:
        ctx.run("freshclam")

    ctx.services.enable_now(freshclam)
    ctx.services.enable_now(ctx.services.resolve(["clamav-daemon", "clamd"], logical_name="clamd"))
    ctx.note("ClamAV ready (use clamscan -r /path to scan)")


# 9. rkhunter

def initialise_rkhunter(ctx: StepContext) -> None:
    ctx.packages.install("rkhunter")
    # 2 means new data files were downloaded
    ctx.run("rkhunter", "--update", ok_codes=(0, 2))
    ctx.run("rkhunter", "--propupd")


# 10. AppArmor

def enable_apparmor(ctx: StepContext) -> None:
    ctx.packages.install("apparmor", "apparmor-utils")
    ctx.services.enable_now(ctx.services.resolve(["apparmor"]))


def verify_apparmor(ctx: StepContext) -> bool:
    result = ctx.state.run_command(["aa-status"])
    if result['success'] and "enforce mode" in result['stdout']:
        return True
    raise VerificationFailedError(
        "AppArmor profiles are not fully enforced - check with aa-status",
        subject="apparmor"
    )


# 11. Logwatch

def install_logwatch(ctx: StepContext) -> None:
    ctx.packages.install("logwatch")
    ctx.note("Logwatch installed (daily mail to root)")


# 12. auditd

def enable_auditd(ctx: StepContext) -> None:
    ctx.packages.install("auditd", "audispd-plugins")
    ctx.services.enable_now(ctx.services.resolve(["auditd"]))


def verify_auditd(ctx: StepContext) -> bool:
    return ctx.services.is_running(ctx.services.resolve(["auditd"]))


# 13. Backup stub

def backup_stub_missing(ctx: StepContext) -> bool:
    return not ctx.state.file_exists(ctx.config.backup_script_path)


def install_backup_stub(ctx: StepContext) -> None:
    path = ctx.config.backup_script_path
    write_owned_file(ctx, path, render_backup_stub(ctx.config), mode=0o755)
    ctx.note(f"Backup stub installed at {path} (edit DEST_DIR!)")


def verify_backup_stub(ctx: StepContext) -> bool:
    return ctx.state.file_exists(ctx.config.backup_script_path)


def build_steps() -> List[Step]:
    """Return the hardening steps in execution order."""
    definitions = [
        dict(name="package-index", title="Refresh package index",
             action=refresh_package_index, criticality=FATAL),
        dict(name="automatic-updates", title="Enable unattended security upgrades",
             action=configure_automatic_updates, verify=verify_automatic_updates,
             criticality=FATAL),
        dict(name="firewall", title="Install and configure UFW firewall",
             action=configure_firewall, verify=verify_firewall, criticality=FATAL),
        dict(name="remote-access", title="Harden SSH configuration",
             action=harden_remote_access,
             verify=verify_remote_access, criticality=FATAL, remote_access=True),
        dict(name="firewall-legacy-ssh-port", title="Close the former SSH port",
             precondition=legacy_ssh_port_open, action=close_legacy_ssh_port,
             verify=verify_legacy_ssh_port_closed, criticality=DEGRADED),
        dict(name="brute-force-ban", title="Install Fail2Ban for SSH",
             action=configure_fail2ban, verify=verify_fail2ban, criticality=FATAL),
        dict(name="file-integrity", title="Install AIDE file-integrity monitor",
             action=initialise_aide, verify=verify_aide, criticality=DEGRADED),
        dict(name="antivirus", title="Install ClamAV",
             action=configure_clamav, criticality=DEGRADED),
        dict(name="rootkit-scanner", title="Install rkhunter rootkit scanner",
             action=initialise_rkhunter, criticality=DEGRADED),
        dict(name="mandatory-access-control", title="Enforce AppArmor",
             action=enable_apparmor, verify=verify_apparmor, criticality=DEGRADED),
        dict(name="log-summary", title="Install Logwatch daily summaries",
             action=install_logwatch, criticality=DEGRADED),
        dict(name="audit-daemon", title="Install auditd kernel auditing",
             action=enable_auditd, verify=verify_auditd, criticality=DEGRADED),
        dict(name="backup-stub", title="Install placeholder backup script",
             precondition=backup_stub_missing, action=install_backup_stub,
             verify=verify_backup_stub, criticality=DEGRADED),
    ]
    return [Step(ordinal=index, **definition) for index, definition in enumerate(definitions, 1)]
