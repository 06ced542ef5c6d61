"""
Templates for files the hardener owns outright.

These files are generated whole (unlike existing daemon configuration,
which is edited directive by directive).
"""

from jinja2 import Template

from ..core.config import HardenerConfig


UNATTENDED_UPGRADES_TEMPLATE = Template("""\
// Managed by host-hardener. Local changes are snapshotted and replaced on the next run.
Unattended-Upgrade::Allowed-Origins {
        "${distro_id}:${distro_codename}-security";
};
Unattended-Upgrade::Automatic-Reboot "{{ 'true' if automatic_reboot else 'false' }}";
Unattended-Upgrade::Automatic-Reboot-Time "{{ reboot_time }}";
""", keep_trailing_newline=True)


FAIL2BAN_JAIL_TEMPLATE = Template("""\
# Managed by host-hardener.
[sshd]
enabled = true
port    = {{ ssh_port }}
filter  = sshd
logpath = %(sshd_log)s
maxretry = {{ maxretry }}
bantime = {{ bantime }}
""", keep_trailing_newline=True)


BACKUP_STUB_TEMPLATE = Template("""\
#!/usr/bin/env bash
# Tiny backup wrapper - edit DEST_DIR to point at your real backup location.
set -euo pipefail
SRC_DIR="{{ src_dir }}"
DEST_DIR="{{ dest_dir }}"   # <<< EDIT THIS PATH BEFORE USING!
TIMESTAMP=$(date +"%Y%m%d-%H%M")
ARCHIVE="${DEST_DIR}/backup-${HOSTNAME}-${TIMESTAMP}.tar.gz"

echo "[*] Starting backup of ${SRC_DIR} -> ${ARCHIVE}"
tar --numeric-owner --acls --xattrs -czpf "${ARCHIVE}" "${SRC_DIR}"
echo "[*] Backup finished."
""", keep_trailing_newline=True)


def render_unattended_upgrades(config: HardenerConfig) -> str:
    return UNATTENDED_UPGRADES_TEMPLATE.render(
        automatic_reboot=config.automatic_reboot,
        reboot_time=config.automatic_reboot_time,
    )


def render_fail2ban_jail(config: HardenerConfig) -> str:
    return FAIL2BAN_JAIL_TEMPLATE.render(
        ssh_port=config.ssh_port,
        maxretry=config.fail2ban_maxretry,
        bantime=config.fail2ban_bantime,
    )


def render_backup_stub(config: HardenerConfig) -> str:
    return BACKUP_STUB_TEMPLATE.render(
        src_dir=config.backup_source_dir,
        dest_dir=config.backup_dest_dir,
    )
