"""
Configuration for the host hardener.

Defaults reproduce the stock hardening profile; an optional YAML file
overrides individual values. Tool selection is not configurable.
"""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError


class HardenerConfig(BaseModel):
    """Tunable values used by the hardening step catalog."""
    model_config = ConfigDict(extra='forbid')

    # Remote access
    ssh_port: int = Field(2222, ge=1, le=65535, description="New SSH listening port")
    sshd_config_path: str = "/etc/ssh/sshd_config"
    ssh_service_candidates: List[str] = Field(default_factory=lambda: ["ssh", "sshd"])

    # Firewall
    extra_allowed_ports: List[str] = Field(
        default_factory=list, description="Additional ufw allow rules, e.g. '443/tcp'"
    )

    # Automatic updates
    unattended_upgrades_path: str = "/etc/apt/apt.conf.d/52host-hardener-unattended"
    automatic_reboot: bool = True
    automatic_reboot_time: str = "02:00"

    # Fail2Ban
    fail2ban_jail_path: str = "/etc/fail2ban/jail.local"
    fail2ban_maxretry: int = Field(3, ge=1)
    fail2ban_bantime: str = "1h"

    # AIDE
    aide_db_dir: str = "/var/lib/aide"

    # Backup stub
    backup_script_path: str = "/usr/local/sbin/simple-backup.sh"
    backup_source_dir: str = "/home"
    backup_dest_dir: str = "/mnt/backup"

    # Logging
    log_file: Optional[str] = None

    @field_validator('extra_allowed_ports', mode='before')
    @classmethod
    def validate_ports(cls, v):
        """Each entry is PORT or PORT/PROTO; bare YAML integers are accepted."""
        if not isinstance(v, list):
            return v
        for entry in v:
            port, _, proto = str(entry).partition('/')
            if not port.isdigit() or not 1 <= int(port) <= 65535:
                raise ValueError(f"Invalid port: {entry}")
            if proto and proto not in ("tcp", "udp"):
                raise ValueError(f"Invalid protocol in {entry}")
        return [str(entry) for entry in v]

    @field_validator('automatic_reboot_time')
    @classmethod
    def validate_reboot_time(cls, v: str) -> str:
        hours, _, minutes = v.partition(':')
        if not (hours.isdigit() and minutes.isdigit()
                and int(hours) < 24 and int(minutes) < 60):
            raise ValueError(f"Invalid reboot time (HH:MM expected): {v}")
        return v


def load_config(config_path: Optional[str] = None) -> HardenerConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to a YAML file (optional)

    Returns:
        HardenerConfig: Defaults merged with the file's values

    Raises:
        ConfigurationError: If the file is unreadable, not a mapping, or invalid
    """
    if not config_path:
        return HardenerConfig()

    path = Path(config_path)
    try:
        with open(path, 'r') as f:
            user_config = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file: {e}", subject=str(path))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}", subject=str(path))

    if not isinstance(user_config, dict):
        raise ConfigurationError("Configuration file must contain a mapping", subject=str(path))

    try:
        return HardenerConfig(**user_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", subject=str(path))
