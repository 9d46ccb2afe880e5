#!/usr/bin/env python3
"""
Capacity Report Configuration and Secrets
Purpose: Load the YAML config and resolve the vCenter password from environment
variables, the secrets file, the config file or an interactive prompt
"""

import getpass
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from capacity_console import log
from capacity_engine import DEFAULT_FAILOVER_COUNTS, CapacityReportError

PROJECT_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_FILE = PROJECT_DIR / "config" / "capacity-report.yaml"

VCENTER_PASSWORD_ENV = "VCENTER_PASSWORD"

REPORT_FORMATS = ("table", "json", "html")

DEFAULT_REPORT_SETTINGS = {
    "failover": list(DEFAULT_FAILOVER_COUNTS),
    "format": "table",
    "powered_on_only": False,
}


class ConfigError(CapacityReportError):
    """Configuration file missing or invalid"""


class SecretsManager:
    """Manage secrets from multiple sources with priority order"""

    def __init__(self, project_dir: Path):
        self.project_dir = project_dir
        self.secrets_file = project_dir / "config" / "capacity-secrets.yaml"
        self._secrets_cache: Optional[Dict[str, Any]] = None

    def get_secret(
        self,
        key: str,
        config_value: Optional[str] = None,
        env_var: Optional[str] = None,
        required: bool = True
    ) -> Optional[str]:
        """
        Get secret value with priority order:
        1. Environment variable (if env_var specified)
        2. Secrets file (capacity-secrets.yaml)
        3. Config file value (if config_value provided)
        4. Prompt user (if required=True)

        Args:
            key: Secret key name in secrets file
            config_value: Value from main config file (fallback)
            env_var: Environment variable name to check
            required: If True, will prompt if not found

        Returns:
            Secret value or None if not found and not required
        """
        if env_var:
            env_value = os.environ.get(env_var)
            if env_value:
                log(f"{key}: using environment variable {env_var}")
                return env_value

        secrets = self._load_secrets_file()
        if secrets and secrets.get(key):
            log(f"{key}: using secrets file {self.secrets_file}")
            return str(secrets[key])

        if config_value:
            log(f"{key}: using config file value")
            return config_value

        if required:
            prompt = f"Enter {key.replace('_', ' ')}: "
            return getpass.getpass(prompt)

        return None

    def _load_secrets_file(self) -> Optional[Dict[str, Any]]:
        """Load secrets from capacity-secrets.yaml (cached)"""
        if self._secrets_cache is not None:
            return self._secrets_cache

        if not self.secrets_file.exists():
            return None

        try:
            with open(self.secrets_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load secrets file {self.secrets_file}: {e}") from e

        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Secrets file {self.secrets_file} must be a YAML mapping")
        self._secrets_cache = loaded or {}
        return self._secrets_cache

    def get_vcenter_password(self, config_value: Optional[str] = None) -> str:
        """Get vCenter password"""
        password = self.get_secret(
            key="vcenter_password",
            config_value=config_value,
            env_var=VCENTER_PASSWORD_ENV,
            required=True
        )
        assert password is not None  # required=True guarantees non-None
        return password

    def has_secrets_file(self) -> bool:
        """Check if secrets file exists"""
        return self.secrets_file.exists()

    def get_secrets_info(self) -> str:
        """Get information about secrets sources"""
        lines = []
        lines.append("Secrets Priority Order:")
        lines.append(f"  1. Environment variable ({VCENTER_PASSWORD_ENV})")
        lines.append("  2. Secrets file (config/capacity-secrets.yaml)")
        lines.append("  3. Config file (config/capacity-report.yaml)")
        lines.append("  4. Interactive prompt")
        lines.append("")

        if self.has_secrets_file():
            lines.append(f"✓ Secrets file found: {self.secrets_file}")
        else:
            lines.append(f"⚠ Secrets file not found: {self.secrets_file}")
            lines.append(f"  Create from: {self.secrets_file}.example")

        lines.append("")
        lines.append("Environment variables:")
        if os.environ.get(VCENTER_PASSWORD_ENV):
            lines.append(f"  ✓ {VCENTER_PASSWORD_ENV} is set")
        else:
            lines.append(f"    {VCENTER_PASSWORD_ENV} not set")

        return "\n".join(lines)


def parse_failover_counts(value: Any) -> List[int]:
    """
    Host-loss counts from a list of ints or a comma-separated string like '1,2'

    Raises ValueError naming the first bad entry.
    """
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
        parts = [part for part in parts if part]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise ValueError(f"expected a list or comma-separated string, got {value!r}")

    counts = []
    for part in parts:
        if isinstance(part, bool):
            raise ValueError(f"invalid failover count: '{part}'")
        try:
            count = int(part)
        except (TypeError, ValueError):
            raise ValueError(f"invalid failover count: '{part}'") from None
        if isinstance(part, float) and part != count:
            raise ValueError(f"invalid failover count: '{part}'")
        if count < 1:
            raise ValueError(f"failover count must be >= 1, got {count}")
        counts.append(count)
    return counts


def _validate_report_settings(report: Dict[str, Any], config_file: Path) -> None:
    try:
        report["failover"] = parse_failover_counts(report["failover"])
    except ValueError as e:
        raise ConfigError(f"Config file {config_file}: invalid report.failover: {e}") from e

    if report["format"] not in REPORT_FORMATS:
        raise ConfigError(
            f"Config file {config_file}: invalid report.format {report['format']!r}, "
            f"expected one of {', '.join(REPORT_FORMATS)}"
        )

    if not isinstance(report["powered_on_only"], bool):
        raise ConfigError(
            f"Config file {config_file}: report.powered_on_only must be true or false"
        )


def load_config(config_file: Path) -> Dict[str, Any]:
    """Load the YAML config and fill in report defaults"""
    if not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config {config_file}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_file} must be a YAML mapping")

    report = dict(DEFAULT_REPORT_SETTINGS)
    report_section = config.get("report") or {}
    if not isinstance(report_section, dict):
        raise ConfigError(f"Config file {config_file}: report must be a YAML mapping")
    report.update(report_section)
    _validate_report_settings(report, config_file)
    config["report"] = report
    return config


def load_config_with_secrets(config_file: Path, project_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load config file and merge with secrets

    The vCenter password placeholder is replaced with the value from the
    highest-priority source. project_dir defaults to the directory above
    the config directory.
    """
    config = load_config(config_file)

    vcenter = config.get("vcenter")
    if not vcenter or not vcenter.get("hostname"):
        raise ConfigError(f"Config file {config_file} has no vcenter.hostname")

    secrets_mgr = SecretsManager(project_dir or config_file.resolve().parent.parent)
    vcenter['password'] = secrets_mgr.get_vcenter_password(vcenter.get('password'))

    return config
