"""
Configuration management and loading.

Handles panel credentials, concurrency and over-usage policy settings.
"""

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

import yaml

from vps_carryover.core.errors import ConfigUnavailable


DEFAULT_CONFIG_PATH = "/etc/vps_carryover.yaml"
DEFAULT_PANEL_PORT = 4085
RUN_LOG_NAME = "reset_band.log"
CHANGE_LOG_NAME = "reset_band_changes.log"


class OverUsagePolicy(Enum):
    """What to do when usage exceeded a positive quota."""
    CLAMP = "clamp"
    ALLOW_NEGATIVE = "allow-negative"
    SKIP = "skip"


@dataclass(frozen=True)
class PanelConfig:
    """Complete runtime configuration, built once at startup."""
    host: str = ""
    key: str = ""
    password: str = ""
    api_base: Optional[str] = None
    parallel_jobs: int = 5
    over_usage_policy: OverUsagePolicy = OverUsagePolicy.CLAMP
    page_size: int = 50
    max_pages: int = 1000
    connect_timeout: float = 10.0
    request_timeout: float = 60.0
    retries: int = 0
    verify_tls: bool = True
    log_dir: str = "/root"

    def __post_init__(self):
        """Validate numeric settings."""
        if self.parallel_jobs < 1:
            raise ValueError("parallel_jobs must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.connect_timeout <= 0 or self.request_timeout <= 0:
            raise ValueError("timeouts must be > 0")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")

    @property
    def resolved_api_base(self) -> str:
        """API base URL including credentials."""
        if self.api_base:
            return self.api_base
        return build_api_base(self.host, self.key, self.password)

    @property
    def run_log_path(self) -> Path:
        return Path(self.log_dir) / RUN_LOG_NAME

    @property
    def change_log_path(self) -> Path:
        return Path(self.log_dir) / CHANGE_LOG_NAME

    def with_overrides(self, **overrides: Any) -> "PanelConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {name: value for name, value in overrides.items() if value is not None}
        return replace(self, **changes)


def build_api_base(host: str, key: str, password: str) -> str:
    """Derive the admin API base URL from a panel host.

    Strips any scheme and trailing slash, and appends the default admin port
    when the host does not carry one.

    Args:
        host: Panel host name or IP, optionally with scheme and port
        key: Admin API key
        password: Admin API password

    Returns:
        Base URL ending in the credential query string
    """
    host_clean = host.strip()
    for prefix in ("http://", "https://"):
        if host_clean.startswith(prefix):
            host_clean = host_clean[len(prefix):]
    host_clean = host_clean.rstrip("/")

    if ":" not in host_clean:
        host_clean = f"{host_clean}:{DEFAULT_PANEL_PORT}"

    return (
        f"https://{host_clean}/index.php"
        f"?adminapikey={quote(key, safe='')}&adminapipass={quote(password, safe='')}"
    )


_ALLOWED_KEYS = {
    'host', 'key', 'password', 'api_base', 'parallel_jobs', 'over_usage_policy',
    'page_size', 'max_pages', 'connect_timeout', 'request_timeout', 'retries',
    'verify_tls', 'log_dir',
}


def load_panel_config(path: str) -> PanelConfig:
    """Load and validate panel configuration from a YAML file.

    Strict validation ensures a typo never silently falls back to a default
    that would change quotas on the wrong terms.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated PanelConfig object

    Raises:
        ConfigUnavailable: If the file is missing or credentials are absent
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigUnavailable(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigUnavailable(f"Config file is empty: {path}")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - _ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}
    for name in ('host', 'key', 'password', 'api_base', 'log_dir'):
        if raw_config.get(name) is not None:
            values[name] = str(raw_config[name]).strip()

    for name in ('parallel_jobs', 'page_size', 'max_pages', 'retries'):
        if raw_config.get(name) is not None:
            values[name] = _parse_int(raw_config[name], name)

    for name in ('connect_timeout', 'request_timeout'):
        if raw_config.get(name) is not None:
            value = raw_config[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{name}' must be a number")
            values[name] = float(value)

    if raw_config.get('verify_tls') is not None:
        if not isinstance(raw_config['verify_tls'], bool):
            raise ValueError("'verify_tls' must be true or false")
        values['verify_tls'] = raw_config['verify_tls']

    if raw_config.get('over_usage_policy') is not None:
        values['over_usage_policy'] = parse_over_usage_policy(raw_config['over_usage_policy'])

    if not values.get('api_base'):
        values.pop('api_base', None)
        missing = [name for name in ('host', 'key', 'password') if not values.get(name)]
        if missing:
            raise ConfigUnavailable(f"Missing required credentials: {', '.join(missing)}")

    return PanelConfig(**values)


def parse_over_usage_policy(value: Any) -> OverUsagePolicy:
    """Parse an over-usage policy name.

    Raises:
        ValueError: If the value is not a known policy
    """
    if isinstance(value, OverUsagePolicy):
        return value
    if not isinstance(value, str):
        raise ValueError("'over_usage_policy' must be a string")
    try:
        return OverUsagePolicy(value.strip().lower())
    except ValueError:
        valid = [policy.value for policy in OverUsagePolicy]
        raise ValueError(f"'over_usage_policy' must be one of: {valid}")


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{name}' must be an integer")
    return value


DEFAULT_CONFIG_TEMPLATE = """\
# Panel host (IP or name, port 4085 is used when none is given)
host: ""
key: ""
password: ""
# Optional: full API base URL override, credentials included
api_base: ""
# Number of servers processed concurrently
parallel_jobs: 5
# clamp | allow-negative | skip
over_usage_policy: clamp
"""


def write_default_config(path: str) -> bool:
    """Write a default configuration template if none exists.

    Args:
        path: Destination path

    Returns:
        True if a file was written, False if one already existed
    """
    config_path = Path(path)
    if config_path.exists():
        return False
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding='utf-8')
    return True
