"""
dqscan configuration management.

Configuration is resolved from, in increasing priority:
- Default values
- A TOML configuration file
- Environment variables
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, List

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "dqscan"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "dqscan"

_TRUE_VALUES = ("true", "1", "yes", "on")
_SECTIONS = ("scheduler", "retry", "scans", "logging")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the schedule driver and job queue."""

    enabled: bool = True
    check_interval: int = 60  # seconds between driver ticks
    batch_size: int = 5  # due schedules picked up per tick

    # Job queue
    use_queue: bool = False
    max_concurrent_jobs: int = 5
    poll_interval: float = 0.1
    job_max_retries: int = 3
    retry_base_delay: float = 1.0


@dataclass
class RetryConfig:
    """Backoff settings applied to individual scan calls."""

    enabled: bool = True
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


@dataclass
class ScanConfig:
    """Where and how scans are requested from the dashboard API."""

    base_url: str = "http://localhost:3000"
    profiling_endpoint: str = "/api/dq/run-profiling"
    checks_endpoint: str = "/api/dq/run-custom-scan"
    profile_level: str = "BASIC"
    timeout: float = 300.0


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class DQScanConfig:
    """Main configuration container for dqscan."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    scans: ScanConfig = field(default_factory=ScanConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    database_url: str = ""

    def __post_init__(self):
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/dqscan.db"

    @property
    def pid_file(self) -> Path:
        """Location of the scheduler daemon's PID file."""
        return self.data_dir / "scheduler.pid"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "DQSCAN_"
) -> DQScanConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/dqscan/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = DQScanConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def _load_from_file(path: Path, config: DQScanConfig) -> DQScanConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Warning: Failed to load config from {path}: {e}")
        return config

    for section in _SECTIONS:
        if section in data:
            section_obj = getattr(config, section)
            for key, value in data[section].items():
                if hasattr(section_obj, key):
                    setattr(section_obj, key, value)

    if isinstance(config.logging.file, str):
        config.logging.file = Path(config.logging.file)

    # data_dir first so the derived database_url follows it
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        _set_data_dir(config, Path(data["data_dir"]))
    if "database_url" in data:
        config.database_url = data["database_url"]

    return config


def _load_from_env(config: DQScanConfig, prefix: str) -> DQScanConfig:
    """Load configuration from environment variables."""

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        _set_data_dir(config, Path(env_val))
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}CHECK_INTERVAL"):
        config.scheduler.check_interval = int(env_val)
    if env_val := os.environ.get(f"{prefix}BATCH_SIZE"):
        config.scheduler.batch_size = int(env_val)
    if env_val := os.environ.get(f"{prefix}MAX_CONCURRENT_JOBS"):
        config.scheduler.max_concurrent_jobs = int(env_val)
    if env_val := os.environ.get(f"{prefix}USE_QUEUE"):
        config.scheduler.use_queue = env_val.lower() in _TRUE_VALUES

    # Scans
    if env_val := os.environ.get(f"{prefix}SCAN_BASE_URL"):
        config.scans.base_url = env_val

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    return config


def _set_data_dir(config: DQScanConfig, data_dir: Path) -> None:
    """Move data_dir, dragging the default SQLite URL along with it."""
    default_url = f"sqlite:///{config.data_dir}/dqscan.db"
    config.data_dir = data_dir
    if config.database_url == default_url:
        config.database_url = f"sqlite:///{data_dir}/dqscan.db"


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(str(value))


def save_config(config: DQScanConfig, path: Optional[Path] = None) -> None:
    """
    Save configuration to a TOML file.

    Unset optional values are left out so the file loads back unchanged.

    Args:
        config: Configuration to save
        path: Path to save to (default: config.config_dir / config.toml)
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    data = _config_to_dict(config, mask_secrets=False)
    lines = ["# dqscan configuration", ""]
    for key in ("config_dir", "data_dir", "database_url"):
        lines.append(f"{key} = {_toml_value(data[key])}")

    for section in _SECTIONS:
        lines += ["", f"[{section}]"]
        lines += [
            f"{key} = {_toml_value(value)}"
            for key, value in data[section].items()
            if value is not None
        ]

    path.write_text("\n".join(lines) + "\n")


def ensure_directories(config: DQScanConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)


_global_config: Optional[DQScanConfig] = None


def get_config() -> DQScanConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: DQScanConfig) -> None:
    """Set the process-wide configuration."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Forget the process-wide configuration."""
    global _global_config
    _global_config = None


def _validate_url(url: str) -> bool:
    """Validate a URL format."""
    url_pattern = r"^https?://[^\s/$.?#].[^\s]*$"
    return bool(re.match(url_pattern, url))


def validate_config(config: Optional[DQScanConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    def error(field_name: str, message: str) -> None:
        errors.append(ValidationError(field=field_name, message=message, severity="error"))

    scheduler = config.scheduler
    if scheduler.check_interval <= 0:
        error("scheduler.check_interval", "Check interval must be positive")
    if scheduler.batch_size <= 0:
        error("scheduler.batch_size", "Batch size must be positive")
    if scheduler.max_concurrent_jobs <= 0:
        error("scheduler.max_concurrent_jobs", "At least one concurrent job is required")
    if scheduler.poll_interval <= 0:
        error("scheduler.poll_interval", "Poll interval must be positive")
    if scheduler.job_max_retries < 0:
        error("scheduler.job_max_retries", "Job retries cannot be negative")
    if scheduler.retry_base_delay < 0:
        error("scheduler.retry_base_delay", "Retry delay cannot be negative")

    retry = config.retry
    if retry.max_attempts < 1:
        error("retry.max_attempts", "At least one attempt is required")
    if retry.initial_delay < 0:
        error("retry.initial_delay", "Initial delay cannot be negative")
    if retry.max_delay < retry.initial_delay:
        error("retry.max_delay", "Max delay must not be smaller than the initial delay")
    if retry.backoff_multiplier < 1:
        error("retry.backoff_multiplier", "Backoff multiplier must be at least 1")

    if not _validate_url(config.scans.base_url):
        error("scans.base_url", f"Invalid URL format: {config.scans.base_url}")
    if config.scans.timeout <= 0:
        error("scans.timeout", "Scan timeout must be positive")
    for name in ("profiling_endpoint", "checks_endpoint"):
        if not getattr(config.scans, name).startswith("/"):
            error(f"scans.{name}", "Endpoint paths must start with '/'")

    if config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        error("logging.level", f"Unknown log level: {config.logging.level}")

    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))

    return errors


def _config_to_dict(config: DQScanConfig, mask_secrets: bool = True) -> dict[str, Any]:
    """
    Convert configuration to dictionary.

    Args:
        config: Configuration to convert
        mask_secrets: If True, mask credentials embedded in the database URL

    Returns:
        Dictionary with the top-level paths and one mapping per section
    """
    database_url = config.database_url
    if mask_secrets:
        database_url = re.sub(r"://([^:/@]+):([^@]+)@", r"://\1:****@", database_url)

    data: dict[str, Any] = {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": database_url,
    }
    for section in _SECTIONS:
        values = asdict(getattr(config, section))
        data[section] = {
            key: str(value) if isinstance(value, Path) else value
            for key, value in values.items()
        }
    return data


def export_config_json(config: DQScanConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as JSON string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        JSON string representation of config
    """
    return json.dumps(_config_to_dict(config, mask_secrets), indent=2)
