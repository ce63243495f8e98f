"""
Configuration Management for replayfetch

Provides configuration loading from multiple sources:
- Default values
- Configuration files (YAML, TOML, JSON)
- Environment variables
- Command line arguments

Configuration precedence (highest to lowest):
1. Command line arguments
2. Environment variables (REPLAYFETCH_*)
3. Configuration file
4. Default values
"""

import json
import logging
import logging.handlers
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ONE_GIB = 1024 * 1024 * 1024


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass
class DemoUrlServiceConfig:
    """Connection settings for the external demo URL service."""

    base_url: str | None = None
    api_key: str | None = None
    timeout_seconds: float = 60.0

    # Retries apply to transport failures only, never to "no URL yet"
    max_retries: int = 2
    retry_interval_seconds: float = 2.0


@dataclass
class SteamConfig:
    """Steam Web API settings for walking a player's share code chain."""

    api_key: str | None = None
    base_url: str = "https://api.steampowered.com"
    timeout_seconds: float = 30.0
    max_sharecodes_per_run: int = 50


@dataclass
class RateLimitConfig:
    """Request budgets for each rate limited service."""

    demo_url_max_requests: int = 20
    demo_url_window_seconds: int = 60

    steam_api_max_requests: int = 100
    steam_api_window_seconds: int = 300

    # Parser capacity gauge, no time window
    parser_max_concurrent_jobs: int = 3

    poll_interval_seconds: float = 1.0


@dataclass
class StoreConfig:
    """Where the shared rate limit counters live."""

    # redis://host:port/db; None keeps counters in-process
    redis_url: str | None = None
    key_prefix: str = "rate_limit:"


@dataclass
class DownloadConfig:
    """Demo download settings."""

    temp_directory: str | None = None
    max_file_size_bytes: int = ONE_GIB
    timeout_seconds: float = 300.0
    chunk_size_bytes: int = 1024 * 1024

    # Shard probing for share codes that came from the Steam chain
    probe_timeout_seconds: float = 3.0
    probe_shards: list[int] = field(default_factory=lambda: list(range(1, 21)))

    def resolved_temp_directory(self) -> Path:
        if self.temp_directory:
            return Path(self.temp_directory).expanduser()
        return Path(tempfile.gettempdir()) / "replayfetch" / "demos"


@dataclass
class RetentionConfig:
    """Housekeeping for downloaded artifacts."""

    max_age_hours: float = 24.0
    sweep_interval_seconds: float = 3600.0


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


@dataclass
class ReplayFetchConfig:
    """Main configuration container."""

    demo_url_service: DemoUrlServiceConfig = field(default_factory=DemoUrlServiceConfig)
    steam: SteamConfig = field(default_factory=SteamConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Version of the config format
    config_version: str = "1.0"


SECTIONS = (
    "demo_url_service",
    "steam",
    "rate_limits",
    "store",
    "download",
    "retention",
    "logging",
)


# ============================================================================
# Configuration Loading
# ============================================================================


def get_default_config_paths() -> list[Path]:
    """Get the default paths to search for configuration files."""
    paths = []

    # Current directory
    paths.append(Path.cwd() / "replayfetch.yaml")
    paths.append(Path.cwd() / "replayfetch.toml")
    paths.append(Path.cwd() / "replayfetch.json")
    paths.append(Path.cwd() / ".replayfetch.yaml")

    # User home directory
    home = Path.home()
    paths.append(home / ".config" / "replayfetch" / "config.yaml")
    paths.append(home / ".config" / "replayfetch" / "config.toml")
    paths.append(home / ".replayfetch.yaml")

    # XDG config directory
    xdg_config = os.environ.get("XDG_CONFIG_HOME", str(home / ".config"))
    paths.append(Path(xdg_config) / "replayfetch" / "config.yaml")

    return paths


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    import yaml

    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(path) as f:
        return json.load(f)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a file, detecting format from extension."""
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_yaml_config(path)
    elif suffix == ".toml":
        return load_toml_config(path)
    elif suffix == ".json":
        return load_json_config(path)
    else:
        logger.warning(f"Unknown config file format: {suffix}")
        return {}


ENV_MAPPINGS = {
    "REPLAYFETCH_DEMO_URL_SERVICE_BASE_URL": ("demo_url_service", "base_url"),
    "REPLAYFETCH_DEMO_URL_SERVICE_API_KEY": ("demo_url_service", "api_key"),
    "REPLAYFETCH_STEAM_API_KEY": ("steam", "api_key"),
    "REPLAYFETCH_STEAM_MAX_SHARECODES_PER_RUN": ("steam", "max_sharecodes_per_run"),
    "REPLAYFETCH_PARSER_MAX_CONCURRENT_JOBS": ("rate_limits", "parser_max_concurrent_jobs"),
    "REPLAYFETCH_REDIS_URL": ("store", "redis_url"),
    "REPLAYFETCH_TEMP_DIRECTORY": ("download", "temp_directory"),
    "REPLAYFETCH_MAX_FILE_SIZE": ("download", "max_file_size_bytes"),
    "REPLAYFETCH_DOWNLOAD_TIMEOUT": ("download", "timeout_seconds"),
    "REPLAYFETCH_RETENTION_MAX_AGE_HOURS": ("retention", "max_age_hours"),
    "REPLAYFETCH_LOG_LEVEL": ("logging", "level"),
    "REPLAYFETCH_LOG_FILE": ("logging", "file"),
}

# Values that must stay strings even when they look numeric
_STRING_KEYS = {("demo_url_service", "api_key"), ("steam", "api_key")}


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    for env_var, (section, key) in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        if section not in config:
            config[section] = {}

        # Type conversion
        if (section, key) in _STRING_KEYS:
            pass
        elif value.lower() in ("true", "false"):
            value = value.lower() == "true"
        elif value.isdigit():
            value = int(value)
        else:
            try:
                value = float(value)
            except ValueError:
                pass

        config[section][key] = value

    return config


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def dict_to_config(data: dict[str, Any]) -> ReplayFetchConfig:
    """Convert a dictionary to ReplayFetchConfig, ignoring unknown keys."""
    config = ReplayFetchConfig()

    for section in SECTIONS:
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section)
        known = {f.name for f in fields(target)}
        for key, value in values.items():
            if key in known:
                setattr(target, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {section}.{key}")

    return config


def load_config(config_file: Path | None = None, include_env: bool = True) -> ReplayFetchConfig:
    """
    Load configuration from all sources.

    Args:
        config_file: Explicit path to a config file (optional)
        include_env: Whether to include environment variables

    Returns:
        Merged ReplayFetchConfig
    """
    config_data: dict[str, Any] = {}

    # Try to find and load a config file
    if config_file:
        config_data = load_config_file(config_file)
        logger.info(f"Loaded config from: {config_file}")
    else:
        for path in get_default_config_paths():
            if path.exists():
                config_data = load_config_file(path)
                logger.info(f"Loaded config from: {path}")
                break

    # Merge environment variables
    if include_env:
        env_config = load_env_config()
        config_data = merge_configs(config_data, env_config)

    return dict_to_config(config_data)


def config_to_dict(config: ReplayFetchConfig) -> dict[str, Any]:
    """Convert ReplayFetchConfig to a dictionary."""
    return asdict(config)


def configure_logging(config: LoggingConfig) -> None:
    """Apply a LoggingConfig to the root logger."""
    root = logging.getLogger()
    root.setLevel(config.level.upper())

    formatter = logging.Formatter(config.format)
    if not root.handlers:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    if config.file:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file,
            maxBytes=config.file_max_bytes,
            backupCount=config.file_backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


# ============================================================================
# Global Configuration
# ============================================================================

_global_config: ReplayFetchConfig | None = None


def get_config() -> ReplayFetchConfig:
    """Get the global configuration, loading it if necessary."""
    global _global_config

    if _global_config is None:
        _global_config = load_config()

    return _global_config


def set_config(config: ReplayFetchConfig) -> None:
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration to defaults."""
    global _global_config
    _global_config = None


# ============================================================================
# Configuration Templates
# ============================================================================

DEFAULT_CONFIG_YAML = """# replayfetch configuration

# External service that turns a share code into a demo URL
demo_url_service:
  # base_url: http://localhost:3001
  # api_key: change-me
  timeout_seconds: 60
  max_retries: 2
  retry_interval_seconds: 2

# Steam Web API, used to walk a player's share code history
steam:
  # api_key: change-me
  max_sharecodes_per_run: 50

# Request budgets
rate_limits:
  demo_url_max_requests: 20
  demo_url_window_seconds: 60
  steam_api_max_requests: 100
  steam_api_window_seconds: 300
  parser_max_concurrent_jobs: 3

# Shared counter store; leave redis_url unset for a single process
store:
  # redis_url: redis://localhost:6379/0
  key_prefix: "rate_limit:"

download:
  # temp_directory: /var/tmp/replayfetch/demos
  max_file_size_bytes: 1073741824  # 1GiB
  timeout_seconds: 300

retention:
  max_age_hours: 24

logging:
  level: INFO
  # file: /path/to/replayfetch.log
"""


def generate_default_config(path: Path) -> None:
    """Generate a default configuration file."""
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        path.write_text(DEFAULT_CONFIG_YAML)
    elif suffix == ".json":
        with open(path, "w") as f:
            json.dump(config_to_dict(ReplayFetchConfig()), f, indent=2)
    else:
        raise ValueError(f"Unknown config format: {suffix}")

    logger.info(f"Generated default config at: {path}")
