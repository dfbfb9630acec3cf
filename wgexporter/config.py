"""Configuration management for wgexporter."""

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# Default paths
CONFIG_DIR = Path("/etc/wireguard-exporter")
CONFIG_FILE = CONFIG_DIR / "config.yaml"
CONFIG_ENV = "WGEXPORTER_CONFIG"
STATE_FILE = Path("/var/lib/wireguard-exporter/state")
FALLBACK_STATE_FILE = Path("/tmp/wireguard-exporter-state")

# Environment variable -> config field
ENV_KEYS = {
    "WIREGUARD_INTERFACE": "interface",
    "WIREGUARD_DOCKER_CONTAINER": "docker_container",
    "METRICS_PREFIX": "metrics_prefix",
    "LISTEN_ADDRESS": "listen_address",
    "LISTEN_PORT": "listen_port",
    "MAX_CONNECTIONS": "max_connections",
    "TIMEOUT": "timeout",
    "LOG_LEVEL": "log_level",
    "STATE_FILE": "state_file",
    "CACHE_TTL": "cache_ttl",
    "ENABLE_EXTENDED_METRICS": "enable_extended_metrics",
}


class ExporterConfig(BaseModel):
    """Main exporter configuration."""

    interface: str = ""
    docker_container: str = ""
    metrics_prefix: str = Field(default="wireguard", pattern=r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
    listen_address: str = "0.0.0.0"
    listen_port: int = Field(default=9586, ge=0, le=65535)
    max_connections: int = Field(default=10, ge=1)
    timeout: float = Field(default=30, gt=0)
    log_level: str = "INFO"
    state_file: Path = STATE_FILE
    # Advisory only, collections are never cached
    cache_ttl: int = Field(default=60, ge=0)
    enable_extended_metrics: bool = True

    @field_validator("interface", "docker_container", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @property
    def container_mode(self) -> bool:
        return bool(self.docker_container)


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Collect config overrides from environment variables.

    Empty values are kept for the string settings where "" is meaningful
    (interface, container) and ignored for everything else.

    Args:
        environ: Mapping to read, defaults to os.environ

    Returns:
        Dict of config field -> raw string value
    """
    if environ is None:
        environ = os.environ

    data = {}
    for env_key, field in ENV_KEYS.items():
        if env_key not in environ:
            continue
        value = environ[env_key]
        if value == "" and field not in ("interface", "docker_container"):
            continue
        data[field] = value
    return data


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ExporterConfig:
    """Load configuration from YAML file and environment.

    Environment variables take precedence over the file.

    Args:
        path: YAML config path, defaults to $WGEXPORTER_CONFIG or CONFIG_FILE
        environ: Environment mapping, defaults to os.environ

    Returns:
        ExporterConfig object
    """
    if environ is None:
        environ = os.environ
    if path is None:
        path = Path(environ.get(CONFIG_ENV) or CONFIG_FILE)

    config_data: dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Config loaded from {path}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config: {e}")
            config_data = {}

    if not isinstance(config_data, dict):
        logger.warning(f"Ignoring config file {path}: expected a mapping")
        config_data = {}

    config_data.update(config_from_env(environ))

    return ExporterConfig(**config_data)


def resolve_state_file(config: ExporterConfig) -> Path:
    """Return a usable state file path, falling back to /tmp.

    Args:
        config: ExporterConfig object

    Returns:
        Path whose parent directory exists and is writable
    """
    state_dir = config.state_file.parent
    try:
        state_dir.mkdir(parents=True, exist_ok=True)
        if os.access(state_dir, os.W_OK):
            return config.state_file
    except OSError:
        pass

    logger.warning(f"Cannot create state directory {state_dir}, using {FALLBACK_STATE_FILE}")
    return FALLBACK_STATE_FILE


def setup_logging(config: Optional[ExporterConfig] = None) -> logging.Logger:
    """Configure logging.

    Args:
        config: Optional config object

    Returns:
        Logger instance
    """
    if config is None:
        config = load_config()

    level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[logging.StreamHandler()],
        force=True
    )

    return logging.getLogger('wgexporter')
