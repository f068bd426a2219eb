"""Configuration module: frozen dataclass loaded from YAML, env vars and CLI args."""

import argparse
import os
from dataclasses import dataclass, fields

import yaml

from src.errors import ConfigError

ACK_MODES = ("handoff", "delivery")


@dataclass(frozen=True)
class Config:
    queue_url: str = ""
    region: str = "us-east-1"
    indexing_endpoint: str = ""
    channel_capacity: int = 1
    max_messages: int = 10
    wait_time_seconds: int = 20
    visibility_timeout: int = 0
    object_timeout: float = 30.0
    delivery_timeout: float = 10.0
    delivery_max_retries: int = 3
    dead_letter_path: str = ""
    ack_mode: str = "handoff"
    ack_timeout: float = 300.0
    shutdown_timeout: float = 30.0
    log_level: str = "INFO"

    def validate(self) -> "Config":
        """Check value ranges. Returns self so calls can be chained."""
        if self.channel_capacity < 1:
            raise ConfigError("channel_capacity must be at least 1")
        if not 1 <= self.max_messages <= 10:
            raise ConfigError("max_messages must be between 1 and 10")
        if not 0 <= self.wait_time_seconds <= 20:
            raise ConfigError("wait_time_seconds must be between 0 and 20")
        if self.visibility_timeout < 0:
            raise ConfigError("visibility_timeout must not be negative")
        if self.delivery_max_retries < 0:
            raise ConfigError("delivery_max_retries must not be negative")
        for name in ("object_timeout", "delivery_timeout", "ack_timeout", "shutdown_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.ack_mode not in ACK_MODES:
            raise ConfigError(
                f"ack_mode must be one of {', '.join(ACK_MODES)}, got {self.ack_mode!r}"
            )
        return self

    def require_endpoints(self) -> "Config":
        """Fail fast when the queue or the indexing endpoint is not configured."""
        missing = [
            name for name in ("queue_url", "indexing_endpoint") if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")
        return self


# field name -> environment variable
ENV_VARS = {
    "queue_url": "QUEUE_URL",
    "region": "AWS_REGION",
    "indexing_endpoint": "INDEXING_ENDPOINT",
    "channel_capacity": "CHANNEL_CAPACITY",
    "max_messages": "MAX_MESSAGES",
    "wait_time_seconds": "WAIT_TIME_SECONDS",
    "visibility_timeout": "VISIBILITY_TIMEOUT",
    "object_timeout": "OBJECT_TIMEOUT",
    "delivery_timeout": "DELIVERY_TIMEOUT",
    "delivery_max_retries": "DELIVERY_MAX_RETRIES",
    "dead_letter_path": "DEAD_LETTER_PATH",
    "ack_mode": "ACK_MODE",
    "ack_timeout": "ACK_TIMEOUT",
    "shutdown_timeout": "SHUTDOWN_TIMEOUT",
    "log_level": "LOG_LEVEL",
}

_FIELD_TYPES = {f.name: f.type for f in fields(Config)}


def _coerce(name: str, value) -> object:
    kind = _FIELD_TYPES[name]
    if isinstance(value, bool):
        raise ConfigError(f"Invalid value for {name}: {value!r} (booleans are not accepted)")
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"Invalid value for {name}: {value!r} (expected an integer)")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r} ({e})") from e


def load_yaml(path: str) -> dict:
    """Load a flat mapping of config field names from a YAML file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    unknown = sorted(set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigError(f"Unknown config key(s) in {path}: {', '.join(unknown)}")

    nested = sorted(k for k, v in data.items() if isinstance(v, (dict, list)))
    if nested:
        raise ConfigError(f"Config key(s) in {path} must be scalars: {', '.join(nested)}")

    # An empty value ("queue_url:") leaves the setting unset
    return {k: v for k, v in data.items() if v is not None}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Forward gzip log objects announced on SQS to an HTTP indexing backend"
    )
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    for name in ENV_VARS:
        flag = "--" + name.replace("_", "-")
        parser.add_argument(flag, dest=name, type=str, default=None)
    return parser


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args (highest priority).

    The YAML file is taken from ``--config`` or the ``CONFIG_PATH`` env var.
    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = _build_parser().parse_args(argv)

    raw: dict = {}
    config_path = args.config or os.environ.get("CONFIG_PATH", "")
    if config_path:
        raw.update(load_yaml(config_path))

    for name, env_var in ENV_VARS.items():
        if env_var in os.environ:
            raw[name] = os.environ[env_var]

    for name in ENV_VARS:
        value = getattr(args, name)
        if value is not None:
            raw[name] = value

    kwargs = {name: _coerce(name, value) for name, value in raw.items()}
    return Config(**kwargs).validate()
