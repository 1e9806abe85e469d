"""Configuration loading and validation.

Values are layered: built-in defaults, then an optional YAML file, then
environment variables.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from encoderctl.core.errors import ConfigError, InvalidRecordError
from encoderctl.core.model import MAX_EPOCH_SECONDS, BusyPolicy

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ENCODERCTL_CONFIG"


@dataclass(frozen=True)
class CloudSettings:
    base_url: str = "https://euapi.ttlock.com/v3"
    client_id: str = ""
    client_secret: str = ""
    timeout_s: float = 30.0


@dataclass(frozen=True)
class EncoderSettings:
    bridge_command: tuple[str, ...] = ("CardEncoderBridge.exe",)
    default_port: str = "COM3"
    connection_timeout_s: float = 10.0
    command_timeout_s: float = 10.0
    retry_attempts: int = 3
    retry_delay_s: float = 1.0
    busy_policy: BusyPolicy = BusyPolicy.QUEUE


@dataclass(frozen=True)
class CardSettings:
    default_expiry_hours: float = 24
    max_expiry_days: float = 30
    default_beep_duration_ms: int = 100
    default_beep_interval_ms: int = 50
    default_beep_count: int = 3

    def expiry_timestamp(self, hours: float | None = None, *, now: float | None = None) -> int:
        """Card expiry as epoch seconds, `hours` from `now`."""
        if hours is None:
            hours = self.default_expiry_hours
        if hours <= 0:
            raise InvalidRecordError("Card expiry must be in the future")
        if hours > self.max_expiry_days * 24:
            raise InvalidRecordError(
                f"Card expiry of {hours:g}h exceeds the maximum of {self.max_expiry_days:g} days"
            )
        start = time.time() if now is None else now
        timestamp = int(start + hours * 3600)
        if timestamp > MAX_EPOCH_SECONDS:
            raise InvalidRecordError("Card expiry does not fit in an unsigned 32-bit timestamp")
        return timestamp


@dataclass(frozen=True)
class ErrorHandlingSettings:
    auto_disconnect_on_error: bool = True
    log_errors: bool = True
    retry_on_connection_error: bool = True


@dataclass(frozen=True)
class EncoderConfig:
    cloud: CloudSettings = field(default_factory=CloudSettings)
    encoder: EncoderSettings = field(default_factory=EncoderSettings)
    card: CardSettings = field(default_factory=CardSettings)
    error_handling: ErrorHandlingSettings = field(default_factory=ErrorHandlingSettings)


# env var -> (section, key, kind)
_ENV_FIELDS: dict[str, tuple[str, str, str]] = {
    "TTLOCK_BASE_URL": ("cloud", "base_url", "str"),
    "TTLOCK_CLIENT_ID": ("cloud", "client_id", "str"),
    "TTLOCK_CLIENT_SECRET": ("cloud", "client_secret", "str"),
    "TTLOCK_TIMEOUT": ("cloud", "timeout_s", "ms"),
    "ENCODER_BRIDGE_COMMAND": ("encoder", "bridge_command", "argv"),
    "ENCODER_DEFAULT_PORT": ("encoder", "default_port", "str"),
    "ENCODER_CONNECTION_TIMEOUT": ("encoder", "connection_timeout_s", "ms"),
    "ENCODER_COMMAND_TIMEOUT": ("encoder", "command_timeout_s", "ms"),
    "ENCODER_RETRY_ATTEMPTS": ("encoder", "retry_attempts", "int"),
    "ENCODER_RETRY_DELAY": ("encoder", "retry_delay_s", "ms"),
    "ENCODER_BUSY_POLICY": ("encoder", "busy_policy", "str"),
    "CARD_DEFAULT_EXPIRY_HOURS": ("card", "default_expiry_hours", "int"),
    "CARD_MAX_EXPIRY_DAYS": ("card", "max_expiry_days", "int"),
    "CARD_DEFAULT_BEEP_DURATION": ("card", "default_beep_duration_ms", "int"),
    "CARD_DEFAULT_BEEP_INTERVAL": ("card", "default_beep_interval_ms", "int"),
    "CARD_DEFAULT_BEEP_COUNT": ("card", "default_beep_count", "int"),
    "AUTO_DISCONNECT_ON_ERROR": ("error_handling", "auto_disconnect_on_error", "bool"),
    "LOG_ERRORS": ("error_handling", "log_errors", "bool"),
    "RETRY_ON_CONNECTION_ERROR": ("error_handling", "retry_on_connection_error", "bool"),
}


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("encoderctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _config_path(path: Path | str | None, env: Mapping[str, str]) -> tuple[Path, bool]:
    """Return the config file to read and whether it must exist."""
    if path is not None:
        return Path(path), True
    if env.get(CONFIG_ENV_VAR):
        return Path(env[CONFIG_ENV_VAR]), True
    xdg_config = Path(env.get("XDG_CONFIG_HOME") or Path.home() / ".config")
    return xdg_config / "encoderctl" / "config.yaml", False


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at root")

    try:
        _load_schema_validator().validate(loaded)
    except ValidationError as exc:
        where = ".".join(str(p) for p in exc.path)
        where = f" ({where})" if where else ""
        raise ConfigError(f"Schema validation failed for {path}{where}: {exc.message}") from exc
    return loaded


def _parse_env_value(name: str, raw: str, kind: str) -> Any:
    if kind == "str":
        return raw
    if kind == "bool":
        return raw != "false"
    if kind == "argv":
        return shlex.split(raw)
    try:
        number = int(raw)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {name} must be an integer, got '{raw}'") from exc
    return number / 1000 if kind == "ms" else number


def _env_overrides(env: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    overrides: dict[str, dict[str, Any]] = {}
    for name, (section, key, kind) in _ENV_FIELDS.items():
        raw = env.get(name)
        if not raw:
            continue
        overrides.setdefault(section, {})[key] = _parse_env_value(name, raw, kind)
    return overrides


def _build_config(doc: dict[str, dict[str, Any]]) -> EncoderConfig:
    encoder = dict(doc["encoder"])
    command = encoder["bridge_command"]
    encoder["bridge_command"] = tuple(shlex.split(command) if isinstance(command, str) else command)
    try:
        encoder["busy_policy"] = BusyPolicy(encoder["busy_policy"])
    except ValueError as exc:
        raise ConfigError(f"Unknown busy policy '{encoder['busy_policy']}' (expected queue or fail)") from exc
    return EncoderConfig(
        cloud=CloudSettings(**doc["cloud"]),
        encoder=EncoderSettings(**encoder),
        card=CardSettings(**doc["card"]),
        error_handling=ErrorHandlingSettings(**doc["error_handling"]),
    )


def validate_config(config: EncoderConfig) -> list[str]:
    errors: list[str] = []

    if not config.cloud.client_id:
        errors.append("TTLock client ID is required")
    if not config.cloud.client_secret:
        errors.append("TTLock client secret is required")
    if not config.cloud.base_url:
        errors.append("TTLock base URL is required")
    if config.cloud.timeout_s <= 0:
        errors.append("TTLock timeout must be greater than 0")

    if not config.encoder.bridge_command:
        errors.append("Bridge command is required")
    if not config.encoder.default_port:
        errors.append("Default encoder port is required")
    if config.encoder.connection_timeout_s <= 0:
        errors.append("Connection timeout must be greater than 0")
    if config.encoder.command_timeout_s <= 0:
        errors.append("Command timeout must be greater than 0")
    if config.encoder.retry_attempts < 0:
        errors.append("Retry attempts must be non-negative")
    if config.encoder.retry_delay_s < 0:
        errors.append("Retry delay must be non-negative")

    if config.card.default_expiry_hours <= 0:
        errors.append("Default expiry hours must be greater than 0")
    if config.card.max_expiry_days <= 0:
        errors.append("Max expiry days must be greater than 0")
    elif config.card.default_expiry_hours > config.card.max_expiry_days * 24:
        errors.append("Default expiry hours must not exceed max expiry days")
    if min(
        config.card.default_beep_duration_ms,
        config.card.default_beep_interval_ms,
        config.card.default_beep_count,
    ) <= 0:
        errors.append("Beep defaults must be greater than 0")

    return errors


def load_config(path: Path | str | None = None, env: Mapping[str, str] | None = None) -> EncoderConfig:
    env = os.environ if env is None else env
    defaults = EncoderConfig()
    doc: dict[str, dict[str, Any]] = {
        "cloud": asdict(defaults.cloud),
        "encoder": asdict(defaults.encoder),
        "card": asdict(defaults.card),
        "error_handling": asdict(defaults.error_handling),
    }

    config_path, required = _config_path(path, env)
    if required or config_path.is_file():
        LOGGER.debug("Loading config file %s", config_path)
        for section, values in _read_yaml(config_path).items():
            doc[section].update(values)

    for section, values in _env_overrides(env).items():
        doc[section].update(values)

    config = _build_config(doc)
    errors = validate_config(config)
    if errors:
        raise ConfigError(f"Invalid configuration: {', '.join(errors)}")
    return config
