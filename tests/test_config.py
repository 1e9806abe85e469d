from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from encoderctl.core.config import CardSettings, EncoderConfig, load_config, validate_config
from encoderctl.core.errors import ConfigError, InvalidRecordError
from encoderctl.core.model import BusyPolicy

BASE_ENV = {
    "TTLOCK_CLIENT_ID": "cid",
    "TTLOCK_CLIENT_SECRET": "secret",
}


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _env(tmp_path: Path, **extra: str) -> dict[str, str]:
    return {"XDG_CONFIG_HOME": str(tmp_path / "cfg"), **BASE_ENV, **extra}


def test_defaults_with_credentials(tmp_path: Path) -> None:
    config = load_config(env=_env(tmp_path))
    assert config.cloud.base_url == "https://euapi.ttlock.com/v3"
    assert config.cloud.timeout_s == 30.0
    assert config.encoder.default_port == "COM3"
    assert config.encoder.retry_attempts == 3
    assert config.encoder.busy_policy is BusyPolicy.QUEUE
    assert config.card.default_beep_count == 3
    assert config.error_handling.auto_disconnect_on_error is True


def test_env_overrides_with_millisecond_timeouts(tmp_path: Path) -> None:
    env = _env(
        tmp_path,
        TTLOCK_TIMEOUT="5000",
        ENCODER_CONNECTION_TIMEOUT="2500",
        ENCODER_RETRY_DELAY="250",
        ENCODER_RETRY_ATTEMPTS="0",
        ENCODER_BRIDGE_COMMAND="wine 'C:/Program Files/CardEncoderBridge.exe'",
        ENCODER_BUSY_POLICY="fail",
        RETRY_ON_CONNECTION_ERROR="false",
        LOG_ERRORS="no",
    )
    config = load_config(env=env)
    assert config.cloud.timeout_s == 5.0
    assert config.encoder.connection_timeout_s == 2.5
    assert config.encoder.retry_delay_s == 0.25
    assert config.encoder.retry_attempts == 0
    assert config.encoder.bridge_command == ("wine", "C:/Program Files/CardEncoderBridge.exe")
    assert config.encoder.busy_policy is BusyPolicy.FAIL
    assert config.error_handling.retry_on_connection_error is False
    assert config.error_handling.log_errors is True


def test_missing_credentials_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as exc_info:
        load_config(env={"XDG_CONFIG_HOME": str(tmp_path)})
    assert "client ID is required" in str(exc_info.value)
    assert "client secret is required" in str(exc_info.value)


def test_non_integer_env_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="ENCODER_RETRY_ATTEMPTS"):
        load_config(env=_env(tmp_path, ENCODER_RETRY_ATTEMPTS="three"))


def test_unknown_busy_policy_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="busy policy"):
        load_config(env=_env(tmp_path, ENCODER_BUSY_POLICY="drop"))


def test_validate_config_reports_every_problem() -> None:
    base = EncoderConfig()
    config = replace(
        base,
        cloud=replace(base.cloud, client_id="x", client_secret="y", timeout_s=0),
        encoder=replace(base.encoder, connection_timeout_s=-1, retry_attempts=-1),
        card=replace(base.card, default_expiry_hours=0, max_expiry_days=0),
    )
    errors = validate_config(config)
    assert "TTLock timeout must be greater than 0" in errors
    assert "Connection timeout must be greater than 0" in errors
    assert "Retry attempts must be non-negative" in errors
    assert "Default expiry hours must be greater than 0" in errors
    assert "Max expiry days must be greater than 0" in errors


def test_yaml_file_layered_under_env(tmp_path: Path) -> None:
    _write(
        tmp_path / "cfg" / "encoderctl" / "config.yaml",
        """
cloud:
  client_id: file-id
  client_secret: file-secret
encoder:
  bridge_command: ["mono", "Bridge.exe"]
  default_port: COM9
  retry_attempts: 1
error_handling:
  auto_disconnect_on_error: false
""",
    )
    env = {"XDG_CONFIG_HOME": str(tmp_path / "cfg"), "ENCODER_DEFAULT_PORT": "COM1"}
    config = load_config(env=env)
    assert config.cloud.client_id == "file-id"
    assert config.encoder.bridge_command == ("mono", "Bridge.exe")
    assert config.encoder.default_port == "COM1"
    assert config.encoder.retry_attempts == 1
    assert config.error_handling.auto_disconnect_on_error is False


def test_explicit_config_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Could not read config file"):
        load_config(tmp_path / "missing.yaml", env=BASE_ENV)


def test_schema_violation_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "encoder:\n  retry_attempts: lots\n")
    with pytest.raises(ConfigError, match=r"Schema validation failed .*encoder\.retry_attempts"):
        load_config(path, env=BASE_ENV)


def test_unknown_section_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "ui:\n  theme: dark\n")
    with pytest.raises(ConfigError, match="Schema validation failed"):
        load_config(path, env=BASE_ENV)


def test_duplicate_keys_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "dup.yaml", "cloud:\n  client_id: a\n  client_id: b\n")
    with pytest.raises(ConfigError, match="Duplicate key"):
        load_config(path, env=BASE_ENV)


def test_config_path_from_env_var(tmp_path: Path) -> None:
    path = _write(tmp_path / "elsewhere.yaml", "encoder:\n  default_port: /dev/ttyUSB0\n")
    config = load_config(env={**BASE_ENV, "ENCODERCTL_CONFIG": str(path)})
    assert config.encoder.default_port == "/dev/ttyUSB0"


def test_expiry_timestamp_bounds() -> None:
    card = CardSettings(default_expiry_hours=24, max_expiry_days=2)
    assert card.expiry_timestamp(now=1_000_000) == 1_000_000 + 24 * 3600
    assert card.expiry_timestamp(48, now=0) == 48 * 3600
    with pytest.raises(InvalidRecordError):
        card.expiry_timestamp(49, now=0)
    with pytest.raises(InvalidRecordError):
        card.expiry_timestamp(0, now=0)
