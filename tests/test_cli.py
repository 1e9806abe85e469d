from __future__ import annotations

from contextlib import asynccontextmanager

from typer.testing import CliRunner

from encoderctl import cli
from encoderctl.core.config import EncoderConfig
from encoderctl.core.errors import DeviceError
from encoderctl.core.model import CardDataRecord, CredentialInfo, EncoderVersion, Opaque, Structured

CARD = CardDataRecord(card_number="12345678", card_id="CID-1", hotel_array="0A0B")


class FakeSession:
    def __init__(self) -> None:
        self.beeps: list[tuple[int, int, int]] = []

    async def beep(self, voice_len: int, interval: int, voice_count: int) -> None:
        self.beeps.append((voice_len, interval, voice_count))

    async def get_version(self):
        return Structured(EncoderVersion(firmware="1.2", hardware="B", protocol="3"))

    async def read_cancellation_info(self):
        return Opaque("garbled")

    async def clear_card(self) -> None:
        raise DeviceError(101, "clearcard")

    async def config_server(self, url: str) -> bool:
        return url.startswith("https://")


class FakeClient:
    def __init__(self) -> None:
        self.config = EncoderConfig()
        self.session = FakeSession()
        self.encoded = []
        self.ports: list[str | None] = []

    async def hotel_info(self) -> CredentialInfo:
        return CredentialInfo(hotel_id="H1", hotel_name="Hotel One", payload="P", fetched_at=0.0)

    async def server_time(self) -> int:
        return 1700000000

    async def encode_card(self, access, *, port=None) -> CardDataRecord:
        self.encoded.append((access, port))
        return CARD

    async def read_card(self, *, port=None) -> CardDataRecord:
        self.ports.append(port)
        return CARD

    @asynccontextmanager
    async def connected(self, port=None):
        self.ports.append(port)
        yield self.session


runner = CliRunner()


def _install(monkeypatch) -> FakeClient:
    client = FakeClient()
    monkeypatch.setattr(cli, "_build_client", lambda ctx: client)
    return client


def test_hotel_info_command(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(cli.app, ["hotel-info"])
    assert result.exit_code == 0
    assert "Hotel: Hotel One (id H1)" in result.stdout


def test_server_time_command(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(cli.app, ["server-time"])
    assert result.exit_code == 0
    assert "1700000000" in result.stdout


def test_encode_command_uses_explicit_timestamp(monkeypatch) -> None:
    client = _install(monkeypatch)
    result = runner.invoke(
        cli.app,
        [
            "encode",
            "--build", "1",
            "--floor", "2",
            "--mac", "A1B2C3D4E5F6",
            "--timestamp", "1700086400",
            "--allow-lockout",
            "--port", "COM7",
        ],
    )
    assert result.exit_code == 0, result.stdout
    assert "Card No: 12345678" in result.stdout
    access, port = client.encoded[0]
    assert access.timestamp == 1700086400
    assert access.allow_lock_out is True
    assert port == "COM7"


def test_encode_command_rejects_bad_mac(monkeypatch) -> None:
    client = _install(monkeypatch)
    result = runner.invoke(cli.app, ["encode", "--build", "1", "--floor", "2", "--mac", "xyz", "--hours", "2"])
    assert result.exit_code == 1
    assert "Error: MAC must be 12 hex characters" in result.stderr
    assert client.encoded == []


def test_encode_command_rejects_expiry_beyond_maximum(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(
        cli.app, ["encode", "--build", "1", "--floor", "2", "--mac", "A1B2C3D4E5F6", "--hours", "10000"]
    )
    assert result.exit_code == 1
    assert "exceeds the maximum" in result.stderr


def test_read_command(monkeypatch) -> None:
    client = _install(monkeypatch)
    result = runner.invoke(cli.app, ["read"])
    assert result.exit_code == 0
    assert "Hotel Array: 0A0B" in result.stdout
    assert client.ports == [None]


def test_version_command(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(cli.app, ["version", "--port", "COM3"])
    assert result.exit_code == 0
    assert "firmware=1.2 hardware=B protocol=3" in result.stdout


def test_beep_command_uses_configured_defaults(monkeypatch) -> None:
    client = _install(monkeypatch)
    result = runner.invoke(cli.app, ["beep", "--count", "5"])
    assert result.exit_code == 0
    assert client.session.beeps == [(100, 50, 5)]


def test_cancellations_command_degrades_on_garbage(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(cli.app, ["cancellations"])
    assert result.exit_code == 0
    assert "No cancellations" in result.stdout
    assert "Warning: unparseable cancellation info: garbled" in result.stderr


def test_device_error_is_clean(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(cli.app, ["clear"])
    assert result.exit_code == 1
    assert "Error: clearcard failed with code 101 (CARD_MISPLACED)" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_config_server_command_reports_failure(monkeypatch) -> None:
    _install(monkeypatch)
    result = runner.invoke(cli.app, ["config-server", "http://insecure"])
    assert result.exit_code == 1
    assert "Server configured: False" in result.stdout


def test_config_error_is_clean(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("TTLOCK_CLIENT_ID", raising=False)
    monkeypatch.delenv("TTLOCK_CLIENT_SECRET", raising=False)
    monkeypatch.delenv("ENCODERCTL_CONFIG", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    result = runner.invoke(cli.app, ["hotel-info"])
    assert result.exit_code == 1
    assert "Error: Invalid configuration" in result.stderr
