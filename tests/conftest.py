from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from encoderctl.core.codec import COMMAND_SPECS, Command, CommandRequest
from encoderctl.core.credentials import CredentialCache
from encoderctl.core.errors import CloudError
from encoderctl.core.model import CredentialInfo
from encoderctl.core.session import EncoderSession

PAYLOAD = "HOTEL-PAYLOAD-0001"

DEFAULT_OUTPUT: dict[Command, str] = {
    command: f"{spec.label}: 0" for command, spec in COMMAND_SPECS.items()
}
DEFAULT_OUTPUT.update(
    {
        Command.READ_CARD: "Hotel Array: 0A0B0C",
        Command.GET_CARD_NO: "Card No: 12345678",
        Command.GET_CARD_ID: 'Card ID (JSON): {"id": "CID-1"}',
        Command.GET_VERSION: 'Version: {"firmware": "1.2", "hardware": "B", "protocol": "3"}',
        Command.READ_CANCELLATION_INFO: "Cancellation Info: []",
        Command.CONFIG_SERVER: "Config server result: True",
        Command.GET_SECTORS: "Sectors: 1,2,3",
        Command.READ_SECTOR_RAW_DATA: (
            "Read sector raw data result: 0\n"
            "Block Data: 00-11-22-33-44-55-66-77-88-99-AA-BB-CC-DD-EE-FF\n"
        ),
        Command.GET_CPU_CARD_SUPPORT: "CPU Card Support: 1",
    }
)


class FakeBridge:
    """Records every invocation and replays scripted outcomes per command."""

    def __init__(self) -> None:
        self.calls: list[CommandRequest] = []
        self.scripted: dict[Command, list[str | Exception]] = {}
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    def script(self, command: Command, *outcomes: str | Exception) -> None:
        self.scripted[command] = list(outcomes)

    def commands(self) -> list[str]:
        return [call.command.value for call in self.calls]

    def count(self, command: Command) -> int:
        return sum(1 for call in self.calls if call.command is command)

    async def invoke(self, request: CommandRequest, *, timeout_s: float) -> str:
        self.calls.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            queue = self.scripted.get(request.command)
            outcome: str | Exception = queue.pop(0) if queue else DEFAULT_OUTPUT[request.command]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.active -= 1


class FakeCloud:
    def __init__(self, clock: Callable[[], float] = lambda: 1_000.0) -> None:
        self.clock = clock
        self.calls = 0
        self.error: CloudError | None = None
        self.delay_s = 0.0

    async def fetch_credential_info(self) -> CredentialInfo:
        self.calls += 1
        await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return CredentialInfo(
            hotel_id="H1",
            hotel_name="Hotel One",
            payload=PAYLOAD,
            fetched_at=self.clock(),
        )

    async def fetch_server_time(self) -> int:
        return 1_700_000_000


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def make_session(bridge: FakeBridge, cloud: FakeCloud) -> Callable[..., EncoderSession]:
    def _make(**kwargs) -> EncoderSession:
        kwargs.setdefault("sleep", _no_sleep)
        return EncoderSession(bridge, CredentialCache(cloud, clock=cloud.clock), **kwargs)

    return _make
