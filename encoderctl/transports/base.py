"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol

from encoderctl.core.codec import CommandRequest
from encoderctl.core.model import CredentialInfo


class BridgeTransport(Protocol):
    async def invoke(self, request: CommandRequest, *, timeout_s: float) -> str:
        """Run one bridge command and return its raw stdout."""


class CloudClient(Protocol):
    async def fetch_credential_info(self) -> CredentialInfo:
        """Fetch fresh hotel credential material."""

    async def fetch_server_time(self) -> int:
        """Fetch the cloud service's current time in epoch seconds."""
