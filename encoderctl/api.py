"""Stable public API for building tooling on top of encoderctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from encoderctl.core.config import EncoderConfig, load_config, validate_config
from encoderctl.core.credentials import CredentialCache
from encoderctl.core.errors import (
    AlreadyConnectedError,
    BridgeTimeoutError,
    CloudApiError,
    CloudError,
    CloudTimeoutError,
    CloudTransportError,
    ConfigError,
    CredentialUnavailableError,
    DeviceError,
    DeviceErrorCode,
    EncoderctlError,
    InvalidRecordError,
    MalformedResponseError,
    NotConnectedError,
    OperationTimeoutError,
    SessionBusyError,
    SessionStateError,
    SpawnFailure,
    TransportError,
    TransportFailure,
)
from encoderctl.core.model import (
    BusyPolicy,
    CancellationEntry,
    CardAccessRecord,
    CardDataRecord,
    ConnectionState,
    CredentialInfo,
    EncoderVersion,
    Opaque,
    SectorDescriptor,
    Structured,
)
from encoderctl.core.session import EncoderSession
from encoderctl.core.workflow import WorkflowOrchestrator
from encoderctl.transports.base import BridgeTransport, CloudClient
from encoderctl.transports.bridge import SubprocessBridgeTransport
from encoderctl.transports.cloud import HttpCloudClient

__all__ = [
    "AlreadyConnectedError",
    "BridgeTimeoutError",
    "CloudApiError",
    "CloudError",
    "CloudTimeoutError",
    "CloudTransportError",
    "ConfigError",
    "CredentialUnavailableError",
    "DeviceError",
    "DeviceErrorCode",
    "EncoderctlError",
    "InvalidRecordError",
    "MalformedResponseError",
    "NotConnectedError",
    "OperationTimeoutError",
    "SessionBusyError",
    "SessionStateError",
    "SpawnFailure",
    "TransportError",
    "TransportFailure",
    "BusyPolicy",
    "CancellationEntry",
    "CardAccessRecord",
    "CardDataRecord",
    "ConnectionState",
    "CredentialInfo",
    "EncoderVersion",
    "Opaque",
    "SectorDescriptor",
    "Structured",
    "EncoderConfig",
    "load_config",
    "validate_config",
    "CredentialCache",
    "EncoderSession",
    "WorkflowOrchestrator",
    "BridgeTransport",
    "CloudClient",
    "SubprocessBridgeTransport",
    "HttpCloudClient",
    "Client",
]


class Client:
    """Public client wiring cloud credentials, the bridge and workflows together.

    Each `Client` owns its own session; nothing is shared between instances.
    """

    def __init__(
        self,
        config: EncoderConfig | None = None,
        *,
        transport: BridgeTransport | None = None,
        cloud: CloudClient | None = None,
    ) -> None:
        self.config = config or load_config()
        self.cloud = cloud or HttpCloudClient(
            self.config.cloud.base_url,
            self.config.cloud.client_id,
            self.config.cloud.client_secret,
            timeout_s=self.config.cloud.timeout_s,
        )
        self.credentials = CredentialCache(self.cloud)
        encoder = self.config.encoder
        errors = self.config.error_handling
        self.session = EncoderSession(
            transport or SubprocessBridgeTransport(encoder.bridge_command),
            self.credentials,
            command_timeout_s=encoder.command_timeout_s,
            connection_timeout_s=encoder.connection_timeout_s,
            retry_attempts=encoder.retry_attempts,
            retry_delay_s=encoder.retry_delay_s,
            retry_on_connection_error=errors.retry_on_connection_error,
            auto_disconnect_on_error=errors.auto_disconnect_on_error,
            log_errors=errors.log_errors,
            busy_policy=encoder.busy_policy,
        )
        self.workflows = WorkflowOrchestrator(self.session)

    def resolve_port(self, port: str | None) -> str:
        return port or self.config.encoder.default_port

    async def hotel_info(self) -> CredentialInfo:
        return await self.credentials.get()

    async def server_time(self) -> int:
        return await self.cloud.fetch_server_time()

    async def encode_card(self, access: CardAccessRecord, *, port: str | None = None) -> CardDataRecord:
        return await self.workflows.perform_complete_card_encoding(self.resolve_port(port), access)

    async def read_card(self, *, port: str | None = None) -> CardDataRecord:
        return await self.workflows.perform_card_reading(self.resolve_port(port))

    @asynccontextmanager
    async def connected(self, port: str | None = None) -> AsyncIterator[EncoderSession]:
        async with self.workflows.connected(self.resolve_port(port)) as session:
            yield session
