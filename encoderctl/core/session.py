"""Encoder session: connection state and per-command dispatch to the bridge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager

from encoderctl.core import codec
from encoderctl.core.codec import Command, CommandRequest
from encoderctl.core.credentials import CredentialCache
from encoderctl.core.errors import (
    AlreadyConnectedError,
    BridgeTimeoutError,
    DeviceError,
    NotConnectedError,
    SessionBusyError,
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
from encoderctl.transports.base import BridgeTransport

LOGGER = logging.getLogger(__name__)

# Failures retried while establishing a connection. Device result codes are
# never retried.
_RETRYABLE = (TransportFailure, BridgeTimeoutError)


class EncoderSession:
    """Live binding to one encoder on one port.

    Bridge invocations never overlap. Under `BusyPolicy.QUEUE` a command
    waits for the one in flight (FIFO); under `BusyPolicy.FAIL` it raises
    `SessionBusyError` instead.
    """

    def __init__(
        self,
        transport: BridgeTransport,
        credentials: CredentialCache,
        *,
        command_timeout_s: float = 10.0,
        connection_timeout_s: float = 10.0,
        retry_attempts: int = 3,
        retry_delay_s: float = 1.0,
        retry_on_connection_error: bool = True,
        auto_disconnect_on_error: bool = True,
        log_errors: bool = True,
        busy_policy: BusyPolicy = BusyPolicy.QUEUE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._credentials = credentials
        self._command_timeout_s = command_timeout_s
        self._connection_timeout_s = connection_timeout_s
        self._retry_attempts = retry_attempts
        self._retry_delay_s = retry_delay_s
        self._retry_on_connection_error = retry_on_connection_error
        self._auto_disconnect_on_error = auto_disconnect_on_error
        self._log_errors = log_errors
        self._busy_policy = busy_policy
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._port: str | None = None
        self._cleanup_owners = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def port(self) -> str | None:
        return self._port

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def cached_credentials(self) -> CredentialInfo | None:
        return self._credentials.peek()

    async def resolve_credentials(self) -> CredentialInfo:
        return await self._credentials.get()

    @contextmanager
    def owned_cleanup(self) -> Iterator[None]:
        """Suspend auto-disconnect while the caller is responsible for disconnecting."""
        self._cleanup_owners += 1
        try:
            yield
        finally:
            self._cleanup_owners -= 1

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    async def connect(self, port: str) -> bool:
        """Connect to `port`.

        Returns False without invoking the bridge when the session is already
        connected to `port`.
        """
        request = codec.encode(Command.CONNECT, port)
        attempts = 1 + (self._retry_attempts if self._retry_on_connection_error else 0)
        async with self._exclusive():
            if self.is_connected:
                if port == self._port:
                    LOGGER.debug("Already connected to %s", port)
                    return False
                raise AlreadyConnectedError(
                    f"Encoder is connected to {self._port}; disconnect before connecting to {port}"
                )
            for attempt in range(1, attempts + 1):
                try:
                    raw = await self._transport.invoke(request, timeout_s=self._connection_timeout_s)
                    codec.decode_result_code(Command.CONNECT, raw)
                    break
                except _RETRYABLE as exc:
                    if attempt == attempts:
                        self._report(Command.CONNECT, exc)
                        raise
                    LOGGER.warning(
                        "Connect to %s failed (attempt %d/%d): %s; retrying in %gs",
                        port,
                        attempt,
                        attempts,
                        exc,
                        self._retry_delay_s,
                    )
                    await self._sleep(self._retry_delay_s)
                except Exception as exc:
                    self._report(Command.CONNECT, exc)
                    raise
            self._state = ConnectionState.CONNECTED
            self._port = port
        LOGGER.info("Connected to encoder on %s", port)
        return True

    async def disconnect(self, *, force: bool = False) -> None:
        """Disconnect from the encoder.

        A no-op when already disconnected, unless `force` is set, in which
        case the bridge disconnect is issued anyway (e.g. after a failed
        connect that may have left the port half-open).
        """
        if not self.is_connected and not force:
            LOGGER.debug("Disconnect requested while already disconnected")
            return
        async with self._exclusive():
            if not self.is_connected and not force:
                LOGGER.debug("Session was disconnected while waiting to disconnect")
                return
            await self._disconnect_locked()

    async def _disconnect_locked(self) -> None:
        raw = await self._transport.invoke(
            codec.encode(Command.DISCONNECT),
            timeout_s=self._command_timeout_s,
        )
        codec.decode_result_code(Command.DISCONNECT, raw)
        if self._port is not None:
            LOGGER.info("Disconnected from encoder on %s", self._port)
        self._state = ConnectionState.DISCONNECTED
        self._port = None

    # ------------------------------------------------------------------
    # Credential-dependent commands
    # ------------------------------------------------------------------
    async def init_card_encoder(self) -> None:
        info = await self._prepare_with_credentials()
        await self._run_result(codec.encode(Command.INIT_CARD_ENCODER, info.payload))

    async def init_card(self) -> None:
        info = await self._prepare_with_credentials()
        await self._run_result(codec.encode(Command.INIT_CARD, info.payload))

    async def write_card_access(self, access: CardAccessRecord) -> None:
        info = await self._prepare_with_credentials()
        request = codec.encode(
            Command.WRITE_CARD,
            info.payload,
            access.build_no,
            access.floor_no,
            access.mac,
            access.timestamp,
            access.allow_lock_out,
        )
        await self._run_result(request)

    async def read_card_data(self) -> CardDataRecord:
        """Read hotel array, card number and card id as one exclusive sequence."""
        info = await self._prepare_with_credentials()
        async with self._exclusive():
            self._require_connected()
            try:
                raw = await self._invoke(codec.encode(Command.READ_CARD, info.payload))
                hotel_array = codec.decode_value(Command.READ_CARD, raw)
                raw = await self._invoke(codec.encode(Command.GET_CARD_NO))
                card_number = codec.decode_value(Command.GET_CARD_NO, raw)
                raw = await self._invoke(codec.encode(Command.GET_CARD_ID))
                card_id = codec.decode_value(Command.GET_CARD_ID, raw)
            except Exception as exc:
                await self._handle_failure(Command.READ_CARD, exc)
                raise
        return CardDataRecord(card_number=card_number, card_id=card_id, hotel_array=hotel_array)

    async def clear_card(self) -> None:
        info = await self._prepare_with_credentials()
        await self._run_result(codec.encode(Command.CLEAR_CARD, info.payload))

    async def deinit_card(self) -> None:
        info = await self._prepare_with_credentials()
        await self._run_result(codec.encode(Command.DEINIT_CARD, info.payload))

    async def cancel_card(self, card_number: str, timestamp: int) -> None:
        info = await self._prepare_with_credentials()
        await self._run_result(codec.encode(Command.CANCEL_CARD, info.payload, card_number, timestamp))

    async def read_cancellation_info(self) -> Structured[list[CancellationEntry]] | Opaque:
        info = await self._prepare_with_credentials()
        raw = await self._run(codec.encode(Command.READ_CANCELLATION_INFO, info.payload))
        return codec.decode_cancellation_info(raw)

    # ------------------------------------------------------------------
    # Device commands without credentials
    # ------------------------------------------------------------------
    async def stop_init_card(self) -> None:
        await self._run_result(codec.encode(Command.STOP_INIT_CARD))

    async def init_construction_card(self) -> None:
        await self._run_result(codec.encode(Command.INIT_CONSTRUCTION_CARD))

    async def get_card_number(self) -> str:
        raw = await self._run(codec.encode(Command.GET_CARD_NO))
        return codec.decode_value(Command.GET_CARD_NO, raw)

    async def get_card_id(self) -> str:
        raw = await self._run(codec.encode(Command.GET_CARD_ID))
        return codec.decode_value(Command.GET_CARD_ID, raw)

    async def beep(self, voice_len: int, interval: int, voice_count: int) -> None:
        await self._run_result(codec.encode(Command.BEEP, voice_len, interval, voice_count))

    async def get_version(self) -> Structured[EncoderVersion] | Opaque:
        raw = await self._run(codec.encode(Command.GET_VERSION))
        return codec.decode_version(raw)

    async def get_cpu_card_support(self) -> int:
        raw = await self._run(codec.encode(Command.GET_CPU_CARD_SUPPORT))
        return codec.decode_int(Command.GET_CPU_CARD_SUPPORT, raw)

    async def set_sectors(self, sectors: str) -> None:
        await self._run_result(codec.encode(Command.SET_SECTORS, sectors))

    async def get_sectors(self) -> str:
        raw = await self._run(codec.encode(Command.GET_SECTORS))
        return codec.decode_value(Command.GET_SECTORS, raw)

    async def read_sector_raw_data(self, sector: SectorDescriptor) -> str:
        raw = await self._run(_sector_request(Command.READ_SECTOR_RAW_DATA, sector))
        return codec.decode_block_data(raw)

    async def write_sector_raw_data(self, sector: SectorDescriptor) -> None:
        await self._run_result(_sector_request(Command.WRITE_SECTOR_RAW_DATA, sector))

    async def config_server(self, url: str) -> bool:
        """Point the encoder library at a server URL; works without a connection."""
        raw = await self._run(codec.encode(Command.CONFIG_SERVER, url), require_connection=False)
        return codec.decode_bool(Command.CONFIG_SERVER, raw)

    # ------------------------------------------------------------------
    # Dispatch helpers
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._busy_policy is BusyPolicy.FAIL and self._lock.locked():
            raise SessionBusyError("Another encoder command is in progress")
        async with self._lock:
            yield

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise NotConnectedError("Encoder is not connected. Call connect() first.")

    async def _prepare_with_credentials(self) -> CredentialInfo:
        self._require_connected()
        return await self._credentials.get()

    async def _invoke(self, request: CommandRequest) -> str:
        return await self._transport.invoke(request, timeout_s=self._command_timeout_s)

    async def _run(self, request: CommandRequest, *, require_connection: bool = True) -> str:
        async with self._exclusive():
            if require_connection:
                self._require_connected()
            try:
                return await self._invoke(request)
            except Exception as exc:
                await self._handle_failure(request.command, exc)
                raise

    async def _run_result(self, request: CommandRequest) -> None:
        async with self._exclusive():
            self._require_connected()
            try:
                raw = await self._invoke(request)
                codec.decode_result_code(request.command, raw)
            except Exception as exc:
                await self._handle_failure(request.command, exc)
                raise

    async def _handle_failure(self, command: Command, exc: Exception) -> None:
        """Report a failed command and, if enabled, drop the connection.

        Must be called with the session lock held. No disconnect happens
        while a caller holds `owned_cleanup()`.
        """
        self._report(command, exc)
        if not (self._auto_disconnect_on_error and self.is_connected) or self._cleanup_owners:
            return
        if not isinstance(exc, (DeviceError, TransportError)):
            return
        try:
            await self._disconnect_locked()
        except Exception as disconnect_exc:
            LOGGER.error("Failed to disconnect after '%s' error: %s", command.value, disconnect_exc)

    def _report(self, command: Command, exc: Exception) -> None:
        if self._log_errors:
            LOGGER.error("Encoder command '%s' failed: %s", command.value, exc)


def _sector_request(command: Command, sector: SectorDescriptor) -> CommandRequest:
    return codec.encode(
        command,
        sector.sector_num,
        sector.block_num,
        sector.encrypted,
        sector.key,
        sector.block_data,
    )
