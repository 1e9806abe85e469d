"""End-to-end encoder workflows built from session commands."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from encoderctl.core.errors import AlreadyConnectedError, SessionBusyError
from encoderctl.core.model import CardAccessRecord, CardDataRecord
from encoderctl.core.session import EncoderSession

LOGGER = logging.getLogger(__name__)


class WorkflowOrchestrator:
    def __init__(self, session: EncoderSession) -> None:
        self.session = session

    @asynccontextmanager
    async def connected(self, port: str) -> AsyncIterator[EncoderSession]:
        """Hold a connection to `port` for the duration of the block.

        A connection opened here is disconnected on every exit path, and the
        session's auto-disconnect is suspended meanwhile so exactly one
        disconnect is issued. A pre-existing connection or a refused connect
        is left untouched.
        When the block (or the connect itself) fails, disconnect errors are
        logged and the original error propagates. On a clean exit a failed
        disconnect is raised.
        """
        try:
            acquired = await self.session.connect(port)
        except (AlreadyConnectedError, SessionBusyError):
            raise
        except BaseException:
            await self._release_after_error(force=True)
            raise

        if not acquired:
            yield self.session
            return

        with self.session.owned_cleanup():
            try:
                yield self.session
            except BaseException:
                await self._release_after_error(force=False)
                raise
        await self.session.disconnect()

    async def perform_complete_card_encoding(self, port: str, access: CardAccessRecord) -> CardDataRecord:
        await self.session.resolve_credentials()
        async with self.connected(port) as session:
            await session.init_card_encoder()
            await session.init_card()
            await session.write_card_access(access)
            card = await session.read_card_data()
        LOGGER.info("Encoded card %s on %s", card.card_number, port)
        return card

    async def perform_card_reading(self, port: str) -> CardDataRecord:
        await self.session.resolve_credentials()
        async with self.connected(port) as session:
            await session.init_card_encoder()
            card = await session.read_card_data()
        LOGGER.info("Read card %s on %s", card.card_number, port)
        return card

    async def _release_after_error(self, *, force: bool) -> None:
        try:
            await self.session.disconnect(force=force)
        except Exception as exc:
            LOGGER.error("Failed to disconnect after error: %s", exc)
