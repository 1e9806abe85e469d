"""In-memory cache of hotel credential material."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from encoderctl.core.errors import CloudError, CredentialUnavailableError
from encoderctl.core.model import CredentialInfo
from encoderctl.transports.base import CloudClient

LOGGER = logging.getLogger(__name__)


class CredentialCache:
    """Holds the last fetched `CredentialInfo` and refreshes it once stale.

    Concurrent `get()` calls that arrive while a refresh is running all await
    the same refresh and observe its result or its failure.
    """

    def __init__(self, cloud: CloudClient, *, clock: Callable[[], float] = time.time) -> None:
        self._cloud = cloud
        self._clock = clock
        self._cached: CredentialInfo | None = None
        self._inflight: asyncio.Future[CredentialInfo] | None = None

    def peek(self) -> CredentialInfo | None:
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    async def get(self) -> CredentialInfo:
        cached = self._cached
        if cached is not None and cached.is_fresh(self._clock()):
            return cached

        inflight = self._inflight
        if inflight is None or inflight.done():
            inflight = asyncio.ensure_future(self._refresh())
            self._inflight = inflight
            inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(inflight)

    async def _refresh(self) -> CredentialInfo:
        LOGGER.info("Refreshing hotel credentials")
        try:
            info = await self._cloud.fetch_credential_info()
        except CloudError as exc:
            raise CredentialUnavailableError(f"Failed to get hotel info: {exc}") from exc
        self._cached = info
        return info

    def _clear_inflight(self, future: asyncio.Future[CredentialInfo]) -> None:
        if self._inflight is future:
            self._inflight = None
        if not future.cancelled():
            future.exception()  # mark retrieved
