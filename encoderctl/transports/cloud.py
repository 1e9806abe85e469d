"""HTTP client for the hotel-management cloud API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from encoderctl.core.errors import CloudApiError, CloudTimeoutError, CloudTransportError
from encoderctl.core.model import CredentialInfo

LOGGER = logging.getLogger(__name__)

SUCCESS_ERRCODE = 0


class HttpCloudClient:
    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        timeout_s: float = 30.0,
        http: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout_s = timeout_s
        self._http = http or requests.Session()
        self._clock = clock

    async def fetch_credential_info(self) -> CredentialInfo:
        fetched_at = self._clock()
        data = await self._get("/hotel/getInfo")
        try:
            info = CredentialInfo(
                hotel_id=str(data["hotelId"]),
                hotel_name=str(data.get("hotelName", "")),
                payload=str(data["hotelInfo"]),
                fetched_at=fetched_at,
            )
        except KeyError as exc:
            raise CloudApiError(data.get("errcode"), f"getInfo response missing field {exc}") from exc
        LOGGER.info("Fetched hotel info for %s (%s)", info.hotel_id, info.hotel_name)
        return info

    async def fetch_server_time(self) -> int:
        data = await self._get("/hotel/getServerDateTime")
        try:
            return int(data["serverDateTime"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CloudApiError(data.get("errcode"), "getServerDateTime response has no valid serverDateTime") from exc

    async def _get(self, path: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, path)

    def _get_sync(self, path: str) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        params = {
            "clientId": self._client_id,
            "clientSecret": self._client_secret,
            "date": int(self._clock()),
        }
        LOGGER.debug("GET %s", url)
        try:
            response = self._http.get(url, params=params, timeout=self._timeout_s)
        except requests.Timeout as exc:
            raise CloudTimeoutError(f"GET {path} timed out after {self._timeout_s:g}s") from exc
        except requests.RequestException as exc:
            raise CloudTransportError(f"GET {path} failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise CloudTransportError(
                f"GET {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise CloudTransportError(
                f"GET {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise CloudTransportError(f"GET {path} returned an unexpected body", status_code=response.status_code)

        if data.get("errcode") != SUCCESS_ERRCODE:
            raise CloudApiError(data.get("errcode"), str(data.get("errmsg", "unknown error")))
        return data
