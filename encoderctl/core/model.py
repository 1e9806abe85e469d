"""Core data models shared by the codec, session, workflows and CLI."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from encoderctl.core.errors import InvalidRecordError

CREDENTIAL_VALIDITY_S = 10 * 60
MAX_EPOCH_SECONDS = 0xFFFFFFFF
MAC_HEX_LEN = 12
SECTOR_KEY_HEX_LEN = 12
BLOCK_DATA_HEX_LEN = 32
EMPTY_BLOCK = "00" * (BLOCK_DATA_HEX_LEN // 2)

_HEX_RE = re.compile(r"^[0-9A-Fa-f]*$")

T = TypeVar("T")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class BusyPolicy(str, Enum):
    QUEUE = "queue"
    FAIL = "fail"


@dataclass(frozen=True)
class CredentialInfo:
    """Hotel credential material issued by the cloud service.

    `payload` is passed verbatim to the bridge; it is never inspected.
    """

    hotel_id: str
    hotel_name: str
    payload: str
    fetched_at: float
    validity_s: float = CREDENTIAL_VALIDITY_S

    @property
    def expires_at(self) -> float:
        return self.fetched_at + self.validity_s

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class CardAccessRecord:
    build_no: int
    floor_no: int
    mac: str
    timestamp: int
    allow_lock_out: bool = False

    def __post_init__(self) -> None:
        if self.build_no < 0 or self.floor_no < 0:
            raise InvalidRecordError("Building and floor numbers must be non-negative")
        if len(self.mac) != MAC_HEX_LEN or not _HEX_RE.match(self.mac):
            raise InvalidRecordError(f"MAC must be {MAC_HEX_LEN} hex characters, got '{self.mac}'")
        if not 0 <= self.timestamp <= MAX_EPOCH_SECONDS:
            raise InvalidRecordError(f"Timestamp {self.timestamp} is not a valid unsigned epoch second count")


@dataclass(frozen=True)
class CardDataRecord:
    card_number: str
    card_id: str
    hotel_array: str


@dataclass(frozen=True)
class SectorDescriptor:
    sector_num: int
    block_num: int
    encrypted: bool
    key: str
    block_data: str = EMPTY_BLOCK

    def __post_init__(self) -> None:
        if self.sector_num < 0 or self.block_num < 0:
            raise InvalidRecordError("Sector and block numbers must be non-negative")
        _require_hex(self.key, SECTOR_KEY_HEX_LEN, "Sector key")
        _require_hex(self.block_data, BLOCK_DATA_HEX_LEN, "Block data")


@dataclass(frozen=True)
class EncoderVersion:
    firmware: str
    hardware: str = "Unknown"
    protocol: str = "Unknown"


@dataclass(frozen=True)
class CancellationEntry:
    card_number: str
    timestamp: int
    reason: str = ""


@dataclass(frozen=True)
class Structured(Generic[T]):
    """A payload that parsed into structured data."""

    value: T

    def value_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True)
class Opaque:
    """A payload kept as raw text because it did not parse."""

    text: str

    def value_or(self, default: T) -> T:
        return default


def _require_hex(value: str, length: int, context: str) -> None:
    if len(value) != length or not _HEX_RE.match(value):
        raise InvalidRecordError(f"{context} must be {length} hex characters")
