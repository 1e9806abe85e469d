"""Encoding of bridge invocations and decoding of their `Label: value` output."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from encoderctl.core.errors import DeviceError, DeviceErrorCode, MalformedResponseError
from encoderctl.core.model import CancellationEntry, EncoderVersion, Opaque, Structured

SEPARATOR = ": "
BLOCK_DATA_LABEL = "Block Data"


class Command(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    INIT_CARD_ENCODER = "initcardencoder"
    INIT_CARD = "initcard"
    STOP_INIT_CARD = "stopinitcard"
    WRITE_CARD = "writecard"
    READ_CARD = "readcard"
    GET_CARD_NO = "getcardno"
    GET_CARD_ID = "getcardid"
    CLEAR_CARD = "clearcard"
    BEEP = "beep"
    GET_VERSION = "getversion"
    CANCEL_CARD = "cancelcard"
    READ_CANCELLATION_INFO = "readcancellationinfo"
    CONFIG_SERVER = "configserver"
    SET_SECTORS = "setsectors"
    GET_SECTORS = "getsectors"
    READ_SECTOR_RAW_DATA = "readsectorrawdata"
    WRITE_SECTOR_RAW_DATA = "writesectorrawdata"
    DEINIT_CARD = "deinitcard"
    INIT_CONSTRUCTION_CARD = "initconstructioncard"
    GET_CPU_CARD_SUPPORT = "getcpucardsupport"


@dataclass(frozen=True)
class CommandSpec:
    params: tuple[str, ...]
    label: str


COMMAND_SPECS: dict[Command, CommandSpec] = {
    Command.CONNECT: CommandSpec(("port",), "Connect result"),
    Command.DISCONNECT: CommandSpec((), "Disconnect result"),
    Command.INIT_CARD_ENCODER: CommandSpec(("credential",), "Init card encoder result"),
    Command.INIT_CARD: CommandSpec(("credential",), "Init card result"),
    Command.STOP_INIT_CARD: CommandSpec((), "Stop init card result"),
    Command.WRITE_CARD: CommandSpec(
        ("credential", "build_no", "floor_no", "mac", "timestamp", "allow_lock_out"),
        "Write card result",
    ),
    Command.READ_CARD: CommandSpec(("credential",), "Hotel Array"),
    Command.GET_CARD_NO: CommandSpec((), "Card No"),
    Command.GET_CARD_ID: CommandSpec((), "Card ID (JSON)"),
    Command.CLEAR_CARD: CommandSpec(("credential",), "Clear card result"),
    Command.BEEP: CommandSpec(("voice_len", "interval", "voice_count"), "Beep result"),
    Command.GET_VERSION: CommandSpec((), "Version"),
    Command.CANCEL_CARD: CommandSpec(("credential", "card_number", "timestamp"), "Cancel card result"),
    Command.READ_CANCELLATION_INFO: CommandSpec(("credential",), "Cancellation Info"),
    Command.CONFIG_SERVER: CommandSpec(("url",), "Config server result"),
    Command.SET_SECTORS: CommandSpec(("sectors",), "Set sectors result"),
    Command.GET_SECTORS: CommandSpec((), "Sectors"),
    Command.READ_SECTOR_RAW_DATA: CommandSpec(
        ("sector_num", "block_num", "encrypted", "key", "block_data"),
        "Read sector raw data result",
    ),
    Command.WRITE_SECTOR_RAW_DATA: CommandSpec(
        ("sector_num", "block_num", "encrypted", "key", "block_data"),
        "Write sector raw data result",
    ),
    Command.DEINIT_CARD: CommandSpec(("credential",), "De-init card result"),
    Command.INIT_CONSTRUCTION_CARD: CommandSpec((), "Init construction card result"),
    Command.GET_CPU_CARD_SUPPORT: CommandSpec((), "CPU Card Support"),
}


@dataclass(frozen=True)
class CommandRequest:
    command: Command
    args: tuple[str, ...]

    @property
    def argv(self) -> list[str]:
        return [self.command.value, *self.args]

    def redacted_argv(self) -> list[str]:
        """argv with credential payloads masked, for logging."""
        params = COMMAND_SPECS[self.command].params
        masked = ["<credential>" if name == "credential" else arg for name, arg in zip(params, self.args)]
        return [self.command.value, *masked]


@dataclass(frozen=True)
class ResponseLine:
    label: str
    payload: str


def encode(command: Command, *args: Any) -> CommandRequest:
    spec = COMMAND_SPECS[command]
    if len(args) != len(spec.params):
        raise ValueError(
            f"'{command.value}' takes {len(spec.params)} argument(s) "
            f"({', '.join(spec.params) or 'none'}), got {len(args)}"
        )
    return CommandRequest(command=command, args=tuple(_format_arg(arg) for arg in args))


def parse_line(line: str) -> ResponseLine:
    label, sep, payload = line.partition(SEPARATOR)
    if not sep or not label:
        raise MalformedResponseError(f"Response line '{line}' is not of the form 'Label: value'", line)
    return ResponseLine(label=label, payload=payload)


def decode(raw: str) -> ResponseLine:
    """Decode the last non-blank line of bridge output."""
    lines = _lines(raw)
    if not lines:
        raise MalformedResponseError("Bridge produced no output")
    return parse_line(lines[-1])


def decode_response(command: Command, raw: str) -> ResponseLine:
    line = decode(raw)
    expected = COMMAND_SPECS[command].label
    if line.label != expected:
        raise MalformedResponseError(
            f"Expected '{expected}' from '{command.value}', got '{line.label}{SEPARATOR}{line.payload}'",
            f"{line.label}{SEPARATOR}{line.payload}",
        )
    return line


def decode_result_code(command: Command, raw: str) -> None:
    line = decode_response(command, raw)
    _check_code(command, line)


def decode_value(command: Command, raw: str) -> str:
    return decode_response(command, raw).payload


def decode_int(command: Command, raw: str) -> int:
    line = decode_response(command, raw)
    code = _parse_int(line.payload)
    if code is None:
        raise MalformedResponseError(f"Expected an integer from '{command.value}', got '{line.payload}'")
    return code


def decode_bool(command: Command, raw: str) -> bool:
    payload = decode_response(command, raw).payload.strip().lower()
    if payload not in {"true", "false"}:
        raise MalformedResponseError(f"Expected a boolean from '{command.value}', got '{payload}'")
    return payload == "true"


def decode_version(raw: str) -> Structured[EncoderVersion] | Opaque:
    payload = decode_value(Command.GET_VERSION, raw)
    try:
        doc = json.loads(payload)
    except ValueError:
        return Opaque(payload)
    if not isinstance(doc, dict):
        return Opaque(payload)
    return Structured(
        EncoderVersion(
            firmware=str(doc.get("firmware", "Unknown")),
            hardware=str(doc.get("hardware", "Unknown")),
            protocol=str(doc.get("protocol", "Unknown")),
        )
    )


def decode_cancellation_info(raw: str) -> Structured[list[CancellationEntry]] | Opaque:
    """Decode the cancellation list; unparseable payloads degrade to `Opaque`.

    Callers that only want entries use `.value_or([])`.
    """
    payload = decode_value(Command.READ_CANCELLATION_INFO, raw)
    if not payload.strip():
        return Structured([])
    try:
        doc = json.loads(payload)
    except ValueError:
        return Opaque(payload)
    if not isinstance(doc, list) or not all(isinstance(item, dict) for item in doc):
        return Opaque(payload)
    try:
        entries = [
            CancellationEntry(
                card_number=str(item["cardNumber"]),
                timestamp=int(item.get("timestamp", 0)),
                reason=str(item.get("reason", "")),
            )
            for item in doc
        ]
    except (KeyError, TypeError, ValueError):
        return Opaque(payload)
    return Structured(entries)


def decode_block_data(raw: str) -> str:
    """Decode `readsectorrawdata` output: a result line followed by a block data line."""
    command = Command.READ_SECTOR_RAW_DATA
    result_line = _find_line(raw, COMMAND_SPECS[command].label)
    if result_line is None:
        raise MalformedResponseError(f"Missing result line in '{command.value}' output")
    _check_code(command, result_line)
    data_line = decode(raw)
    if data_line.label != BLOCK_DATA_LABEL:
        raise MalformedResponseError(f"Missing '{BLOCK_DATA_LABEL}' line in '{command.value}' output")
    return data_line.payload.replace("-", "").replace(" ", "").upper()


def _check_code(command: Command, line: ResponseLine) -> None:
    code = _parse_int(line.payload)
    if code is None:
        raise MalformedResponseError(
            f"Expected a result code from '{command.value}', got '{line.payload}'",
            f"{line.label}{SEPARATOR}{line.payload}",
        )
    if code != DeviceErrorCode.SUCCESS:
        raise DeviceError(code, command.value)


def _find_line(raw: str, label: str) -> ResponseLine | None:
    for line in reversed(_lines(raw)):
        try:
            parsed = parse_line(line)
        except MalformedResponseError:
            continue
        if parsed.label == label:
            return parsed
    return None


def _lines(raw: str) -> list[str]:
    return [line for line in raw.splitlines() if line.strip()]


def _parse_int(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


def _format_arg(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
