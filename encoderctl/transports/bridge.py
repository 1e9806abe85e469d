"""Bridge transport that runs the hardware bridge as one subprocess per command."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from encoderctl.core.codec import CommandRequest
from encoderctl.core.errors import BridgeTimeoutError, SpawnFailure, TransportFailure

LOGGER = logging.getLogger(__name__)


class SubprocessBridgeTransport:
    """Spawn `<bridge> <command> [args...]` and collect its output.

    `bridge_command` is an argv prefix, so the bridge can be launched through a
    wrapper such as `wine` or `mono`.
    """

    def __init__(self, bridge_command: Sequence[str]) -> None:
        if not bridge_command:
            raise ValueError("bridge_command must not be empty")
        self._bridge_command = list(bridge_command)

    async def invoke(self, request: CommandRequest, *, timeout_s: float) -> str:
        argv = [*self._bridge_command, *request.argv]
        LOGGER.debug("Running bridge: %s", " ".join([*self._bridge_command, *request.redacted_argv()]))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SpawnFailure(f"Failed to execute bridge command '{self._bridge_command[0]}': {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            await _kill(process)
            raise BridgeTimeoutError(
                f"Bridge command '{request.command.value}' timed out after {timeout_s:g}s"
            ) from exc
        except asyncio.CancelledError:
            await _kill(process)
            raise

        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            raise TransportFailure(process.returncode if process.returncode is not None else -1, err_text)
        return out_text


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
