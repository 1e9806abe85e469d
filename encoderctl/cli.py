"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer

from encoderctl.api import Client
from encoderctl.core.config import load_config
from encoderctl.core.errors import EncoderctlError
from encoderctl.core.model import CardAccessRecord, CardDataRecord, SectorDescriptor, Structured
from encoderctl.core.session import EncoderSession

app = typer.Typer(help="Hotel card encoder control via the hardware bridge and cloud credentials")

T = TypeVar("T")

PortOption = typer.Option(None, "--port", help="Encoder port (defaults to the configured port)")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to a YAML config file"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.WARNING), format="%(levelname)s %(message)s")
    ctx.obj = {"config_path": config}


def _build_client(ctx: typer.Context) -> Client:
    config_path = (ctx.obj or {}).get("config_path")
    return Client(load_config(config_path))


def _run(ctx: typer.Context, action: Callable[[Client], Awaitable[T]]) -> T:
    try:
        client = _build_client(ctx)
        return asyncio.run(action(client))
    except EncoderctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _on_device(ctx: typer.Context, port: str | None, action: Callable[[EncoderSession], Awaitable[T]]) -> T:
    async def _scoped(client: Client) -> T:
        async with client.connected(port) as session:
            return await action(session)

    return _run(ctx, _scoped)


def _echo_card(card: CardDataRecord) -> None:
    typer.echo(f"Card No: {card.card_number}")
    typer.echo(f"Card ID: {card.card_id}")
    typer.echo(f"Hotel Array: {card.hotel_array}")


@app.command("hotel-info")
def hotel_info(ctx: typer.Context) -> None:
    """Fetch hotel credential information from the cloud."""
    info = _run(ctx, lambda client: client.hotel_info())
    typer.echo(f"Hotel: {info.hotel_name} (id {info.hotel_id})")


@app.command("server-time")
def server_time(ctx: typer.Context) -> None:
    """Print the cloud server's current time."""
    typer.echo(str(_run(ctx, lambda client: client.server_time())))


@app.command("encode")
def encode(
    ctx: typer.Context,
    build: int = typer.Option(..., "--build", help="Building number"),
    floor: int = typer.Option(..., "--floor", help="Floor number"),
    mac: str = typer.Option(..., "--mac", help="Lock MAC as 12 hex characters"),
    hours: float | None = typer.Option(None, "--hours", help="Validity in hours from now"),
    timestamp: int | None = typer.Option(None, "--timestamp", help="Explicit expiry epoch seconds"),
    allow_lock_out: bool = typer.Option(False, "--allow-lockout", help="Allow the card to open locked-out doors"),
    port: str | None = PortOption,
) -> None:
    """Initialize, write and verify a card in one workflow."""

    async def _encode(client: Client) -> CardDataRecord:
        expiry = timestamp if timestamp is not None else client.config.card.expiry_timestamp(hours)
        access = CardAccessRecord(
            build_no=build,
            floor_no=floor,
            mac=mac,
            timestamp=expiry,
            allow_lock_out=allow_lock_out,
        )
        return await client.encode_card(access, port=port)

    card = _run(ctx, _encode)
    typer.echo("Card encoded")
    _echo_card(card)


@app.command("read")
def read(ctx: typer.Context, port: str | None = PortOption) -> None:
    """Read the card currently on the encoder."""
    _echo_card(_run(ctx, lambda client: client.read_card(port=port)))


@app.command("version")
def version(ctx: typer.Context, port: str | None = PortOption) -> None:
    """Show encoder version information."""
    result = _on_device(ctx, port, lambda session: session.get_version())
    if isinstance(result, Structured):
        ver = result.value
        typer.echo(f"firmware={ver.firmware} hardware={ver.hardware} protocol={ver.protocol}")
    else:
        typer.echo(result.text)


@app.command("beep")
def beep(
    ctx: typer.Context,
    duration: int | None = typer.Option(None, "--duration", help="Beep length in ms"),
    interval: int | None = typer.Option(None, "--interval", help="Pause between beeps in ms"),
    count: int | None = typer.Option(None, "--count", help="Number of beeps"),
    port: str | None = PortOption,
) -> None:
    """Make the encoder beep."""

    async def _beep(client: Client) -> None:
        card = client.config.card
        async with client.connected(port) as session:
            await session.beep(
                duration if duration is not None else card.default_beep_duration_ms,
                interval if interval is not None else card.default_beep_interval_ms,
                count if count is not None else card.default_beep_count,
            )

    _run(ctx, _beep)
    typer.echo("Beep sent")


@app.command("clear")
def clear(ctx: typer.Context, port: str | None = PortOption) -> None:
    """Erase the card currently on the encoder."""
    _on_device(ctx, port, lambda session: session.clear_card())
    typer.echo("Card cleared")


@app.command("cancel")
def cancel(
    ctx: typer.Context,
    card_number: str,
    timestamp: int | None = typer.Option(None, "--timestamp", help="Cancellation time (defaults to now)"),
    port: str | None = PortOption,
) -> None:
    """Write a cancellation record for CARD_NUMBER."""
    when = timestamp if timestamp is not None else int(time.time())
    _on_device(ctx, port, lambda session: session.cancel_card(card_number, when))
    typer.echo(f"Card {card_number} cancelled")


@app.command("cancellations")
def cancellations(ctx: typer.Context, port: str | None = PortOption) -> None:
    """List cancellation records stored on the card."""
    result = _on_device(ctx, port, lambda session: session.read_cancellation_info())
    entries = result.value_or([])
    if not isinstance(result, Structured):
        typer.echo(f"Warning: unparseable cancellation info: {result.text}", err=True)
    if not entries:
        typer.echo("No cancellations")
        return
    for entry in entries:
        reason = f" ({entry.reason})" if entry.reason else ""
        typer.echo(f"{entry.card_number} at {entry.timestamp}{reason}")


@app.command("config-server")
def config_server(ctx: typer.Context, url: str) -> None:
    """Point the encoder library at a server URL."""

    async def _config(client: Client) -> bool:
        return await client.session.config_server(url)

    ok = _run(ctx, _config)
    typer.echo(f"Server configured: {ok}")
    if not ok:
        raise typer.Exit(code=1)


@app.command("sector-read")
def sector_read(
    ctx: typer.Context,
    sector: int = typer.Option(..., "--sector"),
    block: int = typer.Option(..., "--block"),
    key: str = typer.Option(..., "--key", help="Sector key as 12 hex characters"),
    encrypted: bool = typer.Option(False, "--encrypted"),
    port: str | None = PortOption,
) -> None:
    """Read one raw block."""

    async def _read(session: EncoderSession) -> str:
        return await session.read_sector_raw_data(SectorDescriptor(sector, block, encrypted, key))

    typer.echo(f"Block Data: {_on_device(ctx, port, _read)}")


@app.command("sector-write")
def sector_write(
    ctx: typer.Context,
    data: str,
    sector: int = typer.Option(..., "--sector"),
    block: int = typer.Option(..., "--block"),
    key: str = typer.Option(..., "--key", help="Sector key as 12 hex characters"),
    encrypted: bool = typer.Option(False, "--encrypted"),
    port: str | None = PortOption,
) -> None:
    """Write DATA (32 hex characters) to one raw block."""

    async def _write(session: EncoderSession) -> None:
        await session.write_sector_raw_data(SectorDescriptor(sector, block, encrypted, key, data))

    _on_device(ctx, port, _write)
    typer.echo("Block written")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
