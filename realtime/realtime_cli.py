#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.table import Table

from realtime.client import RealtimeClient
from realtime.session import RealtimeConnectionHandler
from shared.config import RealtimeConfig, load_config
from shared.errors import ApiError
from shared.log import configure_root_logging, get_logger
from shared.utils import redact

app = typer.Typer(help="Realtime session client CLI")
console = Console()
logger = get_logger(__name__)


def _load(config_path: Optional[Path]) -> RealtimeConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration[/]: {e}")
        raise typer.Exit(code=2)


def _parse_payload(raw: str) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise typer.BadParameter("payload must be a JSON object")
    return payload


def _print_result(result: Dict[str, Any]) -> None:
    request_id = str(result.get("request_id", ""))[:8]
    console.print(f"[bold cyan]result[/] [dim]{request_id}[/]")
    console.print_json(data=result)


def _print_error(error: ApiError) -> None:
    console.print(f"[red]ERROR {error.status}[/]: {error.message}")


@app.command()
def send(
    application: str = typer.Argument(..., help="Application id, e.g. 1234-my-app"),
    input: str = typer.Option(..., "--input", "-i", help="JSON object to send"),
    key: Optional[str] = typer.Option(None, help="Connection key; generated if omitted"),
    wait: float = typer.Option(5.0, help="Seconds to wait for results before closing"),
    throttle: Optional[int] = typer.Option(None, help="Throttle interval in ms"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Send one payload and print results until --wait elapses."""
    payload = _parse_payload(input)
    cfg = _load(config)

    async def main_loop() -> None:
        client = RealtimeClient(cfg)
        session = client.connect(application, RealtimeConnectionHandler(
            on_result=_print_result,
            on_error=_print_error,
            connection_key=key,
            throttle_interval=throttle,
        ))
        session.send(payload)
        try:
            await asyncio.sleep(wait)
        finally:
            session.close()
            await client.aclose()

    asyncio.run(main_loop())


@app.command()
def stream(
    application: str = typer.Argument(..., help="Application id, e.g. 1234-my-app"),
    field: str = typer.Option("prompt", help="Payload field that carries each typed line"),
    key: Optional[str] = typer.Option(None, help="Connection key; generated if omitted"),
    throttle: Optional[int] = typer.Option(None, help="Throttle interval in ms"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Interactive loop: every typed line is sent as {FIELD: line}."""
    cfg = _load(config)

    async def main_loop() -> None:
        client = RealtimeClient(cfg)
        session = client.connect(application, RealtimeConnectionHandler(
            on_result=_print_result,
            on_error=_print_error,
            connection_key=key,
            throttle_interval=throttle,
        ))
        console.print(f"[bold green]Streaming to[/] {application} (/quit to exit)")
        try:
            while True:
                line = (await ainput(": ")).strip()
                if not line:
                    continue
                if line in {"/quit", "/exit"}:
                    break
                if line == "/help":
                    console.print("Type text to send it, /state, /quit")
                    continue
                if line == "/state":
                    console.print(f"state={session.state.value} pending={session.pending_message is not None}")
                    continue
                session.send({field: line})
        except (EOFError, KeyboardInterrupt):
            pass
        finally:
            session.close()
            await client.aclose()

    asyncio.run(main_loop())


@app.command()
def token(
    application: str = typer.Argument(..., help="Application id, e.g. 1234-my-app"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Fetch a realtime token and print a (redacted) summary."""
    cfg = _load(config)

    async def fetch():
        client = RealtimeClient(cfg)
        try:
            return await client.tokens.refresh_token(application)
        finally:
            client.tokens.clear()

    try:
        tok = asyncio.run(fetch())
    except ApiError as e:
        _print_error(e)
        raise typer.Exit(code=1)

    table = Table(title="Realtime Token")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("application", tok.application)
    table.add_row("token", redact(tok.value))
    table.add_row("expires", time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(tok.expires_at)))
    console.print(table)


@app.command(name="config")
def show_config(
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Print the effective configuration."""
    cfg = _load(config)
    table = Table(title="Realtime Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    for name, value in vars(cfg).items():
        if name == "credentials":
            value = redact(value or "")
        table.add_row(name, str(value))
    console.print(table)


def main() -> None:
    # route websockets and httpx records through the same handlers
    configure_root_logging(os.getenv("REALTIME_LOG_LEVEL", "WARNING"))
    app()


if __name__ == "__main__":
    main()
