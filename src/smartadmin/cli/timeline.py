"""CLI: smartadmin timeline|send|clients"""

import asyncio
import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from smartadmin.models.message import Message

console = Console()
BROADCAST_TARGET = "all"


def _get_client():
    from smartadmin.cli.main import _get_client
    return _get_client()


def _require_key(client) -> None:
    from smartadmin.cli.main import _require_key
    _require_key(client)


def _run(coro):
    from smartadmin.cli.main import _run
    return _run(coro)


def _message_json(message: Message) -> str:
    return message.model_dump_json()


def _print_message(message: Message) -> None:
    arrow = "[cyan]→[/cyan]" if message.direction == "sent" else "[green]←[/green]"
    payload = json.dumps(message.payload) if message.payload else ""
    console.print(f"[dim]{message.timestamp.isoformat()}[/dim] {arrow} [bold]{message.command}[/bold] "
                  f"[dim]{message.client_id}[/dim] {payload[:120]}")


def _timeline_table(client_id: str, messages: list[Message]) -> Table:
    table = Table(title=f"Timeline for {client_id} ({len(messages)} messages)")
    table.add_column("Time", style="dim")
    table.add_column("Dir")
    table.add_column("Command", style="bold")
    table.add_column("Payload")
    for m in messages:
        table.add_row(m.timestamp.isoformat(), m.direction, m.command, json.dumps(m.payload)[:80])
    return table


@click.command("timeline")
@click.argument("client_id")
@click.option("-f", "--follow", is_flag=True, help="Keep printing live messages")
@click.option("--json-output", "--json", is_flag=True)
def timeline_cmd(client_id: str, follow: bool, json_output: bool):
    """Show the reconciled message timeline for a client."""

    async def _timeline():
        client = _get_client()
        try:
            with console.status("Reconciling..."):
                messages = await client.timeline(client_id)
            if json_output:
                for m in messages:
                    click.echo(_message_json(m))
            else:
                console.print(_timeline_table(client_id, messages))
        finally:
            await client.close()

    async def _follow():
        client = _get_client()
        printed: set[str] = set()

        def on_merge(snapshot: list[Message]) -> None:
            for m in snapshot:
                if m.id in printed:
                    continue
                printed.add(m.id)
                if json_output:
                    click.echo(_message_json(m))
                else:
                    _print_message(m)

        try:
            _require_key(client)
            session = await client.follow(client_id, on_merge)
            if not json_output:
                console.print(f"[cyan]Following {client_id} (Ctrl+C to exit)[/cyan]")
            await asyncio.Event().wait()
        finally:
            await client.close()

    try:
        _run(_follow() if follow else _timeline())
    except KeyboardInterrupt:
        pass


@click.command("send")
@click.argument("target")
@click.argument("command")
@click.option("-p", "--payload", default=None, help="JSON payload")
def send_cmd(target: str, command: str, payload: Optional[str]):
    """Send a control command to a client, or to every client with TARGET `all`."""
    broadcast = target == BROADCAST_TARGET
    client_id = None if broadcast else target
    try:
        body = json.loads(payload) if payload else None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"payload is not valid JSON: {e}", param_hint="--payload")

    async def _send():
        client = _get_client()
        try:
            _require_key(client)
            with console.status(f"Sending {command}..."):
                message = await client.send_command(client_id, command, body, broadcast=broadcast)
        finally:
            await client.close()
        console.print(f"[green]Sent {message.command} to {message.client_id} ({message.id})[/green]")

    _run(_send())


@click.command("clients")
@click.option("--json-output", "--json", is_flag=True)
def clients_cmd(json_output: bool):
    """List clients currently present."""

    async def _clients():
        client = _get_client()
        try:
            _require_key(client)
            members = await client.clients()
        finally:
            await client.close()
        if json_output:
            click.echo(json.dumps([m.model_dump(by_alias=True) for m in members], indent=2))
            return
        table = Table(title=f"Clients ({len(members)} online)")
        table.add_column("Client ID", style="bold")
        table.add_column("Hostname")
        table.add_column("Platform")
        table.add_column("Version")
        for m in members:
            data = m.data if isinstance(m.data, dict) else {}
            table.add_row(m.client_id, str(data.get("hostname", "")), str(data.get("platform", "")),
                          str(data.get("appVersion", "")))
        console.print(table)

    _run(_clients())
