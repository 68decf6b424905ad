"""CLI: smartadmin logs list|stats|delete"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _get_client():
    from smartadmin.cli.main import _get_client
    return _get_client()


def _run(coro):
    from smartadmin.cli.main import _run
    return _run(coro)


@click.group()
def logs():
    """Mirrored message log."""


@logs.command("list")
@click.option("--client", "client_id", default=None, help="Client id, or `all`")
@click.option("--command", default=None)
@click.option("--type", "direction", type=click.Choice(["sent", "received"]), default=None)
@click.option("--limit", default=100, type=int)
@click.option("--json-output", "--json", is_flag=True)
def logs_list(client_id: Optional[str], command: Optional[str], direction: Optional[str], limit: int,
              json_output: bool):
    """List mirrored messages, newest first."""

    async def _list():
        client = _get_client()
        try:
            entries = await client.mirror.query(
                client_id=client_id, command=command, direction=direction, limit=limit,
            )
        finally:
            await client.close()
        if json_output:
            click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
            return
        table = Table(title=f"Message log ({len(entries)} shown)")
        table.add_column("Row", style="dim")
        table.add_column("Time", style="dim")
        table.add_column("Client", style="bold")
        table.add_column("Dir")
        table.add_column("Command")
        table.add_column("Payload")
        for e in entries:
            table.add_row(str(e.row_id), e.timestamp.isoformat(), e.client_id, e.direction, e.command,
                          json.dumps(e.payload)[:60])
        console.print(table)

    _run(_list())


@logs.command("stats")
@click.option("--json-output", "--json", is_flag=True)
def logs_stats(json_output: bool):
    """Mirror totals and distinct clients/commands."""

    async def _stats():
        client = _get_client()
        try:
            stats = await client.mirror.stats()
        finally:
            await client.close()
        if json_output:
            click.echo(stats.model_dump_json(indent=2))
            return
        console.print(f"Total messages: [bold]{stats.total_count}[/bold]")
        console.print(f"Last 24h:       {stats.recent_count}")
        console.print(f"Clients:        {', '.join(stats.unique_clients) or '-'}")
        console.print(f"Commands:       {', '.join(stats.unique_commands) or '-'}")
        if stats.first_message:
            console.print(f"Range:          {stats.first_message.isoformat()} .. {stats.last_message.isoformat()}")

    _run(_stats())


@logs.command("delete")
@click.argument("row_ids", nargs=-1, type=int)
@click.option("--all", "delete_all", is_flag=True, help="Delete every mirrored message")
def logs_delete(row_ids: tuple[int, ...], delete_all: bool):
    """Delete mirrored messages by row id."""
    if not row_ids and not delete_all:
        raise click.UsageError("Give ROW_IDS or --all")

    async def _delete():
        client = _get_client()
        try:
            if delete_all:
                deleted = await client.mirror.delete_all()
            else:
                deleted = await client.mirror.delete(row_ids)
        finally:
            await client.close()
        console.print(f"[green]Deleted {deleted} message(s).[/green]")

    _run(_delete())
