"""CLI: smartadmin sync|ingest"""

import json
from typing import Optional

import click
from rich.console import Console

from smartadmin.models.message import parse_timestamp

console = Console()


def _get_client():
    from smartadmin.cli.main import _get_client
    return _get_client()


def _require_key(client) -> None:
    from smartadmin.cli.main import _require_key
    _require_key(client)


def _run(coro):
    from smartadmin.cli.main import _run
    return _run(coro)


@click.command("sync")
@click.option("--since", default=None, help="ISO-8601 start time (default: last mirrored message)")
def sync_cmd(since: Optional[str]):
    """Copy vendor channel history into the mirror."""
    start = None
    if since:
        start = parse_timestamp(since)
        if start is None:
            raise click.BadParameter(f"not an ISO-8601 timestamp: {since}", param_hint="--since")

    async def _sync():
        client = _get_client()
        try:
            _require_key(client)
            with console.status("Syncing..."):
                result = await client.sync(start)
        finally:
            await client.close()
        console.print(f"[green]Synced {result.synced} of {result.processed} messages "
                      f"since {result.since.isoformat()}[/green]")

    _run(_sync())


@click.command("ingest")
@click.argument("file", type=click.File("r"), default="-")
def ingest_cmd(file):
    """Ingest a webhook payload (JSON file, `-` for stdin) into the mirror."""
    try:
        body = json.load(file)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="FILE")

    async def _ingest():
        client = _get_client()
        try:
            result = await client.ingest(body)
        finally:
            await client.close()
        console.print(f"[green]Processed {result.processed}/{result.total} messages[/green]")

    _run(_ingest())
