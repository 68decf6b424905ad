"""
SmartAdmin CLI — `smartadmin` command.

Commands:
  smartadmin timeline <client-id>     Reconciled message timeline (--follow for live)
  smartadmin send <target> <cmd>      Publish a control command (target `all` broadcasts)
  smartadmin clients                  Clients currently present
  smartadmin logs <cmd>               Mirror listing, stats, deletion
  smartadmin sync                     Copy vendor history into the mirror
  smartadmin ingest <file>            Ingest a webhook payload into the mirror
  smartadmin config <cmd>             Show or change saved settings
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install smartadmin[cli]")

from smartadmin.client import AsyncSmartAdmin
from smartadmin.config import load_settings
from smartadmin.errors import SmartAdminError

err_console = Console(stderr=True)


def _get_client() -> AsyncSmartAdmin:
    return AsyncSmartAdmin(load_settings())


def _require_key(client: AsyncSmartAdmin) -> None:
    if not client.settings.ably_key:
        err_console.print("[red]No API key configured. Run `smartadmin config set ably_key <key>` "
                          "or set SMARTADMIN_ABLY_KEY.[/red]")
        raise SystemExit(1)


def _run(coro):
    try:
        return asyncio.run(coro)
    except SmartAdminError as e:
        err_console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", count=True, help="-v for info, -vv for debug logging")
def main(verbose: int):
    """SmartAdmin CLI — monitor and control the client fleet."""
    _setup_logging(verbose)


# Register subcommands from separate modules
from smartadmin.cli.timeline import timeline_cmd, send_cmd, clients_cmd
from smartadmin.cli.logs import logs
from smartadmin.cli.sync import sync_cmd, ingest_cmd
from smartadmin.cli.config import config

main.add_command(timeline_cmd)
main.add_command(send_cmd)
main.add_command(clients_cmd)
main.add_command(logs)
main.add_command(sync_cmd)
main.add_command(ingest_cmd)
main.add_command(config)


if __name__ == "__main__":
    main()
