"""CLI: smartadmin config show|set"""

import json

import click
from rich.console import Console

from smartadmin.config import Settings, config_path, load_config, load_settings, save_config

console = Console()

SECRET_FIELDS = {"ably_key"}


def _mask(value: str) -> str:
    return value[:8] + "..." if len(value) > 8 else "***"


@click.group()
def config():
    """Saved settings."""


@config.command("show")
@click.option("--json-output", "--json", is_flag=True)
def config_show(json_output: bool):
    """Effective settings (file + environment)."""
    settings = load_settings().model_dump()
    for field in SECRET_FIELDS:
        if settings.get(field):
            settings[field] = _mask(settings[field])
    if json_output:
        click.echo(json.dumps(settings, indent=2))
        return
    console.print(f"[dim]{config_path()}[/dim]")
    for key, value in settings.items():
        console.print(f"{key}: [bold]{value}[/bold]")


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Save one setting to the config file."""
    if key not in Settings.model_fields:
        raise click.BadParameter(f"unknown setting {key!r}", param_hint="KEY")
    cfg = load_config()
    cfg[key] = value
    try:
        Settings.model_validate(cfg)
    except ValueError as e:
        raise click.BadParameter(f"invalid value for {key}: {e}", param_hint="VALUE")
    save_config(cfg)
    console.print(f"[green]Saved {key}.[/green]")
