"""
CLI config commands — validate a target config file.

Usage:
    pinger check-config --config pinger.yaml [--json]
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from ..config.loader import build_registry, load_config
from ..errors import ConfigurationInvalid


@click.command("check-config")
@click.option(
    "--config", "config_path",
    envvar="PINGER_CONFIG",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the YAML/JSON target config",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def check_config(config_path: Path, as_json: bool) -> None:
    """Validate the config file and list its targets."""
    try:
        config = load_config(config_path)
    except ConfigurationInvalid as e:
        if as_json:
            click.echo(json.dumps({"valid": False, "path": e.path, "field": e.field, "error": e.message}))
        else:
            click.secho(f"✗ {e}", fg="red", err=True)
        raise SystemExit(1)

    registry = build_registry(config, generation=1)

    if as_json:
        click.echo(json.dumps({
            "valid": True,
            "path": str(config_path),
            "targets": [
                {
                    "name": t.name,
                    "kind": t.kind.value,
                    "address": t.address,
                    "interval_seconds": t.interval,
                    "timeout_seconds": t.timeout,
                }
                for t in registry
            ],
        }, indent=2))
        return

    click.secho(f"✓ {config_path} is valid", fg="green")
    click.echo()
    for target in registry:
        click.echo(
            f"  {target.name:<20} {target.kind.value:<5} {target.address}"
            f"  every {target.interval:g}s, timeout {target.timeout:g}s,"
            f" down after {target.down_threshold}"
        )
    click.echo()
    click.secho(f"{len(registry)} target(s)", bold=True)
