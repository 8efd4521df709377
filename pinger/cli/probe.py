"""
CLI probe command — probe every target once and print the results.

Usage:
    pinger probe --config pinger.yaml [--target NAME] [--json]

Exits 1 if any probe failed.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import click

from ..config.loader import build_registry, load_config
from ..engine.scheduler import probe_all
from ..errors import ConfigurationInvalid
from ..models.target import TargetRegistry
from ..probing.registry import ProberRegistry


@click.command("probe")
@click.option(
    "--config", "config_path",
    envvar="PINGER_CONFIG",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the YAML/JSON target config",
)
@click.option("--target", "target_name", default=None, help="Only probe this target")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def probe(config_path: Path, target_name: Optional[str], as_json: bool) -> None:
    """Probe each target once."""
    try:
        config = load_config(config_path)
    except ConfigurationInvalid as e:
        click.secho(f"✗ {e}", fg="red", err=True)
        raise SystemExit(1)

    registry = build_registry(config, generation=1)
    if target_name is not None:
        if target_name not in registry:
            click.secho(f"✗ Unknown target: {target_name}", fg="red", err=True)
            raise SystemExit(1)
        registry = TargetRegistry(generation=1, targets=(registry.get(target_name),))

    results = asyncio.run(probe_all(registry, ProberRegistry(dns=config.dns)))

    if as_json:
        click.echo(json.dumps([
            {
                "target": r.target,
                "kind": r.kind.value,
                "outcome": r.outcome.value,
                "latency_seconds": r.latency,
                "reason": r.reason.value if r.reason else None,
                "detail": r.detail,
                "status_code": r.status_code,
                "resolve_seconds": r.resolve_time,
                "peer": r.peer,
                "attempts": r.attempts,
            }
            for r in results
        ], indent=2))
    else:
        for r in results:
            if r.ok:
                click.secho(f"  ✓ {r.target:<20}", fg="green", nl=False)
                click.echo(f" {r.latency * 1000:8.1f}ms" + (f"  ({r.peer})" if r.peer else ""))
            else:
                click.secho(f"  ✗ {r.target:<20}", fg="red", nl=False)
                reason = r.reason.value if r.reason else r.outcome.value
                click.echo(f" {reason}" + (f": {r.detail}" if r.detail else ""))

    if not all(r.ok for r in results):
        raise SystemExit(1)
