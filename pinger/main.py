"""
Pinger — CLI Entry Point

Usage:
    pinger serve --config pinger.yaml [--bind 0.0.0.0] [--port 3000] [--debug]
    pinger check-config --config pinger.yaml
    pinger probe --config pinger.yaml [--target NAME] [--json]
"""

from __future__ import annotations

# Load .env FIRST, before any other imports that might read env vars
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import asyncio
import logging

import click

from . import __version__
from .cli.config import check_config
from .cli.probe import probe
from .errors import ConfigurationInvalid, SchedulerError
from .logging_config import setup_logging
from .runtime import PingerDaemon

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(__version__, prog_name="pinger")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Pinger — Concurrent reachability probes with Prometheus metrics."""
    ctx.ensure_object(dict)
    setup_logging()


@cli.command()
@click.option(
    "--config", "config_path",
    envvar="PINGER_CONFIG",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the YAML/JSON target config",
)
@click.option("--bind", envvar="PINGER_BIND", default="0.0.0.0", show_default=True, help="Metrics bind address")
@click.option("--port", envvar="PINGER_PORT", default=3000, type=int, show_default=True, help="Metrics port")
@click.option("--debug", is_flag=True, help="Log at DEBUG level")
def serve(config_path: Path, bind: str, port: int, debug: bool) -> None:
    """Run the probing daemon and serve /metrics."""
    if debug:
        setup_logging(level="DEBUG")

    daemon = PingerDaemon(config_path, bind=bind, port=port)
    try:
        asyncio.run(daemon.run())
    except ConfigurationInvalid as e:
        click.secho(f"❌ Invalid configuration: {e}", fg="red", err=True)
        raise SystemExit(1)
    except SchedulerError as e:
        click.secho(f"❌ Cannot start scheduler: {e}", fg="red", err=True)
        raise SystemExit(1)
    except OSError as e:
        click.secho(f"❌ Cannot serve on {bind}:{port}: {e}", fg="red", err=True)
        raise SystemExit(1)


cli.add_command(check_config)
cli.add_command(probe)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
