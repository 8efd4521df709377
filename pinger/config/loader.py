"""
Config Loader — Load the target configuration file.

YAML and JSON files are both accepted (JSON is read by the YAML parser).
Any problem, from a missing file to a schema violation, is reported as a
single ConfigurationInvalid so the caller can decide whether it is fatal
(startup) or recoverable (reload keeps the previous generation).

## Usage

    from pinger.config.loader import load_config, build_registry

    config = load_config(Path("/etc/pinger/config.yaml"))
    registry = build_registry(config, generation=1)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Union
from urllib.parse import urlsplit

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationInvalid
from ..models.target import Target, TargetRegistry
from .models import PingerConfig, TargetConfig, TargetDefaults

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML (or JSON) file and return its contents."""
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationInvalid("file not found", path=path)
    except OSError as e:
        raise ConfigurationInvalid(f"cannot be read: {e}", path=path)
    except yaml.YAMLError as e:
        raise ConfigurationInvalid(f"not valid YAML/JSON: {e}", path=path)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid("top level must be a mapping", path=path)
    return data


def parse_config(data: Dict[str, Any], path: Union[str, Path, None] = None) -> PingerConfig:
    """Validate raw configuration data."""
    try:
        return PingerConfig(**data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ConfigurationInvalid(
            first.get("msg", str(e)),
            path=path,
            field=field,
            details={"errors": e.error_count()},
        ) from e


def load_config(path: Union[str, Path]) -> PingerConfig:
    """
    Load and validate a configuration file.

    Raises:
        ConfigurationInvalid: if the file is missing, unparsable or invalid
    """
    config_path = Path(path)
    data = load_yaml(config_path)
    config = parse_config(data, path=config_path)
    logger.debug(f"Loaded {len(config.targets)} target(s) from {config_path}")
    return config


def build_target(entry: TargetConfig, defaults: TargetDefaults) -> Target:
    """Resolve defaults and freeze one target entry."""
    host = entry.host
    if entry.url:
        host = urlsplit(entry.url).hostname or host

    return Target(
        name=entry.name,
        kind=entry.kind,
        host=host or "",
        port=entry.port,
        url=entry.url,
        method=entry.method,
        expected_status=frozenset(entry.expected_status) if entry.expected_status else None,
        interval=entry.interval_seconds or defaults.interval_seconds,
        timeout=entry.timeout_seconds or defaults.timeout_seconds,
        down_threshold=entry.down_threshold or defaults.down_threshold,
        up_threshold=entry.up_threshold or defaults.up_threshold,
        retries=entry.retries if entry.retries is not None else defaults.retries,
        verify_tls=entry.verify_tls,
    )


def build_registry(config: PingerConfig, generation: int) -> TargetRegistry:
    """Build an immutable target generation from a validated config."""
    targets = tuple(build_target(entry, config.defaults) for entry in config.targets)
    return TargetRegistry(generation=generation, targets=targets)
