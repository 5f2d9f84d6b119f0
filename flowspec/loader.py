"""Read graph descriptions from JSON or YAML files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from flowspec.errors import ConfigError
from flowspec.logging import get_logger

_log = get_logger("loader")

_YAML_SUFFIXES = {".yaml", ".yml"}


def parse_description(text: str, fmt: str = "json") -> dict[str, Any]:
    """Parse *text* as ``"json"`` or ``"yaml"``; the top level must be an object."""
    try:
        data = yaml.safe_load(text) if fmt == "yaml" else json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot parse graph description as {fmt}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Graph description must be an object, got {type(data).__name__}")
    return data


def load_description(path: str | Path) -> dict[str, Any]:
    """Load a description file; ``.yaml`` / ``.yml`` are YAML, anything else JSON."""
    path = Path(path)
    fmt = "yaml" if path.suffix.lower() in _YAML_SUFFIXES else "json"
    description = parse_description(path.read_text(encoding="utf-8"), fmt)
    _log.debug("Loaded %s description ← %s", fmt, path)
    return description
