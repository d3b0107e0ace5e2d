"""Configuration loading for addrselect.

Brief:
  Read a YAML config file, overlay ADDRSELECT_* environment variables and
  validate the result into an AddressSelectConfig.

Inputs:
  - YAML config paths or already-parsed mappings

Outputs:
  - AddressSelectConfig instances
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, Mapping, Optional

import yaml

from .config_schema import AddressSelectConfig

ENV_PREFIX = "ADDRSELECT_"

_ENV_KEY_RE = re.compile(r"[A-Z][A-Z0-9_]*")


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse an environment variable value as YAML.

    Inputs:
      - text: String containing a YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (falls back to original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def apply_env_overrides(
    cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Brief: Overlay ADDRSELECT_* variables onto a raw config mapping.

    Inputs:
      - cfg: Parsed YAML mapping (mutated in-place).
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: cfg with overrides applied.

    Notes:
      - A double underscore separates nesting levels, so
        ADDRSELECT_CACHE__TTL_SECONDS=5 sets cfg['cache']['ttl_seconds'].
      - Values are parsed as YAML so ints/floats/bools come through typed.

    Example:
      >>> apply_env_overrides({}, {"ADDRSELECT_CACHE__TTL_SECONDS": "5"})
      {'cache': {'ttl_seconds': 5}}
    """

    env = os.environ if environ is None else environ
    for key, raw in env.items():
        if not isinstance(key, str) or not key.startswith(ENV_PREFIX):
            continue
        rest = key[len(ENV_PREFIX) :]
        if not _ENV_KEY_RE.fullmatch(rest):
            continue
        path = [p.lower() for p in rest.split("__") if p]
        if not path:
            continue
        node = cfg
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = _parse_yaml_value(str(raw))
    return cfg


def build_config(
    raw: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    source: Optional[str] = None,
) -> AddressSelectConfig:
    """Brief: Validate a raw mapping (plus env overrides) into AddressSelectConfig.

    Inputs:
      - raw: Parsed config mapping or None for defaults.
      - environ: Optional environment mapping for overrides.
      - source: Optional path used in error messages.

    Outputs:
      - AddressSelectConfig.

    Raises:
      - ValueError: When the mapping does not validate.
    """

    if raw is not None and not isinstance(raw, Mapping):
        raise ValueError("Configuration root must be a mapping")
    cfg: Dict[str, Any] = dict(raw or {})
    apply_env_overrides(cfg, environ)
    try:
        return AddressSelectConfig(**cfg)
    except Exception as exc:
        raise ValueError(
            f"Invalid configuration in {source or '<config dict>'}: {exc}"
        ) from exc


def parse_config_file(
    config_path: str, *, environ: Optional[Mapping[str, str]] = None
) -> AddressSelectConfig:
    """Brief: Read, env-overlay and validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - environ: Optional environment mapping for overrides.

    Outputs:
      - AddressSelectConfig.

    Raises:
      - ValueError: When the YAML is malformed or validation fails.
      - OSError: When the file cannot be read.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

    return build_config(raw, environ=environ, source=config_path)
