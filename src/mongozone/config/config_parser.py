"""Configuration parsing and normalization helpers for mongozone.

Brief:
  Reads the YAML config used by the CLI, merges variables from the
  environment and ``-v KEY=VALUE`` arguments, validates the result and turns
  zone entries into ZoneBindingConfig objects.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import yaml

from ..binding import ZoneBindingConfig, normalize_zone
from ..exceptions import ConfigError
from .config_schema import _VAR_NAME, _VAR_PATTERN, validate_config

DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 5353


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML, falling back to text."""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def _referenced_vars(obj: Any, found: Optional[Set[str]] = None) -> Set[str]:
    found = set() if found is None else found
    if isinstance(obj, str):
        found.update(_VAR_PATTERN.findall(obj))
    elif isinstance(obj, list):
        for item in obj:
            _referenced_vars(item, found)
    elif isinstance(obj, dict):
        for value in obj.values():
            _referenced_vars(value, found)
    return found


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[Iterable[str]] = None,
    environ: Optional[Dict[str, str]] = None,
    raw_text: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI ``KEY=YAML`` assignments.
      - environ: Optional environment mapping (defaults to os.environ).
      - raw_text: Optional mapping filled with the unparsed text of every
        environment or CLI value that was used.

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI overrides environment overrides config-file variables.

    Notes:
      - Environment variables are only picked up when the config declares or
        references them (``${KEY}``), so unrelated process environment never
        leaks into the configuration.

    Example:
      >>> cfg = {'vars': {'PORT': 27017}}
      >>> parse_config_variables(cfg, cli_vars=['PORT=27018'], environ={})['PORT']
      27018
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ConfigError("config.vars must be a mapping when present")

    wanted = set(merged) | _referenced_vars(
        {k: v for k, v in cfg.items() if k != "vars"}
    )
    env = os.environ if environ is None else environ
    for key in sorted(wanted):
        if key in env:
            text = str(env[key])
            merged[key] = _parse_yaml_value(text)
            if raw_text is not None:
                raw_text[key] = text

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ConfigError(
                f"Invalid -v/--var value (expected KEY=YAML), got: {assignment!r}"
            )
        key, raw = assignment.split("=", 1)
        key = key.strip()
        if not _VAR_NAME.fullmatch(key):
            raise ConfigError(
                f"Invalid variable name {key!r} (must match [A-Z_][A-Z0-9_]*)"
            )
        merged[key] = _parse_yaml_value(raw)
        if raw_text is not None:
            raw_text[key] = raw

    cfg["vars"] = merged
    return merged


# Zone entry fields the schema types as strings.
_ZONE_TEXT_FIELDS = ("zone", "database", "collection", "host", "user", "password")


def _scalar_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _pin_zone_text_fields(cfg: Dict[str, Any], raw_text: Dict[str, str]) -> None:
    """Brief: Keep whole-value ``${KEY}`` references in string zone fields textual.

    Inputs:
      - cfg: Configuration with merged cfg['vars'] (mutated in-place).
      - raw_text: Unparsed environment/CLI text per variable.

    Outputs:
      - None. A reference such as ``password: ${MONGO_PASSWORD}`` whose value
        parsed as a number or boolean (``-v MONGO_PASSWORD=123456``) is replaced
        by the text as given; file variables are rendered with ``str()``.
    """

    variables = cfg.get("vars") or {}
    for entry in cfg.get("zones") or []:
        if not isinstance(entry, dict):
            continue
        for field in _ZONE_TEXT_FIELDS:
            value = entry.get(field)
            match = _VAR_PATTERN.fullmatch(value) if isinstance(value, str) else None
            if match is None or match.group(1) not in variables:
                continue
            key = match.group(1)
            text = _scalar_text(variables[key])
            if text is None:
                continue
            entry[field] = raw_text.get(key, text)


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[Iterable[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI ``KEY=YAML`` assignments.
      - environ: Optional environment mapping (tests).

    Outputs:
      - dict: Validated configuration with variables expanded.

    Raises:
      - ConfigError: on unreadable YAML, a non-mapping root, or schema errors.
      - OSError: when the file cannot be opened.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse {config_path}: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")

    raw_text: Dict[str, str] = {}
    parse_config_variables(cfg, cli_vars=cli_vars, environ=environ, raw_text=raw_text)
    _pin_zone_text_fields(cfg, raw_text)
    validate_config(cfg, config_path=config_path)
    return cfg


def load_zone_configs(cfg: Dict[str, Any]) -> List[Tuple[str, ZoneBindingConfig]]:
    """Brief: Convert validated ``zones`` entries into (zone, ZoneBindingConfig) pairs.

    Inputs:
      - cfg: Configuration returned by parse_config_file.

    Outputs:
      - list of (normalized zone name, ZoneBindingConfig) in config order.
    """

    zones: List[Tuple[str, ZoneBindingConfig]] = []
    for entry in cfg.get("zones") or []:
        data = dict(entry)
        zone = normalize_zone(data.pop("zone"))
        zones.append((zone, ZoneBindingConfig.from_mapping(data)))
    return zones


def get_zone_config(cfg: Dict[str, Any], zone: str) -> ZoneBindingConfig:
    """Brief: Return the configuration of one named zone.

    Raises:
      - ConfigError: when the zone is not configured.
    """

    wanted = normalize_zone(zone)
    for name, zone_cfg in load_zone_configs(cfg):
        if name == wanted:
            return zone_cfg
    raise ConfigError(f"Zone {zone!r} is not configured")


def get_listen_address(cfg: Dict[str, Any]) -> Tuple[str, int]:
    """Brief: Return the UDP (host, port) the server should bind."""
    listen = cfg.get("listen") or {}
    host = str(listen.get("host", DEFAULT_LISTEN_HOST))
    port = int(listen.get("port", DEFAULT_LISTEN_PORT))
    return host, port
