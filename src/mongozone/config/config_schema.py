"""JSON Schema-based validation for mongozone YAML configuration.

The schema lives in this module rather than in an external asset so that a
bare ``pip install`` can validate configs without any data files.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from logging.handlers import SysLogHandler
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")
_VAR_NAME = re.compile(r"[A-Z_][A-Z0-9_]*")

_NON_EMPTY_STRING = {"type": "string", "minLength": 1}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "mongozone configuration",
    "type": "object",
    "properties": {
        "logging": {
            "type": "object",
            "properties": {
                "level": {
                    "type": "string",
                    "enum": [
                        "debug",
                        "info",
                        "warn",
                        "warning",
                        "error",
                        "crit",
                        "critical",
                    ],
                },
                "stderr": {"type": "boolean"},
                "file": {"type": "string"},
                "syslog": {
                    "oneOf": [
                        {"type": "boolean"},
                        {
                            "type": "object",
                            "properties": {
                                # Unix socket path or host[:port] for UDP.
                                "address": {
                                    "type": "string",
                                    "pattern": r"^(/.+|[^:/]+(:[0-9]{1,5})?)$",
                                },
                                "facility": {
                                    "type": "string",
                                    "enum": sorted(SysLogHandler.facility_names),
                                },
                            },
                            "additionalProperties": False,
                        },
                    ]
                },
            },
            "additionalProperties": False,
        },
        "listen": {
            "type": "object",
            "properties": {
                "host": _NON_EMPTY_STRING,
                "port": {"type": "integer", "minimum": 0, "maximum": 65535},
            },
            "additionalProperties": False,
        },
        "zones": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "zone": _NON_EMPTY_STRING,
                    "database": _NON_EMPTY_STRING,
                    "collection": _NON_EMPTY_STRING,
                    "host": _NON_EMPTY_STRING,
                    "port": {
                        "oneOf": [
                            {"type": "string", "pattern": r"^[0-9]+$"},
                            {"type": "integer", "minimum": 1, "maximum": 65535},
                        ]
                    },
                    "user": _NON_EMPTY_STRING,
                    "password": _NON_EMPTY_STRING,
                    "timeout_ms": {"type": "integer", "minimum": 1},
                },
                "required": [
                    "zone",
                    "database",
                    "collection",
                    "host",
                    "port",
                    "user",
                    "password",
                ],
                "additionalProperties": False,
            },
        },
    },
    "required": ["zones"],
    "additionalProperties": False,
}


def expand_variables(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level ``vars`` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Behavior:
      - A string value that is exactly ``${KEY}`` is replaced with the
        variable's YAML value (keeping its type, e.g. an int port).
      - ``${KEY}`` occurrences inside longer strings are substituted as text.
      - References to unknown variables are left untouched.
      - Variables may reference other variables; cycles raise ConfigError.

    Example:
      >>> cfg = {"vars": {"PW": "s3cret"}, "zones": [{"password": "${PW}"}]}
      >>> expand_variables(cfg)
      >>> cfg["zones"][0]["password"]
      's3cret'
    """

    variables = cfg.pop("vars", None)
    if variables is None:
        return
    if not isinstance(variables, dict):
        raise ConfigError("config.vars must be a mapping when present")

    for k in variables:
        if not isinstance(k, str) or not _VAR_NAME.fullmatch(k):
            raise ConfigError(f"config.vars key {k!r} must match [A-Z_][A-Z0-9_]*")

    resolved: Dict[str, Any] = {}

    def _resolve_var(key: str, stack: List[str]) -> Any:
        if key in resolved:
            return resolved[key]
        if key in stack:
            cycle = " -> ".join(stack + [key])
            raise ConfigError(f"config.vars contains a cycle: {cycle}")
        stack.append(key)
        value = _expand_obj(variables[key], stack)
        stack.pop()
        resolved[key] = value
        return value

    def _expand_string(text: str, stack: List[str]) -> Any:
        whole = _VAR_PATTERN.fullmatch(text)
        if whole and whole.group(1) in variables:
            return copy.deepcopy(_resolve_var(whole.group(1), stack))

        def _repl(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            value = _resolve_var(key, stack)
            if isinstance(value, bool):
                return "true" if value else "false"
            if value is None:
                return "null"
            if isinstance(value, (int, float, str)):
                return str(value)
            return json.dumps(value)

        return _VAR_PATTERN.sub(_repl, text)

    def _expand_obj(obj: Any, stack: List[str]) -> Any:
        if isinstance(obj, str):
            return _expand_string(obj, stack)
        if isinstance(obj, list):
            return [_expand_obj(item, stack) for item in obj]
        if isinstance(obj, dict):
            return {k: _expand_obj(v, stack) for k, v in obj.items()}
        return obj

    for key in list(variables):
        _resolve_var(key, [])

    for top_key in list(cfg):
        cfg[top_key] = _expand_obj(cfg[top_key], [])


def _format_errors(errors: List[Any], config_path: Optional[str]) -> str:
    lines = [f"Invalid configuration in {config_path or '<config>'}:"]
    for err in errors:
        location = "/".join(str(p) for p in err.path) or "<root>"
        lines.append(f"  - {location}: {err.message}")
    return "\n".join(lines)


def validate_config(cfg: Dict[str, Any], *, config_path: Optional[str] = None) -> None:
    """Brief: Expand variables and validate a parsed configuration mapping.

    Inputs:
      - cfg: Dict loaded from YAML (mutated by variable expansion).
      - config_path: Optional path used only in error messages.

    Outputs:
      - None on success.

    Raises:
      - ConfigError: listing every schema violation with its instance path.
    """

    expand_variables(cfg)

    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path])
    if errors:
        raise ConfigError(_format_errors(errors, config_path))

    zones = [str(z.get("zone")).strip().rstrip(".").lower() for z in cfg.get("zones", [])]
    dupes = sorted({z for z in zones if zones.count(z) > 1})
    if dupes:
        raise ConfigError(f"Duplicate zone names in configuration: {dupes}")
    logger.debug("Configuration %s validated (%d zones)", config_path, len(zones))
