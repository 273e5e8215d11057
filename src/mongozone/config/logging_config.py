"""Logging setup for the mongozone CLI and server.

Brief:
  ``init_logging(cfg)`` installs the handlers described by the ``logging``
  section of the YAML config on the root logger. Every line carries a
  lowercase bracketed level tag (``[info]``, ``[warn]``); stderr and file
  lines are prefixed with a UTC timestamp, syslog lines are not.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from logging.handlers import SysLogHandler
from typing import Any, Dict, List, Optional, Tuple, Union

# Config level names; "warn" and "crit" match the tags printed in log lines.
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

DEFAULT_SYSLOG_ADDRESS = "/dev/log"
DEFAULT_SYSLOG_PORT = 514

# pymongo's command monitoring floods DEBUG output with one line per round trip.
DRIVER_LOGGERS = ("pymongo",)


class LevelTagFormatter(logging.Formatter):
    """Brief: ``[<level>] <logger>: <message>``, optionally UTC-timestamped.

    Inputs (constructor):
      - timestamps: Prefix each line with ``YYYY-MM-DDTHH:MM:SSZ``.

    Outputs:
      - Formatter instance.
    """

    converter = time.gmtime

    def __init__(self, timestamps: bool = True) -> None:
        fmt = "%(level_tag)s %(name)s: %(message)s"
        if timestamps:
            fmt = "%(asctime)s " + fmt
        super().__init__(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")

    def format(self, record: logging.LogRecord) -> str:
        name = logging.getLevelName(record.levelno).lower()
        record.level_tag = "[{}]".format(
            {"warning": "warn", "critical": "crit"}.get(name, name)
        )
        return super().format(record)


def resolve_level(value: Any) -> int:
    """Brief: Map a config level name (case-insensitive) to a logging level; INFO otherwise."""
    return LEVELS.get(str(value or "info").lower(), logging.INFO)


def syslog_address(value: Optional[str]) -> Union[str, Tuple[str, int]]:
    """Brief: Parse a syslog ``address`` setting.

    Inputs:
      - value: Unix socket path (``/dev/log``) or ``host[:port]`` for UDP.

    Outputs:
      - Socket path string, or (host, port) tuple for SysLogHandler.

    Example:
      >>> syslog_address("logs.internal:5514")
      ('logs.internal', 5514)
    """

    address = (value or DEFAULT_SYSLOG_ADDRESS).strip()
    if address.startswith("/"):
        return address
    host, _, port = address.partition(":")
    return host, int(port) if port else DEFAULT_SYSLOG_PORT


# Handlers installed by the last init_logging() call; closed when replaced.
_installed: List[logging.Handler] = []


def _stream_handlers(cfg: Dict[str, Any]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        handlers.append(logging.StreamHandler(sys.stderr))

    path = str(cfg.get("file") or "").strip()
    if path:
        path = os.path.abspath(os.path.expanduser(path))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(LevelTagFormatter())
    return handlers


def _syslog_handler(syslog: Union[bool, Dict[str, Any]]) -> logging.Handler:
    options = syslog if isinstance(syslog, dict) else {}
    facility = str(options.get("facility", "user")).lower()
    handler = SysLogHandler(
        address=syslog_address(options.get("address")),
        facility=SysLogHandler.facility_names.get(facility, SysLogHandler.LOG_USER),
    )
    handler.setFormatter(LevelTagFormatter(timestamps=False))
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Install root handlers from the ``logging`` config section.

    Args:
        cfg: Mapping with optional keys ``level`` (default info), ``stderr``
            (default True), ``file`` (path; parent directories are created)
            and ``syslog`` (True, or a mapping with ``address`` and
            ``facility``).

    Calling it again replaces the handlers installed by the previous call.
    The pymongo driver loggers never go below WARNING, so ``level: debug``
    shows mongozone's own connection and query tracing only. An unreachable
    syslog socket is reported through the other handlers instead of failing.

    Example config:
        logging:
          level: debug
          file: /var/log/mongozone.log
          syslog:
            address: logs.internal:514
            facility: daemon
    """
    cfg = cfg or {}
    level = resolve_level(cfg.get("level"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    while _installed:
        _installed.pop().close()

    root.setLevel(level)
    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    handlers = _stream_handlers(cfg)
    for handler in handlers:
        root.addHandler(handler)

    if cfg.get("syslog"):
        try:
            handler = _syslog_handler(cfg["syslog"])
        except OSError as exc:
            logging.getLogger(__name__).warning("Syslog unavailable: %s", exc)
        else:
            root.addHandler(handler)
            handlers.append(handler)

    _installed.extend(handlers)
    logging.captureWarnings(True)
