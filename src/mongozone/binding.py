"""Per-zone configuration and connection ownership.

A ZoneBinding is the adapter's instance state for one zone: an immutable
ZoneBindingConfig plus the one StoreConnection it owns.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import AllocationError, ConfigError
from .store.connection import DEFAULT_TIMEOUT_MS, StoreConnection, parse_port

logger = logging.getLogger(__name__)

#: Positional order of the zone arguments (``database collection host port user password``).
BINDING_ARGS = ("database", "collection", "host", "port", "user", "password")


def normalize_zone(zone: str) -> str:
    """Brief: Lowercase a zone name and strip its trailing dot.

    Example:
      >>> normalize_zone("MyDomain.COM.")
      'mydomain.com'
    """

    return str(zone).strip().rstrip(".").lower()


class ZoneBindingConfig(BaseModel):
    """Brief: Typed, immutable connection settings for one zone.

    Inputs:
      - database: MongoDB database holding the zone collection; also the
        authentication database.
      - collection: Collection whose documents are the zone's records.
      - host: MongoDB host.
      - port: Port in string form; validated here, converted at connect time.
      - user: MongoDB user.
      - password: MongoDB password.
      - timeout_ms: Bound for every store call (default 2000).

    Outputs:
      - ZoneBindingConfig instance; every field is present and non-empty.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    database: str = Field(min_length=1)
    collection: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: str = Field(min_length=1)
    user: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)

    @field_validator("port", mode="before")
    @classmethod
    def _port_as_text(cls, value: Any) -> Any:
        # YAML configs commonly give the port as a bare integer.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("port")
    @classmethod
    def _port_in_range(cls, value: str) -> str:
        parse_port(value)
        return value

    @property
    def port_number(self) -> int:
        return parse_port(self.port)

    @property
    def namespace(self) -> str:
        return f"{self.database}.{self.collection}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ZoneBindingConfig":
        """Brief: Build a config from named fields, raising ConfigError on failure."""
        try:
            return cls(**dict(data))
        except ValidationError as exc:
            raise ConfigError(f"Invalid zone binding configuration: {exc}") from exc

    @classmethod
    def from_args(
        cls, args: Sequence[Optional[str]], timeout_ms: Optional[int] = None
    ) -> "ZoneBindingConfig":
        """Brief: Build a config from the ordered six-argument form.

        Inputs:
          - args: Exactly ``database, collection, host, port, user, password``.
          - timeout_ms: Optional store timeout override.

        Outputs:
          - ZoneBindingConfig.

        Raises:
          - ConfigError: on a wrong argument count or a missing/empty value.

        Example:
          >>> cfg = ZoneBindingConfig.from_args(["z", "c", "h", "27017", "u", "p"])
          >>> cfg.port_number
          27017
        """

        args = list(args)
        if len(args) != len(BINDING_ARGS):
            raise ConfigError(
                f"Expected {len(BINDING_ARGS)} arguments "
                f"({' '.join(BINDING_ARGS)}), got {len(args)}"
            )
        missing = [name for name, value in zip(BINDING_ARGS, args) if value is None]
        if missing:
            raise ConfigError(f"Missing zone binding arguments: {', '.join(missing)}")

        data: dict = dict(zip(BINDING_ARGS, args))
        if timeout_ms is not None:
            data["timeout_ms"] = timeout_ms
        return cls.from_mapping(data)


class ZoneBinding:
    """Brief: One configured, connected adapter instance scoped to one zone.

    Inputs (constructor):
      - zone: Zone name (normalized; informational for the adapter itself).
      - config: ZoneBindingConfig.
      - connection: Optional StoreConnection (a new one is created otherwise).

    Outputs:
      - Unopened ZoneBinding. Use ``create``/``from_config`` to obtain an
        opened binding.

    Notes:
      - ``lock`` serializes every store operation on this binding, so a host
        may share one binding between threads.
    """

    def __init__(
        self,
        zone: str,
        config: ZoneBindingConfig,
        connection: Optional[StoreConnection] = None,
    ) -> None:
        self.zone = normalize_zone(zone)
        self.config = config
        self.connection = connection or StoreConnection(timeout_ms=config.timeout_ms)
        self.lock = threading.RLock()
        self._destroyed = False

    def __repr__(self) -> str:
        return f"<ZoneBinding {self.zone} -> {self.config.host}:{self.config.port}/{self.config.namespace}>"

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @classmethod
    def create(
        cls,
        zone: str,
        args: Sequence[Optional[str]],
        *,
        timeout_ms: Optional[int] = None,
    ) -> "ZoneBinding":
        """Brief: Create and open a binding from the six positional arguments.

        Inputs:
          - zone: Zone name.
          - args: ``database, collection, host, port, user, password``.
          - timeout_ms: Optional store timeout.

        Outputs:
          - Opened ZoneBinding (connected and authenticated).

        Raises:
          - ConfigError before any connection attempt when args are invalid.
          - AllocationError, StoreConnectionError, AuthError otherwise; no
            partially initialized binding is ever returned.
        """

        config = ZoneBindingConfig.from_args(args, timeout_ms=timeout_ms)
        return cls.from_config(zone, config)

    @classmethod
    def from_config(
        cls, zone: str, config: Union[ZoneBindingConfig, Mapping[str, Any]]
    ) -> "ZoneBinding":
        """Brief: Create and open a binding from a named configuration."""
        if not isinstance(config, ZoneBindingConfig):
            config = ZoneBindingConfig.from_mapping(config)

        try:
            binding = cls(zone, config)
        except MemoryError as exc:
            raise AllocationError(f"Cannot allocate binding for zone {zone}") from exc

        try:
            binding.open()
        except Exception:
            binding.destroy()
            raise
        return binding

    def open(self) -> None:
        """Brief: Connect and authenticate eagerly so errors surface at load time."""
        cfg = self.config
        with self.lock:
            self.connection.connect(cfg.host, cfg.port)
            self.connection.authenticate(cfg.database, cfg.user, cfg.password)
        logger.info(
            "Zone %s bound to MongoDB %s:%s collection %s",
            self.zone,
            cfg.host,
            cfg.port,
            cfg.namespace,
        )

    def destroy(self) -> None:
        """Brief: Close the owned connection. Never raises; safe to repeat."""
        if self._destroyed:
            return
        self._destroyed = True
        connection = getattr(self, "connection", None)
        if connection is None:
            return
        try:
            with self.lock:
                connection.close()
        except Exception:  # pragma: no cover - close is best-effort
            logger.exception("Error while closing MongoDB connection for zone %s", self.zone)
        logger.debug("Zone %s unbound", self.zone)

    def __enter__(self) -> "ZoneBinding":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()
