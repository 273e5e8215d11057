"""mongozone: serve authoritative DNS records stored in MongoDB collections."""

from .binding import ZoneBinding, ZoneBindingConfig
from .driver import MongoZoneDriver, init_driver
from .exceptions import (
    AllocationError,
    AuthError,
    ConfigError,
    MongoZoneError,
    SinkError,
    StoreConnectionError,
)
from .records.decoder import DocumentRecord, RecordDecoder
from .store.connection import StoreConnection
from .translator import QueryTranslator

__all__ = [
    "AllocationError",
    "AuthError",
    "ConfigError",
    "DocumentRecord",
    "MongoZoneDriver",
    "MongoZoneError",
    "QueryTranslator",
    "RecordDecoder",
    "SinkError",
    "StoreConnection",
    "StoreConnectionError",
    "ZoneBinding",
    "ZoneBindingConfig",
    "init_driver",
]
