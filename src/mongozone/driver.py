"""Host-facing driver handle.

``init_driver()`` returns an owned MongoZoneDriver exposing the four host
callbacks (create, lookup, allnodes, destroy). ``shutdown()`` releases every
binding the handle still owns; there is no module-level registration state.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Sequence

from .binding import ZoneBinding
from .exceptions import MongoZoneError
from .translator import NamedRecordSink, QueryTranslator, RecordSink

logger = logging.getLogger(__name__)

DEFAULT_DRIVER_NAME = "mongodb"


class MongoZoneDriver:
    """Brief: Owned handle implementing the host callback contract.

    Inputs (constructor):
      - name: Driver name the host registered it under (default "mongodb").
      - translator: Optional QueryTranslator.

    Outputs:
      - Open driver handle tracking the bindings it created.

    Example:
      >>> driver = init_driver()
      >>> zone = driver.create("mydomain.com", ["dns", "mydomain.com", "localhost", "27017", "bind", "secret"])
      >>> driver.lookup(zone, "www.mydomain.com", print)
      >>> driver.shutdown()
    """

    def __init__(
        self,
        name: str = DEFAULT_DRIVER_NAME,
        translator: Optional[QueryTranslator] = None,
    ) -> None:
        self.name = name
        self._translator = translator or QueryTranslator()
        self._bindings: List[ZoneBinding] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def bindings(self) -> List[ZoneBinding]:
        with self._lock:
            return list(self._bindings)

    def _check_open(self) -> None:
        with self._lock:
            if self._closed:
                raise MongoZoneError(f"Driver {self.name!r} has been shut down")

    def _register(self, binding: ZoneBinding) -> bool:
        with self._lock:
            if self._closed:
                return False
            if binding not in self._bindings:
                self._bindings.append(binding)
            return True

    def create(
        self,
        zone: str,
        args: Sequence[Optional[str]],
        *,
        timeout_ms: Optional[int] = None,
    ) -> ZoneBinding:
        """Brief: Load a zone: validate arguments, connect, authenticate.

        Raises ConfigError, AllocationError, StoreConnectionError or AuthError;
        MongoZoneError when the handle is (or gets) shut down meanwhile.
        """
        self._check_open()
        binding = ZoneBinding.create(zone, args, timeout_ms=timeout_ms)
        if not self._register(binding):
            # shutdown() ran while connecting; nobody else will release it.
            binding.destroy()
            raise MongoZoneError(f"Driver {self.name!r} has been shut down")
        return binding

    def adopt(self, binding: ZoneBinding) -> ZoneBinding:
        """Brief: Take ownership of a binding created elsewhere (e.g. from YAML)."""
        if not self._register(binding):
            raise MongoZoneError(f"Driver {self.name!r} has been shut down")
        return binding

    def lookup(self, binding: ZoneBinding, name: str, sink: RecordSink) -> int:
        self._check_open()
        return self._translator.lookup(binding, name, sink)

    def allnodes(self, binding: ZoneBinding, sink: NamedRecordSink) -> int:
        self._check_open()
        return self._translator.enumerate_all(binding, sink)

    def destroy(self, binding: ZoneBinding) -> None:
        """Brief: Unload a zone. Never raises."""
        with self._lock:
            if binding in self._bindings:
                self._bindings.remove(binding)
        self._release(binding)

    @staticmethod
    def _release(binding: ZoneBinding) -> None:
        try:
            binding.destroy()
        except Exception:  # pragma: no cover - destroy already swallows close errors
            logger.exception("Error destroying binding for zone %s", binding.zone)

    def shutdown(self) -> None:
        """Brief: Close the handle, then destroy every binding it still owns."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            remaining, self._bindings = self._bindings, []
        for binding in remaining:
            self._release(binding)
        logger.debug("Driver %s shut down", self.name)

    def __enter__(self) -> "MongoZoneDriver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


def init_driver(name: str = DEFAULT_DRIVER_NAME) -> MongoZoneDriver:
    """Brief: Create a driver handle; pair with ``MongoZoneDriver.shutdown``."""
    logger.debug("Initializing driver %s", name)
    return MongoZoneDriver(name=name)
