"""MongoDB connection with explicit state tracking and one-shot self-healing.

Inputs:
  - host/port and database/user/password supplied by a ZoneBinding.

Outputs:
  - StoreConnection instances that only ever run queries while authenticated.

Notes:
  - The pymongo driver is imported through ``_import_mongo_driver`` so tests can
    substitute an in-memory driver module exposing ``MongoClient`` and
    ``errors``.
"""

from __future__ import annotations

import enum
import importlib
import logging
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from ..exceptions import AuthError, ConfigError, StoreConnectionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000


def _import_mongo_driver() -> Any:
    """Brief: Import and return the pymongo module.

    Inputs:
      - None.

    Outputs:
      - Module exposing ``MongoClient`` and ``errors.PyMongoError`` /
        ``errors.OperationFailure``.
    """

    return importlib.import_module("pymongo")


def parse_port(value: Union[str, int]) -> int:
    """Brief: Convert a configured port (string form) to a TCP port number.

    Inputs:
      - value: Port as text (``"27017"``) or int.

    Outputs:
      - int in 1..65535.

    Raises:
      - ConfigError: when the value is not a decimal port number in range.

    Example:
      >>> parse_port("27017")
      27017
    """

    if isinstance(value, bool):
        raise ConfigError(f"Invalid port {value!r}")
    text = str(value).strip()
    if not text.isdigit():
        raise ConfigError(f"Invalid port {value!r}: expected a decimal number")
    port = int(text)
    if not 1 <= port <= 65535:
        raise ConfigError(f"Invalid port {value!r}: must be between 1 and 65535")
    return port


class ConnectionState(enum.Enum):
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class StoreConnection:
    """Brief: One MongoDB client handle plus the credentials used to open it.

    Inputs (constructor):
      - timeout_ms: Bound applied to server selection, connect, socket reads
        and server-side query execution (``max_time_ms``).

    Outputs:
      - StoreConnection in the UNCONNECTED state.

    State machine:
      UNCONNECTED -> CONNECTED (connect) -> AUTHENTICATED (authenticate);
      any failure moves to FAILED. ``ensure_ready`` brings any state back to
      AUTHENTICATED with a single connect + authenticate attempt.

    Not thread-safe; callers serialize access (ZoneBinding holds a lock).
    """

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self.timeout_ms = int(timeout_ms)
        self._client: Any = None
        self._state = ConnectionState.UNCONNECTED
        self._address: Optional[Tuple[str, int]] = None
        self._credentials: Optional[Tuple[str, str, str]] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is ConnectionState.AUTHENTICATED and self._client is not None

    def _client_kwargs(self) -> Dict[str, Any]:
        return {
            "serverSelectionTimeoutMS": self.timeout_ms,
            "connectTimeoutMS": self.timeout_ms,
            "socketTimeoutMS": self.timeout_ms,
        }

    def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.close()
        except Exception:  # pragma: no cover - close is best-effort
            logger.debug("Error while closing MongoDB client", exc_info=True)

    def connect(self, host: str, port: Union[str, int]) -> None:
        """Brief: Open a session to the MongoDB server at host:port.

        Inputs:
          - host: Hostname or IP address.
          - port: Port number or its decimal string form.

        Outputs:
          - None; state becomes CONNECTED.

        Raises:
          - ConfigError: when port is not a valid port number.
          - StoreConnectionError: on DNS resolution, network or protocol
            failure (reported by the ``ping`` round trip).
        """

        port_num = parse_port(port)
        mongo = _import_mongo_driver()

        self._discard_client()
        self._address = (str(host), port_num)
        client = None
        try:
            client = mongo.MongoClient(
                host=str(host), port=port_num, **self._client_kwargs()
            )
            client.admin.command("ping")
        except mongo.errors.PyMongoError as exc:
            if client is not None:
                client.close()
            self._state = ConnectionState.FAILED
            raise StoreConnectionError(
                f"Cannot connect to MongoDB at {host}:{port_num}: {exc}"
            ) from exc

        self._client = client
        self._state = ConnectionState.CONNECTED
        logger.debug("Connected to MongoDB at %s:%d", host, port_num)

    def authenticate(self, database: str, user: str, password: str) -> None:
        """Brief: Exchange credentials scoped to one database.

        Inputs:
          - database: Authentication database (authSource).
          - user: User name.
          - password: Password; never logged.

        Outputs:
          - None; state becomes AUTHENTICATED and the unauthenticated probe
            client is replaced by the credentialed one.

        Raises:
          - AuthError: when called before ``connect`` succeeded, or when the
            server rejects the credentials.
          - StoreConnectionError: when the server becomes unreachable during
            the exchange.
        """

        if self._address is None or self._state not in (
            ConnectionState.CONNECTED,
            ConnectionState.AUTHENTICATED,
        ):
            raise AuthError("authenticate() called before connect() succeeded")

        mongo = _import_mongo_driver()
        host, port = self._address
        self._credentials = (database, user, password)
        client = None
        try:
            client = mongo.MongoClient(
                host=host,
                port=port,
                username=user,
                password=password,
                authSource=database,
                **self._client_kwargs(),
            )
            client[database].command("ping")
        except mongo.errors.OperationFailure as exc:
            if client is not None:
                client.close()
            self._state = ConnectionState.FAILED
            raise AuthError(
                f"MongoDB rejected credentials for user {user!r} on database {database!r}"
            ) from exc
        except mongo.errors.PyMongoError as exc:
            if client is not None:
                client.close()
            self._state = ConnectionState.FAILED
            raise StoreConnectionError(
                f"Lost MongoDB connection to {host}:{port} while authenticating: {exc}"
            ) from exc

        self._discard_client()
        self._client = client
        self._state = ConnectionState.AUTHENTICATED
        logger.debug("Authenticated to MongoDB database %s as %s", database, user)

    def _ping(self) -> bool:
        mongo = _import_mongo_driver()
        try:
            self._client.admin.command("ping")
            return True
        except mongo.errors.PyMongoError as exc:
            logger.warning("MongoDB health check failed: %s", exc)
            return False

    def ensure_ready(self) -> None:
        """Brief: Make sure the connection is authenticated and healthy.

        Inputs:
          - None (reuses the last connect/authenticate parameters).

        Outputs:
          - None. Returns immediately when a health ``ping`` succeeds;
            otherwise performs exactly one connect + authenticate cycle.

        Raises:
          - StoreConnectionError / AuthError from whichever step failed.
        """

        if self.is_authenticated and self._ping():
            return

        if self._address is None or self._credentials is None:
            raise StoreConnectionError(
                "No MongoDB connection parameters; connect() and authenticate() "
                "must be called first"
            )

        host, port = self._address
        logger.info("Reconnecting to MongoDB at %s:%d", host, port)
        self.connect(host, port)
        self.authenticate(*self._credentials)
        logger.info("Reconnected to MongoDB at %s:%d", host, port)

    def mark_failed(self) -> None:
        """Brief: Force the next ``ensure_ready`` to reconnect."""
        self._state = ConnectionState.FAILED

    def iter_documents(
        self, database: str, collection: str, query: Mapping[str, Any]
    ) -> Iterator[Mapping[str, Any]]:
        """Brief: Stream documents matching ``query`` from ``database.collection``.

        Inputs:
          - database: Database name.
          - collection: Collection name.
          - query: MongoDB filter document.

        Outputs:
          - Iterator over documents in the server's natural result order.

        Raises:
          - StoreConnectionError: when called while not authenticated, or when
            the query/cursor fails; the connection is marked FAILED.
        """

        if not self.is_authenticated:
            raise StoreConnectionError(
                f"Query on {database}.{collection} issued while {self._state.value}"
            )

        mongo = _import_mongo_driver()
        cursor = None
        try:
            cursor = self._client[database][collection].find(
                dict(query), max_time_ms=self.timeout_ms
            )
            for document in cursor:
                yield document
        except mongo.errors.PyMongoError as exc:
            self.mark_failed()
            raise StoreConnectionError(
                f"MongoDB query on {database}.{collection} failed: {exc}"
            ) from exc
        finally:
            if cursor is not None:
                cursor.close()

    def close(self) -> None:
        """Brief: Release the client. Safe to call any number of times."""
        self._discard_client()
        self._state = ConnectionState.UNCONNECTED
