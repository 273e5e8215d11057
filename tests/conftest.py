"""
Brief: Shared pytest fixtures, including an in-memory stand-in for pymongo.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import logging
import os
import re
import sys
import types
from typing import Any, Dict, List, Optional, Tuple

import pytest
from pymongo import errors as mongo_errors

# Ensure 'src' is on sys.path so 'mongozone' is importable without installing.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from mongozone.store import connection as connection_mod  # noqa: E402


def _field_matches(doc: Dict[str, Any], key: str, condition: Any) -> bool:
    """Brief: Equality, or ``{"$regex": pattern}`` on string fields."""
    if key not in doc:
        return False
    if isinstance(condition, dict) and "$regex" in condition:
        return isinstance(doc[key], str) and re.search(condition["$regex"], doc[key]) is not None
    return doc[key] == condition


class FakeCursor:
    """Brief: Forward-only cursor over a list of documents.

    Inputs:
      - docs: Documents to yield.
      - fail_after: When set, raise AutoReconnect after this many documents.

    Outputs:
      - Iterable cursor with close().
    """

    def __init__(self, docs: List[Dict[str, Any]], fail_after: Optional[int] = None) -> None:
        self._docs = list(docs)
        self._fail_after = fail_after
        self.closed = False

    def __iter__(self):
        for index, doc in enumerate(self._docs):
            if self._fail_after is not None and index >= self._fail_after:
                raise mongo_errors.AutoReconnect("connection reset by peer")
            yield dict(doc)

    def close(self) -> None:
        self.closed = True


class FakeCollection:
    """Brief: In-memory collection supporting equality filters in find()."""

    def __init__(self, server: "FakeMongoServer") -> None:
        self._server = server
        self.docs: List[Dict[str, Any]] = []
        self.find_calls: List[Tuple[Dict[str, Any], Optional[int]]] = []
        self.cursors: List[FakeCursor] = []
        self.fail_after: Optional[int] = None

    def insert_many(self, docs: List[Dict[str, Any]]) -> None:
        self.docs.extend(dict(d) for d in docs)

    def find(self, filter: Dict[str, Any], max_time_ms: Optional[int] = None) -> FakeCursor:
        self._server.check_up()
        self.find_calls.append((dict(filter), max_time_ms))
        matched = [d for d in self.docs if all(_field_matches(d, k, v) for k, v in filter.items())]
        cursor = FakeCursor(matched, fail_after=self.fail_after)
        self.cursors.append(cursor)
        return cursor


class FakeDatabase:
    def __init__(self, client: "FakeMongoClient", name: str) -> None:
        self._client = client
        self.name = name

    def __getitem__(self, name: str) -> FakeCollection:
        return self._client.server.collection(self.name, name)

    def command(self, name: str) -> Dict[str, Any]:
        assert name == "ping"
        self._client.check_usable()
        return {"ok": 1.0}


class FakeMongoClient:
    """Brief: Minimal MongoClient substitute bound to a FakeMongoServer."""

    def __init__(
        self,
        server: "FakeMongoServer",
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        authSource: Optional[str] = None,  # noqa: N803
        **kwargs: Any,
    ) -> None:
        self.server = server
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.auth_source = authSource
        self.kwargs = kwargs
        self.closed = False
        server.clients.append(self)

    @property
    def admin(self) -> FakeDatabase:
        return FakeDatabase(self, "admin")

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(self, name)

    def check_usable(self) -> None:
        if self.closed:
            raise mongo_errors.InvalidOperation("Cannot use MongoClient after close")
        self.server.check_up()
        if self.username is not None:
            expected = self.server.users.get((self.auth_source, self.username))
            if expected is None or expected != self.password:
                raise mongo_errors.OperationFailure("Authentication failed.", code=18)

    def close(self) -> None:
        self.closed = True


class FakeMongoServer:
    """Brief: Shared state behind every FakeMongoClient created in a test.

    Attributes:
      - up: When False every round trip raises ServerSelectionTimeoutError.
      - users: {(database, user): password}.
      - clients: Every client constructed, in order.
    """

    def __init__(self) -> None:
        self.up = True
        self.users: Dict[Tuple[str, str], str] = {}
        self.clients: List[FakeMongoClient] = []
        self._collections: Dict[Tuple[str, str], FakeCollection] = {}

    def check_up(self) -> None:
        if not self.up:
            raise mongo_errors.ServerSelectionTimeoutError("No servers available")

    def collection(self, database: str, name: str) -> FakeCollection:
        key = (database, name)
        if key not in self._collections:
            self._collections[key] = FakeCollection(self)
        return self._collections[key]

    def module(self) -> types.SimpleNamespace:
        return types.SimpleNamespace(
            MongoClient=lambda *args, **kwargs: FakeMongoClient(self, *args, **kwargs),
            errors=mongo_errors,
        )


@pytest.fixture
def mongo_server(monkeypatch) -> FakeMongoServer:
    """
    Brief: Install a FakeMongoServer as the pymongo driver for one test.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - FakeMongoServer with user ('z', 'u') -> 'p' registered.
    """
    server = FakeMongoServer()
    server.users[("z", "u")] = "p"
    monkeypatch.setattr(connection_mod, "_import_mongo_driver", server.module)
    return server


@pytest.fixture
def binding_args() -> List[str]:
    return ["z", "c", "h", "27017", "u", "p"]


@pytest.fixture
def example_docs() -> List[Dict[str, Any]]:
    return [
        {"_id": 1, "name": "example.com", "ttl": 300, "rdtype": "A", "rdata": "10.0.0.1"},
    ]


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Undo init_logging() side effects on the root logger after each test.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    driver = logging.getLogger("pymongo")
    handlers, level, driver_level = list(root.handlers), root.level, driver.level
    yield
    driver.setLevel(driver_level)
    for h in list(root.handlers):
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)
