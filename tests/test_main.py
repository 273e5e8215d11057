"""
Brief: Tests for the mongozone CLI entry point (lookup, dump, serve, exit codes).

Inputs:
  - None

Outputs:
  - None
"""

import io
import textwrap

import pytest

from mongozone import main as main_mod
from mongozone.main import EXIT_CONFIG, EXIT_OK, EXIT_STORE, main

CONFIG = """
vars:
  MONGO_PASSWORD: p
logging:
  level: debug
  stderr: false
listen:
  host: 127.0.0.1
  port: 0
zones:
  - zone: mydomain.com
    database: z
    collection: c
    host: h
    port: 27017
    user: u
    password: ${MONGO_PASSWORD}
"""


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(CONFIG))
    return str(path)


@pytest.fixture
def zone_docs(mongo_server):
    mongo_server.collection("z", "c").insert_many(
        [
            {"name": "mydomain.com", "ttl": 3600, "rdtype": "NS", "rdata": "ns0.mydomain.com."},
            {"name": "w0.mydomain.com", "ttl": 300, "rdtype": "A", "rdata": "192.168.1.1"},
            {"name": "w0.mydomain.com", "ttl": 300, "rdtype": "txt", "rdata": '"web"'},
            {"ttl": 300, "rdtype": "A", "rdata": "10.9.9.9"},
        ]
    )


def test_lookup_prints_zone_lines(config_path, zone_docs):
    """
    Brief: `lookup` prints one zone-file line per stored record.

    Inputs:
      - config_path: YAML config bound to the fake store

    Outputs:
      - None: Asserts exit code and printed lines
    """
    out = io.StringIO()

    rc = main(["--config", config_path, "lookup", "mydomain.com", "W0.mydomain.com."], out=out)

    assert rc == EXIT_OK
    assert out.getvalue().splitlines() == [
        "w0.mydomain.com. 300 IN A 192.168.1.1",
        'w0.mydomain.com. 300 IN TXT "web"',
    ]


def test_dump_prints_every_named_record(config_path, zone_docs, mongo_server):
    out = io.StringIO()

    rc = main(["--config", config_path, "dump", "mydomain.com"], out=out)

    assert rc == EXIT_OK
    assert out.getvalue().splitlines() == [
        "mydomain.com. 3600 IN NS ns0.mydomain.com.",
        "w0.mydomain.com. 300 IN A 192.168.1.1",
        'w0.mydomain.com. 300 IN TXT "web"',
    ]
    assert all(c.closed for c in mongo_server.clients)


def test_cli_variable_overrides_file_variable(config_path, zone_docs):
    rc = main(
        ["--config", config_path, "-v", "MONGO_PASSWORD=wrong", "dump", "mydomain.com"],
        out=io.StringIO(),
    )
    assert rc == EXIT_STORE


def test_unknown_zone_is_config_error(config_path, mongo_server):
    rc = main(["--config", config_path, "dump", "other.com"], out=io.StringIO())
    assert rc == EXIT_CONFIG
    assert mongo_server.clients == []


def test_missing_config_file_is_config_error(tmp_path, capsys):
    rc = main(["--config", str(tmp_path / "absent.yaml"), "dump", "mydomain.com"])
    assert rc == EXIT_CONFIG
    assert "absent.yaml" in capsys.readouterr().err


def test_invalid_config_is_config_error(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("zones: []\n")

    rc = main(["--config", str(path), "dump", "mydomain.com"])

    assert rc == EXIT_CONFIG
    assert "Invalid configuration" in capsys.readouterr().err


def test_unreachable_store_is_store_error(config_path, mongo_server):
    mongo_server.up = False
    rc = main(["--config", config_path, "lookup", "mydomain.com", "w0.mydomain.com"])
    assert rc == EXIT_STORE


def test_serve_binds_every_zone_and_closes_on_interrupt(config_path, zone_docs, monkeypatch):
    """
    Brief: `serve` opens every configured zone, serves until interrupted,
    then releases the socket and all bindings.

    Inputs:
      - monkeypatch: replaces MongoZoneUDPServer with a recording stub

    Outputs:
      - None: Asserts the stub saw the listen address and zones
    """
    seen = {}

    class StubServer:
        def __init__(self, address, answerer):
            seen["address"] = address
            seen["zones"] = answerer.zones
            seen["closed"] = False

        def serve_forever(self):
            raise KeyboardInterrupt

        def server_close(self):
            seen["closed"] = True

    monkeypatch.setattr(main_mod, "MongoZoneUDPServer", StubServer)

    rc = main(["--config", config_path, "serve"])

    assert rc == EXIT_OK
    assert seen == {"address": ("127.0.0.1", 0), "zones": ["mydomain.com"], "closed": True}


def test_serve_bind_failure_is_config_error(config_path, zone_docs, monkeypatch):
    def _refuse(address, answerer):
        raise OSError("Address already in use")

    monkeypatch.setattr(main_mod, "MongoZoneUDPServer", _refuse)

    assert main(["--config", config_path, "serve"]) == EXIT_CONFIG
