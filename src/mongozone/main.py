from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, TextIO

from .binding import ZoneBinding, normalize_zone
from .config.config_parser import (
    get_listen_address,
    get_zone_config,
    load_zone_configs,
    parse_config_file,
)
from .config.logging_config import init_logging
from .driver import init_driver
from .exceptions import ConfigError, MongoZoneError
from .records.decoder import DocumentRecord
from .server import MongoZoneUDPServer, ZoneAnswerer

logger = logging.getLogger("mongozone.main")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_STORE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongozone", description="Serve DNS zones stored in MongoDB"
    )
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a config variable (overrides environment and file vars)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Answer DNS queries over UDP for every zone")

    lookup = sub.add_parser("lookup", help="Print the records stored for one name")
    lookup.add_argument("zone")
    lookup.add_argument("name")

    dump = sub.add_parser("dump", help="Print a zone in zone-file format")
    dump.add_argument("zone")
    return parser


def _cmd_lookup(binding: ZoneBinding, name: str, driver, out: TextIO) -> None:
    owner = normalize_zone(name)
    driver.lookup(
        binding,
        owner,
        lambda rdtype, ttl, rdata: print(
            DocumentRecord(ttl=ttl, rdtype=rdtype, rdata=rdata).to_zone_line(owner),
            file=out,
        ),
    )


def _cmd_dump(binding: ZoneBinding, driver, out: TextIO) -> None:
    count = driver.allnodes(
        binding,
        lambda name, rdtype, ttl, rdata: print(
            DocumentRecord(ttl=ttl, rdtype=rdtype, rdata=rdata, name=name).to_zone_line(),
            file=out,
        ),
    )
    logger.info("Dumped %d records from zone %s", count, binding.zone)


def _cmd_serve(cfg: dict, driver) -> None:
    for zone, zone_cfg in load_zone_configs(cfg):
        driver.adopt(ZoneBinding.from_config(zone, zone_cfg))

    answerer = ZoneAnswerer(driver.bindings)
    address = get_listen_address(cfg)
    server = MongoZoneUDPServer(address, answerer)
    logger.info(
        "Serving zones %s on udp://%s:%d",
        ", ".join(answerer.zones),
        address[0],
        address[1],
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        server.server_close()


def main(argv: Optional[List[str]] = None, out: Optional[TextIO] = None) -> int:
    """
    Main entry point for the mongozone CLI.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).
        out: Stream for lookup/dump output (defaults to stdout).

    Returns:
        An exit code: 0 on success, 1 on configuration errors, 2 when MongoDB
        is unreachable or rejects the credentials.

    Example use:
        CLI:
            mongozone --config config.yaml dump mydomain.com
            mongozone --config config.yaml -v MONGO_PASSWORD=secret serve
    """
    args = _build_parser().parse_args(argv)
    out = out or sys.stdout

    try:
        cfg = parse_config_file(args.config, cli_vars=args.var)
    except (ConfigError, OSError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_CONFIG

    init_logging(cfg.get("logging"))
    logger.info("Loaded config from %s", args.config)

    with init_driver() as driver:
        try:
            if args.command == "serve":
                _cmd_serve(cfg, driver)
                return EXIT_OK

            binding = driver.adopt(
                ZoneBinding.from_config(args.zone, get_zone_config(cfg, args.zone))
            )
            if args.command == "lookup":
                _cmd_lookup(binding, args.name, driver, out)
            else:
                _cmd_dump(binding, driver, out)
        except ConfigError as exc:
            logger.error("%s", exc)
            return EXIT_CONFIG
        except MongoZoneError as exc:
            logger.error("%s", exc)
            return EXIT_STORE
        except OSError as exc:
            logger.error("Cannot listen: %s", exc)
            return EXIT_CONFIG
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
