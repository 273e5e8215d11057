"""Authoritative DNS answering on top of MongoDB-backed zone bindings.

Brief:
  ZoneAnswerer turns raw DNS query bytes into authoritative responses by
  looking the query name up through the QueryTranslator. MongoZoneUDPServer
  serves those answers over UDP with a thread per datagram.
"""

from __future__ import annotations

import logging
import socketserver
from typing import Dict, Iterable, List, Optional, Tuple

from dnslib import QTYPE, RCODE, DNSRecord

from .binding import ZoneBinding, normalize_zone
from .exceptions import MongoZoneError
from .records.decoder import DocumentRecord
from .translator import QueryTranslator

logger = logging.getLogger(__name__)

# Classic DNS/UDP payload limit when the client did not advertise EDNS.
DEFAULT_UDP_PAYLOAD = 512


class ZoneAnswerer:
    """Brief: Build authoritative DNS responses from zone bindings.

    Inputs (constructor):
      - bindings: Opened ZoneBindings; each answers for its ``zone`` and every
        name below it.
      - translator: Optional QueryTranslator.

    Outputs:
      - ZoneAnswerer whose ``answer(query_bytes)`` returns response bytes.

    Behaviour:
      - CNAME at the owner name answers any qtype with the CNAME only.
      - QTYPE.ANY returns every record at the owner name.
      - NODATA (NOERROR, empty answer) and NXDOMAIN carry the zone SOA in the
        authority section when the zone has one.
      - A name without records but with names below it is NODATA.
      - Names outside every configured zone are REFUSED; a store failure
        yields SERVFAIL.
    """

    def __init__(
        self,
        bindings: Iterable[ZoneBinding],
        translator: Optional[QueryTranslator] = None,
    ) -> None:
        self._translator = translator or QueryTranslator()
        self._zones: Dict[str, ZoneBinding] = {b.zone: b for b in bindings}

    @property
    def zones(self) -> List[str]:
        return sorted(self._zones)

    def find_binding(self, name: str) -> Optional[ZoneBinding]:
        """Brief: Return the binding of the longest zone containing ``name``.

        Example:
          With zones {"example.com", "sub.example.com"}:
            find_binding("www.sub.example.com") -> binding for sub.example.com
            find_binding("example.org") -> None
        """

        best: Optional[str] = None
        for apex in self._zones:
            if name == apex or name.endswith("." + apex):
                if best is None or len(apex) > len(best):
                    best = apex
        return self._zones.get(best) if best is not None else None

    def _records_at(self, binding: ZoneBinding, name: str) -> List[DocumentRecord]:
        records: List[DocumentRecord] = []
        self._translator.lookup(
            binding,
            name,
            lambda rdtype, ttl, rdata: records.append(
                DocumentRecord(ttl=ttl, rdtype=rdtype.upper(), rdata=rdata, name=name)
            ),
        )
        return records

    @staticmethod
    def _add_records(
        reply: DNSRecord, owner: str, records: Iterable[DocumentRecord], section: str
    ) -> int:
        added = 0
        add = reply.add_answer if section == "answer" else reply.add_auth
        for record in records:
            try:
                rrs = record.to_rrs(owner)
            except Exception as exc:
                logger.warning(
                    "Invalid %s record for %s (%r): %s",
                    record.rdtype,
                    owner,
                    record.rdata,
                    exc,
                )
                continue
            for rr in rrs:
                add(rr)
                added += 1
        return added

    def _add_soa(self, reply: DNSRecord, binding: ZoneBinding) -> None:
        soa = [r for r in self._records_at(binding, binding.zone) if r.rdtype == "SOA"]
        self._add_records(reply, binding.zone + ".", soa, "authority")

    def answer(self, data: bytes) -> Optional[bytes]:
        """Brief: Answer one DNS query.

        Inputs:
          - data: Raw DNS query bytes.

        Outputs:
          - Response bytes, or None when the query cannot be parsed (the
            datagram is dropped).
        """

        try:
            request = DNSRecord.parse(data)
        except Exception as exc:
            logger.debug("Dropping unparsable query: %s", exc)
            return None

        reply = request.reply(ra=0, aa=1)
        owner = str(request.q.qname)
        name = normalize_zone(owner)
        qtype = int(request.q.qtype)
        type_name = QTYPE.get(qtype, str(qtype))

        binding = self.find_binding(name)
        if binding is None:
            logger.debug("Refusing %s %s: not in any configured zone", name, type_name)
            reply.header.aa = 0
            reply.header.rcode = RCODE.REFUSED
            return reply.pack()

        try:
            records = self._records_at(binding, name)
            cnames = [r for r in records if r.rdtype == "CNAME"]
            if cnames and qtype != QTYPE.CNAME:
                selected = cnames
            elif qtype == QTYPE.ANY:
                selected = records
            else:
                selected = [r for r in records if r.rdtype == type_name]

            if selected:
                self._add_records(reply, owner, selected, "answer")
            else:
                # Empty non-terminals exist (RFC 8020): NODATA, not NXDOMAIN.
                if not records and not self._translator.has_names_below(binding, name):
                    reply.header.rcode = RCODE.NXDOMAIN
                self._add_soa(reply, binding)
        except MongoZoneError as exc:
            logger.warning("SERVFAIL for %s %s: %s", name, type_name, exc)
            reply = request.reply(ra=0, aa=0)
            reply.header.rcode = RCODE.SERVFAIL
            return reply.pack()

        logger.debug(
            "%s %s -> %s, %d answers",
            name,
            type_name,
            RCODE.get(reply.header.rcode),
            len(reply.rr),
        )
        return reply.pack()

    def answer_udp(self, data: bytes, max_size: int = DEFAULT_UDP_PAYLOAD) -> Optional[bytes]:
        """Brief: Answer a UDP query, truncating (TC=1) oversized responses."""
        wire = self.answer(data)
        if wire is None or len(wire) <= max_size:
            return wire
        return DNSRecord.parse(wire).truncate().pack()


class _ZoneUDPHandler(socketserver.BaseRequestHandler):
    """Brief: Answer one UDP datagram through the server's ZoneAnswerer."""

    def handle(self) -> None:
        data, sock = self.request
        try:
            wire = self.server.answerer.answer_udp(data)
        except Exception:
            logger.exception("Unhandled error answering query from %s", self.client_address[0])
            return
        if wire:
            sock.sendto(wire, self.client_address)


class MongoZoneUDPServer(socketserver.ThreadingUDPServer):
    """Brief: Threaded UDP DNS server bound to a ZoneAnswerer.

    Example use:
        >>> server = MongoZoneUDPServer(("127.0.0.1", 5353), answerer)
        >>> threading.Thread(target=server.serve_forever, daemon=True).start()
        >>> server.shutdown()
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: Tuple[str, int], answerer: ZoneAnswerer) -> None:
        self.answerer = answerer
        super().__init__(address, _ZoneUDPHandler)
