from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from dnslib import RR

logger = logging.getLogger(__name__)

# RFC 2181 section 8: TTLs are unsigned 32-bit values with the top bit clear.
MAX_TTL = 2**31 - 1

REQUIRED_FIELDS = ("ttl", "rdtype", "rdata")
TEXT_FIELDS = ("name", "rdtype", "rdata")


@dataclass(frozen=True)
class DocumentRecord:
    """Brief: One resource record decoded from a store document.

    Inputs (constructor fields):
      - ttl: Non-negative TTL in seconds.
      - rdtype: Record type mnemonic as stored (e.g. "A", "MX").
      - rdata: Presentation-format record data (e.g. "10 mail.example.com.").
      - name: Owner name when the document carried one.

    Outputs:
      - Immutable record value.

    Example:
      >>> rec = DocumentRecord(ttl=300, rdtype="A", rdata="10.0.0.1", name="example.com")
      >>> rec.to_zone_line()
      'example.com. 300 IN A 10.0.0.1'
    """

    ttl: int
    rdtype: str
    rdata: str
    name: Optional[str] = None

    def to_zone_line(self, owner: Optional[str] = None) -> str:
        """Brief: Render the record as a zone-file line.

        Inputs:
          - owner: Owner name override; defaults to the record's own name.

        Outputs:
          - str: ``<owner>. <ttl> IN <TYPE> <rdata>``.
        """

        owner_name = owner if owner is not None else self.name
        if not owner_name:
            raise ValueError("DocumentRecord has no owner name")
        owner_name = owner_name.rstrip(".") + "."
        return f"{owner_name} {self.ttl} IN {self.rdtype.upper()} {self.rdata}"

    def to_rrs(self, owner: Optional[str] = None) -> List[RR]:
        """Brief: Parse the record into dnslib RR objects.

        Inputs:
          - owner: Owner name override; defaults to the record's own name.

        Outputs:
          - list[RR]: Usually one RR.

        Raises:
          - Exception from dnslib when rdata does not parse for rdtype.
        """

        return RR.fromZone(self.to_zone_line(owner))


class RecordDecoder:
    """Brief: Decode store documents into DocumentRecord values.

    Only the ``name``, ``ttl``, ``rdtype`` and ``rdata`` fields are recognised
    (case-sensitive); anything else, including ``_id``, is ignored. Each call
    works on fresh per-document state and returns either a complete record or
    None.
    """

    def decode(
        self, document: Mapping[str, Any], require_name: bool = False
    ) -> Optional[DocumentRecord]:
        """Brief: Decode one document.

        Inputs:
          - document: Mapping as returned by the store, fields in any order.
          - require_name: When True (zone enumeration) a document without a
            usable ``name`` yields no record.

        Outputs:
          - DocumentRecord, or None when the document is malformed: a required
            field is missing, ``ttl`` is not a non-negative integral number, or a text
            field is not a string.
        """

        fields: Dict[str, Any] = {}
        for key, value in document.items():
            if key == "ttl":
                # The mongo shell stores numeric literals as doubles; accept
                # integral ones. bool is an int subclass but never a valid TTL.
                if isinstance(value, float) and value.is_integer():
                    value = int(value)
                if isinstance(value, bool) or not isinstance(value, int):
                    return self._malformed(document, f"ttl {value!r} is not an integer")
                if not 0 <= value <= MAX_TTL:
                    return self._malformed(document, f"ttl {value} out of range")
                fields[key] = int(value)
            elif key in TEXT_FIELDS:
                if not isinstance(value, str):
                    return self._malformed(document, f"{key} has type {type(value).__name__}")
                if key != "name" and not value.strip():
                    return self._malformed(document, f"{key} is empty")
                fields[key] = value

        missing = [f for f in REQUIRED_FIELDS if f not in fields]
        if require_name and not fields.get("name", "").strip():
            missing.append("name")
        if missing:
            return self._malformed(document, f"missing {', '.join(missing)}")

        return DocumentRecord(
            ttl=fields["ttl"],
            rdtype=fields["rdtype"],
            rdata=fields["rdata"],
            name=fields.get("name"),
        )

    @staticmethod
    def _malformed(document: Mapping[str, Any], reason: str) -> None:
        logger.debug("Skipping malformed record document %r: %s", document.get("_id"), reason)
        return None


def decode_document(
    document: Mapping[str, Any], require_name: bool = False
) -> Optional[DocumentRecord]:
    """Brief: Module-level shortcut for ``RecordDecoder().decode``."""
    return _DEFAULT_DECODER.decode(document, require_name=require_name)


_DEFAULT_DECODER = RecordDecoder()
