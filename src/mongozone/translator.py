from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Optional

from .binding import ZoneBinding
from .exceptions import SinkError
from .records.decoder import DocumentRecord, RecordDecoder

logger = logging.getLogger(__name__)

#: ``sink(rdtype, ttl, rdata)`` for exact-name lookups.
RecordSink = Callable[[str, int, str], Any]
#: ``sink(name, rdtype, ttl, rdata)`` for zone enumeration.
NamedRecordSink = Callable[[str, str, int, str], Any]


class QueryTranslator:
    """Brief: Turn host lookups into store queries and stream records to a sink.

    Inputs (constructor):
      - decoder: Optional RecordDecoder (a default instance otherwise).

    Outputs:
      - QueryTranslator usable with any number of ZoneBindings.

    Example:
      >>> records = []
      >>> QueryTranslator().lookup(binding, "example.com",
      ...     lambda rdtype, ttl, rdata: records.append((rdtype, ttl, rdata)))
      1
      >>> records
      [('A', 300, '10.0.0.1')]
    """

    def __init__(self, decoder: Optional[RecordDecoder] = None) -> None:
        self._decoder = decoder or RecordDecoder()

    def lookup(self, binding: ZoneBinding, name: str, sink: RecordSink) -> int:
        """Brief: Emit every record stored for exactly ``name``.

        Inputs:
          - binding: Opened ZoneBinding.
          - name: Owner name, matched verbatim (no case folding, no wildcards).
          - sink: Called as ``sink(rdtype, ttl, rdata)`` once per record.

        Outputs:
          - int: Number of records emitted (zero means "name not found").

        Raises:
          - StoreConnectionError / AuthError when the store cannot be made
            ready (nothing is emitted) or fails mid-query.
          - SinkError when the sink raises; remaining documents are skipped.
        """

        return self._run(
            binding,
            {"name": str(name)},
            lambda rec: sink(rec.rdtype, rec.ttl, rec.rdata),
            require_name=False,
            label=f"lookup {name!r}",
        )

    def enumerate_all(self, binding: ZoneBinding, sink: NamedRecordSink) -> int:
        """Brief: Emit every decodable record in the zone's collection.

        Inputs:
          - binding: Opened ZoneBinding.
          - sink: Called as ``sink(name, rdtype, ttl, rdata)`` once per record.

        Outputs:
          - int: Number of records emitted (zero means "zone empty").

        Raises:
          - Same as ``lookup``. Documents without a usable ``name`` are skipped.
        """

        return self._run(
            binding,
            {},
            lambda rec: sink(rec.name, rec.rdtype, rec.ttl, rec.rdata),
            require_name=True,
            label="enumerate",
        )

    def has_names_below(self, binding: ZoneBinding, name: str) -> bool:
        """Brief: Tell whether any decodable record is owned by a name under ``name``.

        Inputs:
          - binding: Opened ZoneBinding.
          - name: Owner name; a record for ``a.b.example.com`` is below
            ``b.example.com``.

        Outputs:
          - bool. The store query stops at the first decodable match.

        Raises:
          - StoreConnectionError / AuthError as for ``lookup``.
        """

        suffix = "\\." + re.escape(str(name)) + "$"
        return (
            self._run(
                binding,
                {"name": {"$regex": suffix}},
                lambda rec: None,
                require_name=True,
                label=f"descendants of {name!r}",
                limit=1,
            )
            > 0
        )

    def _run(
        self,
        binding: ZoneBinding,
        query: Dict[str, Any],
        emit: Callable[[DocumentRecord], Any],
        *,
        require_name: bool,
        label: str,
        limit: Optional[int] = None,
    ) -> int:
        cfg = binding.config
        emitted = 0
        skipped = 0
        with binding.lock:
            binding.connection.ensure_ready()
            documents = binding.connection.iter_documents(
                cfg.database, cfg.collection, query
            )
            try:
                for document in documents:
                    record = self._decoder.decode(document, require_name=require_name)
                    if record is None:
                        skipped += 1
                        continue
                    try:
                        emit(record)
                    except SinkError:
                        raise
                    except Exception as exc:
                        raise SinkError(
                            f"Zone {binding.zone} {label}: sink rejected "
                            f"{record.rdtype} record: {exc}"
                        ) from exc
                    emitted += 1
                    if limit is not None and emitted >= limit:
                        break
            finally:
                # Releases the server-side cursor when iteration stops early.
                documents.close()

        logger.debug(
            "Zone %s %s on %s: %d records, %d malformed documents skipped",
            binding.zone,
            label,
            cfg.namespace,
            emitted,
            skipped,
        )
        return emitted
