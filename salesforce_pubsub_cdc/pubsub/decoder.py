"""
decoder.py

Decodes Avro-encoded event payloads into `DecodedRecord` objects.
"""

import io
import logging
from typing import Any, Dict, Optional

import avro.io

from ..errors import DecodeError
from ..models import ChangeEventHeader, ChangeType, DecodedRecord, SchemaEntry
from ..utils import process_bitmap

HEADER_FIELD = "ChangeEventHeader"


class EventDecoder:
    """
    Stateless decoder. The Avro binary encoding is positional, so a payload
    is only accepted if reading it with the schema consumes it exactly.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def decode(
        self,
        schema_entry: SchemaEntry,
        payload: bytes,
        replay_id: bytes = b"",
        event_id: str = "",
    ) -> DecodedRecord:
        datum = self.read_datum(schema_entry, payload)
        if not isinstance(datum, dict):
            raise DecodeError(
                f"Schema {schema_entry.schema_id} does not describe a record"
            )

        header = None
        if HEADER_FIELD in datum:
            header = self._build_header(schema_entry, datum[HEADER_FIELD])

        fields = {
            name: value
            for name, value in datum.items()
            if name != HEADER_FIELD and value is not None
        }

        return DecodedRecord(
            header=header,
            fields=fields,
            schema_id=schema_entry.schema_id,
            replay_id=replay_id,
            event_id=event_id,
        )

    def read_datum(self, schema_entry: SchemaEntry, payload: bytes) -> Any:
        """
        Uses Avro and the event schema to decode a serialized payload.
        """
        buf = io.BytesIO(payload)
        decoder = avro.io.BinaryDecoder(buf)
        reader = avro.io.DatumReader(schema_entry.schema)
        try:
            datum = reader.read(decoder)
        except Exception as e:
            raise DecodeError(
                f"Payload does not match schema {schema_entry.schema_id}: {e}", cause=e
            )

        remaining = len(payload) - buf.tell()
        if remaining:
            raise DecodeError(
                f"Payload has {remaining} trailing bytes after schema {schema_entry.schema_id}"
            )
        return datum

    def _build_header(
        self, schema_entry: SchemaEntry, raw: Optional[Dict[str, Any]]
    ) -> ChangeEventHeader:
        if not isinstance(raw, dict):
            raise DecodeError(f"{HEADER_FIELD} is missing or not a record")

        try:
            change_type = ChangeType(raw.get("changeType"))
        except ValueError as e:
            raise DecodeError(f"Unknown change type {raw.get('changeType')!r}", cause=e)

        try:
            changed_fields = process_bitmap(schema_entry.schema, raw.get("changedFields") or [])
            nulled_fields = process_bitmap(schema_entry.schema, raw.get("nulledFields") or [])
            diff_fields = process_bitmap(schema_entry.schema, raw.get("diffFields") or [])
        except (ValueError, IndexError) as e:
            raise DecodeError(f"Invalid field bitmap in {HEADER_FIELD}: {e}", cause=e)

        return ChangeEventHeader(
            entity_name=raw.get("entityName") or "",
            record_ids=list(raw.get("recordIds") or []),
            change_type=change_type,
            change_origin=raw.get("changeOrigin") or "",
            transaction_key=raw.get("transactionKey") or "",
            sequence_number=raw.get("sequenceNumber") or 0,
            commit_timestamp=raw.get("commitTimestamp") or 0,
            commit_number=raw.get("commitNumber") or 0,
            commit_user=raw.get("commitUser") or "",
            changed_fields=changed_fields,
            nulled_fields=nulled_fields,
            diff_fields=diff_fields,
        )
