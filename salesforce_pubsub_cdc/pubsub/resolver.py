"""
resolver.py

Resolves topic names to schema ids and schema ids to parsed Avro schemas,
caching schemas for the lifetime of the process.
"""

import logging
import threading
from typing import Dict, Optional

import avro.errors
import avro.schema

from ..errors import DecodeError
from ..models import SchemaEntry, TopicDescriptor


class SchemaCache:
    """
    Append-only map of schema id to parsed schema. Schema ids are stable, so
    entries are never evicted or replaced; the first entry stored for an id wins.
    """

    def __init__(self):
        self._entries: Dict[str, SchemaEntry] = {}
        self._lock = threading.Lock()

    def get(self, schema_id: str) -> Optional[SchemaEntry]:
        return self._entries.get(schema_id)

    def add(self, entry: SchemaEntry) -> SchemaEntry:
        with self._lock:
            return self._entries.setdefault(entry.schema_id, entry)

    def __contains__(self, schema_id) -> bool:
        return schema_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class TopicResolver:
    """Unary lookups used at connection time and on schema-cache misses."""

    def __init__(self, transport, schema_cache: Optional[SchemaCache] = None):
        self.logger = logging.getLogger(__name__)
        self.transport = transport
        self.schema_cache = schema_cache if schema_cache is not None else SchemaCache()

    async def resolve_topic(self, topic_name: str) -> TopicDescriptor:
        topic_info = await self.transport.get_topic(topic_name)
        descriptor = TopicDescriptor(
            topic_name=topic_info.topic_name or topic_name,
            schema_id=topic_info.schema_id,
            can_subscribe=topic_info.can_subscribe,
        )
        self.logger.debug(
            f"Resolved topic {descriptor.topic_name}: schema_id={descriptor.schema_id}, "
            f"can_subscribe={descriptor.can_subscribe}"
        )
        return descriptor

    async def resolve_schema(self, schema_id: str) -> SchemaEntry:
        """
        Return the parsed schema for `schema_id`, calling GetSchema only on
        a cache miss.
        """
        entry = self.schema_cache.get(schema_id)
        if entry is not None:
            return entry

        self.logger.info(f"Schema {schema_id} not cached - fetching")
        schema_info = await self.transport.get_schema(schema_id)
        try:
            schema = avro.schema.parse(schema_info.schema_json)
        except (avro.errors.SchemaParseException, ValueError) as e:
            raise DecodeError(f"Schema {schema_id} could not be parsed: {e}", cause=e)

        return self.schema_cache.add(
            SchemaEntry(
                schema_id=schema_id, schema=schema, schema_json=schema_info.schema_json
            )
        )
