"""
Data model shared by the resolver, decoder and subscription engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import avro.schema


class ConnectionState(str, Enum):
    """Connection state of a subscription engine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"

    @property
    def description(self) -> str:
        return {
            ConnectionState.DISCONNECTED: "Disconnected",
            ConnectionState.CONNECTING: "Connecting...",
            ConnectionState.CONNECTED: "Connected",
        }[self]


class ReplayPreset(str, Enum):
    """Where a subscription starts when no cursor is known."""

    LATEST = "LATEST"
    EARLIEST = "EARLIEST"
    CUSTOM = "CUSTOM"


class ChangeType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    UNDELETE = "UNDELETE"
    GAP_CREATE = "GAP_CREATE"
    GAP_UPDATE = "GAP_UPDATE"
    GAP_DELETE = "GAP_DELETE"
    GAP_UNDELETE = "GAP_UNDELETE"
    GAP_OVERFLOW = "GAP_OVERFLOW"

    @property
    def is_gap(self) -> bool:
        """Gap events carry no field values, only the header."""
        return self.value.startswith("GAP_")


@dataclass(frozen=True)
class Credentials:
    """
    Snapshot of the values every RPC must carry. Never stored by the engine;
    a fresh snapshot is taken from the credential source for each call.
    """

    access_token: str
    tenant_id: str
    instance_url: str

    def as_metadata(self) -> Tuple[Tuple[str, str], ...]:
        """Metadata headers in the format the Pub/Sub API expects."""
        return (
            ("accesstoken", self.access_token),
            ("instanceurl", self.instance_url),
            ("tenantid", self.tenant_id),
        )


@dataclass(frozen=True)
class TopicDescriptor:
    topic_name: str
    schema_id: str
    can_subscribe: bool


@dataclass(frozen=True)
class SchemaEntry:
    schema_id: str
    schema: avro.schema.Schema
    schema_json: str


@dataclass
class ChangeEventHeader:
    """Header of a Change Data Capture event."""

    entity_name: str
    record_ids: List[str]
    change_type: ChangeType
    change_origin: str = ""
    transaction_key: str = ""
    sequence_number: int = 0
    commit_timestamp: int = 0
    commit_number: int = 0
    commit_user: str = ""
    changed_fields: List[str] = field(default_factory=list)
    nulled_fields: List[str] = field(default_factory=list)
    diff_fields: List[str] = field(default_factory=list)

    @property
    def record_id(self) -> Optional[str]:
        """First record id (the common single-record case)."""
        return self.record_ids[0] if self.record_ids else None


@dataclass
class DecodedRecord:
    """
    A decoded event. `fields` holds only the fields present in the payload:
    a missing key means "unchanged", explicit nulls are listed in
    `header.nulled_fields`.
    """

    header: Optional[ChangeEventHeader]
    fields: Dict[str, Any]
    schema_id: str
    replay_id: bytes = b""
    event_id: str = ""

    @property
    def changed_field_names(self) -> List[str]:
        return sorted(self.fields)
