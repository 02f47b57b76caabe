"""Shared fakes for unit tests: a scripted Pub/Sub transport and CDC payloads."""

from __future__ import annotations

import asyncio
import io
import json
from collections import deque
from typing import Callable

import avro.io
import avro.schema
import grpc

from salesforce_pubsub_cdc.pubsub.proto import pubsub_api as pb

TOPIC = "/data/OpportunityChangeEvent"
SCHEMA_ID = "schema-opportunity-1"

_BITMAP_LIST = {"type": "array", "items": "string"}

CDC_SCHEMA_DICT = {
    "type": "record",
    "name": "OpportunityChangeEvent",
    "namespace": "com.sforce.eventbus",
    "fields": [
        {
            "name": "ChangeEventHeader",
            "type": {
                "type": "record",
                "name": "ChangeEventHeader",
                "fields": [
                    {"name": "entityName", "type": "string"},
                    {"name": "recordIds", "type": {"type": "array", "items": "string"}},
                    {
                        "name": "changeType",
                        "type": {
                            "type": "enum",
                            "name": "ChangeType",
                            "symbols": [
                                "CREATE",
                                "UPDATE",
                                "DELETE",
                                "UNDELETE",
                                "GAP_CREATE",
                                "GAP_UPDATE",
                                "GAP_DELETE",
                                "GAP_UNDELETE",
                                "GAP_OVERFLOW",
                            ],
                        },
                    },
                    {"name": "changeOrigin", "type": "string"},
                    {"name": "transactionKey", "type": "string"},
                    {"name": "sequenceNumber", "type": "int"},
                    {"name": "commitTimestamp", "type": "long"},
                    {"name": "commitNumber", "type": "long"},
                    {"name": "commitUser", "type": "string"},
                    {"name": "nulledFields", "type": _BITMAP_LIST},
                    {"name": "diffFields", "type": _BITMAP_LIST},
                    {"name": "changedFields", "type": _BITMAP_LIST},
                ],
            },
        },
        {"name": "Name", "type": ["null", "string"], "default": None},
        {"name": "Amount", "type": ["null", "double"], "default": None},
        {"name": "StageName", "type": ["null", "string"], "default": None},
        {
            "name": "BillingAddress",
            "type": [
                "null",
                {
                    "type": "record",
                    "name": "Address",
                    "fields": [
                        {"name": "Street", "type": ["null", "string"], "default": None},
                        {"name": "City", "type": ["null", "string"], "default": None},
                    ],
                },
            ],
            "default": None,
        },
    ],
}

CDC_SCHEMA_JSON = json.dumps(CDC_SCHEMA_DICT)
CDC_SCHEMA = avro.schema.parse(CDC_SCHEMA_JSON)


def rid(n: int) -> bytes:
    """Replay id for the n-th test event."""
    return n.to_bytes(8, "big")


def make_header(
    change_type: str = "UPDATE",
    record_ids=("006000000000001AAA",),
    changed_fields=("0x06",),
    nulled_fields=(),
    diff_fields=(),
) -> dict:
    return {
        "entityName": "Opportunity",
        "recordIds": list(record_ids),
        "changeType": change_type,
        "changeOrigin": "com/salesforce/api/soap/57.0;client=test",
        "transactionKey": "0002a7c5-0c3e-b5f4-46a5-6b1a1e0c2b5d",
        "sequenceNumber": 1,
        "commitTimestamp": 1700000000000,
        "commitNumber": 11000000000001,
        "commitUser": "005000000000001AAA",
        "nulledFields": list(nulled_fields),
        "diffFields": list(diff_fields),
        "changedFields": list(changed_fields),
    }


def encode(datum: dict, schema: avro.schema.Schema = CDC_SCHEMA) -> bytes:
    buf = io.BytesIO()
    avro.io.DatumWriter(schema).write(datum, avro.io.BinaryEncoder(buf))
    return buf.getvalue()


def make_payload(name: str = "Acme - 200 Widgets", amount: float = 1500.0, **header) -> bytes:
    return encode(
        {
            "ChangeEventHeader": make_header(**header),
            "Name": name,
            "Amount": amount,
            "StageName": None,
            "BillingAddress": None,
        }
    )


def make_event(n: int, payload: bytes = None, schema_id: str = SCHEMA_ID):
    return pb.ConsumerEvent(
        event=pb.ProducerEvent(
            id=f"event-{n}",
            schema_id=schema_id,
            payload=payload if payload is not None else make_payload(name=f"Opportunity {n}"),
        ),
        replay_id=rid(n),
    )


def make_response(*events, latest_replay_id: bytes = None, pending: int = 0):
    if latest_replay_id is None:
        latest_replay_id = events[-1].replay_id if events else b""
    return pb.FetchResponse(
        events=list(events),
        latest_replay_id=latest_replay_id,
        pending_num_requested=pending,
    )


def keepalive(latest_replay_id: bytes, pending: int = 1):
    return pb.FetchResponse(
        latest_replay_id=latest_replay_id, pending_num_requested=pending
    )


class FakeRpcError(grpc.RpcError):
    def __init__(self, code: grpc.StatusCode, details: str = "", trailers=()):
        super().__init__(details)
        self._code = code
        self._details = details
        self._trailers = tuple(trailers)

    def code(self):
        return self._code

    def details(self):
        return self._details

    def trailing_metadata(self):
        return self._trailers


def unavailable():
    return FakeRpcError(grpc.StatusCode.UNAVAILABLE, "upstream connect error")


def unauthenticated():
    return FakeRpcError(grpc.StatusCode.UNAUTHENTICATED, "Session expired or invalid")


class ScriptedCall:
    """
    Server side of one Subscribe stream. Script items are FetchResponses,
    exceptions (raised from read) or grpc.aio.EOF. A response carrying
    events is only served while a FetchRequest is outstanding; everything
    else only after the first request arrived. An exhausted script keeps
    the stream open until it is cancelled.
    """

    def __init__(self, script, timeline: list):
        self.script = deque(script)
        self.requests = []
        self.timeline = timeline
        self.cancelled = False
        self._fulfilled = 0
        self._changed = asyncio.Condition()

    @property
    def outstanding(self) -> int:
        return len(self.requests) - self._fulfilled

    async def write(self, request):
        self.requests.append(pb.FetchRequest.FromString(request.SerializeToString()))
        self.timeline.append(("request", len(self.requests)))
        async with self._changed:
            self._changed.notify_all()

    async def read(self):
        if not self.script:
            await asyncio.Event().wait()

        item = self.script[0]
        async with self._changed:
            await self._changed.wait_for(lambda: self._ready(item))
        self.script.popleft()

        if isinstance(item, BaseException):
            raise item
        if item is not grpc.aio.EOF and len(item.events):
            self._fulfilled += 1
        return item

    def _ready(self, item) -> bool:
        if getattr(item, "events", None):
            return self.outstanding > 0
        return len(self.requests) > 0

    def cancel(self) -> bool:
        self.cancelled = True
        return True


class StubTransport:
    """In-memory transport: one script per subscribe() call, in order."""

    def __init__(
        self,
        scripts=(),
        default_script: Callable[[], list] = list,
        can_subscribe: bool = True,
        schema_json: str = CDC_SCHEMA_JSON,
        topic_delay: float = 0.0,
    ):
        self.scripts = deque(scripts)
        self.default_script = default_script
        self.can_subscribe = can_subscribe
        self.schema_json = schema_json
        self.topic_delay = topic_delay

        self.timeline = []
        self.calls = []
        self.topic_calls = 0
        self.schema_calls = 0
        self.schema_requests = []
        self.reset_calls = 0

    async def get_topic(self, topic_name: str):
        self.topic_calls += 1
        if self.topic_delay:
            await asyncio.sleep(self.topic_delay)
        return pb.TopicInfo(
            topic_name=topic_name,
            schema_id=SCHEMA_ID,
            can_subscribe=self.can_subscribe,
        )

    async def get_schema(self, schema_id: str):
        self.schema_calls += 1
        self.schema_requests.append(schema_id)
        return pb.SchemaInfo(schema_json=self.schema_json, schema_id=schema_id)

    async def subscribe(self):
        script = self.scripts.popleft() if self.scripts else self.default_script()
        call = ScriptedCall(script, self.timeline)
        self.calls.append(call)
        return call

    async def reset_channel(self):
        self.reset_calls += 1


class RecordingSink:
    def __init__(self, timeline: list = None, fail_on=()):
        self.records = []
        self.timeline = timeline if timeline is not None else []
        self.fail_on = set(fail_on)

    def on_event(self, record):
        if record.replay_id in self.fail_on:
            raise RuntimeError(f"sink rejected {record.event_id}")
        self.records.append(record)
        self.timeline.append(("event", record.replay_id))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


# Trimmed SOAP partner login response
LOGIN_RESPONSE = b"""<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" xmlns="urn:partner.soap.sforce.com">
<soapenv:Body><loginResponse><result>
<metadataServerUrl>https://acme.my.salesforce.com/services/Soap/m/57.0/00D000000000001</metadataServerUrl>
<passwordExpired>false</passwordExpired>
<sandbox>false</sandbox>
<serverUrl>https://acme.my.salesforce.com/services/Soap/u/57.0/00D000000000001</serverUrl>
<sessionId>00D000000000001!SESSION</sessionId>
<userId>005000000000001AAA</userId>
<userInfo>
<accessibilityMode>false</accessibilityMode>
<chatterExternal>false</chatterExternal>
<currencySymbol>$</currencySymbol>
<orgAttachmentFileSizeLimit>5242880</orgAttachmentFileSizeLimit>
<orgDefaultCurrencyIsoCode>USD</orgDefaultCurrencyIsoCode>
<orgDefaultCurrencyLocale>en_US</orgDefaultCurrencyLocale>
<orgDisallowHtmlAttachments>false</orgDisallowHtmlAttachments>
<orgHasPersonAccounts>false</orgHasPersonAccounts>
<organizationId>00D000000000001EAA</organizationId>
</userInfo>
</result></loginResponse></soapenv:Body></soapenv:Envelope>"""
