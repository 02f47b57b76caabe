"""
Message and service definitions for the eventbus.v1 Pub/Sub API.

The descriptors mirror the subscriber subset of pubsub_api.proto and are
registered in a private descriptor pool when this module is imported, so the
package needs no protoc step at build or install time.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.internal import enum_type_wrapper

PACKAGE = "eventbus.v1"
SERVICE = f"{PACKAGE}.PubSub"

_Field = descriptor_pb2.FieldDescriptorProto

_STRING = _Field.TYPE_STRING
_BYTES = _Field.TYPE_BYTES
_BOOL = _Field.TYPE_BOOL
_INT32 = _Field.TYPE_INT32
_ENUM = _Field.TYPE_ENUM
_MESSAGE = _Field.TYPE_MESSAGE

# (message name, [(field name, number, type, repeated, type name)])
_MESSAGES = [
    ("TopicRequest", [("topic_name", 1, _STRING, False, None)]),
    (
        "TopicInfo",
        [
            ("topic_name", 1, _STRING, False, None),
            ("tenant_guid", 2, _STRING, False, None),
            ("can_publish", 3, _BOOL, False, None),
            ("can_subscribe", 4, _BOOL, False, None),
            ("schema_id", 5, _STRING, False, None),
            ("rpc_id", 6, _STRING, False, None),
        ],
    ),
    ("SchemaRequest", [("schema_id", 1, _STRING, False, None)]),
    (
        "SchemaInfo",
        [
            ("schema_json", 1, _STRING, False, None),
            ("schema_id", 2, _STRING, False, None),
            ("rpc_id", 3, _STRING, False, None),
        ],
    ),
    (
        "EventHeader",
        [
            ("key", 1, _STRING, False, None),
            ("value", 2, _BYTES, False, None),
        ],
    ),
    (
        "ProducerEvent",
        [
            ("id", 1, _STRING, False, None),
            ("schema_id", 2, _STRING, False, None),
            ("payload", 3, _BYTES, False, None),
            ("headers", 4, _MESSAGE, True, "EventHeader"),
        ],
    ),
    (
        "ConsumerEvent",
        [
            ("event", 1, _MESSAGE, False, "ProducerEvent"),
            ("replay_id", 2, _BYTES, False, None),
        ],
    ),
    (
        "FetchRequest",
        [
            ("topic_name", 1, _STRING, False, None),
            ("replay_preset", 2, _ENUM, False, "ReplayPreset"),
            ("replay_id", 3, _BYTES, False, None),
            ("num_requested", 4, _INT32, False, None),
            ("auth_refresh", 5, _STRING, False, None),
        ],
    ),
    (
        "FetchResponse",
        [
            ("events", 1, _MESSAGE, True, "ConsumerEvent"),
            ("latest_replay_id", 2, _BYTES, False, None),
            ("rpc_id", 3, _STRING, False, None),
            ("pending_num_requested", 4, _INT32, False, None),
        ],
    ),
]

_REPLAY_PRESETS = [("LATEST", 0), ("EARLIEST", 1), ("CUSTOM", 2)]


def _build_file():
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "eventbus/v1/pubsub_api.proto"
    file_proto.package = PACKAGE
    file_proto.syntax = "proto3"

    enum_proto = file_proto.enum_type.add()
    enum_proto.name = "ReplayPreset"
    for name, number in _REPLAY_PRESETS:
        value = enum_proto.value.add()
        value.name = name
        value.number = number

    for message_name, fields in _MESSAGES:
        message_proto = file_proto.message_type.add()
        message_proto.name = message_name
        for field_name, number, field_type, repeated, type_name in fields:
            field_proto = message_proto.field.add()
            field_proto.name = field_name
            field_proto.number = number
            field_proto.type = field_type
            field_proto.label = (
                _Field.LABEL_REPEATED if repeated else _Field.LABEL_OPTIONAL
            )
            if type_name:
                field_proto.type_name = f".{PACKAGE}.{type_name}"

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name):
    return message_factory.GetMessageClass(
        _pool.FindMessageTypeByName(f"{PACKAGE}.{name}")
    )


ReplayPreset = enum_type_wrapper.EnumTypeWrapper(
    _pool.FindEnumTypeByName(f"{PACKAGE}.ReplayPreset")
)
LATEST = ReplayPreset.Value("LATEST")
EARLIEST = ReplayPreset.Value("EARLIEST")
CUSTOM = ReplayPreset.Value("CUSTOM")

TopicRequest = _message_class("TopicRequest")
TopicInfo = _message_class("TopicInfo")
SchemaRequest = _message_class("SchemaRequest")
SchemaInfo = _message_class("SchemaInfo")
EventHeader = _message_class("EventHeader")
ProducerEvent = _message_class("ProducerEvent")
ConsumerEvent = _message_class("ConsumerEvent")
FetchRequest = _message_class("FetchRequest")
FetchResponse = _message_class("FetchResponse")


class PubSubStub(object):
    """Client stub for the subscriber methods of eventbus.v1.PubSub."""

    def __init__(self, channel):
        self.GetTopic = channel.unary_unary(
            f"/{SERVICE}/GetTopic",
            request_serializer=TopicRequest.SerializeToString,
            response_deserializer=TopicInfo.FromString,
        )
        self.GetSchema = channel.unary_unary(
            f"/{SERVICE}/GetSchema",
            request_serializer=SchemaRequest.SerializeToString,
            response_deserializer=SchemaInfo.FromString,
        )
        self.Subscribe = channel.stream_stream(
            f"/{SERVICE}/Subscribe",
            request_serializer=FetchRequest.SerializeToString,
            response_deserializer=FetchResponse.FromString,
        )
