"""
salesforce_pubsub_cdc - Python library for subscribing to Salesforce Change
Data Capture events through the Pub/Sub API.

Example:
    from salesforce_pubsub_cdc import (
        CallbackSink,
        PubSubClient,
        SoapLoginCredentialSource,
        SubscriberConfig,
        SubscriptionEngine,
    )

    credentials = SoapLoginCredentialSource(
        url="https://login.salesforce.com",
        username="user@company.com",
        password="password+token",
    )
    engine = SubscriptionEngine(
        config=SubscriberConfig(topic_name="/data/OpportunityChangeEvent"),
        transport=PubSubClient(credentials),
        sink=CallbackSink(lambda record: print(record.header, record.fields)),
    )

    # Stream until a permanent error (blocking)
    await engine.stream_forever()

    # Or use async context manager
    async with engine:
        await engine.wait_closed()
"""

from .config import SubscriberConfig
from .core import SubscriptionEngine
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    InvalidCursorError,
    PubSubStreamError,
    TransientTransportError,
)
from .models import (
    ChangeEventHeader,
    ChangeType,
    ConnectionState,
    Credentials,
    DecodedRecord,
    ReplayPreset,
    SchemaEntry,
    TopicDescriptor,
)
from .pubsub import (
    EventDecoder,
    PubSubClient,
    SchemaCache,
    SoapLoginCredentialSource,
    StaticCredentialSource,
    TopicResolver,
)
from .sinks import CallbackSink, LoggingSink, QueueSink
from .utils import FlowController, RetryPolicy

# Version info
__version__ = "1.0.0"
__description__ = "Salesforce Change Data Capture subscriber for the Pub/Sub API"

__all__ = [
    "AuthenticationError",
    "CallbackSink",
    "ChangeEventHeader",
    "ChangeType",
    "ConfigurationError",
    "ConnectionState",
    "Credentials",
    "DecodeError",
    "DecodedRecord",
    "EventDecoder",
    "FlowController",
    "InvalidCursorError",
    "LoggingSink",
    "PubSubClient",
    "PubSubStreamError",
    "QueueSink",
    "ReplayPreset",
    "RetryPolicy",
    "SchemaCache",
    "SchemaEntry",
    "SoapLoginCredentialSource",
    "StaticCredentialSource",
    "SubscriberConfig",
    "SubscriptionEngine",
    "TopicDescriptor",
    "TopicResolver",
    "TransientTransportError",
]
