"""Pub/Sub API transport, credential sources, resolver and decoder."""

from .auth import CredentialSource, SoapLoginCredentialSource, StaticCredentialSource
from .client import PubSubClient, Transport
from .decoder import EventDecoder
from .resolver import SchemaCache, TopicResolver

__all__ = [
    "CredentialSource",
    "EventDecoder",
    "PubSubClient",
    "SchemaCache",
    "SoapLoginCredentialSource",
    "StaticCredentialSource",
    "TopicResolver",
    "Transport",
]
