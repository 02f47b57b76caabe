"""
client.py

This file defines `PubSubClient`, the gRPC transport used by the
subscription engine to talk to the Salesforce Pub/Sub API.
"""

import asyncio
import logging
import uuid
from typing import Protocol

import certifi
import grpc

from ..errors import AuthenticationError
from .auth import CredentialSource
from .proto import pubsub_api as pb

DEFAULT_GRPC_HOST = "api.pubsub.salesforce.com"
DEFAULT_GRPC_PORT = 7443

# Keepalive settings tuned for long-lived streaming
CHANNEL_OPTIONS = [
    ("grpc.keepalive_time_ms", 60000),  # Send keepalive every 60 seconds
    ("grpc.keepalive_timeout_ms", 10000),  # Wait 10 seconds for keepalive response
    ("grpc.keepalive_permit_without_calls", True),
    ("grpc.http2.max_pings_without_data", 0),
    ("grpc.http2.min_time_between_pings_ms", 30000),
    ("grpc.http2.min_ping_interval_without_data_ms", 300000),
    ("grpc.max_connection_idle_ms", 1800000),
]


class SubscribeCall(Protocol):
    """The parts of a bidirectional streaming call the engine relies on."""

    async def write(self, request) -> None: ...

    async def read(self): ...

    def cancel(self) -> bool: ...


class Transport(Protocol):
    """What the subscription engine needs from a Pub/Sub API connection."""

    async def get_topic(self, topic_name: str): ...

    async def get_schema(self, schema_id: str): ...

    async def subscribe(self) -> SubscribeCall: ...

    async def reset_channel(self) -> None: ...


class ClientTraceInterceptor(
    grpc.aio.UnaryUnaryClientInterceptor, grpc.aio.StreamStreamClientInterceptor
):
    """
    gRPC interceptor that tags every call with a client trace id for
    support troubleshooting.
    """

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)

    def _add_trace_id(self, client_call_details):
        trace_id = str(uuid.uuid4())
        metadata = grpc.aio.Metadata()
        for key, value in client_call_details.metadata or ():
            metadata.add(key, value)
        metadata.add("x-client-trace-id", trace_id)

        self.logger.debug(
            f"Request start - Trace ID: {trace_id}, Method: {client_call_details.method}"
        )
        return client_call_details._replace(metadata=metadata), trace_id

    async def intercept_unary_unary(self, continuation, client_call_details, request):
        new_call_details, trace_id = self._add_trace_id(client_call_details)
        call = await continuation(new_call_details, request)
        self.logger.debug(f"Request sent - Trace ID: {trace_id}")
        return call

    async def intercept_stream_stream(
        self, continuation, client_call_details, request_iterator
    ):
        new_call_details, trace_id = self._add_trace_id(client_call_details)
        call = await continuation(new_call_details, request_iterator)
        self.logger.debug(f"Streaming request started - Trace ID: {trace_id}")
        return call


class PubSubClient:
    """
    Async transport for the Pub/Sub API.

    Credentials are requested from the credential source for every call and
    never stored here, so a rotated token is used by the very next RPC.
    """

    def __init__(
        self,
        credential_source: CredentialSource,
        grpc_host: str = DEFAULT_GRPC_HOST,
        grpc_port: int = DEFAULT_GRPC_PORT,
        channel_options=None,
        secure: bool = True,
    ):
        self.logger = logging.getLogger(__name__)
        self.credential_source = credential_source
        self.grpc_host = grpc_host
        self.grpc_port = grpc_port
        self.channel_options = list(channel_options or CHANNEL_OPTIONS)
        self.secure = secure

        self.channel = None
        self.stub = None

        # Last RPC ID seen on an error, for support troubleshooting
        self._last_rpc_id = None

    @property
    def target(self) -> str:
        return f"{self.grpc_host}:{self.grpc_port}"

    def _create_channel(self):
        interceptors = [ClientTraceInterceptor(self.logger)]
        if not self.secure:
            return grpc.aio.insecure_channel(
                self.target, options=self.channel_options, interceptors=interceptors
            )

        with open(certifi.where(), "rb") as f:
            channel_credentials = grpc.ssl_channel_credentials(f.read())
        return grpc.aio.secure_channel(
            self.target,
            channel_credentials,
            options=self.channel_options,
            interceptors=interceptors,
        )

    def _ensure_stub(self) -> pb.PubSubStub:
        """Lazily create the channel so it binds to the running event loop."""
        if self.stub is None:
            self.channel = self._create_channel()
            self.stub = pb.PubSubStub(self.channel)
            self.logger.debug(f"Opened gRPC channel to {self.target}")
        return self.stub

    async def _auth_metadata(self):
        """
        Per-call metadata. The credential source may block on a login, so it
        is called in a worker thread.
        """
        credentials = await asyncio.to_thread(self.credential_source.get_credentials)
        if not credentials.access_token or not credentials.tenant_id:
            raise AuthenticationError("Credential source returned incomplete credentials")
        return credentials.as_metadata()

    async def get_topic(self, topic_name: str):
        """Uses GetTopic RPC to retrieve the schema id and permissions of a topic."""
        stub = self._ensure_stub()
        return await stub.GetTopic(
            pb.TopicRequest(topic_name=topic_name), metadata=await self._auth_metadata()
        )

    async def get_schema(self, schema_id: str):
        """Uses GetSchema RPC to retrieve a schema given a schema ID."""
        stub = self._ensure_stub()
        return await stub.GetSchema(
            pb.SchemaRequest(schema_id=schema_id), metadata=await self._auth_metadata()
        )

    async def subscribe(self):
        """
        Opens the Subscribe stream. FetchRequests are written with
        `call.write()` and FetchResponses read with `call.read()`.
        """
        stub = self._ensure_stub()
        return stub.Subscribe(metadata=await self._auth_metadata())

    async def reset_channel(self):
        """
        Close the channel so the next call recreates it, to recover from
        connection issues the channel does not heal by itself.
        """
        self.logger.info("Recreating gRPC channel for connection recovery")
        await self.close()

    async def close(self):
        """
        Close the gRPC channel. The engine never closes its transport; the
        owner does, after the engine has disconnected.
        """
        if self.channel is not None:
            try:
                await self.channel.close()
            finally:
                self.channel = None
                self.stub = None

    def get_last_rpc_id(self):
        """Last RPC ID from error trailers, to quote when contacting support."""
        return self._last_rpc_id

    def log_grpc_error(self, e, context=""):
        """
        Log gRPC errors with status, details and the Salesforce-specific
        error code and RPC id from the trailers.
        """
        if not isinstance(e, grpc.RpcError):
            self.logger.error(f"Non-gRPC error {context}: {e}")
            return

        custom_error_code = None
        rpc_id = None
        for key, value in e.trailing_metadata() or ():
            if key == "sfdc-error-code":
                custom_error_code = value
            elif key == "x-rpc-id":
                rpc_id = value
            elif key.startswith("sfdc-"):
                self.logger.debug(f"Salesforce trailer {key}: {value}")

        error_msg = (
            f"gRPC error {context}: "
            f"code={e.code()}, "
            f"details={e.details()}"
        )
        if custom_error_code:
            error_msg += f", custom_error_code={custom_error_code}"
        if rpc_id:
            error_msg += f", rpc_id={rpc_id}"
            self._last_rpc_id = rpc_id

        self.logger.error(error_msg)
