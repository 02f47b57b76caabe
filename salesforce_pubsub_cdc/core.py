"""
Subscription engine: owns the lifecycle of one Pub/Sub API subscription,
from topic and schema resolution through the flow-controlled Subscribe
stream to reconnection after failures.
"""

import asyncio
import inspect
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import grpc

from .config import SubscriberConfig
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    PubSubStreamError,
    TransientTransportError,
)
from .models import ConnectionState, ReplayPreset, TopicDescriptor
from .pubsub.decoder import EventDecoder
from .pubsub.proto import pubsub_api as pb
from .pubsub.resolver import SchemaCache, TopicResolver
from .sinks import EventSink, deliver
from .utils import FlowController, RetryPolicy

# Once the producer has failed, how long the consumer gets to surface the
# stream's final status before the connection is torn down.
STATUS_GRACE_SECONDS = 1.0

# Always one event per FetchRequest: one outstanding request at a time.
NUM_REQUESTED = 1


class SubscriptionEngine:
    """
    Streams decoded events from one topic into a sink.

    Example:
        engine = SubscriptionEngine(
            config=SubscriberConfig(topic_name="/data/OpportunityChangeEvent"),
            transport=PubSubClient(credential_source),
            sink=LoggingSink(),
        )

        # Run until a permanent error or cancellation
        await engine.stream_forever()

        # Or manage the session explicitly
        async with engine:
            ...
    """

    def __init__(
        self,
        config: SubscriberConfig,
        transport,
        sink: EventSink,
        schema_cache: Optional[SchemaCache] = None,
        decoder: Optional[EventDecoder] = None,
        retry_policy: Optional[RetryPolicy] = None,
        on_auth_required: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            config: Subscription settings
            transport: Pub/Sub API transport, usually a PubSubClient
            sink: Receives every decoded event
            schema_cache: Cache to share between engines (default: a new one)
            decoder: Event decoder (default: EventDecoder)
            retry_policy: Backoff policy (default: built from config delays)
            on_auth_required: Called when the server rejects the credentials;
                the host refreshes them and then calls notify_credentials_refreshed()
        """
        self.config = config
        self.topic_name = config.topic_name
        self.logger = logging.getLogger(
            f"{__name__}.{config.topic_name.rsplit('/', 1)[-1]}"
        )

        self._transport = transport
        self._sink = sink
        self._resolver = TopicResolver(transport, schema_cache)
        self._decoder = decoder or EventDecoder()
        self._retry_policy = retry_policy or RetryPolicy(
            base_retry_delay=config.base_retry_delay,
            max_retry_delay=config.max_retry_delay,
        )
        self._flow_controller = FlowController(self.logger)
        self._on_auth_required = on_auth_required

        self._state = ConnectionState.DISCONNECTED
        self._state_listeners: List[Callable[[ConnectionState], Any]] = []

        self._replay_lock = threading.Lock()
        self._replay_id: Optional[bytes] = config.initial_replay_id()

        self._session: Optional[asyncio.Task] = None
        self._terminal_error: Optional[PubSubStreamError] = None
        self._credentials_refreshed = asyncio.Event()
        self._network_available = asyncio.Event()

        # Reconnection bookkeeping, reset once a connection delivers a response
        self._attempt = 0
        self._consecutive_failures = 0
        self._auth_failures = 0
        self._connection_healthy = False

        self.last_update_time: Optional[float] = None
        self._stats = {
            "connections": 0,
            "reconnects": 0,
            "requests_sent": 0,
            "responses_received": 0,
            "keepalives_received": 0,
            "events_delivered": 0,
            "decode_errors": 0,
            "sink_errors": 0,
        }

    # ------------------------------------------------------------------
    # Public API

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def replay_id(self) -> Optional[bytes]:
        """Latest cursor received from the server (or the configured start)."""
        with self._replay_lock:
            return self._replay_id

    @property
    def terminal_error(self) -> Optional[PubSubStreamError]:
        """Permanent error that ended the last session, if any."""
        return self._terminal_error

    @property
    def schema_cache(self) -> SchemaCache:
        return self._resolver.schema_cache

    def reset_replay_id(self):
        """
        Forget the stored cursor; the next connection starts from the
        configured replay preset. Used after an InvalidCursorError.
        """
        with self._replay_lock:
            self._replay_id = None
        self.logger.info("Replay id cleared - next connection uses the configured preset")

    def add_state_listener(self, listener: Callable[[ConnectionState], Any]):
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: Callable[[ConnectionState], Any]):
        self._state_listeners.remove(listener)

    def notify_credentials_refreshed(self):
        """Tell a session waiting after an authentication failure to retry."""
        self._credentials_refreshed.set()

    def notify_network_available(self):
        """Cut a pending backoff short, e.g. when connectivity returns."""
        self._network_available.set()

    async def connect(self):
        """
        Start a subscription session. Any running session is cancelled and
        replaced; the stored replay id is kept.
        """
        await self._cancel_session()
        self._terminal_error = None
        self._attempt = 0
        self._consecutive_failures = 0
        self._auth_failures = 0
        self._session = asyncio.create_task(
            self._run_session(), name=f"pubsub-session:{self.topic_name}"
        )

    async def disconnect(self):
        """
        Stop the session. The stored replay id is kept for the next connect().
        The transport stays open; its owner closes it.
        """
        await self._cancel_session()
        self._flow_controller.reset()
        self._set_state(ConnectionState.DISCONNECTED)
        self._flow_controller.log_health_report()

    async def wait_closed(self):
        """
        Wait until the session ends. Raises the permanent error that ended
        it, if any.
        """
        session = self._session
        if session is not None:
            await asyncio.wait([session])
        if self._terminal_error is not None:
            raise self._terminal_error

    async def stream_forever(self):
        """Connect and stream until a permanent error or cancellation."""
        await self.connect()
        try:
            await self.wait_closed()
        finally:
            await self.disconnect()

    def start(self):
        """
        Start synchronous streaming (blocking).
        This method will run until interrupted with Ctrl+C or a permanent error.
        """
        self.logger.info(f"Starting subscription engine for {self.topic_name}")
        try:
            asyncio.run(self.stream_forever())
        except KeyboardInterrupt:
            self.logger.info("Shutting down gracefully...")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False

    def make_fetch_request(self, topic_name: str = ""):
        """
        Creates a FetchRequest resuming from the stored replay id when there
        is one, otherwise from the configured preset.
        """
        replay_id = self.replay_id
        if replay_id:
            replay_preset = pb.CUSTOM
        elif self.config.replay_preset == ReplayPreset.EARLIEST:
            replay_preset = pb.EARLIEST
        else:
            replay_preset = pb.LATEST

        return pb.FetchRequest(
            topic_name=topic_name,
            replay_preset=replay_preset,
            replay_id=replay_id or b"",
            num_requested=NUM_REQUESTED,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get current streaming statistics."""
        replay_id = self.replay_id
        stats = {
            "topic": self.topic_name,
            "state": self._state.value,
            "replay_id": replay_id.hex() if replay_id else None,
            "last_update_time": self.last_update_time,
            "schema_cache_size": len(self._resolver.schema_cache),
            "terminal_error": str(self._terminal_error) if self._terminal_error else None,
        }
        stats.update(self._stats)
        stats.update(self._flow_controller.get_health_status())
        return stats

    # ------------------------------------------------------------------
    # Session and reconnection

    async def _cancel_session(self):
        session, self._session = self._session, None
        if session is None or session.done():
            return
        session.cancel()
        try:
            await session
        except asyncio.CancelledError:
            pass

    async def _run_session(self):
        while True:
            self._set_state(ConnectionState.CONNECTING)
            started_from = self.replay_id
            replay_display = started_from.hex() if started_from else self.config.replay_preset.value
            self.logger.info(
                f"Starting subscription to {self.topic_name} "
                f"(attempt {self._attempt + 1}, replay: {replay_display})"
            )

            try:
                await self._run_connection()
                error = TransientTransportError(
                    f"Subscription stream to {self.topic_name} ended by server"
                )
                self.logger.warning(str(error))
            except asyncio.CancelledError:
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except Exception as e:
                error = self._retry_policy.classify(e, started_from)
                self._log_error(e)

            self._set_state(ConnectionState.DISCONNECTED)

            if not self._retry_policy.is_retryable(error):
                self._terminal_error = error
                self.logger.error(
                    f"Subscription to {self.topic_name} stopped by non-retryable "
                    f"{type(error).__name__}: {error}"
                )
                return

            if isinstance(error, AuthenticationError):
                self._auth_failures += 1
                refreshed = await self._request_credentials()
                if refreshed and self._auth_failures == 1:
                    self.logger.info("Retrying immediately with refreshed credentials")
                    self._stats["reconnects"] += 1
                    continue
            else:
                self._auth_failures = 0

            await self._backoff()
            self._stats["reconnects"] += 1

    async def _backoff(self):
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.config.channel_reset_threshold:
            self.logger.error(
                f"Too many consecutive failures ({self._consecutive_failures}), recreating channel"
            )
            try:
                await self._transport.reset_channel()
            except Exception as e:
                self.logger.warning(f"Failed to recreate channel: {e}")
            self._consecutive_failures = 0

        retry_delay = self._retry_policy.get_retry_delay(self._attempt)
        self._attempt += 1
        self.logger.info(f"Retrying subscription in {retry_delay:.2f} seconds...")

        self._network_available.clear()
        try:
            await asyncio.wait_for(self._network_available.wait(), timeout=retry_delay)
            self.logger.info("Network available - reconnecting now")
        except asyncio.TimeoutError:
            pass

    async def _request_credentials(self) -> bool:
        """
        Signal that fresh credentials are needed and wait for the host to
        confirm. Returns False if the refresh did not arrive in time.
        """
        self._credentials_refreshed.clear()
        if self._on_auth_required is None:
            # Nobody to ask; the credential source is consulted again on the next call
            return True

        self.logger.warning("Authentication rejected - requesting fresh credentials")
        try:
            result = self._on_auth_required()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(f"Credential refresh callback failed: {e}")
            return False

        try:
            await asyncio.wait_for(
                self._credentials_refreshed.wait(),
                timeout=self.config.auth_refresh_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                f"No credential refresh within {self.config.auth_refresh_timeout}s - backing off"
            )
            return False
        return True

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        self.logger.info(f"Connection state: {self._state.description} -> {state.description}")
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                self.logger.error(f"Error in state listener: {e}")

    def _log_error(self, e: Exception):
        log_grpc_error = getattr(self._transport, "log_grpc_error", None)
        if isinstance(e, grpc.RpcError) and log_grpc_error is not None:
            log_grpc_error(e, f"during subscription to {self.topic_name}")
        elif isinstance(e, ConfigurationError):
            self.logger.error(f"Configuration error for {self.topic_name}: {e}")
        else:
            self.logger.error(f"Subscription to {self.topic_name} failed: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # One connection

    async def _resolve_topic(self) -> TopicDescriptor:
        descriptor = await self._resolver.resolve_topic(self.topic_name)
        if not descriptor.can_subscribe:
            raise ConfigurationError(
                f"Topic {self.topic_name} cannot be subscribed to with these credentials"
            )
        # Topic re-resolved per connection; schema served from cache when known
        await self._resolver.resolve_schema(descriptor.schema_id)
        return descriptor

    async def _run_connection(self):
        descriptor = await asyncio.wait_for(
            self._resolve_topic(), timeout=self.config.connect_timeout
        )

        self._flow_controller.reset()
        self._connection_healthy = False
        call = await self._transport.subscribe()
        self._stats["connections"] += 1
        self._set_state(ConnectionState.CONNECTED)
        self.logger.info(f"Successfully subscribed to {descriptor.topic_name}")

        producer = asyncio.create_task(
            self._produce(call, descriptor.topic_name), name="pubsub-producer"
        )
        consumer = asyncio.create_task(self._consume(call), name="pubsub-consumer")
        tasks = [producer, consumer]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if consumer not in done:
                # The consumer reports the stream's final status
                await asyncio.wait([consumer], timeout=STATUS_GRACE_SECONDS)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            call.cancel()

        for task in (consumer, producer):
            if task.done() and not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _produce(self, call, topic_name: str):
        """Sends one FetchRequest per flow-control grant."""
        first_request = True
        while True:
            await self._flow_controller.acquire()
            request = self.make_fetch_request(topic_name if first_request else "")
            first_request = False
            self.logger.debug(
                f"Sending FetchRequest (preset={pb.ReplayPreset.Name(request.replay_preset)}, "
                f"num_requested={request.num_requested})"
            )
            await call.write(request)
            self._stats["requests_sent"] += 1

    async def _consume(self, call):
        while True:
            response = await call.read()
            if response is grpc.aio.EOF:
                return
            await self._handle_response(response)

    async def _handle_response(self, response):
        self._store_replay_id(response.latest_replay_id)
        self._stats["responses_received"] += 1
        self.last_update_time = time.time()
        if not self._connection_healthy:
            self._connection_healthy = True
            self._attempt = 0
            self._consecutive_failures = 0
            self._auth_failures = 0

        if response.pending_num_requested == 0:
            # Next request goes out before this response is processed
            self._flow_controller.release()
            await asyncio.sleep(0)

        if not response.events:
            self._stats["keepalives_received"] += 1
            self.logger.debug("Keepalive message received")
            return

        for consumer_event in response.events:
            await self._process_event(consumer_event)

    async def _process_event(self, consumer_event):
        event = consumer_event.event
        try:
            schema_entry = await self._resolver.resolve_schema(event.schema_id)
            record = self._decoder.decode(
                schema_entry,
                event.payload,
                replay_id=consumer_event.replay_id,
                event_id=event.id,
            )
        except DecodeError as e:
            self._stats["decode_errors"] += 1
            self.logger.error(
                f"Skipping event {event.id} (replay_id {consumer_event.replay_id.hex()}): {e}"
            )
            return

        try:
            await deliver(self._sink, record)
        except Exception as e:
            self._stats["sink_errors"] += 1
            self.logger.error(f"Error in event sink for event {event.id}: {e}")
            return
        self._stats["events_delivered"] += 1

    def _store_replay_id(self, replay_id: bytes):
        if not replay_id:
            return
        with self._replay_lock:
            self._replay_id = replay_id
        self.logger.debug(f"Updated replay ID: {replay_id.hex()}")
