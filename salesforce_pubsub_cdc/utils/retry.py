"""
Retry policy for Pub/Sub API subscriptions.

Maps every way a connection can end onto the error taxonomy in
`salesforce_pubsub_cdc.errors` and computes reconnection delays.
"""

import asyncio
import logging
import random
from typing import Callable, Optional

import grpc

from ..errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidCursorError,
    PubSubStreamError,
    TransientTransportError,
)

RETRYABLE_CODES = (
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.INTERNAL,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.ABORTED,
    grpc.StatusCode.UNKNOWN,
    grpc.StatusCode.CANCELLED,
)

NON_RETRYABLE_CODES = (
    grpc.StatusCode.INVALID_ARGUMENT,
    grpc.StatusCode.NOT_FOUND,
    grpc.StatusCode.ALREADY_EXISTS,
    grpc.StatusCode.PERMISSION_DENIED,
    grpc.StatusCode.FAILED_PRECONDITION,
    grpc.StatusCode.OUT_OF_RANGE,
    grpc.StatusCode.UNIMPLEMENTED,
    grpc.StatusCode.DATA_LOSS,
)


def get_error_code_trailer(error: grpc.RpcError) -> Optional[str]:
    """The sfdc-error-code trailer of a gRPC error, if present."""
    try:
        trailers = error.trailing_metadata()
    except Exception:
        return None
    for key, value in trailers or ():
        if key == "sfdc-error-code":
            return value.decode() if isinstance(value, bytes) else value
    return None


def is_replay_id_rejection(error: grpc.RpcError) -> bool:
    """True when the server refused the replay id the stream started from."""
    error_code = (get_error_code_trailer(error) or "").lower()
    if "replayid" in error_code:
        return True

    details = (error.details() or "").lower()
    return "replay" in details and (
        "invalid" in details or "corrupt" in details or "validation" in details
    )


def classify_error(
    error: BaseException, replay_id: Optional[bytes] = None
) -> PubSubStreamError:
    """
    Map an exception onto the error taxonomy.

    Args:
        error: Exception that ended a connection attempt
        replay_id: Cursor the connection was started from, attached to
            InvalidCursorError so the caller knows which one was rejected
    """
    if isinstance(error, PubSubStreamError):
        return error

    if isinstance(error, grpc.RpcError):
        status_code = error.code()
        details = error.details() or ""
        message = f"gRPC error {status_code}: {details}"

        if status_code == grpc.StatusCode.UNAUTHENTICATED:
            return AuthenticationError(message, cause=error)
        if replay_id and is_replay_id_rejection(error):
            return InvalidCursorError(message, replay_id=replay_id, cause=error)
        if status_code in NON_RETRYABLE_CODES:
            return ConfigurationError(message, cause=error)
        return TransientTransportError(message, cause=error)

    if isinstance(error, (asyncio.TimeoutError, ConnectionError, OSError)):
        return TransientTransportError(
            f"{type(error).__name__}: {error}", cause=error
        )

    return TransientTransportError(
        f"Unexpected error {type(error).__name__}: {error}", cause=error
    )


class RetryPolicy:
    """
    Exponential backoff with jitter for reconnection attempts.

    The delay for attempt n is base * 2**n plus 10-20% jitter, capped at
    max_retry_delay. Successive delays never decrease and never exceed the cap.
    """

    def __init__(
        self,
        base_retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
        random_func: Optional[Callable[[], float]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if base_retry_delay <= 0:
            raise ValueError("base_retry_delay must be positive")
        if max_retry_delay < base_retry_delay:
            raise ValueError("max_retry_delay must be >= base_retry_delay")

        self.base_retry_delay = base_retry_delay
        self.max_retry_delay = max_retry_delay
        self._random = random_func or random.random
        self.logger = logger or logging.getLogger(__name__)

    def classify(
        self, error: BaseException, replay_id: Optional[bytes] = None
    ) -> PubSubStreamError:
        return classify_error(error, replay_id)

    def is_retryable(self, error: PubSubStreamError) -> bool:
        return not isinstance(error, (ConfigurationError, InvalidCursorError))

    def get_retry_delay(self, attempt: int) -> float:
        """
        Calculate exponential backoff delay with jitter.

        Args:
            attempt: Zero-based number of consecutive failed attempts
        """
        # Exponent capped to keep the float finite
        base_delay = self.base_retry_delay * (2 ** min(attempt, 32))

        # Add jitter (10-20% variance)
        jitter_factor = 0.1 + (self._random() * 0.1)

        final_delay = min(base_delay * (1 + jitter_factor), self.max_retry_delay)

        self.logger.debug(
            f"Retry attempt {attempt + 1}: base_delay={base_delay:.2f}s, final_delay={final_delay:.2f}s"
        )
        return final_delay
