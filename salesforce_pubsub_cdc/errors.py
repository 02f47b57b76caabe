"""
errors.py

Exception hierarchy for the subscription engine. Every failure the engine
reacts to is mapped onto one of these classes before a retry decision is made.
"""

from typing import Optional


class PubSubStreamError(Exception):
    """Base class for all errors raised by salesforce_pubsub_cdc."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ConfigurationError(PubSubStreamError):
    """
    Invalid configuration, e.g. an unsubscribable or malformed topic.
    Permanent: the engine never retries it.
    """


class AuthenticationError(PubSubStreamError):
    """Credentials were rejected, expired or are not available."""


class TransientTransportError(PubSubStreamError):
    """Network or server-side failure that is expected to clear on retry."""


class InvalidCursorError(PubSubStreamError):
    """
    The server rejected the replay id the stream was started from.
    Permanent for that cursor: retrying with it would loop forever.
    """

    def __init__(
        self,
        message: str,
        replay_id: Optional[bytes] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.replay_id = replay_id


class DecodeError(PubSubStreamError):
    """An event payload did not match its schema. Local to one event."""
