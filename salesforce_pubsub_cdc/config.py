"""
config.py

Subscriber configuration, read from explicit arguments first and from the
environment (optionally a .env file) second.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import ReplayPreset
from .pubsub.client import DEFAULT_GRPC_HOST, DEFAULT_GRPC_PORT

ENV_MAP = {
    "url": "SALESFORCE_URL",
    "username": "SALESFORCE_USERNAME",
    "password": "SALESFORCE_PASSWORD",
    "grpcHost": "GRPC_HOST",
    "grpcPort": "GRPC_PORT",
    "apiVersion": "API_VERSION",
    "topic": "TOPIC",
    "replayPreset": "REPLAY_PRESET",
    "replayId": "REPLAY_ID",
    "connectTimeout": "PUBSUB_CONNECT_TIMEOUT",
    "baseRetryDelay": "PUBSUB_BASE_RETRY_DELAY",
    "maxRetryDelay": "PUBSUB_MAX_RETRY_DELAY",
}


def get_argument(key, argument_dict):
    """Get configuration value from the argument dict or environment variables."""
    if key in argument_dict and argument_dict[key] is not None:
        return argument_dict[key]

    env_var = ENV_MAP.get(key, key.upper())
    return os.getenv(env_var)


@dataclass
class SubscriberConfig:
    """
    Settings for one subscription.

    Args:
        topic_name: Channel to subscribe to, e.g. "/data/OpportunityChangeEvent"
        replay_preset: Where to start when no replay id is known yet
        replay_id: Cursor to start from (hex string or bytes); implies CUSTOM
        connect_timeout: Bound on topic + schema resolution per connection attempt
        auth_refresh_timeout: How long to wait for fresh credentials after an
            authentication failure before backing off instead
        channel_reset_threshold: Consecutive transient failures after which
            the gRPC channel is recreated
    """

    topic_name: str
    grpc_host: str = DEFAULT_GRPC_HOST
    grpc_port: int = DEFAULT_GRPC_PORT
    api_version: str = "57.0"
    replay_preset: ReplayPreset = ReplayPreset.LATEST
    replay_id: Optional[Union[str, bytes]] = None
    connect_timeout: float = 45.0
    base_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    auth_refresh_timeout: float = 30.0
    channel_reset_threshold: int = 3

    def __post_init__(self):
        if isinstance(self.replay_preset, str) and not isinstance(
            self.replay_preset, ReplayPreset
        ):
            try:
                self.replay_preset = ReplayPreset(self.replay_preset.upper())
            except ValueError:
                raise ConfigurationError(f"Invalid Replay Type {self.replay_preset}")
        self.validate()

    @classmethod
    def from_env(cls, argument_dict: Optional[Dict[str, Any]] = None) -> "SubscriberConfig":
        load_dotenv()
        argument_dict = argument_dict or {}

        values = {
            "topic_name": get_argument("topic", argument_dict),
            "grpc_host": get_argument("grpcHost", argument_dict),
            "grpc_port": get_argument("grpcPort", argument_dict),
            "api_version": get_argument("apiVersion", argument_dict),
            "replay_preset": get_argument("replayPreset", argument_dict),
            "replay_id": get_argument("replayId", argument_dict),
            "connect_timeout": get_argument("connectTimeout", argument_dict),
            "base_retry_delay": get_argument("baseRetryDelay", argument_dict),
            "max_retry_delay": get_argument("maxRetryDelay", argument_dict),
        }
        converters = {
            "grpc_port": int,
            "connect_timeout": float,
            "base_retry_delay": float,
            "max_retry_delay": float,
        }

        kwargs = {}
        for name, value in values.items():
            if value is None or value == "":
                continue
            if name in converters:
                try:
                    value = converters[name](value)
                except (TypeError, ValueError):
                    raise ConfigurationError(f"Invalid value for {name}: {value!r}")
            kwargs[name] = value

        if "topic_name" not in kwargs:
            raise ConfigurationError("topic is required (argument or TOPIC env var)")
        return cls(**kwargs)

    def validate(self):
        validate_topic_name(self.topic_name)
        if self.grpc_port <= 0:
            raise ConfigurationError(f"Invalid gRPC port {self.grpc_port}")
        if self.connect_timeout <= 0:
            raise ConfigurationError("connect_timeout must be positive")
        if self.base_retry_delay <= 0 or self.max_retry_delay < self.base_retry_delay:
            raise ConfigurationError(
                "Retry delays must satisfy 0 < base_retry_delay <= max_retry_delay"
            )
        if self.replay_preset == ReplayPreset.CUSTOM and not self.replay_id:
            raise ConfigurationError("CUSTOM replay preset requires a replay_id")
        # Fails fast on malformed hex
        self.initial_replay_id()

    def initial_replay_id(self) -> Optional[bytes]:
        """Configured replay id as bytes, or None."""
        if not self.replay_id:
            return None
        if isinstance(self.replay_id, bytes):
            return self.replay_id
        try:
            return bytes.fromhex(self.replay_id)
        except ValueError:
            raise ConfigurationError(f"replay_id is not valid hex: {self.replay_id!r}")


def validate_topic_name(topic_name: str):
    """Topics look like /data/<Channel> or /event/<Name>."""
    if not topic_name or not isinstance(topic_name, str):
        raise ConfigurationError("topic_name is required")
    parts = topic_name.split("/")
    if not topic_name.startswith("/") or len(parts) < 3 or not all(parts[1:]):
        raise ConfigurationError(
            f"Malformed topic name {topic_name!r}: expected /<type>/<channel>"
        )
