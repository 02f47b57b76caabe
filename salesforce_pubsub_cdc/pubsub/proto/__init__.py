"""Protocol buffer definitions for the Pub/Sub API."""

from . import pubsub_api

__all__ = ["pubsub_api"]
