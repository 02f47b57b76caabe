"""Utility modules for salesforce_pubsub_cdc."""

from .bitmap_processor import process_bitmap
from .flow_controller import FlowController
from .retry import RetryPolicy, classify_error

__all__ = ["FlowController", "RetryPolicy", "classify_error", "process_bitmap"]
