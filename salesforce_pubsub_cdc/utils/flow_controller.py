"""
Flow Controller for Salesforce Pub/Sub API subscriptions.
Holds the single-slot grant that allows the next FetchRequest to be sent,
and keeps counters for health reporting.
"""

import asyncio
import logging
import threading
import time
from typing import Optional


class FlowController:
    """
    Single-slot grant shared by the producer and consumer of one stream.

    The slot starts full ("send one request now"). The producer takes it
    before each FetchRequest; the consumer puts it back when the server has
    no request outstanding. A bounded semaphore makes a second grant while
    the slot is already full a no-op, so at most one request is ever in flight.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._semaphore = asyncio.BoundedSemaphore(1)

        # Monitoring state
        self.total_acquires = 0
        self.total_releases = 0
        self.total_rejected_releases = 0
        self.lock = threading.Lock()

        self.last_successful_acquire = time.time()
        self.last_successful_release = time.time()

    async def acquire(self):
        """Wait for the grant to send one FetchRequest."""
        await self._semaphore.acquire()

        with self.lock:
            self.total_acquires += 1
            self.last_successful_acquire = time.time()

        self.logger.debug("Flow control grant acquired - sending FetchRequest")

    def release(self) -> bool:
        """
        Grant the next FetchRequest.

        Returns:
            True if the grant was given, False if one was already pending
        """
        try:
            self._semaphore.release()
        except ValueError:
            with self.lock:
                self.total_rejected_releases += 1
            self.logger.warning(
                "Flow control grant already pending - ignoring extra release"
            )
            return False

        with self.lock:
            self.total_releases += 1
            self.last_successful_release = time.time()

        self.logger.debug("Flow control grant released - ready for next fetch")
        return True

    @property
    def has_pending_grant(self) -> bool:
        return not self._semaphore.locked()

    def reset(self):
        """Drop in-flight state; the next connection starts with one grant."""
        self._semaphore = asyncio.BoundedSemaphore(1)
        self.logger.debug("Flow controller reset")

    def get_health_status(self) -> dict:
        """
        Get current health status and statistics.

        Returns:
            Dictionary with health metrics
        """
        current_time = time.time()

        with self.lock:
            return {
                "total_acquires": self.total_acquires,
                "total_releases": self.total_releases,
                "total_rejected_releases": self.total_rejected_releases,
                "seconds_since_last_acquire": current_time
                - self.last_successful_acquire,
                "seconds_since_last_release": current_time
                - self.last_successful_release,
            }

    def reset_stats(self):
        """Reset all statistics counters."""
        with self.lock:
            self.total_acquires = 0
            self.total_releases = 0
            self.total_rejected_releases = 0
            self.last_successful_acquire = time.time()
            self.last_successful_release = time.time()

        self.logger.info("Flow controller statistics reset")

    def log_health_report(self):
        status = self.get_health_status()

        self.logger.info(
            f"Flow Controller Health Report: "
            f"Acquires: {status['total_acquires']}, "
            f"Releases: {status['total_releases']}, "
            f"Rejected releases: {status['total_rejected_releases']}, "
            f"Since last release: {status['seconds_since_last_release']:.1f}s"
        )
