"""Forwarding sink: drains the hand-off channel and POSTs each entry over HTTP."""

import logging
import random
import threading

import requests

from src.channel import ChannelClosed, Handoff, HandoffChannel
from src.config import Config
from src.dead_letter import DeadLetterWriter
from src.errors import DeliveryError
from src.models import LogEntry, format_document

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class ForwardingSink:
    """Delivers entries one at a time, in channel order.

    A failed delivery is retried up to ``delivery_max_retries`` times with
    exponential backoff, then dead-lettered (when a writer is configured) or
    dropped. Either way the loop moves on to the next entry.
    """

    def __init__(
        self,
        channel: HandoffChannel,
        config: Config,
        abort_event: threading.Event,
        session: requests.Session | None = None,
        dead_letter: DeadLetterWriter | None = None,
    ):
        self._channel = channel
        self._config = config
        self._abort = abort_event
        self._session = session if session is not None else requests.Session()
        self._dead_letter = dead_letter
        self._delivered = 0
        self._failed = 0
        self._dead_lettered = 0
        self._lock = threading.Lock()

    @property
    def delivered(self) -> int:
        with self._lock:
            return self._delivered

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def dead_lettered(self) -> int:
        with self._lock:
            return self._dead_lettered

    def run(self):
        """Deliver until the channel is closed and drained, or abort is requested."""
        logger.info("Sink forwarding to %s", self._config.indexing_endpoint)
        while not self._abort.is_set():
            try:
                item = self._channel.get(timeout=1.0)
            except ChannelClosed:
                break
            if item is None:
                continue
            self._handle(item)

        if self._abort.is_set() and self._channel.qsize():
            logger.warning(
                "Sink aborted with %d undelivered entries in the channel",
                self._channel.qsize(),
            )
        logger.info(
            "Sink finished: delivered=%d, failed=%d, dead_lettered=%d",
            self.delivered, self.failed, self.dead_lettered,
        )

    def _handle(self, item: Handoff):
        ok = self.deliver(item.entry)
        if item.tracker is not None:
            item.tracker.resolve(ok)

    def deliver(self, entry: LogEntry) -> bool:
        """POST one entry, retrying on failure. Returns True once delivered."""
        body = format_document(entry)
        attempts = self._config.delivery_max_retries + 1
        reason = ""

        for attempt in range(attempts):
            try:
                self._post(body)
            except DeliveryError as e:
                reason = str(e)
                if attempt < attempts - 1:
                    logger.warning(
                        "Delivery failed (attempt %d/%d): %s", attempt + 1, attempts, e,
                    )
                    if self._abort.wait(self._backoff_delay(attempt)):
                        break
                continue

            with self._lock:
                self._delivered += 1
            logger.debug("Delivered entry from %s", entry.location)
            return True

        self._give_up(entry, reason)
        return False

    def _post(self, body: bytes):
        try:
            response = self._session.post(
                self._config.indexing_endpoint,
                data=body,
                headers=JSON_HEADERS,
                timeout=self._config.delivery_timeout,
            )
        except requests.RequestException as e:
            raise DeliveryError(f"HTTP request failed: {e}") from e

        logger.debug("Indexing backend responded %d", response.status_code)
        if not 200 <= response.status_code < 300:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

    def _give_up(self, entry: LogEntry, reason: str):
        with self._lock:
            self._failed += 1

        if self._dead_letter is not None and self._dead_letter.write_entry(entry, reason):
            with self._lock:
                self._dead_lettered += 1
            logger.error("Dead-lettered entry from %s: %s", entry.location, reason)
        else:
            logger.error(
                "Dropped entry from %s after failed delivery: %s", entry.location, reason,
            )

    @staticmethod
    def _backoff_delay(attempt: int) -> float:
        """Exponential backoff with jitter: 0.1s, 0.2s, 0.4s ... capped at 2.0s."""
        base = 0.1 * (2 ** attempt)
        capped = min(base, 2.0)
        jitter = random.uniform(0.8, 1.2)
        return capped * jitter
