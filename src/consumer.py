"""Notification consumer: polls SQS, parses referenced objects, hands entries off."""

import logging
import threading
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from src.channel import DeliveryTracker, Handoff, HandoffChannel
from src.config import Config
from src.dead_letter import DeadLetterWriter
from src.envelope import decode_envelope
from src.errors import EnvelopeDecodeError, ObjectProcessingError
from src.models import NotificationRecord
from src.parsers import LineParser
from src.retriever import ObjectRetriever, iter_lines

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    received: int = 0
    acknowledged: int = 0
    skipped: int = 0
    failed: int = 0
    entries: int = 0


class NotificationConsumer:
    """Turns queue messages into hand-off channel entries.

    A message is acknowledged (deleted) only after every entry of every
    record it references has been accepted by the channel. In ``delivery``
    ack mode it additionally waits until the sink has delivered all of them.

    Recoverable object failures leave the message on the queue so it comes
    back after its visibility timeout. Undecodable messages are dead-lettered
    and deleted, since redelivering them can never succeed.
    """

    def __init__(
        self,
        sqs_client,
        retriever: ObjectRetriever,
        parser: LineParser,
        channel: HandoffChannel,
        config: Config,
        shutdown_event: threading.Event,
        abort_event: threading.Event | None = None,
        dead_letter: DeadLetterWriter | None = None,
        receive_error_delay: float = 5.0,
    ):
        self._sqs = sqs_client
        self._retriever = retriever
        self._parser = parser
        self._channel = channel
        self._config = config
        self._shutdown = shutdown_event
        self._abort = abort_event if abort_event is not None else threading.Event()
        self._dead_letter = dead_letter
        self._receive_error_delay = receive_error_delay

    def poll_once(self) -> PollResult:
        """Receive one batch of messages and process them in order."""
        result = PollResult()
        messages = self._receive()
        result.received = len(messages)
        if messages:
            logger.info("Received %d message(s)", len(messages))

        for i, message in enumerate(messages):
            if self._shutdown.is_set() or self._abort.is_set():
                logger.info(
                    "Shutdown requested, leaving %d message(s) for redelivery",
                    len(messages) - i,
                )
                break
            self._process_message(message, result)
        return result

    def _receive(self) -> list[dict]:
        params = {
            "QueueUrl": self._config.queue_url,
            "MaxNumberOfMessages": self._config.max_messages,
            "WaitTimeSeconds": self._config.wait_time_seconds,
        }
        if self._config.visibility_timeout:
            params["VisibilityTimeout"] = self._config.visibility_timeout

        try:
            response = self._sqs.receive_message(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to receive messages from %s: %s", self._config.queue_url, e)
            self._shutdown.wait(self._receive_error_delay)
            return []
        return response.get("Messages", [])

    def _process_message(self, message: dict, result: PollResult):
        message_id = message.get("MessageId", "unknown")
        body = message.get("Body", "")

        try:
            envelope = decode_envelope(body)
        except EnvelopeDecodeError as e:
            logger.error("Skipping undecodable message %s: %s", message_id, e)
            if self._dead_letter is not None:
                self._dead_letter.write_envelope(body, str(e))
            result.skipped += 1
            self._acknowledge(message)
            return

        if envelope.test_event:
            logger.info("Discarding S3 test event %s", message_id)
            result.skipped += 1
            self._acknowledge(message)
            return

        tracker = DeliveryTracker() if self._config.ack_mode == "delivery" else None
        try:
            for record in envelope.records:
                handed_off = self._process_record(record, tracker)
                if handed_off is None:
                    logger.warning(
                        "Hand-off of message %s interrupted, leaving it for redelivery",
                        message_id,
                    )
                    result.failed += 1
                    return
                result.entries += handed_off
        except ObjectProcessingError as e:
            logger.warning("Leaving message %s for redelivery: %s", message_id, e)
            result.failed += 1
            return

        if tracker is not None:
            tracker.seal()
            if not tracker.wait(self._config.ack_timeout, self._abort):
                logger.warning(
                    "Not every entry of message %s was delivered, leaving it for redelivery",
                    message_id,
                )
                result.failed += 1
                return

        if self._acknowledge(message):
            result.acknowledged += 1

    def _process_record(
        self, record: NotificationRecord, tracker: DeliveryTracker | None
    ) -> int | None:
        """Fetch, parse and hand off one object. Returns None if the hand-off was cancelled."""
        stream = self._retriever.fetch(record.ref)

        count = 0
        for line in iter_lines(stream):
            entry = self._parser.parse_for_object(line, record.key_info)
            if tracker is not None:
                tracker.add()
            if not self._channel.put(Handoff(entry, tracker), self._abort):
                return None
            count += 1

        logger.info("Handed off %d entries from %s", count, record.ref)
        return count

    def _acknowledge(self, message: dict) -> bool:
        """Delete the message using its receipt handle. Returns True on success."""
        message_id = message.get("MessageId", "unknown")
        try:
            self._sqs.delete_message(
                QueueUrl=self._config.queue_url,
                ReceiptHandle=message["ReceiptHandle"],
            )
        except KeyError:
            logger.error("Message %s has no receipt handle, cannot acknowledge", message_id)
            return False
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to delete message %s: %s", message_id, e)
            return False
        logger.debug("Acknowledged message %s", message_id)
        return True
