"""Pipeline coordinator: wires consumer and sink around the hand-off channel."""

import logging
import threading

import boto3
import requests
from botocore.config import Config as BotoConfig

from src.channel import HandoffChannel
from src.config import Config
from src.consumer import NotificationConsumer
from src.dead_letter import DeadLetterWriter
from src.parsers import LineParser
from src.retriever import ObjectRetriever
from src.sink import ForwardingSink

logger = logging.getLogger(__name__)


def create_clients(config: Config):
    """Build SQS and S3 clients with bounded timeouts. Returns (sqs, s3).

    The SQS read timeout has to outlast a long poll, so it is the wait time
    plus a margin.
    """
    session = boto3.session.Session(region_name=config.region)
    sqs = session.client(
        "sqs",
        config=BotoConfig(
            connect_timeout=10,
            read_timeout=config.wait_time_seconds + 10,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )
    s3 = session.client(
        "s3",
        config=BotoConfig(
            connect_timeout=10,
            read_timeout=config.object_timeout,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )
    return sqs, s3


class PipelineCoordinator:
    """Runs the sink on a background thread and the consumer on the calling thread.

    stop() is graceful: the consumer finishes (and acknowledges) the message
    in hand, then the channel is closed and the sink drains it. abort() also
    cancels pending channel pushes, acknowledgment waits and retry backoffs.
    """

    def __init__(
        self,
        config: Config,
        shutdown_event: threading.Event | None = None,
        abort_event: threading.Event | None = None,
        sqs_client=None,
        s3_client=None,
        session: requests.Session | None = None,
        parser: LineParser | None = None,
    ):
        self._config = config
        self._shutdown = shutdown_event if shutdown_event is not None else threading.Event()
        self._abort = abort_event if abort_event is not None else threading.Event()

        if sqs_client is None or s3_client is None:
            default_sqs, default_s3 = create_clients(config)
            sqs_client = sqs_client if sqs_client is not None else default_sqs
            s3_client = s3_client if s3_client is not None else default_s3

        self._dead_letter = (
            DeadLetterWriter(config.dead_letter_path) if config.dead_letter_path else None
        )
        self._channel = HandoffChannel(config.channel_capacity)
        self._consumer = NotificationConsumer(
            sqs_client,
            ObjectRetriever(s3_client),
            parser if parser is not None else LineParser(),
            self._channel,
            config,
            self._shutdown,
            abort_event=self._abort,
            dead_letter=self._dead_letter,
        )
        self._sink = ForwardingSink(
            self._channel,
            config,
            self._abort,
            session=session,
            dead_letter=self._dead_letter,
        )
        self._sink_thread: threading.Thread | None = None

    @property
    def consumer(self) -> NotificationConsumer:
        return self._consumer

    @property
    def sink(self) -> ForwardingSink:
        return self._sink

    @property
    def channel(self) -> HandoffChannel:
        return self._channel

    def stop(self):
        """Request a graceful shutdown."""
        self._shutdown.set()

    def abort(self):
        """Request an immediate shutdown, abandoning undelivered entries."""
        self._shutdown.set()
        self._abort.set()

    def run(self, max_polls: int | None = None):
        """Poll until stopped (or for max_polls rounds), then drain and shut down."""
        logger.info(
            "Starting pipeline: queue=%s, endpoint=%s, capacity=%d, ack_mode=%s",
            self._config.queue_url,
            self._config.indexing_endpoint,
            self._config.channel_capacity,
            self._config.ack_mode,
        )
        self._sink_thread = threading.Thread(
            target=self._run_sink, name="forwarding-sink", daemon=True
        )
        self._sink_thread.start()

        polls = 0
        try:
            while not self._shutdown.is_set():
                if max_polls is not None and polls >= max_polls:
                    break
                self._consumer.poll_once()
                polls += 1
        finally:
            self._drain()

    def _run_sink(self):
        try:
            self._sink.run()
        finally:
            if not self._channel.closed and not self._abort.is_set():
                # Nothing is left to drain the channel, so release the consumer
                logger.error("Sink stopped unexpectedly, aborting pipeline")
                self.abort()

    def _drain(self):
        self._channel.close()
        if self._sink_thread is not None:
            self._sink_thread.join(timeout=self._config.shutdown_timeout)
            if self._sink_thread.is_alive():
                logger.warning(
                    "Sink did not drain within %.1fs, abandoning %d entries",
                    self._config.shutdown_timeout,
                    self._channel.qsize(),
                )
                self._abort.set()
                self._sink_thread.join(timeout=5)
        if self._dead_letter is not None:
            self._dead_letter.close()
        logger.info(
            "Pipeline stopped: delivered=%d, failed=%d",
            self._sink.delivered,
            self._sink.failed,
        )
