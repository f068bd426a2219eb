"""Entry point for the S3 log forwarder."""

import logging
import signal
import sys
import threading

from src.config import load_config
from src.errors import ConfigError
from src.pipeline import PipelineCoordinator


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv).require_endpoints()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logger = logging.getLogger(__name__)

    shutdown_event = threading.Event()
    abort_event = threading.Event()

    def handle_signal(signum, frame):
        if shutdown_event.is_set():
            logger.warning("Received signal %d again, aborting...", signum)
            abort_event.set()
        else:
            logger.info("Received signal %d, shutting down...", signum)
            shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    coordinator = PipelineCoordinator(config, shutdown_event, abort_event)
    coordinator.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
