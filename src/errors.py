"""Error taxonomy for the ingestion pipeline.

Envelope errors are non-recoverable: redelivering the same queue message can
never succeed, so the message is dead-lettered and deleted. Object
processing errors are recoverable: the message is left on the queue and
reappears after its visibility timeout.
"""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class ConfigError(ValueError):
    """Raised when configuration values are missing or out of range."""


class EnvelopeDecodeError(PipelineError):
    """Raised when a queue message body is not a valid notification envelope."""


class InvalidObjectKeyError(EnvelopeDecodeError):
    """Raised when an object key lacks the ``<date>/<correlation id>/`` prefix."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Invalid object key {key!r}: {reason}")
        self.key = key


class ObjectProcessingError(PipelineError):
    """Raised when a single referenced object cannot be turned into lines."""

    def __init__(self, bucket: str, key: str, reason: str):
        super().__init__(f"s3://{bucket}/{key}: {reason}")
        self.bucket = bucket
        self.key = key


class RetrievalError(ObjectProcessingError):
    """Raised when the object store fetch fails (network, permission, not found)."""

    def __init__(self, bucket: str, key: str, reason: str, code: str | None = None):
        super().__init__(bucket, key, reason)
        self.code = code


class DecompressionError(ObjectProcessingError):
    """Raised when the fetched payload is not valid gzip."""


class DeliveryError(PipelineError):
    """Raised when one HTTP delivery attempt to the indexing backend fails."""

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.status_code = status_code
