"""Fetch gzip log objects from S3 and expose them as decompressed streams."""

import gzip
import io
import logging
import zlib
from typing import Iterator

from botocore.exceptions import BotoCoreError, ClientError

from src.errors import DecompressionError, RetrievalError
from src.models import ObjectReference

logger = logging.getLogger(__name__)


class ObjectRetriever:
    """Buffers a whole object in memory, then decompresses it in one go.

    Objects are log-file sized. Decompressing eagerly means a corrupt payload
    fails before a single line is handed off.
    """

    def __init__(self, s3_client):
        self._s3 = s3_client

    def fetch(self, ref: ObjectReference) -> io.BytesIO:
        """Return a stream over the decompressed object body.

        Raises:
            RetrievalError: the object could not be fetched or read.
            DecompressionError: the payload is not valid gzip.
        """
        compressed = self._download(ref)
        logger.debug("Fetched %s (%d compressed bytes)", ref, len(compressed))

        try:
            data = gzip.decompress(compressed)
        except (gzip.BadGzipFile, EOFError, zlib.error, OSError) as e:
            raise DecompressionError(ref.bucket, ref.key, f"invalid gzip payload: {e}") from e

        logger.debug("Decompressed %s to %d bytes", ref, len(data))
        return io.BytesIO(data)

    def _download(self, ref: ObjectReference) -> bytes:
        try:
            response = self._s3.get_object(Bucket=ref.bucket, Key=ref.key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except ClientError as e:
            error = e.response.get("Error", {})
            raise RetrievalError(
                ref.bucket,
                ref.key,
                error.get("Message") or str(e),
                code=error.get("Code"),
            ) from e
        except BotoCoreError as e:
            raise RetrievalError(ref.bucket, ref.key, str(e)) from e


def iter_lines(stream: io.BufferedIOBase) -> Iterator[str]:
    """Yield each line of a byte stream as text, without its line terminator.

    Blank lines are kept. A final newline does not produce an extra empty line.
    Undecodable bytes are replaced rather than aborting the object.
    """
    for raw in stream:
        line = raw.decode("utf-8", errors="replace")
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        yield line
