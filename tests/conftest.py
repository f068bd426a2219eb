"""Shared fixtures and fakes for the log forwarder test suite."""

import gzip
import io
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from botocore.exceptions import ClientError

from src.config import Config


def gzip_lines(lines: list[str]) -> bytes:
    """Gzip newline-terminated text lines the way the log archiver writes them."""
    return gzip.compress("".join(f"{line}\n" for line in lines).encode("utf-8"))


def make_envelope(*refs: tuple[str, str]) -> str:
    """Build an S3 event notification body for (bucket, key) pairs."""
    records = [
        {
            "EventVersion": "2.1",
            "EventTime": "2024-01-01T00:00:00.000Z",
            "EventName": "ObjectCreated:Put",
            "S3": {
                "S3SchemaVersion": "1.0",
                "Bucket": {"Name": bucket, "Arn": f"arn:aws:s3:::{bucket}"},
                "Object": {"Key": key},
            },
        }
        for bucket, key in refs
    ]
    return json.dumps({"Records": records})


def make_message(body: str, receipt: str = "rh-1", message_id: str = "msg-1") -> dict:
    return {"MessageId": message_id, "ReceiptHandle": receipt, "Body": body}


def client_error(code: str, operation: str, message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeSQS:
    """Queue double: hands out pre-seeded batches and records deletes."""

    def __init__(self, batches: list[list[dict]] | None = None):
        self.batches = list(batches or [])
        self.receive_calls: list[dict] = []
        self.deleted: list[str] = []
        self.receive_error: Exception | None = None
        self.delete_error: Exception | None = None
        self._lock = threading.Lock()

    def receive_message(self, **kwargs):
        with self._lock:
            self.receive_calls.append(kwargs)
            if self.receive_error is not None:
                raise self.receive_error
            if self.batches:
                return {"Messages": self.batches.pop(0)}
            return {}

    def delete_message(self, QueueUrl, ReceiptHandle):
        with self._lock:
            if self.delete_error is not None:
                raise self.delete_error
            self.deleted.append(ReceiptHandle)
        return {}


class FakeS3:
    """Object store double keyed by (bucket, key)."""

    def __init__(self, objects: dict[tuple[str, str], bytes] | None = None):
        self.objects = dict(objects or {})
        self.errors: dict[tuple[str, str], Exception] = {}
        self.requests: list[tuple[str, str]] = []

    def get_object(self, Bucket, Key):
        self.requests.append((Bucket, Key))
        if (Bucket, Key) in self.errors:
            raise self.errors[(Bucket, Key)]
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey", "GetObject", "The specified key does not exist.")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


class _IndexHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        server = self.server
        with server.lock:
            if server.fail_next > 0:
                server.fail_next -= 1
                status = 503
            else:
                status = 201
                server.received.append(json.loads(body))
                server.content_types.append(self.headers.get("Content-Type"))
                server.paths.append(self.path)

        payload = b'{"result":"created"}' if status == 201 else b'{"error":"unavailable"}'
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


class IndexServer(ThreadingHTTPServer):
    """Loopback stand-in for the indexing backend."""

    def __init__(self):
        super().__init__(("127.0.0.1", 0), _IndexHandler)
        self.lock = threading.Lock()
        self.received: list[dict] = []
        self.content_types: list[str] = []
        self.paths: list[str] = []
        self.fail_next = 0

    @property
    def endpoint(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}/logs/_doc"


@pytest.fixture
def index_server():
    server = IndexServer()
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def config(index_server) -> Config:
    return Config(
        queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/logs",
        indexing_endpoint=index_server.endpoint,
        channel_capacity=1000,
        wait_time_seconds=0,
        delivery_max_retries=0,
    )


@pytest.fixture
def offline_config() -> Config:
    """Config for tests that never reach an indexing backend."""
    return Config(
        queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/logs",
        indexing_endpoint="http://127.0.0.1:1/logs/_doc",
        channel_capacity=1000,
        wait_time_seconds=0,
        delivery_max_retries=0,
    )
