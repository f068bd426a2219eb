"""Thread-safe dead-letter file: one JSON record per line."""

import json
import os
import threading
from datetime import datetime, timezone

from src.models import LogEntry, entry_to_dict


class DeadLetterWriter:
    """Append-only NDJSON writer for envelopes and entries that were given up on.

    Each line is ``{"dead_lettered_at", "kind", "reason", "payload"}`` where
    kind is ``envelope`` (raw message body) or ``entry`` (indexing document).
    """

    def __init__(self, path: str):
        self._path = path
        self._lock = threading.Lock()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._file = open(path, "a", encoding="utf-8")

    @property
    def path(self) -> str:
        return self._path

    def write_envelope(self, body: str, reason: str) -> bool:
        return self._write("envelope", reason, body)

    def write_entry(self, entry: LogEntry, reason: str) -> bool:
        return self._write("entry", reason, entry_to_dict(entry))

    def _write(self, kind: str, reason: str, payload) -> bool:
        record = {
            "dead_lettered_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "kind": kind,
            "reason": reason,
            "payload": payload,
        }
        line = json.dumps(record, separators=(",", ":")) + "\n"
        with self._lock:
            if self._file is None:
                return False
            self._file.write(line)
            self._file.flush()
        return True

    def close(self):
        """Close the file handle."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None
