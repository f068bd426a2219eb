"""Data model: object references, notification envelopes and log entries."""

import json
from dataclasses import dataclass, field, replace

# LogEntry attribute -> JSON document field sent to the indexing backend
WIRE_FIELDS = {
    "date": "Date",
    "time": "Time",
    "correlation_id": "Uuid",
    "location": "LogLocation",
    "program": "Program",
    "facility": "Facility",
    "level": "Level",
    "message": "Message",
    "raw_line": "FullLogline",
}


@dataclass(frozen=True)
class ObjectReference:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class ObjectKeyInfo:
    """Context shared by every entry parsed from one object."""

    location: str
    date: str
    correlation_id: str


@dataclass(frozen=True)
class NotificationRecord:
    ref: ObjectReference
    key_info: ObjectKeyInfo
    event_name: str = ""
    event_time: str = ""
    event_version: str = ""
    bucket_arn: str = ""


@dataclass(frozen=True)
class NotificationEnvelope:
    records: tuple[NotificationRecord, ...] = field(default_factory=tuple)
    test_event: bool = False


@dataclass(frozen=True)
class LogEntry:
    program: str
    raw_line: str
    date: str = ""
    time: str = ""
    correlation_id: str = ""
    location: str = ""
    facility: str = ""
    level: str = ""
    message: str = ""

    def with_object(self, key_info: ObjectKeyInfo) -> "LogEntry":
        """Return a copy stamped with the object's location, date and correlation id."""
        return replace(
            self,
            location=key_info.location,
            correlation_id=key_info.correlation_id,
            date=f"{key_info.date}T{self.time}",
        )


def entry_to_dict(entry: LogEntry) -> dict[str, str]:
    """Convert a LogEntry to the indexing document, keeping empty fields."""
    return {wire: getattr(entry, attr) for attr, wire in WIRE_FIELDS.items()}


def entry_from_dict(doc: dict) -> LogEntry:
    """Rebuild a LogEntry from an indexing document."""
    missing = [wire for wire in WIRE_FIELDS.values() if wire not in doc]
    if missing:
        raise ValueError(f"Document missing field(s): {', '.join(missing)}")
    return LogEntry(**{attr: doc[wire] for attr, wire in WIRE_FIELDS.items()})


def format_document(entry: LogEntry) -> bytes:
    """Serialize a LogEntry to compact UTF-8 JSON."""
    doc = json.dumps(entry_to_dict(entry), separators=(",", ":"), ensure_ascii=False)
    return doc.encode("utf-8")
