"""Decode queue message bodies into notification envelopes.

The body is the JSON document S3 publishes for object-created events::

    {"Records": [{"EventVersion": "2.1", "EventTime": "...", "EventName": "...",
                  "S3": {"S3SchemaVersion": "1.0",
                         "Bucket": {"Name": "...", "Arn": "..."},
                         "Object": {"Key": "<date>/<correlation id>/..."}}}]}

Record keys are matched case-insensitively on the first letter only, so the
native ``eventName``/``s3``/``bucket`` spelling decodes the same way.
"""

import json
import urllib.parse

import jsonschema

from src.errors import EnvelopeDecodeError, InvalidObjectKeyError
from src.models import (
    NotificationEnvelope,
    NotificationRecord,
    ObjectKeyInfo,
    ObjectReference,
)

_NON_EMPTY_STRING = {"type": "string", "minLength": 1}

ENVELOPE_SCHEMA = {
    "type": "object",
    "required": ["Records"],
    "properties": {
        "Records": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["S3"],
                "properties": {
                    "EventVersion": {"type": "string"},
                    "EventTime": {"type": "string"},
                    "EventName": {"type": "string"},
                    "S3": {
                        "type": "object",
                        "required": ["Bucket", "Object"],
                        "properties": {
                            "S3SchemaVersion": {"type": "string"},
                            "Bucket": {
                                "type": "object",
                                "required": ["Name"],
                                "properties": {
                                    "Name": _NON_EMPTY_STRING,
                                    "Arn": {"type": "string"},
                                },
                            },
                            "Object": {
                                "type": "object",
                                "required": ["Key"],
                                "properties": {"Key": _NON_EMPTY_STRING},
                            },
                        },
                    },
                },
            },
        },
    },
}

_validator = jsonschema.Draft202012Validator(ENVELOPE_SCHEMA)


def _normalize_keys(value):
    """Upper-case the first letter of every mapping key, recursively."""
    if isinstance(value, dict):
        return {
            (k[:1].upper() + k[1:] if isinstance(k, str) else k): _normalize_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_normalize_keys(v) for v in value]
    return value


def parse_object_key(key: str) -> ObjectKeyInfo:
    """Split ``<date>/<correlation id>/...`` into the per-object entry context."""
    segments = key.split("/")
    if len(segments) < 2:
        raise InvalidObjectKeyError(key, "expected at least 2 path segments")
    date, correlation_id = segments[0], segments[1]
    if not date.strip():
        raise InvalidObjectKeyError(key, "date (segment 0) cannot be empty")
    if not correlation_id.strip():
        raise InvalidObjectKeyError(key, "correlation id (segment 1) cannot be empty")
    return ObjectKeyInfo(location=key, date=date, correlation_id=correlation_id)


def decode_envelope(body: str | bytes) -> NotificationEnvelope:
    """Decode and validate one message body.

    Every object key is validated here, so a message that would fail halfway
    through never hands off a single entry.

    Raises:
        EnvelopeDecodeError: body is not JSON, does not match the envelope
            schema, or references a malformed object key.
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise EnvelopeDecodeError(f"Message body is not valid JSON: {e}") from e

    data = _normalize_keys(data)

    # S3 sends a one-off test event when the notification is first configured
    if isinstance(data, dict) and data.get("Event") == "s3:TestEvent":
        return NotificationEnvelope(test_event=True)

    errors = sorted(_validator.iter_errors(data), key=lambda err: err.json_path)
    if errors:
        details = "; ".join(f"{err.json_path}: {err.message}" for err in errors)
        raise EnvelopeDecodeError(f"Message body is not a notification envelope: {details}")

    records = []
    for raw in data["Records"]:
        s3 = raw["S3"]
        key = urllib.parse.unquote_plus(s3["Object"]["Key"])
        records.append(
            NotificationRecord(
                ref=ObjectReference(bucket=s3["Bucket"]["Name"], key=key),
                event_name=raw.get("EventName", ""),
                event_time=raw.get("EventTime", ""),
                event_version=raw.get("EventVersion", ""),
                bucket_arn=s3["Bucket"].get("Arn", ""),
                key_info=parse_object_key(key),
            )
        )
    return NotificationEnvelope(records=tuple(records))
