"""PayloadSerializer: JSON encoding shared by publish and consume."""

from __future__ import annotations

import json
from typing import Any

from .exceptions import AmqpSerializationError

CONTENT_TYPE = "application/json"


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime and other non-JSON types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class PayloadSerializer:
    """Serialize/deserialize message payloads to/from UTF-8 JSON bytes.

    Pydantic models are dumped in JSON mode; datetimes become ISO-8601 strings.
    """

    def serialize(self, payload: Any) -> bytes:
        """Encode *payload* to JSON bytes."""
        try:
            if hasattr(payload, "model_dump"):
                payload = payload.model_dump(mode="json")
            return json.dumps(payload, default=_json_serializer).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise AmqpSerializationError(str(e)) from e

    def deserialize(self, raw: bytes) -> Any:
        """Decode JSON bytes."""
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
            raise AmqpSerializationError(str(e)) from e
