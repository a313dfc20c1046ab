"""Conversion of inbound transport events.

The host only depends on the ``EventConverter`` protocol. ``CloudEventConverter``
is the default implementation for events that arrive as already decoded
CloudEvents-shaped mappings (e.g. a Dapr push subscription body).
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from pydantic import TypeAdapter

from eventhost.events.types import EventMetadata

# CloudEvents attributes mapped onto metadata fields
_METADATA_ATTRIBUTES: dict[str, str] = {
    "id": "event_id",
    "tenantid": "tenant_id",
    "subject": "subject",
    "action": "action",
    "key": "key",
    "correlationid": "correlation_id",
    "partitionkey": "partition_key",
    "username": "username",
    "userid": "user_id",
    "time": "timestamp",
    "source": "source",
}

# Envelope attributes that are neither metadata nor extras
_ENVELOPE_ATTRIBUTES = {"specversion", "datacontenttype", "dataschema", "data", "data_base64", "type"}


@runtime_checkable
class EventConverter(Protocol):
    """Converts a raw inbound event into metadata and a typed value."""

    async def to_metadata(self, originating: Any) -> EventMetadata:
        """Extract routing metadata. Raises on malformed events."""
        ...

    async def to_value(self, value_type: Any, originating: Any) -> Any:
        """Convert the event body to ``value_type``. Raises on malformed bodies."""
        ...


class CloudEventConverter:
    """Converter for CloudEvents-shaped mappings.

    The subject is read from ``subject`` and falls back to ``type`` so that
    plain typed CloudEvents (``order.created``) route without a subject
    attribute. Unknown extension attributes are kept in ``extras``.
    """

    def __init__(self) -> None:
        self._adapters: dict[Any, TypeAdapter] = {}

    def _adapter(self, value_type: Any) -> TypeAdapter:
        adapter = self._adapters.get(value_type)
        if adapter is None:
            adapter = TypeAdapter(value_type)
            self._adapters[value_type] = adapter
        return adapter

    @staticmethod
    def _require_mapping(originating: Any) -> Mapping[str, Any]:
        if not isinstance(originating, Mapping):
            raise TypeError(
                f"CloudEvent must be a mapping, got {type(originating).__name__}."
            )
        return originating

    async def to_metadata(self, originating: Any) -> EventMetadata:
        event = self._require_mapping(originating)

        fields: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for name, value in event.items():
            attribute = name.lower()
            if attribute in _METADATA_ATTRIBUTES:
                fields[_METADATA_ATTRIBUTES[attribute]] = value
            elif attribute not in _ENVELOPE_ATTRIBUTES:
                extras[name] = value

        if not fields.get("subject"):
            fields["subject"] = event.get("type")

        event_id = fields.get("event_id")
        if event_id is not None and not isinstance(event_id, UUID):
            # CloudEvents ids are arbitrary strings; keep non-UUID ids as extras.
            try:
                fields["event_id"] = UUID(str(event_id))
            except ValueError:
                extras["id"] = fields.pop("event_id")

        timestamp = fields.get("timestamp")
        if isinstance(timestamp, str):
            fields["timestamp"] = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))

        return EventMetadata(extras=extras, **fields)

    async def to_value(self, value_type: Any, originating: Any) -> Any:
        event = self._require_mapping(originating)
        data = event.get("data")
        if data is None:
            return None
        return self._adapter(value_type).validate_python(data)
