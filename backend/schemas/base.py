"""Shared response schema configuration."""
from pydantic import BaseModel, ConfigDict, model_serializer
from datetime import datetime, UTC


def to_utc_iso(dt: datetime) -> str:
    """Render a timestamp as ISO 8601 with a ``Z`` suffix; naive values are UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat().replace('+00:00', 'Z')


class BaseSchema(BaseModel):
    """Response schema that reads ORM objects and emits UTC timestamps."""

    model_config = ConfigDict(from_attributes=True)

    @model_serializer(mode="wrap")
    def serialize_model(self, handler):
        def _convert(value):
            if isinstance(value, datetime):
                return to_utc_iso(value)
            if isinstance(value, list):
                return [_convert(item) for item in value]
            if isinstance(value, dict):
                return {key: _convert(item) for key, item in value.items()}
            return value

        return {key: _convert(value) for key, value in handler(self).items()}
