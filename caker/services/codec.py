# services/codec.py
"""
JSON codec for persisted cache entries.

Wire format: {"value": <json>, "expiration_date": "<ISO-8601, UTC>"}
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional, Protocol

from pydantic import BaseModel, TypeAdapter, ValidationError, field_validator
from pydantic_core import PydanticSerializationError

from caker.errors import StorageDecodeError, StorageWriteError


class CacheEntry(BaseModel):
    value: Any = None
    expiration_date: datetime

    @field_validator("expiration_date")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        # naive timestamps are taken as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def is_fresh(self, now: datetime) -> bool:
        return self.expiration_date > now


class Codec(Protocol):
    def encode(self, value: Any, expiration_date: datetime) -> bytes: ...

    def decode(self, data: bytes, value_type: Optional[Any] = None) -> CacheEntry: ...


@lru_cache(maxsize=256)
def _adapter(value_type: Any) -> TypeAdapter:
    return TypeAdapter(value_type)


class JsonCodec:
    def encode(self, value: Any, expiration_date: datetime) -> bytes:
        try:
            entry = CacheEntry(value=value, expiration_date=expiration_date)
            return entry.model_dump_json().encode("utf-8")
        except (PydanticSerializationError, ValidationError, TypeError, ValueError) as e:
            raise StorageWriteError(f"Cannot encode cache value: {e}") from e

    def decode(self, data: bytes, value_type: Optional[Any] = None) -> CacheEntry:
        """
        Decode bytes into a CacheEntry.

        When value_type is given the raw JSON value is validated into that
        type (pydantic models, dataclasses, datetimes, typed containers).
        Any failure surfaces as StorageDecodeError.
        """
        try:
            entry = CacheEntry.model_validate_json(data)
        except (ValidationError, ValueError) as e:
            raise StorageDecodeError(f"Malformed cache entry: {e}") from e

        if value_type is None:
            return entry

        try:
            typed = _adapter(value_type).validate_python(entry.value)
        except ValidationError as e:
            raise StorageDecodeError(f"Cached value does not match {value_type!r}: {e}") from e
        except Exception as e:
            # schema generation fails for types pydantic cannot describe
            raise StorageDecodeError(f"Cannot decode cached value as {value_type!r}: {e}") from e
        return CacheEntry(value=typed, expiration_date=entry.expiration_date)
