from __future__ import annotations

import datetime as dt
import json
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.type_api import TypeEngine
from sqlalchemy.types import CHAR, JSON, DateTime, Numeric, TypeDecorator

from referral_market.core.constants import MONEY_QUANTUM


def quantize_money(value: Decimal | int | str) -> Decimal:
    """Normalise an amount to two decimal places using half-up rounding."""
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class GUID(TypeDecorator[uuid.UUID]):
    """Platform-independent GUID type.

    Uses PostgreSQL's native UUID type when available, otherwise falls back to
    a CHAR(36) representation.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: uuid.UUID | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        raise TypeError("GUID values must be UUID instances")

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class Money(TypeDecorator[Decimal]):
    """Fixed-point currency amount, always returned quantized to cents."""

    impl = Numeric(12, 2)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return value
        return quantize_money(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return value
        return quantize_money(str(value))


JSONValue = dict[str, Any] | list[Any]


class JSONType(TypeDecorator[JSONValue]):
    """JSON wrapper that ensures consistent behaviour across dialects."""

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: JSONValue | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if isinstance(value, (dict, list)):
            return json.loads(json.dumps(value, default=str))
        raise TypeError("JSONType values must be dicts or lists")

    def process_result_value(self, value: Any, dialect: Dialect) -> JSONValue | None:
        if value is None or isinstance(value, (dict, list)):
            return value
        decoded = json.loads(value)
        if isinstance(decoded, (dict, list)):
            return decoded
        raise TypeError("JSON deserialisation returned unexpected type")


class UTCDateTime(TypeDecorator[dt.datetime]):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite has no timezone support, so naive values read back are tagged UTC.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: dt.datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        if isinstance(value, dt.datetime):
            if value.tzinfo is None:
                raise ValueError("UTCDateTime requires timezone-aware datetime")
            value = value.astimezone(dt.UTC)
            if dialect.name == "sqlite":
                return value.replace(tzinfo=None)
            return value
        raise TypeError("UTCDateTime values must be datetime instances")

    def process_result_value(self, value: Any, dialect: Dialect) -> dt.datetime | None:
        if value is None:
            return value
        if isinstance(value, str):
            value = dt.datetime.fromisoformat(value)
        if isinstance(value, dt.datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=dt.UTC)
            return value.astimezone(dt.UTC)
        raise TypeError(f"Expected datetime, got {type(value)}")
