"""Custom SQLAlchemy column types shared by the ledger models."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.dialects import postgresql
from sqlalchemy.types import CHAR, BigInteger, TypeDecorator


class GUID(TypeDecorator):
    """Platform-independent GUID/UUID type.

    Stores UUID values as ``UUID`` in PostgreSQL and as 36-character strings
    elsewhere. Values are normalised to strings when read so identifiers can be
    compared and serialised as plain text.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        if dialect.name == "postgresql":
            if isinstance(value, uuid.UUID):
                return value
            return uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        return str(value)


class MinorUnits(TypeDecorator):
    """Monetary amount stored as an integer count of minor currency units.

    Floats, decimals and strings are rejected on bind instead of being coerced,
    so a rounding mistake upstream fails loudly rather than drifting silently.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(
                f"Monetary values must be integer minor units, got {type(value).__name__}"
            )
        return value

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return value
        return int(value)
