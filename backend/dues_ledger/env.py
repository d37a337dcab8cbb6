"""Typed readers for environment variables.

Blank values count as unset. Malformed values raise ``ValueError`` naming the
variable so a misconfigured deployment fails at startup.
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from typing import Optional, Type, TypeVar

E = TypeVar("E")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _raw(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def read_int_env(name: str, default: Optional[int], *, minimum: int = 0) -> Optional[int]:
    raw = _raw(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def read_float_env(name: str, default: Optional[float]) -> Optional[float]:
    raw = _raw(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


def read_decimal_env(name: str, default: Optional[Decimal]) -> Optional[Decimal]:
    raw = _raw(name)
    if raw is None:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal number") from exc
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


def read_bool_env(name: str, default: bool = False) -> bool:
    raw = _raw(name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag")


def read_choice_env(name: str, enum_cls: Type[E], default: Optional[E]) -> Optional[E]:
    raw = _raw(name)
    if raw is None:
        return default
    try:
        return enum_cls(raw.lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"{name} must be one of: {allowed}") from exc
