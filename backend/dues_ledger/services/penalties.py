"""Penalty calculation as of an arbitrary reference date.

Penalties are a pure function of the bill, the reference date and the unit's
configuration. Nothing here reads the wall clock, which is what makes
backdated payments reproduce exactly what would have been owed on that date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..config import EngineSettings
from ..models.bill import BillCategory
from ..models.unit import CompoundingMode
from .errors import InsufficientContextError, PaymentValidationError
from .periods import resolve_period

ONE = Decimal("1")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PenaltyConfig:
    """Grace period and rate used to grow penalties."""

    grace_days: int
    monthly_rate_percent: Decimal
    compounding: CompoundingMode = CompoundingMode.FLAT

    def __post_init__(self) -> None:
        if isinstance(self.grace_days, bool) or not isinstance(self.grace_days, int):
            raise PaymentValidationError("grace_days must be an integer")
        if self.grace_days < 0:
            raise PaymentValidationError("grace_days must be non-negative")
        rate = Decimal(str(self.monthly_rate_percent))
        if rate < 0:
            raise PaymentValidationError("monthly_rate_percent must be non-negative")
        object.__setattr__(self, "monthly_rate_percent", rate)
        object.__setattr__(self, "compounding", CompoundingMode(self.compounding))

    @property
    def rate(self) -> Decimal:
        return self.monthly_rate_percent / HUNDRED

    @classmethod
    def for_unit(
        cls,
        unit,
        settings: EngineSettings,
        category: BillCategory = BillCategory.DUES,
    ) -> "PenaltyConfig":
        """Resolve the terms for one of ``unit``'s bill categories.

        Each setting is taken from the most specific layer that sets it: the
        unit's override for ``category``, the unit itself, the engine default
        for ``category``, then the engine-wide default.
        """

        category = BillCategory(category)
        unit_category = next(
            (
                override
                for override in (getattr(unit, "penalty_overrides", None) or ())
                if BillCategory(override.category) == category
            ),
            None,
        )
        layers = (unit_category, unit, settings.defaults_for(category))

        def pick(name: str, fallback):
            for layer in layers:
                value = getattr(layer, name, None) if layer is not None else None
                if value is not None:
                    return value
            return fallback

        return cls(
            grace_days=pick("grace_days", settings.grace_days),
            monthly_rate_percent=Decimal(
                str(pick("monthly_rate_percent", settings.monthly_rate_percent))
            ),
            compounding=pick("compounding", settings.compounding),
        )


def penalty_configs_for_unit(unit, settings: EngineSettings) -> dict[BillCategory, PenaltyConfig]:
    """Penalty terms for every bill category ``unit`` may hold."""

    return {category: PenaltyConfig.for_unit(unit, settings, category) for category in BillCategory}


def grace_period_end(due_date: date, grace_days: int) -> date:
    return due_date + timedelta(days=grace_days)


def _is_month_end(day: date) -> bool:
    return (day + timedelta(days=1)).month != day.month


def count_elapsed_periods(
    due_date: date,
    reference_date: date,
    grace_days: int,
    fiscal_year_start_month: int = 1,
) -> int:
    """Whole billing periods elapsed since the grace period ended.

    A period only counts once the reference date reaches the same day of the
    month as the grace end. The last day of a month reaches every later day,
    so a grace end on the 31st still accrues on February 28th.
    """

    grace_end = grace_period_end(due_date, grace_days)
    if reference_date <= grace_end:
        return 0

    elapsed = resolve_period(reference_date, fiscal_year_start_month) - resolve_period(
        grace_end, fiscal_year_start_month
    )
    if reference_date.day < grace_end.day and not _is_month_end(reference_date):
        elapsed -= 1
    return max(0, elapsed)


def _to_minor_units(value: Decimal) -> int:
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def penalty_for_periods(base_amount: int, elapsed_periods: int, config: PenaltyConfig) -> int:
    """Penalty owed on ``base_amount`` after ``elapsed_periods`` periods."""

    if elapsed_periods <= 0 or base_amount <= 0 or config.rate == 0:
        return 0

    base = Decimal(base_amount)
    if config.compounding == CompoundingMode.COMPOUND:
        return _to_minor_units(base * ((ONE + config.rate) ** elapsed_periods - ONE))
    return _to_minor_units(base * config.rate * elapsed_periods)


def calculate_penalty(
    bill,
    reference_date: date,
    config: PenaltyConfig,
    *,
    fiscal_year_start_month: int = 1,
) -> int:
    """Penalty owed on ``bill`` as of ``reference_date``.

    ``bill`` only needs ``issued_on``, ``due_date`` and ``base_charge_amount``,
    so ORM rows and planner snapshots are both accepted.

    Raises:
        InsufficientContextError: ``reference_date`` precedes the bill's issue date.
    """

    if not isinstance(reference_date, date):
        raise PaymentValidationError("reference_date must be a date")

    issued_on: Optional[date] = getattr(bill, "issued_on", None)
    if issued_on is not None and reference_date < issued_on:
        raise InsufficientContextError(
            f"Cannot compute a penalty as of {reference_date.isoformat()} for a bill "
            f"issued on {issued_on.isoformat()}"
        )

    elapsed = count_elapsed_periods(
        bill.due_date, reference_date, config.grace_days, fiscal_year_start_month
    )
    return penalty_for_periods(bill.base_charge_amount, elapsed, config)
