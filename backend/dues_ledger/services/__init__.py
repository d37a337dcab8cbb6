"""Service layer encapsulating ledger logic for API routers and scripts."""

from .allocation import (
    AllocationLine,
    AllocationPlan,
    BillOutcome,
    BillSnapshot,
    derive_status,
    plan_allocation,
)
from .data_consistency import DataConsistencyService, LedgerConsistencySnapshot
from .errors import (
    DataIntegrityError,
    InsufficientContextError,
    InsufficientInputError,
    LedgerConflictError,
    LedgerError,
    PaymentNotFoundError,
    PaymentServiceError,
    PaymentValidationError,
    ReversalBlockedError,
    UnitNotFoundError,
)
from .ledger import LedgerService, PaymentRecordResult, PaymentRequest
from .observability import MetricOutcome, ObservabilityService
from .penalties import (
    PenaltyConfig,
    calculate_penalty,
    count_elapsed_periods,
    penalty_configs_for_unit,
)
from .periods import FiscalPeriod, parse_period_key, period_bounds, resolve_period
from .reversal import ReversalResult, ReversalService

__all__ = [
    "AllocationLine",
    "AllocationPlan",
    "BillOutcome",
    "BillSnapshot",
    "DataConsistencyService",
    "DataIntegrityError",
    "FiscalPeriod",
    "InsufficientContextError",
    "InsufficientInputError",
    "LedgerConflictError",
    "LedgerConsistencySnapshot",
    "LedgerError",
    "LedgerService",
    "MetricOutcome",
    "ObservabilityService",
    "PaymentNotFoundError",
    "PaymentRecordResult",
    "PaymentRequest",
    "PaymentServiceError",
    "PaymentValidationError",
    "PenaltyConfig",
    "ReversalBlockedError",
    "ReversalResult",
    "ReversalService",
    "UnitNotFoundError",
    "calculate_penalty",
    "count_elapsed_periods",
    "derive_status",
    "parse_period_key",
    "penalty_configs_for_unit",
    "period_bounds",
    "plan_allocation",
    "resolve_period",
]
