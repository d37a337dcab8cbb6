"""Persist structured outcomes of ledger operations as metric events."""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from .. import models

LOGGER = logging.getLogger(__name__)


class MetricOutcome(str):
    SUCCESS = "success"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    ERROR = "error"


class ObservabilityService:
    """Records one event per ledger operation outcome for dashboards and alerts.

    Events are written through their own session bound to the caller's engine,
    so they are kept even when the caller's transaction is rolled back. Call
    these helpers only after the caller has committed or rolled back.
    """

    @staticmethod
    def record_event(
        db: Session,
        event_type: str,
        outcome: str,
        *,
        duration_ms: float | None = None,
        tags: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        payload = models.OperationalMetricEvent(
            event_type=event_type,
            outcome=outcome,
            duration_ms=Decimal(str(round(duration_ms, 3))) if duration_ms is not None else None,
            tags={key: _jsonable(value) for key, value in (tags or {}).items()},
            details=metadata or None,
        )
        ObservabilityService._persist(db, payload)

    @staticmethod
    def record_validation_result(
        db: Session,
        event_type: str,
        *,
        outcome: str,
        reason: str,
        tags: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> None:
        ObservabilityService.record_event(
            db,
            event_type,
            outcome,
            duration_ms=duration_ms,
            tags={"reason": reason, **(tags or {})},
            metadata={"rejection_reason": reason},
        )

    @staticmethod
    def timed_event(db: Session, event_type: str, *, tags: dict[str, Any] | None = None):
        """Context manager measuring an operation and recording its outcome."""

        class _Timer:
            def __enter__(self):
                self._start = time.perf_counter()
                return self

            def __exit__(self, exc_type, exc, tb):
                duration = (time.perf_counter() - self._start) * 1000
                if exc is None:
                    outcome = MetricOutcome.SUCCESS
                elif isinstance(exc, (ValueError, LookupError)):
                    outcome = MetricOutcome.REJECTED
                else:
                    outcome = MetricOutcome.ERROR
                ObservabilityService.record_event(
                    db,
                    event_type,
                    outcome,
                    duration_ms=duration,
                    tags=tags,
                    metadata={"exception": str(exc)} if exc else None,
                )
                return False

        return _Timer()

    @staticmethod
    def _persist(db: Session, event: models.OperationalMetricEvent) -> None:
        try:
            engine = db.get_bind()
            with Session(bind=engine) as metrics_session:
                metrics_session.add(event)
                metrics_session.commit()
        except Exception:  # pragma: no cover - metrics failures should not break flows
            LOGGER.exception("Failed to persist operational metric event", exc_info=True)


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if hasattr(value, "value"):
        return value.value
    return str(value)
