"""Run summary for one invoice synchronization run."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from core.errors import ReconciliationError
from core.models.invoice import SyncOutcome, SyncStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


@dataclass
class RunSummary:
    """Outcomes of one run, in the order invoices reached a terminal state.

    Only the sync engine records outcomes. Once ``finalize()`` has been
    called the summary is frozen; further ``record()`` calls raise.
    """
    start_date: date
    end_date: date
    run_id: str = field(default_factory=new_run_id)
    _outcomes: List[SyncOutcome] = field(default_factory=list, init=False, repr=False)
    not_attempted: List[str] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_finalized(self) -> bool:
        return self.completed_at is not None

    def record(self, outcome: SyncOutcome) -> None:
        if self.is_finalized:
            raise RuntimeError(f"Run {self.run_id} is finalized; cannot record {outcome.invoice_number}")
        self._outcomes.append(outcome)

    def mark_cancelled(self, not_attempted: List[str]) -> None:
        if self.is_finalized:
            raise RuntimeError(f"Run {self.run_id} is finalized")
        self.cancelled = True
        self.not_attempted.extend(not_attempted)

    def finalize(self) -> "RunSummary":
        """Freeze the summary. Idempotent; returns the same object."""
        if self.completed_at is None:
            self.completed_at = _utcnow()
        return self

    @property
    def outcomes(self) -> Tuple[SyncOutcome, ...]:
        return tuple(self._outcomes)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SyncStatus.SUCCEEDED)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SyncStatus.FAILED)

    @property
    def failed_outcomes(self) -> Tuple[SyncOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == SyncStatus.FAILED)

    @property
    def unconfirmed(self) -> Tuple[SyncOutcome, ...]:
        """Invoices accepted by the ERP whose write-back failed.

        These still look unprocessed in the billing system and must be
        reconciled by hand before the next run resubmits them.
        """
        return tuple(
            o for o in self.failed_outcomes
            if o.error_type == ReconciliationError.__name__ and o.erp_invoice_id
        )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def describe(self) -> str:
        return (
            f"Run {self.run_id} ({self.start_date.isoformat()} to {self.end_date.isoformat()}): "
            f"{self.succeeded_count} succeeded, {self.failed_count} failed"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "cancelled": self.cancelled,
            "not_attempted": list(self.not_attempted),
            "failures": [o.model_dump(mode="json") for o in self.failed_outcomes],
            "unconfirmed": [
                {"invoice_number": o.invoice_number, "erp_invoice_id": o.erp_invoice_id}
                for o in self.unconfirmed
            ],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
