"""
Invoice Sync Workflow

Scheduled entry point of the billing -> D365 invoice synchronization.
A Temporal Schedule starts it (nightly by default); it computes the date
window and runs the sync_invoices activity once for that window.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Optional, Tuple

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.sync import InvoiceSyncActivities, SyncInvoicesInput


DEFAULT_TASK_QUEUE = "invoice-sync"


def compute_sync_window(today: date, lookback_days: int = 1) -> Tuple[date, date]:
    """Window covering the last ``lookback_days`` days up to and including today."""
    lookback_days = max(0, lookback_days)
    return today - timedelta(days=lookback_days), today


@dataclass
class InvoiceSyncWorkflowInput:
    """Input for invoice sync workflow.

    Explicit dates override the computed window (backfills).
    """
    lookback_days: int = 1
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@workflow.defn
class InvoiceSyncWorkflow:
    """Runs one invoice synchronization for a date window."""

    @workflow.run
    async def run(self, input: InvoiceSyncWorkflowInput) -> Dict[str, Any]:
        if input.start_date and input.end_date:
            start_date, end_date = input.start_date, input.end_date
        else:
            start, end = compute_sync_window(workflow.now().date(), input.lookback_days)
            start_date, end_date = start.isoformat(), end.isoformat()

        workflow.logger.info(f"Starting invoice sync workflow for {start_date} to {end_date}")

        summary = await workflow.execute_activity_method(
            InvoiceSyncActivities.sync_invoices,
            SyncInvoicesInput(start_date=start_date, end_date=end_date),
            start_to_close_timeout=timedelta(hours=2),
            heartbeat_timeout=timedelta(minutes=2),
            retry_policy=RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(minutes=1),
                backoff_coefficient=2.0,
                maximum_interval=timedelta(minutes=10),
                non_retryable_error_types=["ValidationError", "ConfigurationError"],
            ),
        )

        workflow.logger.info(
            f"Invoice sync workflow completed: succeeded={summary.get('succeeded')} "
            f"failed={summary.get('failed')}"
        )
        return summary
