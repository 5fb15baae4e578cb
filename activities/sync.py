"""
Invoice Sync Activities

Temporal activity that runs one invoice synchronization for a date window:
- sync_invoices: open an engine, run it, return the serialized RunSummary

The engine is built per activity attempt from an injected factory, so the
worker owns settings and the activity owns nothing between attempts.
"""

import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.errors import ConfigurationError, FatalRunError, ValidationError
from core.observability.logging import get_logger, with_correlation
from invoice_sync.service import EngineFactory


logger = get_logger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 10.0


# =============================================================================
# Activity Input
# =============================================================================

@dataclass
class SyncInvoicesInput:
    """Input for sync_invoices activity (ISO dates, inclusive window)"""
    start_date: str
    end_date: str


def _parse_window(input: SyncInvoicesInput):
    try:
        return date.fromisoformat(input.start_date), date.fromisoformat(input.end_date)
    except (TypeError, ValueError) as e:
        raise ApplicationError(
            f"Invalid sync window {input.start_date!r} - {input.end_date!r}: {e}",
            type="ValidationError",
            non_retryable=True,
        ) from e


# =============================================================================
# Activities
# =============================================================================

class InvoiceSyncActivities:
    """Activity implementations bound to an engine factory.

    Usage (worker):
        activities = InvoiceSyncActivities(engine_factory_from_settings(settings))
        Worker(client, task_queue=..., activities=[activities.sync_invoices], ...)
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
    ):
        self.engine_factory = engine_factory
        self.heartbeat_interval = heartbeat_interval

    @activity.defn(name="sync_invoices")
    async def sync_invoices(self, input: SyncInvoicesInput) -> Dict[str, Any]:
        """Synchronize billing invoices dated within the window into D365.

        Per-invoice failures are reported in the returned summary and never
        fail the activity. A failed fetch raises a retryable ApplicationError.
        """
        start_date, end_date = _parse_window(input)
        info = activity.info()

        with with_correlation(
            trigger="schedule",
            workflow_id=info.workflow_id,
            activity_name=info.activity_type,
        ):
            logger.info(f"Activity started: sync_invoices {input.start_date} to {input.end_date}")
            cancel_event = asyncio.Event()

            try:
                async with self.engine_factory() as engine:
                    summary = await self._run_with_heartbeat(engine, start_date, end_date, cancel_event)
            except FatalRunError as e:
                raise ApplicationError(str(e), type="FatalRunError") from e
            except (ValidationError, ConfigurationError) as e:
                raise ApplicationError(str(e), type=type(e).__name__, non_retryable=True) from e

            logger.info(
                f"Activity completed: sync_invoices - {summary.describe()}",
                extra_fields={"succeeded": summary.succeeded_count, "failed": summary.failed_count},
            )
            return summary.to_dict()

    async def _run_with_heartbeat(self, engine, start_date, end_date, cancel_event):
        task = asyncio.ensure_future(engine.run(start_date, end_date, cancel_event))
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.heartbeat_interval)
                if done:
                    return task.result()
                activity.heartbeat("syncing invoices")
        except asyncio.CancelledError:
            # Stop dispatching, let in-flight invoices finish, then acknowledge
            cancel_event.set()
            summary = await task
            logger.warning(
                f"Activity cancelled: sync_invoices - {summary.describe()}",
                extra_fields={"not_attempted": summary.not_attempted},
            )
            raise
