"""Create or update the nightly invoice sync schedule on Temporal.

The schedule starts InvoiceSyncWorkflow on INVOICE_SYNC_SCHEDULE (cron,
default "0 2 * * *") with DEFAULT_INVOICE_LOOKBACK_DAYS as window.

Usage:
    python scripts/create_schedule.py
    python scripts/create_schedule.py --schedule-id invoice-sync-nightly --paused
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.client import (
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleSpec,
    ScheduleState,
    ScheduleUpdate,
)

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import IntegrationSettings
from core.observability.logging import configure_logging_from_settings, get_logger
from temporal_client import get_temporal_client
from workflows.invoice_sync_workflow import InvoiceSyncWorkflow, InvoiceSyncWorkflowInput


logger = get_logger("scripts.create_schedule")

DEFAULT_SCHEDULE_ID = "invoice-sync-nightly"


def build_schedule(settings: IntegrationSettings, paused: bool = False) -> Schedule:
    return Schedule(
        action=ScheduleActionStartWorkflow(
            InvoiceSyncWorkflow.run,
            InvoiceSyncWorkflowInput(lookback_days=settings.default_invoice_lookback_days),
            id="invoice-sync",
            task_queue=settings.temporal_task_queue,
        ),
        spec=ScheduleSpec(cron_expressions=[settings.invoice_sync_schedule]),
        state=ScheduleState(paused=paused, note="Nightly billing -> D365 invoice sync"),
    )


async def create_or_update_schedule(schedule_id: str, paused: bool = False) -> None:
    settings = IntegrationSettings.from_env()
    configure_logging_from_settings(settings)

    client = await get_temporal_client(settings)
    schedule = build_schedule(settings, paused=paused)

    try:
        await client.create_schedule(schedule_id, schedule)
        logger.info(f"Created schedule '{schedule_id}' ({settings.invoice_sync_schedule})")
    except ScheduleAlreadyRunningError:
        handle = client.get_schedule_handle(schedule_id)
        await handle.update(lambda _: ScheduleUpdate(schedule=schedule))
        logger.info(f"Updated schedule '{schedule_id}' ({settings.invoice_sync_schedule})")


def main():
    parser = argparse.ArgumentParser(description="Create the invoice sync Temporal schedule")
    parser.add_argument("--schedule-id", default=DEFAULT_SCHEDULE_ID)
    parser.add_argument("--paused", action="store_true", help="Create the schedule paused")
    args = parser.parse_args()

    asyncio.run(create_or_update_schedule(args.schedule_id, paused=args.paused))


if __name__ == "__main__":
    main()
