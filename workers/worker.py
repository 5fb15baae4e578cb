"""Worker for the invoice synchronization pipeline.

Connects to Temporal, polls the invoice sync task queue and executes
InvoiceSyncWorkflow and its sync_invoices activity.

Run with --queue <name> to override TEMPORAL_TASK_QUEUE.
"""

import argparse
import asyncio
from typing import Optional

from temporalio.worker import Worker

from activities.sync import InvoiceSyncActivities
from core.config import IntegrationSettings
from core.observability.logging import configure_logging_from_settings, get_logger
from invoice_sync.service import engine_factory_from_settings
from temporal_client import get_temporal_client
from workflows.invoice_sync_workflow import InvoiceSyncWorkflow


logger = get_logger("workers.worker")


def build_worker(client, settings: IntegrationSettings, task_queue: Optional[str] = None) -> Worker:
    """Create the worker for one task queue."""
    activities = InvoiceSyncActivities(engine_factory_from_settings(settings))
    return Worker(
        client,
        task_queue=task_queue or settings.temporal_task_queue,
        workflows=[InvoiceSyncWorkflow],
        activities=[activities.sync_invoices],
    )


async def run_worker(queue: Optional[str] = None):
    """Start worker listening on the task queue.

    Args:
        queue: Task queue to poll (defaults to TEMPORAL_TASK_QUEUE)

    Raises:
        ConfigurationError: If settings are incomplete
    """
    settings = IntegrationSettings.from_env()
    configure_logging_from_settings(settings)
    logger.info("Loaded settings", extra_fields=settings.redacted())

    client = await get_temporal_client(settings)
    logger.info(f"Connected to Temporal: {client.namespace}")

    task_queue = queue or settings.temporal_task_queue
    worker = build_worker(client, settings, task_queue)
    logger.info(f"Worker running on queue '{task_queue}'... (Ctrl+C to stop)")

    try:
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Invoice Sync Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=None,
        help="Task queue to poll (default: TEMPORAL_TASK_QUEUE or invoice-sync)"
    )

    args = parser.parse_args()
    try:
        asyncio.run(run_worker(queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
