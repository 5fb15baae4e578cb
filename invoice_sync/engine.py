"""Invoice synchronization engine.

One run moves every unprocessed billing invoice in a date window into the
ERP:

    fetch -> for each invoice: map -> submit -> write back ERP reference

Each invoice walks FETCHED -> MAPPED -> SUBMITTED -> CONFIRMED, or ends in
FAILED at the step that broke. Steps return a StepResult instead of raising,
so one bad invoice never stops the others. Only a failed fetch aborts the
run (FatalRunError).

Usage:
    engine = InvoiceSyncEngine(billing, erp, notifier)
    summary = await engine.run(date(2024, 1, 1), date(2024, 1, 31))
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from connectors.billing.base import BillingSystemProvider
from connectors.erp_base import ERPGateway, RetryConfig
from core.config import IntegrationSettings
from core.errors import (
    FatalRunError,
    MappingError,
    ReconciliationError,
    SubmissionError,
    ValidationError,
)
from core.mapping.invoice_mapper import map_invoice
from core.models.invoice import FetchedInvoice, RejectedInvoice, SourceInvoice, SyncOutcome, TargetInvoice
from core.observability.logging import get_logger, with_correlation
from invoice_sync.escalation import LoggingNotifier, NotificationSeverity, Notifier
from invoice_sync.summary import RunSummary


logger = get_logger(__name__)


class InvoiceState(str, Enum):
    """Lifecycle of one invoice within a run."""
    FETCHED = "FETCHED"
    MAPPED = "MAPPED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class StepResult:
    """Result of one pipeline step for one invoice."""
    stage: str
    state: InvoiceState
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, stage: str, state: InvoiceState, value: Any) -> "StepResult":
        return cls(stage=stage, state=state, value=value)

    @classmethod
    def failure(cls, stage: str, error: Exception) -> "StepResult":
        return cls(stage=stage, state=InvoiceState.FAILED, error=error)


class InvoiceSyncEngine:
    """Runs billing -> ERP invoice synchronization for a date window.

    Invoices are processed one at a time by default. With
    ``max_concurrency > 1`` a fixed pool of tasks drains a shared queue;
    outcomes are then recorded in completion order.
    """

    def __init__(
        self,
        billing: BillingSystemProvider,
        erp: ERPGateway,
        notifier: Optional[Notifier] = None,
        mapper: Callable[[SourceInvoice], TargetInvoice] = map_invoice,
        retry_config: Optional[RetryConfig] = None,
        request_timeout: float = 30.0,
        fetch_timeout: float = 120.0,
        max_concurrency: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize engine.

        Args:
            billing: Source of invoices and target of write-backs
            erp: Gateway invoices are submitted through
            notifier: Escalation destination (logs by default)
            mapper: Source -> target mapping function
            retry_config: Bounded retry for transient submit failures
            request_timeout: Seconds allowed for one submit or write-back call
            fetch_timeout: Seconds allowed for the invoice fetch
            max_concurrency: Number of invoices processed at once
            sleep: Backoff sleep (replaced in tests)
        """
        self.billing = billing
        self.erp = erp
        self.notifier = notifier or LoggingNotifier()
        self.mapper = mapper
        self.retry_config = retry_config or RetryConfig()
        self.request_timeout = request_timeout
        self.fetch_timeout = fetch_timeout
        self.max_concurrency = max(1, max_concurrency)
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: IntegrationSettings,
        billing: BillingSystemProvider,
        erp: ERPGateway,
        notifier: Optional[Notifier] = None,
    ) -> "InvoiceSyncEngine":
        return cls(
            billing=billing,
            erp=erp,
            notifier=notifier,
            retry_config=RetryConfig.from_settings(settings),
            request_timeout=settings.request_timeout_seconds,
            fetch_timeout=settings.fetch_timeout_seconds,
            max_concurrency=settings.max_concurrency,
        )

    # =========================================================================
    # Run
    # =========================================================================

    async def run(
        self,
        start_date: date,
        end_date: date,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        """Synchronize all unprocessed invoices dated within [start_date, end_date].

        Args:
            start_date: First invoice date (inclusive)
            end_date: Last invoice date (inclusive)
            cancel_event: When set, no further invoices are started; in-flight
                invoices still finish

        Returns:
            Finalized RunSummary

        Raises:
            ValidationError: If start_date is after end_date
            FatalRunError: If invoices could not be fetched
        """
        if start_date > end_date:
            raise ValidationError(
                f"Start date {start_date.isoformat()} is after end date {end_date.isoformat()}"
            )

        summary = RunSummary(start_date=start_date, end_date=end_date)

        with with_correlation(run_id=summary.run_id):
            logger.info(
                f"Starting invoice sync from {start_date.isoformat()} to {end_date.isoformat()}",
                extra_fields={"max_concurrency": self.max_concurrency},
            )

            invoices = await self._fetch(summary)
            if not invoices:
                logger.info("No invoices to process")
                return summary.finalize()

            logger.info(f"Retrieved {len(invoices)} invoices from billing system")

            await self._process_all(invoices, summary, cancel_event)
            summary.finalize()

            logger.info(
                summary.describe(),
                extra_fields={
                    "succeeded": summary.succeeded_count,
                    "failed": summary.failed_count,
                    "not_attempted": len(summary.not_attempted),
                },
            )

            if summary.failed_count > 0:
                await self._escalate_failures(summary)

        return summary

    # =========================================================================
    # Fetch
    # =========================================================================

    async def _fetch(self, summary: RunSummary) -> List[FetchedInvoice]:
        with with_correlation(stage="fetch"):
            try:
                return await asyncio.wait_for(
                    self.billing.fetch_unprocessed_invoices(summary.start_date, summary.end_date),
                    timeout=self.fetch_timeout,
                )
            except asyncio.TimeoutError as e:
                fatal = FatalRunError(
                    f"Timed out after {self.fetch_timeout}s retrieving invoices from billing system",
                    transient=True,
                )
                cause = e
            except Exception as e:
                fatal = FatalRunError(f"Error retrieving invoices from billing system: {e}")
                cause = e

            summary.finalize()
            logger.error(str(fatal), exc_info=cause)
            await self._notify(
                NotificationSeverity.CRITICAL,
                f"Invoice sync {summary.run_id} aborted: {fatal}",
                summary.to_dict(),
            )
            raise fatal from cause

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _process_all(
        self,
        invoices: List[FetchedInvoice],
        summary: RunSummary,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        queue: Deque[FetchedInvoice] = deque(invoices)
        handled: Set[str] = set()
        locks: Dict[str, asyncio.Lock] = {}

        async def worker() -> None:
            while queue:
                if cancel_event is not None and cancel_event.is_set():
                    return
                invoice = queue.popleft()
                outcome = await self._process_invoice(invoice, handled, locks)
                summary.record(outcome)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self.max_concurrency, len(invoices)))
        ]
        await asyncio.gather(*workers)

        if queue:
            not_attempted = [invoice.invoice_number or "" for invoice in queue]
            logger.warning(
                f"Run cancelled, {len(not_attempted)} invoices not attempted",
                extra_fields={"not_attempted": not_attempted},
            )
            summary.mark_cancelled(not_attempted)

    async def _process_invoice(
        self,
        invoice: FetchedInvoice,
        handled: Set[str],
        locks: Dict[str, asyncio.Lock],
    ) -> SyncOutcome:
        number = (invoice.invoice_number or "").strip()
        if not number:
            return await self._sync_invoice(invoice, number)

        lock = locks.setdefault(number, asyncio.Lock())
        async with lock:
            if number in handled:
                error = MappingError(
                    f"Duplicate invoice number {number} in this run, not resubmitted",
                    invoice_number=number,
                )
                logger.error(str(error), extra_fields={"invoice_number": number})
                return SyncOutcome.failed(number, error, failed_stage="map")
            handled.add(number)
            return await self._sync_invoice(invoice, number)

    async def _sync_invoice(self, invoice: FetchedInvoice, number: str) -> SyncOutcome:
        with with_correlation(invoice_number=number or None):
            logger.info(f"Processing invoice {number}")
            stage = "map"
            try:
                mapped = self._map(invoice, number)
                if not mapped.ok:
                    return SyncOutcome.failed(number, mapped.error, failed_stage=mapped.stage)

                stage = "submit"
                submitted = await self._submit(mapped.value)
                if not submitted.ok:
                    return SyncOutcome.failed(number, submitted.error, failed_stage=submitted.stage)

                erp_invoice_id = submitted.value
                stage = "write_back"
                confirmed = await self._write_back(number, erp_invoice_id)
                if not confirmed.ok:
                    return SyncOutcome.failed(
                        number,
                        confirmed.error,
                        failed_stage=confirmed.stage,
                        erp_invoice_id=erp_invoice_id,
                    )

                logger.info(
                    f"Successfully processed invoice {number}, D365 invoice {erp_invoice_id}",
                    extra_fields={"erp_invoice_id": erp_invoice_id},
                )
                return SyncOutcome.succeeded(number, erp_invoice_id)

            except Exception as e:
                logger.exception(f"Unexpected error processing invoice {number}")
                return SyncOutcome.failed(number, e, failed_stage=stage)

    # =========================================================================
    # Steps
    # =========================================================================

    def _map(self, invoice: FetchedInvoice, number: str) -> StepResult:
        with with_correlation(stage="map"):
            if isinstance(invoice, RejectedInvoice):
                error = MappingError(
                    f"Invoice {number} failed validation: {invoice.error}",
                    invoice_number=number,
                )
                logger.error(f"Error mapping invoice {number}: {error}")
                return StepResult.failure("map", error)
            try:
                target = self.mapper(invoice)
            except (ValidationError, MappingError, ValueError) as e:
                error = e if isinstance(e, MappingError) else MappingError(str(e), invoice_number=number)
                logger.error(f"Error mapping invoice {number}: {error}")
                return StepResult.failure("map", error)
            return StepResult.success("map", InvoiceState.MAPPED, target)

    async def _submit(self, target: TargetInvoice) -> StepResult:
        with with_correlation(stage="submit"):
            attempt = 0
            while True:
                try:
                    erp_invoice_id = await asyncio.wait_for(
                        self.erp.submit_invoice(target),
                        timeout=self.request_timeout,
                    )
                    return StepResult.success("submit", InvoiceState.SUBMITTED, erp_invoice_id)
                except asyncio.TimeoutError:
                    error = SubmissionError(
                        f"Timed out after {self.request_timeout}s submitting invoice to D365",
                        retryable=True,
                    )
                except SubmissionError as e:
                    error = e

                if not self.retry_config.should_retry(error, attempt):
                    logger.error(
                        f"Error creating invoice in D365: {error}",
                        extra_fields={
                            "status_code": error.status_code,
                            "attempts": attempt + 1,
                            "error_type": type(error).__name__,
                        },
                    )
                    return StepResult.failure("submit", error)

                delay = self.retry_config.get_delay(attempt)
                attempt += 1
                logger.warning(
                    f"Submit failed ({error}), retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{self.retry_config.max_retries})"
                )
                await self._sleep(delay)

    async def _write_back(self, number: str, erp_invoice_id: str) -> StepResult:
        with with_correlation(stage="write_back"):
            try:
                await asyncio.wait_for(
                    self.billing.write_back_reference(number, erp_invoice_id),
                    timeout=self.request_timeout,
                )
            except asyncio.TimeoutError:
                error = ReconciliationError(
                    f"Invoice {number} was created in D365 as {erp_invoice_id} but the "
                    f"write-back timed out after {self.request_timeout}s",
                    invoice_number=number,
                    erp_invoice_id=erp_invoice_id,
                )
            except Exception as e:
                error = ReconciliationError(
                    f"Invoice {number} was created in D365 as {erp_invoice_id} but the "
                    f"write-back failed: {e}",
                    invoice_number=number,
                    erp_invoice_id=erp_invoice_id,
                )
            else:
                return StepResult.success("write_back", InvoiceState.CONFIRMED, erp_invoice_id)

            logger.error(str(error), extra_fields={"erp_invoice_id": erp_invoice_id})
            return StepResult.failure("write_back", error)

    # =========================================================================
    # Escalation
    # =========================================================================

    async def _escalate_failures(self, summary: RunSummary) -> None:
        lines = [
            f"Invoice sync {summary.run_id} finished with {summary.failed_count} failed "
            f"of {len(summary.outcomes)} invoices "
            f"({summary.start_date.isoformat()} to {summary.end_date.isoformat()})."
        ]
        for outcome in summary.failed_outcomes:
            lines.append(
                f"- {outcome.invoice_number} [{outcome.failed_stage}] "
                f"{outcome.error_type}: {outcome.error}"
            )
        if summary.unconfirmed:
            lines.append("Submitted to D365 but not confirmed in billing (reconcile before next run):")
            for outcome in summary.unconfirmed:
                lines.append(f"- {outcome.invoice_number} -> {outcome.erp_invoice_id}")

        await self._notify(NotificationSeverity.FAILURE, "\n".join(lines), summary.to_dict())

    async def _notify(self, severity: NotificationSeverity, message: str, details: Dict[str, Any]) -> None:
        try:
            await self.notifier.notify(severity, message, details)
        except Exception:
            logger.exception(f"Failed to deliver {severity.value} notification")
