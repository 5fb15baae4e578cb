"""
Invoice Sync Engine Tests

Behavior of one run end to end against an in-memory billing system and a
scripted ERP gateway:
1. Happy path and the two-invoice tax group scenario
2. Partial failure isolation (mapping, submission, write-back)
3. Bounded retry of transient submit failures only
4. Fatal abort when invoices cannot be fetched
5. Escalation threshold (none / exactly one FAILURE / CRITICAL)
6. No reprocessing across runs, duplicates within a run
7. Bounded concurrency and graceful cancellation
"""

import asyncio
import json
import logging
from datetime import date

import pytest

from conftest import (
    FakeERPGateway,
    JAN_END,
    JAN_START,
    RecordingNotifier,
    make_invoice,
    rejected,
    transient,
)
from connectors.billing.component import ComponentBillingProvider
from connectors.billing.memory import InMemoryBillingProvider
from core.errors import BillingSystemError, FatalRunError, ValidationError
from core.models.invoice import SyncStatus
from invoice_sync.escalation import NotificationSeverity
from test_billing_providers import FakeComponent


class StubBilling(InMemoryBillingProvider):
    """In-memory billing with fetch/write-back failure injection."""

    def __init__(self, invoices=None, fetch_error=None, fetch_delay=0.0, fail_write_back=()):
        super().__init__()
        self.fetch_list = list(invoices or [])
        self.fetch_error = fetch_error
        self.fetch_delay = fetch_delay
        self.fail_write_back = set(fail_write_back)
        for invoice in self.fetch_list:
            self.invoices[invoice.invoice_number or ""] = invoice

    async def fetch_unprocessed_invoices(self, start_date, end_date):
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fetch_error:
            raise self.fetch_error
        return [i for i in self.fetch_list if not self.invoices[i.invoice_number or ""].is_processed]

    async def write_back_reference(self, invoice_number, erp_reference):
        if invoice_number in self.fail_write_back:
            raise BillingSystemError("Billing system error: record locked")
        await super().write_back_reference(invoice_number, erp_reference)


class TestHappyPath:

    def test_all_invoices_confirmed(self, make_engine, billing, erp, notifier):
        summary = asyncio.run(make_engine().run(JAN_START, JAN_END))

        assert summary.succeeded_count == 3
        assert summary.failed_count == 0
        assert summary.is_finalized
        assert billing.write_backs == [
            ("INV-001", "D365-INV-001"),
            ("INV-002", "D365-INV-002"),
            ("INV-003", "D365-INV-003"),
        ]
        assert notifier.notifications == []

    def test_two_invoice_scenario_tax_groups(self, make_engine, erp):
        billing = InMemoryBillingProvider([
            make_invoice("INV-1", CustomerCode="CUST001", LineItems=[{"ProductCode": "P1", "TaxRate": 5}]),
            make_invoice("INV-2", CustomerCode="CUST002", LineItems=[{"ProductCode": "P2", "TaxRate": 11}]),
        ])

        summary = asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert (summary.succeeded_count, summary.failed_count) == (2, 0)
        groups = {t.external_invoice_number: t.invoice_lines[0].tax_group for t in erp.submitted}
        assert groups == {"INV-1": "GST5", "INV-2": "STANDARD"}
        assert [t.customer_id for t in erp.submitted] == ["CUST001", "CUST002"]

    def test_empty_fetch(self, make_engine, erp, notifier, caplog):
        billing = InMemoryBillingProvider()

        with caplog.at_level(logging.INFO):
            summary = asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert (summary.succeeded_count, summary.failed_count) == (0, 0)
        assert summary.is_finalized
        assert erp.submitted == []
        assert notifier.notifications == []
        assert "No invoices to process" in caplog.text

    def test_only_window_invoices_fetched(self, make_engine, erp):
        billing = InMemoryBillingProvider([
            make_invoice("INV-DEC", invoice_date="2023-12-31"),
            make_invoice("INV-JAN", invoice_date="2024-01-31"),
            make_invoice("INV-FEB", invoice_date="2024-02-01"),
        ])

        summary = asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert [o.invoice_number for o in summary.outcomes] == ["INV-JAN"]

    def test_start_after_end_rejected(self, make_engine, erp):
        with pytest.raises(ValidationError):
            asyncio.run(make_engine().run(JAN_END, JAN_START))
        assert erp.submitted == []


class TestFailureIsolation:

    def test_rejected_invoice_does_not_stop_run(self, make_engine, billing, notifier):
        erp = FakeERPGateway({"INV-002": [rejected()]})

        summary = asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert summary.succeeded_count == 2
        assert summary.failed_count == 1
        failed = summary.failed_outcomes[0]
        assert failed.invoice_number == "INV-002"
        assert failed.error_type == "SubmissionError"
        assert failed.failed_stage == "submit"
        assert [n for n, _ in billing.write_backs] == ["INV-001", "INV-003"]

    def test_mapping_failure_is_not_submitted(self, make_engine, erp):
        billing = InMemoryBillingProvider([
            make_invoice("INV-001"),
            make_invoice("INV-002", CustomerCode=None),
            make_invoice("INV-003"),
        ])

        summary = asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert summary.succeeded_count == 2
        failed = summary.failed_outcomes[0]
        assert failed.invoice_number == "INV-002"
        assert failed.error_type == "MappingError"
        assert failed.failed_stage == "map"
        assert erp.attempts_for("INV-002") == 0

    def test_write_back_failure_is_reconciliation_error(self, make_engine, erp, notifier):
        billing = StubBilling(
            [make_invoice("INV-001"), make_invoice("INV-002")],
            fail_write_back={"INV-002"},
        )

        summary = asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert summary.succeeded_count == 1
        failed = summary.failed_outcomes[0]
        assert failed.error_type == "ReconciliationError"
        assert failed.erp_invoice_id == "D365-INV-002"
        assert failed.failed_stage == "write_back"
        assert [o.invoice_number for o in summary.unconfirmed] == ["INV-002"]
        assert erp.attempts_for("INV-002") == 1

        severity, message, details = notifier.notifications[0]
        assert "INV-002 -> D365-INV-002" in message
        assert details["unconfirmed"] == [{"invoice_number": "INV-002", "erp_invoice_id": "D365-INV-002"}]

    def test_write_back_timeout_is_reconciliation_error(self, make_engine, erp):
        class SlowWriteBack(StubBilling):
            async def write_back_reference(self, invoice_number, erp_reference):
                if invoice_number == "INV-002":
                    await asyncio.sleep(1)
                await super().write_back_reference(invoice_number, erp_reference)

        billing = SlowWriteBack([make_invoice("INV-001"), make_invoice("INV-002")])

        summary = asyncio.run(make_engine(billing=billing, request_timeout=0.05).run(JAN_START, JAN_END))

        assert summary.succeeded_count == 1
        failed = summary.failed_outcomes[0]
        assert failed.invoice_number == "INV-002"
        assert failed.status == SyncStatus.FAILED
        assert failed.error_type == "ReconciliationError"
        assert failed.erp_invoice_id == "D365-INV-002"
        assert failed.failed_stage == "write_back"
        assert "timed out" in failed.error
        assert [o.invoice_number for o in summary.unconfirmed] == ["INV-002"]
        assert erp.attempts_for("INV-002") == 1

    def test_invalid_billing_record_fails_alone(self, make_engine, erp):
        payload = json.dumps([
            {"InvoiceNumber": "INV-1", "CustomerCode": "C1", "InvoiceDate": "2024-01-02",
             "LineItems": [{"ProductCode": "P1", "Quantity": 1, "UnitPrice": 10}]},
            {"InvoiceNumber": "INV-2", "CustomerCode": "C2", "InvoiceDate": "31-31-2024"},
            {"InvoiceNumber": "INV-3", "CustomerCode": "C3", "InvoiceDate": "2024-01-03"},
        ])
        billing = ComponentBillingProvider(lambda: FakeComponent(invoices_json=payload), config="{}")

        summary = asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert summary.succeeded_count == 2
        assert summary.failed_count == 1
        failed = summary.failed_outcomes[0]
        assert failed.invoice_number == "INV-2"
        assert failed.error_type == "MappingError"
        assert failed.failed_stage == "map"
        assert "Cannot parse date: 31-31-2024" in failed.error
        assert [t.external_invoice_number for t in erp.submitted] == ["INV-1", "INV-3"]

    def test_unexpected_gateway_error_becomes_failed_outcome(self, make_engine):
        erp = FakeERPGateway({"INV-001": [KeyError("boom")]})

        summary = asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert summary.failed_count == 1
        assert summary.failed_outcomes[0].error_type == "KeyError"
        assert summary.succeeded_count == 2


class TestRetry:

    def test_transient_failure_retried_then_succeeds(self, make_engine, billing):
        erp = FakeERPGateway({"INV-001": [transient(), transient(), "D365-42"]})

        summary = asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert summary.failed_count == 0
        assert erp.attempts_for("INV-001") == 3
        assert ("INV-001", "D365-42") in billing.write_backs

    def test_transient_failure_bounded(self, make_engine):
        erp = FakeERPGateway({"INV-001": [transient()]})

        summary = asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert summary.failed_count == 1
        assert erp.attempts_for("INV-001") == 4  # first attempt + 3 retries

    def test_non_retryable_failure_not_retried(self, make_engine):
        erp = FakeERPGateway({"INV-001": [rejected()]})

        asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert erp.attempts_for("INV-001") == 1

    def test_submit_timeout_is_transient(self, make_engine, billing):
        from connectors.erp_base import RetryConfig

        erp = FakeERPGateway(delay=1.0)
        engine = make_engine(erp=erp, request_timeout=0.01, retry_config=RetryConfig(max_retries=1))
        billing.invoices.pop("INV-002")
        billing.invoices.pop("INV-003")

        summary = asyncio.run(engine.run(JAN_START, JAN_END))

        failed = summary.failed_outcomes[0]
        assert failed.error_type == "SubmissionError"
        assert "Timed out" in failed.error
        assert erp.attempts_for("INV-001") == 2
        assert billing.write_backs == []


class TestFatalAbort:

    def test_fetch_failure_aborts_run(self, make_engine, erp, notifier):
        billing = StubBilling(fetch_error=BillingSystemError("Billing system error: login failed"))

        with pytest.raises(FatalRunError) as exc_info:
            asyncio.run(make_engine(billing=billing).run(JAN_START, JAN_END))

        assert "login failed" in str(exc_info.value)
        assert not exc_info.value.transient
        assert erp.submitted == []
        assert len(notifier.notifications) == 1
        severity, _, details = notifier.notifications[0]
        assert severity == NotificationSeverity.CRITICAL
        assert details["succeeded"] == 0 and details["failed"] == 0

    def test_fetch_timeout_is_transient_fatal(self, make_engine, erp, notifier):
        billing = StubBilling(fetch_delay=1.0)

        with pytest.raises(FatalRunError) as exc_info:
            asyncio.run(make_engine(billing=billing, fetch_timeout=0.01).run(JAN_START, JAN_END))

        assert exc_info.value.transient
        assert notifier.notifications[0][0] == NotificationSeverity.CRITICAL


class TestEscalation:

    def test_exactly_one_failure_notification(self, make_engine, notifier):
        erp = FakeERPGateway({"INV-001": [rejected()], "INV-003": [rejected("422 Unprocessable")]})

        summary = asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert summary.failed_count == 2
        assert len(notifier.notifications) == 1
        severity, message, _ = notifier.notifications[0]
        assert severity == NotificationSeverity.FAILURE
        assert "INV-001" in message and "INV-003" in message

    def test_notification_failure_does_not_change_result(self, make_engine):
        erp = FakeERPGateway({"INV-001": [rejected()]})
        notifier = RecordingNotifier(fail=True)

        summary = asyncio.run(make_engine(erp=erp, notifier=notifier).run(JAN_START, JAN_END))

        assert len(notifier.notifications) == 1
        assert (summary.succeeded_count, summary.failed_count) == (2, 1)


class TestIdempotency:

    def test_second_run_does_not_resubmit(self, make_engine, billing, erp):
        engine = make_engine()
        asyncio.run(engine.run(JAN_START, JAN_END))
        second = asyncio.run(engine.run(JAN_START, JAN_END))

        assert second.outcomes == ()
        assert len(erp.submitted) == 3
        assert all(invoice.is_processed for invoice in billing.invoices.values())

    def test_failed_invoice_retried_next_run(self, make_engine, billing):
        erp = FakeERPGateway({"INV-002": [rejected(), "D365-LATE"]})
        engine = make_engine(erp=erp)

        first = asyncio.run(engine.run(JAN_START, JAN_END))
        second = asyncio.run(engine.run(JAN_START, JAN_END))

        assert first.failed_count == 1
        assert [o.invoice_number for o in second.outcomes] == ["INV-002"]
        assert second.outcomes[0].erp_invoice_id == "D365-LATE"

    def test_duplicate_number_in_one_fetch(self, make_engine, erp):
        billing = StubBilling([make_invoice("INV-001"), make_invoice("INV-001")])

        summary = asyncio.run(make_engine(billing=billing, max_concurrency=2).run(JAN_START, JAN_END))

        assert erp.attempts_for("INV-001") == 1
        assert summary.succeeded_count == 1
        assert summary.failed_count == 1
        assert summary.failed_outcomes[0].error_type == "MappingError"


class TestConcurrency:

    def test_sequential_by_default(self, make_engine, billing):
        erp = FakeERPGateway(delay=0.01)

        asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END))

        assert erp.max_in_flight == 1
        assert [t.external_invoice_number for t in erp.submitted] == ["INV-001", "INV-002", "INV-003"]

    def test_bounded_worker_pool(self, make_engine):
        billing = InMemoryBillingProvider([make_invoice(f"INV-{i:03d}") for i in range(10)])
        erp = FakeERPGateway(delay=0.01)

        summary = asyncio.run(make_engine(billing=billing, erp=erp, max_concurrency=3).run(JAN_START, JAN_END))

        assert summary.succeeded_count == 10
        assert 1 < erp.max_in_flight <= 3

    def test_cancellation_stops_dispatch(self, make_engine, billing):
        cancel_event = asyncio.Event()

        class CancellingERP(FakeERPGateway):
            async def submit_invoice(self, invoice):
                cancel_event.set()
                return await super().submit_invoice(invoice)

        erp = CancellingERP()
        summary = asyncio.run(make_engine(erp=erp).run(JAN_START, JAN_END, cancel_event))

        assert summary.cancelled
        assert [o.invoice_number for o in summary.outcomes] == ["INV-001"]
        assert summary.outcomes[0].status == SyncStatus.SUCCEEDED
        assert summary.not_attempted == ["INV-002", "INV-003"]
        assert summary.to_dict()["not_attempted"] == ["INV-002", "INV-003"]
