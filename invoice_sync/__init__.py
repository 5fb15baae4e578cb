"""Invoice synchronization: billing system -> D365.

The engine fetches unprocessed invoices, maps and submits each one, writes
the ERP reference back, and reports a RunSummary. Failures of single
invoices never abort the run; a failed fetch does.
"""

from invoice_sync.engine import InvoiceState, InvoiceSyncEngine, StepResult
from invoice_sync.escalation import (
    LoggingNotifier,
    NotificationSeverity,
    Notifier,
    WebhookNotifier,
    create_notifier,
)
from invoice_sync.service import (
    EngineFactory,
    engine_factory_from_settings,
    open_invoice_sync_engine,
)
from invoice_sync.summary import RunSummary

__all__ = [
    "InvoiceState",
    "InvoiceSyncEngine",
    "StepResult",
    "LoggingNotifier",
    "NotificationSeverity",
    "Notifier",
    "WebhookNotifier",
    "create_notifier",
    "EngineFactory",
    "engine_factory_from_settings",
    "open_invoice_sync_engine",
    "RunSummary",
]
