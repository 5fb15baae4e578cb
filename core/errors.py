"""Error taxonomy for the billing <-> ERP integration.

Per-invoice errors (MappingError, SubmissionError, ReconciliationError) are
caught by the sync engine and turned into FAILED outcomes. Run-level errors
(FatalRunError, ConfigurationError) propagate to whichever trigger started
the run.
"""

from typing import Optional


class IntegrationError(Exception):
    """Base class for all integration errors."""
    pass


class ConfigurationError(IntegrationError):
    """Settings are missing or invalid."""
    pass


class ValidationError(IntegrationError):
    """Input rejected before any work started (never retried)."""
    pass


class MappingError(IntegrationError):
    """Source invoice could not be transformed into the ERP shape."""

    def __init__(self, message: str, invoice_number: Optional[str] = None):
        super().__init__(message)
        self.invoice_number = invoice_number


class SubmissionError(IntegrationError):
    """The ERP rejected the invoice or could not be reached.

    ``retryable`` marks transient variants (network, timeouts, 429, 5xx) the
    engine may retry; everything else is terminal for that invoice.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: str = "",
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.retryable = retryable


class AuthenticationError(SubmissionError):
    """Token acquisition failed or the ERP kept rejecting a fresh token."""
    pass


class BillingSystemError(IntegrationError):
    """The billing system reported a failure."""
    pass


class ReconciliationError(IntegrationError):
    """The ERP accepted the invoice but the write-back failed.

    The billing system still shows the invoice as unprocessed, so the next run
    would submit it again unless an operator reconciles it.
    """

    def __init__(self, message: str, invoice_number: str, erp_invoice_id: str):
        super().__init__(message)
        self.invoice_number = invoice_number
        self.erp_invoice_id = erp_invoice_id


class FatalRunError(IntegrationError):
    """The run aborted before any invoice was processed."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class NotificationError(IntegrationError):
    """An escalation could not be delivered."""
    pass
