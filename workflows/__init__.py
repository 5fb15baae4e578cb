"""Workflow definitions module."""

from workflows.invoice_sync_workflow import (
    InvoiceSyncWorkflow,
    InvoiceSyncWorkflowInput,
    compute_sync_window,
)

__all__ = ["InvoiceSyncWorkflow", "InvoiceSyncWorkflowInput", "compute_sync_window"]
