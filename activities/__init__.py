"""Activity definitions module."""

from activities.sync import (
    InvoiceSyncActivities,
    SyncInvoicesInput,
)

__all__ = [
    "InvoiceSyncActivities",
    "SyncInvoicesInput",
]
