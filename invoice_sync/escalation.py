"""Escalation of failed and aborted runs.

A run with at least one failed invoice raises exactly one FAILURE
notification; a run that could not fetch invoices raises a CRITICAL one.
Delivery failures are the caller's to log; they never change a run result.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp

from core.config import IntegrationSettings
from core.errors import NotificationError
from core.observability.logging import get_logger


logger = get_logger(__name__)


class NotificationSeverity(str, Enum):
    FAILURE = "FAILURE"
    CRITICAL = "CRITICAL"


class Notifier(ABC):
    """Destination for run escalations."""

    @abstractmethod
    async def notify(
        self,
        severity: NotificationSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Deliver one escalation.

        Raises:
            NotificationError: If the notification could not be delivered
        """
        pass


class LoggingNotifier(Notifier):
    """Writes escalations to the log (default when no webhook is configured)."""

    async def notify(self, severity, message, details=None) -> None:
        log = logger.critical if severity == NotificationSeverity.CRITICAL else logger.error
        log(f"[{severity.value}] {message}", extra_fields={"details": details or {}})


class WebhookNotifier(Notifier):
    """POSTs escalations as JSON to a webhook (Teams, Slack relay, alerting)."""

    def __init__(self, url: str, timeout_seconds: float = 30.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def notify(self, severity, message, details=None) -> None:
        payload = {
            "severity": severity.value,
            "message": message,
            "details": details or {},
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status >= 300:
                        body = await response.text()
                        raise NotificationError(
                            f"Webhook returned {response.status}: {body}"
                        )
        except aiohttp.ClientError as e:
            raise NotificationError(f"Webhook delivery failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise NotificationError("Webhook delivery timed out") from e


def create_notifier(settings: IntegrationSettings) -> Notifier:
    """Webhook notifier when NOTIFICATION_WEBHOOK_URL is set, logging otherwise."""
    if settings.notification_webhook_url:
        return WebhookNotifier(
            settings.notification_webhook_url,
            timeout_seconds=settings.request_timeout_seconds,
        )
    return LoggingNotifier()
