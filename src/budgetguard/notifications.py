"""Best-effort notification delivery (Slack and PagerDuty).

Notifications accompany every rollback decision and promotion outcome.
Delivery is fire-and-forget from the caller's point of view: failures are
retried with exponential backoff, then logged, and never raised.

Channels:
    slack: Incoming webhook with a colour-coded attachment
    pagerduty: Events API v2 ``trigger`` event

Example:
    >>> notifier = Notifier.from_config(config.notifications)
    >>> notifier.send("Error budget 85% consumed", "critical", service="checkout")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Collection
from typing import Any

import httpx
import structlog
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict, Field

from budgetguard.errors import ConfigurationError
from budgetguard.schemas.config import NotificationConfig, WebhookConfig
from budgetguard.telemetry import sanitize_error_message

# Exponential backoff configuration
BACKOFF_BASE_SECONDS = 1.0
"""Base delay for exponential backoff (doubles each retry)."""

SLACK_COLORS = {"critical": "danger", "warning": "warning", "info": "good"}
ALERT_TITLE = "Error Budget Rollback Alert"

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class NotificationResult(BaseModel):
    """Result of delivering one message to one channel.

    Attributes:
        success: Whether the channel accepted the message.
        channel: Channel kind (slack, pagerduty).
        status_code: Last HTTP status code received.
        error: Error message if delivery failed.
        attempts: Number of delivery attempts made.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    channel: str
    status_code: int | None = None
    error: str | None = None
    attempts: int = Field(default=1, ge=1)


def build_payload(
    channel: WebhookConfig,
    message: str,
    severity: str,
    context: dict[str, Any],
    source: str,
) -> dict[str, Any]:
    """Format a message for a channel."""
    if channel.kind == "pagerduty":
        routing_key = channel.routing_key.get_secret_value() if channel.routing_key else ""
        return {
            "routing_key": routing_key,
            "event_action": "trigger",
            "payload": {
                "summary": message,
                "severity": severity if severity in ("critical", "warning", "info") else "error",
                "source": source,
                "custom_details": {k: v for k, v in context.items() if v is not None},
            },
        }

    attachment: dict[str, Any] = {
        "color": SLACK_COLORS.get(severity, "good"),
        "title": ALERT_TITLE,
        "text": message,
        "footer": source,
        "ts": int(time.time()),
    }
    fields = [
        {"title": key, "value": str(value), "short": True}
        for key, value in context.items()
        if value is not None
    ]
    if fields:
        attachment["fields"] = fields
    return {"attachments": [attachment]}


class WebhookNotifier:
    """Async webhook delivery with retry.

    Server errors (5xx), timeouts and connection errors are retried with
    exponential backoff; client errors (4xx) are not.

    Args:
        config: Notification channels.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        backoff_base: Base backoff delay in seconds.
    """

    def __init__(
        self,
        config: NotificationConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = BACKOFF_BASE_SECONDS,
    ) -> None:
        self.config = config
        self._transport = transport
        self._backoff_base = backoff_base

    async def notify(
        self,
        channel: WebhookConfig,
        message: str,
        severity: str,
        context: dict[str, Any],
    ) -> NotificationResult:
        """Deliver one message to one channel."""
        payload = build_payload(channel, message, severity, context, self.config.source)
        max_attempts = 1 + channel.retry_count
        last_status_code: int | None = None
        last_error: str | None = None

        with tracer.start_as_current_span("budgetguard.notify") as span:
            span.set_attribute("budgetguard.notify.channel", channel.kind)
            span.set_attribute("budgetguard.notify.severity", severity)

            try:
                url = channel.endpoint
            except ConfigurationError as e:
                logger.error("notification_channel_invalid", channel=channel.kind, error=str(e))
                return NotificationResult(success=False, channel=channel.kind, error=str(e))

            async with httpx.AsyncClient(
                timeout=channel.timeout_seconds, transport=self._transport
            ) as client:
                for attempt in range(1, max_attempts + 1):
                    try:
                        response = await client.post(url, json=payload)
                        last_status_code = response.status_code

                        if response.status_code < 400:
                            span.set_attribute("budgetguard.notify.attempts", attempt)
                            logger.info(
                                "notification_sent",
                                channel=channel.kind,
                                severity=severity,
                                status_code=response.status_code,
                                attempts=attempt,
                            )
                            return NotificationResult(
                                success=True,
                                channel=channel.kind,
                                status_code=response.status_code,
                                attempts=attempt,
                            )

                        if response.status_code < 500:
                            # Client error - don't retry
                            last_error = f"Client error: {response.status_code}"
                            break
                        last_error = f"Server error: {response.status_code}"

                    except httpx.TimeoutException:
                        last_error = "Request timed out"
                    except httpx.RequestError as e:
                        last_error = sanitize_error_message(str(e))

                    if attempt < max_attempts:
                        backoff_delay = self._backoff_base * (2 ** (attempt - 1))
                        logger.warning(
                            "notification_retry",
                            channel=channel.kind,
                            error=last_error,
                            attempt=attempt,
                            max_attempts=max_attempts,
                            backoff_seconds=backoff_delay,
                        )
                        await asyncio.sleep(backoff_delay)

            span.set_attribute("budgetguard.notify.success", False)
            logger.error(
                "notification_failed",
                channel=channel.kind,
                severity=severity,
                status_code=last_status_code,
                error=last_error,
                attempts=attempt,
            )
            return NotificationResult(
                success=False,
                channel=channel.kind,
                status_code=last_status_code,
                error=last_error,
                attempts=attempt,
            )

    async def notify_all(
        self,
        message: str,
        severity: str,
        context: dict[str, Any],
        kinds: Collection[str] | None = None,
    ) -> list[NotificationResult]:
        """Deliver to every channel accepting ``severity``.

        A failing channel does not stop delivery to the others.

        Args:
            message: Human-readable message.
            severity: info, warning or critical.
            context: Extra fields for the payload.
            kinds: Restrict delivery to these channel kinds.
        """
        results: list[NotificationResult] = []
        for channel in self.config.webhooks:
            if kinds is not None and channel.kind not in kinds:
                continue
            if not channel.accepts(severity):
                logger.debug(
                    "notification_skipped",
                    channel=channel.kind,
                    severity=severity,
                    reason="below_min_severity",
                )
                continue
            results.append(await self.notify(channel, message, severity, context))
        return results


class Notifier:
    """Synchronous, never-raising facade over WebhookNotifier.

    Args:
        config: Notification channels.
        transport: Optional httpx transport for tests.
        backoff_base: Base backoff delay in seconds.
    """

    def __init__(
        self,
        config: NotificationConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = BACKOFF_BASE_SECONDS,
    ) -> None:
        self.config = config or NotificationConfig()
        self._webhooks = WebhookNotifier(
            self.config, transport=transport, backoff_base=backoff_base
        )

    @classmethod
    def from_config(cls, config: NotificationConfig) -> Notifier:
        return cls(config)

    def send(
        self,
        message: str,
        severity: str = "info",
        *,
        kinds: Collection[str] | None = None,
        **context: Any,
    ) -> list[NotificationResult]:
        """Send a message to all matching channels.

        Never raises: delivery problems are logged and returned.

        Args:
            message: Human-readable message.
            severity: info, warning or critical.
            kinds: Restrict delivery to these channel kinds (e.g. chat only).
            **context: Extra fields (service, environment, tier, ...).

        Returns:
            One NotificationResult per channel attempted.
        """
        if not self.config.webhooks:
            logger.debug("notification_not_configured", severity=severity, message=message)
            return []
        try:
            return asyncio.run(self._webhooks.notify_all(message, severity, context, kinds))
        except Exception as e:
            logger.error(
                "notification_delivery_error",
                severity=severity,
                error=sanitize_error_message(str(e)),
            )
            return []


__all__ = [
    "BACKOFF_BASE_SECONDS",
    "NotificationResult",
    "Notifier",
    "WebhookNotifier",
    "build_payload",
]
