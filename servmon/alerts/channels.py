"""Notification channel implementations for alert delivery.

Provides an ABC for notification channels plus concrete implementations
for Discord, generic webhooks and email. A CircuitBreaker decorator wraps
any channel to stop hammering a downstream service that keeps failing.

Every channel reports failure by returning False; none of them raise on a
delivery problem.

Pattern: Decorator (CircuitBreaker wraps any NotificationChannel).
"""

import asyncio
import enum
import logging
import smtplib
import ssl
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from typing import Any

import httpx

from servmon.alerts.schemas import (
    CHANNEL_DISCORD,
    CHANNEL_EMAIL,
    CHANNEL_WEBHOOK,
    METRIC_LABELS,
    Alert,
)

logger = logging.getLogger(__name__)

# Discord embed colors (decimal RGB)
SEVERITY_COLORS: dict[str, int] = {
    "critical": 15158332,
    "warning": 16776960,
    "info": 3447003,
}
DEFAULT_COLOR = 10197915
RESOLVED_COLOR = 3066993

FOOTER_TEXT = "Server Monitoring System"


def format_duration(start: datetime, end: datetime) -> str:
    """Render how long an alert was open, e.g. ``45 seconds`` or ``2h 5m``."""
    seconds = max(int((end - start).total_seconds()), 0)
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{seconds // 60} minutes"
    if seconds < 86400:
        return f"{seconds // 3600}h {seconds % 3600 // 60}m"
    return f"{seconds // 86400}d {seconds % 86400 // 3600}h"


def _resolved_at(alert: Alert) -> datetime:
    return alert.resolved_at or datetime.now(timezone.utc)


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel (e.g. 'discord', 'webhook')."""

    @abstractmethod
    async def send_alert(self, alert: Alert) -> bool:
        """Deliver a newly opened alert.

        Args:
            alert: Alert to deliver.

        Returns:
            True if delivery succeeded, False otherwise.
        """

    @abstractmethod
    async def send_resolved(self, alert: Alert) -> bool:
        """Deliver a resolution notice for a previously notified alert."""


async def _post_json(
    url: str,
    payload: dict,
    *,
    channel: str,
    alert_id: int,
    headers: dict[str, str] | None = None,
    timeout: float = 10.0,
) -> bool:
    """POST a JSON payload with a short-lived client, mapping errors to False."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(url, json=payload, headers=headers or {})
            if resp.is_success:
                return True
            logger.warning(
                "%s endpoint returned %d for alert %s",
                channel, resp.status_code, alert_id,
            )
            return False
    except httpx.TimeoutException:
        logger.warning("%s endpoint timed out for alert %s", channel, alert_id)
        return False
    except Exception as e:
        logger.warning("%s delivery failed for alert %s: %s", channel, alert_id, e)
        return False


class DiscordChannel(NotificationChannel):
    """Delivers alerts to a Discord channel via an incoming webhook.

    Alerts are rendered as a single embed colored by severity; resolution
    notices are green and carry how long the alert was open.
    """

    def __init__(
        self,
        webhook_url: str,
        username: str = "Server Monitor",
        avatar_url: str = "",
        timeout: float = 10.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._username = username
        self._avatar_url = avatar_url
        self._timeout = timeout

    @property
    def name(self) -> str:
        return CHANNEL_DISCORD

    def _wrap(self, embed: dict) -> dict:
        payload: dict[str, Any] = {"embeds": [embed]}
        if self._username:
            payload["username"] = self._username
        if self._avatar_url:
            payload["avatar_url"] = self._avatar_url
        return payload

    def _format_alert(self, alert: Alert) -> dict:
        """Build the Discord webhook payload for an opened alert."""
        fields = [
            {"name": "Server", "value": alert.server_name or str(alert.server_id), "inline": True},
            {"name": "IP", "value": alert.server_ip or "-", "inline": True},
            {
                "name": "Metric",
                "value": METRIC_LABELS.get(alert.metric_type, alert.metric_type),
                "inline": True,
            },
            {"name": "Value", "value": f"{alert.metric_value:.2f}", "inline": True},
            {
                "name": "Threshold",
                "value": f"{alert.operator} {alert.threshold_value:.2f}",
                "inline": True,
            },
            {"name": "Severity", "value": alert.severity, "inline": True},
        ]
        embed = {
            "title": alert.title,
            "description": alert.message,
            "color": SEVERITY_COLORS.get(alert.severity, DEFAULT_COLOR),
            "timestamp": alert.triggered_at.isoformat(),
            "footer": {"text": FOOTER_TEXT},
            "fields": fields,
        }
        return self._wrap(embed)

    def _format_resolved(self, alert: Alert) -> dict:
        """Build the Discord webhook payload for a resolved alert."""
        resolved_at = _resolved_at(alert)
        embed = {
            "title": f"✅ RESOLVED: {alert.title}",
            "description": f"The alert has been resolved:\n{alert.message}",
            "color": RESOLVED_COLOR,
            "timestamp": resolved_at.isoformat(),
            "footer": {"text": FOOTER_TEXT},
            "fields": [
                {"name": "Server", "value": alert.server_name or str(alert.server_id), "inline": True},
                {
                    "name": "Duration",
                    "value": format_duration(alert.triggered_at, resolved_at),
                    "inline": True,
                },
            ],
        }
        return self._wrap(embed)

    async def send_alert(self, alert: Alert) -> bool:
        return await _post_json(
            self._webhook_url,
            self._format_alert(alert),
            channel=self.name,
            alert_id=alert.id,
            timeout=self._timeout,
        )

    async def send_resolved(self, alert: Alert) -> bool:
        return await _post_json(
            self._webhook_url,
            self._format_resolved(alert),
            channel=self.name,
            alert_id=alert.id,
            timeout=self._timeout,
        )


class WebhookChannel(NotificationChannel):
    """Delivers alerts as JSON POST to an arbitrary HTTP endpoint.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    When a shared secret is configured it is sent in ``X-Webhook-Secret``.
    """

    def __init__(
        self,
        url: str,
        secret: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._headers = dict(headers or {})
        if secret:
            self._headers["X-Webhook-Secret"] = secret
        self._timeout = timeout

    @property
    def name(self) -> str:
        return CHANNEL_WEBHOOK

    @property
    def url(self) -> str:
        return self._url

    def _build_payload(self, event: str, alert: Alert) -> dict:
        return {
            "event": event,
            "alert": alert.to_dict(),
            "server": {
                "id": alert.server_id,
                "hostname": alert.server_name,
                "ip": alert.server_ip,
            },
        }

    async def send_alert(self, alert: Alert) -> bool:
        return await _post_json(
            self._url,
            self._build_payload("alert_opened", alert),
            channel=self.name,
            alert_id=alert.id,
            headers=self._headers,
            timeout=self._timeout,
        )

    async def send_resolved(self, alert: Alert) -> bool:
        return await _post_json(
            self._url,
            self._build_payload("alert_resolved", alert),
            channel=self.name,
            alert_id=alert.id,
            headers=self._headers,
            timeout=self._timeout,
        )


class EmailChannel(NotificationChannel):
    """Delivers alerts by SMTP email.

    ``smtplib`` is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        from_address: str,
        to_addresses: list[str],
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_name: str = "Server Monitor",
        timeout: float = 10.0,
    ) -> None:
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._from_address = from_address
        self._to_addresses = to_addresses
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._from_name = from_name
        self._timeout = timeout

    @property
    def name(self) -> str:
        return CHANNEL_EMAIL

    def _build_message(self, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self._from_name, self._from_address))
        msg["To"] = ", ".join(self._to_addresses)
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(body, "plain", "utf-8"))
        return msg

    def _format_alert(self, alert: Alert) -> MIMEMultipart:
        subject = f"[{alert.severity.upper()}] {alert.title}"
        body = "\n".join([
            alert.message,
            "",
            f"Server: {alert.server_name or alert.server_id} ({alert.server_ip or '-'})",
            f"Metric: {METRIC_LABELS.get(alert.metric_type, alert.metric_type)}",
            f"Value: {alert.metric_value:.2f}",
            f"Threshold: {alert.operator} {alert.threshold_value:.2f}",
            f"Triggered at: {alert.triggered_at.isoformat()}",
        ])
        return self._build_message(subject, body)

    def _format_resolved(self, alert: Alert) -> MIMEMultipart:
        resolved_at = _resolved_at(alert)
        subject = f"[RESOLVED] {alert.title}"
        body = "\n".join([
            alert.message,
            "",
            f"Server: {alert.server_name or alert.server_id}",
            f"Duration: {format_duration(alert.triggered_at, resolved_at)}",
            f"Resolved at: {resolved_at.isoformat()}",
        ])
        return self._build_message(subject, body)

    def _send(self, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self._timeout) as server:
            server.ehlo()
            if self._use_tls:
                server.starttls(context=context)
                server.ehlo()
            if self._username:
                server.login(self._username, self._password)
            server.send_message(msg)

    async def _deliver(self, msg: MIMEMultipart, alert_id: int) -> bool:
        if not self._to_addresses:
            logger.warning("Email channel has no recipients, skipping alert %s", alert_id)
            return False
        try:
            await asyncio.to_thread(self._send, msg)
            return True
        except smtplib.SMTPException as e:
            logger.warning("SMTP error for alert %s: %s", alert_id, e)
            return False
        except OSError as e:
            logger.warning("SMTP connection failed for alert %s: %s", alert_id, e)
            return False

    async def send_alert(self, alert: Alert) -> bool:
        return await self._deliver(self._format_alert(alert), alert.id)

    async def send_resolved(self, alert: Alert) -> bool:
        return await self._deliver(self._format_resolved(alert), alert.id)


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(NotificationChannel):
    """Wraps a NotificationChannel with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All requests pass through. Consecutive failures tracked.
    - OPEN: Requests rejected immediately. After recovery_timeout, moves
      to HALF_OPEN.
    - HALF_OPEN: Single trial send allowed. Success → CLOSED, failure → OPEN.

    Alert and resolution sends share one failure count.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._channel = channel
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    def record_failure(self) -> None:
        """Count a failure observed outside the wrapped call (e.g. a timeout)."""
        self._consecutive_failures += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (trial send failed)",
                self.name,
            )
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self._failure_threshold
        ):
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self.name, self._consecutive_failures,
            )

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info(
                "Circuit breaker %s: HALF_OPEN → CLOSED (trial send succeeded)",
                self.name,
            )
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    async def _call(
        self,
        send: Callable[[Alert], Awaitable[bool]],
        alert: Alert,
    ) -> bool:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit breaker %s: OPEN → HALF_OPEN (recovery window elapsed)",
                    self.name,
                )
            else:
                logger.debug(
                    "Circuit breaker %s: OPEN, rejecting alert %s",
                    self.name, alert.id,
                )
                return False

        success = await send(alert)

        if success:
            self._record_success()
        else:
            self.record_failure()

        return success

    async def send_alert(self, alert: Alert) -> bool:
        return await self._call(self._channel.send_alert, alert)

    async def send_resolved(self, alert: Alert) -> bool:
        return await self._call(self._channel.send_resolved, alert)
