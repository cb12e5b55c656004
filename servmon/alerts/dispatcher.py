"""Notification dispatcher fanning alerts out to notification channels.

Each channel send is bounded by a timeout and wrapped in a circuit breaker.
A failing, slow or raising channel never affects the other channels and
never propagates to the alert lifecycle: the caller only learns which
channels accepted the notification.

Pattern: Orchestrator (like AlertService), delegates to stateless channels.
"""

import asyncio
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from servmon.alerts.channels import (
    CircuitBreaker,
    DiscordChannel,
    EmailChannel,
    NotificationChannel,
    WebhookChannel,
)
from servmon.alerts.schemas import CHANNEL_WEBHOOK, Alert, Threshold
from servmon.observability.metrics import AlertingMetrics

logger = logging.getLogger(__name__)


class NotificationConfig(BaseSettings):
    """Configuration for notification channels and dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Upper bound on a single channel send",
    )

    # Discord
    discord_enabled: bool = Field(default=False)
    discord_webhook_url: str = Field(default="")
    discord_bot_name: str = Field(default="Server Monitor")
    discord_avatar_url: str = Field(default="")

    # Generic webhook
    webhook_enabled: bool = Field(default=False)
    webhook_url: str = Field(
        default="",
        description="Default endpoint; thresholds may override it",
    )
    webhook_secret: str = Field(
        default="",
        description="Shared secret sent as X-Webhook-Secret",
    )

    # Email
    email_enabled: bool = Field(default=False)
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: str = Field(default="")
    smtp_password: str = Field(default="")
    smtp_use_tls: bool = Field(default=True)
    email_from: str = Field(default="alerts@servmon.local")
    email_to: str = Field(
        default="",
        description="Comma-separated recipient addresses",
    )

    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=5.0,
        description="Seconds an open circuit waits before allowing a trial send",
    )

    @property
    def email_recipients(self) -> list[str]:
        return [addr.strip() for addr in self.email_to.split(",") if addr.strip()]


def build_channels(config: NotificationConfig) -> list[NotificationChannel]:
    """Instantiate the channels enabled in ``config``, in dispatch order."""
    channels: list[NotificationChannel] = []
    timeout = config.send_timeout_seconds

    if config.discord_enabled and config.discord_webhook_url:
        channels.append(
            DiscordChannel(
                webhook_url=config.discord_webhook_url,
                username=config.discord_bot_name,
                avatar_url=config.discord_avatar_url,
                timeout=timeout,
            )
        )

    if config.webhook_enabled and config.webhook_url:
        channels.append(
            WebhookChannel(
                url=config.webhook_url,
                secret=config.webhook_secret,
                timeout=timeout,
            )
        )

    if config.email_enabled and config.email_recipients:
        channels.append(
            EmailChannel(
                smtp_host=config.smtp_host,
                smtp_port=config.smtp_port,
                from_address=config.email_from,
                to_addresses=config.email_recipients,
                username=config.smtp_user,
                password=config.smtp_password,
                use_tls=config.smtp_use_tls,
                timeout=timeout,
            )
        )

    logger.info(
        "Notification channels configured: %s",
        [ch.name for ch in channels] or "none",
    )
    return channels


class NotificationDispatcher:
    """Delivers alert and resolution notices across notification channels.

    Wraps each channel in a CircuitBreaker. Channels are sent to
    concurrently, so one notification takes at most one send timeout no
    matter how many channels hang; results keep registration order.
    There are no retries: a channel that fails is simply left out of the
    result.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        config: NotificationConfig | None = None,
        metrics: AlertingMetrics | None = None,
    ) -> None:
        self._config = config or NotificationConfig()
        self._metrics = metrics

        # Wrap each channel in a circuit breaker
        self._channels: list[CircuitBreaker] = []
        for ch in channels:
            if isinstance(ch, CircuitBreaker):
                self._channels.append(ch)
            else:
                self._channels.append(
                    CircuitBreaker(
                        channel=ch,
                        failure_threshold=self._config.circuit_breaker_threshold,
                        recovery_timeout=self._config.circuit_breaker_recovery_seconds,
                    )
                )

    @classmethod
    def from_config(
        cls,
        config: NotificationConfig | None = None,
        metrics: AlertingMetrics | None = None,
    ) -> "NotificationDispatcher":
        config = config or NotificationConfig()
        return cls(build_channels(config), config=config, metrics=metrics)

    @property
    def channels(self) -> list[CircuitBreaker]:
        """Access wrapped channels (for inspection/testing)."""
        return self._channels

    def _webhook_override(self, url: str) -> WebhookChannel:
        return WebhookChannel(
            url=url,
            secret=self._config.webhook_secret,
            timeout=self._config.send_timeout_seconds,
        )

    def _targets(
        self,
        names: set[str],
        threshold: Threshold | None,
    ) -> list[NotificationChannel]:
        """Channels named in ``names``, honoring a per-threshold webhook URL."""
        override_url = threshold.webhook_url if threshold is not None else ""
        targets: list[NotificationChannel] = []
        has_webhook = False

        for channel in self._channels:
            if channel.name not in names:
                continue
            if channel.name == CHANNEL_WEBHOOK:
                has_webhook = True
                if override_url:
                    targets.append(self._webhook_override(override_url))
                    continue
            targets.append(channel)

        # A threshold can point at its own endpoint even with no default webhook
        if CHANNEL_WEBHOOK in names and override_url and not has_webhook:
            targets.append(self._webhook_override(override_url))

        return targets

    async def notify_alert(self, alert: Alert, threshold: Threshold) -> list[str]:
        """Send an opened alert to the channels enabled on ``threshold``.

        Returns:
            Names of the channels that accepted the alert, in dispatch order.
        """
        targets = self._targets(threshold.enabled_channels, threshold)
        if not targets:
            return []

        delivered = await self._fan_out(targets, "alert", alert)

        self._record_delivery(alert, "alert", targets, delivered)
        return delivered

    async def notify_resolved(
        self,
        alert: Alert,
        threshold: Threshold | None = None,
    ) -> list[str]:
        """Send a resolution notice on the channels the alert was delivered to.

        Alerts whose opening notification reached no channel get no
        resolution notice.

        Returns:
            Names of the channels that accepted the notice.
        """
        if not alert.notify_channels:
            return []

        targets = self._targets(set(alert.notify_channels), threshold)
        delivered = await self._fan_out(targets, "resolved", alert)

        self._record_delivery(alert, "resolved", targets, delivered)
        return delivered

    async def _fan_out(
        self,
        targets: list[NotificationChannel],
        kind: str,
        alert: Alert,
    ) -> list[str]:
        """Send to every target at once; names of the accepting channels."""
        outcomes = await asyncio.gather(
            *(self._send(channel, kind, alert) for channel in targets)
        )
        return [channel.name for channel, ok in zip(targets, outcomes) if ok]

    async def _send(
        self,
        channel: NotificationChannel,
        kind: str,
        alert: Alert,
    ) -> bool:
        """Run one channel send under the configured timeout.

        Returns:
            True if the channel reported success in time.
        """
        send = channel.send_alert if kind == "alert" else channel.send_resolved
        outcome = "failure"
        try:
            success = await asyncio.wait_for(
                send(alert), timeout=self._config.send_timeout_seconds,
            )
            if success:
                outcome = "success"
        except asyncio.TimeoutError:
            outcome = "timeout"
            success = False
            logger.warning(
                "Channel %s timed out after %.1fs for alert %s",
                channel.name, self._config.send_timeout_seconds, alert.id,
            )
            if isinstance(channel, CircuitBreaker):
                channel.record_failure()
        except Exception as e:
            success = False
            logger.warning(
                "Channel %s send error for alert %s: %s",
                channel.name, alert.id, e,
            )
            if isinstance(channel, CircuitBreaker):
                channel.record_failure()

        if self._metrics is not None:
            self._metrics.record_notification(channel.name, outcome, kind=kind)
        return success

    def _record_delivery(
        self,
        alert: Alert,
        kind: str,
        targets: list[NotificationChannel],
        delivered: list[str],
    ) -> None:
        """Log delivery results."""
        failures = [ch.name for ch in targets if ch.name not in delivered]

        if failures and not delivered:
            logger.error(
                "Alert %s %s notice (%s) failed ALL channels: %s",
                alert.id, kind, alert.severity, failures,
            )
        elif failures:
            logger.warning(
                "Alert %s %s notice partial delivery: ok=%s failed=%s",
                alert.id, kind, delivered, failures,
            )
        else:
            logger.debug(
                "Alert %s %s notice delivered to all channels: %s",
                alert.id, kind, delivered,
            )
