"""Alert lifecycle events published over Redis pub/sub.

The WebSocket hub subscribes to the event channel and pushes each event
to connected dashboards. Publishing is best-effort: without a Redis client
it is a no-op, and a publish failure is logged and never reaches the
lifecycle transition that produced it.

Event payload::

    {"type": "alert_opened", "alert": {...}, "timestamp": "..."}
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from servmon.alerts.schemas import Alert

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "alerts:events"

EVENT_OPENED = "alert_opened"
EVENT_ACKNOWLEDGED = "alert_acknowledged"
EVENT_RESOLVED = "alert_resolved"


class AlertEventPublisher:
    """Publishes alert lifecycle events to a Redis channel."""

    def __init__(
        self,
        redis_client: Any | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> None:
        self._redis = redis_client
        self._channel = channel

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def publish(self, event_type: str, alert: Alert) -> bool:
        """Publish one event.

        Returns:
            True if Redis accepted the message.
        """
        if self._redis is None:
            return False

        message = json.dumps({
            "type": event_type,
            "alert": alert.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        try:
            await self._redis.publish(self._channel, message)
            return True
        except Exception as e:
            logger.warning(
                "Failed to publish %s for alert %s: %s", event_type, alert.id, e,
            )
            return False

