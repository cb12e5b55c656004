"""Alert service configuration.

Controls threshold defaults, the auto-resolve note, and lifecycle event
publishing. All settings can be overridden via ``ALERTS_*`` environment
variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for the alert evaluation engine."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    default_cooldown_minutes: int = Field(
        default=15,
        ge=0,
        le=10080,
        description="Cooldown applied to new thresholds that do not set one",
    )
    auto_resolve_note: str = Field(
        default="Automatically resolved after metric values returned to normal",
        description="Note appended to alerts closed by the clear rule",
    )

    # Lifecycle events for the WebSocket hub
    publish_events: bool = Field(
        default=True,
        description="Publish alert lifecycle events to Redis pub/sub",
    )
    event_channel: str = Field(
        default="alerts:events",
        description="Redis pub/sub channel for alert lifecycle events",
    )
    active_list_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum alerts returned by the active alert listing",
    )
