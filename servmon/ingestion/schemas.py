"""Schema for metric samples reported by monitored hosts.

One ``MetricSample`` is one row of the ``metrics`` table. Samples are
immutable once stored; the alerting core only reads the fields it needs.
Byte counters are integers, CPU fields are floats.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class MetricSample:
    """A single measurement for one server.

    Attributes:
        server_id: Server that reported the sample.
        cpu_usage: CPU usage percentage (0-100).
        memory_total / memory_used / memory_free: Memory in bytes.
        disk_total / disk_used / disk_free: Disk space in bytes.
        net_upload / net_download: Bytes since the previous sample.
        cpu_temp: Optional CPU temperature in degrees Celsius.
        timestamp: When the host took the measurement.
        id: Database id (0 until persisted).
    """

    server_id: int
    cpu_usage: float = 0.0
    memory_total: int = 0
    memory_used: int = 0
    memory_free: int = 0
    disk_total: int = 0
    disk_used: int = 0
    disk_free: int = 0
    net_upload: int = 0
    net_download: int = 0
    cpu_temp: float | None = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    id: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "server_id": self.server_id,
            "timestamp": self.timestamp.isoformat(),
            "cpu_usage": self.cpu_usage,
            "cpu_temp": self.cpu_temp,
            "memory_total": self.memory_total,
            "memory_used": self.memory_used,
            "memory_free": self.memory_free,
            "disk_total": self.disk_total,
            "disk_used": self.disk_used,
            "disk_free": self.disk_free,
            "net_upload": self.net_upload,
            "net_download": self.net_download,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricSample":
        """Create a MetricSample from a dictionary (e.g. an agent payload).

        Args:
            data: Dictionary with sample fields. ``timestamp`` may be an
                ISO string, a datetime, or missing (defaults to now).

        Returns:
            MetricSample instance.
        """
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return cls(
            id=data.get("id", 0),
            server_id=int(data["server_id"]),
            timestamp=timestamp,
            cpu_usage=float(data.get("cpu_usage", 0.0)),
            cpu_temp=data.get("cpu_temp"),
            memory_total=int(data.get("memory_total", 0)),
            memory_used=int(data.get("memory_used", 0)),
            memory_free=int(data.get("memory_free", 0)),
            disk_total=int(data.get("disk_total", 0)),
            disk_used=int(data.get("disk_used", 0)),
            disk_free=int(data.get("disk_free", 0)),
            net_upload=int(data.get("net_upload", 0)),
            net_download=int(data.get("net_download", 0)),
        )
