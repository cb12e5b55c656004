"""Schemas for monitored servers and server groups.

Servers and groups are managed by the admin surface; the alerting core only
reads them to name alerts and to resolve group-scoped thresholds.
"""

from dataclasses import dataclass


@dataclass
class Server:
    """A monitored host from the servers table."""

    id: int
    hostname: str
    ip: str = ""
    description: str = ""


@dataclass
class ServerGroup:
    """A node in the server group tree (parent pointer, may be a root)."""

    id: int
    name: str
    parent_id: int | None = None
    description: str = ""
