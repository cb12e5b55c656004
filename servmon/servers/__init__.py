"""Servers and server groups (read-only to the alerting core)."""

from servmon.servers.repository import ServerRepository
from servmon.servers.schemas import Server, ServerGroup

__all__ = ["Server", "ServerGroup", "ServerRepository"]
