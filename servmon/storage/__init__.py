"""Storage layer: the asyncpg pool shared by the repositories."""

from servmon.storage.database import Database

__all__ = ["Database"]
