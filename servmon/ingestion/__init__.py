"""Metric sample ingestion.

Components:
- MetricSample: Immutable sample reported by a host agent
- MetricRepository: asyncpg persistence for the metrics table
- MetricIngestionService: Store-then-evaluate entry point
"""

from servmon.ingestion.repository import MetricRepository
from servmon.ingestion.schemas import MetricSample
from servmon.ingestion.service import MetricIngestionService, UnknownServerError

__all__ = [
    "MetricIngestionService",
    "MetricRepository",
    "MetricSample",
    "UnknownServerError",
]
