"""
servmon REST API.

Provides:
- POST /metrics - Metric ingestion (triggers alert evaluation)
- /alerts - Alert listing, acknowledge and resolve
- /thresholds - Threshold administration
- GET /health - Service health check
"""

from servmon.api.app import create_app

__all__ = ["create_app"]
