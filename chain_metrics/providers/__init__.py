"""
Providers package - Upstream metric collaborators.
"""

from chain_metrics.providers.base import BaseMetricsProvider
from chain_metrics.providers.http import DashboardApiProvider
from chain_metrics.providers.mock import MockMetricsProvider


__all__ = [
    "BaseMetricsProvider",
    "DashboardApiProvider",
    "MockMetricsProvider",
]
