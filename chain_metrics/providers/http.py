"""
Dashboard API Provider - HTTP adapter for the dashboard's metrics API.

Endpoints used:
- /v2/blockchain/usage-metrics     - Usage snapshot
- /v2/blockchain/tvl-metrics       - TVL snapshot and analysis
- /v2/blockchain/cashflow-metrics  - Flow snapshot and analysis
- /v2/blockchain/market-overview   - Market snapshot and analysis
- /v2/blockchain/ai-analysis       - AI signals (opaque)
- /v2/blockchain/tvl/history       - Paginated TVL history

Every response is wrapped as {"success": bool, "data": ...}.
"""

import logging
from typing import Any, Optional

import aiohttp

from chain_metrics.config import ProviderConfig
from chain_metrics.exceptions import NetworkError
from chain_metrics.models import Category, timeframe_days
from chain_metrics.providers.base import BaseMetricsProvider


logger = logging.getLogger(__name__)


class DashboardApiProvider(BaseMetricsProvider):
    """
    Provider backed by the dashboard REST API.

    Usage:
        async with DashboardApiProvider(ProviderConfig(base_url="http://localhost:3000/api")) as provider:
            raw = await provider.fetch_category(Category.USAGE, "ethereum", "30D")
    """

    CATEGORY_PATHS = {
        Category.USAGE: "/v2/blockchain/usage-metrics",
        Category.TVL: "/v2/blockchain/tvl-metrics",
        Category.CASHFLOW: "/v2/blockchain/cashflow-metrics",
        Category.MARKET: "/v2/blockchain/market-overview",
        Category.AI: "/v2/blockchain/ai-analysis",
    }

    HISTORY_PATH = "/v2/blockchain/tvl/history"

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config = config or ProviderConfig()
        super().__init__(timeout=self._config.timeout_seconds, session=session)
        self._base_url = self._config.base_url.rstrip("/")

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "dashboard_api"

    async def fetch_category(
        self,
        category: Category,
        network_id: str,
        timeframe: str,
    ) -> Any:
        """Fetch one category snapshot."""
        url = f"{self._base_url}{self.CATEGORY_PATHS[category]}"
        params = {"blockchain": network_id, "timeframe": timeframe}
        response = await self._make_request("GET", url, params=params)
        return self._unwrap(response, url)

    async def fetch_page(
        self,
        network_id: str,
        metric: str,
        timeframe: str,
        page: int,
        page_size: int,
    ) -> Any:
        """Fetch one page of history. Missing data is an empty page."""
        url = f"{self._base_url}{self.HISTORY_PATH}"
        params = {
            "coinId": network_id,
            "metric": metric,
            "days": timeframe_days(timeframe),
            "page": page,
            "pageSize": page_size,
        }
        response = await self._make_request(
            "GET",
            url,
            params=params,
            headers={"Cache-Control": "max-age=300"},
        )
        data = self._unwrap(response, url)
        return data if data is not None else []

    def _unwrap(self, response: Any, url: str) -> Any:
        """Strip the {success, data} envelope."""
        if isinstance(response, dict) and "success" in response:
            if not response["success"]:
                raise NetworkError(
                    message=f"API reported failure: {response.get('error', 'unknown error')}",
                    source_name=self.name,
                    request_url=url,
                    response_body=str(response)[:1000],
                )
            return response.get("data")
        return response
