"""
Base Metrics Provider - Abstract interface for upstream collaborators.

A provider is an opaque external collaborator: it returns a raw value
or raises. It never validates, retries or caches; the resilience layer
does all of that above it.

Providers MUST raise NetworkError for transport and HTTP failures so
the retry policy can recognise them.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from chain_metrics.exceptions import NetworkError
from chain_metrics.models import Category


logger = logging.getLogger(__name__)


class BaseMetricsProvider(ABC):
    """
    Abstract base class for metric providers.

    Each provider implementation must:
    1. Implement fetch_category() - raw snapshot payload for one category
    2. Implement fetch_page() - raw points of one history page

    Features:
    - aiohttp session ownership (created lazily, closed by close())
    - HTTP and connection errors mapped to NetworkError
    - Request counters for observability
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._request_count = 0
        self._error_count = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider."""
        pass

    @abstractmethod
    async def fetch_category(
        self,
        category: Category,
        network_id: str,
        timeframe: str,
    ) -> Any:
        """
        Fetch the raw payload of one category.

        Raises:
            NetworkError: transport or HTTP failure
        """
        pass

    @abstractmethod
    async def fetch_page(
        self,
        network_id: str,
        metric: str,
        timeframe: str,
        page: int,
        page_size: int,
    ) -> Any:
        """
        Fetch the raw points of one history page.

        A page shorter than page_size signals the end of the series.

        Raises:
            NetworkError: transport or HTTP failure
        """
        pass

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "ChainMetricsLayer/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make HTTP request with error handling."""
        session = await self._get_session()
        self._request_count += 1

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
            ) as response:
                latency_ms = (time.time() - start_time) * 1000

                if response.status >= 400:
                    body = await response.text()
                    self._error_count += 1
                    raise NetworkError(
                        message=f"HTTP {response.status}",
                        source_name=self.name,
                        status_code=response.status,
                        response_body=body[:1000],
                        request_url=url,
                    )

                data = await response.json()
                logger.debug(f"[{self.name}] {method} {url} completed in {latency_ms:.1f}ms")
                return data

        except aiohttp.ClientError as e:
            self._error_count += 1
            raise NetworkError(
                message=f"Connection error: {e}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )
        except asyncio.TimeoutError as e:
            self._error_count += 1
            raise NetworkError(
                message=f"Request timed out after {self._timeout}s",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )

    def get_stats(self) -> dict[str, Any]:
        """Request counters."""
        return {
            "name": self.name,
            "requests": self._request_count,
            "errors": self._error_count,
        }

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseMetricsProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
