"""Polygon.io options chain snapshot connector.

Walks the v3 options snapshot endpoint for one underlying, following
``next_url`` cursors until the chain is exhausted or the page ceiling is
reached. Each page must report ``status == "OK"``; a page that keeps failing
aborts the whole fetch so that no partial chain is ever returned.

Endpoint: /v3/snapshot/options/{underlying}?limit=<n>&apiKey=<key>
Pages: {"status": "OK", "results": [...], "next_url": "..."}
"""

from __future__ import annotations

import asyncio
from typing import Any

from options_pipeline.connectors.base import (
    BaseConnector,
    ConfigurationError,
    DataParsingError,
)
from options_pipeline.core.config import settings


class PolygonOptionsConnector(BaseConnector):
    """Connector for the Polygon.io options chain snapshot API.

    Requires ``settings.polygon_api_key``. The key is sent as the ``apiKey``
    query parameter on the first page and re-appended to every ``next_url``.

    Usage::

        async with PolygonOptionsConnector() as conn:
            contracts = await conn.fetch_all_contracts("MSTR")
    """

    SOURCE_NAME: str = "POLYGON_OPTIONS"
    BASE_URL: str = "https://api.polygon.io"
    RATE_LIMIT_PER_SECOND: float = 5.0
    TIMEOUT_SECONDS: float = 30.0

    SNAPSHOT_PATH: str = "/v3/snapshot/options/{underlying}"
    OK_STATUS: str = "OK"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        page_delay: float | None = None,
    ) -> None:
        super().__init__(base_url=base_url or settings.polygon_base_url)
        self.api_key = api_key if api_key is not None else settings.polygon_api_key
        self.page_size = page_size or settings.options_page_size
        self.max_pages = max_pages or settings.options_max_pages
        self.page_delay = (
            page_delay if page_delay is not None else settings.options_page_delay_seconds
        )

    async def fetch(self, underlying_asset: str | None = None, **kwargs: Any) -> list[dict[str, Any]]:
        """Fetch the full chain for ``underlying_asset`` (default from settings)."""
        return await self.fetch_all_contracts(underlying_asset or settings.options_underlying)

    async def fetch_all_contracts(self, underlying_asset: str) -> list[dict[str, Any]]:
        """Return every contract snapshot for one underlying.

        Args:
            underlying_asset: Underlying ticker, e.g. "MSTR".

        Returns:
            Concatenated ``results`` of all pages, in page order.

        Raises:
            ConfigurationError: If no API key is configured.
            UpstreamStatusError: If a page never reports status OK.
            FetchError: If a page request fails after all retries.
            DataParsingError: If a page is not valid JSON.
        """
        if not self.api_key:
            raise ConfigurationError(
                "Polygon API key not configured. Set POLYGON_API_KEY in .env"
            )

        symbol = underlying_asset.upper()
        url: str | None = self.SNAPSHOT_PATH.format(underlying=symbol)
        params: dict[str, Any] = {"limit": self.page_size, "apiKey": self.api_key}

        contracts: list[dict[str, Any]] = []
        pages = 0

        while url:
            if pages > 0 and self.page_delay > 0:
                await asyncio.sleep(self.page_delay)

            payload = await self._get_json(url, expected_status=self.OK_STATUS, params=params)
            pages += 1

            results = payload.get("results") or []
            if not isinstance(results, list):
                raise DataParsingError(
                    f"{self.SOURCE_NAME}: 'results' is {type(results).__name__}, expected list"
                )
            contracts.extend(results)
            self.log.info(
                "page_fetched",
                underlying=symbol,
                page=pages,
                results=len(results),
                total=len(contracts),
            )

            url = payload.get("next_url")
            # next_url carries its own cursor; only the key needs re-adding
            params = {"apiKey": self.api_key}

            if url and pages >= self.max_pages:
                self.log.warning(
                    "page_ceiling_reached",
                    underlying=symbol,
                    max_pages=self.max_pages,
                    total=len(contracts),
                )
                break

        self.log.info("fetch_complete", underlying=symbol, pages=pages, contracts=len(contracts))
        return contracts
