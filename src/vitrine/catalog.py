"""HTTP client for the bulk product summary endpoint."""

import logging
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import CatalogConfig, get_config_manager
from .errors import CatalogFetchError
from .models import ProductSummary

logger = logging.getLogger(__name__)


class CatalogClient:
    """Fetches the product summary list consumed by the search index."""

    def __init__(
        self,
        config: Optional[CatalogConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config_manager().get_catalog_config()
        self._client = client
        self._owns_client = client is None

    @property
    def index_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{self.config.index_path}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    async def fetch_raw(self) -> List[dict]:
        """Fetch the bulk payload and return the raw product dicts.

        Accepts either a bare JSON array or the ``{"success": true, "products": [...]}``
        envelope served by the storefront.

        Raises:
            CatalogFetchError: on network failure, non-2xx status or malformed body
        """
        url = self.index_url
        try:
            response = await self._get_client().get(url)
            response.raise_for_status()
            data: Any = response.json()
        except httpx.HTTPStatusError as e:
            raise CatalogFetchError(
                f"Catalog endpoint returned HTTP {e.response.status_code}",
                url=url,
                status_code=e.response.status_code,
                cause=e,
            ) from e
        except httpx.RequestError as e:
            raise CatalogFetchError(f"Catalog request failed: {e}", url=url, cause=e) from e
        except ValueError as e:
            raise CatalogFetchError("Catalog response is not valid JSON", url=url, cause=e) from e

        if isinstance(data, dict):
            if data.get("success") is False:
                raise CatalogFetchError(
                    f"Catalog endpoint reported failure: {data.get('error', 'unknown error')}",
                    url=url,
                )
            data = data.get("products")

        if not isinstance(data, list):
            raise CatalogFetchError("Invalid catalog response format", url=url)

        logger.debug(f"Fetched {len(data)} product summaries from {url}")
        return data

    async def fetch_product_summaries(self) -> List[ProductSummary]:
        """Fetch and validate product summaries, skipping malformed records."""
        return parse_products(await self.fetch_raw())

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def parse_products(records: List[Any]) -> List[ProductSummary]:
    """Validate raw product dicts, dropping records that cannot be indexed."""
    products = []
    for record in records:
        if isinstance(record, ProductSummary):
            products.append(record)
            continue
        try:
            products.append(ProductSummary.model_validate(record))
        except PydanticValidationError as e:
            logger.warning(f"Skipping invalid product record: {e.error_count()} validation error(s)")
    return products
