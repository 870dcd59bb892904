from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.core.config import settings
from src.core.exceptions import CatalogUnavailable
from src.integrations.woocommerce.schemas import CatalogProduct, WooProduct, WooTaxRate
from src.integrations.woocommerce.tax_classes import TaxClassResolver

logger = logging.getLogger(__name__)

API_PATH = "/wp-json/wc/v3"
TAX_RATES_PAGE_SIZE = 100


class WooCommerceCatalog:
    """
    Product catalog backed by the WooCommerce REST API.

    Every transport, HTTP or payload error surfaces as CatalogUnavailable;
    callers decide whether to fall back.
    """

    def __init__(
        self,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        resolver: TaxClassResolver | None = None,
    ):
        base_url = (base_url if base_url is not None else settings.woocommerce_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{base_url}{API_PATH}",
            auth=httpx.BasicAuth(
                consumer_key if consumer_key is not None else settings.woocommerce_consumer_key,
                consumer_secret
                if consumer_secret is not None
                else settings.woocommerce_consumer_secret,
            ),
            timeout=timeout if timeout is not None else settings.catalog_request_timeout_seconds,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self.resolver = resolver or TaxClassResolver()
        self._products: dict[int, CatalogProduct] = {}
        self.tax_rates_loaded = False

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "WooCommerceCatalog":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get(self, path: str, params: dict | None = None):
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            logger.warning("WooCommerce request %s timed out", path)
            raise CatalogUnavailable("WooCommerce request timed out", resource=path) from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "WooCommerce request %s failed: %s", path, exc.response.status_code
            )
            raise CatalogUnavailable(
                f"WooCommerce returned {exc.response.status_code}", resource=path
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("WooCommerce request %s failed: %s", path, exc)
            raise CatalogUnavailable(f"WooCommerce request failed: {exc}", resource=path) from exc

    async def get_product(self, product_id: int) -> CatalogProduct:
        """Current price and tax class of a product (cached per catalog instance)."""
        cached = self._products.get(product_id)
        if cached is not None:
            return cached

        path = f"/products/{product_id}"
        payload = await self._get(path)
        try:
            product = WooProduct.model_validate(payload)
            price = Decimal(product.price or product.regular_price or "")
        except (PydanticValidationError, InvalidOperation) as exc:
            raise CatalogUnavailable(
                f"Product {product_id} has no usable price", resource=path
            ) from exc
        if not price.is_finite():
            raise CatalogUnavailable(f"Product {product_id} has no usable price", resource=path)

        result = CatalogProduct(product_id=product.id, price=price, tax_class=product.tax_class)
        self._products[product_id] = result
        return result

    async def load_tax_rates(self) -> None:
        """Fetch the shop's tax rate table; raises CatalogUnavailable if it cannot."""
        payload = await self._get("/taxes", params={"per_page": TAX_RATES_PAGE_SIZE})
        try:
            rates = [WooTaxRate.model_validate(item) for item in payload]
        except (PydanticValidationError, TypeError) as exc:
            raise CatalogUnavailable("Malformed tax rate table", resource="/taxes") from exc
        self.resolver.load(rates)
        self.tax_rates_loaded = True
        logger.info("Loaded %d WooCommerce tax rates", len(rates))

    async def get_tax_rate_for_class(self, tax_class: str | None) -> Decimal:
        return self.resolver.rate_for(tax_class)
