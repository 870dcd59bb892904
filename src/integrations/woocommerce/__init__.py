from src.integrations.woocommerce.client import WooCommerceCatalog
from src.integrations.woocommerce.schemas import CatalogProduct, WooProduct, WooTaxRate
from src.integrations.woocommerce.tax_classes import TaxClassResolver, normalize_tax_class

__all__ = [
    "WooCommerceCatalog",
    "CatalogProduct",
    "WooProduct",
    "WooTaxRate",
    "TaxClassResolver",
    "normalize_tax_class",
]
