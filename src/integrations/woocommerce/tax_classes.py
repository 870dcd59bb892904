"""Resolution of WooCommerce tax class slugs to tax rates.

Shops name their classes freely ("Taux réduit", "tva_10", "Exonéré"), so
lookup goes through normalisation, spelling variations and finally a
pattern match before falling back to the standard rate.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence
from decimal import Decimal, InvalidOperation

from src.core.config import settings
from src.integrations.woocommerce.schemas import WooTaxRate

STANDARD_RATE = Decimal("20")

ZERO_RATE_CLASSES = (
    "zero-rate",
    "zero",
    "0",
    "exempt",
    "exempted",
    "exemption",
    "exonerer",
    "exonere",
    "exoneration",
    "tva-0",
    "taux-0",
    "sans-tva",
    "hors-tva",
    "free",
    "none",
    "no-tax",
)

# Only used when the shop has no rate row for the class
DEFAULT_CLASS_RATES: dict[str, Decimal] = {
    "": STANDARD_RATE,
    "standard": STANDARD_RATE,
    "reduced-rate": Decimal("10"),
    "super-reduced-rate": Decimal("7"),
    "tva-20": STANDARD_RATE,
    "taux-20": STANDARD_RATE,
    "standard-fr": STANDARD_RATE,
    "normal": STANDARD_RATE,
    "tva-10": Decimal("10"),
    "taux-10": Decimal("10"),
    "reduit": Decimal("10"),
    "intermediaire": Decimal("10"),
    "tva-7": Decimal("7"),
    "taux-7": Decimal("7"),
    "super-reduit": Decimal("7"),
}

_ZERO_PATTERN = re.compile(r"^(exoner|exempt|zero|0|sans-tva|hors-tva|free|none|no-tax)")
_NUMBER_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)")
_SUPER_REDUCED_PATTERN = re.compile(r"^(super-reduit|super-reduced)")
_REDUCED_PATTERN = re.compile(r"^(reduit|intermediaire|reduced)")
_STANDARD_PATTERN = re.compile(r"^(standard|normal|tva-standard)")


def normalize_tax_class(tax_class: str | None) -> str:
    """Lowercase, strip accents, fold spaces/underscores into single dashes."""
    text = unicodedata.normalize("NFKD", (tax_class or "").strip().lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[\s_]+", "-", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


def class_variations(normalized: str) -> list[str]:
    variations = [
        normalized,
        normalized.replace("-", "_"),
        normalized.replace("-", ""),
        normalized.replace("-", " "),
        f"tva-{normalized}",
        f"taux-{normalized}",
    ]
    return list(dict.fromkeys(variations))


def detect_rate_by_pattern(
    normalized: str, allowed: Sequence[Decimal] | None = None
) -> Decimal | None:
    allowed = allowed or settings.allowed_tax_rates
    if _ZERO_PATTERN.match(normalized):
        return Decimal("0")

    match = _NUMBER_PATTERN.search(normalized)
    if match:
        try:
            rate = Decimal(match.group(1).replace(",", "."))
        except InvalidOperation:
            rate = None
        if rate is not None and rate in allowed:
            return rate

    # super-reduit must be checked before reduit
    if _SUPER_REDUCED_PATTERN.match(normalized):
        return Decimal("7")
    if _REDUCED_PATTERN.match(normalized):
        return Decimal("10")
    if _STANDARD_PATTERN.match(normalized):
        return STANDARD_RATE
    return None


class TaxClassResolver:
    """Maps tax class slugs to rates, seeded from the shop's tax rate table."""

    def __init__(self, allowed_tax_rates: Sequence[Decimal] | None = None):
        self.allowed_tax_rates = list(allowed_tax_rates or settings.allowed_tax_rates)
        self._rates: dict[str, Decimal] = {}
        self._apply_defaults()

    def load(self, tax_rates: Iterable[WooTaxRate], country: str = "MA") -> None:
        """
        Rebuild the class map from the shop's rate rows.

        When a class has several rows, the one for `country` wins. Rates
        outside the allowed set map to the standard rate.
        """
        by_class: dict[str, list[WooTaxRate]] = {}
        for rate in tax_rates:
            by_class.setdefault(rate.tax_class or "", []).append(rate)

        self._rates = {}
        for tax_class, rates in by_class.items():
            best = next((r for r in rates if r.country == country), rates[0])
            try:
                value = Decimal(best.rate)
            except InvalidOperation:
                value = STANDARD_RATE
            self._rates[tax_class] = value if value in self.allowed_tax_rates else STANDARD_RATE
        self._apply_defaults()

    def _apply_defaults(self) -> None:
        for name in ZERO_RATE_CLASSES:
            self._rates[name] = Decimal("0")
        for name, rate in DEFAULT_CLASS_RATES.items():
            self._rates.setdefault(name, rate)

    def rate_for(self, tax_class: str | None) -> Decimal:
        raw = tax_class or ""
        normalized = normalize_tax_class(raw)
        for key in (normalized, raw, *class_variations(normalized)):
            if key in self._rates:
                return self._rates[key]

        detected = detect_rate_by_pattern(normalized, self.allowed_tax_rates)
        if detected is not None:
            return detected
        return self._rates.get("", STANDARD_RATE)
