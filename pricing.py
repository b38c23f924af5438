# pricing.py
"""
Price domain logic.

Pure functions only:
- normalize_search_result: PA-API 5.0 item -> Item
- calculate_desired_price_examples
- parse_custom_price_input
- format_price

All amounts are integers in minor currency units (cents). A price that the
catalog does not report is ``None``, never ``0``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from config import CURRENCY_FORMATS, currency_format_for

PRICE_TYPES = ("amazonPrice", "thirdPartyNewPrice", "thirdPartyUsedPrice")

DESIRED_PRICE_DISCOUNTS = (Decimal("0.97"), Decimal("0.95"), Decimal("0.93"), Decimal("0.90"))

# Largest custom price accepted, in minor units; fits a DynamoDB Number and a postback payload
MAX_PRICE_MINOR_UNITS = 10 ** 12

_DIGITS = re.compile(r"\d")
_LEADING_NUMBER = re.compile(r"-?\d*\.?\d*")


@dataclass
class ItemPrice:
    amazon_price: Optional[int] = None
    third_party_new_price: Optional[int] = None
    third_party_used_price: Optional[int] = None

    def get(self, price_type: str) -> Optional[int]:
        return self.as_dict().get(price_type)

    def as_dict(self) -> Dict[str, int]:
        """Available observations keyed by their wire name, in display order."""
        values = {
            "amazonPrice": self.amazon_price,
            "thirdPartyNewPrice": self.third_party_new_price,
            "thirdPartyUsedPrice": self.third_party_used_price,
        }
        return {key: value for key, value in values.items() if value is not None}

    @property
    def any_available(self) -> bool:
        return bool(self.as_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemPrice":
        return cls(
            amazon_price=data.get("amazonPrice"),
            third_party_new_price=data.get("thirdPartyNewPrice"),
            third_party_used_price=data.get("thirdPartyUsedPrice"),
        )


@dataclass
class Item:
    asin: Optional[str] = None
    title: Optional[str] = None
    image_url: Optional[str] = None
    detail_page_url: Optional[str] = None
    product_group: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    ean: Optional[str] = None
    upc: Optional[str] = None
    sku: Optional[str] = None
    sales_rank: Optional[int] = None
    currency_code: Optional[str] = None
    price: ItemPrice = field(default_factory=ItemPrice)

    @property
    def is_display_eligible(self) -> bool:
        return (
            self.asin is not None
            and self.detail_page_url is not None
            and self.title is not None
            and self.price.any_available
        )


def deep_get(data: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts and lists, e.g. ``Offers.Listings.0.Price``."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def to_minor_units(amount: Any, currency_code: Optional[str]) -> Optional[int]:
    if amount is None:
        return None
    fmt = CURRENCY_FORMATS.get(currency_code or "")
    precision = fmt.precision if fmt else 2
    try:
        value = Decimal(str(amount)) * (Decimal(10) ** precision)
    except InvalidOperation:
        return None
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _first_present(raw: Dict[str, Any], paths: List[str]) -> Any:
    for path in paths:
        value = deep_get(raw, path)
        if value is not None:
            return value
    return None


def _amazon_listing(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for listing in deep_get(raw, "Offers.Listings") or []:
        merchant = deep_get(listing, "MerchantInfo.Name") or ""
        if merchant.lower().startswith("amazon"):
            return listing
    return None


def _lowest_offer(raw: Dict[str, Any], condition: str) -> Optional[Dict[str, Any]]:
    for summary in deep_get(raw, "Offers.Summaries") or []:
        if deep_get(summary, "Condition.Value") == condition:
            return deep_get(summary, "LowestPrice")
    return None


def normalize_search_result(raw: Dict[str, Any]) -> Item:
    amazon_listing = _amazon_listing(raw)
    amazon_price = deep_get(amazon_listing, "Price") if amazon_listing else None
    new_price = _lowest_offer(raw, "New")
    used_price = _lowest_offer(raw, "Used")

    currency_code = None
    for observed in (amazon_price, new_price, used_price):
        if observed and observed.get("Currency"):
            currency_code = observed["Currency"]
            break

    def amount(observed: Optional[Dict[str, Any]]) -> Optional[int]:
        return to_minor_units(observed.get("Amount"), currency_code) if observed else None

    sales_rank = deep_get(raw, "BrowseNodeInfo.WebsiteSalesRank.SalesRank")

    return Item(
        asin=raw.get("ASIN"),
        title=deep_get(raw, "ItemInfo.Title.DisplayValue"),
        image_url=_first_present(raw, [
            "Images.Primary.Large.URL",
            "Images.Primary.Medium.URL",
            "Images.Primary.Small.URL",
        ]),
        detail_page_url=raw.get("DetailPageURL"),
        product_group=deep_get(raw, "ItemInfo.Classifications.ProductGroup.DisplayValue"),
        category=deep_get(raw, "ItemInfo.Classifications.Binding.DisplayValue"),
        manufacturer=deep_get(raw, "ItemInfo.ByLineInfo.Manufacturer.DisplayValue"),
        model=deep_get(raw, "ItemInfo.ManufactureInfo.Model.DisplayValue"),
        ean=deep_get(raw, "ItemInfo.ExternalIds.EANs.DisplayValues.0"),
        upc=deep_get(raw, "ItemInfo.ExternalIds.UPCs.DisplayValues.0"),
        sku=deep_get(raw, "ItemInfo.ManufactureInfo.ItemPartNumber.DisplayValue"),
        sales_rank=int(sales_rank) if sales_rank is not None else None,
        currency_code=currency_code,
        price=ItemPrice(
            amazon_price=amount(amazon_price),
            third_party_new_price=amount(new_price),
            third_party_used_price=amount(used_price),
        ),
    )


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_desired_price_examples(price: int) -> List[int]:
    """One "just under" anchor followed by the -3/-5/-7/-10 percent anchors."""
    base = Decimal(price)
    return [price - 1] + [_round_half_up(base * factor) for factor in DESIRED_PRICE_DISCOUNTS]


def _unformat(text: str, decimal: str) -> Optional[Decimal]:
    # keep digits, minus and the decimal separator, then read the leading number
    cleaned = re.sub(r"[^0-9\-" + re.escape(decimal) + "]", "", text).replace(decimal, ".")
    match = _LEADING_NUMBER.match(cleaned)
    candidate = match.group(0) if match else ""
    try:
        return Decimal(candidate)
    except InvalidOperation:
        return None


def parse_custom_price_input(text: str, precision: int = 2) -> List[int]:
    """
    Turn free-form user input into candidate prices in minor units.

    The text is read once with "." and once with "," as decimal separator, so
    "12.34" and "12,34" both offer 12.34 as one of the candidates.
    """
    if not text or not _DIGITS.search(text):
        return []
    candidates: List[int] = []
    for decimal in (".", ","):
        value = _unformat(text, decimal)
        if value is None:
            continue
        scaled = value * (Decimal(10) ** precision)
        # quantize only works within the context precision, so range-check first
        if scaled < 0 or scaled > MAX_PRICE_MINOR_UNITS:
            continue
        minor = _round_half_up(scaled)
        if minor in candidates:
            continue
        candidates.append(minor)
    return candidates


def format_price(minor_units: int, key: str) -> str:
    """Render minor units as money for a currency code or a region code."""
    fmt = currency_format_for(key)
    value = Decimal(minor_units) / (Decimal(10) ** fmt.precision)
    number = f"{abs(value):,.{fmt.precision}f}"
    number = number.translate(str.maketrans({",": fmt.thousand, ".": fmt.decimal}))
    sign = "-" if value < 0 else ""
    return f"{fmt.symbol} {sign}{number}"
