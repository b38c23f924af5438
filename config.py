# config.py
"""
Runtime settings and static region / currency tables.

Settings are read from environment variables once at startup; the tables
below describe the Amazon shops the bot can search and how their currencies
are rendered.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class RegionConfig:
    host: str
    aws_region: str
    marketplace: str
    currency_code: str


@dataclass(frozen=True)
class CurrencyFormat:
    symbol: str
    decimal: str
    thousand: str
    precision: int


# Product Advertising API 5.0 endpoints per Amazon shop
REGIONS: Dict[str, RegionConfig] = {
    "de_DE": RegionConfig("webservices.amazon.de", "eu-west-1", "www.amazon.de", "EUR"),
    "en_GB": RegionConfig("webservices.amazon.co.uk", "eu-west-1", "www.amazon.co.uk", "GBP"),
    "en_US": RegionConfig("webservices.amazon.com", "us-east-1", "www.amazon.com", "USD"),
}

SUPPORTED_AWS_LOCALES = tuple(REGIONS)
SUPPORTED_LANGUAGES = ("en", "de")
DEFAULT_LANGUAGE = "en"

CURRENCY_FORMATS: Dict[str, CurrencyFormat] = {
    "EUR": CurrencyFormat(symbol="€", decimal=",", thousand=".", precision=2),
    "GBP": CurrencyFormat(symbol="£", decimal=".", thousand=",", precision=2),
    "USD": CurrencyFormat(symbol="$", decimal=".", thousand=",", precision=2),
}

# A postback older than this is rejected as stale
POSTBACK_VALIDITY_SECONDS = 5 * 60
POSTBACK_PAYLOAD_LIMIT = 1000
PRICE_WATCHES_PAGE_SIZE = 10


def currency_format_for(key: str) -> CurrencyFormat:
    """Resolve a currency code (``EUR``) or a region code (``de_DE``) to its format."""
    if key in CURRENCY_FORMATS:
        return CURRENCY_FORMATS[key]
    region = REGIONS.get(key)
    if region is not None:
        return CURRENCY_FORMATS[region.currency_code]
    raise KeyError(f"No currency format configured for {key!r}")


@dataclass(frozen=True)
class Settings:
    """Configuration container for credentials, endpoints and runtime limits."""
    app_secret: Optional[str]
    validation_token: str
    page_access_token: Optional[str]
    graph_api_version: str
    paapi_access_key: Optional[str]
    paapi_secret_key: Optional[str]
    paapi_partner_tag: Optional[str]
    redis_url: str
    aws_region: str
    user_table_name: str
    product_table_name: str
    price_table_name: str
    price_alert_table_name: str
    message_table_name: str
    cloud_image_io_token: Optional[str]
    http_timeout: float
    redis_timeout: float
    log_level: str


def load_settings() -> Settings:
    return Settings(
        app_secret=os.getenv("MESSENGER_APP_SECRET"),
        validation_token=os.getenv("MESSENGER_VALIDATION_TOKEN", "pricewatch-verify-token"),
        page_access_token=os.getenv("MESSENGER_PAGE_ACCESS_TOKEN"),
        graph_api_version=os.getenv("GRAPH_API_VERSION", "v19.0"),
        paapi_access_key=os.getenv("PAAPI_ACCESS_KEY"),
        paapi_secret_key=os.getenv("PAAPI_SECRET_KEY"),
        paapi_partner_tag=os.getenv("PAAPI_PARTNER_TAG"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        aws_region=os.getenv("AWS_REGION", "eu-central-1"),
        user_table_name=os.getenv("USER_TABLE_NAME", "pricewatch_users"),
        product_table_name=os.getenv("PRODUCT_TABLE_NAME", "pricewatch_products"),
        price_table_name=os.getenv("PRICE_TABLE_NAME", "pricewatch_prices"),
        price_alert_table_name=os.getenv("PRICE_ALERT_TABLE_NAME", "pricewatch_price_alerts"),
        message_table_name=os.getenv("MESSAGE_TABLE_NAME", "pricewatch_messages"),
        cloud_image_io_token=os.getenv("CLOUD_IMAGE_IO_TOKEN"),
        http_timeout=float(os.getenv("HTTP_TIMEOUT_SECONDS", "5")),
        redis_timeout=float(os.getenv("REDIS_TIMEOUT_SECONDS", "2")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
