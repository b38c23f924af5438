# catalog_client.py
"""
Amazon Product Advertising API 5.0 client.

Requests are signed with AWS Signature V4 (botocore) and sent with requests.
Responses are returned raw; pricing.normalize_search_result turns each item
into an Item.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from config import REGIONS, RegionConfig
from errors import CatalogError

logger = logging.getLogger("pricewatch.catalog")

SERVICE_NAME = "ProductAdvertisingAPI"
TARGET_PREFIX = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1"

SEARCH_RESOURCES = [
    "Images.Primary.Large",
    "Images.Primary.Medium",
    "Images.Primary.Small",
    "ItemInfo.Title",
    "ItemInfo.ByLineInfo",
    "ItemInfo.Classifications",
    "Offers.Listings.Price",
    "Offers.Listings.MerchantInfo",
    "Offers.Summaries.LowestPrice",
]

LOOKUP_RESOURCES = SEARCH_RESOURCES + [
    "ItemInfo.ExternalIds",
    "ItemInfo.ManufactureInfo",
    "BrowseNodeInfo.WebsiteSalesRank",
]


class CatalogClient:
    def __init__(self, access_key: Optional[str], secret_key: Optional[str], partner_tag: Optional[str],
                 timeout: float = 5.0):
        self.partner_tag = partner_tag
        self.timeout = timeout
        self._credentials = Credentials(access_key, secret_key) if access_key and secret_key else None

    @property
    def enabled(self) -> bool:
        return bool(self._credentials and self.partner_tag)

    def search(self, keywords: str, aws_locale: str) -> List[Dict[str, Any]]:
        body = {"Keywords": keywords, "SearchIndex": "All", "Resources": SEARCH_RESOURCES}
        data = self._call("SearchItems", aws_locale, body)
        items = (data.get("SearchResult") or {}).get("Items") or []
        logger.info("Catalog search %r in %s returned %d items", keywords, aws_locale, len(items))
        return items

    def lookup(self, asin: str, aws_locale: str) -> Optional[Dict[str, Any]]:
        body = {"ItemIds": [asin], "ItemIdType": "ASIN", "Resources": LOOKUP_RESOURCES}
        data = self._call("GetItems", aws_locale, body)
        items = (data.get("ItemsResult") or {}).get("Items") or []
        return items[0] if items else None

    def _region(self, aws_locale: str) -> RegionConfig:
        region = REGIONS.get(aws_locale)
        if region is None:
            raise CatalogError(f"unsupported region {aws_locale!r}")
        return region

    def _call(self, operation: str, aws_locale: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.enabled:
            raise CatalogError("Product Advertising API credentials are not configured")
        region = self._region(aws_locale)
        body = dict(body, PartnerTag=self.partner_tag, PartnerType="Associates", Marketplace=region.marketplace)
        url = f"https://{region.host}/paapi5/{operation.lower()}"
        payload = json.dumps(body)

        request = AWSRequest(method="POST", url=url, data=payload, headers={
            "host": region.host,
            "content-type": "application/json; charset=utf-8",
            "content-encoding": "amz-1.0",
            "x-amz-target": f"{TARGET_PREFIX}.{operation}",
        })
        SigV4Auth(self._credentials, SERVICE_NAME, region.aws_region).add_auth(request)

        try:
            response = requests.post(url, data=payload, headers=dict(request.headers.items()), timeout=self.timeout)
        except requests.RequestException as exc:
            raise CatalogError(f"{operation} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise CatalogError(f"{operation} returned a non-JSON body (status {response.status_code})") from exc

        errors = data.get("Errors") or []
        # "no results" is reported as an error by the API, but it is an empty answer for us
        if errors and all(error.get("Code") == "NoResults" for error in errors):
            return {}
        if not response.ok or errors:
            logger.error("Catalog %s failed - status=%s errors=%s", operation, response.status_code, errors)
            raise CatalogError(f"{operation} failed with status {response.status_code}")
        return data
