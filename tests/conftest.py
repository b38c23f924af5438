import time
import uuid
from typing import Any, Dict, List, Optional

import boto3
import pytest
import redis
from moto import mock_aws

from catalog_client import CatalogClient
from conversation import Collaborators, ConversationRouter
from db_io import (
    MessageStore,
    PriceAlertStore,
    PriceStore,
    ProductStore,
    Session,
    SessionCache,
    UserStore,
)
from errors import CatalogError
from language_packs import Translator
from messenger_messaging import MessengerClient

REGION = "eu-central-1"
USER_TABLE = "test_users"
PRODUCT_TABLE = "test_products"
PRICE_TABLE = "test_prices"
PRICE_ALERT_TABLE = "test_price_alerts"
MESSAGE_TABLE = "test_messages"

DEFAULT_PROFILE = {
    "first_name": "Sam",
    "last_name": "Tester",
    "profile_pic": "https://example.com/sam.jpg",
    "locale": "en_GB",
    "timezone": 1,
    "gender": "unknown",
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeRedis:
    """The handful of redis-py commands SessionCache uses, kept in dicts."""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.values: Dict[str, str] = {}
        self.expiry: Dict[str, Optional[int]] = {}

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({field: str(value) for field, value in mapping.items()})
        return len(mapping)

    def hdel(self, key, *fields):
        stored = self.hashes.get(key, {})
        return sum(1 for field in fields if stored.pop(field, None) is not None)

    def exists(self, key):
        return int(key in self.hashes or key in self.values)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.expiry[key] = ex
        return True


class BrokenRedis:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return fail


class RecordingMessenger(MessengerClient):
    """Builds real Send API payloads but keeps them instead of posting."""

    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__(page_access_token="test-token")
        self.sent: List[Dict[str, Any]] = []
        self.profiles = profiles or {}
        self.profile_calls: List[str] = []

    def _post(self, payload):
        self.sent.append(payload)
        return {"recipient_id": payload["recipient"]["id"], "message_id": f"m_{len(self.sent)}"}

    def get_user_profile(self, user_id):
        self.profile_calls.append(user_id)
        return dict(self.profiles.get(user_id, DEFAULT_PROFILE))

    def texts(self) -> List[str]:
        return [payload["message"]["text"] for payload in self.sent if "text" in payload["message"]]

    def templates(self, template_type: Optional[str] = None) -> List[Dict[str, Any]]:
        found = []
        for payload in self.sent:
            attachment = payload["message"].get("attachment")
            if attachment and (template_type is None or attachment["payload"]["template_type"] == template_type):
                found.append(attachment["payload"])
        return found

    def clear(self):
        self.sent.clear()


class FakeCatalog(CatalogClient):
    def __init__(self, items: Optional[List[Dict[str, Any]]] = None):
        super().__init__("test-access-key", "test-secret-key", "test-21")
        self.items = list(items or [])
        self.fail = False
        self.searches: List[tuple] = []
        self.lookups: List[tuple] = []

    def search(self, keywords, aws_locale):
        self.searches.append((keywords, aws_locale))
        if self.fail:
            raise CatalogError("SearchItems failed with status 503")
        return list(self.items)

    def lookup(self, asin, aws_locale):
        self.lookups.append((asin, aws_locale))
        if self.fail:
            raise CatalogError("GetItems failed with status 503")
        return next((item for item in self.items if item.get("ASIN") == asin), None)


class FrozenClock:
    def __init__(self, now: Optional[float] = None):
        self.now = float(int(now if now is not None else time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def paapi_item(asin="B00TEST001", title="Apple iPhone 6 64GB", amazon=None, new=None, used=None,
               currency="GBP", detail_page_url="default", **item_info):
    listings = []
    if amazon is not None:
        listings.append({"Price": {"Amount": amazon, "Currency": currency}, "MerchantInfo": {"Name": "Amazon.co.uk"}})
    summaries = []
    if new is not None:
        summaries.append({"Condition": {"Value": "New"}, "LowestPrice": {"Amount": new, "Currency": currency}})
    if used is not None:
        summaries.append({"Condition": {"Value": "Used"}, "LowestPrice": {"Amount": used, "Currency": currency}})
    raw = {
        "ASIN": asin,
        "ItemInfo": {
            "Title": {"DisplayValue": title},
            "Classifications": {
                "ProductGroup": {"DisplayValue": "Wireless"},
                "Binding": {"DisplayValue": "Electronics"},
            },
            "ByLineInfo": {"Manufacturer": {"DisplayValue": "Apple"}},
            **item_info,
        },
        "Images": {"Primary": {"Large": {"URL": f"https://m.media-amazon.com/images/I/{asin}.jpg"}}},
        "Offers": {"Listings": listings, "Summaries": summaries},
    }
    if detail_page_url == "default":
        detail_page_url = f"https://www.amazon.co.uk/dp/{asin}"
    if detail_page_url is not None:
        raw["DetailPageURL"] = detail_page_url
    return raw


def message_event(sender_id: str, text: Optional[str] = None, mid: Optional[str] = None, **message):
    body = {"mid": mid or f"mid.{uuid.uuid4().hex}", **message}
    if text is not None:
        body["text"] = text
    return {"sender": {"id": sender_id}, "recipient": {"id": "PAGE"}, "timestamp": 1, "message": body}


def postback_event(sender_id: str, payload: str, mid: Optional[str] = None):
    postback = {"payload": payload, "title": "button"}
    if mid:
        postback["mid"] = mid
    return {"sender": {"id": sender_id}, "recipient": {"id": "PAGE"}, "timestamp": 1, "postback": postback}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _create_table(resource, name, key, indexes=None):
    attributes = {key: "S"}
    params: Dict[str, Any] = {
        "TableName": name,
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        params["GlobalSecondaryIndexes"] = []
        for index_name, hash_key, range_key in indexes:
            attributes[hash_key] = "S"
            attributes[range_key] = "N"
            params["GlobalSecondaryIndexes"].append({
                "IndexName": index_name,
                "KeySchema": [
                    {"AttributeName": hash_key, "KeyType": "HASH"},
                    {"AttributeName": range_key, "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            })
    params["AttributeDefinitions"] = [
        {"AttributeName": name_, "AttributeType": type_} for name_, type_ in attributes.items()
    ]
    resource.create_table(**params)


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture
def dynamodb(aws_credentials):
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name=REGION)
        _create_table(resource, USER_TABLE, "user_id")
        _create_table(resource, PRODUCT_TABLE, "asin")
        _create_table(resource, PRICE_TABLE, "price_id")
        _create_table(resource, PRICE_ALERT_TABLE, "alert_id",
                      indexes=[(PriceAlertStore.user_index, "user_id", "created_at")])
        _create_table(resource, MESSAGE_TABLE, "message_id")
        yield resource


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def collaborators(dynamodb, fake_redis, messenger, catalog):
    return Collaborators(
        messenger=messenger,
        catalog=catalog,
        users=UserStore(USER_TABLE, REGION),
        products=ProductStore(PRODUCT_TABLE, REGION),
        prices=PriceStore(PRICE_TABLE, REGION),
        alerts=PriceAlertStore(PRICE_ALERT_TABLE, REGION),
        messages=MessageStore(MESSAGE_TABLE, REGION),
        sessions=SessionCache(fake_redis),
        translator=Translator(),
    )


@pytest.fixture
def router(collaborators, clock):
    return ConversationRouter(collaborators, clock=clock)


@pytest.fixture
def session(collaborators):
    """A provisioned English-speaking user shopping on amazon.co.uk."""
    existing = Session(
        sender_id="1001",
        object_id="user-1001",
        language="en",
        aws_locale="en_GB",
        locale="en_GB",
        first_name="Sam",
    )
    collaborators.sessions.save(existing)
    return existing
