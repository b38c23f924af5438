# db_io.py
"""
DynamoDB record stores and the Redis session cache.

Provides:
- UserRecord, Product, Price, PriceAlert, MessageRecord (DynamoDB rows)
- Session, ActiveTransaction (Redis hash per Messenger user)
- UserStore, ProductStore, PriceStore, PriceAlertStore, MessageStore
- SessionCache

Every store takes an optional table so tests can hand in a fake; by default
the table is resolved through boto3.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
import redis
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from errors import SessionCacheError, StoreError

logger = logging.getLogger("pricewatch.db_io")


def now_ts() -> int:
    return int(time.time())


def iso_timestamp(ts: Optional[float] = None) -> str:
    value = datetime.fromtimestamp(ts or time.time(), tz=timezone.utc)
    return value.isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _int_or_none(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _int_map(values: Optional[Dict[str, Any]]) -> Dict[str, Optional[int]]:
    return {key: _int_or_none(value) for key, value in (values or {}).items()}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class UserRecord:
    sender_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_pic: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[float] = None
    gender: Optional[str] = None
    language: Optional[str] = None
    user_id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=iso_timestamp)

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "UserRecord":
        timezone_offset = item.get("timezone")
        return cls(
            user_id=item["user_id"],
            sender_id=item["sender_id"],
            first_name=item.get("first_name"),
            last_name=item.get("last_name"),
            profile_pic=item.get("profile_pic"),
            locale=item.get("locale"),
            timezone=float(timezone_offset) if timezone_offset is not None else None,
            gender=item.get("gender"),
            language=item.get("language"),
            created_at=item.get("created_at", iso_timestamp()),
        )


@dataclass
class Product:
    """Catalog row; title, group, category and sales rank are kept per region."""
    asin: str
    image_url: Optional[str] = None
    ean: Optional[str] = None
    upc: Optional[str] = None
    sku: Optional[str] = None
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    title: Dict[str, str] = field(default_factory=dict)
    product_group: Dict[str, str] = field(default_factory=dict)
    category: Dict[str, str] = field(default_factory=dict)
    sales_rank: Dict[str, Optional[int]] = field(default_factory=dict)
    total_number_tracked_ctr: int = 0
    created_at: str = field(default_factory=iso_timestamp)

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Product":
        return cls(
            asin=item["asin"],
            image_url=item.get("image_url"),
            ean=item.get("ean"),
            upc=item.get("upc"),
            sku=item.get("sku"),
            model=item.get("model"),
            manufacturer=item.get("manufacturer"),
            title=dict(item.get("title") or {}),
            product_group=dict(item.get("product_group") or {}),
            category=dict(item.get("category") or {}),
            sales_rank=_int_map(item.get("sales_rank")),
            total_number_tracked_ctr=int(item.get("total_number_tracked_ctr", 0)),
            created_at=item.get("created_at", iso_timestamp()),
        )


@dataclass
class Price:
    product_id: str
    aws_locale: str
    amazon_price: Optional[int] = None
    third_party_new_price: Optional[int] = None
    third_party_used_price: Optional[int] = None
    currency_code: Optional[str] = None
    price_id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=iso_timestamp)

    def get(self, price_type: Optional[str]) -> Optional[int]:
        return {
            "amazonPrice": self.amazon_price,
            "thirdPartyNewPrice": self.third_party_new_price,
            "thirdPartyUsedPrice": self.third_party_used_price,
        }.get(price_type or "")

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Price":
        return cls(
            price_id=item["price_id"],
            product_id=item["product_id"],
            aws_locale=item["aws_locale"],
            amazon_price=_int_or_none(item.get("amazon_price")),
            third_party_new_price=_int_or_none(item.get("third_party_new_price")),
            third_party_used_price=_int_or_none(item.get("third_party_used_price")),
            currency_code=item.get("currency_code"),
            created_at=item.get("created_at", iso_timestamp()),
        )


@dataclass
class PriceAlert:
    product_id: str
    user_id: str
    aws_locale: str
    current_price_id: str
    price_when_tracked_id: str
    active: bool = False
    price_type: Optional[str] = None
    desired_price: Optional[int] = None
    alert_id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ts)
    updated_at: int = field(default_factory=now_ts)

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PriceAlert":
        return cls(
            alert_id=item["alert_id"],
            product_id=item["product_id"],
            user_id=item["user_id"],
            aws_locale=item["aws_locale"],
            current_price_id=item["current_price_id"],
            price_when_tracked_id=item["price_when_tracked_id"],
            active=bool(item.get("active", False)),
            price_type=item.get("price_type"),
            desired_price=_int_or_none(item.get("desired_price")),
            created_at=int(item.get("created_at", now_ts())),
            updated_at=int(item.get("updated_at", now_ts())),
        )


@dataclass
class MessageRecord:
    sender_id: str
    text: Optional[str]
    message_id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=iso_timestamp)

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# DynamoDB stores
# ---------------------------------------------------------------------------

def _sanitize_for_dynamo(value: Any):
    if value is None:
        return None
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        cleaned: Dict[str, Any] = {}
        for key, nested in value.items():
            sanitized = _sanitize_for_dynamo(nested)
            if sanitized is None:
                continue
            cleaned[key] = sanitized
        return cleaned
    if isinstance(value, list):
        return [item for item in (_sanitize_for_dynamo(v) for v in value) if item is not None]
    return value


class _DynamoStore:
    key_name = ""

    def __init__(self, table_name: str, region: str, table: Any = None):
        self.table_name = table_name
        self.region = region
        if table is None:
            table = boto3.resource("dynamodb", region_name=region).Table(table_name)
        self._table = table

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._table.get_item(Key={self.key_name: key})
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Dynamo get failed on %s", self.table_name)
            raise StoreError(f"get {self.table_name}/{key} failed") from exc
        return response.get("Item")

    def _put(self, item: Dict[str, Any]) -> None:
        try:
            self._table.put_item(Item=_sanitize_for_dynamo(item))
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Dynamo put failed on %s", self.table_name)
            raise StoreError(f"put {self.table_name} failed") from exc

    def _update_expression(self, key: str, expression: str, names: Dict[str, str], values: Dict[str, Any],
                           condition: Any = None) -> Optional[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "Key": {self.key_name: key},
            "UpdateExpression": expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": {name: _sanitize_for_dynamo(value) for name, value in values.items()},
            "ReturnValues": "ALL_NEW",
        }
        if condition is not None:
            params["ConditionExpression"] = condition
        try:
            response = self._table.update_item(**params)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return None
            logger.exception("Dynamo update failed on %s", self.table_name)
            raise StoreError(f"update {self.table_name}/{key} failed") from exc
        except BotoCoreError as exc:
            logger.exception("Dynamo update failed on %s", self.table_name)
            raise StoreError(f"update {self.table_name}/{key} failed") from exc
        return response.get("Attributes")

    def _update(self, key: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        # placeholders must not clash with the #n0 / :v0 ones the condition builder generates
        names = {f"#attr{i}": name for i, name in enumerate(fields)}
        values = {f":val{i}": value for i, value in enumerate(fields.values())}
        expression = "SET " + ", ".join(f"#attr{i} = :val{i}" for i in range(len(fields)))
        return self._update_expression(key, expression, names, values, condition=Attr(self.key_name).exists())


class UserStore(_DynamoStore):
    key_name = "user_id"

    def create(self, user: UserRecord) -> UserRecord:
        self._put(user.to_item())
        logger.info("New user created with id %s", user.user_id)
        return user

    def get(self, user_id: str) -> Optional[UserRecord]:
        item = self._get(user_id)
        return UserRecord.from_item(item) if item else None


class ProductStore(_DynamoStore):
    key_name = "asin"

    fixed_fields = ("image_url", "ean", "upc", "sku", "model", "manufacturer", "created_at")
    region_maps = ("title", "product_group", "category", "sales_rank")

    def get(self, asin: str) -> Optional[Product]:
        item = self._get(asin)
        return Product.from_item(item) if item else None

    def merge(self, product: Product, aws_locale: str) -> Product:
        """
        Create the product row if needed and set its entries for one region.

        Fixed fields are only written when absent and the tracked counter is
        never written here, so concurrent increment_tracked calls survive.
        """
        names: Dict[str, str] = {"#ctr": "total_number_tracked_ctr"}
        values: Dict[str, Any] = {":zero": 0, ":empty": {}}
        clauses = ["#ctr = if_not_exists(#ctr, :zero)"]
        for i, name in enumerate(self.fixed_fields):
            value = getattr(product, name)
            if value is None:
                continue
            names[f"#fix{i}"] = name
            values[f":fix{i}"] = value
            clauses.append(f"#fix{i} = if_not_exists(#fix{i}, :fix{i})")
        for i, name in enumerate(self.region_maps):
            names[f"#map{i}"] = name
            clauses.append(f"#map{i} = if_not_exists(#map{i}, :empty)")
        item = self._update_expression(product.asin, "SET " + ", ".join(clauses), names, values)

        # nested paths need their parent map, so region entries go in a second update
        names = {"#region": aws_locale}
        values = {}
        clauses = []
        for i, name in enumerate(self.region_maps):
            value = getattr(product, name).get(aws_locale)
            if value is None:
                continue
            names[f"#map{i}"] = name
            values[f":val{i}"] = value
            clauses.append(f"#map{i}.#region = :val{i}")
        if clauses:
            item = self._update_expression(product.asin, "SET " + ", ".join(clauses), names, values)
        return Product.from_item(item)

    def increment_tracked(self, asin: str) -> None:
        try:
            self._table.update_item(
                Key={"asin": asin},
                UpdateExpression="ADD total_number_tracked_ctr :one",
                ExpressionAttributeValues={":one": 1},
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Dynamo counter update failed on %s", self.table_name)
            raise StoreError(f"increment {self.table_name}/{asin} failed") from exc


class PriceStore(_DynamoStore):
    key_name = "price_id"

    def get(self, price_id: str) -> Optional[Price]:
        item = self._get(price_id)
        return Price.from_item(item) if item else None

    def save(self, price: Price) -> Price:
        self._put(price.to_item())
        return price


class PriceAlertStore(_DynamoStore):
    key_name = "alert_id"
    user_index = "user_id-created_at-index"

    def get(self, alert_id: str) -> Optional[PriceAlert]:
        item = self._get(alert_id)
        return PriceAlert.from_item(item) if item else None

    def save(self, alert: PriceAlert) -> PriceAlert:
        self._put(alert.to_item())
        return alert

    def update(self, alert_id: str, **fields: Any) -> Optional[PriceAlert]:
        fields["updated_at"] = now_ts()
        item = self._update(alert_id, fields)
        return PriceAlert.from_item(item) if item else None

    def list_active_for_user(self, user_id: str, limit: int, skip: int = 0) -> List[PriceAlert]:
        """Active alerts of a user, oldest first, with limit/skip pagination."""
        wanted = skip + limit
        items: List[Dict[str, Any]] = []
        query: Dict[str, Any] = {
            "IndexName": self.user_index,
            "KeyConditionExpression": Key("user_id").eq(user_id),
            "FilterExpression": Attr("active").eq(True),
        }
        try:
            while len(items) < wanted:
                response = self._table.query(**query)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                query["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Dynamo query failed on %s", self.table_name)
            raise StoreError(f"query {self.table_name} for user {user_id} failed") from exc
        return [PriceAlert.from_item(item) for item in items[skip:wanted]]


class MessageStore(_DynamoStore):
    key_name = "message_id"

    def put(self, sender_id: str, text: Optional[str]) -> MessageRecord:
        record = MessageRecord(sender_id=sender_id, text=text)
        self._put(record.to_item())
        return record


# ---------------------------------------------------------------------------
# Session cache
# ---------------------------------------------------------------------------

CUSTOM_PRICE_INPUT = "customPriceInput"


@dataclass
class ActiveTransaction:
    """A suspended multi-turn flow that owns the user's next free-text message."""
    alert_id: str
    item_title: str
    price_type: str
    aws_locale: str
    example_price: str = ""
    alert_created_at: Optional[int] = None
    is_update: bool = False
    kind: str = CUSTOM_PRICE_INPUT


_TRANSACTION_FIELDS = {
    "kind": "transaction",
    "example_price": "customPriceInputExamplePrice",
    "item_title": "incompletePriceAlertItemTitle",
    "alert_id": "incompletePriceAlertId",
    "alert_created_at": "incompletePriceAlertCreatedAt",
    "price_type": "incompletePriceAlertPriceType",
    "aws_locale": "incompletePriceAlertAwsLocale",
    "is_update": "incompletePriceAlertIsUpdate",
}

_SESSION_FIELDS = {
    "object_id": "objectId",
    "first_name": "firstName",
    "locale": "locale",
    "language": "language",
    "aws_locale": "awsLocale",
}


@dataclass
class Session:
    sender_id: str
    object_id: str
    language: str
    aws_locale: str
    locale: Optional[str] = None
    first_name: Optional[str] = None
    transaction: Optional[ActiveTransaction] = None

    def to_hash(self) -> Dict[str, str]:
        data = {redis_key: getattr(self, attr) for attr, redis_key in _SESSION_FIELDS.items()}
        if self.transaction is not None:
            data.update(_transaction_to_hash(self.transaction))
        return {key: str(value) for key, value in data.items() if value is not None}

    @classmethod
    def from_hash(cls, sender_id: str, data: Dict[str, str]) -> "Session":
        return cls(
            sender_id=sender_id,
            object_id=data.get("objectId", ""),
            language=data.get("language", "en"),
            aws_locale=data.get("awsLocale", ""),
            locale=data.get("locale"),
            first_name=data.get("firstName"),
            transaction=_transaction_from_hash(data),
        )


def _transaction_to_hash(transaction: ActiveTransaction) -> Dict[str, str]:
    data: Dict[str, str] = {}
    for attr, redis_key in _TRANSACTION_FIELDS.items():
        value = getattr(transaction, attr)
        if value is None:
            continue
        if isinstance(value, bool):
            value = "1" if value else "0"
        data[redis_key] = str(value)
    return data


def _transaction_from_hash(data: Dict[str, str]) -> Optional[ActiveTransaction]:
    if not data.get("transaction") or not data.get("incompletePriceAlertId"):
        return None
    created_at = data.get("incompletePriceAlertCreatedAt")
    return ActiveTransaction(
        kind=data["transaction"],
        alert_id=data["incompletePriceAlertId"],
        item_title=data.get("incompletePriceAlertItemTitle", ""),
        price_type=data.get("incompletePriceAlertPriceType", ""),
        aws_locale=data.get("incompletePriceAlertAwsLocale", ""),
        example_price=data.get("customPriceInputExamplePrice", ""),
        alert_created_at=int(created_at) if created_at else None,
        is_update=data.get("incompletePriceAlertIsUpdate") == "1",
    )


class SessionCache:
    """Redis hash ``user:<sender id>`` per Messenger user; entries never expire."""

    key_prefix = "user:"
    event_prefix = "event:"
    event_ttl_seconds = 24 * 60 * 60

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "SessionCache":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=timeout,
                                      socket_connect_timeout=timeout)
        return cls(client)

    def _key(self, sender_id: str) -> str:
        return f"{self.key_prefix}{sender_id}"

    def get(self, sender_id: str) -> Optional[Session]:
        try:
            data = self._client.hgetall(self._key(sender_id))
        except redis.RedisError as exc:
            raise SessionCacheError(f"hgetall for {sender_id} failed: {exc}") from exc
        return Session.from_hash(sender_id, data) if data else None

    def exists(self, sender_id: str) -> bool:
        try:
            return bool(self._client.exists(self._key(sender_id)))
        except redis.RedisError as exc:
            raise SessionCacheError(f"exists for {sender_id} failed: {exc}") from exc

    def save(self, session: Session) -> None:
        try:
            self._client.hset(self._key(session.sender_id), mapping=session.to_hash())
            if session.transaction is None:
                self._client.hdel(self._key(session.sender_id), *_TRANSACTION_FIELDS.values())
        except redis.RedisError as exc:
            raise SessionCacheError(f"hset for {session.sender_id} failed: {exc}") from exc
        logger.debug("Saved session for user %s", session.sender_id)

    def set_transaction(self, session: Session, transaction: ActiveTransaction) -> None:
        session.transaction = transaction
        try:
            # fields left unset by this transaction must not survive from an earlier one
            self._client.hdel(self._key(session.sender_id), *_TRANSACTION_FIELDS.values())
            self._client.hset(self._key(session.sender_id), mapping=_transaction_to_hash(transaction))
        except redis.RedisError as exc:
            raise SessionCacheError(f"hset for {session.sender_id} failed: {exc}") from exc

    def clear_transaction(self, session: Session) -> None:
        session.transaction = None
        try:
            self._client.hdel(self._key(session.sender_id), *_TRANSACTION_FIELDS.values())
        except redis.RedisError as exc:
            raise SessionCacheError(f"hdel for {session.sender_id} failed: {exc}") from exc

    def update_settings(self, session: Session, **fields: str) -> None:
        mapping = {}
        for attr, value in fields.items():
            setattr(session, attr, value)
            mapping[_SESSION_FIELDS[attr]] = value
        try:
            self._client.hset(self._key(session.sender_id), mapping=mapping)
        except redis.RedisError as exc:
            raise SessionCacheError(f"hset for {session.sender_id} failed: {exc}") from exc

    def claim_event(self, event_id: str) -> bool:
        """True the first time an event id is seen; False for a redelivery."""
        try:
            claimed = self._client.set(f"{self.event_prefix}{event_id}", "1", nx=True, ex=self.event_ttl_seconds)
        except redis.RedisError as exc:
            raise SessionCacheError(f"claim for event {event_id} failed: {exc}") from exc
        return bool(claimed)
