# intents.py
"""
Postback payloads.

Every button the bot sends carries a JSON envelope ``{"intent": ..., "entities": {...}}``.
Each intent is its own pydantic model, and the models form a discriminated
union on ``intent``, so an unknown intent or a malformed entity bag is
rejected at decode time instead of falling through a string switch.
"""
from __future__ import annotations

import json
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from config import POSTBACK_PAYLOAD_LIMIT, POSTBACK_VALIDITY_SECONDS
from errors import InvalidPayloadError, PayloadTooLargeError
from pricing import Item

PriceType = Literal["amazonPrice", "thirdPartyNewPrice", "thirdPartyUsedPrice"]

PAYLOAD_TITLE_LIMIT = 100


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CompactItem(WireModel):
    """The slice of an Item that follow-up intents need."""
    asin: str
    title: str
    price: Dict[str, int] = Field(default_factory=dict)
    currency_code: Optional[str] = None

    @classmethod
    def from_item(cls, item: Item) -> "CompactItem":
        return cls(
            asin=item.asin,
            title=(item.title or "")[:PAYLOAD_TITLE_LIMIT],
            price=item.price.as_dict(),
            currency_code=item.currency_code,
        )


class NoEntities(WireModel):
    pass


class PageEntities(WireModel):
    page_number: int = Field(default=1, ge=1)


class ItemEntities(WireModel):
    item: CompactItem
    aws_locale: str
    valid_from: Optional[int] = None


class SetPriceTypeEntities(WireModel):
    item: CompactItem
    price_type: PriceType
    price_alert_id: str
    valid_from: Optional[int] = None


class SetDesiredPriceEntities(WireModel):
    desired_price: int = Field(default=0, ge=0)
    custom_price_input: bool = False
    custom_price_input_example_price: Optional[str] = None
    item_title: str = ""
    price_alert_id: str
    price_alert_created_at: Optional[int] = None
    price_alert_aws_locale: Optional[str] = None
    price_type: PriceType
    is_update: bool = False
    valid_from: Optional[int] = None


class PriceAlertEntities(WireModel):
    price_alert_id: str


class ChangeDesiredPriceEntities(WireModel):
    asin: str
    price_alert_id: str
    price_alert_aws_locale: str


class ChangeSettingEntities(WireModel):
    setting: Literal["awsLocale", "language"]
    aws_locale: Optional[str] = None
    language: Optional[str] = None


class RetainLanguageEntities(WireModel):
    language_new: str


class RevertLanguageEntities(WireModel):
    language_old: str


class SearchProduct(WireModel):
    intent: Literal["searchProduct"] = "searchProduct"
    entities: NoEntities = Field(default_factory=NoEntities)


class ShowHelpInstructions(WireModel):
    intent: Literal["showHelpInstructions"] = "showHelpInstructions"
    entities: NoEntities = Field(default_factory=NoEntities)


class ShowSettings(WireModel):
    intent: Literal["showSettings", "changeSettings"] = "showSettings"
    entities: NoEntities = Field(default_factory=NoEntities)


class ListPriceWatches(WireModel):
    intent: Literal["listPriceWatches"] = "listPriceWatches"
    entities: PageEntities = Field(default_factory=PageEntities)


class ShowProductDetails(WireModel):
    intent: Literal["showProductDetails"] = "showProductDetails"
    entities: ItemEntities


class ActivatePriceAlert(WireModel):
    intent: Literal["activatePriceAlert"] = "activatePriceAlert"
    entities: ItemEntities


class SetPriceType(WireModel):
    intent: Literal["setPriceType"] = "setPriceType"
    entities: SetPriceTypeEntities


class SetDesiredPrice(WireModel):
    intent: Literal["setDesiredPrice"] = "setDesiredPrice"
    entities: SetDesiredPriceEntities


class DisactivatePriceAlert(WireModel):
    intent: Literal["disactivatePriceAlert"] = "disactivatePriceAlert"
    entities: PriceAlertEntities


class ChangeDesiredPrice(WireModel):
    intent: Literal["changeDesiredPrice"] = "changeDesiredPrice"
    entities: ChangeDesiredPriceEntities


class ChangeSetting(WireModel):
    intent: Literal["changeSetting"] = "changeSetting"
    entities: ChangeSettingEntities


class RetainLanguageSettings(WireModel):
    intent: Literal["retainLanguageSettings"] = "retainLanguageSettings"
    entities: RetainLanguageEntities


class RevertLanguageSettings(WireModel):
    intent: Literal["revertLanguageSettings"] = "revertLanguageSettings"
    entities: RevertLanguageEntities


Postback = Annotated[
    Union[
        SearchProduct,
        ShowHelpInstructions,
        ShowSettings,
        ListPriceWatches,
        ShowProductDetails,
        ActivatePriceAlert,
        SetPriceType,
        SetDesiredPrice,
        DisactivatePriceAlert,
        ChangeDesiredPrice,
        ChangeSetting,
        RetainLanguageSettings,
        RevertLanguageSettings,
    ],
    Field(discriminator="intent"),
]

_postback_adapter = TypeAdapter(Postback)


def encode_payload(postback: WireModel) -> str:
    payload = postback.model_dump_json(by_alias=True, exclude_none=True)
    if len(payload) > POSTBACK_PAYLOAD_LIMIT:
        raise PayloadTooLargeError(
            f"{postback.intent} payload is {len(payload)} characters, limit is {POSTBACK_PAYLOAD_LIMIT}"
        )
    return payload


def decode_payload(raw: Optional[str]):
    if not raw:
        raise InvalidPayloadError("empty postback payload")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidPayloadError(f"postback payload is not JSON: {exc}") from exc
    try:
        return _postback_adapter.validate_python(data)
    except ValidationError as exc:
        raise InvalidPayloadError(f"unrecognised postback payload: {exc.error_count()} error(s)") from exc


def is_stale(valid_from: Optional[int], now: float, window: int = POSTBACK_VALIDITY_SECONDS) -> bool:
    """A payload is stale once strictly more than ``window`` seconds have passed."""
    if valid_from is None:
        return False
    return now - valid_from > window
