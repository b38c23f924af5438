import json

import pytest

from errors import InvalidPayloadError, PayloadTooLargeError
from intents import (
    ActivatePriceAlert,
    CompactItem,
    ItemEntities,
    ListPriceWatches,
    SetDesiredPrice,
    SetDesiredPriceEntities,
    ShowSettings,
    decode_payload,
    encode_payload,
    is_stale,
)
from pricing import Item, ItemPrice

NOW = 1_700_000_000


def _item(title="Kindle Paperwhite"):
    return Item(
        asin="B00KINDLE1",
        title=title,
        detail_page_url="https://www.amazon.de/dp/B00KINDLE1",
        currency_code="EUR",
        price=ItemPrice(amazon_price=11999, third_party_used_price=8950),
    )


def test_encoded_payload_uses_camel_case_wire_names():
    intent = ActivatePriceAlert(entities=ItemEntities(
        item=CompactItem.from_item(_item()), aws_locale="de_DE", valid_from=NOW,
    ))
    wire = json.loads(encode_payload(intent))

    assert wire == {
        "intent": "activatePriceAlert",
        "entities": {
            "item": {
                "asin": "B00KINDLE1",
                "title": "Kindle Paperwhite",
                "price": {"amazonPrice": 11999, "thirdPartyUsedPrice": 8950},
                "currencyCode": "EUR",
            },
            "awsLocale": "de_DE",
            "validFrom": NOW,
        },
    }


def test_decode_returns_typed_intent():
    intent = decode_payload(json.dumps({
        "intent": "setDesiredPrice",
        "entities": {
            "desiredPrice": 1066,
            "itemTitle": "Kindle Paperwhite",
            "priceAlertId": "a1",
            "priceType": "amazonPrice",
            "validFrom": NOW,
        },
    }))

    assert isinstance(intent, SetDesiredPrice)
    assert intent.entities.desired_price == 1066
    assert intent.entities.custom_price_input is False
    assert intent.entities.is_update is False
    assert intent.entities.valid_from == NOW


def test_change_settings_is_an_alias_of_show_settings():
    intent = decode_payload('{"intent": "changeSettings", "entities": {}}')
    assert isinstance(intent, ShowSettings)


def test_list_price_watches_defaults_to_first_page():
    intent = decode_payload('{"intent": "listPriceWatches", "entities": {}}')
    assert isinstance(intent, ListPriceWatches)
    assert intent.entities.page_number == 1


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "not json",
        '{"intent": "orderPizza", "entities": {}}',
        '{"entities": {}}',
        '{"intent": "setPriceType", "entities": {"priceType": "amazonPrice"}}',
        '{"intent": "setDesiredPrice", "entities": {"desiredPrice": -1, "priceAlertId": "a", "priceType": "amazonPrice"}}',
        '{"intent": "listPriceWatches", "entities": {"pageNumber": 0}}',
    ],
)
def test_decode_rejects_unknown_or_malformed_payloads(raw):
    with pytest.raises(InvalidPayloadError):
        decode_payload(raw)


def test_compact_item_truncates_long_titles():
    compact = CompactItem.from_item(_item(title="x" * 400))
    assert len(compact.title) == 100


def test_encode_rejects_payloads_over_the_platform_limit():
    intent = SetDesiredPrice(entities=SetDesiredPriceEntities(
        item_title="y" * 1200, price_alert_id="a1", price_type="amazonPrice",
    ))
    with pytest.raises(PayloadTooLargeError):
        encode_payload(intent)


@pytest.mark.parametrize(
    "age,stale",
    [
        (0, False),
        (4 * 60 + 59, False),
        (5 * 60, False),
        (5 * 60 + 1, True),
    ],
)
def test_staleness_boundary(age, stale):
    assert is_stale(NOW - age, NOW) is stale


def test_payload_without_timestamp_never_goes_stale():
    assert is_stale(None, NOW) is False
