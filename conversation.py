# conversation.py
"""
Per-user conversation state machine.

One ConversationRouter handles every Messenger event (optin, message,
delivery, postback). A user is either idle, where free text is matched
against the command grammar and otherwise treated as a product search, or
inside a custom price input transaction, where free text is parsed as a
price until a suggestion is picked.

Collaborators are handed in as one bundle so tests can swap in fakes.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from catalog_client import CatalogClient
from config import DEFAULT_LANGUAGE, PRICE_WATCHES_PAGE_SIZE, SUPPORTED_AWS_LOCALES, currency_format_for
from db_io import (
    ActiveTransaction,
    MessageStore,
    Price,
    PriceAlert,
    PriceAlertStore,
    PriceStore,
    Product,
    ProductStore,
    Session,
    SessionCache,
    UserRecord,
    UserStore,
)
from errors import CatalogError, CollaboratorError, InvalidPayloadError, MessengerError, SessionCacheError
from intents import (
    ActivatePriceAlert,
    ChangeDesiredPrice,
    ChangeDesiredPriceEntities,
    ChangeSetting,
    ChangeSettingEntities,
    CompactItem,
    DisactivatePriceAlert,
    ItemEntities,
    ListPriceWatches,
    NoEntities,
    PageEntities,
    PriceAlertEntities,
    RetainLanguageEntities,
    RetainLanguageSettings,
    RevertLanguageEntities,
    RevertLanguageSettings,
    SearchProduct,
    SetDesiredPrice,
    SetDesiredPriceEntities,
    SetPriceType,
    SetPriceTypeEntities,
    ShowHelpInstructions,
    ShowProductDetails,
    ShowSettings,
    decode_payload,
    encode_payload,
    is_stale,
)
from language_packs import Translator, supported_countries, supported_languages
from messenger_messaging import (
    MAX_BUTTONS,
    MessengerClient,
    generic_element,
    postback_button,
    truncate,
    web_url_button,
)
from pricing import (
    Item,
    calculate_desired_price_examples,
    format_price,
    normalize_search_result,
    parse_custom_price_input,
)

logger = logging.getLogger("pricewatch.conversation")

# ---------------------------------------------------------------------------
# Source strings
# ---------------------------------------------------------------------------

WELCOME_TEXT = (
    "Hi there, let’s get started. I’ll alert you when prices drop on Amazon. If you get lost, just type help. "
    "Or, use a few words to tell me what product you are searching for. For example, you could type "
    "“iPhone 6”, “Kindle Paperwhite” or “Xbox One”."
)
HELP_TEXT = (
    "Lost? Use a few words to tell me what product you are searching for. For example, you could type "
    "“iPhone 6”, “Kindle Paperwhite” or “Xbox One”. Or, just type one of the words below:\n\n"
    "  • list - to show your price watches\n  • settings - to see your settings"
)
SEARCH_PROMPT_TEXT = (
    "What’re you searching for? Use a few words to tell me what product you are searching for. "
    "For example, you could type “iPhone 6” or “Kindle Paperwhite”."
)
NO_PRICE_WATCHES_TEXT = (
    "You haven't created any price watches yet. Use a few words to tell me what product you are searching "
    "for. For example, you could type “iPhone 6” or “Kindle Paperwhite”"
)
FIRST_PAGE_HEADER = (
    "Here're your price watches. I'll send you an alert when the current price for any of the products "
    "you are watching falls below your desired price.\n\nPrice watches %s to %s:"
)
NEXT_PAGE_HEADER = "Price watches %s to %s:"
SETTINGS_TEXT = (
    "You're wondering about your settings?\n\nAmazon Shop: %s\nLanguage: %s\n\n"
    "To change any setting, just pick an option below:"
)
SHOP_CHANGED_TEXT = (
    "Great. You have changed the Amazon shop to %s. If you're now searching for a product, I search for you "
    "the Amazon shop %s. To reverse this setting, just type settings."
)
LANGUAGE_RETAINED_TEXT = (
    "Ok! From now on the only language I understand is %s. If you want to revert this setting, "
    "just type settings."
)
STALE_TEXT = "Price and availability information for this product may have changed."
ERROR_TEXT = "Something went wrong. Please try again in a moment."
UNSUPPORTED_REGION_TEXT = "I'm sorry, but I'm not yet available in your country."

PRICE_TYPE_BUTTON_TITLES = {
    "amazonPrice": "Amazon",
    "thirdPartyNewPrice": "3rd Party New",
    "thirdPartyUsedPrice": "3rd Party Used",
}
PRICE_TYPE_TITLES = {
    "amazonPrice": "Amazon price",
    "thirdPartyNewPrice": "3rd Party New price",
    "thirdPartyUsedPrice": "3rd Party Used price",
}
DESIRED_PRICE_LABELS = ("-0.01", "-3%", "-5%", "-7%", "-10%")

GREETING_KEYWORDS = ("hi", "hello", "menu")
ITEM_TITLE_LIMIT = 250
DETAILS_TITLE_LIMIT = 317

_WORD = re.compile(r"\w+")


def _first_word(text: str) -> str:
    match = _WORD.match(text)
    return match.group(0) if match else ""


@dataclass
class Collaborators:
    messenger: MessengerClient
    catalog: CatalogClient
    users: UserStore
    products: ProductStore
    prices: PriceStore
    alerts: PriceAlertStore
    messages: MessageStore
    sessions: SessionCache
    translator: Translator = field(default_factory=Translator)
    cloud_image_io_token: Optional[str] = None


class KeyedLock:
    """A mutex per key; entries are dropped once nobody holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class ConversationRouter:
    def __init__(self, collaborators: Collaborators, clock: Callable[[], float] = time.time):
        self.collaborators = collaborators
        self.clock = clock
        self.locks = KeyedLock()
        self._postback_handlers = {
            SearchProduct: self.prompt_search,
            ShowHelpInstructions: self.show_help,
            ShowSettings: self.show_settings,
            ListPriceWatches: self.list_price_watches,
            ShowProductDetails: self.show_product_details,
            ActivatePriceAlert: self.activate_price_alert,
            SetPriceType: self.set_price_type,
            SetDesiredPrice: self.set_desired_price,
            DisactivatePriceAlert: self.disactivate_price_alert,
            ChangeDesiredPrice: self.change_desired_price,
            ChangeSetting: self.change_setting,
            RetainLanguageSettings: self.retain_language_settings,
            RevertLanguageSettings: self.revert_language_settings,
        }

    # -----------------------------------------------------------------------
    # Event dispatch
    # -----------------------------------------------------------------------

    def handle_event(self, event: Dict[str, Any]) -> None:
        sender_id = (event.get("sender") or {}).get("id")
        if not sender_id:
            logger.warning("Messaging event without sender: %s", event)
            return
        with self.locks.hold(sender_id):
            try:
                if "optin" in event:
                    self.received_authentication(sender_id, event)
                elif "message" in event:
                    self.received_message(sender_id, event["message"])
                elif "delivery" in event:
                    self.received_delivery_confirmation(sender_id, event["delivery"])
                elif "postback" in event:
                    self.received_postback(sender_id, event["postback"])
                else:
                    logger.info("Webhook received unknown messaging event from %s", sender_id)
            except InvalidPayloadError as exc:
                logger.warning("Dropping postback from %s: %s", sender_id, exc)
            except CollaboratorError:
                logger.exception("Collaborator failure while handling event from %s", sender_id)
                self._send_error_reply(sender_id)

    def received_authentication(self, sender_id: str, event: Dict[str, Any]) -> None:
        logger.info("Received authentication for user %s with pass through param %r",
                    sender_id, (event.get("optin") or {}).get("ref"))
        session = self.collaborators.sessions.get(sender_id)
        language = session.language if session else DEFAULT_LANGUAGE
        self._send_text(sender_id, self._gettext(language, WELCOME_TEXT))

    def received_delivery_confirmation(self, sender_id: str, delivery: Dict[str, Any]) -> None:
        for mid in delivery.get("mids") or []:
            logger.debug("Received delivery confirmation for message %s", mid)
        logger.debug("All messages to %s before %s were delivered", sender_id, delivery.get("watermark"))

    def received_message(self, sender_id: str, message: Dict[str, Any]) -> None:
        if message.get("is_echo"):
            return
        if not self._claim(sender_id, message.get("mid")):
            return
        text = message.get("text")
        self.collaborators.messages.put(sender_id, text)

        session = self.collaborators.sessions.get(sender_id)
        if session is None:
            session = self.provision_user(sender_id)
        _ = self._translator(session)

        normalized = text.strip().lower() if text else ""
        if session.aws_locale not in SUPPORTED_AWS_LOCALES and not normalized.startswith(_("settings")):
            self._send_text(sender_id, _(UNSUPPORTED_REGION_TEXT))
            return
        if not normalized:
            self._send_text(sender_id, _("Sorry, I can only understand text messages."))
            return

        if session.transaction is not None:
            self.handle_custom_price_input(session, normalized)
            return

        if normalized.startswith(_("help")):
            self.show_help(session)
        elif normalized.startswith(_("list")):
            self.list_price_watches(session)
        elif _first_word(normalized) in {_(keyword) for keyword in GREETING_KEYWORDS}:
            self.show_menu(session)
        elif normalized.startswith(_("settings")):
            self.show_settings(session)
        else:
            self.search(session, text.strip())

    def received_postback(self, sender_id: str, postback: Dict[str, Any]) -> None:
        if not self._claim(sender_id, postback.get("mid")):
            return
        session = self.collaborators.sessions.get(sender_id)
        if session is None:
            logger.warning("Postback from unknown user %s ignored", sender_id)
            return
        intent = decode_payload(postback.get("payload"))
        logger.info("Received postback %s from %s", intent.intent, sender_id)

        if is_stale(getattr(intent.entities, "valid_from", None), self.clock()):
            self._send_text(sender_id, self._gettext(session.language, STALE_TEXT))
            return
        handler = self._postback_handlers[type(intent)]
        if isinstance(intent.entities, NoEntities):
            handler(session)
        else:
            handler(session, intent.entities)

    def provision_user(self, sender_id: str) -> Session:
        """Sign up a first-time user from their Messenger profile and open a session."""
        profile = self.collaborators.messenger.get_user_profile(sender_id)
        locale = profile.get("locale") or "en_US"
        language = locale.split("_")[0]
        user = self.collaborators.users.create(UserRecord(
            sender_id=sender_id,
            first_name=profile.get("first_name"),
            last_name=profile.get("last_name"),
            profile_pic=profile.get("profile_pic"),
            locale=locale,
            timezone=profile.get("timezone"),
            gender=profile.get("gender"),
            language=language,
        ))
        session = Session(
            sender_id=sender_id,
            object_id=user.user_id,
            language=language,
            aws_locale=locale,
            locale=locale,
            first_name=user.first_name,
        )
        self.collaborators.sessions.save(session)
        logger.info("Provisioned session for user %s (%s)", sender_id, locale)
        return session

    # -----------------------------------------------------------------------
    # Text commands
    # -----------------------------------------------------------------------

    def prompt_search(self, session: Session) -> None:
        self._send_text(session.sender_id, self._gettext(session.language, SEARCH_PROMPT_TEXT))

    def show_help(self, session: Session) -> None:
        self._send_text(session.sender_id, self._gettext(session.language, HELP_TEXT))

    def show_menu(self, session: Session) -> None:
        _ = self._translator(session)
        self.collaborators.messenger.send_button_template(
            session.sender_id,
            _("Pick an option below to get going"),
            [self._search_button(_), self._list_button(_), self._help_button(_)],
        )
        self._send_text(session.sender_id, _("Hi there, let’s get started."))

    def show_settings(self, session: Session) -> None:
        _ = self._translator(session)
        translator = self.collaborators.translator
        text = _(SETTINGS_TEXT) % (
            translator.country_name(session.language, session.aws_locale),
            translator.language_name(session.language, session.language),
        )
        self.collaborators.messenger.send_button_template(session.sender_id, text, [
            postback_button(_("Change Amazon Shop"),
                            encode_payload(ChangeSetting(entities=ChangeSettingEntities(setting="awsLocale")))),
            postback_button(_("Change Language"),
                            encode_payload(ChangeSetting(entities=ChangeSettingEntities(setting="language")))),
        ])

    def search(self, session: Session, keywords: str) -> None:
        _ = self._translator(session)
        try:
            raw_items = self.collaborators.catalog.search(keywords, session.aws_locale)
        except CatalogError as exc:
            logger.warning("Search for %r failed: %s", keywords, exc)
            raw_items = []

        now = int(self.clock())
        elements = [
            self._search_result_element(session, item, now)
            for item in (normalize_search_result(raw) for raw in raw_items)
            if item.is_display_eligible
        ]
        if not elements:
            self.collaborators.messenger.send_button_template(
                session.sender_id,
                _("Try again or pick one of the options below:"),
                [self._search_button(_), self._help_button(_)],
            )
            self._send_text(session.sender_id, _("Not sure I understand what you're searching for."))
            return

        self._send_text(session.sender_id, _("Search results for \"%s\"") % keywords)
        self.collaborators.messenger.send_generic_template(session.sender_id, elements)

    def handle_custom_price_input(self, session: Session, text: str) -> None:
        _ = self._translator(session)
        transaction = session.transaction
        precision = currency_format_for(transaction.aws_locale).precision
        candidates = parse_custom_price_input(text, precision=precision)
        if not candidates:
            self._send_text(
                session.sender_id,
                _("The price must be a number greater than or equal to zero. For example, you could type %s")
                % transaction.example_price,
            )
            return

        now = int(self.clock())
        buttons = []
        for candidate in candidates[:MAX_BUTTONS]:
            entities = SetDesiredPriceEntities(
                desired_price=candidate,
                item_title=transaction.item_title,
                price_alert_id=transaction.alert_id,
                price_alert_created_at=transaction.alert_created_at,
                price_alert_aws_locale=transaction.aws_locale,
                price_type=transaction.price_type,
                is_update=transaction.is_update,
                valid_from=now,
            )
            buttons.append(postback_button(format_price(candidate, transaction.aws_locale),
                                           encode_payload(SetDesiredPrice(entities=entities))))
        self.collaborators.messenger.send_button_template(
            session.sender_id, _("Pick one of the options below or try again to enter a valid price"), buttons
        )

    # -----------------------------------------------------------------------
    # Price watches
    # -----------------------------------------------------------------------

    def show_product_details(self, session: Session, entities: ItemEntities) -> None:
        _ = self._translator(session)
        item = self._lookup(entities.item.asin, entities.aws_locale)
        if item is None or not item.is_display_eligible:
            self._send_text(session.sender_id, _(STALE_TEXT))
            return

        lines = [truncate(item.title, DETAILS_TITLE_LIMIT)]
        if item.manufacturer:
            lines.append(_("Manufacturer: %s") % item.manufacturer)
        if item.model:
            lines.append(_("Model: %s") % item.model)
        if item.sales_rank is not None:
            lines.append(_("Sales rank: %s") % item.sales_rank)
        self._send_text(session.sender_id, "\n".join(lines))

        fresh = ItemEntities(item=CompactItem.from_item(item), aws_locale=entities.aws_locale,
                             valid_from=int(self.clock()))
        self.collaborators.messenger.send_button_template(session.sender_id, _("What next?"), [
            postback_button(_("Create price watch"), encode_payload(ActivatePriceAlert(entities=fresh))),
            web_url_button(_("Go to Website"), item.detail_page_url),
        ])

    def activate_price_alert(self, session: Session, entities: ItemEntities) -> None:
        _ = self._translator(session)
        aws_locale = entities.aws_locale
        item = self._lookup(entities.item.asin, aws_locale)
        if item is None or not item.price.any_available:
            self._send_text(session.sender_id, _(STALE_TEXT))
            return

        title = item.title or entities.item.title
        self._send_text(session.sender_id, _("Create price watch for \"%s\"") % truncate(title, ITEM_TITLE_LIMIT))

        product = self._upsert_product(item, aws_locale)
        price = self.collaborators.prices.save(Price(
            product_id=product.asin,
            aws_locale=aws_locale,
            amazon_price=item.price.amazon_price,
            third_party_new_price=item.price.third_party_new_price,
            third_party_used_price=item.price.third_party_used_price,
            currency_code=item.currency_code,
        ))
        alert = self.collaborators.alerts.save(PriceAlert(
            product_id=product.asin,
            user_id=session.object_id,
            aws_locale=aws_locale,
            current_price_id=price.price_id,
            price_when_tracked_id=price.price_id,
            created_at=int(self.clock()),
        ))
        logger.info("Created inactive price alert %s for user %s", alert.alert_id, session.sender_id)

        compact = CompactItem.from_item(item)
        buttons = [
            postback_button(
                _(PRICE_TYPE_BUTTON_TITLES[price_type]),
                encode_payload(SetPriceType(entities=SetPriceTypeEntities(
                    item=compact, price_type=price_type, price_alert_id=alert.alert_id, valid_from=alert.created_at,
                ))),
            )
            for price_type in compact.price
        ]
        self.collaborators.messenger.send_generic_template(session.sender_id, [
            generic_element(_("Set price type"), _("What price type do you want to track?"), buttons),
        ])

    def set_price_type(self, session: Session, entities: SetPriceTypeEntities) -> None:
        _ = self._translator(session)
        alert = self._owned_alert(session, entities.price_alert_id)
        if alert is None:
            return
        price = entities.item.price.get(entities.price_type)
        if price is None:
            logger.warning("Price type %s not offered for %s", entities.price_type, entities.item.asin)
            self._send_text(session.sender_id, _(STALE_TEXT))
            return

        alert = self.collaborators.alerts.update(alert.alert_id, price_type=entities.price_type)
        if alert is None:
            return
        currency_key = entities.item.currency_code or alert.aws_locale
        self._send_text(
            session.sender_id,
            _("The current %s for this item is %s") % (
                _(PRICE_TYPE_TITLES[entities.price_type]), format_price(price, currency_key),
            ),
        )
        self._send_desired_price_cards(session, entities.item.title, price, currency_key, alert,
                                       valid_from=alert.created_at, is_update=False)

    def set_desired_price(self, session: Session, entities: SetDesiredPriceEntities) -> None:
        _ = self._translator(session)
        if entities.custom_price_input:
            transaction = ActiveTransaction(
                alert_id=entities.price_alert_id,
                item_title=entities.item_title,
                price_type=entities.price_type,
                aws_locale=entities.price_alert_aws_locale or session.aws_locale,
                example_price=entities.custom_price_input_example_price or "",
                alert_created_at=entities.price_alert_created_at,
                is_update=entities.is_update,
            )
            self.collaborators.sessions.set_transaction(session, transaction)
            self._send_text(
                session.sender_id,
                _("Enter a valid price. For example, you could type %s") % transaction.example_price,
            )
            return

        alert = self._owned_alert(session, entities.price_alert_id)
        if alert is None:
            return
        was_active = alert.active
        self.collaborators.alerts.update(alert.alert_id, desired_price=entities.desired_price, active=True)
        if session.transaction is not None:
            self.collaborators.sessions.clear_transaction(session)

        if entities.is_update:
            self._send_text(session.sender_id, _("Price watch updated."))
            return
        self._send_text(
            session.sender_id,
            _("You have tracked the %s for \"%s\"") % (
                _(PRICE_TYPE_TITLES[entities.price_type]), truncate(entities.item_title, ITEM_TITLE_LIMIT),
            ),
        )
        if not was_active:
            self.collaborators.products.increment_tracked(alert.product_id)

    def disactivate_price_alert(self, session: Session, entities: PriceAlertEntities) -> None:
        alert = self._owned_alert(session, entities.price_alert_id)
        if alert is None:
            return
        self.collaborators.alerts.update(alert.alert_id, active=False)
        logger.info("Price alert %s deactivated by %s", alert.alert_id, session.sender_id)
        self._send_text(session.sender_id, self._gettext(session.language, "Price watch deleted."))

    def change_desired_price(self, session: Session, entities: ChangeDesiredPriceEntities) -> None:
        _ = self._translator(session)
        alert = self._owned_alert(session, entities.price_alert_id)
        if alert is None:
            return
        item = self._lookup(entities.asin, entities.price_alert_aws_locale)
        price = item.price.get(alert.price_type) if item is not None and alert.price_type else None
        if price is None:
            self._send_text(session.sender_id, _(STALE_TEXT))
            return
        self._send_desired_price_cards(session, item.title or "", price, item.currency_code or alert.aws_locale,
                                       alert, valid_from=None, is_update=True)

    def list_price_watches(self, session: Session, entities: Optional[PageEntities] = None) -> None:
        _ = self._translator(session)
        page_number = entities.page_number if entities is not None else 1
        page_size = PRICE_WATCHES_PAGE_SIZE
        skip = (page_number - 1) * page_size
        # one extra row tells whether another page exists
        alerts = self.collaborators.alerts.list_active_for_user(session.object_id, limit=page_size + 1, skip=skip)
        if not alerts:
            self._send_text(session.sender_id, _(NO_PRICE_WATCHES_TEXT))
            return

        has_more = len(alerts) > page_size
        shown = alerts[:page_size]
        header = _(FIRST_PAGE_HEADER) if page_number == 1 else _(NEXT_PAGE_HEADER)
        self._send_text(session.sender_id, header % (skip + 1, skip + len(shown)))

        elements = []
        for index, alert in enumerate(shown):
            buttons = [
                postback_button(_("Change desired price"), encode_payload(ChangeDesiredPrice(
                    entities=ChangeDesiredPriceEntities(
                        asin=alert.product_id, price_alert_id=alert.alert_id,
                        price_alert_aws_locale=alert.aws_locale,
                    ),
                ))),
                postback_button(_("Delete price watch"), encode_payload(DisactivatePriceAlert(
                    entities=PriceAlertEntities(price_alert_id=alert.alert_id),
                ))),
            ]
            if has_more and index == page_size - 1:
                buttons.append(postback_button(_("More price watches"), encode_payload(ListPriceWatches(
                    entities=PageEntities(page_number=page_number + 1),
                ))))
            elements.append(self._price_watch_element(session, alert, buttons))
        self.collaborators.messenger.send_generic_template(session.sender_id, elements)

    # -----------------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------------

    def change_setting(self, session: Session, entities: ChangeSettingEntities) -> None:
        if entities.setting == "awsLocale":
            self._change_aws_locale(session, entities.aws_locale)
        else:
            self._change_language(session, entities.language)

    def _change_aws_locale(self, session: Session, aws_locale: Optional[str]) -> None:
        _ = self._translator(session)
        if aws_locale not in SUPPORTED_AWS_LOCALES:
            if aws_locale is not None:
                logger.warning("Ignoring unsupported Amazon shop %r", aws_locale)
            self._send_setting_options(session, "awsLocale", supported_countries(),
                                       _("Change Amazon Shop"), _("Pick an option below"))
            return
        self.collaborators.sessions.update_settings(session, aws_locale=aws_locale)
        country = self.collaborators.translator.country_name(session.language, aws_locale)
        self._send_text(session.sender_id, _(SHOP_CHANGED_TEXT) % (country, country))

    def _change_language(self, session: Session, language: Optional[str]) -> None:
        _ = self._translator(session)
        if language not in supported_languages():
            if language is not None:
                logger.warning("Ignoring unsupported language %r", language)
            self._send_setting_options(session, "language", supported_languages(),
                                       _("Change Language"), _("Pick an option below"))
            return

        language_old = session.language
        self.collaborators.sessions.update_settings(session, language=language)
        # the retain/revert question is still asked in the previous language
        self.collaborators.messenger.send_button_template(
            session.sender_id, _("Do you want to retain the change of the language setting?"), [
                postback_button(_("Yes"), encode_payload(RetainLanguageSettings(
                    entities=RetainLanguageEntities(language_new=language)))),
                postback_button(_("No"), encode_payload(RevertLanguageSettings(
                    entities=RevertLanguageEntities(language_old=language_old)))),
            ],
        )
        name = self.collaborators.translator.language_name(language, language)
        self._send_text(session.sender_id,
                        self._gettext(language, "Great. You have changed the language to %s.") % name)

    def retain_language_settings(self, session: Session, entities: RetainLanguageEntities) -> None:
        name = self.collaborators.translator.language_name(session.language, entities.language_new)
        self._send_text(session.sender_id, self._gettext(session.language, LANGUAGE_RETAINED_TEXT) % name)

    def revert_language_settings(self, session: Session, entities: RevertLanguageEntities) -> None:
        language_old = entities.language_old
        self.collaborators.sessions.update_settings(session, language=language_old)
        name = self.collaborators.translator.language_name(language_old, language_old)
        self._send_text(session.sender_id,
                        self._gettext(language_old, "Ok! The language has been reverted to %s.") % name)

    def _send_setting_options(self, session: Session, setting: str, options: List[str],
                              title: str, subtitle: str) -> None:
        translator = self.collaborators.translator
        buttons = []
        for option in options:
            if setting == "awsLocale":
                label = translator.country_name(session.language, option)
                entities = ChangeSettingEntities(setting=setting, aws_locale=option)
            else:
                label = translator.language_name(session.language, option)
                entities = ChangeSettingEntities(setting=setting, language=option)
            buttons.append(postback_button(label, encode_payload(ChangeSetting(entities=entities))))
        elements = [
            generic_element(title, subtitle, buttons[start:start + MAX_BUTTONS])
            for start in range(0, len(buttons), MAX_BUTTONS)
        ]
        self.collaborators.messenger.send_generic_template(session.sender_id, elements)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _translator(self, session: Session) -> Callable[[str], str]:
        return self.collaborators.translator.for_language(session.language)

    def _gettext(self, language: Optional[str], text: str) -> str:
        return self.collaborators.translator.gettext(language, text)

    def _send_text(self, recipient_id: str, text: str) -> None:
        self.collaborators.messenger.send_text(recipient_id, text)

    def _send_error_reply(self, sender_id: str) -> None:
        try:
            session = self.collaborators.sessions.get(sender_id)
        except SessionCacheError:
            session = None
        language = session.language if session else DEFAULT_LANGUAGE
        try:
            self._send_text(sender_id, self._gettext(language, ERROR_TEXT))
        except MessengerError:
            logger.exception("Could not send error reply to %s", sender_id)

    def _claim(self, sender_id: str, mid: Optional[str]) -> bool:
        if not mid:
            return True
        if self.collaborators.sessions.claim_event(f"{sender_id}:{mid}"):
            return True
        logger.info("Dropping duplicate delivery of %s from %s", mid, sender_id)
        return False

    def _lookup(self, asin: str, aws_locale: str) -> Optional[Item]:
        raw = self.collaborators.catalog.lookup(asin, aws_locale)
        if raw is None:
            logger.warning("Item %s not found in %s", asin, aws_locale)
            return None
        return normalize_search_result(raw)

    def _owned_alert(self, session: Session, alert_id: str) -> Optional[PriceAlert]:
        alert = self.collaborators.alerts.get(alert_id)
        if alert is None:
            logger.warning("Price alert %s not found", alert_id)
            return None
        if alert.user_id != session.object_id:
            logger.warning("User %s tried to change price alert %s of another user", session.sender_id, alert_id)
            return None
        return alert

    def _upsert_product(self, item: Item, aws_locale: str) -> Product:
        return self.collaborators.products.merge(Product(
            asin=item.asin,
            image_url=item.image_url,
            ean=item.ean,
            upc=item.upc,
            sku=item.sku,
            model=item.model,
            manufacturer=item.manufacturer,
            title={aws_locale: item.title},
            product_group={aws_locale: item.product_group},
            category={aws_locale: item.category},
            sales_rank={aws_locale: item.sales_rank},
        ), aws_locale)

    def _image_url(self, url: Optional[str]) -> Optional[str]:
        token = self.collaborators.cloud_image_io_token
        if not url or not token:
            return url
        return f"https://{token}.cloudimg.io/s/fit/1200x600/{url}"

    def _search_result_element(self, session: Session, item: Item, now: int) -> Dict[str, Any]:
        _ = self._translator(session)
        currency_key = item.currency_code or session.aws_locale

        def formatted(value: Optional[int]) -> str:
            return format_price(value, currency_key) if value is not None else _("Not in Stock")

        subtitle = _("Amazon: %s | 3rd Party New: %s | 3rd Party Used: %s") % (
            formatted(item.price.amazon_price),
            formatted(item.price.third_party_new_price),
            formatted(item.price.third_party_used_price),
        )
        entities = ItemEntities(item=CompactItem.from_item(item), aws_locale=session.aws_locale, valid_from=now)
        buttons = [
            postback_button(_("Create price watch"), encode_payload(ActivatePriceAlert(entities=entities))),
            postback_button(_("Details"), encode_payload(ShowProductDetails(entities=entities))),
            web_url_button(_("Go to Website"), item.detail_page_url),
        ]
        return generic_element(f"{item.title} ({item.asin})", subtitle, buttons, self._image_url(item.image_url))

    def _price_watch_element(self, session: Session, alert: PriceAlert, buttons: List[Dict[str, Any]]) -> Dict[str, Any]:
        _ = self._translator(session)
        product = self.collaborators.products.get(alert.product_id)
        snapshot = self.collaborators.prices.get(alert.current_price_id)
        current = snapshot.get(alert.price_type) if snapshot else None
        current_formatted = format_price(current, alert.aws_locale) if current is not None else _("Not in Stock")
        desired_formatted = format_price(alert.desired_price, alert.aws_locale) if alert.desired_price is not None else "-"

        title = (product.title.get(alert.aws_locale) if product else None) or alert.product_id
        return generic_element(
            title,
            _("Current price: %s | Your Desired price: %s") % (current_formatted, desired_formatted),
            buttons,
            self._image_url(product.image_url if product else None),
        )

    def _send_desired_price_cards(self, session: Session, item_title: str, price: int, currency_key: str,
                                  alert: PriceAlert, valid_from: Optional[int], is_update: bool) -> None:
        _ = self._translator(session)
        examples = calculate_desired_price_examples(price)
        formatted = [format_price(example, currency_key) for example in examples]

        def entities(**values: Any) -> SetDesiredPriceEntities:
            return SetDesiredPriceEntities(
                item_title=item_title[:100],
                price_alert_id=alert.alert_id,
                price_alert_created_at=alert.created_at,
                price_alert_aws_locale=alert.aws_locale,
                price_type=alert.price_type,
                is_update=is_update,
                valid_from=valid_from,
                **values,
            )

        buttons = [
            postback_button(f"{_(label)} ({text})",
                            encode_payload(SetDesiredPrice(entities=entities(desired_price=example))))
            for label, example, text in zip(DESIRED_PRICE_LABELS, examples, formatted)
        ]
        buttons.append(postback_button(_("Custom Input"), encode_payload(SetDesiredPrice(entities=entities(
            custom_price_input=True, custom_price_input_example_price=formatted[0],
        )))))
        title, subtitle = _("Set desired price"), _("At what price would you like to receive an alert?")
        self.collaborators.messenger.send_generic_template(session.sender_id, [
            generic_element(title, subtitle, buttons[:3]),
            generic_element(title, subtitle, buttons[3:]),
        ])

    @staticmethod
    def _search_button(_: Callable[[str], str]) -> Dict[str, Any]:
        return postback_button(_("Search product"), encode_payload(SearchProduct()))

    @staticmethod
    def _list_button(_: Callable[[str], str]) -> Dict[str, Any]:
        return postback_button(_("Your Price Watches"), encode_payload(ListPriceWatches()))

    @staticmethod
    def _help_button(_: Callable[[str], str]) -> Dict[str, Any]:
        return postback_button(_("Help"), encode_payload(ShowHelpInstructions()))
