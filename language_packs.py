# language_packs.py
"""
Message catalogs for the bot.

Catalogs are keyed by the English source string; a missing translation falls
back to the source string itself, so English needs no catalog of its own
beyond the handful of strings that differ.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional

from config import DEFAULT_LANGUAGE, SUPPORTED_AWS_LOCALES, SUPPORTED_LANGUAGES

COUNTRY_NAMES = {
    "de_DE": "Germany",
    "en_GB": "United Kingdom",
    "en_US": "United States",
}

LANGUAGE_NAMES = {
    "en": "English",
    "de": "German",
}

LANGUAGE_PACKS: Dict[str, Dict[str, str]] = {
    "en": {},
    "de": {
        # commands
        "help": "hilfe",
        "list": "liste",
        "hello": "hallo",
        "menu": "menü",
        "settings": "einstellungen",
        # onboarding / help
        "Hi there, let’s get started. I’ll alert you when prices drop on Amazon. If you get lost, just type help. "
        "Or, use a few words to tell me what product you are searching for. For example, you could type "
        "“iPhone 6”, “Kindle Paperwhite” or “Xbox One”.":
            "Hallo, los geht’s. Ich benachrichtige dich, wenn Preise auf Amazon fallen. Wenn du nicht weiterweißt, "
            "schreib einfach hilfe. Oder beschreibe mit ein paar Worten, welches Produkt du suchst. Du könntest "
            "zum Beispiel „iPhone 6“, „Kindle Paperwhite“ oder „Xbox One“ schreiben.",
        "Lost? Use a few words to tell me what product you are searching for. For example, you could type "
        "“iPhone 6”, “Kindle Paperwhite” or “Xbox One”. Or, just type one of the words below:\n\n"
        "  • list - to show your price watches\n  • settings - to see your settings":
            "Verlaufen? Beschreibe mit ein paar Worten, welches Produkt du suchst. Du könntest zum Beispiel "
            "„iPhone 6“, „Kindle Paperwhite“ oder „Xbox One“ schreiben. Oder schreib eines der folgenden Wörter:\n\n"
            "  • liste - um deine Preisalarme zu sehen\n  • einstellungen - um deine Einstellungen zu sehen",
        "What’re you searching for? Use a few words to tell me what product you are searching for. "
        "For example, you could type “iPhone 6” or “Kindle Paperwhite”.":
            "Wonach suchst du? Beschreibe mit ein paar Worten, welches Produkt du suchst. Du könntest zum "
            "Beispiel „iPhone 6“ oder „Kindle Paperwhite“ schreiben.",
        "Pick an option below to get going": "Wähle unten eine Option, um loszulegen",
        "Hi there, let’s get started.": "Hallo, los geht’s.",
        "Sorry, I can only understand text messages.": "Entschuldige, ich verstehe nur Textnachrichten.",
        "Something went wrong. Please try again in a moment.":
            "Da ist etwas schiefgelaufen. Bitte versuche es gleich noch einmal.",
        "I'm sorry, but I'm not yet available in your country.":
            "Es tut mir leid, aber in deinem Land bin ich noch nicht verfügbar.",
        # menus
        "Search product": "Produkt suchen",
        "Your Price Watches": "Deine Preisalarme",
        "Help": "Hilfe",
        "Yes": "Ja",
        "No": "Nein",
        # search
        "Search results for \"%s\"": "Suchergebnisse für „%s“",
        "Try again or pick one of the options below:": "Versuche es noch einmal oder wähle eine Option:",
        "Not sure I understand what you're searching for.": "Ich bin nicht sicher, wonach du suchst.",
        "Not in Stock": "Nicht auf Lager",
        "Amazon: %s | 3rd Party New: %s | 3rd Party Used: %s":
            "Amazon: %s | Drittanbieter neu: %s | Drittanbieter gebraucht: %s",
        "Create price watch": "Preisalarm erstellen",
        "Details": "Details",
        "Go to Website": "Zur Website",
        "What next?": "Wie geht’s weiter?",
        "Manufacturer: %s": "Hersteller: %s",
        "Model: %s": "Modell: %s",
        "Sales rank: %s": "Verkaufsrang: %s",
        # price watch creation
        "Price and availability information for this product may have changed.":
            "Preis- und Verfügbarkeitsinformationen für dieses Produkt haben sich möglicherweise geändert.",
        "Create price watch for \"%s\"": "Preisalarm erstellen für „%s“",
        "Set price type": "Preistyp festlegen",
        "What price type do you want to track?": "Welchen Preistyp möchtest du beobachten?",
        "Amazon": "Amazon",
        "3rd Party New": "Drittanbieter neu",
        "3rd Party Used": "Drittanbieter gebraucht",
        "Amazon price": "Amazon-Preis",
        "3rd Party New price": "Drittanbieter-Neupreis",
        "3rd Party Used price": "Drittanbieter-Gebrauchtpreis",
        "The current %s for this item is %s": "Der aktuelle %s für diesen Artikel beträgt %s",
        "Set desired price": "Wunschpreis festlegen",
        "At what price would you like to receive an alert?": "Ab welchem Preis möchtest du benachrichtigt werden?",
        "-0.01": "-0,01",
        "Custom Input": "Eigene Eingabe",
        "Enter a valid price. For example, you could type %s":
            "Gib einen gültigen Preis ein. Du könntest zum Beispiel %s schreiben",
        "The price must be a number greater than or equal to zero. For example, you could type %s":
            "Der Preis muss eine Zahl größer oder gleich null sein. Du könntest zum Beispiel %s schreiben",
        "Pick one of the options below or try again to enter a valid price":
            "Wähle eine der Optionen oder gib erneut einen gültigen Preis ein",
        "You have tracked the %s for \"%s\"": "Du beobachtest jetzt den %s für „%s“",
        "Price watch updated.": "Preisalarm aktualisiert.",
        "Price watch deleted.": "Preisalarm gelöscht.",
        # listing
        "Here're your price watches. I'll send you an alert when the current price for any of the products "
        "you are watching falls below your desired price.\n\nPrice watches %s to %s:":
            "Hier sind deine Preisalarme. Ich benachrichtige dich, sobald der aktuelle Preis eines beobachteten "
            "Produkts unter deinen Wunschpreis fällt.\n\nPreisalarme %s bis %s:",
        "Price watches %s to %s:": "Preisalarme %s bis %s:",
        "Current price: %s | Your Desired price: %s": "Aktueller Preis: %s | Dein Wunschpreis: %s",
        "Change desired price": "Wunschpreis ändern",
        "Delete price watch": "Preisalarm löschen",
        "More price watches": "Weitere Preisalarme",
        "You haven't created any price watches yet. Use a few words to tell me what product you are searching "
        "for. For example, you could type “iPhone 6” or “Kindle Paperwhite”":
            "Du hast noch keine Preisalarme erstellt. Beschreibe mit ein paar Worten, welches Produkt du suchst. "
            "Du könntest zum Beispiel „iPhone 6“ oder „Kindle Paperwhite“ schreiben",
        # settings
        "You're wondering about your settings?\n\nAmazon Shop: %s\nLanguage: %s\n\n"
        "To change any setting, just pick an option below:":
            "Du möchtest deine Einstellungen sehen?\n\nAmazon-Shop: %s\nSprache: %s\n\n"
            "Um eine Einstellung zu ändern, wähle einfach eine Option:",
        "Change Amazon Shop": "Amazon-Shop ändern",
        "Change Language": "Sprache ändern",
        "Pick an option below": "Wähle eine Option",
        "Great. You have changed the Amazon shop to %s. If you're now searching for a product, I search for you "
        "the Amazon shop %s. To reverse this setting, just type settings.":
            "Super. Du hast den Amazon-Shop auf %s geändert. Wenn du jetzt nach einem Produkt suchst, durchsuche "
            "ich für dich den Amazon-Shop %s. Um das rückgängig zu machen, schreib einfach einstellungen.",
        "Do you want to retain the change of the language setting?": "Möchtest du die neue Sprache beibehalten?",
        "Great. You have changed the language to %s.": "Super. Du hast die Sprache auf %s geändert.",
        "Ok! From now on the only language I understand is %s. If you want to revert this setting, "
        "just type settings.":
            "Ok! Ab jetzt verstehe ich nur noch %s. Um das rückgängig zu machen, schreib einfach einstellungen.",
        "Ok! The language has been reverted to %s.": "Ok! Die Sprache wurde auf %s zurückgesetzt.",
        # names
        "Germany": "Deutschland",
        "United Kingdom": "Vereinigtes Königreich",
        "United States": "Vereinigte Staaten",
        "English": "Englisch",
        "German": "Deutsch",
    },
}


class Translator:
    """Looks up a source string in the catalog of a language."""

    def __init__(self, packs: Optional[Dict[str, Dict[str, str]]] = None):
        self._packs = packs if packs is not None else LANGUAGE_PACKS

    def gettext(self, language: Optional[str], text: str) -> str:
        pack = self._packs.get(language or DEFAULT_LANGUAGE) or {}
        return pack.get(text, text)

    def for_language(self, language: Optional[str]) -> Callable[[str], str]:
        return lambda text: self.gettext(language, text)

    def country_name(self, language: Optional[str], aws_locale: str) -> str:
        return self.gettext(language, COUNTRY_NAMES.get(aws_locale, aws_locale))

    def language_name(self, language: Optional[str], code: str) -> str:
        return self.gettext(language, LANGUAGE_NAMES.get(code, code))


def supported_countries() -> List[str]:
    return [locale for locale in SUPPORTED_AWS_LOCALES if locale in COUNTRY_NAMES]


def supported_languages() -> List[str]:
    return [code for code in SUPPORTED_LANGUAGES if code in LANGUAGE_NAMES]
