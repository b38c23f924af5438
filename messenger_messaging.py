# messenger_messaging.py
"""
Facebook Messenger Send API and User Profile API helper class.

Provides:
- send_text
- send_button_template
- send_generic_template
- get_user_profile
- postback_button / web_url_button / generic_element builders

Uses the Graph API endpoints:
https://graph.facebook.com/{api_version}/me/messages
https://graph.facebook.com/{api_version}/{user_id}
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from errors import MessengerError, ProfileLookupError

logger = logging.getLogger("pricewatch.messenger")

MAX_BUTTONS = 3
MAX_GENERIC_ELEMENTS = 10
BUTTON_TITLE_LIMIT = 20
ELEMENT_TITLE_LIMIT = 80
ELEMENT_SUBTITLE_LIMIT = 80
TEXT_LIMIT = 2000

PROFILE_FIELDS = "first_name,last_name,profile_pic,locale,timezone,gender"


def truncate(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return text[: max(length - 3, 0)].rstrip() + "..."


def postback_button(title: str, payload: str) -> Dict[str, Any]:
    return {"type": "postback", "title": title[:BUTTON_TITLE_LIMIT], "payload": payload}


def web_url_button(title: str, url: str) -> Dict[str, Any]:
    return {"type": "web_url", "url": url, "title": title[:BUTTON_TITLE_LIMIT]}


def generic_element(title: str, subtitle: str = "", buttons: Optional[List[Dict[str, Any]]] = None,
                    image_url: Optional[str] = None) -> Dict[str, Any]:
    element: Dict[str, Any] = {
        "title": truncate(title, ELEMENT_TITLE_LIMIT),
        "subtitle": truncate(subtitle, ELEMENT_SUBTITLE_LIMIT),
        "buttons": _cap_buttons(buttons or []),
    }
    if image_url:
        element["image_url"] = image_url
    return element


def _cap_buttons(buttons: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if len(buttons) > MAX_BUTTONS:
        logger.warning("Dropping %d button(s) over the limit of %d", len(buttons) - MAX_BUTTONS, MAX_BUTTONS)
    return buttons[:MAX_BUTTONS]


class MessengerClient:
    def __init__(self, page_access_token: Optional[str], api_version: str = "v19.0", timeout: float = 5.0):
        self.page_access_token = page_access_token
        self.api_version = api_version
        self.timeout = timeout
        self.graph_url = f"https://graph.facebook.com/{api_version}"

    @property
    def enabled(self) -> bool:
        return bool(self.page_access_token)

    def _post(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            logger.info("[dry-run] %s", json.dumps(payload, indent=2, ensure_ascii=False))
            return None
        try:
            response = requests.post(
                f"{self.graph_url}/me/messages",
                params={"access_token": self.page_access_token},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise MessengerError(f"send failed: {exc}") from exc
        if not response.ok:
            logger.error("Messenger send failed - status=%s body=%s", response.status_code, response.text)
            raise MessengerError(f"send failed with status {response.status_code}")
        body = response.json()
        logger.debug("Sent message %s to recipient %s", body.get("message_id"), body.get("recipient_id"))
        return body

    def send_text(self, recipient_id: str, text: str) -> None:
        self._post({"recipient": {"id": recipient_id}, "message": {"text": truncate(text, TEXT_LIMIT)}})

    def send_button_template(self, recipient_id: str, text: str, buttons: List[Dict[str, Any]]) -> None:
        payload = {"template_type": "button", "text": truncate(text, 640), "buttons": _cap_buttons(buttons)}
        self._send_template(recipient_id, payload)

    def send_generic_template(self, recipient_id: str, elements: List[Dict[str, Any]]) -> None:
        if len(elements) > MAX_GENERIC_ELEMENTS:
            logger.warning("Dropping %d card(s) over the limit of %d", len(elements) - MAX_GENERIC_ELEMENTS,
                           MAX_GENERIC_ELEMENTS)
        elements = [dict(element, buttons=_cap_buttons(element.get("buttons", [])))
                    for element in elements[:MAX_GENERIC_ELEMENTS]]
        self._send_template(recipient_id, {"template_type": "generic", "elements": elements})

    def _send_template(self, recipient_id: str, template: Dict[str, Any]) -> None:
        message = {"attachment": {"type": "template", "payload": template}}
        self._post({"recipient": {"id": recipient_id}, "message": message})

    def get_user_profile(self, user_id: str) -> Dict[str, Any]:
        if not self.enabled:
            raise ProfileLookupError("no page access token configured")
        try:
            response = requests.get(
                f"{self.graph_url}/{user_id}",
                params={"fields": PROFILE_FIELDS, "access_token": self.page_access_token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProfileLookupError(f"profile lookup failed: {exc}") from exc
        if not response.ok:
            logger.error("Profile lookup failed - status=%s body=%s", response.status_code, response.text)
            raise ProfileLookupError(f"profile lookup failed with status {response.status_code}")
        logger.info("Fetched Messenger profile for user %s", user_id)
        return response.json()
