# chatbot.py
"""
Price watch Messenger bot: webhook endpoints.

- GET  /webhook   subscription handshake with the validation token.
- POST /webhook   signed event batches; events are handed to the
                  ConversationRouter as a background task so Messenger gets
                  its 200 right away.
- GET  /healthz   liveness plus which collaborators are configured.

Integrates with:
    - conversation.ConversationRouter (intent routing / state machine)
    - messenger_messaging.MessengerClient
    - catalog_client.CatalogClient
    - db_io stores and SessionCache
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from mangum import Mangum

from catalog_client import CatalogClient
from config import Settings, load_settings
from conversation import Collaborators, ConversationRouter
from db_io import MessageStore, PriceAlertStore, PriceStore, ProductStore, SessionCache, UserStore
from errors import SignatureError
from language_packs import Translator
from messenger_messaging import MessengerClient

# --- Configuration & logging ---
SETTINGS = load_settings()
logging.basicConfig(level=SETTINGS.log_level)
logger = logging.getLogger("pricewatch.chatbot")

SIGNATURE_ALGORITHMS = {
    "sha256": hashlib.sha256,
    "sha1": hashlib.sha1,
}


def build_collaborators(settings: Settings) -> Collaborators:
    region = settings.aws_region
    return Collaborators(
        messenger=MessengerClient(settings.page_access_token, settings.graph_api_version, settings.http_timeout),
        catalog=CatalogClient(settings.paapi_access_key, settings.paapi_secret_key, settings.paapi_partner_tag,
                              settings.http_timeout),
        users=UserStore(settings.user_table_name, region),
        products=ProductStore(settings.product_table_name, region),
        prices=PriceStore(settings.price_table_name, region),
        alerts=PriceAlertStore(settings.price_alert_table_name, region),
        messages=MessageStore(settings.message_table_name, region),
        sessions=SessionCache.from_url(settings.redis_url, settings.redis_timeout),
        translator=Translator(),
        cloud_image_io_token=settings.cloud_image_io_token,
    )


# ---------------------------------------------------------------------------
# Webhook helpers
# ---------------------------------------------------------------------------

def verify_signature(app_secret: Optional[str], body: bytes, headers: Mapping[str, str]) -> None:
    """Check the X-Hub-Signature-256 (or legacy X-Hub-Signature) HMAC of the raw body."""
    if not app_secret:
        raise SignatureError("no app secret configured")
    header = headers.get("x-hub-signature-256") or headers.get("x-hub-signature")
    if not header:
        raise SignatureError("missing signature header")
    algorithm, _, signature = header.partition("=")
    digestmod = SIGNATURE_ALGORITHMS.get(algorithm)
    if digestmod is None or not signature:
        raise SignatureError(f"unsupported signature {algorithm!r}")
    expected = hmac.new(app_secret.encode("utf-8"), body, digestmod).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise SignatureError("signature mismatch")


def extract_events(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    for entry in body.get("entry", []):
        events.extend(entry.get("messaging", []))
    return events


def process_events(router: ConversationRouter, events: List[Dict[str, Any]]) -> None:
    for event in events:
        try:
            router.handle_event(event)
        except Exception:
            logger.exception("Unhandled error while processing messaging event")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(collaborators: Optional[Collaborators] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or SETTINGS
    collaborators = collaborators or build_collaborators(settings)
    router = ConversationRouter(collaborators)

    app = FastAPI(title="Price Watch Messenger Bot", version="1.0.0")
    app.state.router = router

    @app.get("/webhook")
    def verify_webhook(hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
                       hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
                       hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge")):
        if hub_mode == "subscribe" and hub_verify_token == settings.validation_token:
            logger.info("Validating webhook")
            return PlainTextResponse(hub_challenge or "")
        logger.error("Failed validation. Make sure the validation tokens match.")
        raise HTTPException(status_code=403, detail="Verification token mismatch")

    @app.post("/webhook")
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
        body = await request.body()
        try:
            verify_signature(settings.app_secret, body, request.headers)
        except SignatureError as exc:
            logger.warning("Rejected webhook delivery: %s", exc)
            raise HTTPException(status_code=403, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Webhook body is not JSON")
            return JSONResponse({"status": "ignored"})
        if not isinstance(payload, dict) or payload.get("object") != "page":
            return JSONResponse({"status": "ignored"})

        events = extract_events(payload)
        background_tasks.add_task(process_events, router, events)
        return JSONResponse({"status": "accepted", "events": len(events)})

    @app.get("/healthz")
    def healthcheck():
        return {
            "status": "ok",
            "messenger_enabled": collaborators.messenger.enabled,
            "catalog_enabled": collaborators.catalog.enabled,
            "signature_check": bool(settings.app_secret),
        }

    return app


app = create_app()
_lambda_adapter = Mangum(app)

# ---------------------------------------------------------------------------
# Local runner
# ---------------------------------------------------------------------------

def run():
    import uvicorn
    uvicorn.run("chatbot:app", host="0.0.0.0", port=int(os.environ.get("PORT", 8000)), reload=bool(int(os.environ.get("RELOAD", "0"))))

def lambda_handler(event, context):
    return _lambda_adapter(event, context)

if __name__ == "__main__":
    run()
