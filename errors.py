# errors.py
"""Exception hierarchy shared by the collaborator clients and the router."""
from __future__ import annotations


class PriceWatchError(Exception):
    """Base class for every error raised by this service."""


class CollaboratorError(PriceWatchError):
    """An external service (catalog, store, cache, Messenger) failed."""

    collaborator = "collaborator"

    def __init__(self, message: str):
        super().__init__(f"{self.collaborator}: {message}")


class CatalogError(CollaboratorError):
    collaborator = "catalog"


class StoreError(CollaboratorError):
    collaborator = "store"


class SessionCacheError(CollaboratorError):
    collaborator = "session_cache"


class MessengerError(CollaboratorError):
    collaborator = "messenger"


class ProfileLookupError(MessengerError):
    collaborator = "profile_api"


class InvalidPayloadError(PriceWatchError):
    """A postback payload could not be decoded into a known intent."""


class PayloadTooLargeError(InvalidPayloadError):
    """An encoded postback payload exceeds the platform limit."""


class SignatureError(PriceWatchError):
    """The webhook body is unsigned or the signature does not match."""
