"""
Error taxonomy surfaced to connections.

Every failure that reaches a client is one of these. The router turns them
into ``error`` events scoped to the sender; only AuthenticationError ever
closes a connection.
"""

from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base class for errors that are reported to a connection."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_payload(self, scope: str = "sender", event: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "scope": scope,
            "kind": self.kind,
            "message": self.message,
        }
        if self.code:
            payload["code"] = self.code
        if event:
            payload["event"] = event
        return payload


class AuthenticationError(ChatError):
    """The connection presented no credential, or one that does not verify."""


class AuthorizationError(ChatError):
    """The principal may not act on the referenced channel or message."""


class NotFoundError(ChatError):
    """A referenced principal, channel or message does not exist."""


class ValidationError(ChatError):
    """Malformed payload (empty text and no file, bad ids, oversized fields)."""


class ConflictError(ValidationError):
    """A unique name is already taken. Reported to clients as a ValidationError."""

    @property
    def kind(self) -> str:
        return "ValidationError"


class UpstreamError(ChatError):
    """A collaborator (Assistant, BlobStore, Store) failed."""


__all__ = [
    'ChatError',
    'AuthenticationError',
    'AuthorizationError',
    'NotFoundError',
    'ValidationError',
    'ConflictError',
    'UpstreamError',
]
