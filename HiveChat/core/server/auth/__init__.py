"""
Authentication module for the server.

Provides JWT-based authentication with clear separation of concerns.
Supports token extraction from query parameters and cookies, and from a
first ``connect`` frame when the handshake carried neither.
"""

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import parse_qs

import jwt

from HiveChat.config import config
from HiveChat.core.message.protocol import Envelope, EventType
from HiveChat.core.server.errors import AuthenticationError, ValidationError
from HiveChat.core.server.interfaces import Authenticator, AuthResult, Store
from HiveChat.core.server.models import Principal

logger = logging.getLogger(__name__)


class JWTAuthenticator:
    """
    JWT-based authenticator implementation.

    Handles token validation using JWT and extracts tokens from
    various transport contexts (WebSocket connections).
    """

    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        token_extractor=None
    ):
        """
        Initialize JWT authenticator.

        Args:
            secret: JWT secret key (defaults to config.JWT_SECRET)
            algorithm: JWT algorithm (defaults to config.JWT_ALGORITHM)
            token_extractor: Optional custom token extractor
        """
        self._secret = secret or config.JWT_SECRET
        self._algorithm = algorithm or config.JWT_ALGORITHM
        self._token_extractor = token_extractor or DefaultTokenExtractor()

    async def authenticate(self, token: str) -> AuthResult:
        """
        Validate a JWT token.

        Args:
            token: JWT token string

        Returns:
            AuthResult with authentication status and principal id
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm]
            )
            principal_id = payload.get("sub")

            if not principal_id:
                return AuthResult(
                    success=False,
                    error_message="No principal in token payload",
                    error_code="INVALID_PAYLOAD"
                )

            return AuthResult(
                success=True,
                principal_id=principal_id,
                display_name=payload.get("name"),
                is_ephemeral=bool(payload.get("guest", False)),
            )

        except jwt.ExpiredSignatureError:
            logger.warning("Authentication failed: Token expired")
            return AuthResult(
                success=False,
                error_message="Token has expired",
                error_code="TOKEN_EXPIRED"
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Authentication failed: Invalid token - %s", e)
            return AuthResult(
                success=False,
                error_message=f"Invalid token: {e}",
                error_code="INVALID_TOKEN"
            )

    def extract_token(self, transport_context: Any) -> Optional[str]:
        """
        Extract token from transport context.

        Args:
            transport_context: WebSocket or similar connection object

        Returns:
            Extracted token or None
        """
        return self._token_extractor.extract(transport_context)


class TokenIssuer:
    """
    Mints the tokens JWTAuthenticator accepts.

    Guests get a short-lived token; registered principals get
    ``JWT_EXPIRE_MINUTES``.
    """

    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        expire_minutes: int = None,
        guest_hours: int = None,
    ):
        self._secret = secret or config.JWT_SECRET
        self._algorithm = algorithm or config.JWT_ALGORITHM
        self._expire_seconds = (expire_minutes or config.JWT_EXPIRE_MINUTES) * 60
        self._guest_seconds = (guest_hours or config.GUEST_TOKEN_HOURS) * 3600

    def issue(self, principal: Principal) -> str:
        now = time.time()
        lifetime = self._guest_seconds if principal.is_ephemeral else self._expire_seconds
        return jwt.encode(
            {
                "sub": principal.id,
                "name": principal.display_name,
                "guest": principal.is_ephemeral,
                "iat": int(now),
                "exp": int(now + lifetime),
            },
            self._secret,
            algorithm=self._algorithm
        )


class DefaultTokenExtractor:
    """
    Default token extractor that handles common transport formats.

    Supports extraction from:
    - URL query parameters (?token=xxx)
    - Cookie headers (authToken=xxx)
    """

    def extract(self, websocket: Any) -> Optional[str]:
        token = self._extract_from_query(websocket)
        if token:
            return token

        token = self._extract_from_cookie(websocket)
        if token:
            return token

        return None

    def _extract_from_query(self, websocket: Any) -> Optional[str]:
        """Extract token from URL query parameters."""
        path = self._get_path(websocket)
        if path and "?" in path:
            _, query = path.split("?", 1)
            tokens = parse_qs(query).get("token", [])
            if tokens:
                return tokens[0]
        return None

    def _extract_from_cookie(self, websocket: Any) -> Optional[str]:
        """Extract token from Cookie header."""
        cookie_header = self._get_headers(websocket).get("Cookie", "")
        for cookie in cookie_header.split(";"):
            name, sep, value = cookie.strip().partition("=")
            if sep and name == "authToken" and value:
                return value.strip()
        return None

    def _get_path(self, websocket: Any) -> Optional[str]:
        request = getattr(websocket, "request", None)
        if request is not None:
            path = getattr(request, "path", None)
            if isinstance(path, str):
                return path
        return None

    def _get_headers(self, websocket: Any) -> Any:
        request = getattr(websocket, "request", None)
        headers = getattr(request, "headers", None)
        return {} if headers is None else headers


class ConnectionAuthenticator:
    """
    Authenticates a freshly opened connection into a stored Principal.

    Nothing else happens on a connection until this succeeds.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        store: Store,
        connect_timeout: float = None
    ):
        self._authenticator = authenticator
        self._store = store
        self._connect_timeout = connect_timeout if connect_timeout is not None else config.CONNECT_TIMEOUT

    async def authenticate(self, websocket: Any) -> Principal:
        """
        Raises:
            AuthenticationError: no token, a token that does not verify, or
                a principal the store does not know
        """
        token = self._authenticator.extract_token(websocket)
        if not token:
            token = await self._await_connect_frame(websocket)

        result = await self._authenticator.authenticate(token)
        if not result.success:
            raise AuthenticationError(result.error_message or "Authentication failed", code=result.error_code)

        principal = self._store.get_principal(result.principal_id)
        if principal is None:
            raise AuthenticationError("Unknown principal", code="UNKNOWN_PRINCIPAL")
        return principal

    async def _await_connect_frame(self, websocket: Any) -> str:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            raise AuthenticationError("No authentication token provided", code="NO_TOKEN")

        try:
            envelope = Envelope.deserialize(raw)
        except ValidationError as e:
            raise AuthenticationError(f"Expected a connect frame: {e.message}", code="NO_TOKEN")
        if envelope.event is not EventType.CONNECT:
            raise AuthenticationError("Expected a connect frame", code="NO_TOKEN")

        token = envelope.data.get("token")
        if not isinstance(token, str) or not token:
            raise AuthenticationError("No authentication token provided", code="NO_TOKEN")
        return token


__all__ = [
    'JWTAuthenticator',
    'TokenIssuer',
    'DefaultTokenExtractor',
    'ConnectionAuthenticator',
]
