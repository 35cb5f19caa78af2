"""
Tests for token verification and connection authentication.
"""

import time

import jwt
import pytest

from HiveChat.config import config
from HiveChat.core.server.auth import (
    ConnectionAuthenticator,
    DefaultTokenExtractor,
    JWTAuthenticator,
    TokenIssuer,
)
from HiveChat.core.server.errors import AuthenticationError
from HiveChat.test.conftest import FakeWebSocket, frame, generate_jwt_token


class TestJWTAuthenticator:

    @pytest.mark.asyncio
    async def test_valid_token(self, alice):
        result = await JWTAuthenticator().authenticate(generate_jwt_token(alice))
        assert result.success
        assert result.principal_id == alice.id
        assert result.display_name == "alice"
        assert not result.is_ephemeral

    @pytest.mark.asyncio
    async def test_expired_token(self, alice):
        result = await JWTAuthenticator().authenticate(generate_jwt_token(alice, expires_in=-10))
        assert not result.success
        assert result.error_code == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_wrong_secret(self, alice):
        result = await JWTAuthenticator().authenticate(generate_jwt_token(alice, secret="other-secret"))
        assert result.error_code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        token = jwt.encode({"exp": int(time.time()) + 60}, config.JWT_SECRET, algorithm="HS256")
        result = await JWTAuthenticator().authenticate(token)
        assert result.error_code == "INVALID_PAYLOAD"

    @pytest.mark.asyncio
    async def test_issued_guest_token(self, store):
        guest = store.create_principal("guest_x", is_ephemeral=True)
        token = TokenIssuer().issue(guest)

        payload = jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
        assert payload["exp"] - payload["iat"] == config.GUEST_TOKEN_HOURS * 3600
        result = await JWTAuthenticator().authenticate(token)
        assert result.is_ephemeral


class TestTokenExtractor:

    def test_query_parameter(self):
        ws = FakeWebSocket(path="/?token=abc&x=1")
        assert DefaultTokenExtractor().extract(ws) == "abc"

    def test_cookie(self):
        ws = FakeWebSocket(headers={"Cookie": "theme=dark; authToken=xyz"})
        assert DefaultTokenExtractor().extract(ws) == "xyz"

    def test_query_wins_over_cookie(self):
        ws = FakeWebSocket(path="/?token=abc", headers={"Cookie": "authToken=xyz"})
        assert DefaultTokenExtractor().extract(ws) == "abc"

    def test_nothing(self):
        assert DefaultTokenExtractor().extract(FakeWebSocket()) is None


class TestConnectionAuthenticator:

    def _authenticator(self, store, timeout=0.1):
        return ConnectionAuthenticator(JWTAuthenticator(), store, connect_timeout=timeout)

    @pytest.mark.asyncio
    async def test_token_in_query(self, store, alice):
        ws = FakeWebSocket(path=f"/?token={generate_jwt_token(alice)}")
        principal = await self._authenticator(store).authenticate(ws)
        assert principal == alice

    @pytest.mark.asyncio
    async def test_connect_frame(self, store, alice):
        ws = FakeWebSocket(inbound=[frame("connect", token=generate_jwt_token(alice))])
        principal = await self._authenticator(store).authenticate(ws)
        assert principal.id == alice.id

    @pytest.mark.asyncio
    async def test_no_token_times_out(self, store):
        with pytest.raises(AuthenticationError) as info:
            await self._authenticator(store, timeout=0.05).authenticate(FakeWebSocket())
        assert info.value.code == "NO_TOKEN"

    @pytest.mark.asyncio
    async def test_first_frame_must_be_connect(self, store, alice):
        ws = FakeWebSocket(inbound=[frame("send-message", channelId="general", text="hi")])
        with pytest.raises(AuthenticationError):
            await self._authenticator(store).authenticate(ws)

    @pytest.mark.asyncio
    async def test_unknown_principal(self, store, alice):
        token = generate_jwt_token(alice)
        store.delete_principal(alice.id)
        with pytest.raises(AuthenticationError) as info:
            await self._authenticator(store).authenticate(FakeWebSocket(path=f"/?token={token}"))
        assert info.value.code == "UNKNOWN_PRINCIPAL"

    @pytest.mark.asyncio
    async def test_invalid_token(self, store):
        with pytest.raises(AuthenticationError) as info:
            await self._authenticator(store).authenticate(FakeWebSocket(path="/?token=garbage"))
        assert info.value.code == "INVALID_TOKEN"
