"""
Tests for the HTTP API and the upload store behind it.
"""

import jwt
import pytest
from fastapi import testclient

from HiveChat.api.routes_api import create_app
from HiveChat.api.routes_base import hash_password, verify_password
from HiveChat.config import config
from HiveChat.core.server.blobstore import LocalBlobStore
from HiveChat.core.server.errors import ValidationError
from HiveChat.core.server.membership import ChannelMembership
from HiveChat.core.server.transport import WebSocketConnectionRegistry


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(upload_dir=str(tmp_path / "uploads"), max_bytes=1024)


@pytest.fixture
def client(store, blob_store):
    ChannelMembership(store, WebSocketConnectionRegistry()).ensure_general()
    return testclient.TestClient(create_app(store, blob_store=blob_store))


def claims(token):
    return jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])


class TestPasswords:

    def test_hash_and_verify(self):
        hashed = hash_password("secret1")
        assert hashed != "secret1"
        assert verify_password("secret1", hashed)
        assert not verify_password("secret2", hashed)


class TestAccounts:

    def test_register(self, client, store):
        response = client.post("/api/register", json={"username": " alice ", "password": "secret1"})
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["username"] == "alice"
        assert claims(body["token"])["sub"] == body["principal_id"]
        assert store.is_member(body["principal_id"], "general")

    @pytest.mark.parametrize("username,password,message", [
        ("al", "secret1", "Username must be between 3-20 characters"),
        ("a" * 21, "secret1", "Username must be between 3-20 characters"),
        ("alice", "short", "Password must be at least 6 characters"),
    ])
    def test_register_validation(self, client, username, password, message):
        response = client.post("/api/register", json={"username": username, "password": password})
        assert response.status_code == 400
        assert response.json() == {
            "success": False, "token": None, "principal_id": None, "username": None, "message": message,
        }

    def test_register_duplicate(self, client):
        client.post("/api/register", json={"username": "alice", "password": "secret1"})
        response = client.post("/api/register", json={"username": "alice", "password": "secret2"})
        assert response.status_code == 400
        assert response.json()["message"] == "Username already exists"

    def test_login(self, client):
        registered = client.post("/api/register", json={"username": "alice", "password": "secret1"}).json()

        response = client.post("/api/login", json={"username": "alice", "password": "secret1"})

        assert response.status_code == 200
        assert claims(response.json()["token"])["sub"] == registered["principal_id"]

    @pytest.mark.parametrize("username,password", [("alice", "wrong!!"), ("nobody", "secret1")])
    def test_login_failure(self, client, username, password):
        client.post("/api/register", json={"username": "alice", "password": "secret1"})
        response = client.post("/api/login", json={"username": username, "password": password})
        assert response.status_code == 401
        assert response.json()["message"] == "Incorrect username or password"

    def test_guest(self, client, store):
        response = client.post("/api/guest", json={"username": "dave"})
        body = response.json()

        assert body["username"] == "guest_dave"
        token = claims(body["token"])
        assert token["guest"] is True
        assert token["exp"] - token["iat"] == config.GUEST_TOKEN_HOURS * 3600
        assert store.get_principal(body["principal_id"]).is_ephemeral

        again = client.post("/api/guest", json={"username": "dave"})
        assert again.status_code == 400

    def test_guest_cannot_log_in(self, client):
        client.post("/api/guest", json={"username": "dave"})
        response = client.post("/api/login", json={"username": "guest_dave", "password": "anything"})
        assert response.status_code == 401


class TestUploads:

    def test_upload_and_serve(self, client):
        response = client.post("/upload", files={"file": ("Notes.TXT", b"hello", "text/plain")})
        body = response.json()

        assert response.status_code == 200
        assert body["type"] == "text/plain"
        assert body["name"] == "Notes.TXT"
        assert body["size"] == 5
        assert body["url"].startswith("/uploads/") and body["url"].endswith(".txt")

        served = client.get(body["url"])
        assert served.status_code == 200
        assert served.content == b"hello"

    def test_no_file(self, client):
        response = client.post("/upload")
        assert response.status_code == 400
        assert response.json() == {"error": "No file uploaded"}

    def test_rejected_type(self, client):
        response = client.post("/upload", files={"file": ("run.sh", b"#!/bin/sh", "application/x-sh")})
        assert response.status_code == 400

    def test_too_large(self, client):
        response = client.post("/upload", files={"file": ("big.txt", b"x" * 2048, "text/plain")})
        assert response.status_code == 400

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["storage"] == "InMemoryStore"


class TestBlobStore:

    @pytest.mark.asyncio
    async def test_store_writes_file(self, blob_store, tmp_path):
        ref = await blob_store.store("photo.PNG", "image/png", b"\x89PNG")
        stored = tmp_path / "uploads" / ref.url.rsplit("/", 1)[1]
        assert stored.read_bytes() == b"\x89PNG"
        assert ref.name == "photo.PNG"
        assert ref.url.endswith(".png")

    @pytest.mark.asyncio
    async def test_names_are_unique(self, blob_store):
        first = await blob_store.store("a.txt", "text/plain", b"1")
        second = await blob_store.store("a.txt", "text/plain", b"2")
        assert first.url != second.url

    @pytest.mark.asyncio
    async def test_empty_file(self, blob_store):
        with pytest.raises(ValidationError):
            await blob_store.store("a.txt", "text/plain", b"")
