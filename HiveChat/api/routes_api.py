# Standard library imports
import logging
import os
from typing import Optional

# Third-party imports
from fastapi import FastAPI, File, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

# Local imports
from HiveChat import __version__ as __main_version__
from HiveChat.config import config
from HiveChat.core.server.auth import TokenIssuer
from HiveChat.core.server.blobstore import LocalBlobStore
from HiveChat.core.server.errors import ConflictError, UpstreamError, ValidationError
from HiveChat.core.server.interfaces import BlobStore, Store
from HiveChat.core.server.models import Principal
from .routes_base import (
    GUEST_PREFIX,
    PASSWORD_MIN_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    CacheControlMiddleware,
    GuestRequest,
    HealthResponse,
    LoginRequest,
    RegisterRequest,
    RequestLoggingMiddleware,
    TokenResponse,
    UploadResponse,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)


def _failure(status_code: int, message: str) -> JSONResponse:
    body = TokenResponse(success=False, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _success(principal: Principal, token: str, message: str) -> TokenResponse:
    return TokenResponse(
        success=True,
        token=token,
        principal_id=principal.id,
        username=principal.display_name,
        message=message,
    )


def _validate_username(username: str) -> Optional[str]:
    if len(username) < USERNAME_MIN_LENGTH or len(username) > USERNAME_MAX_LENGTH:
        return f"Username must be between {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
    return None


def create_app(
    store: Store,
    blob_store: Optional[BlobStore] = None,
    issuer: Optional[TokenIssuer] = None,
    serve_uploads: bool = True,
) -> FastAPI:
    """
    Build the HTTP API around a store shared with the realtime server.

    Args:
        store: Store the WebSocket server also uses
        blob_store: Where uploads go (LocalBlobStore if None)
        issuer: Token minting (TokenIssuer if None)
        serve_uploads: Mount the upload directory under ``UPLOAD_URL_PREFIX``
    """
    blob_store = blob_store or LocalBlobStore()
    issuer = issuer or TokenIssuer()

    app = FastAPI(title="HiveChat API", version=__main_version__)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CacheControlMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    def join_general(principal: Principal) -> None:
        if store.get_channel(config.GENERAL_CHANNEL) is not None:
            store.add_membership(principal.id, config.GENERAL_CHANNEL)

    @app.post("/api/register", response_model=TokenResponse)
    async def register(credentials: RegisterRequest):
        username = credentials.username.strip()

        problem = _validate_username(username)
        if problem:
            return _failure(400, problem)
        if len(credentials.password) < PASSWORD_MIN_LENGTH:
            return _failure(400, f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        if store.find_principal(username) is not None:
            return _failure(400, "Username already exists")

        try:
            principal = store.create_principal(username, password_hash=hash_password(credentials.password))
        except ConflictError:
            return _failure(400, "Username already exists")

        join_general(principal)
        logger.info("Registered %s (%s)", username, principal.id)
        return _success(principal, issuer.issue(principal), "Registration successful")

    @app.post("/api/login", response_model=TokenResponse)
    async def login(credentials: LoginRequest):
        username = credentials.username.strip()

        stored_hash = store.get_password_hash(username)
        principal = store.find_principal(username)
        if stored_hash is None or principal is None or principal.is_ephemeral:
            logger.info("Login failed: unknown user %s", username)
            return _failure(401, "Incorrect username or password")
        if not verify_password(credentials.password, stored_hash):
            logger.info("Login failed: password mismatch for %s", username)
            return _failure(401, "Incorrect username or password")

        logger.info("Login successful: %s", username)
        return _success(principal, issuer.issue(principal), "Login successful")

    @app.post("/api/guest", response_model=TokenResponse)
    async def guest(request: GuestRequest):
        name = request.username.strip()
        problem = _validate_username(name)
        if problem:
            return _failure(400, problem)

        display_name = GUEST_PREFIX + name
        try:
            principal = store.create_principal(display_name, is_ephemeral=True)
        except ConflictError:
            return _failure(400, "Username already exists")

        join_general(principal)
        logger.info("Guest %s joined (%s)", display_name, principal.id)
        return _success(principal, issuer.issue(principal), "Guest session created")

    @app.post("/upload", response_model=UploadResponse)
    async def upload(file: Optional[UploadFile] = File(None)):
        if file is None or not file.filename:
            return JSONResponse(status_code=400, content={"error": "No file uploaded"})

        data = await file.read()
        try:
            ref = await blob_store.store(
                file.filename, file.content_type or "application/octet-stream", data
            )
        except ValidationError as e:
            return JSONResponse(status_code=400, content={"error": e.message})
        except UpstreamError as e:
            return JSONResponse(status_code=500, content={"error": e.message})
        finally:
            await file.close()

        return UploadResponse(url=ref.url, type=ref.type, name=ref.name, size=ref.size)

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok",
            version=__main_version__,
            storage=type(store).__name__,
        )

    if serve_uploads and isinstance(blob_store, LocalBlobStore):
        os.makedirs(blob_store.upload_dir, exist_ok=True)
        app.mount(
            blob_store.url_prefix,
            StaticFiles(directory=blob_store.upload_dir),
            name="uploads",
        )

    return app
