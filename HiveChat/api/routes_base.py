# Standard library imports
import logging
import time
from typing import List, Optional

# Third-party imports
import bcrypt
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Local imports
from HiveChat.config import config
from HiveChat.core.logging.utils import RequestLogger

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 6
GUEST_PREFIX = "guest_"


def hash_password(password: str) -> str:
    """Hash password with bcrypt (rounds=10 for performance)."""
    salt = bcrypt.gensalt(rounds=10)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    return bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))


class LoginRequest(BaseModel):
    username: str
    password: str


class RegisterRequest(BaseModel):
    username: str
    password: str


class GuestRequest(BaseModel):
    username: str


class TokenResponse(BaseModel):
    success: bool
    token: Optional[str] = None
    principal_id: Optional[str] = None
    username: Optional[str] = None
    message: Optional[str] = None


class UploadResponse(BaseModel):
    url: str
    type: str
    name: str
    size: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    storage: str
    allowed_upload_types: List[str] = list(config.UPLOAD_ALLOWED_TYPES)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every HTTP request with its status and duration."""

    def __init__(self, app, request_logger: Optional[RequestLogger] = None):
        super().__init__(app)
        self._request_logger = request_logger or RequestLogger(logger)

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        self._request_logger.log_request(
            request.method,
            request.url.path,
            response.status_code,
            time.perf_counter() - start,
            getattr(request.state, "principal", None),
        )
        return response


class CacheControlMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(config.UPLOAD_URL_PREFIX + "/"):
            response.headers["Cache-Control"] = "public, max-age=3600"
        return response
