"""HTTP API for HiveChat: accounts, guest sessions, uploads and health."""

import logging
from typing import Optional

import uvicorn

from HiveChat.config import config
from HiveChat.core.server.interfaces import Store
from .routes_api import create_app

logger = logging.getLogger(__name__)


def run(store: Store, api_port: int = config.DEFAULT_API_PORT, host: Optional[str] = None):
    """
    Run the FastAPI application with Uvicorn server.

    Args:
        store: Store shared with the realtime server
        api_port (int): Port for the api.
        host: Interface to bind (``DEFAULT_HOST`` if None)
    """
    app = create_app(store)
    try:
        uvicorn.run(app, host=host or config.DEFAULT_HOST, port=api_port, log_level="warning")
    except Exception as e:
        logger.error("Error running api server: %s", e)


__all__ = ['create_app', 'run']
