"""
Server startup module for HiveChat application.
Provides the entry point for starting the chat server and the HTTP API.
"""

import asyncio
import logging
import threading

import HiveChat.api as _api
from HiveChat.config import config
from HiveChat.core.server.websocket_manager import create_server, create_store

logger = logging.getLogger(__name__)


def server(port=8765, srv_only=False, host=None):
    """
    Start the chat server and the HTTP API on the specified port.

    The API listens on ``port + 1`` and shares the store with the
    WebSocket server.

    Args:
        port (int): Port number to listen on (default: 8765)
        srv_only (bool): If True, serve only the WebSocket server.
        host (str): Interface to bind (``DEFAULT_HOST`` if None)
    """
    host = host or config.DEFAULT_HOST
    store = create_store()
    chat_server = create_server(store)

    async def start_websocket_server():
        async with chat_server.run(host, port):
            await asyncio.Future()

    def start_http_server():
        _api.run(store, api_port=port + 1, host=host)

    try:
        # Start HTTP server in a separate thread
        if not srv_only:
            http_thread = threading.Thread(target=start_http_server, daemon=True)
            http_thread.start()
            logger.info("HTTP API starting on http://%s:%s", host, port + 1)

        # Run WebSocket server in the main thread
        asyncio.run(start_websocket_server())
    except KeyboardInterrupt:
        print("Closed by user.")
