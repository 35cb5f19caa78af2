import HiveChat.api as _api
from HiveChat.core.server.websocket_manager import create_store


def api(port=8766):
    """
    Start only the HTTP API for HiveChat.

    Args:
        port (int): Port number for the API (default: 8766).
    """
    _api.run(create_store(), api_port=port)
