"""Core of HiveChat: wire protocol, logging and the realtime server."""
