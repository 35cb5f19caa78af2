"""
Entry point for HiveChat application.
This module provides a command-line interface to start the server or the API.
"""

import argparse

from HiveChat.config import config
from HiveChat.core.logging import auto_configure
from HiveChat.start import api, server


def parse():
    # Initialize argument parser for command line interface
    parser = argparse.ArgumentParser(prog='HiveChat', description='HiveChat starter')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # Setup server command line arguments
    server_parser = subparsers.add_parser('server', help='Startup SERVER (ws server and api)')
    server_parser.add_argument('--host', default=None, help='Listening address (default: HIVECHAT_HOST or localhost)')
    server_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                               help='SERVER port (default: HIVECHAT_PORT or 8765)')

    # Add 'srv-only' command
    srv_parser = subparsers.add_parser('srv-only', help='Startup server (ws server)')
    srv_parser.add_argument('--host', default=None, help='Listening address (default: HIVECHAT_HOST or localhost)')
    srv_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                            help='server port (default: HIVECHAT_PORT or 8765)')

    # Add 'api-only' command
    api_parser = subparsers.add_parser('api-only', help='Startup api')
    api_parser.add_argument('--port', type=int, default=config.DEFAULT_API_PORT,
                            help='api server port (default: SERVER port + 1)')

    parser.add_argument('--env', default=None, help='Logging preset: development, production or testing')

    return parser.parse_args()


def main():
    args = parse()
    auto_configure(args.env)

    if args.command == 'server':
        server.server(port=args.port, host=args.host)
    elif args.command == 'srv-only':
        server.server(port=args.port, srv_only=True, host=args.host)
    elif args.command == 'api-only':
        api.api(port=args.port)
    else:
        raise Exception('Unknown command')


if __name__ == '__main__':
    main()
