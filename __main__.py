"""
Entry point for RoomChat.
This module provides a command-line interface to start the chat server.
"""

import argparse

from RoomChat.config import config
from RoomChat.start import server


def parse():
    # Initialize argument parser for command line interface
    parser = argparse.ArgumentParser(prog='RoomChat', description='RoomChat starter')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # Setup server command line arguments
    server_parser = subparsers.add_parser('server', help='Startup SERVER')
    server_parser.add_argument('--host', default=config.DEFAULT_HOST,
                               help=f'SERVER listening address (default: {config.DEFAULT_HOST})')
    server_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                               help=f'SERVER port (default: {config.DEFAULT_SERVER_PORT})')
    server_parser.add_argument('--snapshot', default=config.SNAPSHOT_FILE,
                               help=f'History snapshot file (default: {config.SNAPSHOT_FILE})')
    server_parser.add_argument('--users', default=config.USER_DB_FILE,
                               help=f'User accounts file (default: {config.USER_DB_FILE})')
    server_parser.add_argument('--log-env', choices=['development', 'production', 'testing'], default=None,
                               help='Logging profile (default: $ROOMCHAT_ENV or development)')

    args = parser.parse_args()

    return args


def main():
    args = parse()

    if args.command == 'server':
        server.server(
            host=args.host,
            port=args.port,
            snapshot_path=args.snapshot,
            users_path=args.users,
            log_env=args.log_env,
        )
    else:
        raise Exception('Unknown command')


if __name__ == '__main__':
    main()
