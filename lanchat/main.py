# lanchat/main.py
# This script serves as the main entry point for starting the LanChat server.
# It sets up logging, applies command-line overrides on top of the values in
# config.py, and runs the asynchronous server until it is interrupted.
#
# Usage:
#   lanchat [--host HOST] [--port PORT] [--profile {rich,simple}] [--debug]
#   python -m lanchat.main ...

import argparse  # Parses the command-line overrides.
import asyncio   # Runs the server's event loop.
import logging   # Records server events and errors.
import sys

from lanchat import config
from lanchat import server

# Configure basic logging settings for the server application.
# INFO and above are shown; DEBUG-only traces are gated by config.DEBUG instead of the log level.
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def parse_args(argv=None):
    """
    Parses command-line options. Defaults come from config.py (and therefore
    from the LANCHAT_* environment variables).
    """
    parser = argparse.ArgumentParser(prog='lanchat', description='Local-network WebSocket chat server.')
    parser.add_argument('--host', default=config.HOST, help=f'address to listen on (default: {config.HOST})')
    parser.add_argument('--port', type=int, default=config.PORT, help=f'port for the page and WebSocket endpoint (default: {config.PORT})')
    parser.add_argument('--profile', choices=config.PROFILES, default=config.PROFILE,
                        help="'rich': unique names and images; 'simple': text only, no uniqueness check")
    parser.add_argument('--debug', action='store_true', default=config.DEBUG, help='log every envelope received and sent')
    return parser.parse_args(argv)


def apply_args(args):
    """Copies parsed options onto the config module so every component sees them."""
    config.HOST = args.host
    config.PORT = args.port
    config.DEBUG = args.debug
    config.apply_profile(args.profile)


def main(argv=None):
    """
    Runs the server until SIGINT/SIGTERM.

    Returns:
        int: Process exit status.
    """
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        apply_args(parse_args(argv))
    except ValueError as e:
        # An invalid LANCHAT_PROFILE reaches here; argparse does not check defaults against choices.
        logging.error(f"Invalid configuration: {e}")
        return 2
    logging.info("Attempting to start server from main.py...")
    logging.info(f"Using HOST={config.HOST}, PORT={config.PORT}")
    try:
        asyncio.run(server.start_server(config.HOST, config.PORT))
    except KeyboardInterrupt:
        # Only reached where asyncio signal handlers are unavailable (Windows).
        logging.info("Server stopped manually via KeyboardInterrupt.")
    except OSError:
        logging.exception(f"Could not start server on {config.HOST}:{config.PORT} - Is the port already in use?")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
