# lanchat/server.py
# The transport listener of the LanChat server.
# Responsibilities include:
# - Accepting WebSocket connections and binding each one to a fresh Session and SessionRouter.
# - Feeding every inbound frame to the router and reporting closure, however it happens.
# - Answering the plain `GET /` request with the bundled client page.
# - Setting up SSL context for Secure WebSockets (WSS) if configured.
# - Running until SIGINT/SIGTERM, then closing every open connection before returning.

import asyncio          # For the event loop, futures and signal handling.
import functools        # For binding the shared registry into the connection handler.
import logging          # For logging server events, warnings, and errors.
import signal           # For graceful shutdown on Ctrl+C / SIGTERM.
import socket           # For discovering the machine's LAN address.
import ssl              # For creating SSL contexts for WSS.
from http import HTTPStatus

import websockets       # The WebSocket library used for server implementation.
from websockets.datastructures import Headers
from websockets.http11 import Response

from lanchat import config
from lanchat.presence import PresenceBroadcaster
from lanchat.registry import ConnectionRegistry, Session, new_session_id
from lanchat.router import SessionRouter


def local_ip_address():
    """
    Finds the IPv4 address other machines on the LAN can use to reach this host.
    Connecting a UDP socket sends no packets; it only makes the OS choose an
    outbound interface.

    Returns:
        str: The LAN address, or '127.0.0.1' if no route is available.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def create_registry():
    """Builds the shared registry with presence broadcasting wired in, honoring the active profile."""
    broadcaster = PresenceBroadcaster()
    return ConnectionRegistry(
        on_change=broadcaster.publish,
        enforce_unique_names=config.ENFORCE_UNIQUE_NAMES,
    )


# --- Plain HTTP requests ---
def process_request(connection, request):
    """
    Intercepts requests before the WebSocket handshake.
    WebSocket upgrades proceed untouched; a plain `GET /` receives the bundled
    client page and any other plain request receives 404.

    Args:
        connection (websockets.asyncio.server.ServerConnection): The connection being opened.
        request (websockets.http11.Request): The parsed HTTP request.

    Returns:
        websockets.http11.Response | None: A response to short-circuit the handshake, or None to continue.
    """
    if request.headers.get("Upgrade", "").lower() == "websocket":
        return None

    path = request.path.split("?", 1)[0]
    if path not in ("/", "/index.html"):
        return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")

    try:
        with open(config.INDEX_FILE, "rb") as f:
            body = f.read()
    except OSError:
        logging.exception(f"Could not read client page {config.INDEX_FILE}")
        return connection.respond(HTTPStatus.INTERNAL_SERVER_ERROR, "Client page unavailable\n")

    headers = Headers([
        ("Content-Type", "text/html; charset=utf-8"),
        ("Content-Length", str(len(body))),
        ("Connection", "close"),
    ])
    return Response(HTTPStatus.OK.value, HTTPStatus.OK.phrase, headers, body)


# --- Main Connection Handler ---
async def connection_handler(websocket, registry):
    """
    Handles one client's WebSocket connection from accept to close.
    1. Allocates a Session with a fresh id and announces it (initial presence push).
    2. Forwards each inbound frame to the session's router.
    3. On any kind of closure, clean or not, removes the session and re-pushes presence.

    Args:
        websocket (websockets.asyncio.server.ServerConnection): The client connection.
        registry (ConnectionRegistry): The registry shared by all connections.
    """
    remote = websocket.remote_address
    client_ip = remote[0] if remote else "unknown"
    session = Session(id=new_session_id(), remote_address=client_ip, send_handle=websocket)
    router = SessionRouter(session, registry)
    logging.info(f"Connection accepted from {client_ip} as {session.id}")

    try:
        await router.connected()
        # Iteration ends cleanly on a normal close and raises on an abnormal one.
        async for message in websocket:
            await router.received(message)
        logging.info(f"Client {session.label} disconnected gracefully.")
    except websockets.exceptions.ConnectionClosedError as e:
        logging.info(f"Client {session.label} disconnected with error: {e}")
    except Exception:
        # Transport faults are handled exactly like a close.
        logging.exception(f"An unexpected error occurred handling client {session.label}")
    finally:
        await router.closed()
        logging.info(f"Connection closed for {session.label}")


def create_ssl_context():
    """
    Builds the TLS context for WSS when enabled.

    Returns:
        ssl.SSLContext | None: The context, or None to serve plain WS.
    """
    if not config.ENABLE_SSL:
        return None
    try:
        logging.info(f"Attempting to load SSL cert: {config.CERT_FILE}")
        logging.info(f"Attempting to load SSL key: {config.KEY_FILE}")
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(config.CERT_FILE, config.KEY_FILE)
        logging.info("SSL context created successfully. Server will use WSS.")
        return ssl_context
    except FileNotFoundError:
        logging.error(f"SSL Error: Certificate or Key file not found (Cert: '{config.CERT_FILE}', Key: '{config.KEY_FILE}'). Disabling SSL, falling back to WS.")
    except (ssl.SSLError, OSError):
        logging.exception("SSL Error: Failed to create SSL context. Disabling SSL, falling back to WS.")
    return None


def create_server(host, port, registry, ssl_context=None):
    """
    Returns the (not yet started) WebSocket server; use it as an async context manager.

    Args:
        host (str): Address to bind.
        port (int): Port to bind; 0 picks a free port.
        registry (ConnectionRegistry): Registry shared by all connections.
        ssl_context (ssl.SSLContext, optional): TLS context for WSS.
    """
    return websockets.serve(
        functools.partial(connection_handler, registry=registry),
        host,
        port,
        ssl=ssl_context,
        max_size=config.MAX_MESSAGE_SIZE,
        process_request=process_request,
    )


def _install_stop_signals(loop):
    """Returns a future resolved by the first SIGINT/SIGTERM, or None where signal handlers are unsupported."""
    stop = loop.create_future()

    def request_stop(sig):
        if not stop.done():
            logging.info(f"Received {sig.name}, shutting down.")
            stop.set_result(sig)

    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, request_stop, sig)
    except NotImplementedError:
        # Windows: Ctrl+C surfaces as KeyboardInterrupt in main.py instead.
        return None
    return stop


# --- Server Startup Function ---
async def start_server(host, port, stop=None):
    """
    Starts the chat server and runs it until `stop` resolves.
    When no `stop` awaitable is given, SIGINT and SIGTERM are used. Leaving
    the server context closes every open connection (code 1001) before returning.

    Args:
        host (str): The hostname or IP address to bind the server to.
        port (int): The port number to bind the server to.
        stop (awaitable, optional): Resolves when the server should shut down.
    """
    ssl_context = create_ssl_context()
    effective_protocol = "wss" if ssl_context else "ws"
    registry = create_registry()

    if stop is None:
        stop = _install_stop_signals(asyncio.get_running_loop())
        if stop is None:
            stop = asyncio.Future() # Runs until KeyboardInterrupt.

    logging.info(f"Starting server on {effective_protocol}://{host}:{port}")
    logging.info(f"Protocol profile: {config.PROFILE} (unique names: {config.ENFORCE_UNIQUE_NAMES}, images: {config.ALLOW_IMAGES})")
    logging.info(f"Maximum WebSocket message size set to: {config.MAX_MESSAGE_SIZE} bytes")
    logging.info(f"Server Debug Logging: {'ENABLED' if config.DEBUG else 'DISABLED'}")

    async with create_server(host, port, registry, ssl_context):
        scheme = "https" if ssl_context else "http"
        logging.info(f"Client page: {scheme}://127.0.0.1:{port}")
        logging.info(f"LAN address: {scheme}://{local_ip_address()}:{port}")
        await stop
        logging.info(f"Closing {len(registry)} open connection(s)...")
    logging.info("Server stopped.")
