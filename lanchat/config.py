# lanchat/config.py
# This file centralizes configuration settings for the LanChat WebSocket server.
# Every value can be overridden through an environment variable, and the
# network/debug values can also be overridden on the command line (see main.py).

import os # Import the 'os' module for environment lookups and file paths.


def _env_flag(name, default):
    """Reads a boolean environment variable ('1', 'true', 'yes', 'on' are truthy)."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# --- Network Configuration ---

# HOST: The IP address the server listens on.
# - '0.0.0.0': Listen on all interfaces so other machines on the LAN can connect.
# - '127.0.0.1': Listen only on the local machine.
HOST = os.environ.get('LANCHAT_HOST', '0.0.0.0')

# PORT: The TCP port serving both the client page (GET /) and the WebSocket endpoint.
PORT = int(os.environ.get('LANCHAT_PORT', '3000'))

# --- Protocol Profile ---
# 'rich'  : display names must be unique and image envelopes are relayed (default).
# 'simple': no uniqueness check, text messages only.
# A deployment runs exactly one profile; clients of both never share a server.
PROFILES = ('rich', 'simple')
PROFILE = os.environ.get('LANCHAT_PROFILE', 'rich')

# Derived switches, recomputed by apply_profile() when the profile changes at startup.
ENFORCE_UNIQUE_NAMES = PROFILE != 'simple'
ALLOW_IMAGES = PROFILE != 'simple'


def apply_profile(profile):
    """
    Switches the active protocol profile and recomputes the derived flags.

    Args:
        profile (str): One of PROFILES.

    Raises:
        ValueError: If the profile name is unknown.
    """
    global PROFILE, ENFORCE_UNIQUE_NAMES, ALLOW_IMAGES
    if profile not in PROFILES:
        raise ValueError(f"Unknown protocol profile '{profile}' (expected one of {', '.join(PROFILES)}).")
    PROFILE = profile
    ENFORCE_UNIQUE_NAMES = profile != 'simple'
    ALLOW_IMAGES = profile != 'simple'


# --- Message Limits ---

# MAX_MESSAGE_SIZE: Largest inbound WebSocket frame accepted, in bytes.
# Images travel inline as data URIs, so this has to cover a Base64-encoded picture.
MAX_MESSAGE_SIZE = 16 * 1024 * 1024

# --- SSL Configuration ---
# Secure WebSockets (WSS) are off by default on a LAN. When enabled and the
# certificate files are missing, the server falls back to plain WS.

CERT_DIR = os.environ.get('LANCHAT_CERT_DIR', os.path.join(os.path.dirname(__file__), '..', 'certs'))
CERT_FILE = os.path.join(CERT_DIR, 'cert.pem')
KEY_FILE = os.path.join(CERT_DIR, 'key.pem')
ENABLE_SSL = _env_flag('LANCHAT_ENABLE_SSL', False)

# --- Client Page ---

# CLIENT_DIR / INDEX_FILE: The bundled single-page client returned for `GET /`.
CLIENT_DIR = os.path.join(os.path.dirname(__file__), 'client')
INDEX_FILE = os.path.join(CLIENT_DIR, 'index.html')

# --- Debugging Configuration ---

# DEBUG: When True, the server logs every envelope it receives and sends
# (image data is abbreviated). Connections, registrations, warnings and errors
# are logged regardless of this flag.
DEBUG = _env_flag('LANCHAT_DEBUG', False)
