# lanchat/protocol.py
# Wire format of the chat protocol: JSON objects with a string "type" field,
# one object per WebSocket frame.
#
# Inbound envelopes are decoded exactly once, here, into one of the dataclasses
# below. Anything that does not decode cleanly raises ProtocolError, so the
# router never has to look at raw dictionaries.
# Outbound envelopes are built by the small helper functions at the bottom and
# serialized with encode().

import json
import time
from dataclasses import dataclass

from lanchat.errors import ProtocolError

# Sentinel value of the "to" field addressing every connected session.
BROADCAST = "all"

# --- Inbound message types ---
REGISTER = "register"
MESSAGE = "message"
IMAGE = "image"

# --- Outbound message types ---
CONTACT_LIST = "contact-list"
REGISTERED = "registered"
ERROR = "error"

# Image payloads must be inline data URIs of an image MIME type.
IMAGE_DATA_PREFIX = "data:image/"


@dataclass(frozen=True)
class Register:
    username: str


@dataclass(frozen=True)
class TextMessage:
    to: str
    content: str

    @property
    def is_broadcast(self):
        return self.to == BROADCAST


@dataclass(frozen=True)
class ImageMessage:
    to: str
    image_data: str

    @property
    def is_broadcast(self):
        return self.to == BROADCAST


def _require_string(data, field, message_type):
    value = data.get(field)
    if not isinstance(value, str):
        raise ProtocolError(f"'{message_type}' envelope needs a string '{field}' field.")
    return value


def _require_target(data, message_type):
    target = _require_string(data, "to", message_type)
    if not target:
        raise ProtocolError(f"'{message_type}' envelope has an empty 'to' field.")
    return target


def decode_envelope(raw, allow_images=True):
    """
    Parses one inbound frame into a typed envelope.

    Args:
        raw (str | bytes): The frame exactly as received from the WebSocket.
        allow_images (bool): Whether 'image' envelopes are part of the active profile.
            When False they are treated like any other unknown type.

    Returns:
        Register | TextMessage | ImageMessage: The decoded envelope.

    Raises:
        ProtocolError: If the frame is not JSON, not an object, has an unknown
            'type', or is missing a required field.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError("Binary frame is not valid UTF-8.") from None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise ProtocolError("Frame is not valid JSON.") from None
    if not isinstance(data, dict):
        raise ProtocolError("Envelope must be a JSON object.")

    message_type = data.get("type")

    if message_type == REGISTER:
        # Names are kept exactly as sent; "alice" and "alice " are different names.
        return Register(username=_require_string(data, "username", REGISTER))

    if message_type == MESSAGE:
        return TextMessage(to=_require_target(data, MESSAGE), content=_require_string(data, "content", MESSAGE))

    if message_type == IMAGE and allow_images:
        image_data = _require_string(data, "imageData", IMAGE)
        if not image_data.startswith(IMAGE_DATA_PREFIX):
            raise ProtocolError("'imageData' must be an image data URI.")
        return ImageMessage(to=_require_target(data, IMAGE), image_data=image_data)

    raise ProtocolError(f"Unknown envelope type {message_type!r}.")


# --- Outbound envelope builders ---

def now_millis():
    """Current wall-clock time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def contact_list(sessions):
    """Builds the presence snapshot from registered sessions."""
    return {
        "type": CONTACT_LIST,
        "contacts": [
            {"id": s.id, "username": s.display_name, "ip": s.remote_address}
            for s in sessions
        ],
    }


def registered(session):
    return {"type": REGISTERED, "id": session.id, "username": session.display_name}


def error(message):
    return {"type": ERROR, "message": message}


def outbound_for(envelope, sender, timestamp=None):
    """
    Builds the envelope delivered to recipients of a text or image message.

    Args:
        envelope (TextMessage | ImageMessage): The decoded inbound envelope.
        sender (Session): The registered session that sent it.
        timestamp (int, optional): Epoch milliseconds; defaults to now.

    Returns:
        dict: The outbound envelope, ready for encode().
    """
    outbound = {
        "type": MESSAGE if isinstance(envelope, TextMessage) else IMAGE,
        "from": sender.id,
        "fromName": sender.display_name,
    }
    if isinstance(envelope, TextMessage):
        outbound["content"] = envelope.content
    else:
        outbound["imageData"] = envelope.image_data
    outbound["timestamp"] = timestamp if timestamp is not None else now_millis()
    return outbound


def encode(envelope):
    """Serializes an outbound envelope to the JSON text sent on the wire."""
    return json.dumps(envelope, ensure_ascii=False)


def summarize(envelope):
    """Returns a copy of an outbound envelope that is safe to log (image data abbreviated)."""
    if "imageData" in envelope:
        return {**envelope, "imageData": f"<{len(envelope['imageData'])} chars of image data>"}
    return envelope
