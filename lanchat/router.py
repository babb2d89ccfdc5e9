# lanchat/router.py
# Per-connection message routing.
#
# Each connection owns one SessionRouter. The router holds the connection's
# Session and walks it through a small state machine, driven by three
# lifecycle events delivered by the transport listener:
#
#   connected()      -> session added to the registry, initial presence pushed
#   received(frame)  -> envelope decoded and handled according to the state
#   closed()         -> session removed, presence re-pushed, state terminal
#
#   UNREGISTERED --register(unique name)--> REGISTERED
#   UNREGISTERED --register(taken name)---> UNREGISTERED (error to sender only)
#   any state    --close------------------> CLOSED
#
# The router never touches the transport directly; it only posts envelopes to
# session outboxes, which keeps it testable with a fake connection and means
# no routing step waits on a peer.

import enum
import logging

from lanchat import config
from lanchat import protocol
from lanchat.errors import ProtocolError, RegistrationConflict


class SessionState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    CLOSED = "closed"


class SessionRouter:
    """
    Drives one session through its lifecycle and routes its envelopes.

    Args:
        session (Session): The session bound to this connection.
        registry (ConnectionRegistry): The shared registry of live sessions.
    """

    def __init__(self, session, registry):
        self.session = session
        self.registry = registry
        self.state = SessionState.UNREGISTERED

    # --- Lifecycle events ---

    async def connected(self):
        """Adds the session to the registry; the registry publishes presence to everyone, this connection included."""
        await self.registry.add(self.session)

    async def received(self, raw):
        """
        Handles one inbound frame. Malformed or out-of-state envelopes are
        logged and dropped; the connection stays open.

        Args:
            raw (str | bytes): The frame as received from the transport.
        """
        if self.state is SessionState.CLOSED:
            return
        if config.DEBUG:
            preview = raw if len(raw) <= 200 else f"{raw[:200]!r}... ({len(raw)} bytes)"
            logging.info(f"Raw message received from {self.session.label}: {preview}")
        try:
            envelope = protocol.decode_envelope(raw, allow_images=config.ALLOW_IMAGES)
            await self.dispatch(envelope)
        except ProtocolError as e:
            logging.warning(f"Protocol error from {self.session.label}: {e} Ignoring.")

    async def closed(self):
        """Removes the session for good. Safe to call more than once."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        await self.registry.remove(self.session.id)

    # --- Dispatch ---

    async def dispatch(self, envelope):
        """
        Routes a decoded envelope according to the current state.

        Raises:
            ProtocolError: If the envelope is not accepted in the current state.
        """
        if isinstance(envelope, protocol.Register):
            if self.state is not SessionState.UNREGISTERED:
                raise ProtocolError(f"Already registered as '{self.session.display_name}'.")
            await self.handle_registration(envelope.username)
        elif isinstance(envelope, (protocol.TextMessage, protocol.ImageMessage)):
            if self.state is not SessionState.REGISTERED:
                raise ProtocolError("Messages are only accepted after registration.")
            await self.deliver(envelope)
        else:
            raise ProtocolError(f"Unhandled envelope {type(envelope).__name__}.")

    async def handle_registration(self, username):
        """
        Attempts to register the session under a display name.
        On success the registry publishes presence and the client gets a
        'registered' acknowledgement with its id. On a name conflict the
        session stays unregistered and only this connection hears about it.
        """
        try:
            await self.registry.rename(self.session.id, username)
        except RegistrationConflict as e:
            logging.warning(f"{e} Denying request from {self.session.label}.")
            self.session.post(protocol.error(str(e)))
            return
        self.state = SessionState.REGISTERED
        self.session.post(protocol.registered(self.session))

    async def deliver(self, envelope):
        """
        Delivers a text or image message.
        'all' fans out to every live session, the sender included; clients
        drop their own echo. A specific id reaches only that session, and an
        id that is not live is dropped without telling the sender.

        Returns:
            int: Number of open connections the message was queued for.
        """
        outbound = protocol.outbound_for(envelope, self.session)

        if envelope.is_broadcast:
            recipients = self.registry.list()
        else:
            target = self.registry.lookup(envelope.to)
            if target is None:
                if config.DEBUG:
                    logging.info(f"Target '{envelope.to}' from {self.session.label} is not live. Dropping.")
                return 0
            recipients = [target]

        if config.DEBUG:
            logging.info(f"Relaying {outbound['type']} from {self.session.label} to {envelope.to} ({len(recipients)} recipient(s))")
        return sum(1 for recipient in recipients if recipient.post(outbound))
