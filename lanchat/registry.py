# lanchat/registry.py
# The connection registry: the single owner of the table of live sessions.
#
# Every connection gets a Session the moment it is accepted; the session
# receives its display name once, when registration succeeds, and leaves the
# registry when its connection closes. The registry is the only shared mutable
# state in the server. All mutations go through add()/rename()/remove(), which
# run under one asyncio.Lock, and the change callback (the presence publish)
# runs while that lock is still held. The callback only queues frames on each
# session's outbox and never waits on a peer, so each presence snapshot reflects
# exactly the state after its own mutation, snapshots are delivered in mutation
# order, and a stalled client cannot hold the lock.

import asyncio
import collections
import logging
import uuid
from dataclasses import dataclass, field

import websockets
from websockets.protocol import State

from lanchat import config
from lanchat import protocol
from lanchat.errors import RegistrationConflict


def new_session_id():
    """Generates a fresh session id. Ids are random, so they are never reused across connections."""
    return f"user_{uuid.uuid4().hex}"


@dataclass(eq=False)
class Session:
    """
    One live connection and, once registered, its display name.

    Outbound frames are queued per session and written by a short-lived
    writer task, in the order they were posted. Posting never waits on the
    peer, so a slow or stalled client cannot hold up the registry lock or
    any other session.

    Attributes:
        id (str): Ephemeral id assigned at connect time.
        remote_address (str): Client IP address as seen by the server.
        send_handle: The connection object; needs an async send(str) method and a `state`.
        display_name (str | None): None until registration succeeds.
    """
    id: str
    remote_address: str
    send_handle: object = field(repr=False)
    display_name: str = None
    _outbox: collections.deque = field(default_factory=collections.deque, init=False, repr=False)
    _writer: asyncio.Task = field(default=None, init=False, repr=False)

    @property
    def is_registered(self):
        return self.display_name is not None

    @property
    def is_open(self):
        return self.send_handle.state is State.OPEN

    @property
    def label(self):
        """Short human-readable description used in log lines."""
        name = 'unregistered' if self.display_name is None else repr(self.display_name)
        return f"{name} ({self.id} @ {self.remote_address})"

    def post(self, envelope):
        """
        Queues an outbound envelope for this session without waiting for the peer.
        A connection that is no longer open is skipped; that is a normal
        miss, not an error.

        Args:
            envelope (dict): Outbound envelope built by the protocol module.

        Returns:
            bool: True if the frame was queued, False if the connection is not open.
        """
        if not self.is_open:
            if config.DEBUG:
                logging.info(f"Skipping send to {self.label}: connection not open.")
            return False
        if config.DEBUG:
            logging.info(f"Sending to {self.label}: {protocol.summarize(envelope)}")
        self._outbox.append(protocol.encode(envelope))
        if self._writer is None or self._writer.done():
            self._writer = asyncio.get_running_loop().create_task(self._drain())
        return True

    async def _drain(self):
        while self._outbox:
            message = self._outbox.popleft()
            try:
                await self.send_handle.send(message)
            except websockets.exceptions.ConnectionClosed:
                # Expected when the client vanished after the frame was queued.
                logging.warning(f"Failed to send to {self.label} because connection is closed.")
                self._outbox.clear()
            except Exception:
                logging.exception(f"Unexpected error sending JSON to {self.label}")
                self._outbox.clear()

    async def flush(self):
        """Waits until every frame posted so far has been handed to the transport."""
        while self._writer is not None and not self._writer.done():
            await self._writer


class ConnectionRegistry:
    """
    Lock-guarded table of live sessions, keyed by session id.

    Args:
        on_change (callable, optional): Called with the post-mutation list of
            sessions after every successful add, rename and remove, while the
            registry lock is held. It must not block.
        enforce_unique_names (bool): When False (the 'simple' profile), rename
            never reports a conflict.
    """

    def __init__(self, on_change=None, enforce_unique_names=True):
        self._sessions = {}
        self._lock = asyncio.Lock()
        self._on_change = on_change
        self.enforce_unique_names = enforce_unique_names

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, session_id):
        return session_id in self._sessions

    def _changed(self):
        if self._on_change is not None:
            self._on_change(self.list())

    async def add(self, session):
        """Adds a freshly connected (still unregistered) session and publishes the change."""
        async with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"Session id '{session.id}' is already registered.")
            self._sessions[session.id] = session
            logging.info(f"Session added: {session.label}. Live sessions: {len(self._sessions)}")
            self._changed()

    async def rename(self, session_id, new_name):
        """
        Gives a live session its display name (registration).

        Args:
            session_id (str): Id of the session registering.
            new_name (str): Requested display name.

        Returns:
            Session: The renamed session.

        Raises:
            RegistrationConflict: If another live session already holds new_name.
                Nothing is mutated and nothing is published in that case.
            KeyError: If no live session has this id.
        """
        async with self._lock:
            session = self._sessions[session_id]
            if self.enforce_unique_names:
                for other in self._sessions.values():
                    if other is not session and other.display_name == new_name:
                        raise RegistrationConflict(new_name)
            session.display_name = new_name
            logging.info(f"Session registered as '{new_name}': {session.label}")
            self._changed()
            return session

    async def remove(self, session_id):
        """
        Removes a session whose connection has closed and publishes the change.

        Returns:
            Session | None: The removed session, or None if it was not present
            (in which case nothing is published).
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            logging.info(f"Session removed: {session.label}. Live sessions: {len(self._sessions)}")
            self._changed()
            return session

    def lookup(self, session_id):
        """Returns the live session with this id, or None."""
        return self._sessions.get(session_id)

    def list(self):
        """Snapshot of every live session, registered or not, in connection order."""
        return list(self._sessions.values())

    def contacts(self):
        """Snapshot of the registered sessions only."""
        return [s for s in self._sessions.values() if s.is_registered]
