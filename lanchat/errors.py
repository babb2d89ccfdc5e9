# lanchat/errors.py
# Exceptions raised by the chat core.
# None of these are fatal: the router catches them per envelope and the
# connection stays open.


class LanChatError(Exception):
    """Base class for all chat server errors."""


class ProtocolError(LanChatError):
    """
    Raised when an inbound envelope is malformed, carries an unknown type,
    or is not valid for the session's current state.
    The envelope is logged and dropped.
    """


class RegistrationConflict(LanChatError):
    """
    Raised by the registry when a display name is already held by another
    live session. The registry is left untouched.

    Args:
        username (str): The display name that was requested.
    """

    def __init__(self, username):
        super().__init__(f"Username '{username}' is already taken.")
        self.username = username
