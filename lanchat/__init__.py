# lanchat/__init__.py
# LanChat: a local-network WebSocket chat server.
# The server keeps a registry of live connections, routes text and image
# messages to everyone or to one addressed contact, and pushes the contact
# list to every client whenever someone joins, registers or leaves.

__version__ = "1.0.0"
