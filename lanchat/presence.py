# lanchat/presence.py
# Presence broadcasting: after every registry mutation the full contact list
# is recomputed and pushed to every live connection, registered or not, so a
# client that has just connected sees who is online before it registers.

import logging

from lanchat import config
from lanchat import protocol


class PresenceBroadcaster:
    """Pushes contact-list snapshots to every live session."""

    def publish(self, sessions):
        """
        Queues the contact list derived from a registry snapshot on every session.
        Wired as the registry's change callback, so it runs once per successful
        add, rename or remove (under the registry lock) and never for a
        rejected registration. It does not wait for any peer.

        Args:
            sessions (list[Session]): Every live session right after the mutation.

        Returns:
            int: Number of open connections the snapshot was queued for.
        """
        envelope = protocol.contact_list([s for s in sessions if s.is_registered])
        if config.DEBUG:
            names = [c["username"] for c in envelope["contacts"]]
            logging.info(f"Publishing presence {names} to {len(sessions)} connection(s)")
        return sum(1 for session in sessions if session.post(envelope))
