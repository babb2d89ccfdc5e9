"""
Unit tests for lanchat.registry

Tests the connection registry:
- Add / rename / remove publish exactly once per successful mutation
- A taken display name is rejected without mutation or publish
- Concurrent registrations of the same name cannot both succeed
- A peer that stops reading does not hold up other registrations
- Session ids are unique and removed ids stay gone
"""

import asyncio
import unittest

from lanchat.errors import RegistrationConflict
from lanchat.registry import ConnectionRegistry, Session, new_session_id
from tests.fakes import StalledConnection, make_registry, make_session, settle


class RegistryTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.registry, self.broadcaster = make_registry()
        self.sessions = []

    def new_session(self, connection=None):
        session = make_session(ip="10.0.0.2", connection=connection)
        self.sessions.append(session)
        return session

    async def settle(self):
        await settle(*self.sessions)


class TestConnectionRegistry(RegistryTestCase):
    """Registry operations and their change notifications."""

    async def test_add_publishes_to_new_connection(self):
        session = self.new_session()
        await self.registry.add(session)
        await self.settle()
        self.assertIs(self.registry.lookup(session.id), session)
        self.assertEqual(len(self.broadcaster.published), 1)
        # The newcomer is not registered yet, but it still receives the (empty) snapshot.
        self.assertEqual(session.send_handle.last_contacts(), [])

    async def test_rename_publishes_post_mutation_snapshot(self):
        a, b = self.new_session(), self.new_session()
        await self.registry.add(a)
        await self.registry.add(b)
        await self.registry.rename(a.id, "alice")
        await self.settle()
        self.assertEqual(self.broadcaster.published[-1], ["alice"])
        self.assertEqual(b.send_handle.last_contacts(), ["alice"])
        self.assertEqual(self.registry.contacts(), [a])
        self.assertEqual(self.registry.list(), [a, b])

    async def test_duplicate_name_rejected_without_publish(self):
        a, b = self.new_session(), self.new_session()
        await self.registry.add(a)
        await self.registry.add(b)
        await self.registry.rename(a.id, "alice")
        publishes = len(self.broadcaster.published)

        with self.assertRaises(RegistrationConflict) as ctx:
            await self.registry.rename(b.id, "alice")

        self.assertEqual(ctx.exception.username, "alice")
        self.assertIsNone(b.display_name)
        self.assertEqual(len(self.broadcaster.published), publishes)

    async def test_names_compared_exactly(self):
        a, b, c = self.new_session(), self.new_session(), self.new_session()
        for s in (a, b, c):
            await self.registry.add(s)
        await self.registry.rename(a.id, "alice")
        await self.registry.rename(b.id, "alice ")
        await self.registry.rename(c.id, "Alice")
        self.assertEqual([s.display_name for s in self.registry.contacts()], ["alice", "alice ", "Alice"])

    async def test_name_is_free_again_after_remove(self):
        a, b = self.new_session(), self.new_session()
        await self.registry.add(a)
        await self.registry.add(b)
        await self.registry.rename(a.id, "alice")
        await self.registry.remove(a.id)
        await self.registry.rename(b.id, "alice")
        self.assertEqual(b.display_name, "alice")

    async def test_concurrent_same_name_registrations(self):
        sessions = [self.new_session() for _ in range(5)]
        for s in sessions:
            await self.registry.add(s)

        results = await asyncio.gather(
            *(self.registry.rename(s.id, "alice") for s in sessions),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Session)]
        conflicts = [r for r in results if isinstance(r, RegistrationConflict)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(conflicts), 4)
        self.assertEqual([s.display_name for s in self.registry.contacts()], ["alice"])

    async def test_remove(self):
        a = self.new_session()
        await self.registry.add(a)
        await self.registry.rename(a.id, "alice")
        publishes = len(self.broadcaster.published)

        self.assertIs(await self.registry.remove(a.id), a)
        self.assertIsNone(self.registry.lookup(a.id))
        self.assertNotIn(a.id, self.registry)
        self.assertEqual(len(self.broadcaster.published), publishes + 1)

        # Removing twice is a no-op and publishes nothing.
        self.assertIsNone(await self.registry.remove(a.id))
        self.assertEqual(len(self.broadcaster.published), publishes + 1)

    async def test_rename_unknown_session(self):
        with self.assertRaises(KeyError):
            await self.registry.rename("user_missing", "alice")

    async def test_add_same_session_twice(self):
        a = self.new_session()
        await self.registry.add(a)
        with self.assertRaises(ValueError):
            await self.registry.add(a)

    async def test_snapshots_arrive_in_mutation_order(self):
        sessions = [self.new_session() for _ in range(4)]
        for s in sessions:
            await self.registry.add(s)
        await asyncio.gather(*(self.registry.rename(s.id, f"user{i}") for i, s in enumerate(sessions)))
        await self.settle()
        # Each snapshot seen by the first session has one more name than the one before it.
        sizes = [len(m["contacts"]) for m in sessions[0].send_handle.of_type("contact-list")]
        self.assertEqual(sizes[-4:], [1, 2, 3, 4])

    async def test_stalled_peer_does_not_block_registration(self):
        stalled = self.new_session(connection=StalledConnection())
        await self.registry.add(stalled)
        await self.registry.rename(stalled.id, "sleepy")
        a = self.new_session()
        await self.registry.add(a)

        await asyncio.wait_for(self.registry.rename(a.id, "alice"), 1)
        await asyncio.wait_for(self.registry.remove(a.id), 1)

        self.assertEqual([s.display_name for s in self.registry.contacts()], ["sleepy"])

    async def test_simple_profile_allows_duplicate_names(self):
        registry = ConnectionRegistry(enforce_unique_names=False)
        a, b = self.new_session(), self.new_session()
        await registry.add(a)
        await registry.add(b)
        await registry.rename(a.id, "alice")
        await registry.rename(b.id, "alice")
        self.assertEqual([s.display_name for s in registry.contacts()], ["alice", "alice"])


class TestSession(unittest.IsolatedAsyncioTestCase):
    """Session outbox semantics."""

    def test_ids_are_unique(self):
        ids = {new_session_id() for _ in range(1000)}
        self.assertEqual(len(ids), 1000)
        self.assertTrue(all(i.startswith("user_") for i in ids))

    async def test_frames_written_in_post_order(self):
        session = make_session()
        for i in range(5):
            self.assertTrue(session.post({"type": "error", "message": str(i)}))
        await session.flush()
        self.assertEqual([m["message"] for m in session.send_handle.sent], ["0", "1", "2", "3", "4"])

    async def test_post_to_closed_connection_returns_false(self):
        session = make_session()
        self.assertTrue(session.post({"type": "error", "message": "x"}))
        await session.flush()
        session.send_handle.closed = True
        self.assertFalse(session.post({"type": "error", "message": "y"}))
        await session.flush()
        self.assertEqual(len(session.send_handle.sent), 1)

    async def test_connection_closing_mid_queue_drops_the_rest(self):
        session = make_session()
        session.post({"type": "error", "message": "a"})
        session.post({"type": "error", "message": "b"})
        # Closes before the writer task gets to run.
        session.send_handle.closed = True
        await session.flush()
        self.assertEqual(session.send_handle.sent, [])


if __name__ == '__main__':
    unittest.main()
