import asyncio
import unittest

from aiohttp.test_utils import TestServer

from draftline.client import ChatClient
from draftline.config import ClientConfig, RelayConfig
from draftline.drafts import Phase
from draftline.relay import Relay, create_app
from draftline.store import ConversationStore

ALICE = "alice"
BOB = "bob"


class ChatClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.relay = Relay()
        self.server = TestServer(create_app(RelayConfig(heartbeat_s=None), relay=self.relay))
        await self.server.start_server()
        self.base_url = str(self.server.make_url("/"))
        self.closed = []
        self.clients = []

    async def asyncTearDown(self):
        for client in self.clients:
            await client.close()
        await self.server.close()

    async def _client(self, user, store=None, **config):
        client = ChatClient(
            ClientConfig(base_url=self.base_url, user_id=user, heartbeat_s=None, **config),
            store=store,
            on_closed=lambda code, user=user: self.closed.append((user, code)),
        )
        await client.connect()
        self.clients.append(client)
        await self._wait_until(lambda: self.relay.hub.is_connected(user))
        return client

    async def _wait_until(self, predicate):
        for _ in range(300):
            if predicate():
                return
            await asyncio.sleep(0.01)
        self.fail("condition not reached")

    async def test_live_draft_reaches_peer_and_finalizes(self):
        alice = await self._client(ALICE)
        bob = await self._client(BOB)

        await alice.type_text("H", BOB)
        await alice.type_text("Hi", BOB)
        await self._wait_until(lambda: alice.store.local_draft.phase is Phase.ACTIVE)
        await self._wait_until(lambda: bob.store.remote_drafts.get(ALICE) is not None)
        await self._wait_until(lambda: bob.store.remote_drafts[ALICE].content == "Hi")

        await alice.type_text("Hi!", BOB)
        await self._wait_until(lambda: bob.store.remote_drafts[ALICE].content == "Hi!")

        await alice.send_draft()
        await self._wait_until(lambda: len(alice.store.messages) == 1 and len(bob.store.messages) == 1)

        self.assertIs(alice.store.local_draft.phase, Phase.IDLE)
        self.assertNotIn(ALICE, bob.store.remote_drafts)
        sent, received = alice.store.messages[0], bob.store.messages[0]
        self.assertEqual(sent.id, received.id)
        self.assertEqual((sent.content, received.content), ("Hi!", "Hi!"))
        self.assertEqual(received.sender, ALICE)
        self.assertLessEqual(received.start_time, received.end_time)
        self.assertEqual(bob.store.peers(), [ALICE])
        self.assertEqual(len(bob.store.timeline(ALICE)), 1)

    async def test_echo_stamped_before_local_start_keeps_session(self):
        skewed = ConversationStore(ALICE, now_func=lambda: 2**62)
        alice = await self._client(ALICE, store=skewed)
        bob = await self._client(BOB)

        await alice.type_text("hi", BOB)
        await self._wait_until(lambda: alice.store.local_draft.phase is Phase.ACTIVE)
        await alice.send_draft()
        await self._wait_until(lambda: len(bob.store.messages) == 1)

        await bob.send_message("still there?", ALICE)
        await self._wait_until(lambda: len(alice.store.messages) == 1)

        self.assertTrue(alice.connected)
        self.assertEqual(self.closed, [])
        self.assertEqual(alice.store.messages[0].content, "still there?")
        self.assertIs(alice.store.local_draft.phase, Phase.ACTIVE)

    async def test_instant_message(self):
        alice = await self._client(ALICE)
        bob = await self._client(BOB)

        await bob.send_message("ping", ALICE)
        await self._wait_until(lambda: len(alice.store.messages) == 1)

        self.assertEqual(alice.store.messages[0].content, "ping")
        self.assertEqual(alice.store.messages[0].sender, BOB)
        self.assertEqual(bob.store.messages[0].id, alice.store.messages[0].id)

    async def test_peer_disconnect_abandons_draft(self):
        alice = await self._client(ALICE)
        bob = await self._client(BOB)

        await alice.type_text("never sent", BOB)
        await self._wait_until(lambda: bob.store.remote_drafts.get(ALICE) is not None)
        await alice.close()

        await self._wait_until(lambda: ALICE not in bob.store.remote_drafts)
        self.assertEqual(bob.store.messages, ())
        self.assertEqual(self.closed[0][0], ALICE)
        self.assertTrue(alice.store.state.is_empty)

    async def test_close_resets_store(self):
        alice = await self._client(ALICE)
        bob = await self._client(BOB)
        await bob.send_message("yo", ALICE)
        await self._wait_until(lambda: len(alice.store.messages) == 1)

        await alice.close()

        self.assertTrue(alice.store.state.is_empty)
        self.assertFalse(alice.connected)
        self.assertIn(ALICE, [user for user, _ in self.closed])

    async def test_refused_connection_ends_session(self):
        await self._client(ALICE)
        again = ChatClient(
            ClientConfig(base_url=self.base_url, user_id=ALICE, heartbeat_s=None),
            on_closed=lambda code: self.closed.append(("again", code)),
        )
        self.clients.append(again)
        await again.connect()
        await asyncio.wait_for(again.wait_closed(), timeout=2)

        self.assertEqual(again.close_code, 4000)
        self.assertIn(("again", 4000), self.closed)

    def test_user_id_required(self):
        with self.assertRaises(ValueError):
            ChatClient(ClientConfig(base_url=self.base_url))


if __name__ == "__main__":
    unittest.main()
