# Tests for ChatSession over the in-process relay
#
# Coverage:
#   - Alice → Bob end to end: directory lookup, dual ciphertext, echo
#   - Reconnect replays history and both sides decrypt it
#   - Unknown recipient, then later registration succeeds
#   - Oversized message rejected before any directory traffic
#   - Malformed inbound frames skipped without stopping dispatch
#   - Transport close cancels pending resolutions; timeout surfaces
#   - Listener notification and listener error isolation
#   - Async listeners run outside dispatch, so they can wait on the directory
#   - A replayed history keeps its valid items when one item is invalid

import asyncio

import pytest

from ciphertalk.chat.session import ChatSession
from ciphertalk.core.exceptions import (
    DirectoryCancelled,
    DirectoryTimeout,
    PlaintextTooLarge,
    RecipientKeyUnavailable,
)
from ciphertalk.relay.loopback import LoopbackTransport


class SilentDirectoryTransport(LoopbackTransport):
    """Loopback transport whose public-key requests never reach the relay."""

    async def send(self, frame):
        if frame.get("type") == "request-publickey":
            self.sent.append(frame)
            return
        await super().send(frame)


async def _until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _connect(identity, relay, key_store, transport_cls=LoopbackTransport, **kwargs):
    session = ChatSession(identity, transport_cls(relay), key_store, **kwargs)
    await session.start()
    await asyncio.wait_for(session.history_received.wait(), timeout=2.0)
    return session


def _sent_of_type(session, frame_type):
    return [f for f in session.transport.sent if f["type"] == frame_type]


class TestStart:
    @pytest.mark.asyncio
    async def test_registers_username_then_key(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        try:
            types = [f["type"] for f in alice.transport.sent]
            assert types[:2] == ["register-username", "register-publickey"]
            assert relay.public_keys["alice"] == key_store.export_public("alice")
            assert relay.online_users() == ["alice"]
            assert alice.running
        finally:
            await alice.close()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        try:
            await alice.start()
            assert len(_sent_of_type(alice, "register-username")) == 1
        finally:
            await alice.close()

    @pytest.mark.asyncio
    async def test_handle_frame_before_start(self, relay, key_store):
        session = ChatSession("alice", LoopbackTransport(relay), key_store)
        with pytest.raises(RuntimeError):
            await session.handle_frame({"type": "init-public", "messages": []})

    def test_empty_identity_rejected(self, relay, key_store):
        with pytest.raises(ValueError):
            ChatSession("", LoopbackTransport(relay), key_store)


class TestPrivateMessaging:
    @pytest.mark.asyncio
    async def test_alice_to_bob(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        bob = await _connect("bob", relay, key_store)
        try:
            envelope = await alice.send_private("bob", "  hello  ")
            assert envelope.timestamp is not None

            await _until(lambda: len(bob.conversation("alice")) == 1)
            await _until(lambda: len(alice.conversation("bob")) == 1)

            received = bob.conversation("alice")[0]
            echoed = alice.conversation("bob")[0]
            assert received.text == "hello" and not received.outgoing
            assert echoed.text == "hello" and echoed.outgoing

            assert len(_sent_of_type(alice, "request-publickey")) == 1
            assert len(_sent_of_type(alice, "private-chat")) == 1
            # the relay only ever stored ciphertext
            stored = relay.private_history[0]
            assert "hello" not in stored.ciphertext_for_recipient
        finally:
            await alice.close()
            await bob.close()

    @pytest.mark.asyncio
    async def test_second_message_uses_cached_key(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        bob = await _connect("bob", relay, key_store)
        try:
            await alice.send_private("bob", "one")
            await alice.send_private("bob", "two")
            await _until(lambda: len(bob.conversation("alice")) == 2)

            assert len(_sent_of_type(alice, "request-publickey")) == 1
            assert [e.text for e in bob.conversation("alice")] == ["one", "two"]
        finally:
            await alice.close()
            await bob.close()

    @pytest.mark.asyncio
    async def test_reconnect_replays_history(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        bob = await _connect("bob", relay, key_store)
        await alice.send_private("bob", "hello")
        await _until(lambda: len(bob.conversation("alice")) == 1)
        await bob.close()
        await alice.close()

        bob = await _connect("bob", relay, key_store)
        alice = await _connect("alice", relay, key_store)
        try:
            assert [e.text for e in bob.conversation("alice")] == ["hello"]
            assert [e.text for e in alice.conversation("bob")] == ["hello"]
        finally:
            await alice.close()
            await bob.close()

    @pytest.mark.asyncio
    async def test_unknown_recipient_then_registration(self, relay, key_store):
        carol = await _connect("carol", relay, key_store)
        try:
            with pytest.raises(RecipientKeyUnavailable):
                await carol.send_private("dave", "are you there?")
            assert _sent_of_type(carol, "private-chat") == []

            dave = await _connect("dave", relay, key_store)
            try:
                await carol.send_private("dave", "now you are")
                await _until(lambda: len(dave.conversation("carol")) == 1)
                assert dave.conversation("carol")[0].text == "now you are"
                assert len(_sent_of_type(carol, "request-publickey")) == 2
            finally:
                await dave.close()
        finally:
            await carol.close()

    @pytest.mark.asyncio
    async def test_oversized_rejected_before_lookup(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        try:
            with pytest.raises(PlaintextTooLarge):
                await alice.send_private("bob", "x" * 191)
            assert _sent_of_type(alice, "request-publickey") == []
        finally:
            await alice.close()

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        try:
            with pytest.raises(ValueError):
                await alice.send_private("bob", "   ")
            with pytest.raises(ValueError):
                await alice.send_private("", "hi")
        finally:
            await alice.close()

    @pytest.mark.asyncio
    async def test_message_to_self(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        try:
            await alice.send_private("alice", "memo")
            await _until(lambda: len(alice.conversation("alice")) == 1)
            assert alice.conversation("alice")[0].text == "memo"
            # own key is primed, no lookup needed
            assert _sent_of_type(alice, "request-publickey") == []
        finally:
            await alice.close()


class TestPublicMessaging:
    @pytest.mark.asyncio
    async def test_broadcast_and_history(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        bob = await _connect("bob", relay, key_store)
        try:
            await alice.send_public("hi everyone")
            await _until(lambda: len(bob.public_messages()) == 1)
            await _until(lambda: len(alice.public_messages()) == 1)
            assert bob.public_messages()[0].username == "alice"
        finally:
            await bob.close()

        carol = await _connect("carol", relay, key_store)
        try:
            assert [m.text for m in carol.public_messages()] == ["hi everyone"]
        finally:
            await carol.close()
            await alice.close()


class TestResilience:
    @pytest.mark.asyncio
    async def test_malformed_frame_skipped(self, relay, key_store):
        alice = await _connect("alice", relay, key_store)
        try:
            alice.transport.inject({"type": "private-chat", "from": "mallory"})
            alice.transport.inject({"type": "something-new"})
            alice.transport.inject({
                "type": "public-chat", "username": "bob", "text": "still here",
            })
            await _until(lambda: len(alice.public_messages()) == 1)
            assert alice.running
        finally:
            await alice.close()

    @pytest.mark.asyncio
    async def test_foreign_private_frame_ignored(self, relay, key_store, alice_keys, bob_keys):
        from ciphertalk.e2e.message_codec import build_envelope

        carol = await _connect("carol", relay, key_store)
        try:
            env = build_envelope(
                "alice", "bob", "not for carol",
                bob_keys.public_key, alice_keys.public_key,
            )
            carol.transport.inject({"type": "private-chat", **env.to_dict()})
            carol.transport.inject({"type": "public-chat", "username": "x", "text": "sync"})
            await _until(lambda: len(carol.public_messages()) == 1)
            assert carol.reconciler.peers() == []
        finally:
            await carol.close()

    @pytest.mark.asyncio
    async def test_history_keeps_valid_items_around_invalid_one(
        self, relay, key_store, alice_keys,
    ):
        from ciphertalk.e2e.message_codec import build_envelope

        alice = await _connect("alice", relay, key_store)
        try:
            own_key = alice.key_pair.public_key
            good = build_envelope("bob", "alice", "hey", own_key, alice_keys.public_key)
            broken = good.to_dict()
            del broken["ciphertextForSender"]

            alice.history_received.clear()
            alice.transport.inject({
                "type": "init-private", "messages": [good.to_dict(), broken],
            })
            await asyncio.wait_for(alice.history_received.wait(), timeout=2.0)
            assert [e.text for e in alice.conversation("bob")] == ["hey"]
        finally:
            await alice.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_resolution(self, relay, key_store):
        alice = await _connect(
            "alice", relay, key_store, transport_cls=SilentDirectoryTransport,
        )
        pending = asyncio.create_task(alice.send_private("bob", "hi"))
        await _until(lambda: alice.directory.is_pending("bob"))

        await alice.close()
        with pytest.raises(DirectoryCancelled):
            await pending
        assert not alice.running

    @pytest.mark.asyncio
    async def test_transport_eof_cancels_pending(self, relay, key_store):
        alice = await _connect(
            "alice", relay, key_store, transport_cls=SilentDirectoryTransport,
        )
        pending = asyncio.create_task(alice.send_private("bob", "hi"))
        await _until(lambda: alice.directory.is_pending("bob"))

        await alice.transport.close()
        with pytest.raises(DirectoryCancelled):
            await pending
        await asyncio.wait_for(alice.wait_closed(), timeout=2.0)
        assert not alice.running

    @pytest.mark.asyncio
    async def test_directory_timeout(self, relay, key_store):
        alice = await _connect(
            "alice", relay, key_store,
            transport_cls=SilentDirectoryTransport, directory_timeout=0.05,
        )
        try:
            with pytest.raises(DirectoryTimeout):
                await alice.send_private("bob", "hi")
            assert _sent_of_type(alice, "private-chat") == []
        finally:
            await alice.close()


class TestListeners:
    @pytest.mark.asyncio
    async def test_private_listeners(self, relay, key_store):
        seen_sync = []
        seen_async = []

        async def on_private_async(entry):
            seen_async.append(entry.text)

        def broken(entry):
            raise RuntimeError("listener bug")

        alice = await _connect("alice", relay, key_store)
        bob = await _connect("bob", relay, key_store)
        bob.subscribe("private", broken)
        bob.subscribe("private", lambda entry: seen_sync.append(entry.text))
        bob.subscribe("private", on_private_async)
        try:
            await alice.send_private("bob", "ping")
            await _until(lambda: seen_async == ["ping"])
            assert seen_sync == ["ping"]
            assert bob.running
        finally:
            await alice.close()
            await bob.close()

    @pytest.mark.asyncio
    async def test_history_and_closed_listeners(self, relay, key_store):
        events = []
        session = ChatSession("alice", LoopbackTransport(relay), key_store)
        session.subscribe("private_history", lambda entries: events.append(("history", entries)))
        session.subscribe("public_history", lambda msgs: events.append(("public", msgs)))
        session.subscribe("closed", lambda _: events.append(("closed", None)))
        await session.start()
        await asyncio.wait_for(session.history_received.wait(), timeout=2.0)
        await session.close()

        assert [kind for kind, _ in events] == ["public", "history", "closed"]

    @pytest.mark.asyncio
    async def test_listener_can_send_to_uncached_peer(self, relay, key_store):
        outcome = {}

        alice = await _connect("alice", relay, key_store)
        bob = await _connect("bob", relay, key_store)
        carol = await _connect("carol", relay, key_store)

        async def forward(entry):
            try:
                await bob.send_private("carol", f"fwd: {entry.text}")
                outcome["sent"] = True
            except Exception as exc:
                outcome["error"] = type(exc).__name__

        bob.subscribe("private", forward)
        try:
            await alice.send_private("bob", "pass it on")
            await _until(lambda: outcome, timeout=2.0)
            assert outcome == {"sent": True}

            await _until(lambda: len(carol.conversation("bob")) == 1)
            assert carol.conversation("bob")[0].text == "fwd: pass it on"
        finally:
            await alice.close()
            await bob.close()
            await carol.close()

    @pytest.mark.asyncio
    async def test_close_waits_for_listener_tasks(self, relay, key_store):
        finished = []

        async def slow(entry):
            await asyncio.sleep(0.05)
            finished.append(entry.text)

        alice = await _connect("alice", relay, key_store)
        alice.subscribe("private", slow)
        await alice.send_private("alice", "memo")
        await _until(lambda: len(alice.conversation("alice")) == 1)
        await alice.close()
        assert finished == ["memo"]

    def test_unknown_kind_rejected(self, relay, key_store):
        session = ChatSession("alice", LoopbackTransport(relay), key_store)
        with pytest.raises(ValueError):
            session.subscribe("typing", print)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, relay, key_store):
        seen = []
        listener = seen.append
        alice = await _connect("alice", relay, key_store)
        alice.subscribe("public", listener)
        alice.unsubscribe("public", listener)
        try:
            await alice.send_public("quiet")
            await _until(lambda: len(alice.public_messages()) == 1)
            assert seen == []
        finally:
            await alice.close()
