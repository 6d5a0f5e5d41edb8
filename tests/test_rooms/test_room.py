# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import asyncio

from pytest import mark, raises

from roomkey.backends.memory import MemoryServer
from roomkey.client import Client
from roomkey.e2e.errors import KeyCreationFailure
from roomkey.e2e.keys import (
    generate_session_key, import_public_key, unwrap_session_key,
    wrap_session_key,
)
from roomkey.rooms.messages import E2EStatus, Message, MessageType
from roomkey.rooms.metadata import RoomMetadata
from roomkey.rooms.room import RoomE2EE

from ..conftest import message, settle

pytestmark = mark.asyncio


def key_calls(client: Client, name: str) -> list:
    return [call for call in client.rpc.calls if call[0] == name]


def give_foreign_key(server: MemoryServer, room_id: str, user_id: str):
    """Publish a new key ID for the room, and give `user_id` a key that
    doesn't match it."""

    public = import_public_key(server.public_keys[user_id])
    wrong  = wrap_session_key(generate_session_key(), public)

    server.rooms[room_id] = server.rooms[room_id].but(
        room_key_id="otherkeyid12",
    )

    sub = server.subscriptions[room_id, user_id]
    server.subscriptions[room_id, user_id] = sub.but(encrypted_key=wrong)


async def test_create_group_key(server, room_id, rsa_keys, alice):
    room = alice.open_room(room_id)
    assert room.running
    await settle(alice)

    assert room.has_key() and room.has_key_id() and room.has_exported_key()
    assert server.rooms[room_id].room_key_id == room.key_id
    assert room.metadata.room_key_id == room.key_id
    assert key_calls(alice, "set_room_key_id") == [
        ("set_room_key_id", room_id, room.key_id),
    ]

    pushes = key_calls(alice, "push_group_key_to_participant")
    assert [(call[1], call[2]) for call in pushes] == [
        (room_id, "alice"), (room_id, "bob"),
    ]

    for _, _, user_id, wrapped in pushes:
        assert wrapped.startswith(room.key_id)
        assert server.subscriptions[room_id, user_id].encrypted_key == wrapped
        assert unwrap_session_key(wrapped, rsa_keys[user_id]) == room.session


async def test_import_subscription_key(room_id, alice, clients):
    alice_room = alice.open_room(room_id)
    await settle(alice)

    bob      = clients.bob
    bob_room = bob.open_room(room_id)
    await settle(alice, bob)

    assert bob_room.session == alice_room.session
    assert not key_calls(bob, "set_room_key_id")
    assert not bob.notifications.sent


async def test_send_and_receive(server, room_id, alice, clients):
    alice_room = alice.open_room(room_id)
    await settle(alice)

    bob = clients.bob
    bob.open_room(room_id)
    await settle(alice, bob)

    sent = await alice.before_send(message(1, text="secret"))
    assert sent.type == MessageType.e2e
    assert sent.e2e_status == E2EStatus.pending
    assert sent.text.startswith(alice_room.key_id)
    assert "secret" not in sent.text
    assert await alice.before_send(sent) is sent

    server.add_message(sent)
    await settle(alice, bob)

    stored = bob.store.find_messages(room_id)
    assert [(m.text, m.e2e_status) for m in stored] == [
        ("secret", E2EStatus.done),
    ]

    assert bob.store.rooms[room_id].last_message.text == "secret"
    assert bob.store.subscriptions[room_id].last_message.text == "secret"
    assert server.messages[room_id]["m1"].text == sent.text

    received = await bob.on_received(sent)
    assert received.text == "secret"
    assert received.e2e_status == E2EStatus.done


async def test_unencrypted_room_untouched(server, alice):
    server.create_room("plain", ["alice", "bob"], encrypted=False)
    room = alice.open_room("plain")
    await settle(alice)

    assert room.metadata is None
    assert not room.has_key()
    assert not alice.rpc.calls

    msg = message(1, room_id="plain")
    assert await alice.before_send(msg) is msg


async def test_request_key_from_members(server, room_id, alice, clients):
    alice_room = alice.open_room(room_id)
    await settle(alice)

    server.add_member(room_id, "carol")
    carol      = clients.carol
    carol_room = carol.open_room(room_id)
    await settle(alice, carol)

    assert carol.notifications.sent == [(room_id, alice_room.key_id)]
    assert not key_calls(carol, "set_room_key_id")
    assert carol_room.session == alice_room.session
    assert server.subscriptions[room_id, "carol"].encrypted_key


async def test_mismatched_key_not_adopted(server, room_id, clients):
    give_foreign_key(server, room_id, "bob")

    bob  = clients.bob
    room = bob.open_room(room_id)
    await settle(bob)

    assert room.session is None
    assert not room.has_key() and not room.has_key_id()
    assert bob.notifications.sent == [(room_id, "otherkeyid12")]
    assert not key_calls(bob, "set_room_key_id")


async def test_undecryptable_key_not_adopted(server, room_id, clients):
    carol_public = import_public_key(server.public_keys["carol"])
    wrapped      = wrap_session_key(generate_session_key(), carol_public)
    sub          = server.subscriptions[room_id, "bob"]

    server.subscriptions[room_id, "bob"] = sub.but(encrypted_key=wrapped)

    bob  = clients.bob
    room = bob.open_room(room_id)
    await settle(bob)

    assert room.session is None
    assert not bob.notifications.sent
    assert not key_calls(bob, "set_room_key_id")


async def test_key_id_change_discards_key(room_id, alice, clients):
    alice_room = alice.open_room(room_id)
    await settle(alice)

    bob      = clients.bob
    bob_room = bob.open_room(room_id)
    await settle(alice, bob)

    states = []

    def record() -> None:
        states.append((
            bob_room.has_key(),
            bob_room.has_key_id(),
            bob_room.has_exported_key(),
        ))

    bob_room.signals.on("key_changed", record)

    await alice.rpc.set_room_key_id(room_id, "rotatedkey12")
    await settle(alice, bob)

    assert bob_room.session is None
    assert alice_room.session is None
    assert (room_id, "rotatedkey12") in bob.notifications.sent
    assert (room_id, "rotatedkey12") in alice.notifications.sent

    assert states
    assert all(state in ((True,) * 3, (False,) * 3) for state in states)


async def test_leaving_room_discards_key(server, room_id, alice):
    room = alice.open_room(room_id)
    await settle(alice)
    assert room.has_key()

    server.remove_member(room_id, "alice")
    await settle(alice)

    assert room.metadata is None
    assert room.session is None


async def test_encrypt_waits_for_key(server, room_id, alice, clients):
    alice.open_room(room_id)
    await settle(alice)
    alice.rooms.close(room_id)

    server.add_member(room_id, "carol")
    carol      = clients.carol
    carol_room = carol.open_room(room_id)
    await settle(alice, carol)

    # Nobody had the room open to answer carol's request
    assert carol.notifications.sent
    assert not carol_room.has_key()

    task = asyncio.ensure_future(
        carol.before_send(message(2, text="hey", sender="carol")),
    )
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert not task.done()
    assert carol_room.session_waiter.waiting == 1

    alice_room = alice.open_room(room_id)
    await settle(alice, carol)
    assert alice_room.has_key()

    assert await alice_room.provide_key_to_user(alice_room.key_id) == [
        "carol",
    ]
    await settle(alice, carol)

    encrypted = await asyncio.wait_for(task, timeout=5)
    assert encrypted.text.startswith(alice_room.key_id)

    decrypted = await alice_room.decrypt_message(encrypted)
    assert decrypted.text == "hey"


async def test_provide_key_ignores_other_ids(room_id, alice):
    room = alice.open_room(room_id)
    await settle(alice)
    calls = len(alice.rpc.calls)

    assert await room.provide_key_to_user("otherkeyid12") == []
    assert await room.provide_key_to_user("") == []
    assert len(alice.rpc.calls) == calls


async def test_distribution_skips_users_without_key(server, room_id, alice):
    server.add_member(room_id, "dave")
    server.add_member(room_id, "eve")
    server.register_public_key("eve", "not a public key")

    room = alice.open_room(room_id)
    await settle(alice)

    assert room.has_key()
    assert server.subscriptions[room_id, "bob"].encrypted_key
    assert server.subscriptions[room_id, "dave"].encrypted_key is None
    assert server.subscriptions[room_id, "eve"].encrypted_key is None

    # Failures aren't retried
    assert await room.distributor.distribute() == []


async def test_wait_for_metadata(room_id, alice):
    room = alice.open_room(room_id)
    meta = await asyncio.wait_for(room.wait_for_metadata(), timeout=5)

    assert isinstance(meta, RoomMetadata)
    assert meta.encryption_required
    await settle(alice)


async def test_create_group_key_failure(alice):
    room = RoomE2EE(alice, "not_a_member")

    with raises(KeyCreationFailure):
        await room.create_group_key()

    assert room.session is None
    assert not room.has_key()


async def test_metadata_changes_handled_serially(server, room_id, alice):
    room     = RoomE2EE(alice, room_id)
    original = room._handle_metadata_changed
    active   = []
    calls    = []

    async def handle() -> None:
        active.append(1)
        calls.append(len(active))
        await asyncio.sleep(0.01)
        await original()
        active.pop()

    room._handle_metadata_changed = handle  # type: ignore
    room.start()

    for number in range(1, 6):
        server.add_message(message(number))
        await asyncio.sleep(0)

    await room.settle()
    room.stop()

    assert calls == [1, 1]
    assert room.metadata.last_message.id == "m5"
    assert room.key_id == server.rooms[room_id].room_key_id


async def test_stopped_room_ignores_changes(server, room_id, alice):
    room = alice.open_room(room_id)
    await settle(alice)
    room.stop()
    assert not room.running

    metadata = room.metadata
    server.add_message(message(1))
    await settle(alice)

    assert room.metadata is metadata
    assert room._transition_task.done()

async def test_wait_for_key_and_key_id(server, room_id, alice):
    room    = RoomE2EE(alice, room_id)
    key     = asyncio.ensure_future(room.wait_for_key())
    key_id  = asyncio.ensure_future(room.wait_for_key_id())
    await asyncio.sleep(0)

    assert not key.done() and not key_id.done()
    assert room.key_waiter.waiting == 1
    assert room.key_id_waiter.waiting == 1

    room.start()

    assert await asyncio.wait_for(key, timeout=5) == room.key
    assert await asyncio.wait_for(key_id, timeout=5) == room.key_id
    assert room.key_id == server.rooms[room_id].room_key_id

    # Already available, returned without waiting
    assert await room.wait_for_key_id() == room.key_id

    room.stop()
    await room.settle()


async def test_concurrent_key_requests_push_once(
    server, room_id, alice, monkeypatch,
):
    room = alice.open_room(room_id)
    await settle(alice)

    server.add_member(room_id, "carol")
    await settle(alice)

    original = alice.rpc.get_participants_without_key

    async def get_participants_without_key(room_id: str) -> list:
        await asyncio.sleep(0.01)
        return await original(room_id)

    monkeypatch.setattr(
        alice.rpc,
        "get_participants_without_key",
        get_participants_without_key,
    )

    results = await asyncio.gather(
        room.provide_key_to_user(room.key_id),
        room.provide_key_to_user(room.key_id),
    )

    assert sorted(results) == [[], ["carol"]]

    pushes = key_calls(alice, "push_group_key_to_participant")
    assert [call[2] for call in pushes].count("carol") == 1


async def test_transition_errors_logged(
    server, room_id, alice, clients, monkeypatch,
):
    alice.open_room(room_id)
    await settle(alice)

    bob = clients.bob
    server.add_message(await alice.before_send(message(1, text="first")))
    await settle(alice)

    errors   = []
    original = bob.store.update_message

    async def update_message(msg: Message) -> None:
        raise RuntimeError("store unavailable")

    bob.logger.add(errors.append, level="ERROR")
    monkeypatch.setattr(bob.store, "update_message", update_message)

    room = bob.open_room(room_id)
    await settle(alice, bob)

    assert room._transition_task.exception() is None
    assert errors
    assert all(e.record["exception"].type is RuntimeError for e in errors)
    assert bob.store.find_messages(room_id, "e2e", E2EStatus.pending)

    # Later changes are still handled
    monkeypatch.setattr(bob.store, "update_message", original)
    server.add_message(message(2, text="plain"))
    await settle(alice, bob)

    assert not bob.store.find_messages(room_id, "e2e", E2EStatus.pending)
    assert bob.store.find_messages(room_id)[0].text == "first"
