# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

"""In-memory server and per-user replicas implementing the backend contracts.

The `MemoryServer` holds the authoritative rooms, subscriptions, messages
and public keys. Every user gets a `MemoryStore` replica which, like a
client-side cache, can be modified locally (e.g. to store decrypted texts)
and receives the server's changes as they happen.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sortedcollections import ValueSortedDict

from ..core.data import EPOCH, Parent, Runtime
from ..core.signals import Emitter, Subscription
from ..rooms.messages import E2EStatus, Message
from .base import (
    KeyRequestCallback, Participant, Room, RoomSubscription, WatchCallback,
)


def _message_order(message: Message) -> Tuple:
    return (message.timestamp or EPOCH, message.id)


def _new_timeline() -> ValueSortedDict:
    return ValueSortedDict(_message_order)


@dataclass
class MemoryStore:
    server:  Parent["MemoryServer"] = field(repr=False)
    user_id: str

    rooms:         Dict[str, Room]             = field(default_factory=dict)
    subscriptions: Dict[str, RoomSubscription] = field(default_factory=dict)

    # {room_id: {message_id: Message}}, sorted by message date
    messages: Dict[str, ValueSortedDict] = field(default_factory=dict)

    _watchers: Runtime[Emitter] = field(
        init=False, repr=False, default_factory=Emitter,
    )


    def find_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)


    def find_subscription(self, room_id: str) -> Optional[RoomSubscription]:
        return self.subscriptions.get(room_id)


    def find_messages(
        self,
        room_id:    str,
        type:       Optional[str]       = None,
        e2e_status: Optional[E2EStatus] = None,
    ) -> List[Message]:

        return [
            message for message in self.messages.get(room_id, {}).values()
            if (type is None or message.type == type) and
            (e2e_status is None or message.e2e_status == e2e_status)
        ]


    def watch_room(
        self, room_id: str, callback: WatchCallback,
    ) -> Subscription:
        return self._watchers.on(room_id, callback)


    async def update_room_last_message(
        self, room_id: str, text: str, e2e_status: Optional[E2EStatus],
    ) -> None:

        room = self.rooms.get(room_id)

        if room and room.last_message:
            last = room.last_message.but(text=text, e2e_status=e2e_status)
            self._set_room(room.but(last_message=last))


    async def update_subscription_last_message(
        self, room_id: str, text: str, e2e_status: Optional[E2EStatus],
    ) -> None:

        sub = self.subscriptions.get(room_id)

        if sub and sub.last_message:
            last = sub.last_message.but(text=text, e2e_status=e2e_status)
            self._set_subscription(sub.but(last_message=last))


    async def update_message(self, message: Message) -> None:
        timeline = self.messages.setdefault(message.room_id, _new_timeline())

        if timeline.get(message.id) != message:
            timeline[message.id] = message
            self._changed(message.room_id)


    def _set_room(self, room: Room) -> None:
        if self.rooms.get(room.id) != room:
            self.rooms[room.id] = room
            self._changed(room.id)


    def _set_subscription(self, subscription: RoomSubscription) -> None:
        if self.subscriptions.get(subscription.room_id) != subscription:
            self.subscriptions[subscription.room_id] = subscription
            self._changed(subscription.room_id)


    def _changed(self, room_id: str) -> None:
        self._watchers.emit(room_id)


@dataclass
class MemoryRPC:
    server:  Parent["MemoryServer"] = field(repr=False)
    user_id: str

    calls: Runtime[List[Tuple]] = field(default_factory=list)


    async def set_room_key_id(self, room_id: str, key_id: str) -> None:
        self.calls.append(("set_room_key_id", room_id, key_id))
        self.server._check_member(room_id, self.user_id)

        room = self.server.rooms[room_id]
        self.server.rooms[room_id] = room.but(room_key_id=key_id)

        for store in self.server._stores_of(room_id):
            replica = store.rooms.get(room_id)
            if replica:
                store._set_room(replica.but(room_key_id=key_id))


    async def get_participants_without_key(
        self, room_id: str,
    ) -> List[Participant]:

        self.calls.append(("get_participants_without_key", room_id))
        self.server._check_member(room_id, self.user_id)

        return [
            Participant(user_id, self.server.public_keys.get(user_id))
            for user_id in sorted(self.server.members[room_id])
            if not self.server.subscriptions[room_id, user_id].encrypted_key
        ]


    async def push_group_key_to_participant(
        self, room_id: str, user_id: str, wrapped_key: str,
    ) -> None:

        call = ("push_group_key_to_participant", room_id, user_id, wrapped_key)
        self.calls.append(call)
        self.server._check_member(room_id, self.user_id)
        self.server._check_member(room_id, user_id)

        sub = self.server.subscriptions[room_id, user_id]
        sub = sub.but(encrypted_key=wrapped_key)
        self.server.subscriptions[room_id, user_id] = sub

        store = self.server.stores.get(user_id)
        if store:
            store._set_subscription(deepcopy(sub))


@dataclass
class MemoryNotifications:
    server:  Parent["MemoryServer"] = field(repr=False)
    user_id: str

    sent: Runtime[List[Tuple[str, str]]] = field(default_factory=list)


    async def broadcast_key_request(self, room_id: str, key_id: str) -> None:
        self.sent.append((room_id, key_id))

        for user_id in sorted(self.server.members.get(room_id, ())):
            if user_id != self.user_id:
                self.server._key_requests.emit(user_id, room_id, key_id)


    def on_key_request(self, callback: KeyRequestCallback) -> Subscription:
        return self.server._key_requests.on(self.user_id, callback)


@dataclass
class MemoryServer:
    rooms:       Dict[str, Room]     = field(default_factory=dict)
    members:     Dict[str, Set[str]] = field(default_factory=dict)
    public_keys: Dict[str, str]      = field(default_factory=dict)

    # {(room_id, user_id): subscription}
    subscriptions: Dict[Tuple[str, str], RoomSubscription] = field(
        default_factory=dict,
    )

    # {room_id: {message_id: Message}}
    messages: Dict[str, ValueSortedDict] = field(default_factory=dict)

    stores: Runtime[Dict[str, MemoryStore]] = field(default_factory=dict)

    _key_requests: Runtime[Emitter] = field(
        init=False, repr=False, default_factory=Emitter,
    )


    def store_for(self, user_id: str) -> MemoryStore:
        if user_id not in self.stores:
            store = MemoryStore(self, user_id)

            for room_id, members in self.members.items():
                if user_id in members:
                    self._replicate(store, room_id)

            self.stores[user_id] = store

        return self.stores[user_id]


    def rpc_for(self, user_id: str) -> MemoryRPC:
        return MemoryRPC(self, user_id)


    def notifications_for(self, user_id: str) -> MemoryNotifications:
        return MemoryNotifications(self, user_id)


    def register_public_key(self, user_id: str, public_key: str) -> None:
        self.public_keys[user_id] = public_key


    def create_room(
        self,
        room_id:   str,
        members:   Iterable[str] = (),
        type:      str           = "p",
        encrypted: bool          = True,
    ) -> Room:

        self.rooms[room_id]    = Room(room_id, type, encrypted)
        self.members[room_id]  = set()
        self.messages[room_id] = _new_timeline()

        for user_id in members:
            self.add_member(room_id, user_id)

        return self.rooms[room_id]


    def set_encrypted(self, room_id: str, encrypted: bool = True) -> None:
        self.rooms[room_id] = self.rooms[room_id].but(encrypted=encrypted)

        for store in self._stores_of(room_id):
            replica = store.rooms.get(room_id)
            if replica:
                store._set_room(replica.but(encrypted=encrypted))


    def add_member(self, room_id: str, user_id: str) -> None:
        self.members[room_id].add(user_id)

        room = self.rooms[room_id]
        sub  = RoomSubscription(room_id, user_id, None, room.last_message)
        self.subscriptions[room_id, user_id] = sub

        if user_id in self.stores:
            self._replicate(self.stores[user_id], room_id)

        for store in self._stores_of(room_id):
            store._changed(room_id)


    def remove_member(self, room_id: str, user_id: str) -> None:
        self.members[room_id].discard(user_id)
        self.subscriptions.pop((room_id, user_id), None)

        store = self.stores.get(user_id)
        if store:
            store.rooms.pop(room_id, None)
            store.subscriptions.pop(room_id, None)
            store.messages.pop(room_id, None)
            store._changed(room_id)


    def add_message(self, message: Message) -> None:
        room_id = message.room_id
        self.messages[room_id][message.id] = message

        room                = self.rooms[room_id].but(last_message=message)
        self.rooms[room_id] = room

        for user_id in self.members[room_id]:
            sub = self.subscriptions[room_id, user_id]
            self.subscriptions[room_id, user_id] = sub.but(
                last_message=message,
            )

        for store in self._stores_of(room_id):
            timeline = store.messages.setdefault(room_id, _new_timeline())
            timeline[message.id] = deepcopy(message)

            replica = store.rooms[room_id].but(last_message=deepcopy(message))
            store.rooms[room_id] = replica

            sub = store.subscriptions[room_id]
            store.subscriptions[room_id] = sub.but(
                last_message=deepcopy(message),
            )

            store._changed(room_id)


    def _replicate(self, store: MemoryStore, room_id: str) -> None:
        store.rooms[room_id] = deepcopy(self.rooms[room_id])

        store.subscriptions[room_id] = deepcopy(
            self.subscriptions[room_id, store.user_id],
        )

        timeline = _new_timeline()
        timeline.update(deepcopy(dict(self.messages[room_id])))
        store.messages[room_id] = timeline


    def _stores_of(self, room_id: str) -> List[MemoryStore]:
        return [
            store for user_id, store in sorted(self.stores.items())
            if user_id in self.members.get(room_id, ())
        ]


    def _check_member(self, room_id: str, user_id: str) -> None:
        if user_id not in self.members.get(room_id, ()):
            raise PermissionError(f"{user_id} is not in room {room_id}")
