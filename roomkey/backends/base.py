# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

"""Contracts of the services a room's encryption manager depends on.

- `Store`: local replica of rooms, subscriptions and messages, which can be
  watched for changes. Reads are synchronous, writes are coroutines.
- `RPC`: server methods for publishing key IDs and distributing keys.
- `Notifications`: room-wide key requests, sent and received.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, runtime_checkable

from ..core.data import JSON
from ..core.signals import Subscription
from ..rooms.messages import E2EStatus, Message

WatchCallback      = Callable[[], None]
KeyRequestCallback = Callable[[str, str], None]  # (room_id, key_id)


@dataclass
class Room(JSON):
    aliases = {
        "id":           "_id",
        "type":         "t",
        "room_key_id":  "e2eKeyId",
        "last_message": "lastMessage",
    }

    id:           str
    type:         str               = "p"
    encrypted:    bool              = False
    room_key_id:  Optional[str]     = None
    last_message: Optional[Message] = None


@dataclass
class RoomSubscription(JSON):
    """The current user's membership of a room."""

    aliases = {
        "room_id":       "rid",
        "user_id":       ("u", "_id"),
        "encrypted_key": "E2EKey",
        "last_message":  "lastMessage",
    }

    room_id:       str
    user_id:       str
    encrypted_key: Optional[str]     = None
    last_message:  Optional[Message] = None


@dataclass
class Participant(JSON):
    aliases = {"id": "_id", "public_key": ("e2e", "public_key")}

    id:         str
    public_key: Optional[str] = None


@runtime_checkable
class Store(Protocol):
    def find_room(self, room_id: str) -> Optional[Room]:
        ...

    def find_subscription(self, room_id: str) -> Optional[RoomSubscription]:
        ...

    def find_messages(
        self,
        room_id:    str,
        type:       Optional[str]       = None,
        e2e_status: Optional[E2EStatus] = None,
    ) -> List[Message]:
        ...

    def watch_room(
        self, room_id: str, callback: WatchCallback,
    ) -> Subscription:
        """Call `callback` after any change to the room, its subscription
        or its messages, until the returned subscription is cancelled."""
        ...

    async def update_room_last_message(
        self, room_id: str, text: str, e2e_status: Optional[E2EStatus],
    ) -> None:
        ...

    async def update_subscription_last_message(
        self, room_id: str, text: str, e2e_status: Optional[E2EStatus],
    ) -> None:
        ...

    async def update_message(self, message: Message) -> None:
        ...


@runtime_checkable
class RPC(Protocol):
    async def set_room_key_id(self, room_id: str, key_id: str) -> None:
        ...

    async def get_participants_without_key(
        self, room_id: str,
    ) -> List[Participant]:
        ...

    async def push_group_key_to_participant(
        self, room_id: str, user_id: str, wrapped_key: str,
    ) -> None:
        ...


@runtime_checkable
class Notifications(Protocol):
    async def broadcast_key_request(self, room_id: str, key_id: str) -> None:
        ...

    def on_key_request(self, callback: KeyRequestCallback) -> Subscription:
        ...
