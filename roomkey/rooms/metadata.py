# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, FrozenSet, Optional

from ..core.data import Runtime
from ..core.signals import Subscription
from .messages import Message

if TYPE_CHECKING:
    from ..backends.base import Store

# Room types for which end-to-end encryption can be turned on:
# direct chats and private groups
E2E_ROOM_TYPES: FrozenSet[str] = frozenset({"d", "p"})


@dataclass(frozen=True)
class RoomMetadata:
    user_id:                str
    encryption_required:    bool
    room_key_id:            Optional[str]     = None
    encrypted_key_for_user: Optional[str]     = None
    last_message:           Optional[Message] = None


def get_room_metadata(
    store: "Store", room_id: str, user_id: Optional[str],
) -> Optional[RoomMetadata]:
    """Return what matters for encryption in a room, `None` if the room
    isn't eligible for end-to-end encryption."""

    if not user_id:
        return None

    subscription = store.find_subscription(room_id)
    room         = store.find_room(room_id)

    if not subscription or not room:
        return None

    if room.type not in E2E_ROOM_TYPES:
        return None

    if not room.encrypted and not subscription.encrypted_key:
        return None

    if not room.encrypted and not room.room_key_id:
        return None

    return RoomMetadata(
        user_id                = user_id,
        encryption_required    = room.encrypted is True,
        room_key_id            = room.room_key_id,
        encrypted_key_for_user = subscription.encrypted_key,
        last_message           = room.last_message,
    )


@dataclass
class MetadataObserver:
    """Follow a room's `RoomMetadata`, calling `on_change` when it differs
    from the last observed value."""

    store:     "Store"                                   = field(repr=False)
    room_id:   str
    user_id:   str
    on_change: Callable[[Optional[RoomMetadata]], None] = field(repr=False)

    metadata: Runtime[Optional[RoomMetadata]] = field(
        init=False, default=None,
    )

    _subscription: Runtime[Optional[Subscription]] = field(
        init=False, repr=False, default=None,
    )


    @property
    def running(self) -> bool:
        return self._subscription is not None


    def start(self) -> None:
        if self._subscription:
            return

        self._subscription = self.store.watch_room(self.room_id, self.evaluate)
        self.evaluate()


    def stop(self) -> None:
        if self._subscription:
            self._subscription.cancel()
            self._subscription = None


    def evaluate(self) -> None:
        metadata = get_room_metadata(self.store, self.room_id, self.user_id)
        self.feed(metadata)


    def feed(self, metadata: Optional[RoomMetadata]) -> None:
        if metadata == self.metadata:
            return

        self.metadata = metadata
        self.on_change(metadata)
