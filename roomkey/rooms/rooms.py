# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from asyncio import Future, ensure_future, gather
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, Mapping, Optional, Set

from ..core.data import Parent, Runtime
from ..core.signals import Subscription
from .messages import Message
from .room import RoomE2EE

if TYPE_CHECKING:
    from ..client import Client


@dataclass
class Rooms(Mapping[str, RoomE2EE]):
    """Encryption managers of the rooms currently open, by room ID."""

    client: Parent["Client"]     = field(repr=False)
    _data:  Dict[str, RoomE2EE] = field(default_factory=dict)

    _key_requests: Runtime[Optional[Subscription]] = field(
        init=False, repr=False, default=None,
    )

    _tasks: Runtime[Set[Future]] = field(
        init=False, repr=False, default_factory=set,
    )


    def __post_init__(self) -> None:
        if self.client.notifications:
            self._key_requests = self.client.notifications.on_key_request(
                self._on_key_request,
            )


    def __getitem__(self, room_id: str) -> RoomE2EE:
        return self._data[room_id]


    def __iter__(self) -> Iterator[str]:
        return iter(self._data)


    def __len__(self) -> int:
        return len(self._data)


    def open(self, room_id: str) -> RoomE2EE:
        """Return the room's manager, creating and starting it if needed."""

        if room_id not in self._data:
            self.client.debug("Opening encryption manager for {}", room_id)
            self._data[room_id] = RoomE2EE(self.client, room_id)

        room = self._data[room_id]
        room.start()
        return room


    def close(self, room_id: str) -> None:
        room = self._data.pop(room_id, None)

        if room:
            self.client.debug("Closing encryption manager for {}", room_id)
            room.stop()


    async def before_send(self, message: Message) -> Message:
        room = self._data.get(message.room_id)
        return await room.encrypt_message(message) if room else message


    async def on_received(self, message: Message) -> Message:
        room = self._data.get(message.room_id)

        if not room:
            return message

        with self.client.report(Exception, level="ERROR"):
            return await room.decrypt_message(message)

        return message


    async def settle(self) -> None:
        """Wait for all rooms' pending metadata changes and key requests."""

        for room in list(self._data.values()):
            await room.settle()

        while self._tasks:
            await gather(*self._tasks)

        for room in list(self._data.values()):
            await room.settle()


    async def terminate(self) -> None:
        if self._key_requests:
            self._key_requests.cancel()
            self._key_requests = None

        closed = list(self._data.values())

        for room_id in list(self._data):
            self.close(room_id)

        for room in closed:
            await room.settle()

        if self._tasks:
            await gather(*self._tasks)


    def _on_key_request(self, room_id: str, key_id: str) -> None:
        room = self._data.get(room_id)

        if not room:
            self.client.debug("Ignoring key request for unopened {}", room_id)
            return

        task = ensure_future(room.provide_key_to_user(key_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
