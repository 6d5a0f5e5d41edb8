# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

from Cryptodome.PublicKey import RSA
from yarl import URL

from .backends.base import RPC, Notifications, Store
from .core.data import Runtime
from .core.logging import KeyLogger
from .net.net import Network
from .net.rpc import RestRPC
from .rooms.messages import Message
from .rooms.room import RoomE2EE
from .rooms.rooms import Rooms


@dataclass
class Client(KeyLogger):
    user_id:       str
    private_key:   RSA.RsaKey                 = field(repr=False)
    store:         Store                      = field(repr=False)
    rpc:           Optional[RPC]              = field(default=None)
    notifications: Optional[Notifications]    = field(default=None)
    server:        Union[URL, str]            = ""
    auth_token:    str                        = field(default="", repr=False)
    log_dir:       Optional[Union[Path, str]] = None

    # Difference between the server's clock and ours, applied to the
    # timestamps sealed inside encrypted messages
    server_offset: timedelta = timedelta(0)

    net:         Runtime[Network] = field(init=False, repr=False)
    rooms:       Runtime[Rooms]   = field(init=False, repr=False)
    _terminated: Runtime[bool]    = field(init=False, repr=False)


    def __post_init__(self) -> None:
        KeyLogger.__post_init__(self)

        self._terminated = False
        self.net         = Network(self)

        if self.rpc is None:
            if not self.server:
                raise ValueError("Either rpc or server must be provided")

            self.rpc = RestRPC(self)

        self.rooms = Rooms(self)


    async def __aenter__(self) -> "Client":
        return self


    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.terminate()


    @property
    def log_owner(self) -> str:
        return self.user_id


    @property
    def log_directory(self) -> Optional[Path]:
        return Path(self.log_dir) if self.log_dir else None


    def open_room(self, room_id: str) -> RoomE2EE:
        return self.rooms.open(room_id)


    async def before_send(self, message: Message) -> Message:
        """Encrypt an outgoing message if its room requires it."""

        return await self.rooms.before_send(message)


    async def on_received(self, message: Message) -> Message:
        """Decrypt an incoming message if we have its room's key."""

        return await self.rooms.on_received(message)


    async def terminate(self) -> None:
        await self.rooms.terminate()
        await self.net.disconnect()
        self._terminated = True
