# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List

from aioresponses import aioresponses
from Cryptodome.PublicKey import RSA
from pytest import fixture

from roomkey.backends.memory import MemoryServer
from roomkey.client import Client
from roomkey.e2e.keys import export_public_jwk
from roomkey.rooms.messages import Message

USERS = ("alice", "bob", "carol")
T0    = datetime(2021, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass
class ClientFactory:
    server: MemoryServer
    keys:   Dict[str, RSA.RsaKey]

    created: List[Client] = field(default_factory=list)

    def __getattr__(self, name: str) -> Client:
        if name.startswith("_") or name not in self.keys:
            raise AttributeError(name)

        client = Client(
            user_id       = name,
            private_key   = self.keys[name],
            store         = self.server.store_for(name),
            rpc           = self.server.rpc_for(name),
            notifications = self.server.notifications_for(name),
        )

        self.created.append(client)
        return client


def message(
    number: int, room_id: str = "room", text: str = "", sender: str = "alice",
) -> Message:

    return Message(
        id        = f"m{number}",
        room_id   = room_id,
        text      = text or f"message {number}",
        sender_id = sender,
        timestamp = T0 + timedelta(seconds=number),
    )


async def settle(*clients: Client) -> None:
    """Wait until no client has key changes or key requests left to
    handle, including those caused by other clients' actions."""

    def busy() -> bool:
        for client in clients:
            if client.rooms._tasks:
                return True

            for room in client.rooms.values():
                task = room._transition_task
                if task and not task.done():
                    return True

        return False

    await asyncio.sleep(0)

    while busy():
        for client in clients:
            await client.rooms.settle()

        await asyncio.sleep(0)


@fixture(scope="session")
def rsa_keys():
    return {user_id: RSA.generate(2048) for user_id in USERS}


@fixture
def server(rsa_keys):
    server = MemoryServer()

    for user_id, key in rsa_keys.items():
        server.register_public_key(user_id, export_public_jwk(key))

    return server


@fixture
def room_id(server):
    server.create_room("room", members=["alice", "bob"])
    return "room"


@fixture
async def clients(server, rsa_keys):
    factory = ClientFactory(server, rsa_keys)
    yield factory

    for client in factory.created:
        await client.terminate()


@fixture
async def alice(clients):
    return clients.alice


@fixture
async def bob(clients):
    return clients.bob


@fixture
def mock_responses():
    with aioresponses() as mock:
        yield mock
