# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from ..backends.base import Participant
from ..core.data import JSONLoadError, Parent

if TYPE_CHECKING:
    from ..client import Client
    from .net import Network


@dataclass
class RestRPC:
    """Key distribution methods of the server's REST API."""

    client: Parent["Client"] = field(repr=False)


    @property
    def net(self) -> "Network":
        return self.client.net


    async def set_room_key_id(self, room_id: str, key_id: str) -> None:
        await self.net.post(
            self.net.api / "e2e.setRoomKeyID",
            {"rid": room_id, "keyID": key_id},
        )


    async def get_participants_without_key(
        self, room_id: str,
    ) -> List[Participant]:

        reply = await self.net.get(
            self.net.api / "e2e.getUsersOfRoomWithoutKey", {"rid": room_id},
        )

        participants = []

        for user in reply.json.get("users", []):
            with self.client.report(JSONLoadError):
                participants.append(Participant.from_dict(user))

        return participants


    async def push_group_key_to_participant(
        self, room_id: str, user_id: str, wrapped_key: str,
    ) -> None:

        await self.net.post(
            self.net.api / "e2e.updateGroupKey",
            {"rid": room_id, "uid": user_id, "key": wrapped_key},
        )
