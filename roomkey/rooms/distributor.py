# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from asyncio import Lock
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from ..core.data import Parent, Runtime
from ..e2e import errors as err
from ..e2e.keys import SessionKey, import_public_key, wrap_session_key

if TYPE_CHECKING:
    from ..backends.base import Participant
    from .room import RoomE2EE


@dataclass
class ParticipantKeyDistributor:
    room: Parent["RoomE2EE"] = field(repr=False)

    _lock: Runtime[Lock] = field(init=False, repr=False, default_factory=Lock)


    async def distribute(self) -> List[str]:
        """Send our room key to the members that don't have access to it.

        Returns the IDs of the users the key was sent to.
        Failures are logged and never retried.
        Only one distribution runs at a time for a room, so that concurrent
        calls never push the key twice to the same participant.
        """

        async with self._lock:
            return await self._distribute()


    async def _distribute(self) -> List[str]:
        room    = self.room
        client  = room.client
        session = room.session

        if not session:
            client.debug("No key to distribute for room {}", room.id)
            return []

        participants: List["Participant"] = []

        with client.report(Exception, level="ERROR") as caught:
            participants = await client.rpc.get_participants_without_key(
                room.id,
            )

        if caught:
            return []

        sent_to: List[str] = []

        for participant in participants:
            if room.session is not session:
                client.info(
                    "Key {} of room {} replaced, stop distributing it",
                    session.key_id, room.id,
                )
                break

            with client.report(err.DistributionError):
                await self.encrypt_for_participant(participant, session)
                sent_to.append(participant.id)

        client.debug("Sent key {} to {}", session.key_id, sent_to)
        return sent_to


    async def encrypt_for_participant(
        self, participant: "Participant", session: SessionKey,
    ) -> None:

        if not participant.public_key:
            raise err.DistributionSkipped(participant.id)

        try:
            public_key = import_public_key(participant.public_key)
            wrapped    = wrap_session_key(session, public_key)
        except (err.InvalidPublicKey, ValueError) as e:
            raise err.DistributionFailure(participant.id, repr(e))

        try:
            await self.room.client.rpc.push_group_key_to_participant(
                self.room.id, participant.id, wrapped,
            )
        except Exception as e:  # noqa
            raise err.DistributionFailure(participant.id, repr(e)) from e
