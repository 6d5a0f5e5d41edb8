# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from ..core.data import Parent
from ..e2e import errors as err
from .messages import E2EStatus, EncryptablePayload, Message, MessageType

if TYPE_CHECKING:
    from .room import RoomE2EE


@dataclass
class PendingDecryptQueue:
    room: Parent["RoomE2EE"] = field(repr=False)


    async def decrypt_message(
        self, message: Message, wait_for_key: bool = False,
    ) -> Message:
        """Return a decrypted copy of `message`.

        Messages that aren't encrypted, or were already decrypted, are
        returned as they are. If we have no key yet, the message is also
        returned untouched, unless `wait_for_key` is set in which case this
        waits for one.
        """

        if not message.encrypted:
            return message

        room = self.room

        if wait_for_key:
            session = await room.session_waiter.wait()
        else:
            session = room.session

        if not session:
            return message

        payload = await room.cipher.decrypt(
            message.text, session.key, session.key_id,
        )

        return message.but(text=payload.text, e2e_status=E2EStatus.done)


    async def decrypt_pending_messages(self) -> List[Message]:
        room      = self.room
        store     = room.client.store
        decrypted = []
        pending   = store.find_messages(
            room.id, MessageType.e2e, E2EStatus.pending,
        )

        for message in pending:
            try:
                result = await self.decrypt_message(message)
            except err.NotDecryptable as e:
                room.client.debug("{} still pending: {}", message.id, e)
                continue
            except err.DecryptionError:
                room.client.exception("Failed decrypting {}", message.id)
                continue

            if result != message:
                await store.update_message(result)
                decrypted.append(result)

        return decrypted


    async def decrypt_last_message(self) -> Optional[Message]:
        room     = self.room
        metadata = room.metadata

        if not metadata or not metadata.last_message:
            return None

        last      = metadata.last_message
        decrypted = await self.decrypt_message(last, wait_for_key=True)

        if decrypted != last:
            store = room.client.store
            text  = decrypted.text
            state = decrypted.e2e_status
            await store.update_room_last_message(room.id, text, state)
            await store.update_subscription_last_message(room.id, text, state)

        return decrypted


    async def encrypt_message(self, message: Message) -> Message:
        room     = self.room
        metadata = room.metadata

        if not metadata or not metadata.encryption_required:
            return message

        if message.type == MessageType.e2e:
            return message

        session = await room.session_waiter.wait()
        now     = datetime.now(timezone.utc) + room.client.server_offset

        payload = EncryptablePayload(
            id        = message.id,
            text      = message.text,
            sender_id = metadata.user_id,
            timestamp = now,
        )

        encrypted = await room.cipher.encrypt(
            payload, session.key, session.key_id,
        )

        return message.but(
            type       = MessageType.e2e,
            text       = encrypted,
            e2e_status = E2EStatus.pending,
        )
