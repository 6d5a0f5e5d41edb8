# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from asyncio import Future, ensure_future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from ..core.data import Parent, Runtime
from ..core.signals import Emitter
from ..core.waiters import Waiter
from ..e2e import errors as err
from ..e2e.cipher import Cipher
from ..e2e.keys import SessionKey, generate_session_key, unwrap_session_key
from .decryption import PendingDecryptQueue
from .distributor import ParticipantKeyDistributor
from .messages import Message
from .metadata import MetadataObserver, RoomMetadata

if TYPE_CHECKING:
    from ..client import Client


@dataclass
class RoomE2EE:
    """End-to-end encryption manager for one room.

    Follows the room's metadata and decides after each change whether the
    key we hold is still valid, or if one must be imported from our
    subscription, created for the whole room, or requested from the other
    members. Changes are handled one at a time: a change arriving while
    one is being handled causes a single new pass over the latest metadata
    once the current one is over.

    Signals emitted on `signals`:
    - `metadata_changed`, with the new `RoomMetadata` or `None`
    - `key_changed`, after our key was discarded or replaced
    """

    client: Parent["Client"] = field(repr=False)
    id:     str

    cipher:      Runtime[Cipher]                    = field(init=False)
    signals:     Runtime[Emitter]                   = field(init=False)
    observer:    Runtime[MetadataObserver]          = field(init=False)
    distributor: Runtime[ParticipantKeyDistributor] = field(init=False)
    queue:       Runtime[PendingDecryptQueue]       = field(init=False)

    session_waiter:  Runtime[Waiter[SessionKey]]   = field(init=False)
    key_waiter:      Runtime[Waiter[bytes]]        = field(init=False)
    key_id_waiter:   Runtime[Waiter[str]]          = field(init=False)
    metadata_waiter: Runtime[Waiter[RoomMetadata]] = field(init=False)

    _session: Runtime[Optional[SessionKey]] = field(
        init=False, repr=False, default=None,
    )

    _transition_task: Runtime[Optional[Future]] = field(
        init=False, repr=False, default=None,
    )

    _dirty: Runtime[bool] = field(init=False, repr=False, default=False)


    def __post_init__(self) -> None:
        self.cipher      = Cipher()
        self.signals     = Emitter()
        self.distributor = ParticipantKeyDistributor(self)
        self.queue       = PendingDecryptQueue(self)

        self.observer = MetadataObserver(
            store     = self.client.store,
            room_id   = self.id,
            user_id   = self.client.user_id,
            on_change = lambda m: self.signals.emit("metadata_changed", m),
        )

        self.session_waiter  = Waiter(lambda: self.session)
        self.key_waiter      = Waiter(lambda: self.key)
        self.key_id_waiter   = Waiter(lambda: self.key_id)
        self.metadata_waiter = Waiter(lambda: self.metadata)

        self.signals.on("metadata_changed", self._schedule_transition)
        self.signals.on(
            "metadata_changed", lambda _: self.metadata_waiter.changed(),
        )

        waiters = (self.session_waiter, self.key_waiter, self.key_id_waiter)

        for waiter in waiters:
            self.signals.on("key_changed", waiter.changed)


    @property
    def running(self) -> bool:
        return self.observer.running


    @property
    def metadata(self) -> Optional[RoomMetadata]:
        return self.observer.metadata


    @property
    def session(self) -> Optional[SessionKey]:
        return self._session


    @property
    def key(self) -> Optional[bytes]:
        return self._session.key if self._session else None


    @property
    def key_id(self) -> Optional[str]:
        return self._session.key_id if self._session else None


    @property
    def exported_key(self) -> Optional[str]:
        return self._session.exported if self._session else None


    def has_key(self) -> bool:
        return self.key is not None


    def has_key_id(self) -> bool:
        return self.key_id is not None


    def has_exported_key(self) -> bool:
        return self.exported_key is not None


    def start(self) -> None:
        """Start following the room's metadata, must be called from a
        running event loop. Does nothing if already started."""

        self.observer.start()


    def stop(self) -> None:
        """Stop following metadata. A change already being handled will
        still run to completion, see `settle()`."""

        self.observer.stop()


    async def settle(self) -> None:
        """Wait until no metadata change remains to be handled."""

        while self._transition_task and not self._transition_task.done():
            await self._transition_task


    async def wait_for_metadata(self) -> RoomMetadata:
        return await self.metadata_waiter.wait()


    async def wait_for_key(self) -> bytes:
        return await self.key_waiter.wait()


    async def wait_for_key_id(self) -> str:
        return await self.key_id_waiter.wait()


    async def import_subscription_key(self, wrapped_key: str) -> SessionKey:
        """Unwrap a key another member encrypted for us and adopt it.

        The key is refused if its derived ID doesn't match the ID published
        for the room, if there is one.
        """

        try:
            session = unwrap_session_key(wrapped_key, self.client.private_key)
        except (ValueError, TypeError) as e:
            raise err.KeyImportFailure(self.id, repr(e))

        published = self.metadata.room_key_id if self.metadata else None

        if published and session.key_id != published:
            raise err.KeyIdMismatch(
                self.id,
                "Derived key ID differs from the room's",
                published,
                session.key_id,
            )

        self._adopt(session)
        return session


    async def create_group_key(self) -> SessionKey:
        session = generate_session_key()

        try:
            await self.client.rpc.set_room_key_id(self.id, session.key_id)
        except Exception as e:  # noqa
            raise err.KeyCreationFailure(self.id, repr(e)) from e

        self.client.info("Created key {} for room {}", session.key_id, self.id)
        self._adopt(session)
        await self.distributor.distribute()
        return session


    async def request_group_key(self, key_id: str) -> None:
        self.client.info(
            "Requesting key {} for room {} from other members",
            key_id, self.id,
        )

        with self.client.report(Exception, level="ERROR"):
            await self.client.notifications.broadcast_key_request(
                self.id, key_id,
            )


    async def provide_key_to_user(self, key_id: str) -> List[str]:
        """Answer a key request by sending our key to members lacking it.

        Requests for another key than the one we currently hold are ignored.
        """

        if not key_id or key_id != self.key_id:
            self.client.debug(
                "Ignoring request for key {} in {}, ours is {}",
                key_id, self.id, self.key_id,
            )
            return []

        return await self.distributor.distribute()


    async def encrypt_message(self, message: Message) -> Message:
        return await self.queue.encrypt_message(message)


    async def decrypt_message(
        self, message: Message, wait_for_key: bool = False,
    ) -> Message:
        return await self.queue.decrypt_message(message, wait_for_key)


    async def decrypt_pending_messages(self) -> List[Message]:
        return await self.queue.decrypt_pending_messages()


    async def decrypt_last_message(self) -> Optional[Message]:
        return await self.queue.decrypt_last_message()


    def _adopt(self, session: SessionKey) -> None:
        self._session = session
        self.signals.emit("key_changed")


    def _discard_key(self) -> None:
        self._session = None
        self.signals.emit("key_changed")


    def _schedule_transition(self, *_) -> None:
        self._dirty = True

        if not self._transition_task or self._transition_task.done():
            self._transition_task = ensure_future(self._run_transitions())


    async def _run_transitions(self) -> None:
        while self._dirty:
            self._dirty = False

            with self.client.report(Exception, level="ERROR", trace=True):
                await self._handle_metadata_changed()


    async def _handle_metadata_changed(self) -> None:
        metadata = self.metadata

        if metadata is None:
            if self._session:
                self.client.debug("Room {} not encrypted, drop key", self.id)
            self._discard_key()
            return

        room_key_id = metadata.room_key_id

        if self._session and self._session.key_id == room_key_id:
            await self._decrypt_room_messages()
            return

        self._discard_key()

        if metadata.encrypted_key_for_user:
            with self.client.report(err.KeyImportFailure) as caught:
                await self.import_subscription_key(
                    metadata.encrypted_key_for_user,
                )

            if not caught:
                await self._decrypt_room_messages()
                return

            if not isinstance(caught[0], err.KeyIdMismatch):
                return

        elif not room_key_id:
            with self.client.report(err.KeyCreationFailure):
                await self.create_group_key()
            return

        if room_key_id:
            await self.request_group_key(room_key_id)


    async def _decrypt_room_messages(self) -> None:
        with self.client.report(err.DecryptionError):
            await self.decrypt_last_message()

        await self.decrypt_pending_messages()
