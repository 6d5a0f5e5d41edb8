# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..core.data import JSON, dump_date, ms_precision


class MessageType(str, Enum):
    """Known values for `Message.type`, other strings are left untouched."""

    e2e = "e2e"


class E2EStatus(str, Enum):
    pending = "pending"  # encrypted, not decrypted locally yet
    done    = "done"     # decrypted in place


@dataclass
class Message(JSON):
    aliases = {
        "id":         "_id",
        "room_id":    "rid",
        "text":       "msg",
        "sender_id":  ("u", "_id"),
        "timestamp":  "ts",
        "e2e_status": "e2e",
        "type":       "t",
    }

    id:         str
    room_id:    str
    text:       str
    sender_id:  Optional[str]       = None
    timestamp:  Optional[datetime]  = None
    type:       Optional[str]       = None
    e2e_status: Optional[E2EStatus] = None


    @property
    def encrypted(self) -> bool:
        is_e2e = self.type == MessageType.e2e
        return is_e2e and self.e2e_status != E2EStatus.done


@dataclass
class EncryptablePayload(JSON):
    """Plaintext record sealed inside an encrypted message."""

    aliases = {"id": "_id", "sender_id": "userId", "timestamp": "ts"}

    dumpers = {
        **JSON.dumpers,  # type: ignore
        datetime: lambda self, v: {"$date": dump_date(v)},
    }

    id:        str
    text:      str
    sender_id: str
    timestamp: datetime


    def __post_init__(self) -> None:
        # Sub-millisecond precision and timezone don't survive a round trip
        self.timestamp = ms_precision(self.timestamp)
