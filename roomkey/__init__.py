# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from .backends.memory import MemoryServer
from .client import Client
from .core.errors import RoomKeyError
from .e2e import errors as e2e_errors
from .net.errors import APIError, ServerError
from .rooms.messages import E2EStatus, Message, MessageType
from .rooms.metadata import RoomMetadata
from .rooms.room import RoomE2EE
