# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from typing import ClassVar


class RoomKeyError(Exception):
    # Level used by KeyLogger.report() when none is given
    log_level: ClassVar[str] = "WARNING"

    def __str__(self) -> str:
        return repr(self)
