# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional

from yarl import URL

from ..core.utils import DictS, rich_thruthies
from .errors import ServerError, status_phrase

# Left out when printing requests
SECRET_HEADERS = frozenset({"X-Auth-Token"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_http_date(header: Optional[str]) -> Optional[datetime]:
    if not header:
        return None

    try:
        date = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return None

    return date if date.tzinfo else date.replace(tzinfo=timezone.utc)


@dataclass
class Request:
    method:  str
    url:     URL
    data:    Optional[DictS] = None
    headers: Dict[str, str]  = field(default_factory=dict, repr=False)
    sent_at: datetime        = field(default_factory=utc_now)


    def __str__(self) -> str:
        headers = {
            k: v for k, v in self.headers.items() if k not in SECRET_HEADERS
        }
        return rich_thruthies("❯", self.method, self.url, self.data, headers)


@dataclass
class Reply:
    request:     Request
    status:      int
    json:        DictS                 = field(default_factory=dict)
    mime:        str                   = "application/octet-stream"
    server_date: Optional[datetime]    = None
    error:       Optional[ServerError] = None
    received_at: datetime              = field(default_factory=utc_now)


    def __str__(self) -> str:
        phrase = status_phrase(self.status)

        return rich_thruthies(
            f"{self.request}\n❮",
            self.status,
            repr(phrase) if phrase else "",
            "" if self.mime == "application/json" else self.mime,
            self.json,
        )


    @property
    def ping(self) -> timedelta:
        return self.received_at - self.request.sent_at


    @property
    def server_offset(self) -> Optional[timedelta]:
        """How far ahead of ours the server's clock was when replying."""

        if self.server_date is None:
            return None

        return self.server_date - self.received_at
