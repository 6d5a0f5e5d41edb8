# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import textwrap
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Dict

from ..core.errors import RoomKeyError

if TYPE_CHECKING:
    from .exchange import Reply

# Sent by reverse proxies when the chat server behind them can't answer
PROXY_ERRORS: Dict[int, str] = {
    520: "Unknown error from origin",
    521: "Origin is down",
    522: "Connection to origin timed out",
    523: "Origin is unreachable",
    524: "Origin response timed out",
}

RETRIABLE_STATUS = frozenset({
    HTTPStatus.REQUEST_TIMEOUT,
    HTTPStatus.TOO_MANY_REQUESTS,
    HTTPStatus.INTERNAL_SERVER_ERROR,
    HTTPStatus.BAD_GATEWAY,
    HTTPStatus.SERVICE_UNAVAILABLE,
    HTTPStatus.GATEWAY_TIMEOUT,
    *PROXY_ERRORS,
})


def status_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return PROXY_ERRORS.get(status, "")


@dataclass
class ServerError(RoomKeyError):
    reply: "Reply"


    @classmethod
    def from_reply(cls, reply: "Reply") -> "ServerError":
        """Return an `APIError` for replies carrying an API error body.

        Failed methods answer `{"success": false, "error", "errorType"}`,
        rejected credentials `{"status": "error", "message"}`.
        """

        body = reply.json

        if body.get("success") is False and "error" in body:
            error_type = body.get("errorType") or ""
            return APIError(reply, str(body["error"]), error_type)

        if body.get("status") == "error" and "message" in body:
            return APIError(reply, str(body["message"]), "")

        return cls(reply)


    def __str__(self) -> str:
        reply = textwrap.indent(str(self.reply), " " * 4)
        return "%s\n%s" % (type(self).__name__, reply)


    @property
    def can_retry(self) -> bool:
        return self.reply.status in RETRIABLE_STATUS


@dataclass
class APIError(ServerError):
    message:    str
    error_type: str
