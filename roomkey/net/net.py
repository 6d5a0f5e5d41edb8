# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import asyncio
import math
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Deque, Dict, Optional

import aiohttp
import backoff
from yarl import URL

from ..core.data import Parent, Runtime
from ..core.utils import DictS
from .errors import ServerError
from .exchange import Reply, Request, parse_http_date

if TYPE_CHECKING:
    from ..client import Client

MethData    = Optional[DictS]
MethHeaders = Optional[Dict[str, str]]


def _on_backoff(info: DictS) -> None:
    # https://github.com/litl/backoff#event-handlers
    client = info["args"][0].client
    lines  = str(sys.exc_info()[1]).splitlines()
    wait   = math.ceil(info["wait"])
    first  = f"{lines[0]} (retry {info['tries']}, next in {wait} seconds)"
    client.warn("\n".join((first, *lines[1:])))


def _on_giveup(info: DictS) -> None:
    client = info["args"][0].client
    lines  = str(sys.exc_info()[1]).splitlines() or [""]
    first  = f"{lines[0]} (no retry possible)"
    client.err("\n".join((first, *lines[1:])))


@dataclass
class Network:
    """HTTP transport for the server's REST API."""

    max_retry_time: ClassVar[Runtime[float]] = 60

    client: Parent["Client"] = field(repr=False)

    last_replies: Runtime[Deque[Reply]] = field(
        init=False, repr=False, default_factory=lambda: Deque(maxlen=256),
    )

    _session: Runtime[Optional[aiohttp.ClientSession]] = field(
        init=False, repr=False, default=None,
    )


    @property
    def api(self) -> URL:
        return URL(str(self.client.server)) / "api" / "v1"


    async def get(
        self,
        url:     URL,
        params:  MethHeaders = None,
        headers: MethHeaders = None,
    ) -> Reply:

        url = url.with_query(params) if params else url
        return await self.send(Request("GET", url, None, headers or {}))


    async def post(
        self, url: URL, data: MethData = None, headers: MethHeaders = None,
    ) -> Reply:
        return await self.send(Request("POST", url, data, headers or {}))


    @backoff.on_exception(
        lambda: backoff.fibo(max_value=10),
        (ServerError, TimeoutError, asyncio.TimeoutError, aiohttp.ClientError),
        giveup     = lambda e: isinstance(e, ServerError) and not e.can_retry,
        max_time   = lambda: Network.max_retry_time,
        on_backoff = _on_backoff,
        on_giveup  = _on_giveup,
        logger     = None,
    )
    async def send(self, request: Request) -> Reply:
        return await self._send_once(request)


    async def _send_once(self, request: Request) -> Reply:
        if self.client._terminated:
            raise RuntimeError(f"{self.client} terminated, create a new one")

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        if self.client.auth_token:
            request.headers["X-User-Id"]    = self.client.user_id
            request.headers["X-Auth-Token"] = self.client.auth_token

        resp = await self._session.request(
            method  = request.method,
            url     = str(request.url),
            json    = request.data,
            headers = request.headers,
        )

        mime = resp.content_type
        data = await resp.json() if mime == "application/json" else None

        reply = Reply(
            request     = request,
            status      = resp.status,
            json        = data or {},
            mime        = mime,
            server_date = parse_http_date(resp.headers.get("Date")),
        )

        if reply.server_offset is not None:
            self.client.server_offset = reply.server_offset

        try:
            resp.raise_for_status()
        except aiohttp.ClientResponseError:
            error       = ServerError.from_reply(reply)
            reply.error = error
            raise error
        else:
            self.client.debug("{}", reply)
            return reply
        finally:
            self.last_replies.appendleft(reply)


    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()

