# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from datetime import timedelta

from pytest import fixture, mark, raises
from yarl import URL

from roomkey.backends.base import Participant
from roomkey.client import Client
from roomkey.net.errors import (
    PROXY_ERRORS, RETRIABLE_STATUS, APIError, ServerError, status_phrase,
)
from roomkey.net.rpc import RestRPC

pytestmark = mark.asyncio

API   = URL("https://chat.example.org/api/v1")
TOKEN = "s3cr3t-t0k3n"


@fixture
async def remote(server, rsa_keys):
    client = Client(
        user_id     = "alice",
        private_key = rsa_keys["alice"],
        store       = server.store_for("alice"),
        server      = "https://chat.example.org",
        auth_token  = TOKEN,
    )
    yield client
    await client.terminate()


def sent(mock_responses, method: str, url: URL):
    return mock_responses.requests[method, url][-1].kwargs


async def test_rest_rpc_used_without_rpc(remote: Client):
    assert isinstance(remote.rpc, RestRPC)
    assert remote.net.api == API


async def test_set_room_key_id(remote: Client, mock_responses):
    url = API / "e2e.setRoomKeyID"
    mock_responses.post(url, payload={"success": True})

    await remote.rpc.set_room_key_id("room", "abcdefghijkl")

    kwargs = sent(mock_responses, "POST", url)
    assert kwargs["json"] == {"rid": "room", "keyID": "abcdefghijkl"}
    assert kwargs["headers"]["X-User-Id"] == "alice"
    assert kwargs["headers"]["X-Auth-Token"] == TOKEN


async def test_get_participants_without_key(remote: Client, mock_responses):
    url = (API / "e2e.getUsersOfRoomWithoutKey").with_query(rid="room")

    mock_responses.get(url, payload={
        "success": True,
        "users": [
            {"_id": "bob", "e2e": {"public_key": "{}"}},
            {"_id": "carol"},
            {"username": "no ID"},
        ],
    })

    assert await remote.rpc.get_participants_without_key("room") == [
        Participant("bob", "{}"),
        Participant("carol"),
    ]


async def test_push_group_key(remote: Client, mock_responses):
    url = API / "e2e.updateGroupKey"
    mock_responses.post(url, payload={"success": True})

    await remote.rpc.push_group_key_to_participant("room", "bob", "wrapped")

    kwargs = sent(mock_responses, "POST", url)
    assert kwargs["json"] == {"rid": "room", "uid": "bob", "key": "wrapped"}


async def test_retry_errors(remote: Client, mock_responses):
    url = API / "e2e.setRoomKeyID"

    assert 429 in RETRIABLE_STATUS
    mock_responses.post(url, status=429)

    assert 520 in RETRIABLE_STATUS and 520 in PROXY_ERRORS
    mock_responses.post(url, status=520)

    assert 403 not in RETRIABLE_STATUS
    mock_responses.post(url, status=403)

    replies = remote.net.last_replies
    replies.clear()

    with raises(ServerError):
        await remote.rpc.set_room_key_id("room", "abcdefghijkl")

    assert len(replies) == 3
    assert replies[2].error and replies[2].status == 429
    assert replies[1].error and replies[1].status == 520
    assert replies[0].error and replies[0].status == 403


async def test_api_error(remote: Client, mock_responses):
    url = API / "e2e.updateGroupKey"

    mock_responses.post(url, status=400, payload={
        "success":   False,
        "error":     "Not allowed",
        "errorType": "error-not-allowed",
    })

    with raises(APIError) as exc:
        await remote.rpc.push_group_key_to_participant("room", "bob", "key")

    assert exc.value.message == "Not allowed"
    assert exc.value.error_type == "error-not-allowed"
    assert not exc.value.can_retry
    assert "APIError" in str(exc.value)


async def test_rejected_credentials(remote: Client, mock_responses):
    url = API / "e2e.setRoomKeyID"

    mock_responses.post(url, status=401, payload={
        "status":  "error",
        "message": "You must be logged in to do this.",
    })

    with raises(APIError) as exc:
        await remote.rpc.set_room_key_id("room", "abcdefghijkl")

    assert exc.value.message == "You must be logged in to do this."
    assert exc.value.error_type == ""
    assert not exc.value.can_retry
    assert "'Unauthorized'" in str(exc.value)


async def test_status_phrases():
    assert status_phrase(429) == "Too Many Requests"
    assert status_phrase(522) == PROXY_ERRORS[522]
    assert status_phrase(599) == ""


async def test_server_offset(remote: Client, mock_responses):
    url = API / "e2e.setRoomKeyID"

    mock_responses.post(
        url,
        payload = {"success": True},
        headers = {"Date": "Wed, 21 Oct 2015 07:28:00 GMT"},
    )

    assert remote.server_offset == timedelta(0)
    await remote.rpc.set_room_key_id("room", "abcdefghijkl")
    assert remote.server_offset < -timedelta(days=365)


async def test_request_str_hides_token(remote: Client, mock_responses):
    url = API / "e2e.setRoomKeyID"
    mock_responses.post(url, payload={"success": True})

    await remote.rpc.set_room_key_id("room", "abcdefghijkl")

    reply = remote.net.last_replies[0]
    assert "e2e.setRoomKeyID" in str(reply)
    assert TOKEN not in str(reply.request)
    assert TOKEN not in str(reply)
    assert reply.ping >= timedelta(0)
