# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from datetime import datetime, timezone

from Cryptodome.Cipher import AES
from pytest import mark, raises
from unpaddedbase64 import encode_base64

from roomkey.e2e import KEY_ID_LENGTH
from roomkey.e2e.cipher import Cipher
from roomkey.e2e.errors import (
    CiphertextCorrupted, MalformedPlaintext, NotDecryptable,
)
from roomkey.e2e.keys import SessionKey, generate_session_key
from roomkey.rooms.messages import EncryptablePayload

pytestmark = mark.asyncio

PAYLOAD = EncryptablePayload(
    id        = "m1",
    text      = "hello ✓",
    sender_id = "alice",
    timestamp = datetime(2021, 6, 1, 12, tzinfo=timezone.utc),
)


def seal(session: SessionKey, plaintext: bytes) -> str:
    nonce          = b"n" * Cipher.nonce_size
    cipher         = AES.new(session.key, AES.MODE_GCM, nonce=nonce)
    encrypted, tag = cipher.encrypt_and_digest(plaintext)
    return session.key_id + encode_base64(nonce + encrypted + tag)


async def test_round_trip():
    session   = generate_session_key()
    encrypted = await Cipher().encrypt(PAYLOAD, session.key, session.key_id)

    assert encrypted[:KEY_ID_LENGTH] == session.key_id
    assert "hello" not in encrypted

    decrypted = await Cipher().decrypt(encrypted, session.key, session.key_id)
    assert decrypted == PAYLOAD


async def test_round_trip_sub_millisecond_timestamps():
    session = generate_session_key()
    aware   = datetime(2021, 6, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    for timestamp in (aware, aware.replace(tzinfo=None)):
        payload   = PAYLOAD.but(timestamp=timestamp)
        encrypted = await Cipher().encrypt(
            payload, session.key, session.key_id,
        )
        decrypted = await Cipher().decrypt(
            encrypted, session.key, session.key_id,
        )

        assert decrypted == payload
        assert decrypted.timestamp.tzinfo == timezone.utc
        assert decrypted.timestamp.microsecond == 123000


async def test_nonce_unique_per_encryption():
    session = generate_session_key()
    first   = await Cipher().encrypt(PAYLOAD, session.key, session.key_id)
    second  = await Cipher().encrypt(PAYLOAD, session.key, session.key_id)
    assert first != second


async def test_other_key_not_decryptable():
    ours      = generate_session_key()
    theirs    = generate_session_key()
    encrypted = await Cipher().encrypt(PAYLOAD, theirs.key, theirs.key_id)

    with raises(NotDecryptable) as exc:
        await Cipher().decrypt(encrypted, ours.key, ours.key_id)

    assert exc.value.expected_key_id == ours.key_id
    assert exc.value.got_key_id == theirs.key_id


async def test_corrupted_ciphertext():
    session   = generate_session_key()
    encrypted = await Cipher().encrypt(PAYLOAD, session.key, session.key_id)

    index     = KEY_ID_LENGTH + 4
    swapped   = "A" if encrypted[index] != "A" else "B"
    tampered  = encrypted[:index] + swapped + encrypted[index + 1:]

    with raises(CiphertextCorrupted):
        await Cipher().decrypt(tampered, session.key, session.key_id)

    with raises(CiphertextCorrupted):
        await Cipher().decrypt(
            session.key_id + "AAAA", session.key, session.key_id,
        )

    # Right key ID, but the key itself differs
    other = generate_session_key()

    with raises(CiphertextCorrupted):
        await Cipher().decrypt(encrypted, other.key, session.key_id)


async def test_malformed_plaintext():
    session = generate_session_key()

    for plaintext in (b"\xff\xfe", b"not json", b"[1, 2]", b'{"text": 1}'):
        with raises(MalformedPlaintext):
            await Cipher().decrypt(
                seal(session, plaintext), session.key, session.key_id,
            )

    with raises(MalformedPlaintext):
        await Cipher().decrypt(
            seal(session, b'{"text": "missing other fields"}'),
            session.key,
            session.key_id,
        )


async def test_canonical_json():
    dumped = Cipher.canonical_json({"b": 1, "a": "é"})
    assert dumped == '{"a":"é","b":1}'.encode()
