# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import json
from binascii import Error as BinAsciiError
from dataclasses import dataclass
from typing import Any, ClassVar

from Cryptodome import Random
from Cryptodome.Cipher import AES
from unpaddedbase64 import encode_base64

from ..core.data import JSONLoadError, Runtime
from ..rooms.messages import EncryptablePayload
from . import errors as err
from .keys import extract_body, extract_key_id


@dataclass
class Cipher:
    """AES-GCM encryption of message payloads, tagged with the key's ID.

    Output format: `key_id + base64(nonce + ciphertext + tag)`.
    """

    nonce_size: ClassVar[Runtime[int]] = 16
    tag_size:   ClassVar[Runtime[int]] = 16


    async def encrypt(
        self, payload: EncryptablePayload, key: bytes, key_id: str,
    ) -> str:

        data           = self.canonical_json(payload.dict)
        nonce          = Random.new().read(self.nonce_size)
        cipher         = AES.new(key, AES.MODE_GCM, nonce=nonce)
        encrypted, tag = cipher.encrypt_and_digest(data)

        return key_id + encode_base64(nonce + encrypted + tag)


    async def decrypt(
        self, data: str, key: bytes, key_id: str,
    ) -> EncryptablePayload:

        embedded_key_id = extract_key_id(data)

        if embedded_key_id != key_id:
            raise err.NotDecryptable(key_id, embedded_key_id)

        try:
            body = extract_body(data)
        except (BinAsciiError, UnicodeError) as e:
            raise err.CiphertextCorrupted(f"Invalid base64: {e}")

        if len(body) < self.nonce_size + self.tag_size:
            raise err.CiphertextCorrupted(f"Too short: {len(body)} bytes")

        nonce     = body[:self.nonce_size]
        encrypted = body[self.nonce_size:-self.tag_size]
        tag       = body[-self.tag_size:]
        cipher    = AES.new(key, AES.MODE_GCM, nonce=nonce)

        try:
            plain = cipher.decrypt_and_verify(encrypted, tag)
        except ValueError as e:
            raise err.CiphertextCorrupted(f"Authentication failed: {e}")

        try:
            parsed = json.loads(plain.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise err.MalformedPlaintext(repr(e))

        if not isinstance(parsed, dict) or not isinstance(
            parsed.get("text"), str,
        ):
            raise err.MalformedPlaintext(f"No text in {type(parsed)} value")

        try:
            return EncryptablePayload.from_dict(parsed)
        except JSONLoadError as e:
            raise err.MalformedPlaintext(e.reason)


    @staticmethod
    def canonical_json(value: Any) -> bytes:
        return json.dumps(
            value, ensure_ascii=False, separators=(",", ":"), sort_keys=True,
        ).encode("utf-8")
