# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import json
from binascii import Error as BinAsciiError
from dataclasses import dataclass, field
from typing import Union

from Cryptodome import Random
from Cryptodome.Cipher import PKCS1_OAEP
from Cryptodome.Hash import SHA256
from Cryptodome.PublicKey import RSA
from unpaddedbase64 import decode_base64, encode_base64

from . import KEY_ID_LENGTH, Algorithm
from . import errors as err

AES_KEY_SIZES = (16, 24, 32)


@dataclass(frozen=True)
class SessionKey:
    """A room's symmetric key, held or discarded as a single unit."""

    key:      bytes = field(repr=False)
    key_id:   str
    exported: str   = field(repr=False)


def derive_key_id(exported: str) -> str:
    return encode_base64(exported.encode())[:KEY_ID_LENGTH]


def extract_key_id(data: str) -> str:
    return data[:KEY_ID_LENGTH]


def extract_body(data: str) -> bytes:
    return decode_base64(data[KEY_ID_LENGTH:])


def generate_session_key(size: int = 32) -> SessionKey:
    key      = Random.new().read(size)
    exported = encode_base64(key, urlsafe=True)
    return SessionKey(key, derive_key_id(exported), exported)


def import_session_key(exported: str) -> SessionKey:
    """Load a key exported by us or another client.

    Both the raw url-safe base64 form and a JSON Web Key are accepted.
    The key ID is always derived from `exported` exactly as received.
    """

    encoded = exported

    if exported.lstrip().startswith("{"):
        try:
            jwk = json.loads(exported)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON web key: {e}")

        if not isinstance(jwk, dict) or jwk.get("kty") != "oct":
            raise ValueError("JSON web key is not a symmetric key")

        algorithm = jwk.get("alg", Algorithm.room_key.value)

        if algorithm != Algorithm.room_key.value:
            raise ValueError(f"Unsupported key algorithm: {algorithm}")

        encoded = jwk.get("k", "")

    try:
        key = decode_base64(encoded)
    except (BinAsciiError, UnicodeError) as e:
        raise ValueError(f"Invalid key encoding: {e}")

    if len(key) not in AES_KEY_SIZES:
        raise ValueError(f"Invalid AES key size: {len(key)} bytes")

    return SessionKey(key, derive_key_id(exported), exported)


def import_public_key(data: Union[str, dict]) -> RSA.RsaKey:
    """Load a participant's RSA public key, as a JSON web key or PEM."""

    try:
        if isinstance(data, str) and data.lstrip().startswith("{"):
            data = json.loads(data)

        if isinstance(data, dict):
            if data.get("kty") != "RSA":
                raise ValueError(f"Not a RSA key type: {data.get('kty')}")

            modulus  = int.from_bytes(decode_base64(data["n"]), "big")
            exponent = int.from_bytes(decode_base64(data["e"]), "big")
            return RSA.construct((modulus, exponent))

        return RSA.import_key(data)
    except (ValueError, TypeError, KeyError, IndexError, BinAsciiError) as e:
        raise err.InvalidPublicKey(repr(e))


def export_public_jwk(key: RSA.RsaKey) -> str:
    def encode_int(value: int) -> str:
        length = (value.bit_length() + 7) // 8
        return encode_base64(value.to_bytes(length, "big"), urlsafe=True)

    public = key.publickey()

    return json.dumps({
        "kty": "RSA",
        "alg": Algorithm.key_wrap.value,
        "n":   encode_int(public.n),
        "e":   encode_int(public.e),
    })


def wrap_session_key(session: SessionKey, public_key: RSA.RsaKey) -> str:
    cipher  = PKCS1_OAEP.new(public_key, hashAlgo=SHA256)
    wrapped = cipher.encrypt(session.exported.encode())
    return session.key_id + encode_base64(wrapped)


def unwrap_session_key(wrapped: str, private_key: RSA.RsaKey) -> SessionKey:
    cipher = PKCS1_OAEP.new(private_key, hashAlgo=SHA256)

    try:
        exported = cipher.decrypt(extract_body(wrapped)).decode()
    except (BinAsciiError, UnicodeError) as e:
        raise ValueError(f"Undecodable wrapped key: {e!r}")

    return import_session_key(exported)
