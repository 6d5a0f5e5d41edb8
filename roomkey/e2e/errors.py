# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from dataclasses import dataclass

from ..core.errors import RoomKeyError


@dataclass
class E2EModuleError(RoomKeyError):
    pass


@dataclass
class DecryptionError(E2EModuleError):
    pass


@dataclass
class NotDecryptable(DecryptionError):
    """The ciphertext was produced with another key than the one we hold.

    Messages failing this way are still pending, not corrupted.
    """

    log_level = "DEBUG"

    expected_key_id: str
    got_key_id:      str


@dataclass
class CiphertextCorrupted(DecryptionError):
    reason: str


@dataclass
class MalformedPlaintext(DecryptionError):
    reason: str


@dataclass
class InvalidPublicKey(E2EModuleError):
    reason: str


@dataclass
class KeyLifecycleError(E2EModuleError):
    pass


@dataclass
class KeyImportFailure(KeyLifecycleError):
    room_id: str
    reason:  str


@dataclass
class KeyIdMismatch(KeyImportFailure):
    published_key_id: str
    derived_key_id:   str


@dataclass
class KeyCreationFailure(KeyLifecycleError):
    log_level = "ERROR"

    room_id: str
    reason:  str


@dataclass
class DistributionError(E2EModuleError):
    pass


@dataclass
class DistributionSkipped(DistributionError):
    """The participant has no registered public key, nothing to wrap for."""

    log_level = "DEBUG"

    user_id: str


@dataclass
class DistributionFailure(DistributionError):
    user_id: str
    reason:  str
