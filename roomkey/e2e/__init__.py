from enum import Enum as _Enum

# Length of the key ID prefix on ciphertexts and wrapped keys
KEY_ID_LENGTH = 12


class Algorithm(_Enum):
    room_key    = "A256GCM"
    key_wrap    = "RSA-OAEP-256"
