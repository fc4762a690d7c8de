"""
Session Cipher
==============

After the Type0 identification exchange, data read from the device
is encrypted with a 16-round block cipher from the TEA family. The
128-bit key is not transmitted: it is assembled from fixed constants
and bytes of the device's own Type0 response, so it differs per
instrument.

Key Layout
----------
Each key word is four bytes read little-endian. ``bN`` is byte N of
the binary Type0 frame (length byte at offset 0):

    k0 = (78,  b8,  b26, b24)
    k1 = (b6,  b25, b23, b13)
    k2 = (b10, 117, b7,  b22)
    k3 = (b9,  b11, 126, b21)

Block Processing
----------------
Plaintext is zero-padded to a multiple of 32 bytes and processed as
pairs of little-endian 32-bit words. Decryption always returns the
padded length; callers trim using their own length information.
"""

import struct
from typing import Final

# Number of Feistel rounds (the device uses 16, not the usual 32)
ROUNDS: Final[int] = 16

# TEA key schedule constant
DELTA: Final[int] = 0x9E3779B9

# Sum after ROUNDS rounds, the decryption starting point
DECRYPT_SUM: Final[int] = (DELTA * ROUNDS) & 0xFFFFFFFF

# Plaintext is padded to this many bytes
PAD_BLOCK: Final[int] = 32

# Smallest Type0 frame that contains every key byte
MIN_TYPE0_LENGTH: Final[int] = 27

_MASK: Final[int] = 0xFFFFFFFF


def _pad(data: bytes) -> bytes:
    remainder = len(data) % PAD_BLOCK
    if remainder:
        data = data + b"\x00" * (PAD_BLOCK - remainder)
    return data


class SessionCipher:
    """
    TEA-family block cipher keyed from the Type0 response.

    Example:
        cipher = SessionCipher.from_type0(type0_frame.binary)
        plain = cipher.decrypt(page_data)
    """

    def __init__(self, key: tuple[int, int, int, int]):
        if len(key) != 4:
            raise ValueError(f"Key must have 4 words, got {len(key)}")
        self.key = tuple(word & _MASK for word in key)

    @classmethod
    def from_type0(cls, type0: bytes) -> "SessionCipher":
        """
        Derive the session key from the binary Type0 frame.

        Args:
            type0: Binary Type0 frame, length byte at offset 0.

        Raises:
            ValueError: If the frame is too short to hold the key bytes.
        """
        if len(type0) < MIN_TYPE0_LENGTH:
            raise ValueError(
                f"Type0 frame too short for key derivation: {len(type0)} bytes, "
                f"need {MIN_TYPE0_LENGTH}"
            )
        b = type0
        words = (
            bytes([78, b[8], b[26], b[24]]),
            bytes([b[6], b[25], b[23], b[13]]),
            bytes([b[10], 117, b[7], b[22]]),
            bytes([b[9], b[11], 126, b[21]]),
        )
        return cls(tuple(int.from_bytes(w, "little") for w in words))

    # -------------------------------------------------------------------------
    # Single block
    # -------------------------------------------------------------------------

    def encrypt_block(self, v0: int, v1: int) -> tuple[int, int]:
        """Encrypt one pair of 32-bit words."""
        k = self.key
        total = 0
        for _ in range(ROUNDS):
            v0 = (v0 + ((((v1 << 4) ^ (v1 >> 5)) + v1) ^ (total + k[total & 3]))) & _MASK
            total = (total + DELTA) & _MASK
            v1 = (v1 + ((((v0 << 4) ^ (v0 >> 5)) + v0) ^ (total + k[(total >> 11) & 3]))) & _MASK
        return v0, v1

    def decrypt_block(self, v0: int, v1: int) -> tuple[int, int]:
        """Decrypt one pair of 32-bit words."""
        k = self.key
        total = DECRYPT_SUM
        for _ in range(ROUNDS):
            v1 = (v1 - ((((v0 << 4) ^ (v0 >> 5)) + v0) ^ (total + k[(total >> 11) & 3]))) & _MASK
            total = (total - DELTA) & _MASK
            v0 = (v0 - ((((v1 << 4) ^ (v1 >> 5)) + v1) ^ (total + k[total & 3]))) & _MASK
        return v0, v1

    # -------------------------------------------------------------------------
    # Buffers
    # -------------------------------------------------------------------------

    def encrypt(self, data: bytes) -> bytes:
        """Encrypt ``data`` after zero-padding it to a multiple of 32 bytes."""
        return self._process(_pad(data), self.encrypt_block)

    def decrypt(self, data: bytes) -> bytes:
        """Decrypt ``data``; the result keeps the padded length."""
        return self._process(_pad(data), self.decrypt_block)

    @staticmethod
    def _process(data: bytes, block_fn) -> bytes:
        out = bytearray()
        for offset in range(0, len(data), 8):
            v0, v1 = struct.unpack_from("<II", data, offset)
            out += struct.pack("<II", *block_fn(v0, v1))
        return bytes(out)

    def __repr__(self) -> str:
        return "SessionCipher(key=<redacted>)"
