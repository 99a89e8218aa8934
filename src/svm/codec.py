"""
Base58 codec for SVM keys, signatures and blockhashes.

Bitcoin alphabet. Leading '1' characters map to leading zero bytes.
"""

import base58

from errors import InvalidAddress

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

PUBKEY_SIZE = 32
SIGNATURE_SIZE = 64


def b58encode(data: bytes) -> str:
    """Encode bytes to a base58 string."""
    return base58.b58encode(bytes(data)).decode("ascii")


def b58decode(text: str) -> bytes:
    """Decode a base58 string. Raises InvalidAddress on bad characters."""
    if not isinstance(text, str):
        raise InvalidAddress(f"Expected base58 string, got {type(text).__name__}")
    try:
        return base58.b58decode(text.strip())
    except ValueError as e:
        raise InvalidAddress(f"Invalid base58 string: {e}") from e


def decode_fixed(text: str, size: int = PUBKEY_SIZE) -> bytes:
    """
    Decode base58 into exactly `size` bytes.

    Short results are left-padded with zeros (base58 drops nothing but a
    caller-trimmed value can come back short); oversize input is rejected.
    """
    raw = b58decode(text)
    if len(raw) > size:
        raise InvalidAddress(f"Decoded value is {len(raw)} bytes, expected {size}")
    return raw.rjust(size, b"\x00")


def to_pubkey_bytes(value: str | bytes) -> bytes:
    """Accept a base58 address or raw 32 bytes and return 32 bytes."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != PUBKEY_SIZE:
            raise InvalidAddress(f"Public key must be {PUBKEY_SIZE} bytes, got {len(value)}")
        return bytes(value)
    return decode_fixed(value, PUBKEY_SIZE)


def is_valid_address(text: str) -> bool:
    """True if text is base58 that decodes to exactly 32 bytes."""
    if not text or not isinstance(text, str) or not 32 <= len(text) <= 44:
        return False
    try:
        return len(b58decode(text)) == PUBKEY_SIZE
    except InvalidAddress:
        return False
