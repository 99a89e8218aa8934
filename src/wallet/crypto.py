"""
Wallet Crypto - At-rest encryption for keystore state.

Industry-standard security:
- PBKDF2-HMAC-SHA256 key derivation (600 000 iterations)
- AES-256-GCM authenticated encryption
- Versioned envelope: "X1W:v3:" + base64(0x03 | salt | iv | ciphertext+tag)
- Legacy envelopes (no prefix, no version byte, 100 000 iterations) stay
  decryptable so they can be migrated

Secrets never exist unencrypted on disk.
"""

import base64
import binascii
import hmac
import json
import re
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors import DecryptionFailed, UnsupportedEnvelopeVersion, WeakPassword


# ============================================
# Security Constants
# ============================================

# PBKDF2 parameters (OWASP 2023 recommendation for SHA-256)
PBKDF2_ITERATIONS = 600_000
LEGACY_PBKDF2_ITERATIONS = 100_000

AES_KEY_SIZE = 32
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
AES_TAG_SIZE = 16
SALT_SIZE = 16

ENVELOPE_PREFIX = "X1W:v3:"
ENVELOPE_VERSION = 0x03
LEGACY_VERSION = 2

# salt + iv + tag: the smallest possible legacy payload
MIN_LEGACY_SIZE = SALT_SIZE + AES_IV_SIZE + AES_TAG_SIZE

# Password policy
MIN_SETUP_PASSWORD_LENGTH = 8
MIN_ENCRYPTION_PASSWORD_LENGTH = 12

_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?~`]")


# ============================================
# Key Derivation
# ============================================

def derive_key(password: str, salt: bytes, iterations: Optional[int] = None) -> bytes:
    """
    Derive a 256-bit encryption key from a password with PBKDF2-HMAC-SHA256.

    At 600 000 iterations each password guess costs roughly half a second
    on a laptop, which is the only thing slowing down offline attacks on a
    stolen envelope.
    """
    if iterations is None:
        iterations = PBKDF2_ITERATIONS
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode('utf-8'))


# ============================================
# Envelope
# ============================================

def encrypt(plaintext: str, password: str) -> str:
    """
    Encrypt text into a v3 envelope.

    Returns: "X1W:v3:" + base64(0x03 | salt16 | iv12 | ciphertext+tag)
    """
    salt = secrets.token_bytes(SALT_SIZE)
    key = derive_key(password, salt)
    iv = secrets.token_bytes(AES_IV_SIZE)

    aesgcm = AESGCM(key)
    ciphertext_and_tag = aesgcm.encrypt(iv, plaintext.encode('utf-8'), None)

    payload = bytes([ENVELOPE_VERSION]) + salt + iv + ciphertext_and_tag
    return ENVELOPE_PREFIX + base64.b64encode(payload).decode('ascii')


def _b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailed("Envelope is not valid base64") from e


def _open(salt: bytes, iv: bytes, ciphertext_and_tag: bytes,
          password: str, iterations: int) -> str:
    key = derive_key(password, salt, iterations)
    aesgcm = AESGCM(key)
    try:
        plaintext = aesgcm.decrypt(iv, ciphertext_and_tag, None)
    except InvalidTag as e:
        raise DecryptionFailed() from e
    try:
        return plaintext.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecryptionFailed("Decrypted data is not text") from e


def decrypt(payload: str, password: str) -> str:
    """
    Decrypt a v3 or legacy envelope.

    Raises:
        DecryptionFailed: wrong password or corrupted data (indistinguishable)
        UnsupportedEnvelopeVersion: prefixed payload with an unknown version byte
    """
    if payload.startswith(ENVELOPE_PREFIX):
        raw = _b64decode(payload[len(ENVELOPE_PREFIX):])
        if not raw:
            raise DecryptionFailed("Empty envelope")
        if raw[0] != ENVELOPE_VERSION:
            raise UnsupportedEnvelopeVersion(f"Unsupported envelope version: {raw[0]}")
        body = raw[1:]
        iterations = PBKDF2_ITERATIONS
    else:
        body = _b64decode(payload)
        iterations = LEGACY_PBKDF2_ITERATIONS

    if len(body) < MIN_LEGACY_SIZE:
        raise DecryptionFailed("Envelope too short")

    salt = body[:SALT_SIZE]
    iv = body[SALT_SIZE:SALT_SIZE + AES_IV_SIZE]
    ciphertext_and_tag = body[SALT_SIZE + AES_IV_SIZE:]
    return _open(salt, iv, ciphertext_and_tag, password, iterations)


def encrypt_legacy(plaintext: str, password: str) -> str:
    """
    Produce a legacy (pre-v3) envelope.

    Only used to build migration fixtures; new data is always written as v3.
    """
    salt = secrets.token_bytes(SALT_SIZE)
    key = derive_key(password, salt, LEGACY_PBKDF2_ITERATIONS)
    iv = secrets.token_bytes(AES_IV_SIZE)
    ciphertext_and_tag = AESGCM(key).encrypt(iv, plaintext.encode('utf-8'), None)
    return base64.b64encode(salt + iv + ciphertext_and_tag).decode('ascii')


def envelope_version(payload: str) -> int:
    """3 for prefixed envelopes (checking the version byte), 2 for legacy."""
    if payload.startswith(ENVELOPE_PREFIX):
        raw = _b64decode(payload[len(ENVELOPE_PREFIX):])
        if not raw:
            raise DecryptionFailed("Empty envelope")
        if raw[0] != ENVELOPE_VERSION:
            raise UnsupportedEnvelopeVersion(f"Unsupported envelope version: {raw[0]}")
        return 3
    return LEGACY_VERSION


def is_encrypted(payload) -> bool:
    """
    Decide whether a stored payload is an envelope or plaintext.

    Prefix match is encrypted. Anything that parses as JSON is plaintext.
    Otherwise it is a legacy envelope if it is base64 of at least
    salt + iv + tag bytes.
    """
    if not payload or not isinstance(payload, str):
        return False
    if payload.startswith(ENVELOPE_PREFIX):
        return True
    try:
        json.loads(payload)
        return False
    except ValueError:
        pass
    try:
        raw = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(raw) >= MIN_LEGACY_SIZE


# ============================================
# Password Hashing
# ============================================

def hash_password(password: str) -> dict:
    """
    Hash a password for the unlock gate.

    Returns: {"hash": base64, "salt": base64}
    """
    salt = secrets.token_bytes(SALT_SIZE)
    digest = derive_key(password, salt)
    return {
        "hash": base64.b64encode(digest).decode('ascii'),
        "salt": base64.b64encode(salt).decode('ascii'),
    }


def verify_password(password: str, record: dict) -> bool:
    """Constant-time check of a password against a stored hash record."""
    try:
        expected = base64.b64decode(record["hash"])
        salt = base64.b64decode(record["salt"])
    except (KeyError, TypeError, binascii.Error, ValueError):
        return False
    actual = derive_key(password, salt)
    # compare_digest runs over the full length and returns False on length mismatch
    return hmac.compare_digest(actual, expected)


# ============================================
# Security: Memory Cleanup
# ============================================

def secure_wipe(buffer) -> None:
    """Overwrite a mutable byte buffer with zeros."""
    if isinstance(buffer, (bytearray, memoryview)):
        for i in range(len(buffer)):
            buffer[i] = 0


# ============================================
# Password Policy
# ============================================

def validate_setup_password(password: str) -> None:
    """
    Unlock password rules: at least 8 characters with a letter and a digit.

    Raises: WeakPassword
    """
    if not password or len(password) < MIN_SETUP_PASSWORD_LENGTH:
        raise WeakPassword(f"Password must be at least {MIN_SETUP_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Za-z]", password):
        raise WeakPassword("Password must contain at least one letter")
    if not re.search(r"[0-9]", password):
        raise WeakPassword("Password must contain at least one number")


def validate_encryption_password(password: str) -> None:
    """Encryption password rules: at least 12 characters. Raises: WeakPassword"""
    if not password or len(password) < MIN_ENCRYPTION_PASSWORD_LENGTH:
        raise WeakPassword(
            f"Encryption password must be at least {MIN_ENCRYPTION_PASSWORD_LENGTH} characters"
        )


def get_password_strength(password: str) -> int:
    """Score 0-100 for UI feedback from length tiers and character classes."""
    if not password:
        return 0

    score = 0
    if len(password) >= 8:
        score += 15
    if len(password) >= 12:
        score += 15
    if len(password) >= 16:
        score += 10

    if re.search(r"[a-z]", password):
        score += 15
    if re.search(r"[A-Z]", password):
        score += 15
    if re.search(r"[0-9]", password):
        score += 15
    if _SPECIAL_CHARS.search(password):
        score += 15

    return min(100, score)
