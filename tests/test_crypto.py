"""
Tests for wallet/crypto.py

Tests cover:
- Envelope interop at full iteration count
- Tamper detection on every envelope section
- Legacy envelopes and version detection
- Password hashing and policy
"""

import base64

import pytest

from errors import DecryptionFailed, UnsupportedEnvelopeVersion, WeakPassword
from wallet.crypto import (
    AES_IV_SIZE,
    ENVELOPE_PREFIX,
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    decrypt,
    encrypt,
    encrypt_legacy,
    envelope_version,
    get_password_strength,
    hash_password,
    is_encrypted,
    secure_wipe,
    validate_encryption_password,
    validate_setup_password,
    verify_password,
)


def _flip(envelope: str, position: int) -> str:
    raw = bytearray(base64.b64decode(envelope[len(ENVELOPE_PREFIX):]))
    raw[position] ^= 0x01
    return ENVELOPE_PREFIX + base64.b64encode(bytes(raw)).decode("ascii")


class TestEnvelopeInterop:
    """Full-strength round trip."""

    def test_iteration_count(self):
        assert PBKDF2_ITERATIONS == 600_000

    def test_hello_round_trip(self):
        envelope = encrypt("hello", "correct horse battery staple")
        assert envelope.startswith("X1W:v3:")
        assert decrypt(envelope, "correct horse battery staple") == "hello"
        with pytest.raises(DecryptionFailed):
            decrypt(envelope, "wrong")


@pytest.mark.usefixtures("fast_kdf")
class TestEnvelopeTamper:
    """Any flipped bit is a decryption failure."""

    def test_layout(self):
        raw = base64.b64decode(encrypt("abc", "pw")[len(ENVELOPE_PREFIX):])
        assert raw[0] == 0x03
        # version + salt + iv + 3 bytes ciphertext + 16 byte tag
        assert len(raw) == 1 + SALT_SIZE + AES_IV_SIZE + 3 + 16

    @pytest.mark.parametrize("position", [1, 1 + SALT_SIZE, 1 + SALT_SIZE + AES_IV_SIZE, -1])
    def test_bit_flip(self, position):
        envelope = encrypt("secret words", "pw")
        with pytest.raises(DecryptionFailed):
            decrypt(_flip(envelope, position), "pw")

    def test_unknown_version_byte(self):
        envelope = encrypt("x", "pw")
        raw = bytearray(base64.b64decode(envelope[len(ENVELOPE_PREFIX):]))
        raw[0] = 0x04
        bumped = ENVELOPE_PREFIX + base64.b64encode(bytes(raw)).decode("ascii")
        with pytest.raises(UnsupportedEnvelopeVersion):
            decrypt(bumped, "pw")
        with pytest.raises(UnsupportedEnvelopeVersion):
            envelope_version(bumped)

    def test_truncated(self):
        with pytest.raises(DecryptionFailed):
            decrypt(ENVELOPE_PREFIX + base64.b64encode(b"\x03" + bytes(10)).decode(), "pw")

    def test_not_base64(self):
        with pytest.raises(DecryptionFailed):
            decrypt(ENVELOPE_PREFIX + "***", "pw")

    def test_salt_and_iv_are_random(self):
        assert encrypt("same", "pw") != encrypt("same", "pw")


@pytest.mark.usefixtures("fast_kdf")
class TestLegacyEnvelope:
    """Pre-v3 payloads."""

    def test_legacy_decrypts(self):
        legacy = encrypt_legacy('[{"id": "W001"}]', "pw")
        assert not legacy.startswith(ENVELOPE_PREFIX)
        assert envelope_version(legacy) == 2
        assert decrypt(legacy, "pw") == '[{"id": "W001"}]'

    def test_version_detection(self):
        assert envelope_version(encrypt("x", "pw")) == 3

    def test_is_encrypted(self):
        assert is_encrypted(encrypt("x", "pw"))
        assert is_encrypted(encrypt_legacy("x", "pw"))
        assert not is_encrypted('[{"id": "W001"}]')
        assert not is_encrypted("")
        assert not is_encrypted(None)
        assert not is_encrypted(base64.b64encode(b"short").decode())


@pytest.mark.usefixtures("fast_kdf")
class TestPasswordHash:
    """Unlock gate hash."""

    def test_verify(self):
        record = hash_password("hunter22")
        assert set(record) == {"hash", "salt"}
        assert len(base64.b64decode(record["hash"])) == 32
        assert verify_password("hunter22", record)
        assert not verify_password("hunter23", record)

    def test_malformed_record(self):
        assert not verify_password("x", {})
        assert not verify_password("x", {"hash": "!!", "salt": "!!"})

    def test_truncated_hash_fails(self):
        record = hash_password("hunter22")
        record["hash"] = base64.b64encode(base64.b64decode(record["hash"])[:16]).decode()
        assert not verify_password("hunter22", record)


class TestPasswordPolicy:
    """Setup and encryption rules."""

    def test_setup_rules(self):
        validate_setup_password("abcdefg1")
        for weak in ("", "abc1", "abcdefgh", "12345678"):
            with pytest.raises(WeakPassword):
                validate_setup_password(weak)

    def test_encryption_rules(self):
        validate_encryption_password("twelve chars")
        with pytest.raises(WeakPassword):
            validate_encryption_password("eleven char")

    def test_weak_password_is_value_error(self):
        with pytest.raises(ValueError):
            validate_setup_password("x")

    def test_strength(self):
        assert get_password_strength("") == 0
        assert get_password_strength("abcdefgh") < get_password_strength("Abcdefgh1!")
        assert get_password_strength("Abcdefghijklmnop1!") == 100


class TestSecureWipe:
    """secure_wipe."""

    def test_zeroes_bytearray(self):
        buf = bytearray(b"seed material")
        secure_wipe(buf)
        assert buf == bytearray(len(buf))

    def test_ignores_immutable(self):
        secure_wipe(b"immutable")
