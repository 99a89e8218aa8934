"""
Tests for svm/codec.py

Tests cover:
- Base58 round trips and leading zeros
- Fixed-size decoding
- Address validation
"""

import pytest

from errors import InvalidAddress
from svm.codec import b58decode, b58encode, decode_fixed, is_valid_address, to_pubkey_bytes
from svm.programs import NATIVE_MINT, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID


class TestBase58:
    """Encode/decode behavior."""

    def test_leading_zeros_become_ones(self):
        assert b58encode(b"\x00\x00\x01") == "112"
        assert b58decode("112") == b"\x00\x00\x01"

    def test_system_program_is_all_zero(self):
        assert b58decode(SYSTEM_PROGRAM_ID) == bytes(32)
        assert b58encode(bytes(32)) == SYSTEM_PROGRAM_ID

    def test_known_program_round_trip(self):
        raw = b58decode(TOKEN_PROGRAM_ID)
        assert len(raw) == 32
        assert b58encode(raw) == TOKEN_PROGRAM_ID

    def test_empty(self):
        assert b58encode(b"") == ""
        assert b58decode("") == b""

    def test_invalid_character_rejected(self):
        with pytest.raises(InvalidAddress):
            b58decode("0OIl")

    def test_non_string_rejected(self):
        with pytest.raises(InvalidAddress):
            b58decode(b"abc")


class TestFixedDecode:
    """decode_fixed and to_pubkey_bytes."""

    def test_short_value_is_left_padded(self):
        assert decode_fixed("2", 32) == bytes(31) + b"\x01"

    def test_oversize_rejected(self):
        with pytest.raises(InvalidAddress):
            decode_fixed(b58encode(b"\x01" * 33), 32)

    def test_pubkey_bytes_accepts_raw(self):
        raw = bytes(range(32))
        assert to_pubkey_bytes(raw) == raw

    def test_pubkey_bytes_rejects_wrong_length(self):
        with pytest.raises(InvalidAddress):
            to_pubkey_bytes(b"\x01" * 31)


class TestAddressValidation:
    """is_valid_address."""

    def test_valid_addresses(self):
        for addr in (SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID, NATIVE_MINT):
            assert is_valid_address(addr), addr

    def test_invalid_inputs(self):
        assert not is_valid_address("")
        assert not is_valid_address(None)
        assert not is_valid_address("abc")
        assert not is_valid_address("0x1234567890abcdef1234567890abcdef12345678")
        assert not is_valid_address("l" * 44)

    def test_wrong_decoded_length(self):
        assert not is_valid_address(b58encode(b"\x05" * 31))
