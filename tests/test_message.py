"""
Tests for svm/message.py

Tests cover:
- compact-u16 encoding
- Account roster ordering and header
- Native and token transfer layouts
- Transaction framing and signer extraction
"""

import struct

import pytest

from conftest import make_pubkey
from errors import InvalidAmount
from svm.codec import b58decode
from svm.message import (
    U64_MAX,
    Message,
    build_token_transfer_message,
    build_transfer_message,
    compile_message,
    create_idempotent_ata,
    decode_compact_u16,
    encode_compact_u16,
    message_signers,
    parse_transaction,
    serialize_transaction,
    token_transfer,
)
from svm.programs import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
)

A = make_pubkey(1)
B = make_pubkey(2)
C = make_pubkey(3)
BLOCKHASH = make_pubkey(200)


class TestCompactU16:
    """Shortvec lengths."""

    @pytest.mark.parametrize("value, encoded", [
        (0, "00"),
        (127, "7f"),
        (128, "8001"),
        (255, "ff01"),
        (16383, "ff7f"),
        (16384, "808001"),
        (65535, "ffff03"),
    ])
    def test_known_encodings(self, value, encoded):
        assert encode_compact_u16(value).hex() == encoded
        assert decode_compact_u16(bytes.fromhex(encoded)) == (value, len(encoded) // 2)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            encode_compact_u16(65536)
        with pytest.raises(ValueError):
            encode_compact_u16(-1)

    def test_truncated(self):
        with pytest.raises(ValueError):
            decode_compact_u16(b"\x80")

    def test_decode_at_offset(self):
        assert decode_compact_u16(b"\x00\x00\x80\x01", 2) == (128, 2)


class TestNativeTransfer:
    """SystemProgram transfer message."""

    def test_layout(self):
        message = build_transfer_message(A, B, 1_000_000, BLOCKHASH)
        assert message.header == (1, 0, 1)
        assert message.account_keys == [A, B, SYSTEM_PROGRAM_ID]
        assert len(message.instructions) == 1
        ix = message.instructions[0]
        assert ix.program_id_index == 2
        assert ix.accounts == [0, 1]
        assert ix.data.hex() == "0200000040420f0000000000"

    def test_wire_bytes(self):
        raw = build_transfer_message(A, B, 1_000_000, BLOCKHASH).serialize()
        expected = (
            bytes([1, 0, 1, 3])
            + b58decode(A) + b58decode(B) + bytes(32)
            + b58decode(BLOCKHASH)
            + bytes([1, 2, 2, 0, 1, 12])
            + bytes.fromhex("0200000040420f0000000000")
        )
        assert raw == expected

    def test_priority_fee_prepends_compute_budget(self):
        message = build_transfer_message(A, B, 5, BLOCKHASH, priority_fee=10_000)
        assert COMPUTE_BUDGET_PROGRAM_ID in message.account_keys
        first = message.instructions[0]
        assert message.account_keys[first.program_id_index] == COMPUTE_BUDGET_PROGRAM_ID
        assert first.accounts == []
        assert first.data == bytes([3]) + struct.pack("<Q", 10_000)
        assert message.header == (1, 0, 2)

    @pytest.mark.parametrize("lamports", [-1, U64_MAX + 1, 1.5, True])
    def test_amount_range(self, lamports):
        with pytest.raises(InvalidAmount):
            build_transfer_message(A, B, lamports, BLOCKHASH)

    def test_deterministic(self):
        first = build_transfer_message(A, B, 42, BLOCKHASH).serialize()
        second = build_transfer_message(A, B, 42, BLOCKHASH).serialize()
        assert first == second


class TestRoster:
    """compile_message ordering and flag merging."""

    def test_payer_first_and_flags_merged(self):
        # B is readonly as the ATA owner and writable as the transfer source
        ixs = [
            create_idempotent_ata(A, C, B, make_pubkey(6)),
            token_transfer(B, C, A, 1),
        ]
        message = compile_message(A, ixs, BLOCKHASH)
        assert message.account_keys[:3] == [A, C, B]
        assert message.header == (1, 0, 4)
        assert message.is_writable(1) and message.is_writable(2)
        assert not message.is_writable(3)

    def test_readonly_signer_counted(self):
        message = compile_message(A, [token_transfer(B, C, make_pubkey(4), 1)], BLOCKHASH)
        assert message.header == (2, 1, 1)
        assert message.signers == [A, make_pubkey(4)]

    def test_parse_round_trip(self):
        message = build_transfer_message(A, B, 7, BLOCKHASH, priority_fee=1)
        parsed = Message.parse(message.serialize())
        assert parsed == message

    def test_parse_rejects_versioned(self):
        with pytest.raises(ValueError):
            Message.parse(b"\x80" + build_transfer_message(A, B, 7, BLOCKHASH).serialize())

    def test_parse_rejects_trailing_bytes(self):
        with pytest.raises(ValueError):
            Message.parse(build_transfer_message(A, B, 7, BLOCKHASH).serialize() + b"\x00")


class TestTokenTransfer:
    """SPL / Token-2022 transfer with optional ATA creation."""

    def test_plain_transfer(self):
        message = build_token_transfer_message(A, B, C, 500, BLOCKHASH)
        ix = message.instructions[-1]
        assert len(message.instructions) == 1
        assert ix.data == bytes([3]) + struct.pack("<Q", 500)
        keys = message.account_keys
        assert [keys[i] for i in ix.accounts] == [B, C, A]

    def test_with_ata_creation(self):
        owner, mint = make_pubkey(5), make_pubkey(6)
        message = build_token_transfer_message(
            A, B, C, 500, BLOCKHASH,
            token_program=TOKEN_2022_PROGRAM_ID,
            create_ata_for=(owner, mint),
        )
        create, transfer = message.instructions
        keys = message.account_keys
        assert keys[create.program_id_index] == ASSOCIATED_TOKEN_PROGRAM_ID
        assert create.data == b"\x01"
        assert [keys[i] for i in create.accounts] == [
            A, C, owner, mint, SYSTEM_PROGRAM_ID, TOKEN_2022_PROGRAM_ID,
        ]
        assert keys[transfer.program_id_index] == TOKEN_2022_PROGRAM_ID


class TestTransactions:
    """Signature framing."""

    def test_serialize_and_parse(self):
        message = build_transfer_message(A, B, 1, BLOCKHASH)
        signature = bytes(range(64))
        tx = serialize_transaction([signature], message)
        assert tx[0] == 1
        assert tx[1:65] == signature
        signatures, raw = parse_transaction(tx)
        assert signatures == [signature]
        assert raw == message.serialize()

    def test_signature_length_checked(self):
        with pytest.raises(ValueError):
            serialize_transaction([b"\x00" * 63], build_transfer_message(A, B, 1, BLOCKHASH))

    def test_short_transaction(self):
        with pytest.raises(ValueError):
            parse_transaction(b"\x02" + bytes(64))

    def test_message_signers(self):
        message = compile_message(A, [token_transfer(B, C, make_pubkey(4), 1)], BLOCKHASH)
        raw = message.serialize()
        assert message_signers(raw) == [A, make_pubkey(4)]
        # v0 messages carry a prefix byte before the header
        assert message_signers(b"\x80" + raw) == [A, make_pubkey(4)]
