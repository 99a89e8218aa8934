"""
Legacy SVM message format.

    message     := header(3) | shortvec(N) | keys[32*N] | blockhash(32)
                   | shortvec(M) | instruction*
    instruction := u8 program_index | shortvec(K) | indices[K]
                   | shortvec(D) | data[D]

The compiler dedups accounts across instructions, merges their signer and
writable flags, and orders the roster as: fee payer, writable signers,
readonly signers, writable non-signers, readonly non-signers. The header is
always recomputed from that roster.
"""

import struct
from dataclasses import dataclass, field
from typing import Optional, Sequence

from errors import InvalidAmount
from .codec import SIGNATURE_SIZE, b58encode, decode_fixed, to_pubkey_bytes
from .programs import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    ATA_IX_CREATE_IDEMPOTENT,
    BUBBLEGUM_PROGRAM_ID,
    BUBBLEGUM_TRANSFER_DISCRIMINATOR,
    ACCOUNT_COMPRESSION_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    COMPUTE_IX_SET_UNIT_PRICE,
    NOOP_PROGRAM_ID,
    SYSTEM_IX_TRANSFER,
    SYSTEM_PROGRAM_ID,
    TOKEN_IX_CLOSE_ACCOUNT,
    TOKEN_IX_SYNC_NATIVE,
    TOKEN_IX_TRANSFER,
    TOKEN_PROGRAM_ID,
)

U64_MAX = 2**64 - 1
U32_MAX = 2**32 - 1
COMPACT_U16_MAX = 0xFFFF
VERSION_PREFIX_MASK = 0x80

# Signed transactions may not exceed one packet
PACKET_DATA_SIZE = 1232


# ============================================
# Shortvec
# ============================================

def encode_compact_u16(value: int) -> bytes:
    """Encode a length as 1-3 bytes, 7 bits per byte, high bit = continuation."""
    if not 0 <= value <= COMPACT_U16_MAX:
        raise ValueError(f"compact-u16 value out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_compact_u16(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a shortvec at offset. Returns (value, bytes_consumed)."""
    value = 0
    for i in range(3):
        if offset + i >= len(data):
            raise ValueError("Truncated compact-u16")
        byte = data[offset + i]
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return value, i + 1
    raise ValueError("compact-u16 longer than 3 bytes")


# ============================================
# Instructions
# ============================================

@dataclass(frozen=True)
class AccountMeta:
    """An account referenced by an instruction."""
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False


@dataclass
class Instruction:
    """Uncompiled instruction: program, account metas, raw data."""
    program_id: str
    accounts: list[AccountMeta]
    data: bytes


@dataclass
class CompiledInstruction:
    program_id_index: int
    accounts: list[int]
    data: bytes

    def serialize(self) -> bytes:
        return (
            bytes([self.program_id_index])
            + encode_compact_u16(len(self.accounts))
            + bytes(self.accounts)
            + encode_compact_u16(len(self.data))
            + self.data
        )


def _u64(value: int, name: str = "amount") -> bytes:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= U64_MAX:
        raise InvalidAmount(f"{name} must be an integer in u64 range, got {value!r}")
    return struct.pack("<Q", value)


def system_transfer(from_pubkey: str, to_pubkey: str, lamports: int) -> Instruction:
    """System Transfer: u32_le(2) | u64_le(lamports)."""
    data = struct.pack("<I", SYSTEM_IX_TRANSFER) + _u64(lamports, "lamports")
    return Instruction(
        program_id=SYSTEM_PROGRAM_ID,
        accounts=[
            AccountMeta(from_pubkey, is_signer=True, is_writable=True),
            AccountMeta(to_pubkey, is_writable=True),
        ],
        data=data,
    )


def set_compute_unit_price(micro_lamports: int) -> Instruction:
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=bytes([COMPUTE_IX_SET_UNIT_PRICE]) + _u64(micro_lamports, "priority fee"),
    )


def token_transfer(source: str, destination: str, authority: str, amount: int,
                   token_program: str = TOKEN_PROGRAM_ID) -> Instruction:
    return Instruction(
        program_id=token_program,
        accounts=[
            AccountMeta(source, is_writable=True),
            AccountMeta(destination, is_writable=True),
            AccountMeta(authority, is_signer=True),
        ],
        data=bytes([TOKEN_IX_TRANSFER]) + _u64(amount),
    )


def create_idempotent_ata(payer: str, ata: str, owner: str, mint: str,
                          token_program: str = TOKEN_PROGRAM_ID) -> Instruction:
    """Associated-token CreateIdempotent; a no-op when the account already exists."""
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=[
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(ata, is_writable=True),
            AccountMeta(owner),
            AccountMeta(mint),
            AccountMeta(SYSTEM_PROGRAM_ID),
            AccountMeta(token_program),
        ],
        data=bytes([ATA_IX_CREATE_IDEMPOTENT]),
    )


def sync_native(account: str, token_program: str = TOKEN_PROGRAM_ID) -> Instruction:
    return Instruction(
        program_id=token_program,
        accounts=[AccountMeta(account, is_writable=True)],
        data=bytes([TOKEN_IX_SYNC_NATIVE]),
    )


def close_account(account: str, destination: str, owner: str,
                  token_program: str = TOKEN_PROGRAM_ID) -> Instruction:
    return Instruction(
        program_id=token_program,
        accounts=[
            AccountMeta(account, is_writable=True),
            AccountMeta(destination, is_writable=True),
            AccountMeta(owner, is_signer=True),
        ],
        data=bytes([TOKEN_IX_CLOSE_ACCOUNT]),
    )


def bubblegum_transfer_data(root: str | bytes, data_hash: str | bytes, creator_hash: str | bytes,
                            nonce: int, index: int) -> bytes:
    """discriminator | root | data_hash | creator_hash | u64 nonce | u32 index"""
    if not 0 <= index <= U32_MAX:
        raise InvalidAmount(f"Leaf index out of u32 range: {index}")
    return (
        BUBBLEGUM_TRANSFER_DISCRIMINATOR
        + to_pubkey_bytes(root)
        + to_pubkey_bytes(data_hash)
        + to_pubkey_bytes(creator_hash)
        + _u64(nonce, "nonce")
        + struct.pack("<I", index)
    )


def bubblegum_transfer(tree_authority: str, leaf_owner: str, leaf_delegate: str,
                       new_leaf_owner: str, merkle_tree: str, proof: Sequence[str],
                       root, data_hash, creator_hash, nonce: int, index: int) -> Instruction:
    accounts = [
        AccountMeta(tree_authority),
        AccountMeta(leaf_owner, is_signer=True),
        AccountMeta(leaf_delegate),
        AccountMeta(new_leaf_owner),
        AccountMeta(merkle_tree, is_writable=True),
        AccountMeta(NOOP_PROGRAM_ID),
        AccountMeta(ACCOUNT_COMPRESSION_PROGRAM_ID),
        AccountMeta(SYSTEM_PROGRAM_ID),
    ]
    accounts.extend(AccountMeta(node) for node in proof)
    return Instruction(
        program_id=BUBBLEGUM_PROGRAM_ID,
        accounts=accounts,
        data=bubblegum_transfer_data(root, data_hash, creator_hash, nonce, index),
    )


# ============================================
# Message
# ============================================

@dataclass
class Message:
    """A compiled legacy message."""
    header: tuple[int, int, int]
    account_keys: list[str]
    recent_blockhash: str
    instructions: list[CompiledInstruction] = field(default_factory=list)

    @property
    def num_required_signatures(self) -> int:
        return self.header[0]

    @property
    def signers(self) -> list[str]:
        return self.account_keys[:self.header[0]]

    @property
    def fee_payer(self) -> str:
        return self.account_keys[0]

    def is_writable(self, index: int) -> bool:
        num_signed, ro_signed, ro_unsigned = self.header
        if index < num_signed:
            return index < num_signed - ro_signed
        return index < len(self.account_keys) - ro_unsigned

    def serialize(self) -> bytes:
        out = bytearray(self.header)
        out += encode_compact_u16(len(self.account_keys))
        for key in self.account_keys:
            out += to_pubkey_bytes(key)
        out += decode_fixed(self.recent_blockhash, 32)
        out += encode_compact_u16(len(self.instructions))
        for ix in self.instructions:
            out += ix.serialize()
        return bytes(out)

    @classmethod
    def parse(cls, raw: bytes) -> "Message":
        """Parse a legacy message. Versioned messages are rejected."""
        raw = bytes(raw)
        if raw and raw[0] & VERSION_PREFIX_MASK:
            raise ValueError(f"Versioned message (v{raw[0] & 0x7F}) is not a legacy message")
        header = (raw[0], raw[1], raw[2])
        offset = 3
        num_keys, used = decode_compact_u16(raw, offset)
        offset += used
        keys = []
        for _ in range(num_keys):
            keys.append(b58encode(raw[offset:offset + 32]))
            offset += 32
        blockhash = b58encode(raw[offset:offset + 32])
        offset += 32
        num_ix, used = decode_compact_u16(raw, offset)
        offset += used
        instructions = []
        for _ in range(num_ix):
            program_index = raw[offset]
            offset += 1
            num_accounts, used = decode_compact_u16(raw, offset)
            offset += used
            accounts = list(raw[offset:offset + num_accounts])
            offset += num_accounts
            data_len, used = decode_compact_u16(raw, offset)
            offset += used
            data = raw[offset:offset + data_len]
            offset += data_len
            instructions.append(CompiledInstruction(program_index, accounts, data))
        if offset != len(raw):
            raise ValueError(f"Trailing bytes after message: {len(raw) - offset}")
        return cls(header, keys, blockhash, instructions)


def message_signers(raw: bytes) -> list[str]:
    """Required signer keys of a legacy or versioned message, in signature order."""
    raw = bytes(raw)
    offset = 1 if raw[0] & VERSION_PREFIX_MASK else 0
    num_signed = raw[offset]
    offset += 3
    num_keys, used = decode_compact_u16(raw, offset)
    offset += used
    if num_signed > num_keys:
        raise ValueError("Header declares more signers than account keys")
    return [b58encode(raw[offset + 32 * i:offset + 32 * (i + 1)]) for i in range(num_signed)]


def _roster_rank(flags: list[bool]) -> int:
    is_signer, is_writable = flags
    if is_signer:
        return 0 if is_writable else 1
    return 2 if is_writable else 3


def compile_message(payer: str, instructions: Sequence[Instruction],
                    recent_blockhash: str) -> Message:
    """Dedup accounts, order the roster, recompute the header, and index instructions."""
    # pubkey -> [is_signer, is_writable]; dict keeps first-seen order
    roster: dict[str, list[bool]] = {payer: [True, True]}

    def merge(pubkey: str, is_signer: bool, is_writable: bool) -> None:
        flags = roster.setdefault(pubkey, [False, False])
        flags[0] = flags[0] or is_signer
        flags[1] = flags[1] or is_writable

    for ix in instructions:
        for meta in ix.accounts:
            merge(meta.pubkey, meta.is_signer, meta.is_writable)
        merge(ix.program_id, False, False)

    others = [k for k in roster if k != payer]
    others.sort(key=lambda k: _roster_rank(roster[k]))
    keys = [payer] + others

    num_signed = sum(1 for k in keys if roster[k][0])
    ro_signed = sum(1 for k in keys if roster[k][0] and not roster[k][1])
    ro_unsigned = sum(1 for k in keys if not roster[k][0] and not roster[k][1])

    index_of = {k: i for i, k in enumerate(keys)}
    compiled = [
        CompiledInstruction(
            program_id_index=index_of[ix.program_id],
            accounts=[index_of[m.pubkey] for m in ix.accounts],
            data=bytes(ix.data),
        )
        for ix in instructions
    ]
    return Message((num_signed, ro_signed, ro_unsigned), keys, recent_blockhash, compiled)


# ============================================
# Message Builders
# ============================================

def build_transfer_message(from_pubkey: str, to_pubkey: str, lamports: int,
                           recent_blockhash: str, priority_fee: int = 0) -> Message:
    """Native transfer, with a SetComputeUnitPrice first when priority_fee > 0."""
    instructions = []
    if priority_fee and priority_fee > 0:
        instructions.append(set_compute_unit_price(priority_fee))
    instructions.append(system_transfer(from_pubkey, to_pubkey, lamports))
    return compile_message(from_pubkey, instructions, recent_blockhash)


def build_token_transfer_message(
    from_pubkey: str,
    from_token_account: str,
    to_token_account: str,
    amount: int,
    recent_blockhash: str,
    token_program: str = TOKEN_PROGRAM_ID,
    create_ata_for: Optional[tuple[str, str]] = None,
    priority_fee: int = 0,
) -> Message:
    """
    Token transfer from `from_token_account` signed by `from_pubkey`.

    create_ata_for: (recipient_owner, mint) to prepend an idempotent ATA
    creation for `to_token_account`, paid by the sender.
    """
    instructions = []
    if priority_fee and priority_fee > 0:
        instructions.append(set_compute_unit_price(priority_fee))
    if create_ata_for is not None:
        owner, mint = create_ata_for
        instructions.append(create_idempotent_ata(from_pubkey, to_token_account, owner, mint, token_program))
    instructions.append(token_transfer(from_token_account, to_token_account, from_pubkey, amount, token_program))
    return compile_message(from_pubkey, instructions, recent_blockhash)


# ============================================
# Transactions
# ============================================

def serialize_transaction(signatures: Sequence[bytes], message: "Message | bytes") -> bytes:
    """shortvec(sig_count) | sig_count * 64 | message"""
    raw = message.serialize() if isinstance(message, Message) else bytes(message)
    out = bytearray(encode_compact_u16(len(signatures)))
    for sig in signatures:
        if len(sig) != SIGNATURE_SIZE:
            raise ValueError(f"Signature must be {SIGNATURE_SIZE} bytes, got {len(sig)}")
        out += sig
    out += raw
    return bytes(out)


def parse_transaction(raw: bytes) -> tuple[list[bytes], bytes]:
    """Split a wire transaction into its signatures and raw message bytes."""
    raw = bytes(raw)
    count, offset = decode_compact_u16(raw, 0)
    end = offset + count * SIGNATURE_SIZE
    if end > len(raw):
        raise ValueError("Transaction is shorter than its signature count")
    signatures = [raw[offset + SIGNATURE_SIZE * i:offset + SIGNATURE_SIZE * (i + 1)] for i in range(count)]
    return signatures, raw[end:]
