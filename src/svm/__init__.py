"""
SVM package - Wire-level primitives for X1 and Solana.

Contains:
- codec: Base58 encode/decode with fixed-size helpers
- ed25519: Hand-rolled RFC 8032 signer and curve check
- pda: Program-derived and associated token addresses
- message: Legacy message compiler and instruction builders
- programs: Program ids and instruction tags
"""

from .codec import b58encode, b58decode, decode_fixed, is_valid_address, to_pubkey_bytes
from .ed25519 import derive_public, keypair_from_seed, sign, verify, is_on_curve
from .pda import (
    create_program_address,
    find_program_address,
    find_associated_token_address,
    get_associated_token_address,
    tree_authority,
)
from .message import (
    AccountMeta,
    Instruction,
    Message,
    compile_message,
    build_transfer_message,
    build_token_transfer_message,
    encode_compact_u16,
    decode_compact_u16,
    serialize_transaction,
    parse_transaction,
)

__all__ = [
    # Codec
    "b58encode",
    "b58decode",
    "decode_fixed",
    "is_valid_address",
    "to_pubkey_bytes",
    # Ed25519
    "derive_public",
    "keypair_from_seed",
    "sign",
    "verify",
    "is_on_curve",
    # PDA
    "create_program_address",
    "find_program_address",
    "find_associated_token_address",
    "get_associated_token_address",
    "tree_authority",
    # Message
    "AccountMeta",
    "Instruction",
    "Message",
    "compile_message",
    "build_transfer_message",
    "build_token_transfer_message",
    "encode_compact_u16",
    "decode_compact_u16",
    "serialize_transaction",
    "parse_transaction",
]
