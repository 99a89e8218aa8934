"""
Well-known program ids and instruction tags used by the wallet.
"""

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
COMPUTE_BUDGET_PROGRAM_ID = "ComputeBudget111111111111111111111111111111"
BUBBLEGUM_PROGRAM_ID = "BGUMAp9Gq7iTEuizy4pqaxsTyUCBK68MDfK752saRPUY"
NOOP_PROGRAM_ID = "noopb9bkMVfRPU8AsbpTUg8AQkHtKwMYZiFUjNRtMmV"
ACCOUNT_COMPRESSION_PROGRAM_ID = "cmtDvXumGCrqC1Age74AVPhSRVXJMd8PJS91L8KbNCK"

# Wrapped native token (wSOL / wXNT share the same mint address)
NATIVE_MINT = "So11111111111111111111111111111111111111112"

TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)

# System program
SYSTEM_IX_TRANSFER = 2

# Compute budget program
COMPUTE_IX_SET_UNIT_PRICE = 3

# Token program (same tags for SPL Token and Token-2022)
TOKEN_IX_TRANSFER = 3
TOKEN_IX_CLOSE_ACCOUNT = 9
TOKEN_IX_SYNC_NATIVE = 17

# Associated token program
ATA_IX_CREATE_IDEMPOTENT = 1

# Bubblegum transfer instruction discriminator (Anchor sighash of "transfer")
BUBBLEGUM_TRANSFER_DISCRIMINATOR = bytes([163, 52, 200, 231, 140, 3, 69, 186])

PDA_MARKER = b"ProgramDerivedAddress"

# BIP-44 path for SVM chains (coin type 501); all segments hardened
SVM_DERIVATION_PATH = "m/44'/501'/{}'/0'"
DEFAULT_DERIVATION_PATH = SVM_DERIVATION_PATH.format(0)
