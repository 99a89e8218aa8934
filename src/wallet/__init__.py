"""
Wallet package - Key management for X1 and Solana.

Contains:
- Keystore: Multi-wallet lifecycle with encrypted persistence
- UnlockRateLimiter: Progressive delays and lockout on failed unlocks
- Derivation: BIP-39 mnemonics and SLIP-10 Ed25519 paths
- Crypto: Versioned AES-GCM envelope and password policy
"""

from .crypto import (
    encrypt,
    decrypt,
    envelope_version,
    is_encrypted,
    hash_password,
    verify_password,
    secure_wipe,
    validate_setup_password,
    validate_encryption_password,
    get_password_strength,
    ENVELOPE_PREFIX,
)
from .derivation import (
    Keypair,
    generate_mnemonic,
    validate_mnemonic,
    normalize_mnemonic,
    mnemonic_to_seed,
    mnemonic_to_keypair,
    seed_to_keypair,
    derivation_path,
    derive_path,
    parse_path,
)
from .ratelimit import UnlockRateLimiter, RateLimitState
from .keystore import (
    Keystore,
    MAX_WALLETS,
    EVENT_ACCOUNT_CHANGED,
    EVENT_NETWORK_CHANGED,
)

__all__ = [
    # Crypto
    "encrypt",
    "decrypt",
    "envelope_version",
    "is_encrypted",
    "hash_password",
    "verify_password",
    "secure_wipe",
    "validate_setup_password",
    "validate_encryption_password",
    "get_password_strength",
    "ENVELOPE_PREFIX",
    # Derivation
    "Keypair",
    "generate_mnemonic",
    "validate_mnemonic",
    "normalize_mnemonic",
    "mnemonic_to_seed",
    "mnemonic_to_keypair",
    "seed_to_keypair",
    "derivation_path",
    "derive_path",
    "parse_path",
    # Rate limiting
    "UnlockRateLimiter",
    "RateLimitState",
    # Keystore
    "Keystore",
    "MAX_WALLETS",
    "EVENT_ACCOUNT_CHANGED",
    "EVENT_NETWORK_CHANGED",
]
