"""
Key Derivation - BIP-39 seeds and SLIP-10 Ed25519 paths.

Ed25519 only defines hardened children, so every path segment must carry
a hardened marker (' or h). The default SVM path is m/44'/501'/{account}'/0'.
"""

import hashlib
import hmac
import re
import struct
from dataclasses import dataclass

from mnemonic import Mnemonic

from errors import InvalidDerivationPath, InvalidMnemonic
from svm.codec import b58encode
from svm.ed25519 import keypair_from_seed
from svm.programs import SVM_DERIVATION_PATH
from .crypto import secure_wipe


# ============================================
# Constants
# ============================================

HARDENED_OFFSET = 0x80000000
SLIP10_ED25519_KEY = b"ed25519 seed"

_SEGMENT_RE = re.compile(r"^(\d+)(['hH])?$")

_mnemo = Mnemonic("english")


@dataclass
class Keypair:
    """An Ed25519 keypair in the packed 64-byte form."""
    secret_key: bytes       # seed (32) || public key (32)

    @property
    def seed(self) -> bytes:
        return self.secret_key[:32]

    @property
    def public_key(self) -> bytes:
        return self.secret_key[32:]

    @property
    def address(self) -> str:
        return b58encode(self.public_key)

    @property
    def secret_b58(self) -> str:
        """Base58 of the 64-byte secret key (the format other SVM wallets import)."""
        return b58encode(self.secret_key)

    def __repr__(self) -> str:
        return f"Keypair(address={self.address!r})"


# ============================================
# BIP-39
# ============================================

def normalize_mnemonic(phrase: str) -> str:
    """Trim, lowercase, and collapse whitespace."""
    return " ".join(phrase.strip().lower().split())


def validate_mnemonic(phrase: str) -> bool:
    """Check words and checksum against the English wordlist."""
    if not phrase or not isinstance(phrase, str):
        return False
    phrase = normalize_mnemonic(phrase)
    if len(phrase.split()) not in (12, 15, 18, 21, 24):
        return False
    return _mnemo.check(phrase)


def generate_mnemonic(word_count: int = 12) -> str:
    """
    Create a new phrase.

    Args:
        word_count: 12 (128-bit) or 24 (256-bit)
    """
    if word_count == 12:
        return _mnemo.generate(strength=128)
    elif word_count == 24:
        return _mnemo.generate(strength=256)
    raise ValueError("word_count must be 12 or 24")


def mnemonic_to_seed(phrase: str, passphrase: str = "") -> bytes:
    """
    PBKDF2-HMAC-SHA512 over the NFKD phrase, salt "mnemonic" + passphrase.

    Raises InvalidMnemonic for phrases that fail the checksum.
    """
    if not validate_mnemonic(phrase):
        raise InvalidMnemonic("Invalid recovery phrase")
    # Mnemonic.to_seed applies NFKD to both inputs and runs 2048 iterations
    return Mnemonic.to_seed(normalize_mnemonic(phrase), passphrase=passphrase)


# ============================================
# SLIP-10
# ============================================

def derivation_path(account: int = 0) -> str:
    """Default SVM path for an account index."""
    if account < 0 or account >= HARDENED_OFFSET:
        raise InvalidDerivationPath(f"Account index out of range: {account}")
    return SVM_DERIVATION_PATH.format(account)


def parse_path(path: str) -> list[int]:
    """
    Parse "m/44'/501'/0'/0'" into hardened indices.

    Raises InvalidDerivationPath for non-hardened or malformed segments.
    """
    if not isinstance(path, str):
        raise InvalidDerivationPath("Derivation path must be a string")
    parts = path.strip().split("/")
    if not parts or parts[0] not in ("m", "M"):
        raise InvalidDerivationPath(f"Derivation path must start with 'm': {path}")
    indices = []
    for segment in parts[1:]:
        match = _SEGMENT_RE.match(segment)
        if not match:
            raise InvalidDerivationPath(f"Malformed path segment '{segment}' in {path}")
        if not match.group(2):
            raise InvalidDerivationPath(
                f"Non-hardened segment '{segment}' in {path}; Ed25519 supports hardened derivation only"
            )
        index = int(match.group(1))
        if index >= HARDENED_OFFSET:
            raise InvalidDerivationPath(f"Path segment out of range: {segment}")
        indices.append(index | HARDENED_OFFSET)
    return indices


def derive_path(path: str, seed: bytes) -> tuple[bytes, bytes]:
    """
    SLIP-10 Ed25519 derivation.

    Returns (key, chain_code), 32 bytes each.
    """
    indices = parse_path(path)
    digest = hmac.new(SLIP10_ED25519_KEY, bytes(seed), hashlib.sha512).digest()
    key, chain = digest[:32], digest[32:]
    for index in indices:
        data = b"\x00" + key + struct.pack(">L", index)
        digest = hmac.new(chain, data, hashlib.sha512).digest()
        key, chain = digest[:32], digest[32:]
    return key, chain


def mnemonic_to_keypair(phrase: str, index_or_path: int | str = 0, passphrase: str = "") -> Keypair:
    """
    Derive a keypair from a phrase.

    Args:
        phrase: BIP-39 mnemonic
        index_or_path: account index for the default SVM path, or a full path
        passphrase: optional BIP-39 passphrase
    """
    if isinstance(index_or_path, int):
        path = derivation_path(index_or_path)
    else:
        path = index_or_path
    return seed_to_keypair(bytearray(mnemonic_to_seed(phrase, passphrase)), path)


def seed_to_keypair(seed: bytearray, path: str) -> Keypair:
    """
    Keypair at `path` for a 64-byte BIP-39 seed.

    The seed buffer and the derived private key buffer are zeroed before
    this returns, on success or failure.
    """
    key = bytearray()
    try:
        key = bytearray(derive_path(path, seed)[0])
        return Keypair(secret_key=keypair_from_seed(key))
    finally:
        secure_wipe(seed)
        secure_wipe(key)


def path_for_index(template: str, index: int) -> str:
    """
    Apply an account index to a stored derivation path.

    Stored paths are either templates with '{}' or canonical
    m/44'/501'/N'/0' paths whose account segment is replaced.
    """
    if "{}" in template:
        return template.format(index)
    parts = template.split("/")
    if len(parts) >= 4 and parts[1].rstrip("'hH") == "44" and parts[2].rstrip("'hH") == "501":
        parts[3] = f"{index}'"
        return "/".join(parts)
    return derivation_path(index)
