"""
Program-derived addresses.

A PDA is SHA-256(seeds || bump || program_id || "ProgramDerivedAddress")
for the largest bump whose digest is off the Ed25519 curve.
"""

import hashlib
from typing import Iterable, Sequence

from errors import InvalidDerivation
from .codec import b58encode, to_pubkey_bytes
from .ed25519 import is_on_curve
from .programs import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    BUBBLEGUM_PROGRAM_ID,
    PDA_MARKER,
    TOKEN_PROGRAM_ID,
)

MAX_SEED_LENGTH = 32
MAX_SEEDS = 16


def _seed_bytes(seed) -> bytes:
    if isinstance(seed, str):
        return to_pubkey_bytes(seed)
    seed = bytes(seed)
    if len(seed) > MAX_SEED_LENGTH:
        raise ValueError(f"Seed is {len(seed)} bytes, max {MAX_SEED_LENGTH}")
    return seed


def program_address_digest(seeds: Iterable[bytes], program_id: str | bytes) -> bytes:
    """Hash seeds and program id without checking the curve."""
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(_seed_bytes(seed))
    hasher.update(to_pubkey_bytes(program_id))
    hasher.update(PDA_MARKER)
    return hasher.digest()


def create_program_address(seeds: Sequence[bytes], program_id: str | bytes) -> str:
    """
    Address for an exact seed list (bump included by the caller).

    Raises InvalidDerivation if the digest lands on the curve.
    """
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"At most {MAX_SEEDS} seeds allowed")
    digest = program_address_digest(seeds, program_id)
    if is_on_curve(digest):
        raise InvalidDerivation("Program address lands on the Ed25519 curve")
    return b58encode(digest)


def find_program_address(seeds: Sequence[bytes], program_id: str | bytes) -> tuple[str, int]:
    """Search bumps 255 down to 0 and return (address, bump) for the first off-curve hit."""
    seeds = [_seed_bytes(s) for s in seeds]
    for bump in range(255, -1, -1):
        try:
            return create_program_address(seeds + [bytes([bump])], program_id), bump
        except InvalidDerivation:
            continue
    raise InvalidDerivation("Unable to find a viable program address bump")


def ata_address_with_bump(owner: str, mint: str, token_program: str, bump: int) -> str:
    """ATA address for an explicit bump, with no curve check (used when probing bumps)."""
    seeds = [to_pubkey_bytes(owner), to_pubkey_bytes(token_program), to_pubkey_bytes(mint), bytes([bump])]
    return b58encode(program_address_digest(seeds, ASSOCIATED_TOKEN_PROGRAM_ID))


def find_associated_token_address(owner: str, mint: str,
                                  token_program: str = TOKEN_PROGRAM_ID) -> tuple[str, int]:
    return find_program_address(
        [to_pubkey_bytes(owner), to_pubkey_bytes(token_program), to_pubkey_bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )


def get_associated_token_address(owner: str, mint: str,
                                 token_program: str = TOKEN_PROGRAM_ID) -> str:
    """Canonical ATA for (owner, token_program, mint)."""
    return find_associated_token_address(owner, mint, token_program)[0]


def tree_authority(merkle_tree: str) -> str:
    """Bubblegum tree config PDA for a Merkle tree."""
    return find_program_address([to_pubkey_bytes(merkle_tree)], BUBBLEGUM_PROGRAM_ID)[0]
