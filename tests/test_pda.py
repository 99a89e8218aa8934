"""
Tests for svm/pda.py
"""

import pytest

from conftest import make_pubkey
from errors import InvalidDerivation
from svm.codec import b58decode
from svm.ed25519 import is_on_curve
from svm.pda import (
    ata_address_with_bump,
    create_program_address,
    find_associated_token_address,
    find_program_address,
    get_associated_token_address,
    program_address_digest,
    tree_authority,
)
from svm.programs import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

OWNER = make_pubkey(11)
MINT = make_pubkey(12)


class TestFindProgramAddress:
    """Bump search."""

    def test_result_is_off_curve(self):
        address, bump = find_program_address([b"metadata"], TOKEN_PROGRAM_ID)
        assert 0 <= bump <= 255
        assert not is_on_curve(b58decode(address))

    def test_bump_matches_create(self):
        address, bump = find_program_address([b"vault", b58decode(OWNER)], TOKEN_PROGRAM_ID)
        assert create_program_address([b"vault", b58decode(OWNER), bytes([bump])], TOKEN_PROGRAM_ID) == address

    def test_higher_bumps_were_on_curve(self):
        seeds = [b58decode(OWNER), b58decode(TOKEN_PROGRAM_ID), b58decode(MINT)]
        _, bump = find_program_address(seeds, ASSOCIATED_TOKEN_PROGRAM_ID)
        for higher in range(bump + 1, 256):
            with pytest.raises(InvalidDerivation):
                create_program_address(seeds + [bytes([higher])], ASSOCIATED_TOKEN_PROGRAM_ID)

    def test_string_seeds_are_pubkeys(self):
        assert find_program_address([OWNER], TOKEN_PROGRAM_ID) == \
            find_program_address([b58decode(OWNER)], TOKEN_PROGRAM_ID)

    def test_seed_too_long(self):
        with pytest.raises(ValueError):
            find_program_address([bytes(33)], TOKEN_PROGRAM_ID)

    def test_too_many_seeds(self):
        with pytest.raises(ValueError):
            create_program_address([b"x"] * 17, TOKEN_PROGRAM_ID)


class TestAssociatedTokenAddress:
    """ATA derivation."""

    def test_deterministic(self):
        assert get_associated_token_address(OWNER, MINT) == get_associated_token_address(OWNER, MINT)

    def test_token_program_is_a_seed(self):
        assert get_associated_token_address(OWNER, MINT, TOKEN_PROGRAM_ID) != \
            get_associated_token_address(OWNER, MINT, TOKEN_2022_PROGRAM_ID)

    def test_owner_and_mint_order_matters(self):
        assert get_associated_token_address(OWNER, MINT) != get_associated_token_address(MINT, OWNER)

    def test_explicit_bump_matches_canonical(self):
        address, bump = find_associated_token_address(OWNER, MINT)
        assert ata_address_with_bump(OWNER, MINT, TOKEN_PROGRAM_ID, bump) == address

    def test_explicit_bump_skips_curve_check(self):
        _, bump = find_associated_token_address(OWNER, MINT)
        seeds = [b58decode(OWNER), b58decode(TOKEN_PROGRAM_ID), b58decode(MINT), bytes([bump - 1])]
        digest = program_address_digest(seeds, ASSOCIATED_TOKEN_PROGRAM_ID)
        assert b58decode(ata_address_with_bump(OWNER, MINT, TOKEN_PROGRAM_ID, bump - 1)) == digest


class TestTreeAuthority:
    """Bubblegum tree config."""

    def test_deterministic_and_distinct(self):
        tree = make_pubkey(30)
        assert tree_authority(tree) == tree_authority(tree)
        assert tree_authority(tree) != tree_authority(make_pubkey(31))
        assert not is_on_curve(b58decode(tree_authority(tree)))
