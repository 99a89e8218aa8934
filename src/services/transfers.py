"""
Transfer builders that need the network.

Each builder returns an unsigned legacy Message ready for the signer. The
only exception is a token transfer to oneself, which short-circuits to
SELF_TRANSFER_NOOP without touching the network.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from errors import (
    AccountLoadedTwice,
    InvalidAddress,
    InvalidAmount,
    InvalidDerivation,
    NoWrappedAccount,
    NotFound,
)
from svm.codec import is_valid_address
from svm.message import (
    U64_MAX,
    Message,
    build_token_transfer_message,
    bubblegum_transfer,
    close_account,
    compile_message,
    create_idempotent_ata,
    set_compute_unit_price,
    sync_native,
    system_transfer,
)
from svm.pda import get_associated_token_address, tree_authority
from svm.programs import (
    ACCOUNT_COMPRESSION_PROGRAM_ID,
    BUBBLEGUM_PROGRAM_ID,
    NATIVE_MINT,
    NOOP_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

from .resolver import AtaResolver
from .rpc import RpcClient

logger = logging.getLogger(__name__)


# Returned instead of a message when sender and recipient are the same wallet
SELF_TRANSFER_NOOP = "self-transfer completed; no submission"


def check_address(value: str, label: str) -> None:
    if not isinstance(value, str) or not is_valid_address(value):
        raise InvalidAddress(f"Invalid {label} address: {value}")


def check_amount(value: int, label: str = "amount") -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value <= U64_MAX:
        raise InvalidAmount(f"Invalid {label}: {value}")


@dataclass
class CompressedAsset:
    """Leaf data and proof for a compressed NFT, as returned by a DAS indexer."""
    merkle_tree: str
    root: str
    data_hash: str
    creator_hash: str
    nonce: int
    index: int
    proof: list[str] = field(default_factory=list)
    leaf_delegate: Optional[str] = None

    @classmethod
    def from_das(cls, asset: dict, proof: dict) -> "CompressedAsset":
        """Build from getAsset + getAssetProof responses."""
        compression = asset["compression"]
        # Bubblegum uses the leaf id as both nonce and leaf index
        leaf_id = int(compression["leaf_id"])
        return cls(
            merkle_tree=proof.get("tree_id") or compression["tree"],
            root=proof["root"],
            data_hash=compression["data_hash"],
            creator_hash=compression["creator_hash"],
            nonce=leaf_id,
            index=leaf_id,
            proof=list(proof.get("proof", [])),
            leaf_delegate=(asset.get("ownership") or {}).get("delegate"),
        )


class TransferBuilder:
    """
    Builds unsigned messages for token, wrap/unwrap and compressed NFT flows.

    Args:
        rpc: client used for blockhashes and account lookups
        resolver: ATA resolver sharing the same client
    """

    def __init__(self, rpc: RpcClient, resolver: Optional[AtaResolver] = None):
        self.rpc = rpc
        self.resolver = resolver or AtaResolver(rpc)

    async def _blockhash(self, blockhash: Optional[str]) -> str:
        if blockhash:
            return blockhash
        value, _ = await self.rpc.get_latest_blockhash()
        return value

    # ============================================
    # Token transfer
    # ============================================

    async def token_transfer(
        self,
        from_pubkey: str,
        to_pubkey: str,
        mint: str,
        amount: int,
        blockhash: Optional[str] = None,
        token_program: Optional[str] = None,
        priority_fee: int = 0,
    ) -> Message | str:
        """
        SPL or Token-2022 transfer, creating the recipient ATA when needed.

        Returns SELF_TRANSFER_NOOP when sender and recipient are the same.

        Raises:
            InvalidAddress / InvalidAmount: bad input
            NotFound: sender holds no token account for the mint
            InvalidDerivation: destination collides with mint, sender,
                recipient or source account
        """
        check_address(from_pubkey, "sender")
        check_address(to_pubkey, "recipient")
        check_address(mint, "mint")
        check_amount(amount)

        if from_pubkey == to_pubkey:
            logger.info("Token transfer to self; nothing to submit")
            return SELF_TRANSFER_NOOP

        program = token_program or await self.resolver.token_program_for_mint(mint)
        source = await self.resolver.find_existing(from_pubkey, mint, program)
        if source is None:
            raise NotFound(f"No token account for mint {mint} owned by sender")

        destination = await self.resolver.resolve(to_pubkey, mint, program, payer=from_pubkey)
        collisions = {
            mint: "mint",
            from_pubkey: "sender wallet",
            to_pubkey: "recipient wallet",
            source: "source token account",
        }
        if destination.address in collisions:
            raise InvalidDerivation(
                f"Destination token account collides with the {collisions[destination.address]}"
            )

        recent = await self._blockhash(blockhash)
        create_for = None if destination.exists else (to_pubkey, mint)
        if create_for:
            logger.info(f"Recipient has no token account; creating {destination.address}")
        return build_token_transfer_message(
            from_pubkey,
            source,
            destination.address,
            amount,
            recent,
            token_program=program,
            create_ata_for=create_for,
            priority_fee=priority_fee,
        )

    # ============================================
    # Native mint wrap / unwrap
    # ============================================

    async def wrap(self, owner: str, lamports: int, blockhash: Optional[str] = None,
                   priority_fee: int = 0) -> Message:
        """CreateIdempotent(owner ATA), Transfer(lamports), SyncNative."""
        check_address(owner, "owner")
        check_amount(lamports, "lamports")
        ata = get_associated_token_address(owner, NATIVE_MINT, TOKEN_PROGRAM_ID)
        instructions = []
        if priority_fee and priority_fee > 0:
            instructions.append(set_compute_unit_price(priority_fee))
        instructions += [
            create_idempotent_ata(owner, ata, owner, NATIVE_MINT, TOKEN_PROGRAM_ID),
            system_transfer(owner, ata, lamports),
            sync_native(ata, TOKEN_PROGRAM_ID),
        ]
        return compile_message(owner, instructions, await self._blockhash(blockhash))

    async def unwrap(self, owner: str, blockhash: Optional[str] = None) -> Message:
        """
        Close the wrapped-native account, returning its lamports to the owner.

        Raises: NoWrappedAccount
        """
        check_address(owner, "owner")
        account = await self.resolver.find_existing(owner, NATIVE_MINT, TOKEN_PROGRAM_ID)
        if account is None:
            raise NoWrappedAccount("No wrapped token account found for this wallet")
        ix = close_account(account, owner, owner, TOKEN_PROGRAM_ID)
        return compile_message(owner, [ix], await self._blockhash(blockhash))

    # ============================================
    # Compressed NFT
    # ============================================

    async def compressed_nft_transfer(self, owner: str, new_owner: str, asset: CompressedAsset,
                                      blockhash: Optional[str] = None) -> Message:
        """
        Bubblegum transfer of a compressed NFT.

        Raises: AccountLoadedTwice if any two required accounts are equal
            (a delegate equal to the owner shares the owner's slot)
        """
        check_address(owner, "owner")
        check_address(new_owner, "new owner")
        check_address(asset.merkle_tree, "merkle tree")
        for node in asset.proof:
            check_address(node, "proof node")

        authority = tree_authority(asset.merkle_tree)
        delegate = asset.leaf_delegate or owner

        required = [authority, owner, new_owner, asset.merkle_tree, NOOP_PROGRAM_ID,
                    ACCOUNT_COMPRESSION_PROGRAM_ID, SYSTEM_PROGRAM_ID, *asset.proof,
                    BUBBLEGUM_PROGRAM_ID]
        if delegate != owner:
            required.append(delegate)
        seen = set()
        for account in required:
            if account in seen:
                raise AccountLoadedTwice(f"Account {account} appears twice in the cNFT transfer")
            seen.add(account)

        ix = bubblegum_transfer(
            tree_authority=authority,
            leaf_owner=owner,
            leaf_delegate=delegate,
            new_leaf_owner=new_owner,
            merkle_tree=asset.merkle_tree,
            proof=asset.proof,
            root=asset.root,
            data_hash=asset.data_hash,
            creator_hash=asset.creator_hash,
            nonce=asset.nonce,
            index=asset.index,
        )
        return compile_message(owner, [ix], await self._blockhash(blockhash))
