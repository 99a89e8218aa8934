"""
Associated token account resolution backed by RPC.

Order of preference for a (owner, mint) pair:
1. an existing token account reported by getTokenAccountsByOwner
2. a derived ATA whose bump is confirmed by simulating CreateIdempotent
3. the canonical derivation, when the node will not simulate

Mint-owner lookups are cached for 30 minutes; mints that do not exist are
remembered for 5 minutes in the persistent store so repeated lookups do not
hit the node again after a restart.
"""

import base64
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from errors import AtaBumpNotFound, InvalidAddress, NotFound, RpcError
from models.store import FAILED_LOOKUPS_KEY, KeyValueStore
from svm.codec import SIGNATURE_SIZE, to_pubkey_bytes
from svm.ed25519 import is_on_curve
from svm.message import compile_message, create_idempotent_ata, serialize_transaction
from svm.pda import (
    ata_address_with_bump,
    find_associated_token_address,
    program_address_digest,
)
from svm.programs import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAMS

from .rpc import RpcClient

logger = logging.getLogger(__name__)


MINT_OWNER_TTL = 30 * 60
FAILED_LOOKUP_TTL = 5 * 60
MINT_CACHE_SIZE = 500

# Bumps probed by simulation, in order
BUMP_CANDIDATES = (255, 254, 253, 252, 251, 250)

# Simulation outcomes for the CreateIdempotent probe
VALID_BUMP_ERRORS = ("InsufficientFunds", "AccountNotFound")
INVALID_BUMP_ERRORS = ("InvalidSeeds", "InvalidAccountData", "IncorrectProgramId", "Custom")

# Any 32 bytes will do; the node replaces it
PROBE_BLOCKHASH = "11111111111111111111111111111111"


# ============================================
# Cache
# ============================================

class TtlCache:
    """Small LRU cache whose entries expire after `ttl` seconds."""

    def __init__(self, ttl: float, max_entries: int = MINT_CACHE_SIZE,
                 clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self.clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, self.clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ============================================
# Simulation error classification
# ============================================

def _error_names(err: Any) -> list[str]:
    """Flatten an RPC `err` value into the variant names it contains."""
    if err is None:
        return []
    if isinstance(err, str):
        return [err]
    if isinstance(err, dict):
        names = []
        for key, value in err.items():
            names.append(key)
            names.extend(_error_names(value))
        return names
    if isinstance(err, list):
        names = []
        for item in err:
            names.extend(_error_names(item))
        return names
    return []


def classify_bump_error(err: Any) -> Optional[bool]:
    """
    True if the simulated CreateIdempotent proves the bump valid, False if
    it proves it invalid, None if the outcome says nothing either way.
    """
    if err is None:
        return True
    names = _error_names(err)
    if any(n in INVALID_BUMP_ERRORS for n in names):
        return False
    if any(n in VALID_BUMP_ERRORS for n in names):
        return True
    return None


@dataclass
class ResolvedAta:
    address: str
    exists: bool
    bump: Optional[int] = None


class AtaResolver:
    """
    Finds or derives associated token accounts using an RpcClient.

    Args:
        rpc: client for the active network
        store: persistent scope for negative mint lookups (optional)
        clock: epoch seconds
    """

    def __init__(self, rpc: RpcClient, store: Optional[KeyValueStore] = None,
                 clock: Callable[[], float] = time.time):
        self.rpc = rpc
        self.store = store
        self.clock = clock
        self._mint_owners = TtlCache(MINT_OWNER_TTL, clock=clock)

    # ============================================
    # Mint owner
    # ============================================

    def _failed_lookups(self) -> dict:
        if self.store is None:
            return {}
        entries = self.store.get(FAILED_LOOKUPS_KEY) or {}
        now = self.clock()
        live = {k: v for k, v in entries.items() if v > now}
        if len(live) != len(entries):
            self.store.set(FAILED_LOOKUPS_KEY, live)
        return live

    def _remember_failure(self, mint: str) -> None:
        if self.store is None:
            return
        entries = self._failed_lookups()
        entries[mint] = self.clock() + FAILED_LOOKUP_TTL
        self.store.set(FAILED_LOOKUPS_KEY, entries)

    async def token_program_for_mint(self, mint: str) -> str:
        """
        SPL Token or Token-2022, from the mint account's owner.

        Raises:
            NotFound: the mint account does not exist (cached for 5 minutes)
            InvalidAddress: the account is not owned by a token program
        """
        cached = self._mint_owners.get(mint)
        if cached:
            return cached
        if mint in self._failed_lookups():
            raise NotFound(f"Mint not found: {mint}")

        info = await self.rpc.get_account_info(mint, encoding="base64")
        if info is None:
            logger.info(f"Mint {mint} does not exist; caching negative lookup")
            self._remember_failure(mint)
            raise NotFound(f"Mint not found: {mint}")

        owner = info.get("owner")
        if owner not in TOKEN_PROGRAMS:
            raise InvalidAddress(f"{mint} is not a token mint (owner {owner})")
        self._mint_owners.set(mint, owner)
        return owner

    # ============================================
    # Existing accounts
    # ============================================

    async def find_existing(self, owner: str, mint: str,
                            token_program: Optional[str] = None) -> Optional[str]:
        """
        Address of a token account `owner` already holds for `mint`.

        The canonical ATA wins when present; otherwise the first account the
        node reports. The mint filter covers SPL Token and Token-2022.
        """
        accounts = await self.rpc.get_token_accounts_by_owner(owner, mint=mint)
        if not accounts:
            return None
        addresses = [a.get("pubkey") for a in accounts if a.get("pubkey")]
        if not addresses:
            return None
        if token_program is not None:
            canonical, _ = find_associated_token_address(owner, mint, token_program)
            if canonical in addresses:
                return canonical
        return addresses[0]

    # ============================================
    # Bump validation
    # ============================================

    async def validate_bump(self, owner: str, mint: str, token_program: str,
                            bump: int, payer: str) -> Optional[bool]:
        """
        Simulate CreateIdempotent for the ATA at `bump`.

        Returns True/False when the simulation decides, None when it is
        inconclusive or the node refuses to simulate.
        """
        ata = ata_address_with_bump(owner, mint, token_program, bump)
        ix = create_idempotent_ata(payer, ata, owner, mint, token_program)
        message = compile_message(payer, [ix], PROBE_BLOCKHASH)
        dummy = [bytes(SIGNATURE_SIZE)] * message.num_required_signatures
        tx = serialize_transaction(dummy, message)
        try:
            value = await self.rpc.simulate_transaction(
                base64.b64encode(tx).decode('ascii'),
                sig_verify=False,
                replace_recent_blockhash=True,
            )
        except RpcError as e:
            logger.warning(f"Bump {bump} probe failed: {e}")
            return None
        verdict = classify_bump_error(value.get("err"))
        logger.debug(f"Bump {bump} for {ata}: {value.get('err')} -> {verdict}")
        return verdict

    async def derive_validated(self, owner: str, mint: str, token_program: str,
                               payer: str) -> tuple[str, int]:
        """
        Probe bumps 255 then 254..250 and return the first the ATA program accepts.

        Candidates on the curve are skipped without a round trip. If the node
        never gives a conclusive answer the canonical derivation is used.

        Raises: AtaBumpNotFound when every candidate is rejected
        """
        seeds = [to_pubkey_bytes(owner), to_pubkey_bytes(token_program), to_pubkey_bytes(mint)]
        rejected = set()
        for bump in BUMP_CANDIDATES:
            digest = program_address_digest(seeds + [bytes([bump])], ASSOCIATED_TOKEN_PROGRAM_ID)
            if is_on_curve(digest):
                rejected.add(bump)
                continue
            verdict = await self.validate_bump(owner, mint, token_program, bump, payer)
            if verdict is True:
                return ata_address_with_bump(owner, mint, token_program, bump), bump
            if verdict is False:
                rejected.add(bump)
                continue
            break

        if rejected.issuperset(BUMP_CANDIDATES):
            raise AtaBumpNotFound(f"No valid ATA bump for owner {owner}, mint {mint}")
        address, bump = find_associated_token_address(owner, mint, token_program)
        if bump in rejected:
            raise AtaBumpNotFound(f"Canonical ATA bump {bump} was rejected for mint {mint}")
        logger.info("ATA bump probe inconclusive; using canonical derivation")
        return address, bump

    async def resolve(self, owner: str, mint: str, token_program: Optional[str] = None,
                      payer: Optional[str] = None) -> ResolvedAta:
        """Existing token account, or a validated ATA that still has to be created."""
        program = token_program or await self.token_program_for_mint(mint)
        existing = await self.find_existing(owner, mint, program)
        if existing:
            return ResolvedAta(address=existing, exists=True)
        address, bump = await self.derive_validated(owner, mint, program, payer or owner)
        return ResolvedAta(address=address, exists=False, bump=bump)
