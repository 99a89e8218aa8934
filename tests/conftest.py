"""
x1-keystore Test Configuration

Shared fixtures: in-memory stores, a controllable clock, a scripted RPC
node and a cheap KDF so keystore tests do not spend seconds in PBKDF2.
"""

import sys
from pathlib import Path
from typing import Any, Optional

import pytest

# src/ layout: make the top-level modules importable without installing
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from models.store import MemoryStore
from services.rpc import reset_buckets
from svm.codec import b58encode
from svm.programs import TOKEN_PROGRAM_ID
from wallet.keystore import Keystore


ABANDON_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
# Phantom / Solflare address for the phrase above at m/44'/501'/0'/0'
ABANDON_ADDRESS = "HAgk14JpMQLgt6rVgv7cBQFJWFto5Dqxi472uT3DKpqk"

PASSWORD = "correct-horse-42"


def make_pubkey(n: int) -> str:
    """A valid 32-byte address that is easy to tell apart in failures."""
    return b58encode(bytes([n]) * 32)


# ==============================================================================
# Clock
# ==============================================================================

class FakeClock:
    """Epoch-seconds clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ==============================================================================
# Stores
# ==============================================================================

@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def session():
    return MemoryStore()


@pytest.fixture
def fast_kdf(monkeypatch):
    """Drop PBKDF2 iteration counts for tests that are not about the KDF."""
    monkeypatch.setattr("wallet.crypto.PBKDF2_ITERATIONS", 1_000)
    monkeypatch.setattr("wallet.crypto.LEGACY_PBKDF2_ITERATIONS", 500)


@pytest.fixture
def keystore(store, session, clock, fast_kdf):
    return Keystore(store, session=session, clock=clock, sleep=clock.sleep, device_id="test-device")


@pytest.fixture(autouse=True)
def _fresh_rate_buckets():
    reset_buckets()
    yield
    reset_buckets()


# ==============================================================================
# Scripted RPC node
# ==============================================================================

class FakeRpc:
    """
    Stands in for RpcClient at the method level.

    accounts: address -> getAccountInfo value
    token_accounts: (owner, mint) -> [token account addresses]
    simulation_errors: `err` values returned by successive simulations
        (the last one repeats); an Exception instance is raised instead
    """

    def __init__(self):
        self.blockhash = make_pubkey(200)
        self.accounts: dict[str, dict] = {}
        self.token_accounts: dict[tuple[str, str], list[str]] = {}
        self.parsed_token_accounts: dict[str, list[dict]] = {}
        self.balances: dict[str, int] = {}
        self.simulation_errors: list[Any] = [None]
        self.simulation_logs: list[str] = []
        self.send_failures: list[Exception] = []
        self.calls: list[str] = []
        self.simulated: list[str] = []
        self.sent: list[str] = []

    def add_mint(self, mint: str, program: str = TOKEN_PROGRAM_ID) -> None:
        self.accounts[mint] = {"owner": program, "lamports": 1_461_600, "data": ["", "base64"]}

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> tuple[str, int]:
        self.calls.append("getLatestBlockhash")
        return self.blockhash, 1000

    async def get_balance(self, pubkey: str, commitment: str = "confirmed") -> int:
        self.calls.append("getBalance")
        return self.balances.get(pubkey, 0)

    async def get_account_info(self, address: str, encoding: str = "base64") -> Optional[dict]:
        self.calls.append("getAccountInfo")
        return self.accounts.get(address)

    async def get_token_accounts_by_owner(self, owner: str, mint: Optional[str] = None,
                                          program_id: Optional[str] = None,
                                          encoding: str = "jsonParsed") -> list[dict]:
        self.calls.append("getTokenAccountsByOwner")
        if program_id is not None:
            return [
                a for a in self.parsed_token_accounts.get(owner, [])
                if a.get("program") == program_id
            ]
        return [{"pubkey": p, "account": {}} for p in self.token_accounts.get((owner, mint), [])]

    async def simulate_transaction(self, tx_b64: str, sig_verify: bool = False,
                                   replace_recent_blockhash: bool = True,
                                   commitment: str = "confirmed") -> dict:
        self.calls.append("simulateTransaction")
        self.simulated.append(tx_b64)
        if len(self.simulation_errors) > 1:
            err = self.simulation_errors.pop(0)
        else:
            err = self.simulation_errors[0]
        if isinstance(err, Exception):
            raise err
        return {"err": err, "logs": list(self.simulation_logs), "unitsConsumed": 450}

    async def send_transaction(self, tx_b64: str, skip_preflight: bool = False,
                               preflight_commitment: str = "confirmed") -> str:
        self.calls.append("sendTransaction")
        if self.send_failures:
            raise self.send_failures.pop(0)
        self.sent.append(tx_b64)
        return b58encode(bytes([7]) * 64)


@pytest.fixture
def rpc():
    return FakeRpc()
