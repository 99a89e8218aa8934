"""
Networks - SVM cluster configurations and balance fetching

Supports X1 and Solana clusters. Users may override the RPC endpoint of a
built-in network or add their own networks; both live in the persistent
store.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional
import logging

from models.store import CUSTOM_NETWORKS_KEY, RPC_OVERRIDES_KEY, KeyValueStore
from services.rpc import RpcClient
from svm.programs import TOKEN_PROGRAMS
from utils import format_balance

logger = logging.getLogger(__name__)


# ============================================
# Network Configurations
# ============================================

@dataclass
class NetworkConfig:
    """Configuration for an SVM cluster."""
    name: str
    provider_id: str
    rpc_url: str
    explorer_url: str
    is_testnet: bool
    native_symbol: str
    native_decimals: int = 9
    explorer_suffix: str = ""
    has_custom_rpc: bool = False
    is_custom: bool = False

    @property
    def is_x1(self) -> bool:
        return self.name.startswith("X1")


NETWORKS = {
    "X1 Mainnet": NetworkConfig(
        name="X1 Mainnet",
        provider_id="X1-mainnet",
        rpc_url="https://rpc.mainnet.x1.xyz",
        explorer_url="https://explorer.mainnet.x1.xyz",
        is_testnet=False,
        native_symbol="XNT",
    ),
    "X1 Testnet": NetworkConfig(
        name="X1 Testnet",
        provider_id="X1-testnet",
        rpc_url="https://rpc.testnet.x1.xyz",
        explorer_url="https://explorer.testnet.x1.xyz",
        is_testnet=True,
        native_symbol="XNT",
    ),
    "Solana Mainnet": NetworkConfig(
        name="Solana Mainnet",
        provider_id="SOLANA-mainnet",
        rpc_url="https://api.mainnet-beta.solana.com",
        explorer_url="https://solscan.io",
        is_testnet=False,
        native_symbol="SOL",
    ),
    "Solana Devnet": NetworkConfig(
        name="Solana Devnet",
        provider_id="SOLANA-devnet",
        rpc_url="https://api.devnet.solana.com",
        explorer_url="https://solscan.io",
        is_testnet=True,
        native_symbol="SOL",
        explorer_suffix="?cluster=devnet",
    ),
    "Solana Testnet": NetworkConfig(
        name="Solana Testnet",
        provider_id="SOLANA-testnet",
        rpc_url="https://api.testnet.solana.com",
        explorer_url="https://solscan.io",
        is_testnet=True,
        native_symbol="SOL",
        explorer_suffix="?cluster=testnet",
    ),
}

DEFAULT_NETWORK = "X1 Mainnet"


# ============================================
# Overrides and Custom Networks
# ============================================

def get_rpc_overrides(store: KeyValueStore) -> dict[str, str]:
    overrides = store.get(RPC_OVERRIDES_KEY)
    return overrides if isinstance(overrides, dict) else {}


def set_rpc_override(store: KeyValueStore, network_name: str, rpc_url: Optional[str]) -> None:
    """Point a built-in network at another endpoint; None clears the override."""
    overrides = get_rpc_overrides(store)
    if rpc_url:
        overrides[network_name] = rpc_url
    else:
        overrides.pop(network_name, None)
    store.set(RPC_OVERRIDES_KEY, overrides)
    logger.info(f"RPC override for {network_name}: {rpc_url or 'cleared'}")


def clear_rpc_override(store: KeyValueStore, network_name: str) -> None:
    set_rpc_override(store, network_name, None)


def get_custom_networks(store: KeyValueStore) -> list[dict]:
    networks = store.get(CUSTOM_NETWORKS_KEY)
    return networks if isinstance(networks, list) else []


def add_custom_network(store: KeyValueStore, name: str, url: str, symbol: str = "TOKEN",
                       decimals: int = 9, explorer: str = "") -> None:
    """Add or replace a user-defined network. Built-in names are reserved."""
    if name in NETWORKS:
        raise ValueError(f"'{name}' is a built-in network; use an RPC override instead")
    if not url.startswith(("http://", "https://")):
        raise ValueError(f"RPC URL must be http(s): {url}")
    networks = [n for n in get_custom_networks(store) if n.get("name") != name]
    networks.append({
        "name": name,
        "url": url,
        "symbol": symbol,
        "decimals": int(decimals),
        "explorer": explorer,
    })
    store.set(CUSTOM_NETWORKS_KEY, networks)


def remove_custom_network(store: KeyValueStore, name: str) -> bool:
    networks = get_custom_networks(store)
    kept = [n for n in networks if n.get("name") != name]
    if len(kept) == len(networks):
        return False
    store.set(CUSTOM_NETWORKS_KEY, kept)
    return True


def _custom_config(entry: dict) -> NetworkConfig:
    return NetworkConfig(
        name=entry["name"],
        provider_id=f"custom-{entry['name']}",
        rpc_url=entry["url"],
        explorer_url=(entry.get("explorer") or "").rstrip("/"),
        is_testnet=False,
        native_symbol=entry.get("symbol") or "TOKEN",
        native_decimals=int(entry.get("decimals") or 9),
        is_custom=True,
    )


def get_network(name: str, store: Optional[KeyValueStore] = None) -> NetworkConfig:
    """
    Network config by name with the persisted RPC override applied.

    Unknown names fall back to custom networks, then to DEFAULT_NETWORK.
    """
    if name in NETWORKS:
        config = NETWORKS[name]
        if store is not None:
            override = get_rpc_overrides(store).get(name)
            if override:
                return replace(config, rpc_url=override, has_custom_rpc=True)
        return config

    if store is not None:
        for entry in get_custom_networks(store):
            if entry.get("name") == name and entry.get("url"):
                return _custom_config(entry)

    logger.warning(f"Unknown network '{name}', using {DEFAULT_NETWORK}")
    return NETWORKS[DEFAULT_NETWORK]


# ============================================
# Explorer Links
# ============================================

def explorer_tx_url(network: NetworkConfig, signature: str) -> str:
    return f"{network.explorer_url}/tx/{signature}{network.explorer_suffix}"


def explorer_address_url(network: NetworkConfig, address: str) -> str:
    return f"{network.explorer_url}/address/{address}{network.explorer_suffix}"


def explorer_token_url(network: NetworkConfig, mint: str) -> str:
    return f"{network.explorer_url}/token/{mint}{network.explorer_suffix}"


# ============================================
# Balance Fetching
# ============================================

@dataclass
class Balance:
    """A token or native balance."""
    symbol: str
    raw: int           # Raw balance in smallest unit
    decimals: int
    mint: Optional[str] = None  # None for the native coin

    @property
    def formatted(self) -> str:
        return format_balance(self.raw, self.decimals)

    @property
    def amount(self) -> Decimal:
        return Decimal(self.raw) / (Decimal(10) ** self.decimals)


class BalanceFetcher:
    """Fetches native and token balances for an address."""

    def __init__(self, network: NetworkConfig, rpc: Optional[RpcClient] = None):
        self.network = network
        self.rpc = rpc or RpcClient(network.rpc_url)

    async def get_native_balance(self, address: str) -> Balance:
        lamports = await self.rpc.get_balance(address)
        return Balance(
            symbol=self.network.native_symbol,
            raw=lamports,
            decimals=self.network.native_decimals,
        )

    async def get_token_balances(self, address: str) -> list[Balance]:
        """Non-empty token accounts under SPL Token and Token-2022, merged per mint."""
        totals: dict[str, Balance] = {}
        for program_id in TOKEN_PROGRAMS:
            accounts = await self.rpc.get_token_accounts_by_owner(address, program_id=program_id)
            for account in accounts:
                try:
                    info = account["account"]["data"]["parsed"]["info"]
                    mint = info["mint"]
                    token_amount = info["tokenAmount"]
                    raw = int(token_amount["amount"])
                    decimals = int(token_amount["decimals"])
                except (KeyError, TypeError, ValueError):
                    logger.debug(f"Skipping unparsed token account {account.get('pubkey')}")
                    continue
                if raw == 0:
                    continue
                if mint in totals:
                    totals[mint].raw += raw
                else:
                    totals[mint] = Balance(symbol=mint[:4], raw=raw, decimals=decimals, mint=mint)
        return list(totals.values())

    async def get_all_balances(self, address: str) -> list[Balance]:
        """Native balance first, then token balances."""
        return [await self.get_native_balance(address)] + await self.get_token_balances(address)
