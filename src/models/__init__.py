"""
Models package - Data models for x1-keystore.

Contains:
- LocalWallet, HardwareWallet: Tagged wallet variants with capability flags
- AddressRecord: A derived account of a wallet
- KeyValueStore: Persistent and session storage surfaces
"""

from .wallet import (
    AddressRecord,
    WalletRecord,
    LocalWallet,
    HardwareWallet,
    wallet_from_dict,
    WALLET_TYPE_LOCAL,
    WALLET_TYPE_LEDGER,
)
from .store import KeyValueStore, MemoryStore, JsonFileStore

__all__ = [
    "AddressRecord",
    "WalletRecord",
    "LocalWallet",
    "HardwareWallet",
    "wallet_from_dict",
    "WALLET_TYPE_LOCAL",
    "WALLET_TYPE_LEDGER",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
]
