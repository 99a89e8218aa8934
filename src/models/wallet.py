"""
Wallet Records - Wallets and their derived addresses.

A wallet is either local (holds a mnemonic, signs in-process) or hardware
(public keys only; signing happens on the device). The serialized form
keeps the camelCase keys used by the persisted envelope.
"""

from dataclasses import dataclass, field
from typing import Optional

from svm.programs import DEFAULT_DERIVATION_PATH

WALLET_TYPE_LOCAL = "local"
WALLET_TYPE_LEDGER = "ledger"


@dataclass
class AddressRecord:
    """One derived account of a wallet."""
    index: int                          # BIP-44 account index
    public_key: str                     # base58
    name: str
    private_key: Optional[str] = None   # base58 64-byte secret; absent for hardware/locked

    def to_dict(self, include_secrets: bool = True) -> dict:
        d = {
            "index": self.index,
            "publicKey": self.public_key,
            "name": self.name,
        }
        if include_secrets and self.private_key:
            d["privateKey"] = self.private_key
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "AddressRecord":
        return cls(
            index=int(data.get("index", 0)),
            public_key=data["publicKey"],
            name=data.get("name") or f"Address {int(data.get('index', 0)) + 1}",
            private_key=data.get("privateKey"),
        )


@dataclass
class WalletRecord:
    """Fields shared by local and hardware wallets."""
    id: str
    name: str
    derivation_path: str = DEFAULT_DERIVATION_PATH
    addresses: list[AddressRecord] = field(default_factory=list)
    active_address_index: int = 0
    created_at: str = ""

    # Capabilities
    can_sign_locally = False
    can_derive_addresses = False
    exposes_mnemonic = False

    @property
    def type(self) -> str:
        raise NotImplementedError

    @property
    def is_hardware(self) -> bool:
        return False

    @property
    def has_mnemonic(self) -> bool:
        return False

    @property
    def active_address(self) -> Optional[AddressRecord]:
        if not self.addresses:
            return None
        return self.addresses[min(self.active_address_index, len(self.addresses) - 1)]

    @property
    def public_key(self) -> Optional[str]:
        addr = self.active_address
        return addr.public_key if addr else None

    def public_keys(self) -> set[str]:
        return {a.public_key for a in self.addresses}

    def find_address(self, index: int) -> Optional[AddressRecord]:
        """Look up by BIP-44 index (not list position)."""
        for addr in self.addresses:
            if addr.index == index:
                return addr
        return None

    def clamp_active(self) -> None:
        if self.active_address_index >= len(self.addresses):
            self.active_address_index = max(0, len(self.addresses) - 1)
        if self.active_address_index < 0:
            self.active_address_index = 0

    def strip_secrets(self) -> None:
        for addr in self.addresses:
            addr.private_key = None

    def to_dict(self, include_secrets: bool = True) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "isHardware": self.is_hardware,
            "derivationPath": self.derivation_path,
            "addresses": [a.to_dict(include_secrets) for a in self.addresses],
            "activeAddressIndex": self.active_address_index,
            "createdAt": self.created_at,
        }

    def sanitized(self) -> dict:
        """Public view: no mnemonic, no private keys, only a hasMnemonic flag."""
        d = self.to_dict(include_secrets=False)
        d["hasMnemonic"] = self.has_mnemonic
        return d


@dataclass
class LocalWallet(WalletRecord):
    """Mnemonic-backed wallet; secrets are present only while unlocked."""
    mnemonic: Optional[str] = None

    can_sign_locally = True
    can_derive_addresses = True
    exposes_mnemonic = True

    @property
    def type(self) -> str:
        return WALLET_TYPE_LOCAL

    @property
    def has_mnemonic(self) -> bool:
        return bool(self.mnemonic)

    def strip_secrets(self) -> None:
        self.mnemonic = None
        super().strip_secrets()

    def to_dict(self, include_secrets: bool = True) -> dict:
        d = super().to_dict(include_secrets)
        if include_secrets and self.mnemonic:
            d["mnemonic"] = self.mnemonic
        return d


@dataclass
class HardwareWallet(WalletRecord):
    """Public-key-only wallet; signing is delegated to the device."""
    hardware_type: str = WALLET_TYPE_LEDGER

    @property
    def type(self) -> str:
        return self.hardware_type

    @property
    def is_hardware(self) -> bool:
        return True

    def to_dict(self, include_secrets: bool = True) -> dict:
        return super().to_dict(include_secrets=False)


def upgrade_single_address(data: dict) -> dict:
    """
    Convert the pre-multi-address shape ({publicKey, privateKey} on the
    wallet itself) into one with a single address at index 0.
    """
    if isinstance(data.get("addresses"), list) or "publicKey" not in data:
        return data
    upgraded = {k: v for k, v in data.items() if k not in ("publicKey", "privateKey")}
    upgraded["addresses"] = [{
        "index": 0,
        "publicKey": data["publicKey"],
        "privateKey": data.get("privateKey"),
        "name": "Address 1",
    }]
    upgraded["activeAddressIndex"] = 0
    return upgraded


def wallet_from_dict(data: dict) -> WalletRecord:
    """
    Rebuild the right wallet variant from its serialized form.

    Raises ValueError for a wallet without addresses.
    """
    data = upgrade_single_address(data)
    addresses = [AddressRecord.from_dict(a) for a in data.get("addresses") or []]
    if not addresses:
        raise ValueError(f"Wallet {data.get('id')!r} has no addresses")
    common = dict(
        id=str(data["id"]),
        name=data.get("name") or "Wallet",
        derivation_path=data.get("derivationPath") or DEFAULT_DERIVATION_PATH,
        addresses=addresses,
        active_address_index=int(data.get("activeAddressIndex", 0)),
        created_at=data.get("createdAt", ""),
    )
    if data.get("isHardware"):
        wallet = HardwareWallet(hardware_type=data.get("type") or WALLET_TYPE_LEDGER, **common)
        wallet.strip_secrets()
    else:
        wallet = LocalWallet(mnemonic=data.get("mnemonic"), **common)
    wallet.clamp_active()
    return wallet
