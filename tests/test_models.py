"""
Tests for models/wallet.py and models/store.py
"""

import json
import os

import pytest

from conftest import make_pubkey
from models.store import JsonFileStore, MemoryStore
from models.wallet import (
    WALLET_TYPE_LEDGER,
    AddressRecord,
    HardwareWallet,
    LocalWallet,
    upgrade_single_address,
    wallet_from_dict,
)


def _local(**overrides) -> LocalWallet:
    fields = dict(
        id="W001",
        name="Main",
        mnemonic="word " * 11 + "word",
        addresses=[
            AddressRecord(0, make_pubkey(1), "Address 1", private_key="secret-0"),
            AddressRecord(3, make_pubkey(2), "Savings", private_key="secret-3"),
        ],
    )
    fields.update(overrides)
    return LocalWallet(**fields)


class TestWalletRecords:
    """Serialization and capability flags."""

    def test_local_round_trip(self):
        wallet = _local()
        restored = wallet_from_dict(wallet.to_dict())
        assert isinstance(restored, LocalWallet)
        assert restored == wallet

    def test_sanitized_has_no_secrets(self):
        view = _local().sanitized()
        assert view["hasMnemonic"] is True
        assert "mnemonic" not in view
        assert all("privateKey" not in a for a in view["addresses"])

    def test_strip_secrets(self):
        wallet = _local()
        wallet.strip_secrets()
        assert not wallet.has_mnemonic
        assert wallet.sanitized()["hasMnemonic"] is False
        assert all(a.private_key is None for a in wallet.addresses)

    def test_hardware_never_serializes_secrets(self):
        data = {
            "id": "W002", "name": "Ledger", "isHardware": True, "type": WALLET_TYPE_LEDGER,
            "addresses": [{"index": 0, "publicKey": make_pubkey(5), "privateKey": "leaked"}],
        }
        wallet = wallet_from_dict(data)
        assert isinstance(wallet, HardwareWallet)
        assert wallet.addresses[0].private_key is None
        assert "privateKey" not in json.dumps(wallet.to_dict())
        assert not wallet.can_sign_locally

    def test_find_address_by_index(self):
        wallet = _local()
        assert wallet.find_address(3).name == "Savings"
        assert wallet.find_address(1) is None

    def test_active_index_clamped(self):
        data = _local().to_dict()
        data["activeAddressIndex"] = 9
        wallet = wallet_from_dict(data)
        assert wallet.active_address_index == 1
        assert wallet.public_key == make_pubkey(2)

    @pytest.mark.parametrize("addresses", [[], None])
    def test_wallet_without_addresses_rejected(self, addresses):
        data = _local().to_dict()
        data["addresses"] = addresses
        with pytest.raises(ValueError):
            wallet_from_dict(data)


class TestLegacyShape:
    """Pre-multi-address wallets."""

    def test_upgrade(self):
        legacy = {"id": "1", "name": "Old", "publicKey": make_pubkey(7), "privateKey": "pk", "mnemonic": "m"}
        upgraded = upgrade_single_address(legacy)
        assert "publicKey" not in upgraded
        assert upgraded["addresses"] == [
            {"index": 0, "publicKey": make_pubkey(7), "privateKey": "pk", "name": "Address 1"},
        ]

    def test_wallet_from_legacy(self):
        wallet = wallet_from_dict({"id": "1", "publicKey": make_pubkey(7), "mnemonic": "m"})
        assert wallet.public_key == make_pubkey(7)
        assert wallet.name == "Wallet"

    def test_current_shape_untouched(self):
        data = _local().to_dict()
        assert upgrade_single_address(data) is data


class TestMemoryStore:
    """Session scope."""

    def test_get_set_remove(self):
        store = MemoryStore({"a": 1})
        store.set("b", 2)
        store.remove("a")
        assert store.get("a") is None
        assert store.get("missing", "dflt") == "dflt"
        assert store.keys() == ["b"]
        store.remove(["b", "never-set"])
        assert store.keys() == []


class TestJsonFileStore:
    """Persistent scope."""

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        JsonFileStore(path).set("wallets_envelope", "X1W:v3:abc")
        assert JsonFileStore(path).get("wallets_envelope") == "X1W:v3:abc"

    def test_remove_persists(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.set("a", 1)
        store.set("b", 2)
        store.remove(["a"])
        assert json.loads(path.read_text()) == {"b": 2}

    @pytest.mark.skipif(os.name != "posix", reason="Unix permissions")
    def test_owner_only_permissions(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).set("a", 1)
        assert path.stat().st_mode & 0o777 == 0o600

    def test_corrupt_file_ignored(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json")
        assert JsonFileStore(path).keys() == []

    def test_non_object_ignored(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2]")
        assert JsonFileStore(path).get("0") is None
