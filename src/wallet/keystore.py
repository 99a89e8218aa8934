"""
Keystore - Multi-wallet lifecycle, encrypted persistence and session model.

One Keystore instance owns all wallet state for a host. Every operation is
async and serialized by a single asyncio.Lock; PBKDF2 and derivation work
runs in a worker thread so the event loop stays responsive.

Persistence:
- The full (non-sanitized) wallet list is serialized to JSON, encrypted
  into one envelope and written under a single key.
- A save is refused while locked, and an empty list never overwrites a
  non-trivial envelope.

Session:
- unlock writes {wallets json, password} to the optional session scope so
  a host reload can skip the password prompt; lock and clear_all erase it.
"""

import asyncio
import json
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from errors import (
    BadPassword,
    DecryptionFailed,
    DuplicateWallet,
    EmptyWriteBlocked,
    InvalidAddress,
    InvalidMnemonic,
    KeystoreError,
    LastAddress,
    Locked,
    LockedOut,
    NoMnemonic,
    NoPasswordSet,
    NotFound,
    SessionExpired,
)
from models.store import (
    ACTIVE_WALLET_KEY,
    AUTH_HASH_KEY,
    KeyValueStore,
    NETWORK_NAME_KEY,
    RATE_LIMIT_KEY,
    SESSION_PASSWORD_KEY,
    SESSION_WALLETS_KEY,
    WALLETS_ENVELOPE_KEY,
)
from models.wallet import (
    AddressRecord,
    HardwareWallet,
    LocalWallet,
    WalletRecord,
    WALLET_TYPE_LEDGER,
    wallet_from_dict,
)
from svm.codec import b58decode, is_valid_address
from svm.programs import DEFAULT_DERIVATION_PATH

from .crypto import (
    ENVELOPE_VERSION,
    decrypt,
    encrypt,
    envelope_version,
    hash_password,
    is_encrypted,
    validate_encryption_password,
    validate_setup_password,
    verify_password,
)
from .derivation import (
    Keypair,
    mnemonic_to_keypair,
    normalize_mnemonic,
    path_for_index,
    validate_mnemonic,
)
from .ratelimit import UnlockRateLimiter

logger = logging.getLogger(__name__)


MAX_WALLETS = 999  # Cap at W001-W999

# Envelopes longer than this are never replaced by an empty wallet list
EMPTY_WRITE_GUARD = 100

MIGRATION_TOKEN_TTL = 5 * 60  # seconds

DEFAULT_WALLET_NAME = "My Wallet"
DEFAULT_HARDWARE_NAME = "Hardware Wallet"

EVENT_ACCOUNT_CHANGED = "account-changed"
EVENT_NETWORK_CHANGED = "network-changed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Keystore:
    """
    Process-wide wallet state with an explicit unlock/lock lifecycle.

    Args:
        store: persistent key-value scope
        session: optional process-local scope for the session cache
        clock: returns epoch seconds (injectable for tests)
        sleep: awaitable sleep used for unlock delays
        device_id: advisory fingerprint mixed into the rate limit tag
    """

    def __init__(
        self,
        store: KeyValueStore,
        session: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        device_id: Optional[str] = None,
    ):
        self.store = store
        self.session = session
        self.clock = clock
        self.sleep = sleep
        self.rate_limiter = UnlockRateLimiter(store, clock=clock, device_id=device_id)

        self._wallets: list[WalletRecord] = []
        self._active_wallet_id: Optional[str] = None
        self._password: Optional[str] = None
        self._lock = asyncio.Lock()
        self._subscribers: list[Callable[[dict], None]] = []
        # token -> (legacy wallet dicts, expires_at)
        self._migrations: dict[str, tuple[list, float]] = {}

    # ============================================
    # State
    # ============================================

    def _has_envelope(self) -> bool:
        return is_encrypted(self.store.get(WALLETS_ENVELOPE_KEY))

    @property
    def locked(self) -> bool:
        """True when no password is held and encrypted data exists."""
        return self._password is None and self._has_envelope()

    @property
    def is_unlocked(self) -> bool:
        return self._password is not None

    @property
    def wallets(self) -> list[WalletRecord]:
        return list(self._wallets)

    @property
    def active_wallet_id(self) -> Optional[str]:
        return self._active_wallet_id

    @property
    def active_wallet(self) -> Optional[WalletRecord]:
        for wallet in self._wallets:
            if wallet.id == self._active_wallet_id:
                return wallet
        return self._wallets[0] if self._wallets else None

    @property
    def active_public_key(self) -> Optional[str]:
        wallet = self.active_wallet
        return wallet.public_key if wallet else None

    def _find_wallet(self, wallet_id: str) -> WalletRecord:
        for wallet in self._wallets:
            if wallet.id == wallet_id:
                return wallet
        raise NotFound(f"Wallet not found: {wallet_id}")

    @staticmethod
    def _find_address(wallet: WalletRecord, index: int) -> AddressRecord:
        address = wallet.find_address(index)
        if address is None:
            raise NotFound(f"Address {index} not found in wallet {wallet.id}")
        return address

    def _require_unlocked(self) -> None:
        if self._password is None:
            raise Locked()

    def _assert_unique(self, public_keys: Iterable[str], skip_wallet_id: Optional[str] = None) -> None:
        """No public key may appear in two wallets."""
        wanted = set(public_keys)
        for wallet in self._wallets:
            if wallet.id == skip_wallet_id:
                continue
            if wanted & wallet.public_keys():
                raise DuplicateWallet("This wallet has already been imported")

    def _generate_wallet_id(self) -> str:
        used_ids = {w.id for w in self._wallets}
        for i in range(1, MAX_WALLETS + 1):
            wallet_id = f"W{i:03d}"
            if wallet_id not in used_ids:
                return wallet_id
        raise KeystoreError(f"Maximum of {MAX_WALLETS} wallets reached")

    def _set_active(self, wallet_id: Optional[str]) -> None:
        self._active_wallet_id = wallet_id
        if wallet_id:
            self.store.set(ACTIVE_WALLET_KEY, wallet_id)
        else:
            self.store.remove(ACTIVE_WALLET_KEY)

    def _restore_active(self) -> None:
        stored = self.store.get(ACTIVE_WALLET_KEY)
        ids = [w.id for w in self._wallets]
        if stored in ids:
            self._active_wallet_id = stored
        else:
            self._active_wallet_id = ids[0] if ids else None

    # ============================================
    # Events
    # ============================================

    def subscribe(self, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Register an event callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, event: dict) -> None:
        """Deliver an event to every subscriber; a failing subscriber is only logged."""
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.get('type')}: {e}")

    def _notify_account_changed(self) -> None:
        self.notify({
            "type": EVENT_ACCOUNT_CHANGED,
            "walletId": self._active_wallet_id,
            "publicKey": self.active_public_key,
        })

    # ============================================
    # Persistence
    # ============================================

    def _serialize(self) -> str:
        return json.dumps([w.to_dict(include_secrets=True) for w in self._wallets])

    async def _save(self) -> None:
        """Encrypt and write the full wallet list. Caller holds the lock."""
        existing = self.store.get(WALLETS_ENVELOPE_KEY)
        if self._password is None:
            raise Locked("Cannot save wallets while locked")
        if not self._wallets and existing and len(existing) > EMPTY_WRITE_GUARD:
            raise EmptyWriteBlocked("Refusing to overwrite wallet data with an empty list")

        plaintext = self._serialize()
        envelope = await asyncio.to_thread(encrypt, plaintext, self._password)
        self.store.set(WALLETS_ENVELOPE_KEY, envelope)
        self._write_session(plaintext)
        logger.debug(f"Saved {len(self._wallets)} wallet(s)")

    def _write_session(self, plaintext: Optional[str] = None) -> None:
        if self.session is None or self._password is None:
            return
        self.session.set(SESSION_WALLETS_KEY, plaintext if plaintext is not None else self._serialize())
        self.session.set(SESSION_PASSWORD_KEY, self._password)

    def _clear_session(self) -> None:
        if self.session is not None:
            self.session.remove([SESSION_WALLETS_KEY, SESSION_PASSWORD_KEY])

    def _load_wallet_dicts(self, items: list) -> list[WalletRecord]:
        if not isinstance(items, list):
            raise DecryptionFailed("Wallet data has an unexpected shape")
        return [wallet_from_dict(item) for item in items]

    # ============================================
    # Password / Unlock
    # ============================================

    async def _wait_for_attempt(self) -> None:
        """Raise LockedOut, or sleep off the progressive delay, before a password check."""
        state = self.rate_limiter.check()
        remaining = self.rate_limiter.lockout_remaining(state)
        if remaining > 0:
            raise LockedOut(remaining)
        delay = self.rate_limiter.delay_remaining(state)
        if delay > 0:
            logger.info(f"Waiting {delay:.1f}s before next password attempt")
            await self.sleep(delay)

    def _failed_attempt(self, message: str) -> BadPassword:
        self.rate_limiter.record_failure()
        return BadPassword(message)

    async def _check_password(self, password: str, auth: Optional[dict], payload) -> Optional[str]:
        """
        Verify `password` against the stored hash and envelope.

        Every rejection counts towards the lockout. Returns the decrypted
        envelope plaintext, or None when no envelope is stored.

        Raises: LockedOut, BadPassword
        """
        await self._wait_for_attempt()

        if not password:
            raise self._failed_attempt("Password is required")

        if auth and not await asyncio.to_thread(verify_password, password, auth):
            logger.warning("Password check failed: wrong password")
            raise self._failed_attempt("Incorrect password")

        if not is_encrypted(payload):
            return None
        try:
            return await asyncio.to_thread(decrypt, payload, password)
        except DecryptionFailed as e:
            logger.warning(f"Password check failed: {type(e).__name__}")
            raise self._failed_attempt("Incorrect password") from e

    async def has_password(self) -> bool:
        return bool(self.store.get(AUTH_HASH_KEY)) or self._has_envelope()

    async def setup_password(self, password: str) -> None:
        """
        Set the unlock password for a fresh keystore and unlock it.

        Raises: WeakPassword, KeystoreError if a password already exists
        """
        async with self._lock:
            validate_setup_password(password)
            if self.store.get(AUTH_HASH_KEY) or self._has_envelope():
                raise KeystoreError("A password is already set")
            record = await asyncio.to_thread(hash_password, password)
            self.store.set(AUTH_HASH_KEY, record)
            self._password = password
            logger.info("Password configured")

    async def unlock(self, password: str) -> bool:
        """
        Verify the password, decrypt the envelope and start a session.

        Legacy envelopes are re-encrypted to v3 before this returns.

        Raises: NoPasswordSet, LockedOut, BadPassword
        """
        async with self._lock:
            auth = self.store.get(AUTH_HASH_KEY)
            payload = self.store.get(WALLETS_ENVELOPE_KEY)
            encrypted = is_encrypted(payload)
            if not auth and not encrypted:
                raise NoPasswordSet("No password has been set")

            plaintext = await self._check_password(password, auth, payload)

            wallets: list[WalletRecord] = []
            if plaintext is not None:
                try:
                    wallets = self._load_wallet_dicts(json.loads(plaintext))
                except (DecryptionFailed, ValueError, KeyError) as e:
                    logger.warning(f"Unlock failed: {type(e).__name__}")
                    raise self._failed_attempt("Incorrect password") from e

                if envelope_version(payload) != 3:
                    await self._migrate_envelope(plaintext, password)

            self.rate_limiter.reset()
            if not auth:
                self.store.set(AUTH_HASH_KEY, await asyncio.to_thread(hash_password, password))

            self._wallets = wallets
            self._password = password
            self._restore_active()
            self._write_session()
            logger.info(f"Unlocked keystore with {len(wallets)} wallet(s)")
            return True

    async def _migrate_envelope(self, plaintext: str, password: str) -> None:
        """Replace a legacy envelope with v3 and confirm the stored version byte."""
        logger.info("Migrating legacy envelope to v3")
        envelope = await asyncio.to_thread(encrypt, plaintext, password)
        self.store.set(WALLETS_ENVELOPE_KEY, envelope)
        stored = self.store.get(WALLETS_ENVELOPE_KEY)
        if not stored or envelope_version(stored) != ENVELOPE_VERSION:
            raise KeystoreError("Envelope migration could not be verified")
        logger.info("Envelope migration complete")

    async def lock(self) -> None:
        """Drop every secret from memory and clear the session cache."""
        async with self._lock:
            for wallet in self._wallets:
                wallet.strip_secrets()
            self._password = None
            self._clear_session()
            logger.info("Keystore locked")

    async def change_password(self, old_password: str, new_password: str) -> None:
        """
        Re-encrypt the envelope under a new password.

        The old password goes through the same lockout as unlock.

        Raises: NoPasswordSet, LockedOut, BadPassword, WeakPassword
        """
        async with self._lock:
            validate_encryption_password(new_password)
            auth = self.store.get(AUTH_HASH_KEY)
            payload = self.store.get(WALLETS_ENVELOPE_KEY)
            if not auth and not is_encrypted(payload):
                raise NoPasswordSet("No password has been set")

            plaintext = await self._check_password(old_password, auth, payload)
            self.rate_limiter.reset()
            if self._password is not None:
                # In-memory state is authoritative while unlocked
                plaintext = self._serialize()

            record = await asyncio.to_thread(hash_password, new_password)
            if plaintext is not None:
                envelope = await asyncio.to_thread(encrypt, plaintext, new_password)
                self.store.set(WALLETS_ENVELOPE_KEY, envelope)
            self.store.set(AUTH_HASH_KEY, record)
            if self._password is not None:
                self._password = new_password
                self._write_session(plaintext)
            logger.info("Password changed")

    async def enable_encryption(self, password: str) -> None:
        """
        Encrypt a keystore that has never had a password.

        Picks up a plaintext wallet list left by an older version; the
        plaintext is replaced by the envelope in the same write.

        Raises: WeakPassword, KeystoreError if encryption is already on
        """
        async with self._lock:
            validate_encryption_password(password)
            if self.store.get(AUTH_HASH_KEY) or self._has_envelope():
                raise KeystoreError("Encryption is already enabled")

            payload = self.store.get(WALLETS_ENVELOPE_KEY)
            if payload:
                self._wallets = self._load_wallet_dicts(json.loads(payload))
                self._restore_active()
                self._migrations.clear()

            self.store.set(AUTH_HASH_KEY, await asyncio.to_thread(hash_password, password))
            self._password = password
            await self._save()
            logger.info("Encryption enabled")

    async def remaining_attempts(self) -> int:
        return self.rate_limiter.remaining_attempts()

    async def needs_migration(self) -> bool:
        """True when the stored wallet data is a legacy envelope or plaintext."""
        payload = self.store.get(WALLETS_ENVELOPE_KEY)
        if not payload:
            return False
        if not is_encrypted(payload):
            return True
        return envelope_version(payload) != 3

    # ============================================
    # Startup / Legacy plaintext migration
    # ============================================

    async def load_at_startup(self) -> bool:
        """
        Restore state after a host reload.

        Returns True when the session cache restored an unlocked keystore.
        Otherwise the keystore stays locked; a plaintext wallet list from an
        older version is held behind a migration token.
        """
        async with self._lock:
            payload = self.store.get(WALLETS_ENVELOPE_KEY)
            if self.session is not None:
                cached = self.session.get(SESSION_WALLETS_KEY)
                password = self.session.get(SESSION_PASSWORD_KEY)
                if cached and password and (not payload or is_encrypted(payload)):
                    try:
                        self._wallets = self._load_wallet_dicts(json.loads(cached))
                    except (DecryptionFailed, ValueError, KeyError) as e:
                        logger.warning(f"Discarding unreadable session cache: {e}")
                        self._clear_session()
                    else:
                        self._password = password
                        self._restore_active()
                        logger.info("Restored session")
                        return True

            self._wallets = []
            self._password = None
            self._active_wallet_id = None
            if payload and not is_encrypted(payload):
                try:
                    legacy = json.loads(payload)
                except ValueError:
                    logger.error("Stored wallet data is neither encrypted nor valid JSON")
                else:
                    self._issue_migration_token(legacy)
                    logger.warning("Found unencrypted wallet data; encryption required")
            return False

    def _issue_migration_token(self, legacy: list) -> str:
        token = secrets.token_urlsafe(32)
        self._migrations = {token: (legacy, self.clock() + MIGRATION_TOKEN_TTL)}
        return token

    def _purge_expired_migrations(self) -> None:
        now = self.clock()
        for token in [t for t, (_, exp) in self._migrations.items() if now > exp]:
            del self._migrations[token]

    async def migration_token(self) -> Optional[str]:
        """
        Opaque handle on pending plaintext wallet data, valid for five minutes.

        The data itself is never returned; redeem the token with a password
        to encrypt it.
        """
        async with self._lock:
            self._purge_expired_migrations()
            if self._migrations:
                return next(iter(self._migrations))
            payload = self.store.get(WALLETS_ENVELOPE_KEY)
            if payload and not is_encrypted(payload):
                try:
                    return self._issue_migration_token(json.loads(payload))
                except ValueError:
                    return None
            return None

    async def redeem_migration_token(self, token: str, password: str) -> dict:
        """
        Encrypt pending plaintext wallet data under a new password.

        Raises: SessionExpired, WeakPassword
        """
        async with self._lock:
            entry = self._migrations.get(token)
            if entry is None or self.clock() > entry[1]:
                self._migrations.pop(token, None)
                raise SessionExpired("Migration session expired. Please reload the wallet and try again.")
            validate_setup_password(password)

            self._wallets = self._load_wallet_dicts(entry[0])
            self._restore_active()
            self.store.set(AUTH_HASH_KEY, await asyncio.to_thread(hash_password, password))
            self._password = password
            await self._save()
            del self._migrations[token]
            logger.info("Legacy wallet migrated to encrypted storage")
            return self._sanitized()

    # ============================================
    # Wallets
    # ============================================

    async def create_wallet(self, mnemonic: str, name: Optional[str] = None) -> dict:
        """
        Add a local wallet with address 0 and make it active.

        Raises: Locked, InvalidMnemonic, DuplicateWallet
        """
        async with self._lock:
            self._require_unlocked()
            if not validate_mnemonic(mnemonic):
                raise InvalidMnemonic("Invalid recovery phrase")
            phrase = normalize_mnemonic(mnemonic)
            keypair = await asyncio.to_thread(mnemonic_to_keypair, phrase, DEFAULT_DERIVATION_PATH)
            self._assert_unique([keypair.address])

            wallet = LocalWallet(
                id=self._generate_wallet_id(),
                name=name or DEFAULT_WALLET_NAME,
                mnemonic=phrase,
                derivation_path=DEFAULT_DERIVATION_PATH,
                addresses=[AddressRecord(
                    index=0,
                    public_key=keypair.address,
                    name="Address 1",
                    private_key=keypair.secret_b58,
                )],
                created_at=_now_iso(),
            )
            self._wallets.append(wallet)
            try:
                await self._save()
            except KeystoreError:
                self._wallets.remove(wallet)
                raise
            self._set_active(wallet.id)
            logger.info(f"Created wallet {wallet.id}")
            self._notify_account_changed()
            return wallet.sanitized()

    async def import_wallet(self, mnemonic: str, name: Optional[str] = None) -> dict:
        return await self.create_wallet(mnemonic, name)

    async def add_hardware_wallet(self, info: dict | str) -> dict:
        """
        Register a public-key-only wallet.

        Args:
            info: {"publicKey", "name", "type", "derivationPath"} or a bare public key

        Raises: Locked, InvalidAddress, DuplicateWallet
        """
        if isinstance(info, str):
            info = {"publicKey": info}
        public_key = info.get("publicKey")
        if not public_key or not is_valid_address(public_key):
            raise InvalidAddress(f"Invalid public key: {public_key}")

        async with self._lock:
            self._require_unlocked()
            self._assert_unique([public_key])
            wallet = HardwareWallet(
                id=self._generate_wallet_id(),
                name=info.get("name") or DEFAULT_HARDWARE_NAME,
                hardware_type=info.get("type") or WALLET_TYPE_LEDGER,
                derivation_path=info.get("derivationPath") or DEFAULT_DERIVATION_PATH,
                addresses=[AddressRecord(index=0, public_key=public_key, name="Address 1")],
                created_at=_now_iso(),
            )
            self._wallets.append(wallet)
            try:
                await self._save()
            except KeystoreError:
                self._wallets.remove(wallet)
                raise
            self._set_active(wallet.id)
            logger.info(f"Added {wallet.type} wallet {wallet.id}")
            self._notify_account_changed()
            return wallet.sanitized()

    async def switch_wallet(self, wallet_id: str) -> None:
        """Raises: NotFound"""
        async with self._lock:
            self._find_wallet(wallet_id)
            self._set_active(wallet_id)
            self._notify_account_changed()

    async def rename_wallet(self, wallet_id: str, name: str) -> None:
        async with self._lock:
            self._require_unlocked()
            wallet = self._find_wallet(wallet_id)
            old_name = wallet.name
            wallet.name = name
            try:
                await self._save()
            except KeystoreError:
                wallet.name = old_name
                raise

    async def remove_wallet(self, wallet_id: str) -> None:
        """
        Remove a wallet. Removing the last one clears wallet data but keeps
        the password so the user can create a new wallet without setup.
        """
        async with self._lock:
            self._require_unlocked()
            wallet = self._find_wallet(wallet_id)
            remaining = [w for w in self._wallets if w.id != wallet_id]
            if not remaining:
                self.store.remove([WALLETS_ENVELOPE_KEY, ACTIVE_WALLET_KEY])
                self._wallets = []
                self._active_wallet_id = None
                self._write_session()
                logger.info(f"Removed last wallet {wallet_id}; wallet data cleared")
                self._notify_account_changed()
                return

            previous = self._wallets
            self._wallets = remaining
            try:
                await self._save()
            except KeystoreError:
                self._wallets = previous
                raise
            wallet.strip_secrets()
            if self._active_wallet_id == wallet_id:
                self._set_active(remaining[0].id)
                self._notify_account_changed()
            logger.info(f"Removed wallet {wallet_id}")

    async def reorder_wallets(self, wallet_ids: list[str]) -> None:
        """Raises: NotFound unless wallet_ids is a permutation of the current ids."""
        async with self._lock:
            current = {w.id: w for w in self._wallets}
            if sorted(wallet_ids) != sorted(current):
                raise NotFound("Wallet order must list every wallet exactly once")
            self._require_unlocked()
            previous = self._wallets
            self._wallets = [current[i] for i in wallet_ids]
            try:
                await self._save()
            except KeystoreError:
                self._wallets = previous
                raise

    async def clear_all(self) -> None:
        """Erase wallets, envelope, password hash, rate limit and session."""
        async with self._lock:
            self.store.remove([
                WALLETS_ENVELOPE_KEY,
                ACTIVE_WALLET_KEY,
                AUTH_HASH_KEY,
                RATE_LIMIT_KEY,
            ])
            for wallet in self._wallets:
                wallet.strip_secrets()
            self._wallets = []
            self._active_wallet_id = None
            self._password = None
            self._migrations.clear()
            self._clear_session()
            logger.info("Keystore cleared")
            self._notify_account_changed()

    # ============================================
    # Addresses
    # ============================================

    async def add_address(self, wallet_id: str, name: Optional[str] = None) -> dict:
        """
        Derive the lowest unused account index and make it active.

        Raises: Locked, NotFound, NoMnemonic, DuplicateWallet
        """
        async with self._lock:
            self._require_unlocked()
            wallet = self._find_wallet(wallet_id)
            if not wallet.can_derive_addresses or not wallet.has_mnemonic:
                raise NoMnemonic("Cannot add address to this wallet (no mnemonic)")

            used = {a.index for a in wallet.addresses}
            index = 0
            while index in used:
                index += 1

            path = path_for_index(wallet.derivation_path, index)
            keypair = await asyncio.to_thread(mnemonic_to_keypair, wallet.mnemonic, path)
            self._assert_unique([keypair.address], skip_wallet_id=wallet.id)
            if keypair.address in wallet.public_keys():
                raise DuplicateWallet(f"Address already present: {keypair.address}")

            address = AddressRecord(
                index=index,
                public_key=keypair.address,
                name=name or f"Address {len(wallet.addresses) + 1}",
                private_key=keypair.secret_b58,
            )
            previous_active = wallet.active_address_index
            wallet.addresses.append(address)
            wallet.active_address_index = len(wallet.addresses) - 1
            try:
                await self._save()
            except KeystoreError:
                wallet.addresses.pop()
                wallet.active_address_index = previous_active
                raise
            logger.info(f"Added address {index} to wallet {wallet.id}")
            if wallet.id == self._active_wallet_id:
                self._notify_account_changed()
            return address.to_dict(include_secrets=False)

    async def remove_address(self, wallet_id: str, index: int) -> None:
        """Raises: NotFound, LastAddress"""
        async with self._lock:
            wallet = self._find_wallet(wallet_id)
            address = self._find_address(wallet, index)
            if len(wallet.addresses) <= 1:
                raise LastAddress("Cannot remove the last address")
            self._require_unlocked()

            previous = (list(wallet.addresses), wallet.active_address_index)
            active = wallet.active_address
            wallet.addresses = [a for a in wallet.addresses if a.index != index]
            if active is not None and active is not address:
                wallet.active_address_index = wallet.addresses.index(active)
            wallet.clamp_active()
            try:
                await self._save()
            except KeystoreError:
                wallet.addresses, wallet.active_address_index = previous
                raise
            if active is address and wallet.id == self._active_wallet_id:
                self._notify_account_changed()

    async def switch_address(self, wallet_id: str, index: int) -> None:
        """Raises: NotFound"""
        async with self._lock:
            wallet = self._find_wallet(wallet_id)
            address = self._find_address(wallet, index)
            self._require_unlocked()
            previous = wallet.active_address_index
            wallet.active_address_index = wallet.addresses.index(address)
            try:
                await self._save()
            except KeystoreError:
                wallet.active_address_index = previous
                raise
            if wallet.id == self._active_wallet_id:
                self._notify_account_changed()

    async def rename_address(self, wallet_id: str, index: int, name: str) -> None:
        """Raises: NotFound"""
        async with self._lock:
            wallet = self._find_wallet(wallet_id)
            address = self._find_address(wallet, index)
            self._require_unlocked()
            old_name = address.name
            address.name = name
            try:
                await self._save()
            except KeystoreError:
                address.name = old_name
                raise

    # ============================================
    # Views and secrets
    # ============================================

    def _sanitized(self) -> dict:
        return {
            "wallets": [w.sanitized() for w in self._wallets],
            "activeWalletId": self._active_wallet_id,
            "isLocked": self.locked,
        }

    async def sanitized(self) -> dict:
        """Public view of the keystore: no mnemonics, no private keys."""
        async with self._lock:
            return self._sanitized()

    async def get_mnemonic_for(self, wallet_id: str) -> str:
        """Raises: Locked, NotFound, NoMnemonic"""
        async with self._lock:
            self._require_unlocked()
            wallet = self._find_wallet(wallet_id)
            if not wallet.exposes_mnemonic or not wallet.has_mnemonic:
                raise NoMnemonic("This wallet has no recovery phrase")
            return wallet.mnemonic

    async def get_keypair(self, wallet_id: Optional[str] = None, index: Optional[int] = None) -> Keypair:
        """
        Signing keypair for an address (defaults: active wallet, active address).

        Raises: Locked, NotFound, NoMnemonic (hardware wallets sign on the device)
        """
        async with self._lock:
            self._require_unlocked()
            if wallet_id is None:
                wallet = self.active_wallet
                if wallet is None:
                    raise NotFound("No active wallet")
            else:
                wallet = self._find_wallet(wallet_id)
            if not wallet.can_sign_locally:
                raise NoMnemonic("Hardware wallets sign on the device")

            address = wallet.active_address if index is None else self._find_address(wallet, index)
            if address is None:
                raise NotFound(f"Wallet {wallet.id} has no addresses")

            if address.private_key:
                secret = b58decode(address.private_key)
                if len(secret) == 64:
                    return Keypair(secret_key=secret)
            if not wallet.has_mnemonic:
                raise NoMnemonic("No key material for this address")
            path = path_for_index(wallet.derivation_path, address.index)
            return await asyncio.to_thread(mnemonic_to_keypair, wallet.mnemonic, path)

    # ============================================
    # Network selection
    # ============================================

    async def set_network(self, name: str) -> None:
        """Persist the selected network and notify subscribers."""
        async with self._lock:
            self.store.set(NETWORK_NAME_KEY, name)
            self.notify({"type": EVENT_NETWORK_CHANGED, "network": name})
