"""
Signing Service - Signs and submits transactions for the unlocked keystore.

Flow for a wallet-initiated transfer:
1. TransferBuilder produces an unsigned legacy Message
2. Service fetches the signing keypair from the unlocked keystore
3. Message is signed, serialized and simulated (unless skipped)
4. Simulation errors abort with SimulationFailed; otherwise it is submitted

Secrets never leave this module: callers get signatures and base64
transactions, never key material. Hardware wallets raise NoMnemonic here
since their signatures come from the device.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from errors import InvalidAddress, RpcTimeout, SimulationFailed
from svm.codec import SIGNATURE_SIZE, b58encode
from svm.ed25519 import sign, verify
from svm.message import (
    Message,
    build_transfer_message,
    message_signers,
    parse_transaction,
    serialize_transaction,
)
from wallet.keystore import Keystore

from .rpc import DEFAULT_COMMITMENT, RpcClient
from .transfers import (
    SELF_TRANSFER_NOOP,
    CompressedAsset,
    TransferBuilder,
    check_address,
    check_amount,
)

logger = logging.getLogger(__name__)


# Number of extra sendTransaction attempts after a timeout
SEND_TIMEOUT_RETRIES = 1


# ============================================
# Simulation
# ============================================

@dataclass
class SimulationResult:
    """Outcome of simulateTransaction."""
    err: Any = None
    logs: list[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.err is None

    @classmethod
    def from_rpc(cls, value: dict) -> "SimulationResult":
        return cls(
            err=value.get("err"),
            logs=list(value.get("logs") or []),
            units_consumed=value.get("unitsConsumed"),
        )


def describe_simulation_error(err: Any) -> str:
    """Turn a simulation `err` value into a sentence for the user."""
    if err is None:
        return ""
    if err == "InsufficientFunds" or err == "InsufficientFundsForFee":
        return "Insufficient funds for this transaction"
    if isinstance(err, dict) and "InstructionError" in err:
        detail = err["InstructionError"]
        if isinstance(detail, (list, tuple)) and len(detail) == 2:
            index, reason = detail
            if isinstance(reason, dict) and "Custom" in reason:
                return f"Instruction {index} failed with custom error {reason['Custom']}"
            return f"Instruction {index} failed: {reason}"
    if isinstance(err, str):
        return err
    return str(err)


def _to_wire(tx: bytes | str) -> str:
    """Base64 wire form of a serialized transaction."""
    if isinstance(tx, (bytes, bytearray)):
        return base64.b64encode(bytes(tx)).decode('ascii')
    return tx


# ============================================
# Service
# ============================================

class SigningService:
    """
    Signer API over a Keystore and an RpcClient.

    Every signing operation uses the active wallet's active address unless
    a wallet id and address index are given, and requires the keystore to
    be unlocked (Locked otherwise).
    """

    def __init__(self, keystore: Keystore, rpc: RpcClient, builder: Optional[TransferBuilder] = None):
        self.keystore = keystore
        self.rpc = rpc
        self.builder = builder or TransferBuilder(rpc)

    # ============================================
    # Simulate / Send
    # ============================================

    async def simulate(self, tx: bytes | str) -> SimulationResult:
        """Simulate a signed transaction (bytes or base64)."""
        value = await self.rpc.simulate_transaction(
            _to_wire(tx),
            sig_verify=False,
            replace_recent_blockhash=False,
        )
        result = SimulationResult.from_rpc(value)
        if not result.success:
            logger.warning(f"Simulation failed: {result.err}")
        return result

    async def send(self, tx: bytes | str, skip_preflight: bool = False) -> str:
        """
        Submit a signed transaction and return its signature.

        A timeout is retried once; the same signed bytes are resent, so a
        duplicate landing is deduplicated by the cluster.
        """
        wire = _to_wire(tx)
        for attempt in range(SEND_TIMEOUT_RETRIES + 1):
            try:
                signature = await self.rpc.send_transaction(
                    wire,
                    skip_preflight=skip_preflight,
                    preflight_commitment=DEFAULT_COMMITMENT,
                )
                logger.info(f"Transaction submitted: {signature}")
                return signature
            except RpcTimeout:
                if attempt >= SEND_TIMEOUT_RETRIES:
                    raise
                logger.warning("sendTransaction timed out, retrying once")

    # ============================================
    # Signing
    # ============================================

    async def sign_message(self, message: bytes, wallet_id: Optional[str] = None,
                           index: Optional[int] = None) -> str:
        """Sign arbitrary bytes. Returns the base58 signature."""
        keypair = await self.keystore.get_keypair(wallet_id, index)
        return b58encode(sign(bytes(message), keypair.secret_key))

    async def sign_transaction(self, tx_b64: str, wallet_id: Optional[str] = None,
                               index: Optional[int] = None) -> str:
        """
        Add our signature to an externally built transaction.

        The signature goes into the slot matching our position among the
        message's required signers; other slots are kept (or zero-filled).
        A slot that already holds a valid signature of ours is left as is.
        Returns the base64 transaction.

        Raises: InvalidAddress if the transaction is malformed or does not
            require our signature
        """
        try:
            raw = base64.b64decode(tx_b64, validate=True)
            signatures, message_bytes = parse_transaction(raw)
            signers = message_signers(message_bytes)
        except (binascii.Error, ValueError, IndexError) as e:
            raise InvalidAddress(f"Malformed transaction: {e}") from e

        keypair = await self.keystore.get_keypair(wallet_id, index)
        if keypair.address not in signers:
            raise InvalidAddress(f"Transaction does not require a signature from {keypair.address}")

        slots = list(signatures) + [bytes(SIGNATURE_SIZE)] * (len(signers) - len(signatures))
        slots = slots[:len(signers)]
        position = signers.index(keypair.address)
        if verify(message_bytes, slots[position], keypair.public_key):
            logger.info(f"Transaction already carries a signature from {keypair.address}")
        else:
            slots[position] = sign(message_bytes, keypair.secret_key)
            logger.info(f"Signed external transaction for {keypair.address}")
        return base64.b64encode(serialize_transaction(slots, message_bytes)).decode('ascii')

    async def sign_message_object(self, message: Message, wallet_id: Optional[str] = None,
                                  index: Optional[int] = None) -> bytes:
        """Sign a Message we built; we must be its only required signer."""
        keypair = await self.keystore.get_keypair(wallet_id, index)
        if message.signers != [keypair.address]:
            raise InvalidAddress(f"Message signers {message.signers} do not match {keypair.address}")
        raw = message.serialize()
        return serialize_transaction([sign(raw, keypair.secret_key)], raw)

    async def sign_and_send(self, message: Message, simulate: bool = True,
                            wallet_id: Optional[str] = None, index: Optional[int] = None) -> dict:
        """
        Sign, optionally simulate, and submit.

        Raises: SimulationFailed when the simulation reports an error
        """
        tx = await self.sign_message_object(message, wallet_id, index)
        if simulate:
            result = await self.simulate(tx)
            if not result.success:
                raise SimulationFailed(describe_simulation_error(result.err), result.logs)
        signature = await self.send(tx, skip_preflight=simulate)
        return {"status": "submitted", "signature": signature}

    # ============================================
    # Transfers
    # ============================================

    async def _signer_address(self) -> str:
        keypair = await self.keystore.get_keypair()
        return keypair.address

    async def send_native(self, to_pubkey: str, lamports: int, priority_fee: int = 0,
                          simulate: bool = True) -> dict:
        check_address(to_pubkey, "recipient")
        check_amount(lamports, "lamports")
        sender = await self._signer_address()
        blockhash, _ = await self.rpc.get_latest_blockhash()
        message = build_transfer_message(sender, to_pubkey, lamports, blockhash, priority_fee)
        logger.info(f"Sending {lamports} lamports to {to_pubkey}")
        return await self.sign_and_send(message, simulate=simulate)

    async def send_token(self, to_pubkey: str, mint: str, amount: int, priority_fee: int = 0,
                         simulate: bool = True) -> dict:
        """Token transfer; a transfer to oneself returns a noop result."""
        sender = await self._signer_address()
        built = await self.builder.token_transfer(sender, to_pubkey, mint, amount,
                                                  priority_fee=priority_fee)
        if built == SELF_TRANSFER_NOOP:
            return {"status": "noop", "message": SELF_TRANSFER_NOOP}
        return await self.sign_and_send(built, simulate=simulate)

    async def wrap(self, lamports: int, priority_fee: int = 0) -> dict:
        owner = await self._signer_address()
        message = await self.builder.wrap(owner, lamports, priority_fee=priority_fee)
        return await self.sign_and_send(message)

    async def unwrap(self) -> dict:
        owner = await self._signer_address()
        message = await self.builder.unwrap(owner)
        return await self.sign_and_send(message)

    async def send_compressed_nft(self, new_owner: str, asset: CompressedAsset) -> dict:
        owner = await self._signer_address()
        message = await self.builder.compressed_nft_transfer(owner, new_owner, asset)
        return await self.sign_and_send(message)
