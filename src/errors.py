"""
Error taxonomy for the keystore and signing engine.

Every error raised on purpose derives from KeystoreError. Input validation
errors also derive from ValueError so callers that only know about the
wallet layer's ValueError contract keep working.
"""

import re
from typing import Optional


class KeystoreError(Exception):
    """Base class for all keystore and signing errors."""


# ============================================
# Input Validation
# ============================================

class ValidationError(KeystoreError, ValueError):
    """Bad input from the caller."""


class InvalidMnemonic(ValidationError):
    pass


class InvalidDerivationPath(ValidationError):
    pass


class InvalidAddress(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class WeakPassword(ValidationError):
    pass


# ============================================
# Auth State
# ============================================

class NoPasswordSet(KeystoreError):
    pass


class BadPassword(KeystoreError):
    pass


class LockedOut(KeystoreError):
    """Too many failed unlock attempts."""

    def __init__(self, remaining: float):
        self.remaining = max(0.0, remaining)
        minutes = int(-(-self.remaining // 60))
        super().__init__(f"Too many failed attempts. Account locked for {minutes} minutes.")


class Locked(KeystoreError):
    def __init__(self, message: str = "Wallet is locked. Unlock it first."):
        super().__init__(message)


class SessionExpired(KeystoreError):
    pass


# ============================================
# Keystore Invariants
# ============================================

class DuplicateWallet(KeystoreError):
    pass


class LastAddress(KeystoreError):
    pass


class NotFound(KeystoreError, LookupError):
    pass


class NoMnemonic(KeystoreError):
    pass


# ============================================
# Envelope
# ============================================

class DecryptionFailed(KeystoreError):
    def __init__(self, message: str = "Wrong password or corrupted data"):
        super().__init__(message)


class UnsupportedEnvelopeVersion(KeystoreError):
    pass


class EmptyWriteBlocked(KeystoreError):
    pass


# ============================================
# Derivation
# ============================================

class InvalidDerivation(KeystoreError):
    pass


class AtaBumpNotFound(KeystoreError):
    pass


# ============================================
# Network / RPC
# ============================================

class RpcError(KeystoreError):
    """Base for RPC transport and protocol errors."""


class RpcTimeout(RpcError):
    pass


class RpcHttpError(RpcError):
    def __init__(self, status: int, message: str = ""):
        self.status = status
        super().__init__(message or f"HTTP {status}")


class RpcRpcError(RpcError):
    def __init__(self, code: Optional[int], message: str, data: Optional[dict] = None):
        self.code = code
        self.data = data
        super().__init__(f"RPC error {code}: {message}")


class RateLimited(RpcError):
    pass


class SimulationFailed(KeystoreError):
    def __init__(self, reason: str, logs: Optional[list] = None):
        self.reason = reason
        self.logs = logs or []
        super().__init__(f"Simulation failed: {reason}")


# ============================================
# Build / Send
# ============================================

class BlockhashUnavailable(KeystoreError):
    pass


class AccountLoadedTwice(KeystoreError):
    pass


class NoWrappedAccount(KeystoreError):
    pass


# ============================================
# User-facing messages
# ============================================

# Checked in order; first match wins.
ERROR_MAPPINGS = [
    (re.compile(r"fetch failed|network error|connection", re.I),
     "Network connection failed. Please check your internet connection."),
    (re.compile(r"timeout|timed out", re.I), "Request timed out. Please try again."),
    (re.compile(r"rate limit|429|too many requests", re.I),
     "Too many requests. Please wait a moment and try again."),
    (re.compile(r"too many failed attempts", re.I),
     "Too many failed attempts. Please wait before trying again."),
    (re.compile(r"blockhash not found|expired", re.I), "Transaction expired. Please try again."),
    (re.compile(r"insufficient.*(balance|funds)", re.I), "Insufficient balance for this transaction."),
    (re.compile(r"invalid.*signature", re.I), "Transaction signing failed. Please try again."),
    (re.compile(r"simulation failed", re.I),
     "Transaction simulation failed. Please check the details and try again."),
    (re.compile(r"account.*not found|account does not exist", re.I),
     "Account not found. Please verify the address."),
    (re.compile(r"invalid.*address|invalid.*public.*key", re.I), "Invalid wallet address format."),
    (re.compile(r"invalid.*(mnemonic|seed|recovery phrase)", re.I), "Invalid recovery phrase."),
    (re.compile(r"wrong password|incorrect password", re.I), "Incorrect password."),
    (re.compile(r"wallet.*locked|unlock", re.I), "Please unlock your wallet first."),
    (re.compile(r"already been imported|already exists", re.I), "This wallet has already been imported."),
    (re.compile(r"rpc.*error|jsonrpc", re.I), "Blockchain network error. Please try again."),
    (re.compile(r"internal.*error|500|502|503|504", re.I),
     "Service temporarily unavailable. Please try again later."),
]

DEFAULT_USER_MESSAGE = "An unexpected error occurred. Please try again."


def get_user_friendly_error(error, fallback: str = DEFAULT_USER_MESSAGE) -> str:
    """
    Map an exception (or message) to text that is safe to show a user.

    Raw messages are never returned since they may carry key material.
    """
    if not error:
        return fallback
    if isinstance(error, SimulationFailed):
        return error.reason
    if isinstance(error, LockedOut):
        return str(error)
    message = error if isinstance(error, str) else str(error)
    for pattern, friendly in ERROR_MAPPINGS:
        if pattern.search(message):
            return friendly
    return fallback
