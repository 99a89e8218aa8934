"""
Unlock Rate Limiting - Progressive delays and lockout for failed unlocks.

The record lives in the persistent store next to the envelope and carries
an HMAC-SHA256 tag keyed by a random per-install secret. A record whose
tag does not verify is discarded: tampering resets the counter and never
locks the user out.
"""

import hashlib
import hmac
import logging
import platform
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

from models.store import KeyValueStore, RATE_LIMIT_KEY, RATE_LIMIT_SECRET_KEY

logger = logging.getLogger(__name__)


# ============================================
# Policy
# ============================================

LOCKOUT_THRESHOLD = 10
LOCKOUT_DURATION = 60 * 60  # seconds

# (minimum attempts, delay seconds), checked from the top. The lockout
# threshold is checked first, so the 30s tier only applies when the
# threshold is raised above 10.
DELAY_TIERS = (
    (10, 30.0),
    (5, 5.0),
    (3, 1.0),
)


def delay_for(attempts: int) -> float:
    """Delay imposed before the next attempt after `attempts` failures."""
    for minimum, delay in DELAY_TIERS:
        if attempts >= minimum:
            return delay
    return 0.0


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class RateLimitState:
    """Persisted failure record. Times are epoch seconds."""
    attempts: int = 0
    last_attempt_at: float = 0.0
    delay_until: Optional[float] = None
    lockout_until: Optional[float] = None
    checksum: str = ""

    def to_dict(self) -> dict:
        d = {
            "attempts": self.attempts,
            "lastAttemptAt": self.last_attempt_at,
            "checksum": self.checksum,
        }
        if self.delay_until is not None:
            d["delayUntil"] = self.delay_until
        if self.lockout_until is not None:
            d["lockoutUntil"] = self.lockout_until
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "RateLimitState":
        return cls(
            attempts=int(data.get("attempts", 0)),
            last_attempt_at=float(data.get("lastAttemptAt", 0)),
            delay_until=_optional_float(data.get("delayUntil")),
            lockout_until=_optional_float(data.get("lockoutUntil")),
            checksum=str(data.get("checksum", "")),
        )


class UnlockRateLimiter:
    """
    Tracks failed unlock attempts in a KeyValueStore.

    Not thread-safe on its own; the keystore calls it while holding its
    operation lock.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float] = time.time,
        lockout_threshold: int = LOCKOUT_THRESHOLD,
        lockout_duration: float = LOCKOUT_DURATION,
        device_id: Optional[str] = None,
    ):
        self.store = store
        self.clock = clock
        self.lockout_threshold = lockout_threshold
        self.lockout_duration = lockout_duration
        # Advisory only: a changed hostname resets the record, never locks
        self.device_id = device_id if device_id is not None else platform.node()

    # ----------------------------------------
    # Integrity tag
    # ----------------------------------------

    def _secret(self) -> bytes:
        secret = self.store.get(RATE_LIMIT_SECRET_KEY)
        if not secret:
            secret = secrets.token_hex(32)
            self.store.set(RATE_LIMIT_SECRET_KEY, secret)
        return bytes.fromhex(secret)

    def _checksum(self, state: RateLimitState) -> str:
        message = (
            f"{self.device_id}:{state.attempts}:{state.last_attempt_at}:"
            f"{state.lockout_until or 0}:{state.delay_until or 0}"
        )
        return hmac.new(self._secret(), message.encode('utf-8'), hashlib.sha256).hexdigest()

    # ----------------------------------------
    # Persistence
    # ----------------------------------------

    def load(self) -> RateLimitState:
        """Read the record; a missing, malformed or tampered record is a fresh one."""
        data = self.store.get(RATE_LIMIT_KEY)
        if not data:
            return RateLimitState()
        try:
            state = RateLimitState.from_dict(data)
        except (TypeError, ValueError, AttributeError):
            logger.warning("Discarding malformed rate limit record")
            self.store.remove(RATE_LIMIT_KEY)
            return RateLimitState()
        try:
            expected = bytes.fromhex(self._checksum(state))
            actual = bytes.fromhex(state.checksum)
        except ValueError:
            actual, expected = b"", b"\x00"
        if not hmac.compare_digest(expected, actual):
            logger.warning("Rate limit record failed integrity check, resetting")
            self.store.remove(RATE_LIMIT_KEY)
            return RateLimitState()
        return state

    def _save(self, state: RateLimitState) -> None:
        state.checksum = self._checksum(state)
        self.store.set(RATE_LIMIT_KEY, state.to_dict())

    # ----------------------------------------
    # Public API
    # ----------------------------------------

    def check(self) -> RateLimitState:
        """
        Current record with an expired lockout cleared.

        Callers inspect `lockout_until` and `delay_until` against the clock.
        """
        state = self.load()
        now = self.clock()
        if state.lockout_until is not None and now >= state.lockout_until:
            logger.info("Unlock lockout expired")
            self.reset()
            return RateLimitState()
        return state

    def lockout_remaining(self, state: RateLimitState) -> float:
        if state.lockout_until is None:
            return 0.0
        return max(0.0, state.lockout_until - self.clock())

    def delay_remaining(self, state: RateLimitState) -> float:
        if state.delay_until is None:
            return 0.0
        return max(0.0, state.delay_until - self.clock())

    def record_failure(self) -> RateLimitState:
        """Count one failed attempt and schedule the next delay or the lockout."""
        state = self.load()
        now = float(self.clock())
        state.attempts += 1
        state.last_attempt_at = now
        state.delay_until = None
        state.lockout_until = None

        if state.attempts >= self.lockout_threshold:
            state.lockout_until = now + self.lockout_duration
            logger.warning(f"Unlock locked out after {state.attempts} failed attempts")
        else:
            delay = delay_for(state.attempts)
            if delay:
                state.delay_until = now + delay

        self._save(state)
        return state

    def reset(self) -> None:
        """Clear the record after a successful unlock."""
        self.store.remove(RATE_LIMIT_KEY)

    def remaining_attempts(self) -> int:
        return max(0, self.lockout_threshold - self.load().attempts)
