"""
JSON-RPC client for SVM nodes.

- One token bucket per host: 5 requests per 1000 ms; acquire() awaits
  when the window is full.
- HTTP 429 backs off 1s * 2^(n-1) plus up to 500 ms jitter, capped at 8s,
  for up to 5 attempts.
- Every call carries an 8s deadline. Timeouts and connection errors are
  retried after 1s, up to 5 tries; sendTransaction is tried once here
  and leaves its single retry to the signer.
"""

import asyncio
import itertools
import logging
import random
import time
from collections import deque
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import aiohttp

from errors import (
    BlockhashUnavailable,
    RateLimited,
    RpcError,
    RpcHttpError,
    RpcRpcError,
    RpcTimeout,
)

logger = logging.getLogger(__name__)


# ============================================
# Policy
# ============================================

RPC_TIMEOUT = 8.0  # seconds per call

BUCKET_CAPACITY = 5
BUCKET_WINDOW = 1.0  # seconds

MAX_ATTEMPTS = 5
BACKOFF_BASE = 1.0
BACKOFF_MAX = 8.0
BACKOFF_JITTER = 0.5

NETWORK_RETRY_DELAY = 1.0  # seconds between tries after a timeout or connection error

DEFAULT_COMMITMENT = "confirmed"


def backoff_delay(attempt: int) -> float:
    """Delay after the `attempt`-th 429 (1-based), jitter included, capped."""
    delay = BACKOFF_BASE * (2 ** (attempt - 1))
    return min(BACKOFF_MAX, delay + random.uniform(0, BACKOFF_JITTER))


# ============================================
# Token Bucket
# ============================================

class TokenBucket:
    """
    Sliding-window limiter: at most `capacity` acquisitions per `window`.

    Acquisitions are serialized, so waiters are served in arrival order.
    """

    def __init__(
        self,
        capacity: int = BUCKET_CAPACITY,
        window: float = BUCKET_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.capacity = capacity
        self.window = window
        self.clock = clock
        self.sleep = sleep
        self._times: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self.clock()
                while self._times and now - self._times[0] >= self.window:
                    self._times.popleft()
                if len(self._times) < self.capacity:
                    self._times.append(now)
                    return
                await self.sleep(self._times[0] + self.window - now)

    def reset(self) -> None:
        self._times.clear()


# One bucket per host, shared by every client talking to it
_buckets: dict[str, TokenBucket] = {}


def bucket_for(url: str) -> TokenBucket:
    host = urlparse(url).netloc or url
    if host not in _buckets:
        _buckets[host] = TokenBucket()
    return _buckets[host]


def reset_buckets() -> None:
    """Forget all per-host buckets."""
    _buckets.clear()


# ============================================
# Client
# ============================================

class RpcClient:
    """
    Async JSON-RPC client.

    The transport is `_post`; tests replace it to serve canned responses.
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        url: str,
        timeout: float = RPC_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
        bucket: Optional[TokenBucket] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.bucket = bucket or bucket_for(url)
        self.sleep = sleep
        self._session = session

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, payload: dict) -> tuple[int, Optional[dict]]:
        """Send one request. Returns (HTTP status, parsed body or None)."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        async with self._session.post(self.url, json=payload) as resp:
            if resp.status != 200:
                return resp.status, None
            return resp.status, await resp.json(content_type=None)

    async def call(
        self,
        method: str,
        params: Optional[list] = None,
        network_attempts: Optional[int] = None,
    ) -> Any:
        """
        Make one JSON-RPC call and return its `result`.

        Timeouts and connection errors are retried after NETWORK_RETRY_DELAY,
        up to `network_attempts` tries (default: max_attempts).

        Raises:
            RpcTimeout: no response within the deadline on the last try
            RpcError: connection failure on the last try, or a malformed body
            RateLimited: still HTTP 429 after every attempt
            RpcHttpError: any other non-200 status
            RpcRpcError: the node returned a JSON-RPC error object
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        tries = min(network_attempts or self.max_attempts, self.max_attempts)

        for attempt in range(1, self.max_attempts + 1):
            await self.bucket.acquire()
            try:
                status, body = await asyncio.wait_for(self._post(payload), self.timeout)
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                if isinstance(e, asyncio.TimeoutError):
                    failure = RpcTimeout(f"{method} timed out")
                    logger.warning(f"RPC {method} timed out after {self.timeout}s "
                                   f"(attempt {attempt}/{tries})")
                else:
                    failure = RpcError(f"Network error calling {method}: {e}")
                    logger.warning(f"RPC {method} connection error: {e} "
                                   f"(attempt {attempt}/{tries})")
                if attempt >= tries:
                    raise failure from e
                await self.sleep(NETWORK_RETRY_DELAY)
                continue

            if status == 429:
                if attempt >= self.max_attempts:
                    break
                delay = backoff_delay(attempt)
                logger.warning(f"Rate limited on {method}, waiting {delay:.1f}s "
                               f"(attempt {attempt}/{self.max_attempts})")
                await self.sleep(delay)
                continue
            if status != 200:
                raise RpcHttpError(status, f"HTTP {status} from {method}")
            if not isinstance(body, dict):
                raise RpcError(f"Malformed response to {method}")

            error = body.get("error")
            if error:
                raise RpcRpcError(error.get("code"), error.get("message", ""), error.get("data"))
            return body.get("result")

        raise RateLimited(f"Too many requests: {method} still rate limited after {self.max_attempts} attempts")

    # ============================================
    # Methods
    # ============================================

    async def get_latest_blockhash(self, commitment: str = DEFAULT_COMMITMENT) -> tuple[str, int]:
        """Returns (blockhash, last_valid_block_height)."""
        result = await self.call("getLatestBlockhash", [{"commitment": commitment}])
        value = (result or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise BlockhashUnavailable("Node returned no blockhash")
        return blockhash, int(value.get("lastValidBlockHeight", 0))

    async def get_balance(self, pubkey: str, commitment: str = DEFAULT_COMMITMENT) -> int:
        result = await self.call("getBalance", [pubkey, {"commitment": commitment}])
        return int((result or {}).get("value", 0))

    async def get_account_info(self, address: str, encoding: str = "base64") -> Optional[dict]:
        """Account value, or None when the account does not exist."""
        result = await self.call("getAccountInfo", [address, {"encoding": encoding}])
        return (result or {}).get("value")

    async def get_token_accounts_by_owner(
        self,
        owner: str,
        mint: Optional[str] = None,
        program_id: Optional[str] = None,
        encoding: str = "jsonParsed",
    ) -> list[dict]:
        """Token accounts of `owner`, filtered by mint or by token program."""
        if (mint is None) == (program_id is None):
            raise ValueError("Pass exactly one of mint or program_id")
        filter_ = {"mint": mint} if mint else {"programId": program_id}
        result = await self.call("getTokenAccountsByOwner", [owner, filter_, {"encoding": encoding}])
        return list((result or {}).get("value") or [])

    async def get_program_accounts(
        self,
        program_id: str,
        filters: Optional[list[dict]] = None,
        encoding: str = "base64",
    ) -> list[dict]:
        config: dict = {"encoding": encoding}
        if filters:
            config["filters"] = filters
        result = await self.call("getProgramAccounts", [program_id, config])
        return list(result or [])

    async def simulate_transaction(
        self,
        tx_b64: str,
        sig_verify: bool = False,
        replace_recent_blockhash: bool = True,
        commitment: str = DEFAULT_COMMITMENT,
    ) -> dict:
        """Returns the simulation value: {err, logs, unitsConsumed, ...}."""
        config = {
            "encoding": "base64",
            "commitment": commitment,
            "sigVerify": sig_verify,
            "replaceRecentBlockhash": replace_recent_blockhash,
        }
        result = await self.call("simulateTransaction", [tx_b64, config])
        return (result or {}).get("value") or {}

    async def send_transaction(
        self,
        tx_b64: str,
        skip_preflight: bool = False,
        preflight_commitment: str = DEFAULT_COMMITMENT,
    ) -> str:
        """Submit a signed transaction. Returns its signature."""
        config = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": preflight_commitment,
        }
        return await self.call("sendTransaction", [tx_b64, config], network_attempts=1)
