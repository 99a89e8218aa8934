"""
Services package - Network-facing services for the keystore.

Contains:
- RpcClient: rate-limited JSON-RPC client
- AtaResolver: associated token account lookup and bump validation
- TransferBuilder: token, wrap/unwrap and compressed NFT messages
- SigningService: signing, simulation and submission
"""

from .rpc import RpcClient, TokenBucket, backoff_delay, reset_buckets
from .resolver import AtaResolver, ResolvedAta, classify_bump_error
from .transfers import SELF_TRANSFER_NOOP, CompressedAsset, TransferBuilder
from .signing import SigningService, SimulationResult, describe_simulation_error

__all__ = [
    "RpcClient",
    "TokenBucket",
    "backoff_delay",
    "reset_buckets",
    "AtaResolver",
    "ResolvedAta",
    "classify_bump_error",
    "SELF_TRANSFER_NOOP",
    "CompressedAsset",
    "TransferBuilder",
    "SigningService",
    "SimulationResult",
    "describe_simulation_error",
]
