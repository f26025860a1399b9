"""Client modules for the Dust Aggregator SDK."""

from .rpc import RpcSubmitter, build_envelope
from .aggregator_client import DustAggregatorClient, InvocationResult

__all__ = [
    "RpcSubmitter",
    "build_envelope",
    "DustAggregatorClient",
    "InvocationResult",
]
