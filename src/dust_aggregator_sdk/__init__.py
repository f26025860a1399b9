"""Dust Aggregator SDK.

Collects dust balances from several chains and settles them through the
Dust Aggregator contract: one deposit per balance, then a single batch
settlement that shares the network fee.
"""

from .aggregator import *  # noqa: F401,F403
from .aggregator import __all__ as _aggregator_all
from .batch import (
    SignerRegistry,
    BatchOrchestrator,
    BatchPhase,
    BatchState,
    always_settle,
    settle_if_any_deposit_succeeded,
)
from .client import DustAggregatorClient, InvocationResult, RpcSubmitter
from .config import AggregatorConfig, ResolvedAggregatorConfig, resolve_config

__version__ = "0.1.0"

__all__ = [
    *_aggregator_all,
    # Batch
    "SignerRegistry",
    "BatchOrchestrator",
    "BatchPhase",
    "BatchState",
    "always_settle",
    "settle_if_any_deposit_succeeded",
    # Client
    "DustAggregatorClient",
    "InvocationResult",
    "RpcSubmitter",
    # Config
    "AggregatorConfig",
    "ResolvedAggregatorConfig",
    "resolve_config",
]
