"""Batch deposit and settlement orchestration."""

from .registry import SignerRegistry
from .orchestrator import (
    BatchOrchestrator,
    BatchPhase,
    BatchState,
    BatchListener,
    SettlementPolicy,
    always_settle,
    settle_if_any_deposit_succeeded,
)

__all__ = [
    "SignerRegistry",
    "BatchOrchestrator",
    "BatchPhase",
    "BatchState",
    "BatchListener",
    "SettlementPolicy",
    "always_settle",
    "settle_if_any_deposit_succeeded",
]
