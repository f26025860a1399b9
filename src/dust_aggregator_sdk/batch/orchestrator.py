"""Batch orchestration for the Dust Aggregator.

Runs one deposit per dust item followed by a single settlement, so the fixed
network fee is paid once for the whole batch:

    IDLE -> DEPOSITING -> SETTLING -> COMPLETE
                 |            |
                 v            v
              ABORTED   PARTIALLY_FAILED

- A failed deposit never aborts the batch. It is recorded as ``Failed`` with
  its error and the next item is started.
- Deposits from one account run strictly in order; items whose chains map to
  different signer accounts run concurrently.
- Progress reaches 50 once every deposit has an outcome and 100 only when
  settlement succeeds. It never decreases within a run.
- Settlement and swap failures are returned as ``Failed`` outcomes; the caller
  decides whether to retry.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..aggregator.errors import (
    AggregatorError,
    BatchStateError,
    ConfigurationError,
    SigningError,
)
from ..aggregator.normalizer import normalize_readings
from ..aggregator.signing import InvocationSigner
from ..aggregator.types import (
    PENDING,
    BalanceReading,
    DustItem,
    Failed,
    Outcome,
    Pending,
    Succeeded,
)
from ..aggregator.utils import total_value
from ..client.aggregator_client import DustAggregatorClient
from ..client.rpc import signer_address
from ..config import AggregatorConfig, ResolvedAggregatorConfig, resolve_config
from .registry import SignerRegistry

logger = logging.getLogger(__name__)

# Share of the progress bar covered by deposits
DEPOSIT_PROGRESS = 50


class BatchPhase(Enum):
    """Phases of a batch run."""

    IDLE = "idle"
    DEPOSITING = "depositing"
    SETTLING = "settling"
    COMPLETE = "complete"
    PARTIALLY_FAILED = "partially_failed"
    """Settlement failed; deposits are kept and settlement can be retried."""

    ABORTED = "aborted"
    """Cancelled, interrupted, or settlement declined by the policy.

    Pending deposits can be resumed with ``retry_failed_deposits``.
    """


@dataclass(frozen=True)
class BatchState:
    """Snapshot of a batch run.

    ``outcomes[i]`` is the deposit outcome of ``items[i]``.
    """

    items: Tuple[DustItem, ...] = ()
    outcomes: Tuple[Outcome, ...] = ()
    settlement: Outcome = PENDING
    progress: int = 0
    phase: BatchPhase = BatchPhase.IDLE

    @property
    def completed_count(self) -> int:
        """Number of deposits with a terminal outcome."""
        return sum(1 for outcome in self.outcomes if not isinstance(outcome, Pending))

    @property
    def deposits_done(self) -> bool:
        return self.completed_count == len(self.items)

    @property
    def is_terminal(self) -> bool:
        if self.phase in (BatchPhase.COMPLETE, BatchPhase.ABORTED):
            return True
        return self.deposits_done and not isinstance(self.settlement, Pending)

    @property
    def failed_items(self) -> List[Tuple[DustItem, Failed]]:
        """Items whose deposit failed, with the failure."""
        return [
            (item, outcome)
            for item, outcome in zip(self.items, self.outcomes)
            if isinstance(outcome, Failed)
        ]

    @property
    def succeeded_items(self) -> List[DustItem]:
        return [
            item
            for item, outcome in zip(self.items, self.outcomes)
            if isinstance(outcome, Succeeded)
        ]

    @property
    def deposited_minor_units(self) -> int:
        """Total value of the successful deposits in minor units."""
        return sum(item.minor_units for item in self.succeeded_items)

    @property
    def total_value(self) -> Decimal:
        """USD value of every item in the batch, deposited or not."""
        return total_value(self.items)

    def outcome_for(self, item: DustItem) -> Outcome:
        """Deposit outcome of the first occurrence of ``item``."""
        for candidate, outcome in zip(self.items, self.outcomes):
            if candidate == item:
                return outcome
        raise KeyError(item)


SettlementPolicy = Callable[[BatchState], bool]
"""Decides, once deposits are done, whether settlement is submitted."""


def always_settle(state: BatchState) -> bool:
    """Settle unconditionally, even if no deposit succeeded."""
    return True


def settle_if_any_deposit_succeeded(state: BatchState) -> bool:
    """Settle only if at least one deposit succeeded (or the batch is empty)."""
    return not state.items or bool(state.succeeded_items)


BatchListener = Callable[[BatchState], None]


class BatchOrchestrator:
    """Sequences deposits and settlement for a batch of dust items.

    Example:
        ```python
        registry = SignerRegistry(default=LocalAccountSigner(private_key))
        orchestrator = BatchOrchestrator(config, registry)

        items = orchestrator.normalize(readings)
        state = await orchestrator.run_batch(items)
        for item, failure in state.failed_items:
            print(item.asset_id, failure.reason)

        if state.phase is BatchPhase.COMPLETE:
            outcome = await orchestrator.swap_settled("XLM")
        ```
    """

    def __init__(
        self,
        config: Union[AggregatorConfig, ResolvedAggregatorConfig],
        signers: SignerRegistry,
        client: Optional[DustAggregatorClient] = None,
        settlement_policy: SettlementPolicy = always_settle,
        listeners: Sequence[BatchListener] = (),
    ):
        """Initialize the orchestrator.

        Args:
            config: Aggregator configuration
            signers: Signer capabilities; the default signer owns the
                settlement account
            client: Optional contract client (built from the config otherwise)
            settlement_policy: Whether to settle once deposits are done
            listeners: Called with every new BatchState

        Raises:
            ConfigurationError: If the configuration is malformed or no
                settlement signer is registered
        """
        self._config = resolve_config(config)
        if signers.default is None:
            raise ConfigurationError("A default signer for the settlement account is required")
        self._signers = signers
        self._client = client or DustAggregatorClient(self._config)
        self._settlement_policy = settlement_policy
        self._listeners: List[BatchListener] = list(listeners)
        self._state = BatchState()
        self._cancel_requested = False

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def client(self) -> DustAggregatorClient:
        return self._client

    def add_listener(self, listener: BatchListener) -> None:
        self._listeners.append(listener)

    def normalize(self, readings: Iterable[BalanceReading]) -> List[DustItem]:
        """Normalize balance readings with the configured price table.

        Raises:
            UnsupportedAssetError: On the first reading without a multiplier
        """
        return normalize_readings(readings, self._config.price_table)

    def cancel(self) -> None:
        """Stop starting new deposits; the one in flight runs to its outcome."""
        self._cancel_requested = True

    def _publish(self, state: BatchState) -> None:
        self._state = state
        for listener in self._listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Batch listener %r failed", listener)

    def _transition(self, **changes) -> BatchState:
        if "progress" in changes:
            changes["progress"] = max(changes["progress"], self._state.progress)
        self._publish(replace(self._state, **changes))
        return self._state

    def _ensure_idle(self) -> None:
        if self._state.phase in (BatchPhase.DEPOSITING, BatchPhase.SETTLING):
            raise BatchStateError(f"Batch is already {self._state.phase.value}")

    def _abandon(self) -> None:
        """Leave a run interrupted mid-phase as ABORTED so it can be resumed."""
        if self._state.phase in (BatchPhase.DEPOSITING, BatchPhase.SETTLING):
            logger.warning(
                "Batch interrupted while %s; marking it aborted", self._state.phase.value
            )
            self._transition(phase=BatchPhase.ABORTED)

    async def run_batch(self, items: Iterable[DustItem]) -> BatchState:
        """Deposit every item, then settle the batch.

        If the run is interrupted (task cancelled, policy raised), the batch
        is left ABORTED and the exception propagates.

        Args:
            items: Normalized dust items

        Returns:
            The final BatchState
        """
        self._ensure_idle()
        self._cancel_requested = False

        items = tuple(items)
        logger.info(
            "Starting batch of %d items (%s USD)", len(items), total_value(items)
        )
        self._publish(
            BatchState(
                items=items,
                outcomes=(PENDING,) * len(items),
                phase=BatchPhase.DEPOSITING,
            )
        )

        try:
            await self._deposit(range(len(items)))

            if self._cancel_requested:
                logger.info(
                    "Batch cancelled after %d of %d deposits",
                    self._state.completed_count,
                    len(items),
                )
                return self._transition(phase=BatchPhase.ABORTED)

            if not self._settlement_policy(self._state):
                logger.warning("Settlement declined by policy; batch aborted")
                return self._transition(phase=BatchPhase.ABORTED)

            return await self._settle()
        except BaseException:
            self._abandon()
            raise

    async def retry_failed_deposits(self) -> BatchState:
        """Re-submit failed deposits and start those a cancel left pending.

        Succeeded deposits are left untouched. Nothing is retried implicitly;
        call this before (re-)settling.

        Raises:
            BatchStateError: If the batch has not stopped short of settlement
        """
        phase = self._state.phase
        if phase not in (BatchPhase.PARTIALLY_FAILED, BatchPhase.ABORTED):
            raise BatchStateError(f"Cannot retry deposits from {phase.value}")

        unfinished = [
            index
            for index, outcome in enumerate(self._state.outcomes)
            if not isinstance(outcome, Succeeded)
        ]
        logger.info("Retrying %d unfinished deposits", len(unfinished))

        self._cancel_requested = False
        self._transition(phase=BatchPhase.DEPOSITING)
        try:
            await self._deposit(unfinished)
        except BaseException:
            self._abandon()
            raise
        return self._transition(phase=phase)

    async def retry_settlement(self) -> BatchState:
        """Submit settlement again without re-submitting deposits.

        Also settles a batch the settlement policy declined.

        Raises:
            BatchStateError: If the batch is not waiting on settlement, or a
                cancel left deposits pending
        """
        phase = self._state.phase
        if phase not in (BatchPhase.PARTIALLY_FAILED, BatchPhase.ABORTED):
            raise BatchStateError(f"Cannot settle from {phase.value}")
        if not self._state.deposits_done:
            raise BatchStateError(
                f"Cannot settle with {len(self._state.items) - self._state.completed_count} "
                "deposits pending; retry deposits first"
            )

        try:
            return await self._settle()
        except BaseException:
            self._abandon()
            raise

    async def _deposit(self, indices: Iterable[int]) -> None:
        # One FIFO queue per signing account
        accounts: Dict[int, Any] = {}
        queues: Dict[Any, Tuple[InvocationSigner, List[int]]] = {}
        for index in indices:
            signer = self._signers.for_chain(self._state.items[index].source_chain)
            if id(signer) not in accounts:
                try:
                    accounts[id(signer)] = (await signer_address(signer)).lower()
                except SigningError:
                    # Its deposits fail one by one in their own queue
                    accounts[id(signer)] = id(signer)
            queues.setdefault(accounts[id(signer)], (signer, []))[1].append(index)

        await asyncio.gather(
            *(self._deposit_queue(signer, queue) for signer, queue in queues.values())
        )

    async def _deposit_queue(self, signer: InvocationSigner, indices: List[int]) -> None:
        for index in indices:
            if self._cancel_requested:
                return

            item = self._state.items[index]
            try:
                result = await self._client.deposit_item(signer, item)
                outcome: Outcome = Succeeded(value=result.value, handle=result.handle)
            except AggregatorError as e:
                logger.warning(
                    "Deposit of %s %s from %s failed: %s",
                    item.source_chain,
                    item.asset_id,
                    item.owner_address,
                    e,
                )
                outcome = Failed(e.with_item(item))
            self._record_deposit(index, outcome)

    def _record_deposit(self, index: int, outcome: Outcome) -> None:
        outcomes = list(self._state.outcomes)
        outcomes[index] = outcome
        completed = sum(1 for o in outcomes if not isinstance(o, Pending))
        self._transition(
            outcomes=tuple(outcomes),
            progress=completed * DEPOSIT_PROGRESS // len(outcomes),
        )

    async def _settle(self) -> BatchState:
        self._transition(phase=BatchPhase.SETTLING, settlement=PENDING)

        try:
            result = await self._client.batch_process(self._signers.default)
        except AggregatorError as e:
            logger.error("Batch settlement failed: %s", e)
            return self._transition(
                settlement=Failed(e), phase=BatchPhase.PARTIALLY_FAILED
            )

        logger.info(
            "Batch settled (%d deposited, %d failed): %s",
            len(self._state.succeeded_items),
            len(self._state.failed_items),
            result.handle,
        )
        return self._transition(
            settlement=Succeeded(value=result.value, handle=result.handle),
            progress=100,
            phase=BatchPhase.COMPLETE,
        )

    async def swap(
        self,
        to_asset: str,
        amount: Optional[int] = None,
        from_asset: Optional[str] = None,
    ) -> Outcome:
        """Swap aggregated value into a target asset on the settlement chain.

        A single invocation outside the batch state machine.

        Args:
            to_asset: Target asset
            amount: Amount in minor units; None swaps the whole balance
            from_asset: Asset swapped from (default: the aggregate asset)

        Returns:
            Succeeded with the amount received, or Failed
        """
        signer = self._signers.default
        try:
            owner = await signer_address(signer)
            request = self._client.build_request(
                "swap",
                [
                    owner,
                    self._config.settlement_chain,
                    from_asset or self._config.aggregate_asset,
                    to_asset,
                    amount,
                ],
            )
            result = await self._client.invoke(request, signer)
        except AggregatorError as e:
            logger.error("Swap to %s failed: %s", to_asset, e)
            return Failed(e)

        logger.info("Swapped into %s: received %s", to_asset, result.value)
        return Succeeded(value=result.value, handle=result.handle)

    async def swap_settled(self, to_asset: str) -> Outcome:
        """Swap the value deposited by the completed batch into ``to_asset``.

        Raises:
            BatchStateError: If the batch is not complete
        """
        if self._state.phase is not BatchPhase.COMPLETE:
            raise BatchStateError(
                f"Batch must be complete to swap, not {self._state.phase.value}"
            )
        # Nothing deposited is sent as void, swapping the whole balance
        return await self.swap(to_asset, amount=self._state.deposited_minor_units or None)
