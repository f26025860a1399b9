"""Tests for batch orchestration."""

import asyncio
import logging

import pytest
from eth_abi import decode

from dust_aggregator_sdk import (
    BalanceReading,
    BatchOrchestrator,
    BatchPhase,
    BatchStateError,
    ConfigurationError,
    DecodeError,
    InvocationTimeoutError,
    LocalAccountSigner,
    Pending,
    SignerRegistry,
    SigningError,
    SubmissionError,
    Succeeded,
    Failed,
    UnsupportedAssetError,
    normalize_balance,
    settle_if_any_deposit_succeeded,
)

from .conftest import (
    OTHER_ADDRESS,
    OTHER_PRIVATE_KEY,
    SOLANA_ADDRESS,
    TEST_ADDRESS,
    TEST_PRIVATE_KEY,
    deposit_args,
)


def deposit_amount(envelope):
    if envelope["operation"] != "auto_deposit":
        return None
    return deposit_args(envelope)[3]


def is_operation(name):
    return lambda envelope: envelope["operation"] == name


class BrokenSigner:
    """Signer whose wallet backend is unreachable."""

    async def get_address(self):
        raise ConnectionError("wallet offline")

    async def sign_typed_data(self, params):
        raise ConnectionError("wallet offline")


@pytest.fixture
def items():
    return [
        normalize_balance("polygon", "MATIC", value, TEST_ADDRESS)
        for value in ("0.42", "0.54", "0.13")
    ]


@pytest.fixture
def states():
    return []


@pytest.fixture
def orchestrator(config, client, signer, states):
    return BatchOrchestrator(
        config,
        SignerRegistry(default=signer),
        client=client,
        listeners=[states.append],
    )


class TestBatchRun:
    """Tests for deposit and settlement sequencing."""

    @pytest.mark.asyncio
    async def test_successful_batch(self, orchestrator, node, items, states):
        """Test that every deposit is followed by exactly one settlement."""
        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.COMPLETE
        assert state.progress == 100
        assert all(isinstance(outcome, Succeeded) for outcome in state.outcomes)
        assert isinstance(state.settlement, Succeeded)
        assert state.is_terminal
        assert state.deposited_minor_units == 109

        assert [deposit_amount(e) for e in node.operations("auto_deposit")] == [42, 54, 13]
        assert len(node.operations("batch_process")) == 1
        assert node.sent[-1]["operation"] == "batch_process"
        assert states[0].phase is BatchPhase.DEPOSITING
        assert orchestrator.state is state

    @pytest.mark.asyncio
    async def test_timed_out_deposit_does_not_abort(
        self, orchestrator, node, items, states
    ):
        """Test that a stalled deposit is recorded and the next item starts."""
        node.stall = lambda envelope: deposit_amount(envelope) == 54

        state = await orchestrator.run_batch(items)

        assert isinstance(state.outcomes[0], Succeeded)
        assert isinstance(state.outcomes[1], Failed)
        assert isinstance(state.outcomes[1].error, InvocationTimeoutError)
        assert state.outcomes[1].error.item == items[1]
        assert isinstance(state.outcomes[2], Succeeded)

        progress = []
        for snapshot in states:
            if not progress or progress[-1] != snapshot.progress:
                progress.append(snapshot.progress)
        assert progress == [0, 16, 33, 50, 100]

        assert state.phase is BatchPhase.COMPLETE
        assert len(node.operations("batch_process")) == 1

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, orchestrator, node, items, states):
        """Test that published progress is monotonic and capped by settlement."""
        node.reject = lambda envelope: deposit_amount(envelope) == 42

        await orchestrator.run_batch(items)

        progress = [snapshot.progress for snapshot in states]
        assert progress == sorted(progress)
        assert all(
            snapshot.progress <= 50
            for snapshot in states
            if snapshot.phase is not BatchPhase.COMPLETE
        )

    @pytest.mark.asyncio
    async def test_rejected_deposit_reported(self, orchestrator, node, items):
        """Test that a rejected deposit is reported with its item."""
        node.reject = lambda envelope: deposit_amount(envelope) == 54

        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.COMPLETE
        assert len(state.failed_items) == 1
        item, failure = state.failed_items[0]
        assert item == items[1]
        assert isinstance(failure.error, SubmissionError)
        assert "txInsufficientFee" in failure.reason
        assert state.succeeded_items == [items[0], items[2]]
        assert state.deposited_minor_units == 55

    @pytest.mark.asyncio
    async def test_decode_error_contained(self, orchestrator, node, items):
        """Test that a mistyped deposit result fails only that deposit."""
        node.return_values["auto_deposit"] = {"type": "u64", "value": "1"}

        state = await orchestrator.run_batch(items)

        assert all(isinstance(outcome, Failed) for outcome in state.outcomes)
        assert all(isinstance(outcome.error, DecodeError) for outcome in state.outcomes)
        # The default policy settles regardless
        assert state.phase is BatchPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_signer_error_contained(self, config, client, node, signer):
        """Test that a broken chain signer fails only its own deposits."""
        registry = SignerRegistry(default=signer, by_chain={"solana": BrokenSigner()})
        orchestrator = BatchOrchestrator(config, registry, client=client)
        items = [
            normalize_balance("polygon", "MATIC", "0.42", TEST_ADDRESS),
            normalize_balance("solana", "SOL", "0.003", SOLANA_ADDRESS),
        ]

        state = await orchestrator.run_batch(items)

        assert isinstance(state.outcomes[0], Succeeded)
        assert isinstance(state.outcomes[1], Failed)
        assert isinstance(state.outcomes[1].error, SigningError)
        assert state.phase is BatchPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_signers_run_concurrently(self, config, client, node, signer):
        """Test that each account keeps its own ordered deposit queue."""
        other = LocalAccountSigner(OTHER_PRIVATE_KEY)
        registry = SignerRegistry(default=signer, by_chain={"solana": other})
        orchestrator = BatchOrchestrator(config, registry, client=client)
        items = [
            normalize_balance("polygon", "MATIC", "0.42", TEST_ADDRESS),
            normalize_balance("solana", "SOL", "0.003", SOLANA_ADDRESS),
            normalize_balance("polygon", "MATIC", "0.13", TEST_ADDRESS),
            normalize_balance("solana", "SOL", "0.001", SOLANA_ADDRESS),
        ]

        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.COMPLETE
        assert node.overlaps == []

        by_source = {}
        for envelope in node.operations("auto_deposit"):
            by_source.setdefault(envelope["source"], []).append(deposit_amount(envelope))
        assert by_source[TEST_ADDRESS] == [42, 13]
        assert by_source[OTHER_ADDRESS] == [54, 18]

        # Settlement always goes through the default signer
        assert node.operations("batch_process")[0]["source"] == TEST_ADDRESS

    @pytest.mark.asyncio
    async def test_one_queue_per_account(self, config, client, node, signer):
        """Test that two signer objects for one account share a FIFO queue."""
        same_account = LocalAccountSigner(TEST_PRIVATE_KEY)
        registry = SignerRegistry(default=signer, by_chain={"ethereum": same_account})
        orchestrator = BatchOrchestrator(config, registry, client=client)
        items = [
            normalize_balance("polygon", "MATIC", "0.42", TEST_ADDRESS),
            normalize_balance("polygon", "MATIC", "0.54", TEST_ADDRESS),
            normalize_balance("ethereum", "ETH", "0.000065", TEST_ADDRESS),
        ]

        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.COMPLETE
        assert [deposit_amount(e) for e in node.operations("auto_deposit")] == [42, 54, 13]

    @pytest.mark.asyncio
    async def test_duplicate_items_tracked_separately(self, orchestrator, node):
        """Test that identical items get one outcome each."""
        item = normalize_balance("polygon", "MATIC", "0.42", TEST_ADDRESS)

        state = await orchestrator.run_batch([item, item])

        assert len(state.outcomes) == 2
        assert len(node.operations("auto_deposit")) == 2
        assert isinstance(state.outcome_for(item), Succeeded)

    @pytest.mark.asyncio
    async def test_empty_batch(self, orchestrator, node):
        """Test that an empty batch settles immediately."""
        state = await orchestrator.run_batch([])

        assert state.phase is BatchPhase.COMPLETE
        assert state.progress == 100
        assert node.operations("auto_deposit") == []
        assert len(node.operations("batch_process")) == 1

    @pytest.mark.asyncio
    async def test_cannot_start_while_running(self, orchestrator, node, items):
        """Test that a second run is refused while the first is in flight."""
        task = asyncio.ensure_future(orchestrator.run_batch(items))
        while orchestrator.state.phase is not BatchPhase.DEPOSITING:
            await asyncio.sleep(0)

        with pytest.raises(BatchStateError, match="already depositing"):
            await orchestrator.run_batch(items)

        state = await task
        assert state.phase is BatchPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_listener_failure_logged(self, orchestrator, items, caplog):
        """Test that a failing listener does not interrupt the batch."""

        def broken_listener(state):
            raise RuntimeError("display gone")

        orchestrator.add_listener(broken_listener)

        with caplog.at_level(logging.ERROR):
            state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.COMPLETE
        assert "Batch listener" in caplog.text

    def test_missing_default_signer(self, config, client):
        """Test that a settlement signer is required."""
        with pytest.raises(ConfigurationError, match="default signer"):
            BatchOrchestrator(config, SignerRegistry(), client=client)

    def test_normalize_uses_configured_table(self, orchestrator):
        """Test balance normalization through the orchestrator."""
        items = orchestrator.normalize(
            [BalanceReading("ethereum", "ETH", "0.00021", TEST_ADDRESS)]
        )

        assert items[0].minor_units == 42

        with pytest.raises(UnsupportedAssetError):
            orchestrator.normalize([BalanceReading("ethereum", "PEPE", "1", TEST_ADDRESS)])


class TestSettlement:
    """Tests for settlement failure, policies and retries."""

    @pytest.mark.asyncio
    async def test_settlement_failure_keeps_deposits(self, orchestrator, node, items):
        """Test that a failed settlement leaves the batch partially failed."""
        node.fail = is_operation("batch_process")

        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.PARTIALLY_FAILED
        assert isinstance(state.settlement, Failed)
        assert state.progress == 50
        assert state.is_terminal
        assert all(isinstance(outcome, Succeeded) for outcome in state.outcomes)

    @pytest.mark.asyncio
    async def test_retry_settlement(self, orchestrator, node, items):
        """Test that settlement can be retried without re-depositing."""
        node.fail = is_operation("batch_process")
        await orchestrator.run_batch(items)

        node.fail = lambda envelope: False
        state = await orchestrator.retry_settlement()

        assert state.phase is BatchPhase.COMPLETE
        assert state.progress == 100
        assert len(node.operations("auto_deposit")) == 3
        assert len(node.operations("batch_process")) == 2

    @pytest.mark.asyncio
    async def test_policy_declines_settlement(self, config, client, node, signer, items):
        """Test that a batch with no deposits can be left unsettled."""
        orchestrator = BatchOrchestrator(
            config,
            SignerRegistry(default=signer),
            client=client,
            settlement_policy=settle_if_any_deposit_succeeded,
        )
        node.reject = is_operation("auto_deposit")

        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.ABORTED
        assert isinstance(state.settlement, Pending)
        assert node.operations("batch_process") == []

        # Retry the deposits, then settle
        node.reject = lambda envelope: False
        state = await orchestrator.retry_failed_deposits()

        assert state.phase is BatchPhase.ABORTED
        assert all(isinstance(outcome, Succeeded) for outcome in state.outcomes)

        state = await orchestrator.retry_settlement()
        assert state.phase is BatchPhase.COMPLETE
        assert len(node.operations("auto_deposit")) == 3

    @pytest.mark.asyncio
    async def test_default_policy_settles_failed_deposits(self, orchestrator, node, items):
        """Test that the default policy settles even if every deposit failed."""
        node.reject = is_operation("auto_deposit")

        state = await orchestrator.run_batch(items)

        assert len(state.failed_items) == 3
        assert state.phase is BatchPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_retry_failed_deposits_only(self, orchestrator, node, items):
        """Test that only failed deposits are re-submitted."""
        node.reject = lambda envelope: deposit_amount(envelope) == 54
        node.fail = is_operation("batch_process")
        await orchestrator.run_batch(items)

        node.reject = lambda envelope: False
        state = await orchestrator.retry_failed_deposits()

        assert state.phase is BatchPhase.PARTIALLY_FAILED
        assert state.failed_items == []
        assert [deposit_amount(e) for e in node.operations("auto_deposit")] == [42, 13, 54]

    @pytest.mark.asyncio
    async def test_retry_not_allowed(self, orchestrator, items):
        """Test that retries are refused outside the stopped phases."""
        with pytest.raises(BatchStateError):
            await orchestrator.retry_failed_deposits()

        await orchestrator.run_batch(items)

        with pytest.raises(BatchStateError):
            await orchestrator.retry_settlement()

    @pytest.mark.asyncio
    async def test_cancel(self, orchestrator, node, items):
        """Test that cancelling stops new deposits and skips settlement."""

        def cancel_after_first(state):
            if state.completed_count == 1:
                orchestrator.cancel()

        orchestrator.add_listener(cancel_after_first)

        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.ABORTED
        assert isinstance(state.outcomes[0], Succeeded)
        assert isinstance(state.outcomes[1], Pending)
        assert isinstance(state.outcomes[2], Pending)
        assert not state.deposits_done
        assert len(node.operations("auto_deposit")) == 1
        assert node.operations("batch_process") == []

    @pytest.mark.asyncio
    async def test_cancelled_batch_resumed(self, orchestrator, node, items):
        """Test that a cancelled batch settles only after its pending deposits run."""

        cancelled = []

        def cancel_after_first(state):
            if not cancelled and state.completed_count == 1:
                cancelled.append(state)
                orchestrator.cancel()

        orchestrator.add_listener(cancel_after_first)
        await orchestrator.run_batch(items)

        with pytest.raises(BatchStateError, match="2 deposits pending"):
            await orchestrator.retry_settlement()

        assert orchestrator.state.phase is BatchPhase.ABORTED
        assert node.operations("batch_process") == []

        state = await orchestrator.retry_failed_deposits()

        assert state.phase is BatchPhase.ABORTED
        assert state.deposits_done
        assert [deposit_amount(e) for e in node.operations("auto_deposit")] == [42, 54, 13]

        state = await orchestrator.retry_settlement()
        assert state.phase is BatchPhase.COMPLETE
        assert state.progress == 100

    @pytest.mark.asyncio
    async def test_interrupted_run_left_aborted(self, orchestrator, node, items):
        """Test that cancelling the running task does not wedge the orchestrator."""
        node.stall = lambda envelope: True

        task = asyncio.ensure_future(orchestrator.run_batch(items))
        while not node.sent:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.state.phase is BatchPhase.ABORTED

        node.stall = lambda envelope: False
        state = await orchestrator.run_batch(items)

        assert state.phase is BatchPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_raising_policy_left_aborted(self, config, client, signer, items):
        """Test that a failing settlement policy leaves the batch resumable."""

        def broken_policy(state):
            raise RuntimeError("policy backend down")

        orchestrator = BatchOrchestrator(
            config,
            SignerRegistry(default=signer),
            client=client,
            settlement_policy=broken_policy,
        )

        with pytest.raises(RuntimeError, match="policy backend down"):
            await orchestrator.run_batch(items)

        assert orchestrator.state.phase is BatchPhase.ABORTED

        state = await orchestrator.retry_settlement()
        assert state.phase is BatchPhase.COMPLETE


class TestSwap:
    """Tests for swapping settled value."""

    @pytest.mark.asyncio
    async def test_swap_settled(self, orchestrator, node, items):
        """Test swapping the deposited value of a completed batch."""
        node.reject = lambda envelope: deposit_amount(envelope) == 54
        await orchestrator.run_batch(items)

        outcome = await orchestrator.swap_settled("XLM")

        assert isinstance(outcome, Succeeded)
        assert outcome.value == 1234
        call_data = bytes.fromhex(node.operations("swap")[0]["callData"][2:])
        assert decode(
            ["string", "string", "string", "string", "uint64[]"], call_data[4:]
        ) == (TEST_ADDRESS, "polygon", "USDC", "XLM", (55,))

    @pytest.mark.asyncio
    async def test_swap_settled_nothing_deposited(self, orchestrator, node, items):
        """Test that an empty deposit total is swapped as a void amount."""
        node.reject = is_operation("auto_deposit")
        state = await orchestrator.run_batch(items)
        assert state.phase is BatchPhase.COMPLETE

        outcome = await orchestrator.swap_settled("XLM")

        assert isinstance(outcome, Succeeded)
        call_data = bytes.fromhex(node.operations("swap")[0]["callData"][2:])
        assert decode(
            ["string", "string", "string", "string", "uint64[]"], call_data[4:]
        )[-1] == ()

    @pytest.mark.asyncio
    async def test_swap_requires_complete_batch(self, orchestrator, node, items):
        """Test that the settled value cannot be swapped before settlement."""
        with pytest.raises(BatchStateError, match="complete"):
            await orchestrator.swap_settled("XLM")

        node.fail = is_operation("batch_process")
        await orchestrator.run_batch(items)

        with pytest.raises(BatchStateError):
            await orchestrator.swap_settled("XLM")
        assert node.operations("swap") == []

    @pytest.mark.asyncio
    async def test_swap_failure_returned(self, orchestrator, node):
        """Test that a failed swap is returned, not raised."""
        node.fail = is_operation("swap")

        outcome = await orchestrator.swap("XLM")

        assert isinstance(outcome, Failed)
        assert "contract panicked" in outcome.reason

    @pytest.mark.asyncio
    async def test_swap_invalid_target(self, orchestrator, node):
        """Test that an unencodable swap fails without a submission."""
        outcome = await orchestrator.swap("not a symbol")

        assert isinstance(outcome, Failed)
        assert node.sent == []
