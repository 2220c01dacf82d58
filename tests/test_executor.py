"""
Tests for tributary/distribution/executor.py

Runs real signed transactions against the in-memory gateway.
"""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, Mock
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.transaction_status import TransactionConfirmationStatus

from tributary.distribution.allocator import Allocation
from tributary.distribution.executor import ABORTED_ERROR, CANCELLED_ERROR, BatchExecutor, partition
from tributary.distribution.ledger import DistributionLedger
from tributary.distribution.tx_builder import TransferBuilder
from tributary.errors import NetworkError
from tributary.models import DistributionStatus, RecordStatus
from tributary.rpc import TOKEN_PROGRAM, SignatureStatus, SolanaRpcGateway

from conftest import make_address, no_sleep


def make_allocation(count: int, amount: int = 100) -> Allocation:
    entries = tuple((make_address(n), amount) for n in range(1, count + 1))
    return Allocation(total=count * amount, entries=entries)


@pytest.fixture
def builder(authority, mint):
    return TransferBuilder(authority, mint, decimals=6, program=TOKEN_PROGRAM)


@pytest.fixture
def executor(gateway, retry, builder):
    return BatchExecutor(gateway, retry, builder, batch_size=3, concurrency=2, sleep=no_sleep)


# ============================================================================
# PARTITIONING
# ============================================================================

class TestPartition:

    def test_batches(self):
        entries = list(make_allocation(7).entries)
        batches = partition(entries, 3)
        assert [len(b) for b in batches] == [3, 3, 1]
        assert [e for b in batches for e in b] == entries

    def test_empty(self):
        assert partition([], 5) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            partition([], 0)


# ============================================================================
# EXECUTION
# ============================================================================

class TestBatchExecutor:
    """Tests for BatchExecutor.run()."""

    @pytest.mark.asyncio
    async def test_all_confirmed(self, executor, gateway, mint):
        allocation = make_allocation(5)

        result = await executor.run(allocation, DistributionLedger(mint))

        assert result.status == DistributionStatus.SUCCESS
        assert len(result.records) == 5
        assert all(r.status == RecordStatus.CONFIRMED for r in result.records)
        assert all(r.transaction_id for r in result.records)
        assert len(gateway.sent) == 5
        assert {r.recipient for r in result.records} == set(allocation)

    @pytest.mark.asyncio
    async def test_single_failure_isolated(self, executor, gateway, builder, mint):
        """One rejected transfer in a batch of N gives N-1 confirmed and partial."""
        allocation = make_allocation(3)
        gateway.reject_accounts.add(builder.associated_account(make_address(2)))

        result = await executor.run(allocation, DistributionLedger(mint))

        confirmed = [r for r in result.records if r.status == RecordStatus.CONFIRMED]
        failed = [r for r in result.records if r.status == RecordStatus.FAILED]
        assert len(confirmed) == 2
        assert len(failed) == 1
        assert failed[0].recipient == make_address(2)
        assert "custom program error" in failed[0].error
        assert result.status == DistributionStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_all_failed(self, executor, gateway, mint):
        gateway.failures["send_transaction"] = NetworkError("node down")

        result = await executor.run(make_allocation(2), DistributionLedger(mint))

        assert result.status == DistributionStatus.FAILED
        assert all(r.status == RecordStatus.FAILED for r in result.records)
        # three attempts each, so two retries
        assert all(r.retry_count == 2 for r in result.records)

    @pytest.mark.asyncio
    async def test_retry_count_recorded(self, executor, gateway, mint):
        attempts = {"n": 0}
        original = gateway.send_transaction

        async def flaky(transaction, last_valid_block_height=None):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise NetworkError("blip")
            return await original(transaction, last_valid_block_height)

        gateway.send_transaction = flaky
        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        assert result.records[0].status == RecordStatus.CONFIRMED
        assert result.records[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_landed_transfer_not_resent(self, executor, gateway, mint):
        """A transfer that landed while its confirmation was lost is confirmed, not resent."""
        original = gateway.send_transaction
        submissions = []

        async def lost_confirmation(transaction, last_valid_block_height=None):
            submissions.append(transaction.signatures[0])
            await original(transaction, last_valid_block_height)
            raise NetworkError("confirmation timed out")

        gateway.send_transaction = lost_confirmation
        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        record = result.records[0]
        assert record.status == RecordStatus.CONFIRMED
        assert record.transaction_id == str(submissions[0])
        assert record.retry_count == 1
        assert len(submissions) == 1
        assert len(gateway.sent) == 1
        assert result.status == DistributionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_landed_with_error_not_resent(self, executor, gateway, mint):
        submissions = []

        async def failed_on_chain(transaction, last_valid_block_height=None):
            signature = str(transaction.signatures[0])
            submissions.append(signature)
            gateway.statuses[signature] = SignatureStatus(
                signature=signature, level="confirmed", confirmed=True, err="InstructionError",
            )
            raise NetworkError("connection reset")

        gateway.send_transaction = failed_on_chain
        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        record = result.records[0]
        assert record.status == RecordStatus.FAILED
        assert "InstructionError" in record.error
        assert len(submissions) == 1

    @pytest.mark.asyncio
    async def test_status_checked_after_retries_exhausted(self, executor, gateway, mint):
        """The last attempt's lost confirmation still ends as confirmed when the node has it."""
        original = gateway.send_transaction
        calls = {"n": 0}

        async def slow_node(transaction, last_valid_block_height=None):
            calls["n"] += 1
            if calls["n"] == 3:
                await original(transaction, last_valid_block_height)
            raise NetworkError("confirmation timed out")

        gateway.send_transaction = slow_node
        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        assert result.records[0].status == RecordStatus.CONFIRMED
        assert result.records[0].retry_count == 2

    @pytest.mark.asyncio
    async def test_creates_missing_account(self, executor, gateway, builder, mint):
        recipient_with_account = make_address(1)
        gateway.add_token_account(
            builder.associated_account(recipient_with_account), mint, recipient_with_account, 0,
        )

        await executor.run(make_allocation(2), DistributionLedger(mint))

        instruction_counts = sorted(len(tx.message.instructions) for tx in gateway.sent)
        assert instruction_counts == [1, 2]

    @pytest.mark.asyncio
    async def test_empty_allocation(self, executor, mint):
        result = await executor.run(Allocation(total=0, entries=()), DistributionLedger(mint))
        assert result.status == DistributionStatus.SUCCESS
        assert result.records == ()

    @pytest.mark.asyncio
    async def test_progress_callback(self, executor, gateway, builder, mint):
        gateway.reject_accounts.add(builder.associated_account(make_address(4)))
        updates = []

        await executor.run(make_allocation(4), DistributionLedger(mint), progress=updates.append)

        assert [u.completed for u in updates] == [1, 2, 3, 4]
        assert updates[-1].total == 4
        assert updates[-1].successful == 3
        assert updates[-1].failed == 1
        assert updates[-1].percent == 100.0

    @pytest.mark.asyncio
    async def test_batch_delay(self, gateway, retry, builder, mint):
        delays = []

        async def record_sleep(delay):
            delays.append(delay)

        executor = BatchExecutor(gateway, retry, builder, batch_size=2, batch_delay=0.5, sleep=record_sleep)
        await executor.run(make_allocation(5), DistributionLedger(mint))

        assert delays == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_batches_sequential(self, gateway, retry, builder, mint):
        """No transfer of batch N+1 starts before batch N is terminal."""
        in_flight = {"n": 0, "max": 0}
        original = gateway.send_transaction

        async def tracked(transaction, last_valid_block_height=None):
            in_flight["n"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["n"])
            await asyncio.sleep(0)
            try:
                return await original(transaction, last_valid_block_height)
            finally:
                in_flight["n"] -= 1

        gateway.send_transaction = tracked
        executor = BatchExecutor(gateway, retry, builder, batch_size=2, concurrency=10, sleep=no_sleep)
        await executor.run(make_allocation(6), DistributionLedger(mint))

        assert in_flight["max"] <= 2


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancellation:
    """Tests for cancellation between batches."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_batch(self, executor, gateway, mint):
        """Cancelling after batch 1 of 3 leaves no pending records."""
        cancel = asyncio.Event()

        def on_progress(update):
            if update.completed == 3:
                cancel.set()

        result = await executor.run(make_allocation(9), DistributionLedger(mint), progress=on_progress, cancel_event=cancel)

        assert result.status == DistributionStatus.PARTIAL
        assert len(result.records) == 9
        assert all(r.status != RecordStatus.PENDING for r in result.records)

        first_batch = {make_address(n) for n in (1, 2, 3)}
        for record in result.records:
            if record.recipient in first_batch:
                assert record.status == RecordStatus.CONFIRMED
            else:
                assert record.status == RecordStatus.FAILED
                assert record.error == CANCELLED_ERROR
        assert len(gateway.sent) == 3

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, executor, gateway, mint):
        cancel = asyncio.Event()
        cancel.set()

        result = await executor.run(make_allocation(4), DistributionLedger(mint), cancel_event=cancel)

        assert result.status == DistributionStatus.CANCELLED
        assert all(r.error == CANCELLED_ERROR for r in result.records)
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_run_cancelled_mid_batch(self, executor, gateway, mint):
        """Cancelling the run task while transfers are in flight still finalizes the ledger."""
        started = asyncio.Event()
        release = asyncio.Event()
        original = gateway.send_transaction

        async def blocked(transaction, last_valid_block_height=None):
            started.set()
            await release.wait()
            return await original(transaction, last_valid_block_height)

        gateway.send_transaction = blocked
        ledger = DistributionLedger(mint)
        run = asyncio.ensure_future(executor.run(make_allocation(4), ledger))
        await started.wait()
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run

        assert ledger.is_finalized
        assert ledger.status == DistributionStatus.PARTIAL
        records = ledger.result.records
        assert len(records) == 4
        assert all(r.status == RecordStatus.FAILED for r in records)
        assert all(r.error == ABORTED_ERROR for r in records)
        assert gateway.sent == []


# ============================================================================
# PROGRESS REPORTING
# ============================================================================

class TestProgressFailures:

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_run(self, executor, gateway, mint):
        calls = []

        def broken_display(update):
            calls.append(update.completed)
            raise RuntimeError("display crashed")

        ledger = DistributionLedger(mint)
        result = await executor.run(make_allocation(4), ledger, progress=broken_display)

        assert result.status == DistributionStatus.SUCCESS
        assert ledger.is_finalized
        assert len(result.records) == 4
        assert len(gateway.sent) == 4
        assert calls == [1, 2, 3, 4]


# ============================================================================
# AGAINST THE RPC GATEWAY
# ============================================================================

def make_rpc_gateway():
    client = Mock()
    client.close = AsyncMock()
    client.get_account_info = AsyncMock(return_value=Mock(value=None))
    client.get_latest_blockhash = AsyncMock(
        return_value=Mock(value=Mock(blockhash=Hash.new_unique(), last_valid_block_height=500)),
    )
    client.get_signature_statuses = AsyncMock(return_value=Mock(value=[None]))
    return SolanaRpcGateway("http://localhost:8899", client=client), client


class TestLostConfirmation:
    """A confirmation timeout after the transaction landed must not cost a second payment."""

    @pytest.mark.asyncio
    async def test_resend_answered_already_processed(self, retry, builder, mint):
        gateway, client = make_rpc_gateway()
        sent = []

        def send(transaction, opts=None):
            sent.append(transaction.signatures[0])
            if len(sent) == 1:
                return Mock(value=transaction.signatures[0])
            raise RPCException("Transaction simulation failed: This transaction has already been processed")

        client.send_transaction = AsyncMock(side_effect=send)
        client.confirm_transaction = AsyncMock(
            side_effect=[httpx.ReadTimeout("timed out"), Mock(value=[Mock(err=None)])],
        )
        executor = BatchExecutor(gateway, retry, builder, sleep=no_sleep)

        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        record = result.records[0]
        assert record.status == RecordStatus.CONFIRMED
        assert record.transaction_id == str(sent[0])
        assert record.retry_count == 1
        assert result.status == DistributionStatus.SUCCESS
        assert sent[0] == sent[1]
        client.get_signature_statuses.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_status_lookup_skips_resend(self, retry, builder, mint):
        gateway, client = make_rpc_gateway()
        client.send_transaction = AsyncMock(
            side_effect=lambda transaction, opts=None: Mock(value=transaction.signatures[0]),
        )
        client.confirm_transaction = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        client.get_signature_statuses = AsyncMock(return_value=Mock(value=[
            Mock(err=None, confirmation_status=TransactionConfirmationStatus.Confirmed, confirmations=3),
        ]))
        executor = BatchExecutor(gateway, retry, builder, sleep=no_sleep)

        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        assert result.records[0].status == RecordStatus.CONFIRMED
        assert result.status == DistributionStatus.SUCCESS
        client.send_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_preflight_rejection_not_retried(self, retry, builder, mint):
        gateway, client = make_rpc_gateway()
        client.send_transaction = AsyncMock(
            side_effect=RPCException("Transaction simulation failed: insufficient funds for fee"),
        )
        client.confirm_transaction = AsyncMock()
        executor = BatchExecutor(gateway, retry, builder, sleep=no_sleep)

        result = await executor.run(make_allocation(1), DistributionLedger(mint))

        record = result.records[0]
        assert record.status == RecordStatus.FAILED
        assert "insufficient funds" in record.error
        assert record.retry_count == 0
        client.send_transaction.assert_awaited_once()
        client.confirm_transaction.assert_not_awaited()
