"""
tributary/distribution/executor.py

Batched execution of an allocation.

Batches run one after another; transfers inside a batch run concurrently
up to the configured limit. Only this executor appends to the ledger, in
the order transfers complete. A failed transfer becomes a failed record
and never stops the batch or the run. The ledger is finalized on every
exit path, including an interrupted run.

Process per recipient:
1. Derive the recipient's associated token account
2. Check whether it exists (create it in the same transaction if not)
3. Build and sign transfer_checked with a recent blockhash, once
4. Submit and confirm through the RetryController; before any resend,
   ask the node whether the signature already landed
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from ..address import Address
from ..errors import RetryExhaustedError, TransactionRejectedError, TributaryError
from ..models import DistributionProgress, DistributionResult, RecordStatus, TransactionRecord
from ..retry import RetryController
from .allocator import Allocation
from .ledger import DistributionLedger
from .tx_builder import TransferBuilder

logger = logging.getLogger("tributary.distribution.executor")

CANCELLED_ERROR = "cancelled"
ABORTED_ERROR = "aborted"

ProgressCallback = Callable[[DistributionProgress], None]
Batch = Sequence[Tuple[Address, int]]


def partition(entries: Sequence[Tuple[Address, int]], batch_size: int) -> List[Batch]:
    """Split allocation entries into consecutive batches."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [entries[i:i + batch_size] for i in range(0, len(entries), batch_size)]


class BatchExecutor:
    """
    Executes an allocation batch by batch.

    Example:
        executor = BatchExecutor(gateway, retry, builder, batch_size=10, concurrency=4)
        result = await executor.run(allocation, DistributionLedger(mint))
    """

    def __init__(
        self,
        gateway,
        retry: RetryController,
        builder: TransferBuilder,
        batch_size: int = 10,
        concurrency: int = 4,
        batch_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.retry = retry
        self.builder = builder
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config,
        gateway,
        retry: RetryController,
        builder: TransferBuilder,
        batch_size: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "BatchExecutor":
        """Build from a TributaryConfig; ``batch_size`` is capped at max_batch_size."""
        size = min(batch_size or config.default_batch_size, config.max_batch_size)
        return cls(
            gateway,
            retry,
            builder,
            batch_size=size,
            concurrency=config.concurrency,
            batch_delay=config.batch_delay,
            sleep=sleep,
        )

    # ========================================================================
    # RUN
    # ========================================================================

    async def run(
        self,
        allocation: Allocation,
        ledger: DistributionLedger,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DistributionResult:
        """
        Execute every transfer of the allocation.

        Args:
            allocation: Recipient amounts in raw units
            ledger: Ledger receiving the records (finalized on return)
            progress: Called after each terminal record
            cancel_event: Checked between batches

        Returns:
            The finalized DistributionResult

        Raises:
            asyncio.CancelledError: If the run itself is cancelled; the ledger
                is finalized first
        """
        batches = partition(list(allocation.entries), self.batch_size)
        tracker = _ProgressTracker(len(allocation), progress)
        cancelled = False

        logger.info(
            f"Distributing {allocation.allocated} to {len(allocation)} recipients "
            f"in {len(batches)} batches"
        )

        try:
            for index, batch in enumerate(batches):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    remaining = [entry for pending in batches[index:] for entry in pending]
                    logger.warning(
                        f"Cancelled before batch {index + 1}/{len(batches)}; "
                        f"{len(remaining)} recipients skipped"
                    )
                    self._fail_remaining(allocation, ledger, tracker, CANCELLED_ERROR)
                    break

                if index > 0 and self.batch_delay > 0:
                    await self._sleep(self.batch_delay)

                ledger.start()
                logger.debug(f"Batch {index + 1}/{len(batches)}: {len(batch)} transfers")
                await self._run_batch(batch, ledger, tracker)
        except BaseException as e:
            logger.error(f"Distribution {ledger.result.id} interrupted: {e!r}")
            if not ledger.is_finalized:
                self._fail_remaining(allocation, ledger, tracker, ABORTED_ERROR)
                ledger.finalize(cancelled=True)
            raise

        return ledger.finalize(cancelled=cancelled)

    async def _run_batch(self, batch: Batch, ledger: DistributionLedger, tracker: "_ProgressTracker") -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(recipient: Address, amount: int) -> TransactionRecord:
            async with semaphore:
                return await self.transfer(recipient, amount)

        tasks = [asyncio.ensure_future(bounded(recipient, amount)) for recipient, amount in batch]
        try:
            for finished in asyncio.as_completed(tasks):
                self._record(ledger, tracker, await finished)
        finally:
            # No transfer outlives its batch
            for task in tasks:
                if not task.done():
                    task.cancel()
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, TransactionRecord) and not ledger.has_recipient(outcome.recipient):
                    self._record(ledger, tracker, outcome)

    def _record(self, ledger: DistributionLedger, tracker: "_ProgressTracker", record: TransactionRecord) -> None:
        ledger.append(record)
        tracker.update(record)

    def _fail_remaining(
        self,
        allocation: Allocation,
        ledger: DistributionLedger,
        tracker: "_ProgressTracker",
        error: str,
    ) -> None:
        for recipient, amount in allocation.entries:
            if not ledger.has_recipient(recipient):
                self._record(ledger, tracker, TransactionRecord(recipient=recipient, amount=amount).failed(error))

    # ========================================================================
    # SINGLE TRANSFER
    # ========================================================================

    async def transfer(self, recipient: Address, amount: int) -> TransactionRecord:
        """
        Send one transfer and return its terminal record.

        Never raises for chain or network failures; they end up in the
        record's ``error``. The transaction is signed once. A resend only
        happens after the node reports no landed execution of it.
        """
        record = TransactionRecord(recipient=recipient, amount=amount)
        signature: Optional[str] = None
        try:
            destination = self.builder.associated_account(recipient)
            account = await self.retry.run(
                lambda: self.gateway.get_account(Address.parse(destination)),
                "get_account",
            )
            blockhash = await self.retry.run(self.gateway.get_latest_blockhash, "get_latest_blockhash")
            transaction = self.builder.build(
                recipient,
                amount,
                create_account=account is None,
                blockhash=blockhash.blockhash,
            )
            signature = str(transaction.signatures[0])
            submitted = False

            async def submit() -> str:
                nonlocal submitted
                if submitted and await self._landed(signature):
                    return signature
                submitted = True
                return await self.gateway.send_transaction(transaction, blockhash.last_valid_block_height)

            confirmed_signature, attempts = await self.retry.run_with_attempts(submit, "send_transaction")
        except RetryExhaustedError as e:
            retries = max(e.attempts - 1, 0)
            if signature is not None and await self._landed_after_retries(signature):
                logger.info(f"Sent {amount} to {recipient.short()}: {signature} (confirmed by status lookup)")
                return record.confirmed(signature, retry_count=retries)
            logger.error(f"Transfer to {recipient.short()} failed: {e}")
            return record.failed(str(e), retry_count=retries)
        except Exception as e:
            logger.error(f"Transfer to {recipient.short()} failed: {e}")
            return record.failed(str(e))

        logger.info(f"Sent {amount} to {recipient.short()}: {confirmed_signature}")
        return record.confirmed(confirmed_signature, retry_count=attempts - 1)

    async def _landed(self, signature: str) -> bool:
        """
        True if the node reports the transaction at the configured commitment.

        Raises:
            TransactionRejectedError: If it landed with an execution error
        """
        status = await self.gateway.get_signature_status(signature)
        if status is None:
            return False
        if status.err is not None:
            raise TransactionRejectedError(
                f"Transaction {signature} failed: {status.err}",
                {"signature": signature},
            )
        if status.confirmed:
            logger.info(f"Transaction {signature} already landed ({status.level}), not resending")
            return True
        return False

    async def _landed_after_retries(self, signature: str) -> bool:
        try:
            return await self._landed(signature)
        except TributaryError as e:
            logger.warning(f"Status lookup for {signature} failed: {e}")
            return False


class _ProgressTracker:
    """Counts terminal records and reports them to the callback."""

    def __init__(self, total: int, callback: Optional[ProgressCallback]):
        self.total = total
        self.callback = callback
        self.completed = 0
        self.successful = 0
        self.failed = 0
        self.started_at = time.time()

    def update(self, record: TransactionRecord) -> None:
        self.completed += 1
        if record.status == RecordStatus.CONFIRMED:
            self.successful += 1
        else:
            self.failed += 1
        if self.callback is None:
            return
        try:
            self.callback(DistributionProgress(
                completed=self.completed,
                total=self.total,
                successful=self.successful,
                failed=self.failed,
                started_at=self.started_at,
            ))
        except Exception as e:
            logger.error(f"Progress callback failed: {e}")
