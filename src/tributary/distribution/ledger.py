"""
tributary/distribution/ledger.py

Append-only accumulation of transaction records for one run.

The ledger owns its DistributionResult. Records are appended only once
they are terminal, recipients are unique, and after finalize() every
mutation raises LedgerClosedError. Aggregates are computed on each access.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..address import Address
from ..errors import DataIntegrityError, LedgerClosedError
from ..models import DistributionResult, DistributionStatus, RecordStatus, TransactionRecord

logger = logging.getLogger("tributary.distribution.ledger")


class DistributionLedger:
    """Collects TransactionRecords into a DistributionResult."""

    def __init__(self, mint: Address, result_id: Optional[str] = None):
        if result_id is None:
            self._result = DistributionResult(mint=mint)
        else:
            self._result = DistributionResult(mint=mint, id=result_id)
        self._recipients = set()

    @property
    def result(self) -> DistributionResult:
        return self._result

    @property
    def status(self) -> DistributionStatus:
        return self._result.status

    @property
    def is_finalized(self) -> bool:
        return self._result.status.is_terminal

    # ========================================================================
    # MUTATION
    # ========================================================================

    def start(self) -> None:
        """Mark the run as running (first batch dispatched)."""
        self._check_open()
        if self._result.status == DistributionStatus.PENDING:
            self._result.status = DistributionStatus.RUNNING
            logger.debug(f"Distribution {self._result.id} running")

    def append(self, record: TransactionRecord) -> None:
        """
        Add a terminal record.

        Raises:
            LedgerClosedError: If the ledger was finalized
            DataIntegrityError: If the record is pending or the recipient repeats
        """
        self._check_open()
        if not record.is_terminal:
            raise DataIntegrityError(
                "Only terminal records can be appended",
                {"recipient": str(record.recipient)},
            )
        if record.recipient in self._recipients:
            raise DataIntegrityError(
                f"Duplicate recipient {record.recipient}",
                {"recipient": str(record.recipient)},
            )
        self._recipients.add(record.recipient)
        self._result._records.append(record)

    def finalize(self, cancelled: bool = False) -> DistributionResult:
        """
        Compute the terminal status and close the ledger.

        Args:
            cancelled: The run was stopped before all batches ran

        Returns:
            The finalized DistributionResult
        """
        self._check_open()
        dispatched = self._result.status == DistributionStatus.RUNNING

        if cancelled:
            status = DistributionStatus.PARTIAL if dispatched else DistributionStatus.CANCELLED
        elif self.failed_count == 0:
            status = DistributionStatus.SUCCESS
        elif self.successful_count == 0:
            status = DistributionStatus.FAILED
        else:
            status = DistributionStatus.PARTIAL

        self._result.status = status
        self._result.finalized_at = datetime.now(timezone.utc)
        logger.info(
            f"Distribution {self._result.id} finalized: {status.value} "
            f"({self.successful_count} confirmed, {self.failed_count} failed)"
        )
        return self._result

    def _check_open(self) -> None:
        if self.is_finalized:
            raise LedgerClosedError(
                f"Distribution {self._result.id} is already {self._result.status.value}",
                {"id": self._result.id},
            )

    # ========================================================================
    # AGGREGATES
    # ========================================================================

    @property
    def successful_count(self) -> int:
        return sum(1 for r in self._result.records if r.status == RecordStatus.CONFIRMED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self._result.records if r.status == RecordStatus.FAILED)

    @property
    def total_confirmed_amount(self) -> int:
        return sum(r.amount for r in self._result.records if r.status == RecordStatus.CONFIRMED)

    def has_recipient(self, recipient: Address) -> bool:
        return recipient in self._recipients

    def is_complete(self, expected: int) -> bool:
        """True once ``expected`` records are present."""
        return len(self._result.records) >= expected
