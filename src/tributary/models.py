"""
tributary/models.py

Data model shared by discovery, allocation and execution.

Amounts are always integers in the token's smallest unit ("raw units").
Decimal UI amounts only appear at the edges (HolderFilter.threshold,
DistributionRequest.from_ui_amount) and are converted with the mint's
actual decimals.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from .address import Address, AddressLike
from .errors import InvalidTransitionError, ValidationError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_raw_amount(value) -> bool:
    # bool is an int subclass, but True is not an amount
    return isinstance(value, int) and not isinstance(value, bool)


def to_raw_amount(ui_amount, decimals: int) -> int:
    """
    Convert a UI amount to raw units, truncating extra precision.

    Args:
        ui_amount: Decimal, int or numeric string (floats are converted via str)
        decimals: Mint decimals

    Returns:
        Integer amount in raw units
    """
    value = Decimal(str(ui_amount))
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def to_ui_amount(raw_amount: int, decimals: int) -> Decimal:
    return Decimal(raw_amount) / (Decimal(10) ** decimals)


# ============================================================================
# HOLDERS
# ============================================================================

@dataclass(frozen=True)
class TokenHolder:
    """A wallet holding the token. ``percentage`` is derived, never set by hand."""
    address: Address
    balance: int
    percentage: Decimal = Decimal(0)

    def to_dict(self) -> dict:
        return {
            'address': str(self.address),
            'balance': self.balance,
            'percentage': str(self.percentage),
        }


def compute_percentages(balances: Iterable[Tuple[Address, int]]) -> Tuple[TokenHolder, ...]:
    """
    Build holders with percentages of the included total.

    A zero total gives every holder 0%.
    """
    entries = list(balances)
    total = sum(balance for _, balance in entries)
    holders = []
    for address, balance in entries:
        if total == 0:
            percentage = Decimal(0)
        else:
            percentage = Decimal(balance) * 100 / Decimal(total)
        holders.append(TokenHolder(address=address, balance=balance, percentage=percentage))
    return tuple(holders)


def sort_balances(balances: Mapping[Address, int]) -> List[Tuple[Address, int]]:
    """Deterministic holder order: balance descending, then address ascending."""
    return sorted(balances.items(), key=lambda item: (-item[1], item[0].to_base58()))


class DiscoveryTier(Enum):
    """Discovery strategy that produced a snapshot."""
    INDEX_SCAN = "index_scan"
    LARGEST_ACCOUNTS = "largest_accounts"
    TRANSACTION_HISTORY = "transaction_history"
    NONE = "none"


class ProgramVariant(Enum):
    """Token program owning a mint."""
    STANDARD = "standard"
    RESTRICTED_INDEX = "restricted-index"


@dataclass(frozen=True)
class HolderFilter:
    """
    Filter applied by collect().

    Attributes:
        threshold: Minimum balance in UI units (inclusive)
        max_holders: Keep only the N largest holders
        exclude_addresses: Wallets never reported as holders
    """
    threshold: Decimal = Decimal(0)
    max_holders: Optional[int] = None
    exclude_addresses: FrozenSet[Address] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, 'threshold', Decimal(str(self.threshold)))
        object.__setattr__(
            self,
            'exclude_addresses',
            frozenset(Address.parse(a) for a in self.exclude_addresses),
        )
        if self.threshold < 0:
            raise ValidationError("threshold must not be negative")
        if self.max_holders is not None and self.max_holders <= 0:
            raise ValidationError("max_holders must be positive")


@dataclass(frozen=True)
class HolderSnapshot:
    """Result of one collect() call."""
    mint: Address
    holders: Tuple[TokenHolder, ...]
    decimals: Optional[int]
    variant: ProgramVariant
    source: DiscoveryTier
    approximate: bool = False
    exhausted: bool = False
    collected_at: datetime = field(default_factory=_utc_now)

    @property
    def total_balance(self) -> int:
        return sum(h.balance for h in self.holders)

    def __iter__(self) -> Iterator[TokenHolder]:
        return iter(self.holders)

    def __len__(self) -> int:
        return len(self.holders)

    def to_dict(self) -> dict:
        return {
            'mint': str(self.mint),
            'decimals': self.decimals,
            'variant': self.variant.value,
            'source': self.source.value,
            'approximate': self.approximate,
            'exhausted': self.exhausted,
            'collected_at': self.collected_at.isoformat(),
            'total_balance': self.total_balance,
            'holders': [h.to_dict() for h in self.holders],
        }


# ============================================================================
# REQUESTS
# ============================================================================

class DistributionMode(Enum):
    EQUAL = "equal"
    PROPORTIONAL = "proportional"


@dataclass(frozen=True)
class DistributionRequest:
    """
    Immutable distribution request.

    ``holders`` is copied into a tuple so later changes to the caller's list
    do not leak in.
    """
    total_amount: int
    mint: Address
    holders: Tuple[TokenHolder, ...]
    mode: DistributionMode = DistributionMode.PROPORTIONAL
    batch_size: Optional[int] = None
    minimum_amount: int = 0
    exclude_addresses: FrozenSet[Address] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, 'mint', Address.parse(self.mint))
        object.__setattr__(self, 'holders', tuple(self.holders))
        object.__setattr__(self, 'mode', DistributionMode(self.mode))
        object.__setattr__(
            self,
            'exclude_addresses',
            frozenset(Address.parse(a) for a in self.exclude_addresses),
        )

        if not _is_raw_amount(self.total_amount) or self.total_amount <= 0:
            raise ValidationError(
                "total_amount must be a positive integer in raw units",
                {"total_amount": str(self.total_amount)},
            )
        if not self.holders:
            raise ValidationError("holders must not be empty")
        if self.batch_size is not None and self.batch_size <= 0:
            raise ValidationError("batch_size must be positive", {"batch_size": self.batch_size})
        if not _is_raw_amount(self.minimum_amount) or self.minimum_amount < 0:
            raise ValidationError(
                "minimum_amount must be a non-negative integer in raw units",
                {"minimum_amount": str(self.minimum_amount)},
            )

    @classmethod
    def from_ui_amount(
        cls,
        amount,
        decimals: int,
        mint: AddressLike,
        holders: Iterable[TokenHolder],
        mode: DistributionMode = DistributionMode.PROPORTIONAL,
        batch_size: Optional[int] = None,
        minimum_amount=0,
        exclude_addresses: Iterable[AddressLike] = (),
    ) -> "DistributionRequest":
        """Build a request from UI amounts using the mint's decimals."""
        return cls(
            total_amount=to_raw_amount(amount, decimals),
            mint=Address.parse(mint),
            holders=tuple(holders),
            mode=mode,
            batch_size=batch_size,
            minimum_amount=to_raw_amount(minimum_amount, decimals),
            exclude_addresses=frozenset(Address.parse(a) for a in exclude_addresses),
        )


# ============================================================================
# RESULTS
# ============================================================================

class RecordStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransactionRecord:
    """Outcome of one transfer. Terminal states never change."""
    recipient: Address
    amount: int
    status: RecordStatus = RecordStatus.PENDING
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RecordStatus.PENDING

    def confirmed(self, transaction_id: str, retry_count: int = 0) -> "TransactionRecord":
        self._require_pending(RecordStatus.CONFIRMED)
        return replace(
            self,
            status=RecordStatus.CONFIRMED,
            transaction_id=transaction_id,
            retry_count=retry_count,
            completed_at=_utc_now(),
        )

    def failed(self, error: str, retry_count: int = 0) -> "TransactionRecord":
        self._require_pending(RecordStatus.FAILED)
        return replace(
            self,
            status=RecordStatus.FAILED,
            error=error,
            retry_count=retry_count,
            completed_at=_utc_now(),
        )

    def _require_pending(self, target: RecordStatus) -> None:
        if self.status != RecordStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot move record from {self.status.value} to {target.value}",
                {"recipient": str(self.recipient)},
            )

    def to_dict(self) -> dict:
        return {
            'recipient': str(self.recipient),
            'amount': self.amount,
            'status': self.status.value,
            'transaction_id': self.transaction_id,
            'error': self.error,
            'retry_count': self.retry_count,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class DistributionStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (DistributionStatus.PENDING, DistributionStatus.RUNNING)


@dataclass
class DistributionResult:
    """
    Auditable record of one run.

    Only the owning DistributionLedger mutates it; read ``records`` for a
    snapshot of the outcomes.
    """
    mint: Address
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utc_now)
    status: DistributionStatus = DistributionStatus.PENDING
    finalized_at: Optional[datetime] = None
    _records: List[TransactionRecord] = field(default_factory=list, repr=False)

    @property
    def records(self) -> Tuple[TransactionRecord, ...]:
        return tuple(self._records)

    def to_dict(self) -> dict:
        records = self.records
        confirmed = [r for r in records if r.status == RecordStatus.CONFIRMED]
        return {
            'id': self.id,
            'mint': str(self.mint),
            'created_at': self.created_at.isoformat(),
            'finalized_at': self.finalized_at.isoformat() if self.finalized_at else None,
            'status': self.status.value,
            'summary': {
                'total': len(records),
                'successful': len(confirmed),
                'failed': sum(1 for r in records if r.status == RecordStatus.FAILED),
                'confirmed_amount': sum(r.amount for r in confirmed),
            },
            'records': [r.to_dict() for r in records],
        }


@dataclass(frozen=True)
class DistributionProgress:
    """Passed to the progress callback after each terminal record."""
    completed: int
    total: int
    successful: int
    failed: int
    started_at: float

    @property
    def rate(self) -> float:
        """Completed transfers per second."""
        elapsed = time.time() - self.started_at
        return self.completed / elapsed if elapsed > 0 else 0.0

    @property
    def percent(self) -> float:
        return self.completed / self.total * 100 if self.total else 100.0

    def to_dict(self) -> Dict[str, float]:
        return {
            'completed': self.completed,
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'rate': self.rate,
            'percent': self.percent,
        }
