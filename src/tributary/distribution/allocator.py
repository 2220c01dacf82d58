"""
tributary/distribution/allocator.py

Exact integer allocation of a fixed total across holders.

Pure functions, no I/O. Only integer arithmetic is used, so the same
inputs always produce the same amounts and the sum never exceeds the
total. Holders below the minimum are dropped, and their share is not
redistributed; it remains in ``Allocation.undistributed``.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Tuple

from ..address import Address, AddressLike
from ..errors import ValidationError
from ..models import DistributionMode, TokenHolder

logger = logging.getLogger("tributary.distribution.allocator")


@dataclass(frozen=True)
class Allocation(Mapping):
    """
    Ordered, read-only mapping of recipient to raw amount.

    Only recipients with a positive amount at or above the minimum appear.
    """
    total: int
    entries: Tuple[Tuple[Address, int], ...]
    _lookup: Dict[Address, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_lookup", dict(self.entries))

    def __getitem__(self, key: AddressLike) -> int:
        return self._lookup[Address.parse(key)]

    def __iter__(self) -> Iterator[Address]:
        return (recipient for recipient, _ in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def recipients(self) -> List[Address]:
        return [recipient for recipient, _ in self.entries]

    @property
    def allocated(self) -> int:
        return sum(amount for _, amount in self.entries)

    @property
    def undistributed(self) -> int:
        return self.total - self.allocated


def _merge_holders(
    holders: Iterable[TokenHolder],
    exclude: Iterable[Address],
) -> "OrderedDict[Address, int]":
    excluded = {Address.parse(a) for a in exclude}
    merged: "OrderedDict[Address, int]" = OrderedDict()
    for holder in holders:
        if holder.address in excluded:
            continue
        merged[holder.address] = merged.get(holder.address, 0) + holder.balance
    return merged


def allocate(
    holders: Iterable[TokenHolder],
    total_amount: int,
    mode: DistributionMode = DistributionMode.PROPORTIONAL,
    minimum_amount: int = 0,
    exclude_addresses: Iterable[AddressLike] = (),
) -> Allocation:
    """
    Split ``total_amount`` across holders.

    Args:
        holders: Holder snapshot (duplicates are merged by summing balances)
        total_amount: Amount to distribute, in raw units
        mode: equal or proportional
        minimum_amount: Recipients below this are dropped, not clipped
        exclude_addresses: Addresses that never receive anything

    Returns:
        Allocation in holder order

    Raises:
        ValidationError: On a negative total or minimum
    """
    mode = DistributionMode(mode)
    if total_amount < 0:
        raise ValidationError("total_amount must not be negative", {"total_amount": total_amount})
    if minimum_amount < 0:
        raise ValidationError("minimum_amount must not be negative", {"minimum_amount": minimum_amount})

    balances = _merge_holders(holders, exclude_addresses)
    floor = max(minimum_amount, 1)

    if mode == DistributionMode.EQUAL:
        amounts = _allocate_equal(balances, total_amount)
    else:
        amounts = _allocate_proportional(balances, total_amount)

    entries = tuple((address, amount) for address, amount in amounts.items() if amount >= floor)
    allocation = Allocation(total=total_amount, entries=entries)

    dropped = len(amounts) - len(entries)
    logger.debug(
        f"Allocated {allocation.allocated}/{total_amount} to {len(allocation)} recipients "
        f"({mode.value}, {dropped} below minimum)"
    )
    return allocation


def _allocate_equal(balances: Mapping[Address, int], total_amount: int) -> Dict[Address, int]:
    if not balances:
        return {}
    per_holder = total_amount // len(balances)
    return OrderedDict((address, per_holder) for address in balances)


def _allocate_proportional(balances: Mapping[Address, int], total_amount: int) -> Dict[Address, int]:
    total_balance = sum(balances.values())
    if total_balance == 0:
        return {}
    # floor(total * balance / sum), same result as going through percentages
    return OrderedDict(
        (address, total_amount * balance // total_balance)
        for address, balance in balances.items()
    )
