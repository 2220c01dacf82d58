"""
tributary/discovery/holders.py

Holder discovery with a three-tier fallback chain.

Tiers, tried in order until one completes without error:

1. Index scan: getProgramAccounts over the token program, filtered by
   account size and mint offset. Standard variant only.
2. Largest accounts: getTokenLargestAccounts, then one account fetch per
   entry to resolve the owning wallet.
3. Transaction history: recent signatures for the mint, keeping each
   owner's largest post-transaction balance. Approximate, bounded by
   history depth.

If every tier fails, collect() returns an empty snapshot flagged
``exhausted`` instead of raising.

Usage:
    service = HolderDiscoveryService(gateway, retry, metrics=metrics)
    snapshot = await service.collect(mint, HolderFilter(threshold=Decimal("1")))
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from ..address import Address, AddressLike
from ..errors import TributaryError, ValidationError
from ..metrics import DistributionMetrics
from ..models import (
    DiscoveryTier,
    HolderFilter,
    HolderSnapshot,
    ProgramVariant,
    compute_percentages,
    sort_balances,
    to_raw_amount,
)
from ..retry import RetryController
from ..rpc import TOKEN_ACCOUNT_MINT_OFFSET, TOKEN_ACCOUNT_SIZE, decode_token_account
from .variant import MintProfile, ProgramVariantDetector

logger = logging.getLogger("tributary.discovery.holders")


# Tier order per program variant
TIER_ORDER = {
    ProgramVariant.STANDARD: (
        DiscoveryTier.INDEX_SCAN,
        DiscoveryTier.LARGEST_ACCOUNTS,
        DiscoveryTier.TRANSACTION_HISTORY,
    ),
    ProgramVariant.RESTRICTED_INDEX: (
        DiscoveryTier.LARGEST_ACCOUNTS,
        DiscoveryTier.TRANSACTION_HISTORY,
    ),
}


class HolderDiscoveryService:
    """
    Produces the holder snapshot for a mint.

    Deterministic for identical chain state: holders are ordered by balance
    descending, then by base58 address.
    """

    def __init__(
        self,
        gateway,
        retry: RetryController,
        detector: Optional[ProgramVariantDetector] = None,
        metrics: Optional[DistributionMetrics] = None,
        concurrency: int = 4,
        history_depth: int = 1000,
    ):
        """
        Initialize the service.

        Args:
            gateway: SolanaRpcGateway (or anything with the same coroutines)
            retry: RetryController wrapping every RPC call
            detector: Variant detector (built from gateway and retry if omitted)
            metrics: Records tier fallbacks
            concurrency: Max in-flight account/transaction fetches
            history_depth: Signatures scanned by the history tier
        """
        self.gateway = gateway
        self.retry = retry
        self.detector = detector or ProgramVariantDetector(gateway, retry)
        self.metrics = metrics
        self.concurrency = concurrency
        self.history_depth = history_depth

    @classmethod
    def from_config(
        cls,
        config,
        gateway,
        retry: RetryController,
        metrics: Optional[DistributionMetrics] = None,
    ) -> "HolderDiscoveryService":
        return cls(
            gateway,
            retry,
            metrics=metrics,
            concurrency=config.concurrency,
            history_depth=config.history_depth,
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def collect(
        self,
        mint: AddressLike,
        holder_filter: Optional[HolderFilter] = None,
    ) -> HolderSnapshot:
        """
        Discover all holders of a mint.

        Args:
            mint: Mint identity
            holder_filter: Threshold, exclusions and max holder count

        Returns:
            HolderSnapshot (empty and ``exhausted`` if every tier failed)
        """
        mint_address = Address.parse(mint)
        holder_filter = holder_filter or HolderFilter()

        profile = await self.detector.inspect(mint_address)
        decimals = await self._resolve_decimals(profile)

        if decimals is None and holder_filter.threshold != 0:
            logger.warning(
                f"Decimals unknown for {mint_address.short()}; cannot apply threshold "
                f"{holder_filter.threshold}"
            )
            return self._exhausted(mint_address, profile, decimals)

        threshold_raw = to_raw_amount(holder_filter.threshold, decimals or 0)
        tiers = TIER_ORDER[profile.variant]
        if profile.variant == ProgramVariant.RESTRICTED_INDEX:
            logger.info(f"Mint {mint_address.short()} is restricted-index, skipping index scan")

        for position, tier in enumerate(tiers):
            try:
                balances = await self._run_tier(tier, mint_address, profile)
            except TributaryError as e:
                next_tier = tiers[position + 1] if position + 1 < len(tiers) else DiscoveryTier.NONE
                logger.warning(f"Discovery tier {tier.value} failed for {mint_address.short()}: {e}")
                if self.metrics is not None:
                    self.metrics.record_fallback("collect", tier.value, next_tier.value, str(e))
                continue

            snapshot = HolderSnapshot(
                mint=mint_address,
                holders=self._apply_filter(balances, holder_filter, threshold_raw),
                decimals=decimals,
                variant=profile.variant,
                source=tier,
                approximate=tier == DiscoveryTier.TRANSACTION_HISTORY,
            )
            logger.info(
                f"Collected {len(snapshot)} holders of {mint_address.short()} via {tier.value}"
                f"{' (approximate)' if snapshot.approximate else ''}"
            )
            return snapshot

        logger.warning(f"All discovery tiers failed for {mint_address.short()}")
        return self._exhausted(mint_address, profile, decimals)

    # ========================================================================
    # TIERS
    # ========================================================================

    async def _run_tier(
        self,
        tier: DiscoveryTier,
        mint: Address,
        profile: MintProfile,
    ) -> Dict[Address, int]:
        if tier == DiscoveryTier.INDEX_SCAN:
            return await self._scan_index(mint, profile.program)
        if tier == DiscoveryTier.LARGEST_ACCOUNTS:
            return await self._probe_largest(mint)
        return await self._reconstruct_from_history(mint)

    async def _scan_index(self, mint: Address, program: Address) -> Dict[Address, int]:
        """Tier 1: filtered program-account scan, summed per owner."""
        accounts = await self.retry.run(
            lambda: self.gateway.get_program_accounts(
                program,
                TOKEN_ACCOUNT_SIZE,
                TOKEN_ACCOUNT_MINT_OFFSET,
                Address.parse(mint),
            ),
            "get_program_accounts",
        )
        logger.debug(f"Index scan returned {len(accounts)} token accounts")

        balances: Dict[Address, int] = defaultdict(int)
        for account in accounts:
            try:
                decoded = decode_token_account(account.data)
            except ValidationError as e:
                logger.warning(f"Skipping undecodable account {account.address.short()}: {e}")
                continue
            if decoded.mint != mint or decoded.amount == 0:
                continue
            balances[decoded.owner] += decoded.amount
        return dict(balances)

    async def _probe_largest(self, mint: Address) -> Dict[Address, int]:
        """Tier 2: largest accounts, owners resolved by direct fetch."""
        largest = await self.retry.run(
            lambda: self.gateway.get_largest_accounts(Address.parse(mint)),
            "get_largest_accounts",
        )
        entries = [entry for entry in largest if entry.amount > 0]
        logger.debug(f"Largest-accounts probe returned {len(entries)} non-zero accounts")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def resolve(token_account: Address):
            async with semaphore:
                return await self.retry.run(
                    lambda: self.gateway.get_account(Address.parse(token_account)),
                    "get_account",
                )

        results = await asyncio.gather(
            *(resolve(entry.address) for entry in entries),
            return_exceptions=True,
        )

        balances: Dict[Address, int] = defaultdict(int)
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                raise result
            if result is None:
                logger.warning(f"Token account {entry.address.short()} disappeared, skipping")
                continue
            try:
                decoded = decode_token_account(result.data)
            except ValidationError as e:
                logger.warning(f"Skipping undecodable account {entry.address.short()}: {e}")
                continue
            balances[decoded.owner] += entry.amount
        return dict(balances)

    async def _reconstruct_from_history(self, mint: Address) -> Dict[Address, int]:
        """Tier 3: max post-transaction balance per owner over recent history."""
        signatures = await self.retry.run(
            lambda: self.gateway.get_signatures(Address.parse(mint), self.history_depth),
            "get_signatures",
        )
        logger.debug(f"History scan over {len(signatures)} signatures")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(signature: str):
            async with semaphore:
                try:
                    return await self.retry.run(
                        lambda: self.gateway.get_post_token_balances(signature),
                        "get_transaction",
                    )
                except TributaryError as e:
                    logger.warning(f"Skipping transaction {signature[:8]}...: {e}")
                    return []

        per_transaction = await asyncio.gather(*(fetch(sig) for sig in signatures))

        balances: Dict[Address, int] = {}
        for entries in per_transaction:
            for entry in entries:
                if entry.mint != mint or entry.owner is None:
                    continue
                if entry.amount > balances.get(entry.owner, 0):
                    balances[entry.owner] = entry.amount
        return balances

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _resolve_decimals(self, profile: MintProfile) -> Optional[int]:
        if profile.decimals is not None:
            return profile.decimals
        try:
            info = await self.retry.run(
                lambda: self.gateway.get_mint_info(Address.parse(profile.mint)),
                "get_mint_info",
            )
        except TributaryError as e:
            logger.warning(f"Could not read decimals for {profile.mint.short()}: {e}")
            return None
        return info.decimals if info is not None else None

    def _apply_filter(
        self,
        balances: Dict[Address, int],
        holder_filter: HolderFilter,
        threshold_raw: int,
    ):
        kept = {
            address: balance
            for address, balance in balances.items()
            if address not in holder_filter.exclude_addresses
            and balance > 0
            and balance >= threshold_raw
        }
        ordered: List = sort_balances(kept)
        if holder_filter.max_holders is not None:
            ordered = ordered[:holder_filter.max_holders]
        return compute_percentages(ordered)

    def _exhausted(
        self,
        mint: Address,
        profile: MintProfile,
        decimals: Optional[int],
    ) -> HolderSnapshot:
        return HolderSnapshot(
            mint=mint,
            holders=(),
            decimals=decimals,
            variant=profile.variant,
            source=DiscoveryTier.NONE,
            exhausted=True,
        )
