"""
tributary/distribution/engine.py

Facade used by the CLI and automation layers.

Wires one gateway, one RetryController and one metrics instance into
discovery, allocation and batched execution:

    collect() -> allocate() -> BatchExecutor.run() -> DistributionResult

Usage:
    config = resolve_config(env=os.environ)
    async with DistributionEngine(config, authority=keypair) as engine:
        snapshot = await engine.collect(mint)
        request = DistributionRequest.from_ui_amount("100", snapshot.decimals, mint, snapshot.holders)

        preview = engine.simulate(request)
        result = await engine.execute_distribution(request, progress=print)
"""

import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from solders.keypair import Keypair

from ..address import Address, AddressLike
from ..config import TributaryConfig
from ..discovery import HolderDiscoveryService, MintProfile, ProgramVariantDetector
from ..errors import InsufficientFundsError, SigningKeyError, TributaryError, ValidationError
from ..metrics import DistributionMetrics
from ..models import DistributionRequest, DistributionResult, HolderFilter, HolderSnapshot
from ..retry import RetryController
from ..rpc import SolanaRpcGateway
from .allocator import Allocation, allocate
from .executor import BatchExecutor, ProgressCallback
from .ledger import DistributionLedger
from .tx_builder import TransferBuilder

logger = logging.getLogger("tributary.distribution.engine")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class SimulationResult:
    """Allocation preview. Nothing is submitted."""
    allocation: Allocation
    batch_count: int
    estimated_fee: int            # lamports
    estimated_duration: float     # seconds
    risk_factors: List[str] = field(default_factory=list)

    @property
    def recipient_count(self) -> int:
        return len(self.allocation)

    @property
    def min_amount(self) -> int:
        return min(self.allocation.values(), default=0)

    @property
    def max_amount(self) -> int:
        return max(self.allocation.values(), default=0)

    @property
    def average_amount(self) -> int:
        if not self.allocation:
            return 0
        return self.allocation.allocated // len(self.allocation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_amount': self.allocation.total,
            'allocated': self.allocation.allocated,
            'undistributed': self.allocation.undistributed,
            'recipient_count': self.recipient_count,
            'min_amount': self.min_amount,
            'average_amount': self.average_amount,
            'max_amount': self.max_amount,
            'batch_count': self.batch_count,
            'estimated_fee': self.estimated_fee,
            'estimated_duration': self.estimated_duration,
            'risk_factors': list(self.risk_factors),
            'allocation': {str(address): amount for address, amount in self.allocation.items()},
        }


@dataclass
class ValidationReport:
    """Outcome of validate(). Errors block execution; warnings do not."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    required: int = 0
    available: Optional[int] = None

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'required': self.required,
            'available': self.available,
        }


# ============================================================================
# ENGINE
# ============================================================================

class DistributionEngine:
    """
    Holder discovery and token distribution for one network.

    All collaborators are built from the given TributaryConfig unless
    injected. The authority keypair is only needed for validate() and
    execute_distribution().
    """

    def __init__(
        self,
        config: TributaryConfig,
        gateway=None,
        authority: Optional[Keypair] = None,
        metrics: Optional[DistributionMetrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the engine.

        Args:
            config: Resolved configuration
            gateway: RPC gateway (a SolanaRpcGateway for config.endpoint if omitted)
            authority: Distributing wallet keypair
            metrics: Metrics sink (a fresh instance if omitted)
            sleep: Sleep used for retry backoff and batch delay
        """
        self.config = config
        self.gateway = gateway or SolanaRpcGateway.from_config(config)
        self.authority = authority
        self.metrics = metrics or DistributionMetrics()
        self._sleep = sleep

        self.retry = RetryController.from_config(config, self.metrics, sleep=sleep)
        self.detector = ProgramVariantDetector(self.gateway, self.retry)
        self.discovery = HolderDiscoveryService(
            self.gateway,
            self.retry,
            detector=self.detector,
            metrics=self.metrics,
            concurrency=config.concurrency,
            history_depth=config.history_depth,
        )

    # ========================================================================
    # DISCOVERY
    # ========================================================================

    async def collect(
        self,
        mint: AddressLike,
        holder_filter: Optional[HolderFilter] = None,
    ) -> HolderSnapshot:
        """Discover the holders of a mint. See HolderDiscoveryService.collect()."""
        return await self.discovery.collect(mint, holder_filter)

    # ========================================================================
    # PREVIEW
    # ========================================================================

    def allocate(self, request: DistributionRequest) -> Allocation:
        """
        Compute per-recipient amounts.

        The configured ``minimum_balance`` is a floor under the request's own
        ``minimum_amount``: recipients below the larger of the two are dropped.
        """
        return allocate(
            request.holders,
            request.total_amount,
            mode=request.mode,
            minimum_amount=max(request.minimum_amount, self.config.minimum_balance),
            exclude_addresses=request.exclude_addresses,
        )

    def simulate(self, request: DistributionRequest) -> SimulationResult:
        """
        Preview a distribution without touching the chain.

        Returns:
            SimulationResult with the allocation, cost/duration estimates
            and risk factors
        """
        allocation = self.allocate(request)
        batch_count = math.ceil(len(allocation) / self._batch_size(request)) if allocation else 0

        risk = self.config.risk
        risk_factors = []
        if request.total_amount > risk.large_amount:
            risk_factors.append("Large distribution amount may require additional confirmation")
        if len(allocation) > risk.large_recipient_count:
            risk_factors.append("Large number of recipients may result in longer execution time")
        small = sum(1 for amount in allocation.values() if amount < risk.small_amount)
        if small:
            risk_factors.append(f"{small} recipients will receive very small amounts")

        result = SimulationResult(
            allocation=allocation,
            batch_count=batch_count,
            estimated_fee=len(allocation) * self.config.fee_per_transaction,
            estimated_duration=batch_count * self.config.seconds_per_batch,
            risk_factors=risk_factors,
        )
        logger.info(
            f"Simulated distribution: {result.recipient_count} recipients, "
            f"{allocation.allocated}/{allocation.total} allocated, {batch_count} batches"
        )
        return result

    async def validate(self, request: DistributionRequest) -> ValidationReport:
        """
        Check a request against the chain without sending anything.

        Returns:
            ValidationReport; source balance shortfalls are errors,
            duplicate and zero-balance holders are warnings
        """
        report = ValidationReport()

        duplicates = [a for a, n in Counter(h.address for h in request.holders).items() if n > 1]
        if duplicates:
            report.warnings.append(f"Found {len(duplicates)} duplicate recipient addresses")
        zero_balance = sum(1 for h in request.holders if h.balance == 0)
        if zero_balance:
            report.warnings.append(f"Found {zero_balance} recipients with zero balance")

        allocation = self.allocate(request)
        report.required = allocation.allocated
        if not allocation:
            report.warnings.append("No recipient receives a non-zero amount")
            return report

        try:
            builder = await self._prepare_builder(request.mint)
            report.available = await self._source_balance(builder)
        except TributaryError as e:
            report.errors.append(str(e))
            return report

        if report.available < report.required:
            report.errors.append(
                f"Insufficient token balance. Required: {report.required}, Available: {report.available}"
            )
        return report

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def execute_distribution(
        self,
        request: DistributionRequest,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DistributionResult:
        """
        Execute a distribution.

        Args:
            request: The distribution request
            progress: Called after each terminal record
            cancel_event: Set to stop between batches

        Returns:
            Finalized DistributionResult

        Raises:
            SigningKeyError: If no authority keypair is configured
            InsufficientFundsError: If the source account cannot cover the allocation
            ValidationError: If the mint's decimals cannot be verified
        """
        allocation = self.allocate(request)
        builder = await self._prepare_builder(request.mint)
        ledger = DistributionLedger(request.mint)

        if not allocation:
            logger.info("Allocation is empty, nothing to send")
            return ledger.finalize()

        available = await self._source_balance(builder)
        if available < allocation.allocated:
            raise InsufficientFundsError(
                allocation.allocated,
                available,
                {"source": str(builder.source_account), "mint": str(request.mint)},
            )

        executor = BatchExecutor.from_config(
            self.config,
            self.gateway,
            self.retry,
            builder,
            batch_size=request.batch_size,
            sleep=self._sleep,
        )
        logger.info(f"Starting distribution {ledger.result.id} for mint {request.mint.short()}")
        return await executor.run(allocation, ledger, progress=progress, cancel_event=cancel_event)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _batch_size(self, request: DistributionRequest) -> int:
        return min(request.batch_size or self.config.default_batch_size, self.config.max_batch_size)

    async def _prepare_builder(self, mint: Address) -> TransferBuilder:
        if self.authority is None:
            raise SigningKeyError("No authority keypair configured")

        profile: MintProfile = await self.detector.inspect(mint)
        decimals = profile.decimals
        if decimals is None:
            try:
                info = await self.retry.run(
                    lambda: self.gateway.get_mint_info(Address.parse(mint)),
                    "get_mint_info",
                )
            except TributaryError as e:
                raise ValidationError(
                    f"Could not verify decimals of mint {mint}",
                    {"mint": str(mint)},
                ) from e
            if info is None:
                raise ValidationError(f"Could not verify decimals of mint {mint}", {"mint": str(mint)})
            decimals = info.decimals

        return TransferBuilder(self.authority, mint, decimals, profile.program)

    async def _source_balance(self, builder: TransferBuilder) -> int:
        source = builder.source_account
        balance = await self.retry.run(
            lambda: self.gateway.get_token_balance(Address.parse(source)),
            "get_token_balance",
        )
        if balance is None:
            logger.warning(f"Source token account {source.short()} does not exist")
            return 0
        return balance

    def get_stats(self) -> Dict[str, Any]:
        return self.metrics.get_stats()

    async def close(self) -> None:
        await self.gateway.close()

    async def __aenter__(self) -> "DistributionEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
