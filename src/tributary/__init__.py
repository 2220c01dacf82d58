"""
tributary - Token holder discovery and batched distribution for Solana

Built on solana-py/solders with:
- Program variant detection (SPL Token vs Token-2022)
- Three-tier holder discovery (index scan, largest accounts, history)
- Exact integer allocation (equal or proportional)
- Batched, retried transfers with per-recipient failure isolation
- Auditable distribution results

Usage:
    import os
    from tributary import DistributionEngine, DistributionRequest, resolve_config

    config = resolve_config(env=os.environ)

    async with DistributionEngine(config, authority=keypair) as engine:
        snapshot = await engine.collect("MintAddress...")

        request = DistributionRequest.from_ui_amount(
            "1000", snapshot.decimals, snapshot.mint, snapshot.holders,
        )
        result = await engine.execute_distribution(request)

        print(result.to_dict())
"""

from .address import Address, is_valid_address
from .config import (
    TributaryConfig,
    RiskThresholds,
    resolve_config,
    load_parameters_file,
)
from .errors import (
    ErrorCodes,
    TributaryError,
    NetworkError,
    RpcTimeoutError,
    RetryExhaustedError,
    ValidationError,
    ConfigurationError,
    AuthenticationError,
    SigningKeyError,
    ResourceError,
    InsufficientFundsError,
    TransactionRejectedError,
    DataIntegrityError,
    LedgerClosedError,
    InvalidTransitionError,
)
from .metrics import DistributionMetrics
from .models import (
    TokenHolder,
    HolderFilter,
    HolderSnapshot,
    DiscoveryTier,
    ProgramVariant,
    DistributionMode,
    DistributionRequest,
    DistributionResult,
    DistributionStatus,
    DistributionProgress,
    TransactionRecord,
    RecordStatus,
)
from .retry import RetryConfig, RetryController
from .rpc import SolanaRpcGateway
from .discovery import HolderDiscoveryService, ProgramVariantDetector, MintProfile
from .distribution import (
    Allocation,
    allocate,
    BatchExecutor,
    DistributionLedger,
    TransferBuilder,
    DistributionEngine,
    SimulationResult,
    ValidationReport,
)

__version__ = "1.0.0"
__all__ = [
    # Core
    "DistributionEngine",
    "SimulationResult",
    "ValidationReport",
    "Address",
    "is_valid_address",
    # Config
    "TributaryConfig",
    "RiskThresholds",
    "resolve_config",
    "load_parameters_file",
    # Errors
    "ErrorCodes",
    "TributaryError",
    "NetworkError",
    "RpcTimeoutError",
    "RetryExhaustedError",
    "ValidationError",
    "ConfigurationError",
    "AuthenticationError",
    "SigningKeyError",
    "ResourceError",
    "InsufficientFundsError",
    "TransactionRejectedError",
    "DataIntegrityError",
    "LedgerClosedError",
    "InvalidTransitionError",
    # Metrics & Retry
    "DistributionMetrics",
    "RetryConfig",
    "RetryController",
    # Model
    "TokenHolder",
    "HolderFilter",
    "HolderSnapshot",
    "DiscoveryTier",
    "ProgramVariant",
    "DistributionMode",
    "DistributionRequest",
    "DistributionResult",
    "DistributionStatus",
    "DistributionProgress",
    "TransactionRecord",
    "RecordStatus",
    # Components
    "SolanaRpcGateway",
    "HolderDiscoveryService",
    "ProgramVariantDetector",
    "MintProfile",
    "Allocation",
    "allocate",
    "BatchExecutor",
    "DistributionLedger",
    "TransferBuilder",
]
