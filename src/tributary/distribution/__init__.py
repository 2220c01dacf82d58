"""
tributary/distribution/

Allocation and batched execution of token distributions.
"""

from .allocator import Allocation, allocate

from .ledger import DistributionLedger

from .tx_builder import TransferBuilder

from .executor import (
    BatchExecutor,
    CANCELLED_ERROR,
    partition,
)

from .engine import (
    DistributionEngine,
    SimulationResult,
    ValidationReport,
)

__all__ = [
    # Allocation
    "Allocation",
    "allocate",
    # Execution
    "BatchExecutor",
    "CANCELLED_ERROR",
    "DistributionLedger",
    "TransferBuilder",
    "partition",
    # Facade
    "DistributionEngine",
    "SimulationResult",
    "ValidationReport",
]
