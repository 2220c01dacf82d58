"""
tributary/discovery - Holder discovery for SPL and Token-2022 mints.
"""

from .holders import HolderDiscoveryService, TIER_ORDER
from .variant import MintProfile, ProgramVariantDetector

__all__ = [
    "HolderDiscoveryService",
    "TIER_ORDER",
    "MintProfile",
    "ProgramVariantDetector",
]
