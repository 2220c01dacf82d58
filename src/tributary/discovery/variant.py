"""
tributary/discovery/variant.py

Token program variant detection.

A mint owned by the Token-2022 program is "restricted-index": its token
accounts are not reachable through the getProgramAccounts scan of the
standard program, so discovery must start at the largest-accounts probe.
Anything else is treated as "standard".
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..address import Address, AddressLike
from ..errors import TributaryError, ValidationError
from ..models import ProgramVariant
from ..retry import RetryController
from ..rpc import TOKEN_2022_PROGRAM, TOKEN_PROGRAM, decode_mint

logger = logging.getLogger("tributary.discovery.variant")


@dataclass(frozen=True)
class MintProfile:
    """What the detector learned about a mint."""
    mint: Address
    variant: ProgramVariant
    program: Address
    decimals: Optional[int] = None
    supply: Optional[int] = None

    @property
    def readable(self) -> bool:
        return self.decimals is not None


class ProgramVariantDetector:
    """
    Determines which token program owns a mint.

    Never raises for chain-side problems: a missing account or an RPC
    failure degrades to the standard variant with a warning.
    """

    def __init__(self, gateway, retry: RetryController):
        self.gateway = gateway
        self.retry = retry

    async def detect(self, mint: AddressLike) -> ProgramVariant:
        profile = await self.inspect(mint)
        return profile.variant

    async def inspect(self, mint: AddressLike) -> MintProfile:
        """
        Fetch the mint account and decode its owner, decimals and supply.

        Args:
            mint: Mint identity

        Returns:
            MintProfile; decimals and supply are None if the account could
            not be read
        """
        mint_address = Address.parse(mint)
        fallback = MintProfile(mint=mint_address, variant=ProgramVariant.STANDARD, program=TOKEN_PROGRAM)

        try:
            account = await self.retry.run(
                lambda: self.gateway.get_account(Address.parse(mint_address)),
                "get_mint_account",
            )
        except TributaryError as e:
            logger.warning(f"Could not fetch mint {mint_address.short()}, assuming standard program: {e}")
            return fallback

        if account is None:
            logger.warning(f"Mint {mint_address.short()} not found, assuming standard program")
            return fallback

        program = account.owner
        if program == TOKEN_2022_PROGRAM:
            variant = ProgramVariant.RESTRICTED_INDEX
        else:
            if program != TOKEN_PROGRAM:
                logger.warning(f"Mint {mint_address.short()} owned by unknown program {program}")
                program = TOKEN_PROGRAM
            variant = ProgramVariant.STANDARD

        try:
            mint_data = decode_mint(account.data)
        except ValidationError as e:
            logger.warning(f"Could not decode mint {mint_address.short()}: {e}")
            return MintProfile(mint=mint_address, variant=variant, program=program)

        logger.debug(
            f"Mint {mint_address.short()}: variant={variant.value} "
            f"decimals={mint_data.decimals} supply={mint_data.supply}"
        )
        return MintProfile(
            mint=mint_address,
            variant=variant,
            program=program,
            decimals=mint_data.decimals,
            supply=mint_data.supply,
        )
