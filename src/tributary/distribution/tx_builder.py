"""
tributary/distribution/tx_builder.py

Transfer transaction builder using solders + spl-token instructions.

Builds one signed transaction per recipient:
- optional create-associated-token-account instruction
- transfer_checked with the mint's verified decimals

The authority keypair pays fees and signs. Keys cross into library calls
as fresh Pubkeys built from Address values.
"""

import logging
from typing import List

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.transaction import Transaction
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from ..address import Address
from ..errors import SigningKeyError, ValidationError

logger = logging.getLogger("tributary.distribution.tx_builder")


class TransferBuilder:
    """
    Builds and signs token transfers from the authority's associated account.

    Example:
        builder = TransferBuilder(authority, mint, decimals=6, program=TOKEN_PROGRAM)
        tx = builder.build(recipient, 1_000_000, create_account=True, blockhash=blockhash)
    """

    def __init__(self, authority: Keypair, mint: Address, decimals: int, program: Address):
        """
        Initialize the builder.

        Args:
            authority: Distributing wallet keypair (fee payer and token owner)
            mint: Token mint
            decimals: Verified mint decimals for transfer_checked
            program: Token program owning the mint

        Raises:
            SigningKeyError: If no usable keypair was given
        """
        if not isinstance(authority, Keypair):
            raise SigningKeyError("Authority keypair is missing or not a Keypair")
        if decimals is None or not 0 <= decimals <= 255:
            raise ValidationError(f"Invalid mint decimals: {decimals}")
        self._authority = authority
        self.mint = Address.parse(mint)
        self.decimals = decimals
        self.program = Address.parse(program)

    @property
    def authority(self) -> Address:
        return Address.parse(self._authority.pubkey())

    @property
    def source_account(self) -> Address:
        """Authority's associated token account for the mint."""
        return self.associated_account(self.authority)

    def associated_account(self, owner: Address) -> Address:
        """Derive an owner's associated token account for the mint."""
        ata = get_associated_token_address(
            Address.parse(owner).to_pubkey(),
            self.mint.to_pubkey(),
            token_program_id=self.program.to_pubkey(),
        )
        return Address.parse(ata)

    def instructions(self, recipient: Address, amount: int, create_account: bool) -> List[Instruction]:
        """
        Instructions for one transfer.

        Args:
            recipient: Recipient wallet (owner, not token account)
            amount: Raw units
            create_account: Prepend creation of the recipient's associated account
        """
        if amount <= 0:
            raise ValidationError(f"Transfer amount must be positive: {amount}")

        recipient = Address.parse(recipient)
        destination = self.associated_account(recipient)
        authority = self._authority.pubkey()
        program_id = self.program.to_pubkey()

        ixs: List[Instruction] = []
        if create_account:
            ixs.append(
                create_associated_token_account(
                    payer=authority,
                    owner=recipient.to_pubkey(),
                    mint=self.mint.to_pubkey(),
                    token_program_id=program_id,
                )
            )

        ixs.append(
            transfer_checked(
                TransferCheckedParams(
                    program_id=program_id,
                    source=self.source_account.to_pubkey(),
                    mint=self.mint.to_pubkey(),
                    dest=destination.to_pubkey(),
                    owner=authority,
                    amount=amount,
                    decimals=self.decimals,
                    signers=[],
                )
            )
        )
        return ixs

    def build(
        self,
        recipient: Address,
        amount: int,
        create_account: bool,
        blockhash: Hash,
    ) -> Transaction:
        """Build and sign a transfer transaction."""
        ixs = self.instructions(recipient, amount, create_account)
        tx = Transaction.new_signed_with_payer(
            ixs,
            self._authority.pubkey(),
            [self._authority],
            blockhash,
        )
        logger.debug(
            f"Built transfer of {amount} to {Address.parse(recipient).short()} "
            f"({len(ixs)} instructions)"
        )
        return tx
