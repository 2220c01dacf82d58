"""
Tests for tributary/distribution/tx_builder.py

Builds real solders transactions offline; nothing is sent.
"""

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import decode_transfer_checked, get_associated_token_address

from tributary.address import Address
from tributary.distribution.tx_builder import TransferBuilder
from tributary.errors import SigningKeyError, ValidationError
from tributary.rpc import TOKEN_2022_PROGRAM, TOKEN_PROGRAM

from conftest import make_address


@pytest.fixture
def builder(authority, mint):
    return TransferBuilder(authority, mint, decimals=6, program=TOKEN_PROGRAM)


# ============================================================================
# CONSTRUCTION
# ============================================================================

class TestTransferBuilderInit:
    """Tests for builder construction."""

    def test_missing_authority(self, mint):
        with pytest.raises(SigningKeyError):
            TransferBuilder(None, mint, decimals=6, program=TOKEN_PROGRAM)

    def test_invalid_decimals(self, authority, mint):
        with pytest.raises(ValidationError):
            TransferBuilder(authority, mint, decimals=None, program=TOKEN_PROGRAM)

    def test_authority_address(self, builder, authority):
        assert builder.authority == Address.parse(authority.pubkey())


# ============================================================================
# ASSOCIATED ACCOUNTS
# ============================================================================

class TestAssociatedAccounts:

    def test_matches_spl_derivation(self, builder, mint):
        owner = Keypair().pubkey()
        expected = get_associated_token_address(owner, mint.to_pubkey(), token_program_id=TOKEN_PROGRAM_ID)
        assert builder.associated_account(Address.parse(owner)) == Address.parse(expected)

    def test_program_changes_derivation(self, authority, mint):
        """Token-2022 accounts derive to different addresses."""
        owner = make_address(7)
        standard = TransferBuilder(authority, mint, 6, TOKEN_PROGRAM).associated_account(owner)
        extended = TransferBuilder(authority, mint, 6, TOKEN_2022_PROGRAM).associated_account(owner)
        assert standard != extended

    def test_source_account(self, builder, authority, mint):
        expected = get_associated_token_address(authority.pubkey(), mint.to_pubkey(), token_program_id=TOKEN_PROGRAM_ID)
        assert builder.source_account == Address.parse(expected)


# ============================================================================
# INSTRUCTIONS
# ============================================================================

class TestInstructions:
    """Tests for instruction assembly."""

    def test_transfer_only(self, builder):
        ixs = builder.instructions(make_address(7), 1500, create_account=False)
        assert len(ixs) == 1
        assert ixs[0].program_id == TOKEN_PROGRAM_ID

    def test_transfer_checked_fields(self, builder, mint):
        recipient = make_address(7)
        ix = builder.instructions(recipient, 1500, create_account=False)[0]

        params = decode_transfer_checked(ix)
        assert params.amount == 1500
        assert params.decimals == 6
        assert params.mint == mint.to_pubkey()
        assert params.dest == builder.associated_account(recipient).to_pubkey()
        assert params.source == builder.source_account.to_pubkey()

    def test_create_account_prepended(self, builder):
        ixs = builder.instructions(make_address(7), 1500, create_account=True)
        assert len(ixs) == 2
        assert ixs[0].program_id == ASSOCIATED_TOKEN_PROGRAM_ID
        assert ixs[1].program_id == TOKEN_PROGRAM_ID

    def test_token_2022_program(self, authority, mint):
        builder = TransferBuilder(authority, mint, 9, TOKEN_2022_PROGRAM)
        ix = builder.instructions(make_address(7), 5, create_account=False)[0]
        assert ix.program_id == TOKEN_2022_PROGRAM_ID

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount(self, builder, amount):
        with pytest.raises(ValidationError):
            builder.instructions(make_address(7), amount, create_account=False)


# ============================================================================
# SIGNING
# ============================================================================

class TestBuild:

    def test_signed_by_authority(self, builder, authority):
        blockhash = Hash.new_unique()
        tx = builder.build(make_address(7), 1500, create_account=True, blockhash=blockhash)

        assert tx.message.account_keys[0] == authority.pubkey()
        assert tx.message.recent_blockhash == blockhash
        assert len(tx.signatures) == 1
        assert tx.signatures[0] != Signature.default()

    def test_same_inputs_same_signature(self, builder):
        """Signing is deterministic, so a resend keeps its signature."""
        blockhash = Hash.new_unique()
        first = builder.build(make_address(7), 10, create_account=False, blockhash=blockhash)
        second = builder.build(make_address(7), 10, create_account=False, blockhash=blockhash)
        assert first.signatures[0] == second.signatures[0]
