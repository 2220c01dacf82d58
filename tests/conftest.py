"""
Shared fixtures for tributary tests.

FakeGateway mimics SolanaRpcGateway with in-memory chain state so the
discovery and execution paths run without a node.
"""

from typing import Dict, List, Optional, Set

import pytest
from solders.hash import Hash
from solders.keypair import Keypair

from tributary.address import Address
from tributary.errors import TransactionRejectedError
from tributary.retry import RetryConfig, RetryController
from tributary.rpc import (
    TOKEN_PROGRAM,
    AccountInfo,
    BlockhashInfo,
    LargestAccount,
    MintInfo,
    SignatureStatus,
    TokenBalanceEntry,
    encode_mint,
    encode_token_account,
)


def make_address(n: int) -> Address:
    """Deterministic test address."""
    return Address(bytes([n]) * 32)


async def no_sleep(delay: float) -> None:
    return None


class FakeGateway:
    """In-memory stand-in for SolanaRpcGateway."""

    def __init__(self):
        self.accounts: Dict[Address, AccountInfo] = {}
        self.program_accounts: List[AccountInfo] = []
        self.largest: List[LargestAccount] = []
        self.signatures: List[str] = []
        self.post_balances: Dict[str, List[TokenBalanceEntry]] = {}
        self.mint_info: Optional[MintInfo] = None
        self.token_balances: Dict[Address, int] = {}
        self.failures: Dict[str, Exception] = {}
        self.reject_accounts: Set[Address] = set()
        self.calls: List[str] = []
        self.sent: List = []
        self.statuses: Dict[str, SignatureStatus] = {}
        self.closed = False

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    # chain setup helpers

    def add_mint(self, mint: Address, decimals: int = 6, supply: int = 10**15, program: Address = TOKEN_PROGRAM):
        self.accounts[mint] = AccountInfo(
            address=mint,
            owner=program,
            data=encode_mint(supply, decimals),
            lamports=1_000_000,
        )

    def add_token_account(self, account: Address, mint: Address, owner: Address, amount: int,
                          program: Address = TOKEN_PROGRAM):
        info = AccountInfo(
            address=account,
            owner=program,
            data=encode_token_account(mint, owner, amount),
            lamports=2_039_280,
        )
        self.accounts[account] = info
        self.program_accounts.append(info)
        self.largest.append(LargestAccount(address=account, amount=amount))
        self.largest.sort(key=lambda entry: -entry.amount)

    # gateway surface

    async def get_account(self, address):
        self._enter("get_account")
        return self.accounts.get(address)

    async def get_program_accounts(self, program, data_size, memcmp_offset, memcmp_value):
        self._enter("get_program_accounts")
        return list(self.program_accounts)

    async def get_largest_accounts(self, mint):
        self._enter("get_largest_accounts")
        return list(self.largest)

    async def get_signatures(self, address, limit=1000):
        self._enter("get_signatures")
        return self.signatures[:limit]

    async def get_post_token_balances(self, signature):
        self._enter("get_post_token_balances")
        return self.post_balances.get(signature, [])

    async def get_mint_info(self, mint):
        self._enter("get_mint_info")
        return self.mint_info

    async def get_token_balance(self, token_account):
        self._enter("get_token_balance")
        return self.token_balances.get(token_account)

    async def get_latest_blockhash(self):
        self._enter("get_latest_blockhash")
        return BlockhashInfo(blockhash=Hash.default(), last_valid_block_height=1000)

    async def send_transaction(self, transaction, last_valid_block_height=None):
        self._enter("send_transaction")
        keys = {Address.parse(key) for key in transaction.message.account_keys}
        if keys & self.reject_accounts:
            raise TransactionRejectedError("custom program error: 0x1")
        signature = str(transaction.signatures[0])
        if signature not in self.statuses:
            self.sent.append(transaction)
            self.statuses[signature] = SignatureStatus(signature=signature, level="confirmed", confirmed=True)
        return signature

    async def get_signature_status(self, signature):
        self._enter("get_signature_status")
        return self.statuses.get(signature)

    async def close(self):
        self.closed = True


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def retry():
    return RetryController(RetryConfig(max_attempts=3, base_delay=0.0, attempt_timeout=5.0), sleep=no_sleep)


@pytest.fixture
def authority():
    return Keypair()


@pytest.fixture
def mint():
    return make_address(200)
