"""
tributary/rpc/client.py

Solana JSON-RPC gateway used by discovery and distribution.

Wraps solana-py's AsyncClient and hands back plain values: Address,
int, bytes and small dataclasses. Library objects (Pubkey, responses)
never leave this module except for the Hash/Transaction types that the
transaction builder needs.

Provides:
- Account fetches and filtered program-account scans
- Largest-accounts and transaction-history queries for a mint
- Mint supply/decimals and token balances
- Blockhash, transaction submission, confirmation and status lookup
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import MemcmpOpts, TxOpts
from solders.hash import Hash
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from ..address import Address
from ..config import COMMITMENTS
from ..errors import NetworkError, TransactionRejectedError

logger = logging.getLogger("tributary.rpc.client")

T = TypeVar("T")

# Node reply to a resend of a transaction it has already executed
ALREADY_PROCESSED = "already been processed"

# Send failures worth resending; any other send error is a rejection
TRANSIENT_SEND_ERRORS = (
    "Blockhash not found",
    "Node is behind",
    "node is unhealthy",
)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class AccountInfo:
    """An on-chain account."""
    address: Address
    owner: Address
    data: bytes
    lamports: int


@dataclass(frozen=True)
class LargestAccount:
    """Entry of the largest-token-accounts view."""
    address: Address
    amount: int


@dataclass(frozen=True)
class TokenBalanceEntry:
    """A post-transaction token balance."""
    mint: Address
    owner: Optional[Address]
    amount: int


@dataclass(frozen=True)
class MintInfo:
    """Supply and precision of a mint."""
    supply: int
    decimals: int


@dataclass(frozen=True)
class BlockhashInfo:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class SignatureStatus:
    """Status of a submitted transaction as seen by the node."""
    signature: str
    level: str                  # processed, confirmed or finalized
    confirmed: bool             # level reaches the gateway commitment
    err: Optional[str] = None   # execution error, if the transaction failed


def _confirmation_level(status) -> str:
    level = status.confirmation_status
    if level is None:
        # Older nodes omit the level; no confirmation count means rooted
        return "finalized" if status.confirmations is None else "processed"
    if level == TransactionConfirmationStatus.Finalized:
        return "finalized"
    if level == TransactionConfirmationStatus.Confirmed:
        return "confirmed"
    return "processed"


# ============================================================================
# GATEWAY
# ============================================================================

class SolanaRpcGateway:
    """
    Async Solana RPC gateway.

    One instance wraps one node connection and is shared by every probe of
    a run. Transport and RPC errors surface as NetworkError so the
    RetryController can handle them uniformly. A transaction the node
    refuses surfaces as TransactionRejectedError and is never retried.

    Example:
        gateway = SolanaRpcGateway("https://api.devnet.solana.com")

        info = await gateway.get_mint_info(mint)
        accounts = await gateway.get_largest_accounts(mint)

        await gateway.close()
    """

    def __init__(
        self,
        endpoint: str,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        client: Optional[AsyncClient] = None,
    ):
        """
        Initialize the gateway.

        Args:
            endpoint: RPC URL
            commitment: Commitment level for reads and confirmations
            timeout: HTTP timeout in seconds
            client: Pre-built AsyncClient (mainly for tests)
        """
        self.endpoint = endpoint
        self.commitment = Commitment(commitment)
        self.timeout = timeout
        self._client = client or AsyncClient(endpoint, commitment=self.commitment, timeout=timeout)

    @classmethod
    def from_config(cls, config) -> "SolanaRpcGateway":
        """Build from a TributaryConfig."""
        return cls(config.endpoint, commitment=config.commitment, timeout=config.request_timeout)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self._client.close()

    async def _call(self, method: str, request: Callable[[], Awaitable[T]]) -> T:
        """
        Run one RPC request and normalize its errors.

        Raises:
            NetworkError: On transport or server error
        """
        try:
            return await request()
        except (SolanaRpcException, RPCException, httpx.HTTPError) as e:
            raise NetworkError(f"RPC {method} failed: {e}", {"method": method}) from e

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    async def get_account(self, address: Address) -> Optional[AccountInfo]:
        """
        Fetch an account.

        Returns:
            AccountInfo, or None if the account does not exist
        """
        resp = await self._call(
            "getAccountInfo",
            lambda: self._client.get_account_info(address.to_pubkey(), encoding="base64"),
        )
        account = resp.value
        if account is None:
            return None
        return AccountInfo(
            address=address,
            owner=Address.parse(bytes(account.owner)),
            data=bytes(account.data),
            lamports=account.lamports,
        )

    async def get_program_accounts(
        self,
        program: Address,
        data_size: int,
        memcmp_offset: int,
        memcmp_value: Address,
    ) -> List[AccountInfo]:
        """
        Scan accounts owned by a program with size and memcmp filters.

        Args:
            program: Owning program
            data_size: Exact account data size
            memcmp_offset: Byte offset of the compared field
            memcmp_value: Expected 32-byte value at that offset
        """
        filters: List[Any] = [
            data_size,
            MemcmpOpts(offset=memcmp_offset, bytes=memcmp_value.to_base58()),
        ]
        resp = await self._call(
            "getProgramAccounts",
            lambda: self._client.get_program_accounts(
                program.to_pubkey(),
                encoding="base64",
                filters=filters,
            ),
        )
        return [
            AccountInfo(
                address=Address.parse(bytes(keyed.pubkey)),
                owner=Address.parse(bytes(keyed.account.owner)),
                data=bytes(keyed.account.data),
                lamports=keyed.account.lamports,
            )
            for keyed in resp.value
        ]

    # ========================================================================
    # TOKEN QUERIES
    # ========================================================================

    async def get_largest_accounts(self, mint: Address) -> List[LargestAccount]:
        """Largest token accounts for a mint (at most 20, chain-defined)."""
        resp = await self._call(
            "getTokenLargestAccounts",
            lambda: self._client.get_token_largest_accounts(mint.to_pubkey()),
        )
        return [
            LargestAccount(address=Address.parse(bytes(entry.address)), amount=int(entry.amount.amount))
            for entry in resp.value
        ]

    async def get_mint_info(self, mint: Address) -> MintInfo:
        """Supply and decimals of a mint."""
        resp = await self._call(
            "getTokenSupply",
            lambda: self._client.get_token_supply(mint.to_pubkey()),
        )
        return MintInfo(supply=int(resp.value.amount), decimals=resp.value.decimals)

    async def get_token_balance(self, token_account: Address) -> Optional[int]:
        """
        Raw balance of a token account.

        Returns:
            Balance in base units, or None if the account does not exist
        """
        if await self.get_account(token_account) is None:
            return None
        resp = await self._call(
            "getTokenAccountBalance",
            lambda: self._client.get_token_account_balance(token_account.to_pubkey()),
        )
        return int(resp.value.amount)

    # ========================================================================
    # HISTORY
    # ========================================================================

    async def get_signatures(self, address: Address, limit: int = 1000) -> List[str]:
        """Recent transaction signatures referencing an address, newest first."""
        resp = await self._call(
            "getSignaturesForAddress",
            lambda: self._client.get_signatures_for_address(address.to_pubkey(), limit=limit),
        )
        return [str(entry.signature) for entry in resp.value]

    async def get_post_token_balances(self, signature: str) -> List[TokenBalanceEntry]:
        """
        Post-transaction token balances of one transaction.

        Returns:
            Balance entries; empty if the transaction is unknown or has no meta
        """
        sig = Signature.from_string(signature)
        resp = await self._call(
            "getTransaction",
            lambda: self._client.get_transaction(
                sig,
                encoding="json",
                max_supported_transaction_version=0,
            ),
        )
        if resp.value is None or resp.value.transaction.meta is None:
            return []

        balances = resp.value.transaction.meta.post_token_balances or []
        return [
            TokenBalanceEntry(
                mint=Address.parse(bytes(entry.mint)),
                owner=Address.parse(bytes(entry.owner)) if entry.owner is not None else None,
                amount=int(entry.ui_token_amount.amount),
            )
            for entry in balances
        ]

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    async def get_latest_blockhash(self) -> BlockhashInfo:
        resp = await self._call(
            "getLatestBlockhash",
            lambda: self._client.get_latest_blockhash(self.commitment),
        )
        return BlockhashInfo(
            blockhash=resp.value.blockhash,
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    async def send_transaction(
        self,
        transaction: Transaction,
        last_valid_block_height: Optional[int] = None,
    ) -> str:
        """
        Submit a signed transaction and wait for the configured commitment.

        A resend of a transaction the node already executed is not an error:
        the existing execution is confirmed instead.

        Returns:
            Transaction signature (base58)

        Raises:
            NetworkError: If submission or confirmation fails in transit
            TransactionRejectedError: If preflight rejects the transaction or
                it executed with an error
        """
        opts = TxOpts(skip_confirmation=True, preflight_commitment=self.commitment)
        try:
            resp = await self._client.send_transaction(transaction, opts=opts)
            signature = resp.value
        except RPCException as e:
            signature = self._resolve_send_error(transaction, e)
        except (SolanaRpcException, httpx.HTTPError) as e:
            raise NetworkError(f"RPC sendTransaction failed: {e}", {"method": "sendTransaction"}) from e

        try:
            status = await self._call(
                "confirmTransaction",
                lambda: self._client.confirm_transaction(
                    signature,
                    self.commitment,
                    last_valid_block_height=last_valid_block_height,
                ),
            )
        except UnconfirmedTxError as e:
            raise NetworkError(
                f"Transaction {signature} not confirmed: {e}",
                {"signature": str(signature)},
            ) from e

        statuses = status.value or []
        if statuses and statuses[0] is not None and statuses[0].err is not None:
            raise TransactionRejectedError(
                f"Transaction {signature} failed: {statuses[0].err}",
                {"signature": str(signature)},
            )

        logger.info(f"Transaction confirmed: {signature}")
        return str(signature)

    def _resolve_send_error(self, transaction: Transaction, error: RPCException) -> Signature:
        message = str(error)
        if ALREADY_PROCESSED in message:
            signature = transaction.signatures[0]
            logger.info(f"Transaction {signature} already processed, confirming existing execution")
            return signature
        if any(marker in message for marker in TRANSIENT_SEND_ERRORS):
            raise NetworkError(f"RPC sendTransaction failed: {message}", {"method": "sendTransaction"}) from error
        raise TransactionRejectedError(
            f"Transaction rejected: {message}",
            {"method": "sendTransaction"},
        ) from error

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """
        Look up a submitted transaction.

        Returns:
            SignatureStatus, or None if the node has no record of it
        """
        resp = await self._call(
            "getSignatureStatuses",
            lambda: self._client.get_signature_statuses(
                [Signature.from_string(signature)],
                search_transaction_history=True,
            ),
        )
        status = resp.value[0] if resp.value else None
        if status is None:
            return None

        level = _confirmation_level(status)
        return SignatureStatus(
            signature=signature,
            level=level,
            confirmed=COMMITMENTS.index(level) >= COMMITMENTS.index(self.commitment),
            err=str(status.err) if status.err is not None else None,
        )

    # ========================================================================
    # CONTEXT MANAGER
    # ========================================================================

    async def __aenter__(self) -> "SolanaRpcGateway":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
