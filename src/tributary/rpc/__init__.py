"""
tributary/rpc - Solana RPC gateway and SPL byte layouts.

The gateway is the only place that talks to a node. Everything it returns
is a plain value (Address, int, bytes or a small dataclass).
"""

from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from ..address import Address
from .client import (
    AccountInfo,
    BlockhashInfo,
    LargestAccount,
    MintInfo,
    SignatureStatus,
    SolanaRpcGateway,
    TokenBalanceEntry,
)
from .layout import (
    TOKEN_ACCOUNT_SIZE,
    TOKEN_ACCOUNT_MINT_OFFSET,
    MintData,
    TokenAccountData,
    decode_mint,
    decode_token_account,
    encode_mint,
    encode_token_account,
)

# Program identities as plain Address values
TOKEN_PROGRAM = Address.parse(TOKEN_PROGRAM_ID)
TOKEN_2022_PROGRAM = Address.parse(TOKEN_2022_PROGRAM_ID)

__all__ = [
    # Gateway
    "SolanaRpcGateway",
    "AccountInfo",
    "BlockhashInfo",
    "LargestAccount",
    "MintInfo",
    "SignatureStatus",
    "TokenBalanceEntry",
    # Layouts
    "TOKEN_ACCOUNT_SIZE",
    "TOKEN_ACCOUNT_MINT_OFFSET",
    "MintData",
    "TokenAccountData",
    "decode_mint",
    "decode_token_account",
    "encode_mint",
    "encode_token_account",
    # Programs
    "TOKEN_PROGRAM",
    "TOKEN_2022_PROGRAM",
]
