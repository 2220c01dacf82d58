"""
tributary/rpc/layout.py

Byte layouts of SPL token accounts and mints.

Both token programs share the same base layouts; Token-2022 appends
extension data after them, which is ignored here.

Token account (165 bytes base):
    0..32   mint
    32..64  owner
    64..72  amount (u64 little-endian)

Mint (82 bytes base):
    0..36   mint authority (COption<Pubkey>)
    36..44  supply (u64 little-endian)
    44      decimals (u8)
    45      is_initialized (bool)
"""

import struct
from dataclasses import dataclass

from ..address import Address
from ..errors import ValidationError


TOKEN_ACCOUNT_SIZE = 165
TOKEN_ACCOUNT_MINT_OFFSET = 0
TOKEN_ACCOUNT_OWNER_OFFSET = 32
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64
TOKEN_ACCOUNT_STATE_OFFSET = 108

MINT_SIZE = 82
MINT_SUPPLY_OFFSET = 36
MINT_DECIMALS_OFFSET = 44
MINT_INITIALIZED_OFFSET = 45


@dataclass(frozen=True)
class TokenAccountData:
    """Decoded base fields of a token account."""
    mint: Address
    owner: Address
    amount: int


@dataclass(frozen=True)
class MintData:
    """Decoded base fields of a mint."""
    supply: int
    decimals: int
    is_initialized: bool


def decode_token_account(data: bytes) -> TokenAccountData:
    """
    Decode a token account.

    Raises:
        ValidationError: if the data is too short to be a token account
    """
    if len(data) < TOKEN_ACCOUNT_AMOUNT_OFFSET + 8:
        raise ValidationError(
            f"Token account data too short: {len(data)} bytes",
            {"length": len(data)},
        )
    mint = Address.parse(data[TOKEN_ACCOUNT_MINT_OFFSET:TOKEN_ACCOUNT_MINT_OFFSET + 32])
    owner = Address.parse(data[TOKEN_ACCOUNT_OWNER_OFFSET:TOKEN_ACCOUNT_OWNER_OFFSET + 32])
    (amount,) = struct.unpack_from("<Q", data, TOKEN_ACCOUNT_AMOUNT_OFFSET)
    return TokenAccountData(mint=mint, owner=owner, amount=amount)


def decode_mint(data: bytes) -> MintData:
    """
    Decode a mint account.

    Raises:
        ValidationError: if the data is too short to be a mint
    """
    if len(data) < MINT_SIZE:
        raise ValidationError(f"Mint data too short: {len(data)} bytes", {"length": len(data)})
    (supply,) = struct.unpack_from("<Q", data, MINT_SUPPLY_OFFSET)
    decimals = data[MINT_DECIMALS_OFFSET]
    is_initialized = data[MINT_INITIALIZED_OFFSET] == 1
    return MintData(supply=supply, decimals=decimals, is_initialized=is_initialized)


def encode_token_account(mint: Address, owner: Address, amount: int) -> bytes:
    """Build base token-account bytes in the initialized state."""
    data = bytearray(TOKEN_ACCOUNT_SIZE)
    data[TOKEN_ACCOUNT_MINT_OFFSET:TOKEN_ACCOUNT_MINT_OFFSET + 32] = mint.raw
    data[TOKEN_ACCOUNT_OWNER_OFFSET:TOKEN_ACCOUNT_OWNER_OFFSET + 32] = owner.raw
    struct.pack_into("<Q", data, TOKEN_ACCOUNT_AMOUNT_OFFSET, amount)
    data[TOKEN_ACCOUNT_STATE_OFFSET] = 1
    return bytes(data)


def encode_mint(supply: int, decimals: int) -> bytes:
    """Build mint bytes with no authorities."""
    data = bytearray(MINT_SIZE)
    struct.pack_into("<Q", data, MINT_SUPPLY_OFFSET, supply)
    data[MINT_DECIMALS_OFFSET] = decimals
    data[MINT_INITIALIZED_OFFSET] = 1
    return bytes(data)
