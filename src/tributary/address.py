"""
tributary/address.py

Account identity as a plain value.

An Address is exactly 32 bytes and nothing else. It is built through
``Address.parse()`` only, and converted to a library ``Pubkey`` freshly at
every call into solana/solders code. Nothing passes library key objects
between layers, so no library object can lose its serialization behavior
on the way.
"""

from dataclasses import dataclass
from typing import Union

import base58
from solders.pubkey import Pubkey

from .errors import ValidationError


ADDRESS_LENGTH = 32

AddressLike = Union["Address", str, bytes, Pubkey]


@dataclass(frozen=True, order=True)
class Address:
    """Validated 32-byte account identity."""
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, bytes) or len(self.raw) != ADDRESS_LENGTH:
            raise ValidationError(
                f"Address must be {ADDRESS_LENGTH} bytes",
                {"length": len(self.raw) if isinstance(self.raw, (bytes, bytearray)) else None},
            )

    @classmethod
    def parse(cls, value: AddressLike) -> "Address":
        """
        Build an Address from any canonical input.

        Args:
            value: base58 string, 32 raw bytes, Address or solders Pubkey

        Returns:
            Address

        Raises:
            ValidationError: if the value is not a valid 32-byte identity
        """
        if isinstance(value, Address):
            return cls(bytes(value.raw))
        if isinstance(value, Pubkey):
            return cls(bytes(value))
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        if isinstance(value, str):
            text = value.strip()
            if not text:
                raise ValidationError("Address string is empty")
            try:
                decoded = base58.b58decode(text)
            except ValueError as e:
                raise ValidationError(f"Invalid base58 address: {value}", {"address": value}) from e
            if len(decoded) != ADDRESS_LENGTH:
                raise ValidationError(f"Invalid address length: {value}", {"address": value})
            return cls(decoded)
        raise ValidationError(f"Unsupported address type: {type(value).__name__}")

    def to_pubkey(self) -> Pubkey:
        """Fresh solders Pubkey for a single library call."""
        return Pubkey.from_bytes(self.raw)

    def to_base58(self) -> str:
        return base58.b58encode(self.raw).decode("ascii")

    def short(self) -> str:
        text = self.to_base58()
        return f"{text[:4]}...{text[-4:]}"

    def __str__(self) -> str:
        return self.to_base58()

    def __repr__(self) -> str:
        return f"Address('{self.to_base58()}')"


def is_valid_address(value: AddressLike) -> bool:
    """Check an address without raising."""
    try:
        Address.parse(value)
        return True
    except ValidationError:
        return False
