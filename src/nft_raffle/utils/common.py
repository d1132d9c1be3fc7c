"""Common address helpers for the raffle backend."""

from __future__ import annotations

from web3 import Web3

from nft_raffle.lottery.errors import InvalidAddress


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksummed form of ``address``.

    Accepts addresses with or without the '0x' prefix, in any case.
    Raises InvalidAddress for anything that is not a 20-byte hex address.
    """
    if not isinstance(address, str) or not address:
        raise InvalidAddress(f"Invalid address: {address!r}")
    if not address.startswith("0x"):
        address = "0x" + address
    if not Web3.is_address(address):
        raise InvalidAddress(f"Invalid address: {address}")
    return Web3.to_checksum_address(address)


def shorten_address(address: str) -> str:
    """Shorten an address for display: '0x123456...abcd'."""
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"
