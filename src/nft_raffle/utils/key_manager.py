"""Operator key validation and operator address resolution.

The operator identity is an address. It is taken from configuration directly
(``raffle.operator_address``) or derived from the private key the transfer
wallet signs with (``chain.operator_private_key``).
"""

import re
from typing import Any, Dict, List, Tuple

from eth_account import Account

from nft_raffle.utils.common import normalize_address
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


def validate_eth_private_key_format(private_key: str) -> Tuple[bool, str]:
    """Validate Ethereum private key format.

    Expected format: 0x followed by 64 hexadecimal characters

    Returns:
        tuple: (is_valid, error_message)
    """
    if not isinstance(private_key, str):
        return False, "Private key must be a string"

    if not private_key.startswith("0x"):
        return False, "Private key must start with '0x' prefix"

    if len(private_key) != 66:
        return False, f"Private key must be 66 characters long (0x + 64 hex), got {len(private_key)}"

    if not re.match(r'^[0-9a-fA-F]{64}$', private_key[2:]):
        return False, "Private key must contain only hexadecimal characters after '0x'"

    return True, ""


def derive_address_from_private_key(private_key: str) -> str:
    """Derive the checksummed address for ``private_key``.

    Raises:
        ValueError: If private key is invalid
    """
    valid, error = validate_eth_private_key_format(private_key)
    if not valid:
        raise ValueError(error)
    try:
        return Account.from_key(private_key).address
    except Exception as e:
        logger.error(f"Failed to derive address from private key: {e}")
        raise ValueError(f"Invalid private key: {e}")


def resolve_operator_addresses(config: Dict[str, Any]) -> List[str]:
    """Return the operator address(es) named by configuration.

    ``raffle.operator_address`` may hold a single address or a comma
    separated list. When it is absent the address of
    ``chain.operator_private_key`` is used. When both are present the key
    must belong to one of the listed operators.
    """
    raffle = config.get("raffle", {})
    private_key = config.get("chain", {}).get("operator_private_key")

    configured = raffle.get("operator_address") or raffle.get("operator_addresses") or []
    if isinstance(configured, str):
        configured = [part.strip() for part in configured.split(",") if part.strip()]
    operators = [normalize_address(addr) for addr in configured]

    if private_key:
        derived = derive_address_from_private_key(private_key)
        if not operators:
            operators = [derived]
        elif derived not in operators:
            raise ValueError(f"Address mismatch: key belongs to {derived}, not to a configured operator")

    if not operators:
        raise ValueError("No operator configured: set raffle.operator_address or chain.operator_private_key")

    logger.info(f"Operator address(es): {', '.join(operators)}")
    return operators
