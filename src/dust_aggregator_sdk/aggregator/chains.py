"""Address schemes of the source chains dust is collected from."""

import re
from typing import Callable, Dict

from eth_utils import is_address

_STELLAR_ACCOUNT = re.compile(r"^G[A-Z2-7]{55}$")
_SOLANA_ACCOUNT = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
_STARKNET_ACCOUNT = re.compile(r"^0x[0-9a-fA-F]{1,64}$")
_SYMBOL = re.compile(r"^[A-Za-z0-9_]{1,32}$")

ADDRESS_VALIDATORS: Dict[str, Callable[[str], bool]] = {
    "ethereum": is_address,
    "polygon": is_address,
    "stellar": lambda address: bool(_STELLAR_ACCOUNT.fullmatch(address)),
    "solana": lambda address: bool(_SOLANA_ACCOUNT.fullmatch(address)),
    "starknet": lambda address: bool(_STARKNET_ACCOUNT.fullmatch(address)),
}
"""Chain identifier -> predicate accepting that chain's account addresses."""


def is_supported_chain(chain: str) -> bool:
    return chain.lower() in ADDRESS_VALIDATORS


def is_valid_account(chain: str, address: str) -> bool:
    """Check an account address against its chain's address scheme.

    Args:
        chain: Chain identifier (case-insensitive)
        address: Account address on that chain

    Returns:
        False for unknown chains or malformed addresses
    """
    validator = ADDRESS_VALIDATORS.get(chain.lower())
    if validator is None or not isinstance(address, str):
        return False
    return validator(address)


def is_valid_symbol(value: str) -> bool:
    """Check that a value fits the contract's symbol type."""
    return isinstance(value, str) and bool(_SYMBOL.fullmatch(value))
