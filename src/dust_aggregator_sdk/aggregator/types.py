"""Types for the Dust Aggregator contract protocol.

User-facing types for dust items, contract invocations and their outcomes.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple, Union

from .errors import AggregatorError
from .utils import scale_to_minor_units


ReturnType = Literal["u64", "void"]
"""Return types the aggregator contract declares."""

DecodedValue = Optional[int]
"""A decoded contract return value: an unsigned 64-bit integer, or None for void."""


@dataclass(frozen=True)
class BalanceReading:
    """A raw balance as reported by a chain-specific balance reader."""

    chain: str
    """Source chain identifier (e.g., "ethereum", "solana")."""

    asset: str
    """Asset identifier on the source chain (e.g., "ETH")."""

    raw_amount: str
    """Balance in whole asset units as a decimal string (e.g., "0.00021")."""

    owner_address: str
    """Address holding the balance on the source chain."""


@dataclass(frozen=True)
class DustItem:
    """A chain-agnostic dust balance, ready to be deposited."""

    owner_address: str
    """Address holding the balance on the source chain."""

    source_chain: str
    """Source chain identifier."""

    asset_id: str
    """Asset identifier on the source chain."""

    raw_amount: Decimal
    """Balance in whole asset units."""

    implied_value: Decimal
    """USD-equivalent value (never negative)."""

    @property
    def minor_units(self) -> int:
        """USD-equivalent value in minor units (cents), as deposited on-chain."""
        return scale_to_minor_units(self.implied_value)


class ParamKind(Enum):
    """Wire kinds of invocation parameters."""

    ADDRESS = "address"
    """Settlement-chain address (contract references)."""

    SYMBOL = "symbol"
    """Short identifier: operation names, chain symbols, asset references."""

    ACCOUNT = "account"
    """Owner address on a source chain, validated against that chain's scheme."""

    U64 = "u64"
    """Unsigned 64-bit integer amount in minor units."""

    OPTIONAL_U64 = "optional_u64"
    """Unsigned 64-bit integer or void."""


@dataclass(frozen=True)
class Param:
    """One position-encoded invocation parameter."""

    kind: ParamKind
    value: Any


@dataclass(frozen=True)
class OperationRequest:
    """A contract invocation before signing.

    ``parameters[0]`` is the contract reference and ``parameters[1]`` the
    operation symbol; the operation's own arguments follow in the order the
    contract declares them.
    """

    operation: str
    """Contract operation symbol (e.g., "auto_deposit")."""

    contract_address: str
    """Checksummed aggregator contract address."""

    network_id: int
    """Settlement network identifier (chain ID)."""

    parameters: Tuple[Param, ...]
    """Ordered, typed parameters."""

    fee_hint: int = 100
    """Fixed per-operation network fee hint."""

    timeout_seconds: float = 30
    """Validity and resolution window for the invocation."""

    returns: ReturnType = "void"
    """Declared return type of the operation."""

    read_only: bool = False
    """True for operations that are simulated rather than submitted."""

    @property
    def arguments(self) -> Tuple[Param, ...]:
        """Operation arguments (parameters after contract and symbol)."""
        return self.parameters[2:]


class SubmissionStatus(Enum):
    """Lifecycle of a signed submission."""

    CREATED = "created"
    SUBMITTED = "submitted"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class SignedSubmission:
    """An operation request with its signature and network handle."""

    request: OperationRequest
    source_address: str
    """Settlement-chain account that signed the invocation."""

    sequence: int
    """Account sequence number snapshot used for this submission."""

    deadline: int
    """Unix timestamp after which the network drops the invocation."""

    signature: str
    """EIP-712 signature (65 bytes packed hex string)."""

    handle: Optional[str] = None
    """Submission handle (transaction hash) assigned on acceptance."""

    status: SubmissionStatus = SubmissionStatus.CREATED
    raw_result: Optional[Dict[str, Any]] = None
    error: Optional[AggregatorError] = None


@dataclass(frozen=True)
class Pending:
    """No terminal outcome yet."""


@dataclass(frozen=True)
class Succeeded:
    """The invocation resolved successfully."""

    value: DecodedValue = None
    handle: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    """The invocation failed; ``error`` carries the reason."""

    error: AggregatorError

    @property
    def reason(self) -> str:
        return str(self.error)


Outcome = Union[Pending, Succeeded, Failed]

PENDING = Pending()


# EIP-712 types for contract invocations
INVOCATION_TYPES = {
    "Invocation": [
        {"name": "contract", "type": "address"},
        {"name": "operation", "type": "string"},
        {"name": "callData", "type": "bytes"},
        {"name": "sequence", "type": "uint64"},
        {"name": "fee", "type": "uint32"},
        {"name": "deadline", "type": "uint64"},
    ],
}
