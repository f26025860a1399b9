"""Invocation encoding for the Dust Aggregator contract.

Builds operation requests whose parameters are position-encoded exactly as the
contract declares them:

- deposit:     [contract, "auto_deposit", owner, chain, asset, amount]
- settle:      [contract, "batch_process"]
- withdraw:    [contract, "withdraw", owner, chain, asset]
- swap:        [contract, "swap", owner, chain, from_asset, to_asset, amount | void]
- get_balance: [contract, "get_balance", owner, chain, asset]  (simulated)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, is_address, to_checksum_address

from .chains import is_supported_chain, is_valid_account, is_valid_symbol
from .errors import EncodingError
from .types import OperationRequest, Param, ParamKind, ReturnType
from .utils import MAX_U64

DEFAULT_FEE_HINT = 100
DEFAULT_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class OperationSchema:
    """Declared signature of one contract operation."""

    symbol: str
    """Contract function name."""

    arguments: Tuple[ParamKind, ...]
    """Argument kinds in declaration order."""

    returns: ReturnType
    read_only: bool = False


OPERATION_SCHEMAS: Dict[str, OperationSchema] = {
    "deposit": OperationSchema(
        symbol="auto_deposit",
        arguments=(ParamKind.ACCOUNT, ParamKind.SYMBOL, ParamKind.SYMBOL, ParamKind.U64),
        returns="void",
    ),
    "settle": OperationSchema(symbol="batch_process", arguments=(), returns="void"),
    "withdraw": OperationSchema(
        symbol="withdraw",
        arguments=(ParamKind.ACCOUNT, ParamKind.SYMBOL, ParamKind.SYMBOL),
        returns="u64",
    ),
    "swap": OperationSchema(
        symbol="swap",
        arguments=(
            ParamKind.ACCOUNT,
            ParamKind.SYMBOL,
            ParamKind.SYMBOL,
            ParamKind.SYMBOL,
            ParamKind.OPTIONAL_U64,
        ),
        returns="u64",
    ),
    "get_balance": OperationSchema(
        symbol="get_balance",
        arguments=(ParamKind.ACCOUNT, ParamKind.SYMBOL, ParamKind.SYMBOL),
        returns="u64",
        read_only=True,
    ),
}

# Contract symbols are accepted as operation names too
_SCHEMAS_BY_SYMBOL = {schema.symbol: schema for schema in OPERATION_SCHEMAS.values()}

ABI_TYPES = {
    ParamKind.ADDRESS: "address",
    ParamKind.SYMBOL: "string",
    ParamKind.ACCOUNT: "string",
    ParamKind.U64: "uint64",
    ParamKind.OPTIONAL_U64: "uint64[]",
}


def get_schema(operation: str) -> OperationSchema:
    """Look up an operation schema by operation name or contract symbol.

    Raises:
        EncodingError: If the operation is unknown
    """
    schema = OPERATION_SCHEMAS.get(operation) or _SCHEMAS_BY_SYMBOL.get(operation)
    if schema is None:
        raise EncodingError(f"Unknown operation: {operation}")
    return schema


def _check_u64(value: Any, position: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(
            f"Argument {position} must be an integer amount, got {type(value).__name__}"
        )
    if value < 0 or value > MAX_U64:
        raise EncodingError(f"Argument {position} out of u64 range: {value}")
    return value


def _encode_arguments(
    schema: OperationSchema, args: Sequence[Any]
) -> List[Param]:
    if len(args) != len(schema.arguments):
        raise EncodingError(
            f"{schema.symbol} takes {len(schema.arguments)} arguments, got {len(args)}"
        )

    # The owner is validated against the chain symbol that follows it
    chain = args[1] if len(args) > 1 else None
    params: List[Param] = []

    for position, (kind, value) in enumerate(zip(schema.arguments, args)):
        if kind is ParamKind.SYMBOL:
            if not is_valid_symbol(value):
                raise EncodingError(f"Argument {position} is not a valid symbol: {value!r}")
        elif kind is ParamKind.ACCOUNT:
            if not isinstance(chain, str) or not is_supported_chain(chain):
                raise EncodingError(f"Unsupported source chain: {chain!r}")
            if not is_valid_account(chain, value):
                raise EncodingError(f"Invalid {chain} address: {value!r}")
        elif kind is ParamKind.U64:
            value = _check_u64(value, position)
        elif kind is ParamKind.OPTIONAL_U64:
            if value is not None:
                value = _check_u64(value, position)
        params.append(Param(kind, value))

    return params


def encode_operation(
    operation: str,
    contract_address: str,
    network_id: int,
    args: Sequence[Any] = (),
    fee_hint: int = DEFAULT_FEE_HINT,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> OperationRequest:
    """Build an operation request for the aggregator contract.

    Args:
        operation: Operation name ("deposit", "settle", "withdraw", "swap",
            "get_balance") or its contract symbol
        contract_address: Address of the aggregator contract
        network_id: Settlement network identifier
        args: Operation arguments in declaration order
        fee_hint: Fixed network fee hint
        timeout_seconds: Validity window of the invocation

    Returns:
        OperationRequest with contract reference and symbol prepended

    Raises:
        EncodingError: If the operation is unknown or an argument cannot be
            represented in the wire format
    """
    schema = get_schema(operation)

    if not is_address(contract_address):
        raise EncodingError(f"Invalid contract address: {contract_address}")
    contract = to_checksum_address(contract_address)

    parameters = [
        Param(ParamKind.ADDRESS, contract),
        Param(ParamKind.SYMBOL, schema.symbol),
    ]
    parameters.extend(_encode_arguments(schema, list(args)))

    return OperationRequest(
        operation=schema.symbol,
        contract_address=contract,
        network_id=network_id,
        parameters=tuple(parameters),
        fee_hint=fee_hint,
        timeout_seconds=timeout_seconds,
        returns=schema.returns,
        read_only=schema.read_only,
    )


def function_signature(request: OperationRequest) -> str:
    """Solidity-style signature of the invoked function (e.g., "withdraw(string,string,string)")."""
    types = ",".join(ABI_TYPES[param.kind] for param in request.arguments)
    return f"{request.operation}({types})"


def encode_call_data(request: OperationRequest) -> bytes:
    """ABI-encode a request's arguments behind its 4-byte function selector.

    Args:
        request: Operation request to encode

    Returns:
        Call data bytes
    """
    selector = function_signature_to_4byte_selector(function_signature(request))
    arguments = request.arguments
    if not arguments:
        return selector

    values = []
    for param in arguments:
        if param.kind is ParamKind.OPTIONAL_U64:
            # Void is an empty array
            values.append([] if param.value is None else [param.value])
        else:
            values.append(param.value)

    return selector + encode([ABI_TYPES[param.kind] for param in arguments], values)
