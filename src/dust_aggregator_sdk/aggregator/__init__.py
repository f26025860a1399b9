"""Dust Aggregator Contract Protocol Module.

This module provides the building blocks for invoking the Dust Aggregator
contract.

Key components:
- Balance normalization (raw chain balances -> USD-valued dust items)
- Invocation encoding (position-encoded, schema-validated parameters)
- Invocation signing (EIP-712)
- Result decoding (type-tagged contract return values)

Example usage:
    ```python
    from dust_aggregator_sdk.aggregator import (
        normalize_balance,
        encode_operation,
        LocalAccountSigner,
        sign_invocation,
    )

    # Normalize a raw balance
    item = normalize_balance("ethereum", "ETH", "0.00021", "0x...")

    # Encode the deposit
    request = encode_operation(
        "deposit",
        contract_address="0x...",
        network_id=137,
        args=[item.owner_address, item.source_chain, item.asset_id, item.minor_units],
    )

    # Sign with private key
    signed = await sign_invocation(
        LocalAccountSigner("0x..."),
        request,
        sequence=8,
        deadline=1700000030,
    )
    ```
"""

from .errors import (
    AggregatorError,
    ConfigurationError,
    NormalizationError,
    UnsupportedAssetError,
    EncodingError,
    SigningError,
    SubmissionError,
    InvocationTimeoutError,
    DecodeError,
    BatchStateError,
)
from .types import (
    BalanceReading,
    DustItem,
    ParamKind,
    Param,
    OperationRequest,
    SubmissionStatus,
    SignedSubmission,
    Pending,
    Succeeded,
    Failed,
    Outcome,
    PENDING,
    INVOCATION_TYPES,
)
from .normalizer import (
    PriceTable,
    DEFAULT_PRICE_TABLE,
    normalize_balance,
    normalize_readings,
)
from .encoding import (
    OPERATION_SCHEMAS,
    OperationSchema,
    encode_operation,
    encode_call_data,
    function_signature,
)
from .decoding import decode_result, decode_for
from .signing import (
    create_invocation_domain,
    sign_invocation,
    verify_invocation_signature,
    recover_typed_data_signer,
    InvocationSigner,
    LocalAccountSigner,
)
from .chains import is_valid_account
from .utils import (
    FIXED_GAS_FEE,
    scale_to_minor_units,
    minor_units_to_value,
    format_minor_units,
    total_value,
    per_participant_fee_share,
    estimate_gas_savings,
)

__all__ = [
    # Errors
    "AggregatorError",
    "ConfigurationError",
    "NormalizationError",
    "UnsupportedAssetError",
    "EncodingError",
    "SigningError",
    "SubmissionError",
    "InvocationTimeoutError",
    "DecodeError",
    "BatchStateError",
    # Types
    "BalanceReading",
    "DustItem",
    "ParamKind",
    "Param",
    "OperationRequest",
    "SubmissionStatus",
    "SignedSubmission",
    "Pending",
    "Succeeded",
    "Failed",
    "Outcome",
    "PENDING",
    "INVOCATION_TYPES",
    # Normalization
    "PriceTable",
    "DEFAULT_PRICE_TABLE",
    "normalize_balance",
    "normalize_readings",
    # Encoding / decoding
    "OPERATION_SCHEMAS",
    "OperationSchema",
    "encode_operation",
    "encode_call_data",
    "function_signature",
    "decode_result",
    "decode_for",
    # Signing
    "create_invocation_domain",
    "sign_invocation",
    "verify_invocation_signature",
    "recover_typed_data_signer",
    "InvocationSigner",
    "LocalAccountSigner",
    # Utils
    "is_valid_account",
    "FIXED_GAS_FEE",
    "scale_to_minor_units",
    "minor_units_to_value",
    "format_minor_units",
    "total_value",
    "per_participant_fee_share",
    "estimate_gas_savings",
]
