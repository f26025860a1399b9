"""Invocation Signing for the Dust Aggregator contract.

Provides EIP-712 signing functions that work with various wallet types:
- eth_account.Account (LocalAccountSigner)
- Remote signers (Privy, MetaMask bridges, etc.) implementing InvocationSigner
"""

from typing import Any, Dict, Protocol, TypedDict

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address, to_checksum_address

from .encoding import encode_call_data
from .errors import SigningError
from .types import INVOCATION_TYPES, OperationRequest, SignedSubmission


EIP712_DOMAIN_TYPES = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


class EIP712Domain(TypedDict):
    """EIP-712 domain separator."""

    name: str
    version: str
    chainId: int
    verifyingContract: str


def create_invocation_domain(contract_address: str, network_id: int) -> EIP712Domain:
    """Create EIP-712 domain for the aggregator contract.

    Args:
        contract_address: Address of the aggregator contract
        network_id: Settlement network identifier (chain ID)

    Returns:
        EIP-712 domain dictionary

    Raises:
        ValueError: If contract address is invalid
    """
    if not is_address(contract_address):
        raise ValueError(f"Invalid contract address: {contract_address}")

    return {
        "name": "DustAggregator",
        "version": "1",
        "chainId": network_id,
        "verifyingContract": to_checksum_address(contract_address),
    }


def build_invocation_message(
    request: OperationRequest, sequence: int, deadline: int
) -> Dict[str, Any]:
    """Build the EIP-712 message for one invocation."""
    return {
        "contract": request.contract_address,
        "operation": request.operation,
        "callData": encode_call_data(request),
        "sequence": sequence,
        "fee": request.fee_hint,
        "deadline": deadline,
    }


class InvocationSigner(Protocol):
    """Protocol for signers that can sign EIP-712 typed data."""

    async def get_address(self) -> str:
        """Get the signer's address."""
        ...

    async def sign_typed_data(self, params: Dict[str, Any]) -> str:
        """Sign EIP-712 typed data.

        Args:
            params: Dict with domain, types, primaryType, and message

        Returns:
            Signature as hex string
        """
        ...


class LocalAccountSigner:
    """InvocationSigner backed by a private key held in memory.

    Use this when you have direct access to the settlement account's key.
    """

    def __init__(self, private_key: str):
        """Initialize the signer.

        Args:
            private_key: Private key (hex string with or without 0x prefix)

        Raises:
            SigningError: If the key is not a valid private key
        """
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            # Never echo the key itself
            raise SigningError("Invalid signing credential", cause=e)

    @property
    def address(self) -> str:
        return self._account.address

    def __repr__(self) -> str:
        return f"LocalAccountSigner(address={self.address!r})"

    async def get_address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, params: Dict[str, Any]) -> str:
        signed_message = self._account.sign_typed_data(
            domain_data=params["domain"],
            message_types=params["types"],
            message_data=params["message"],
        )
        return "0x" + bytes(signed_message.signature).hex()


async def sign_invocation(
    signer: InvocationSigner,
    request: OperationRequest,
    sequence: int,
    deadline: int,
) -> SignedSubmission:
    """Sign an operation request with EIP-712 using any compatible signer.

    Args:
        signer: Signer that implements InvocationSigner protocol
        request: Operation request to sign
        sequence: Account sequence number snapshot
        deadline: Unix timestamp after which the invocation is invalid

    Returns:
        SignedSubmission in the created state

    Raises:
        SigningError: If the signer cannot produce a signature
    """
    domain = create_invocation_domain(request.contract_address, request.network_id)
    message = build_invocation_message(request, sequence, deadline)

    try:
        source_address = await signer.get_address()
        signature = await signer.sign_typed_data(
            {
                "domain": domain,
                "types": INVOCATION_TYPES,
                "primaryType": "Invocation",
                "message": message,
            }
        )
    except SigningError:
        raise
    except Exception as e:
        raise SigningError(f"Failed to sign {request.operation}: {e}", cause=e)

    if not signature:
        raise SigningError(f"Signer returned an empty signature for {request.operation}")
    if not is_address(source_address):
        raise SigningError(f"Signer returned an invalid address: {source_address!r}")

    return SignedSubmission(
        request=request,
        source_address=to_checksum_address(source_address),
        sequence=sequence,
        deadline=deadline,
        signature=signature,
    )


def recover_typed_data_signer(
    contract_address: str,
    network_id: int,
    message: Dict[str, Any],
    signature: str,
) -> str:
    """Recover the address that signed an invocation message (EOA signatures only).

    Args:
        contract_address: Address of the aggregator contract
        network_id: Settlement network identifier
        message: EIP-712 Invocation message
        signature: Signature hex string

    Returns:
        Checksummed signer address

    Raises:
        ValueError: If the signature is malformed
    """
    typed_data = {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPES,
            **INVOCATION_TYPES,
        },
        "primaryType": "Invocation",
        "domain": create_invocation_domain(contract_address, network_id),
        "message": message,
    }
    signable_message = encode_typed_data(full_message=typed_data)
    return Account.recover_message(
        signable_message,
        signature=bytes.fromhex(signature[2:] if signature.startswith("0x") else signature),
    )


def recover_invocation_signer(
    request: OperationRequest, sequence: int, deadline: int, signature: str
) -> str:
    """Recover the address that signed an operation request."""
    return recover_typed_data_signer(
        request.contract_address,
        request.network_id,
        build_invocation_message(request, sequence, deadline),
        signature,
    )


def verify_invocation_signature(
    submission: SignedSubmission, expected_signer: str
) -> bool:
    """Verify a signed submission locally.

    Args:
        submission: Signed submission
        expected_signer: Expected signer address

    Returns:
        True if signature is valid and from expected signer
    """
    try:
        recovered = recover_invocation_signer(
            submission.request,
            submission.sequence,
            submission.deadline,
            submission.signature,
        )
        return recovered.lower() == expected_signer.lower()
    except Exception:
        return False
