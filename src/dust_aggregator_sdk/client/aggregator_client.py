"""Dust Aggregator contract client.

Exposes the aggregator contract's operations as methods. Every call encodes
an operation request, signs and submits it through the RpcSubmitter and
decodes the contract's return value:

1. auto_deposit  - record one dust balance against the contract
2. batch_process - settle all recorded deposits under one fee
3. withdraw      - withdraw a recorded balance
4. swap          - swap settled value into a target asset
5. get_balance   - read a recorded balance (simulated, not submitted)
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from ..aggregator.decoding import decode_for
from ..aggregator.encoding import encode_operation
from ..aggregator.signing import InvocationSigner
from ..aggregator.types import DecodedValue, DustItem, OperationRequest
from ..config import AggregatorConfig, ResolvedAggregatorConfig, resolve_config
from .rpc import RpcSubmitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvocationResult:
    """Decoded result of a resolved invocation."""

    handle: str
    """Submission handle (transaction hash)."""

    value: DecodedValue
    """Decoded return value (None for void operations)."""


class DustAggregatorClient:
    """Client for the Dust Aggregator contract.

    Example:
        ```python
        client = DustAggregatorClient({
            "contract_address": "0x...",
            "network_id": 137,
            "rpc_url": "https://rpc.example.org",
        })
        signer = LocalAccountSigner(private_key)

        await client.auto_deposit(signer, owner, "ethereum", "ETH", 42)
        await client.batch_process(signer)
        received = await client.swap(signer, owner, "polygon", "USDC", "XLM")
        await client.close()
        ```
    """

    def __init__(
        self,
        config: Union[AggregatorConfig, ResolvedAggregatorConfig],
        submitter: Optional[RpcSubmitter] = None,
    ):
        """Initialize the client.

        Args:
            config: Aggregator configuration
            submitter: Optional submitter (built from the config otherwise)

        Raises:
            ConfigurationError: If the configuration is malformed
        """
        self._config = resolve_config(config)
        self._owns_submitter = submitter is None
        self._submitter = submitter or RpcSubmitter(
            self._config.rpc_url, poll_interval=self._config.poll_interval
        )

    @property
    def config(self) -> ResolvedAggregatorConfig:
        return self._config

    async def __aenter__(self) -> "DustAggregatorClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_submitter:
            await self._submitter.close()

    def build_request(self, operation: str, args: Sequence[Any] = ()) -> OperationRequest:
        """Encode an operation against the configured contract and network.

        Raises:
            EncodingError: If the operation or an argument cannot be encoded
        """
        return encode_operation(
            operation,
            self._config.contract_address,
            self._config.network_id,
            args,
            fee_hint=self._config.fee_hint,
            timeout_seconds=self._config.timeout_seconds,
        )

    async def invoke(
        self, request: OperationRequest, signer: InvocationSigner
    ) -> InvocationResult:
        """Submit a request, wait for it to resolve and decode its result.

        Raises:
            SigningError, SubmissionError, InvocationTimeoutError, DecodeError
        """
        submission = await self._submitter.execute(request, signer)
        value = decode_for(request, submission.raw_result)
        logger.info("%s resolved: %s", request.operation, submission.handle)
        return InvocationResult(handle=submission.handle, value=value)

    async def auto_deposit(
        self,
        signer: InvocationSigner,
        owner_address: str,
        chain: str,
        asset: str,
        amount: int,
    ) -> InvocationResult:
        """Record one dust balance against the contract.

        Args:
            signer: Settlement account signer
            owner_address: Owner of the balance on the source chain
            chain: Source chain symbol
            asset: Asset reference
            amount: Value in minor units
        """
        request = self.build_request("deposit", [owner_address, chain, asset, amount])
        return await self.invoke(request, signer)

    async def deposit_item(
        self, signer: InvocationSigner, item: DustItem
    ) -> InvocationResult:
        """Deposit a normalized dust item, valued in minor units."""
        return await self.auto_deposit(
            signer,
            item.owner_address,
            item.source_chain,
            item.asset_id,
            item.minor_units,
        )

    async def batch_process(self, signer: InvocationSigner) -> InvocationResult:
        """Settle every deposit the contract recorded for the signer's account."""
        return await self.invoke(self.build_request("settle"), signer)

    async def withdraw(
        self,
        signer: InvocationSigner,
        owner_address: str,
        chain: str,
        asset: str,
    ) -> int:
        """Withdraw a recorded balance.

        Returns:
            Amount withdrawn in minor units
        """
        request = self.build_request("withdraw", [owner_address, chain, asset])
        return (await self.invoke(request, signer)).value

    async def swap(
        self,
        signer: InvocationSigner,
        owner_address: str,
        from_chain: str,
        from_asset: str,
        to_asset: str,
        amount: Optional[int] = None,
    ) -> int:
        """Swap settled value into a target asset.

        Args:
            amount: Amount in minor units; None swaps the whole balance

        Returns:
            Amount received in the target asset's minor units
        """
        request = self.build_request(
            "swap", [owner_address, from_chain, from_asset, to_asset, amount]
        )
        return (await self.invoke(request, signer)).value

    async def get_balance(
        self,
        owner_address: str,
        chain: str,
        asset: str,
        source_address: str,
    ) -> int:
        """Read a recorded balance by simulating get_balance.

        Args:
            source_address: Settlement account the simulation runs as

        Returns:
            Balance in minor units
        """
        request = self.build_request("get_balance", [owner_address, chain, asset])
        raw = await self._submitter.simulate(request, source_address)
        return decode_for(request, raw)
