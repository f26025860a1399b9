"""Configuration for the Dust Aggregator client and batch orchestrator."""

from dataclasses import dataclass
from typing import Optional, TypedDict, Union

from eth_utils import is_address, to_checksum_address

from .aggregator.chains import is_supported_chain, is_valid_symbol
from .aggregator.encoding import DEFAULT_FEE_HINT, DEFAULT_TIMEOUT_SECONDS
from .aggregator.errors import ConfigurationError
from .aggregator.normalizer import DEFAULT_PRICE_TABLE, PriceTable


class AggregatorConfig(TypedDict, total=False):
    """Aggregator configuration."""

    contract_address: str
    """Aggregator contract address (required)."""

    network_id: int
    """Settlement network identifier / chain ID (required)."""

    rpc_url: str
    """Settlement node JSON-RPC endpoint (required)."""

    price_table: PriceTable
    """USD price multipliers. Default: DEFAULT_PRICE_TABLE"""

    fee_hint: int
    """Fixed network fee hint per invocation. Default: 100"""

    timeout_seconds: float
    """Timeout window per invocation in seconds. Default: 30"""

    poll_interval: float
    """Seconds between result polls. Default: 1.0"""

    settlement_chain: str
    """Chain the settlement account lives on. Default: "polygon" """

    aggregate_asset: str
    """Asset the settled value is denominated in. Default: "USDC" """


@dataclass(frozen=True)
class ResolvedAggregatorConfig:
    """Resolved aggregator configuration with all defaults applied."""

    contract_address: str
    network_id: int
    rpc_url: str
    price_table: PriceTable
    fee_hint: int
    timeout_seconds: float
    poll_interval: float
    settlement_chain: str
    aggregate_asset: str


def _require(config: AggregatorConfig, key: str):
    value = config.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"Missing required configuration: {key}")
    return value


def resolve_config(
    config: Union[AggregatorConfig, ResolvedAggregatorConfig, None],
) -> ResolvedAggregatorConfig:
    """Validate a configuration and apply defaults.

    Args:
        config: User configuration, or an already resolved one

    Returns:
        ResolvedAggregatorConfig

    Raises:
        ConfigurationError: If a required value is missing or malformed
    """
    if isinstance(config, ResolvedAggregatorConfig):
        return config
    config = config or {}

    contract_address = _require(config, "contract_address")
    if not is_address(contract_address):
        raise ConfigurationError(f"Invalid contract address: {contract_address}")

    network_id = _require(config, "network_id")
    if isinstance(network_id, bool) or not isinstance(network_id, int) or network_id <= 0:
        raise ConfigurationError(f"Invalid network_id: {network_id!r}")

    rpc_url = _require(config, "rpc_url")
    if not str(rpc_url).startswith(("http://", "https://")):
        raise ConfigurationError(f"Invalid rpc_url: {rpc_url}")

    price_table: Optional[PriceTable] = config.get("price_table", DEFAULT_PRICE_TABLE)
    if not isinstance(price_table, PriceTable):
        raise ConfigurationError("price_table must be a PriceTable")

    fee_hint = config.get("fee_hint", DEFAULT_FEE_HINT)
    if isinstance(fee_hint, bool) or not isinstance(fee_hint, int) or fee_hint < 0:
        raise ConfigurationError(f"Invalid fee_hint: {fee_hint!r}")

    timeout_seconds = config.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
    if timeout_seconds <= 0:
        raise ConfigurationError(f"timeout_seconds must be positive, got {timeout_seconds}")

    poll_interval = config.get("poll_interval", 1.0)
    if poll_interval <= 0:
        raise ConfigurationError(f"poll_interval must be positive, got {poll_interval}")

    settlement_chain = config.get("settlement_chain", "polygon").lower()
    if not is_supported_chain(settlement_chain):
        raise ConfigurationError(f"Unsupported settlement chain: {settlement_chain}")

    aggregate_asset = config.get("aggregate_asset", "USDC")
    if not is_valid_symbol(aggregate_asset):
        raise ConfigurationError(f"Invalid aggregate_asset: {aggregate_asset!r}")

    return ResolvedAggregatorConfig(
        contract_address=to_checksum_address(contract_address),
        network_id=network_id,
        rpc_url=rpc_url,
        price_table=price_table,
        fee_hint=fee_hint,
        timeout_seconds=timeout_seconds,
        poll_interval=poll_interval,
        settlement_chain=settlement_chain,
        aggregate_asset=aggregate_asset,
    )
