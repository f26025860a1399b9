"""Balance normalization for the Dust Aggregator.

Turns raw per-chain balance readings into chain-agnostic dust items valued in
USD. Valuation goes through an injected, versioned price table so new chains
and assets can be priced without touching the batch logic.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Tuple, Union

from .errors import ConfigurationError, NormalizationError, UnsupportedAssetError
from .types import BalanceReading, DustItem

WILDCARD_ASSET = "*"

PriceKey = Tuple[str, str]


def _key(chain: str, asset: str) -> PriceKey:
    return chain.lower(), asset.upper()


class PriceTable:
    """Immutable USD price multipliers keyed by (chain, asset).

    Chain and asset names compare case-insensitively. Registering the asset
    ``"*"`` prices every asset on that chain not listed explicitly.
    """

    def __init__(
        self,
        multipliers: Mapping[PriceKey, Union[Decimal, int, float, str]],
        version: str = "1",
    ):
        table: Dict[PriceKey, Decimal] = {}
        for (chain, asset), multiplier in multipliers.items():
            try:
                value = Decimal(str(multiplier))
            except InvalidOperation as e:
                raise ConfigurationError(
                    f"Invalid price multiplier for {asset} on {chain}: {multiplier!r}",
                    cause=e,
                )
            if not value.is_finite() or value < 0:
                raise ConfigurationError(
                    f"Price multiplier for {asset} on {chain} must be non-negative, got {multiplier}"
                )
            table[_key(chain, asset)] = value
        self._multipliers = table
        self.version = version

    def __repr__(self) -> str:
        return f"PriceTable(version={self.version!r}, entries={len(self._multipliers)})"

    def __len__(self) -> int:
        return len(self._multipliers)

    def supports(self, chain: str, asset: str) -> bool:
        chain_key, asset_key = _key(chain, asset)
        return (chain_key, asset_key) in self._multipliers or (
            chain_key,
            WILDCARD_ASSET,
        ) in self._multipliers

    def multiplier_for(self, chain: str, asset: str) -> Decimal:
        """Look up the USD multiplier for an asset.

        Raises:
            UnsupportedAssetError: If neither the asset nor a chain-wide
                multiplier is registered
        """
        chain_key, asset_key = _key(chain, asset)
        for key in ((chain_key, asset_key), (chain_key, WILDCARD_ASSET)):
            if key in self._multipliers:
                return self._multipliers[key]
        raise UnsupportedAssetError(chain, asset)

    def with_multiplier(
        self, chain: str, asset: str, multiplier: Union[Decimal, int, float, str]
    ) -> "PriceTable":
        """Return a new table with one multiplier added or replaced.

        The new table's version is the old one with a ``+1`` suffix unless the
        version is numeric, in which case it is incremented.
        """
        entries: Dict[PriceKey, Union[Decimal, int, float, str]] = dict(
            self._multipliers
        )
        entries[_key(chain, asset)] = multiplier
        version = (
            str(int(self.version) + 1) if self.version.isdigit() else self.version + "+1"
        )
        return PriceTable(entries, version=version)


# Static multipliers used by the dust aggregator front-end
DEFAULT_PRICE_TABLE = PriceTable(
    {
        ("ethereum", "ETH"): "2000",
        ("solana", "SOL"): "180",
        ("polygon", "MATIC"): "1",
        ("stellar", WILDCARD_ASSET): "0.1",
    }
)


def normalize_balance(
    chain: str,
    asset: str,
    raw_amount: str,
    owner_address: str,
    price_table: PriceTable = DEFAULT_PRICE_TABLE,
) -> DustItem:
    """Normalize one raw balance into a dust item.

    Args:
        chain: Source chain identifier
        asset: Asset identifier on the source chain
        raw_amount: Balance in whole units as a decimal string
        owner_address: Address holding the balance
        price_table: USD multipliers

    Returns:
        DustItem valued in USD

    Raises:
        UnsupportedAssetError: If no multiplier is registered for the asset
        NormalizationError: If the raw amount is not a non-negative decimal
    """
    multiplier = price_table.multiplier_for(chain, asset)

    try:
        amount = Decimal(str(raw_amount).strip())
    except InvalidOperation as e:
        raise NormalizationError(
            f"Invalid raw amount for {asset} on {chain}: {raw_amount!r}", cause=e
        )
    if not amount.is_finite() or amount < 0:
        raise NormalizationError(
            f"Raw amount for {asset} on {chain} must be a non-negative number, got {raw_amount!r}"
        )

    return DustItem(
        owner_address=owner_address,
        source_chain=chain.lower(),
        asset_id=asset,
        raw_amount=amount,
        implied_value=amount * multiplier,
    )


def normalize_readings(
    readings: Iterable[BalanceReading],
    price_table: PriceTable = DEFAULT_PRICE_TABLE,
) -> List[DustItem]:
    """Normalize balance readings, failing on the first unsupported one."""
    return [
        normalize_balance(
            reading.chain,
            reading.asset,
            reading.raw_amount,
            reading.owner_address,
            price_table,
        )
        for reading in readings
    ]
