"""Signer capability registry.

Maps chain identifiers to the signer that submits deposits for balances
found on that chain. The default signer owns the settlement account and
submits everything no chain-specific signer is registered for.
"""

from typing import Dict, Iterator, Mapping, Optional

from ..aggregator.signing import InvocationSigner


class SignerRegistry:
    """Chain -> signer mapping, populated once at startup."""

    def __init__(
        self,
        default: Optional[InvocationSigner] = None,
        by_chain: Optional[Mapping[str, InvocationSigner]] = None,
    ):
        self._default = default
        self._by_chain: Dict[str, InvocationSigner] = {
            chain.lower(): signer for chain, signer in (by_chain or {}).items()
        }

    def __contains__(self, chain: str) -> bool:
        return chain.lower() in self._by_chain

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_chain)

    @property
    def default(self) -> Optional[InvocationSigner]:
        """Signer owning the settlement account."""
        return self._default

    def register(self, chain: str, signer: InvocationSigner) -> None:
        self._by_chain[chain.lower()] = signer

    def for_chain(self, chain: str) -> Optional[InvocationSigner]:
        """Signer for deposits from ``chain``, falling back to the default."""
        return self._by_chain.get(chain.lower(), self._default)
