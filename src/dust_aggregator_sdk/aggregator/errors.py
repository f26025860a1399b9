"""Error taxonomy for the Dust Aggregator.

Every error carries the dust item it concerns (when there is one) and the
underlying cause, so a batch report can say which balance failed and why.
Validation errors also subclass ``ValueError``.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .types import DustItem


class AggregatorError(Exception):
    """Base class for all Dust Aggregator errors."""

    def __init__(
        self,
        message: str,
        *,
        item: Optional["DustItem"] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.item = item
        self.cause = cause

    def with_item(self, item: "DustItem") -> "AggregatorError":
        """Attach the dust item this error concerns, if not already set."""
        if self.item is None:
            self.item = item
        return self


class ConfigurationError(AggregatorError, ValueError):
    """Malformed configuration, detected before any network call."""


class NormalizationError(AggregatorError, ValueError):
    """A raw balance reading cannot be turned into a dust item."""


class UnsupportedAssetError(NormalizationError):
    """No price multiplier is registered for the (chain, asset) pair."""

    def __init__(self, chain: str, asset: str, **kwargs):
        super().__init__(
            f"No price multiplier registered for {asset} on {chain}", **kwargs
        )
        self.chain = chain
        self.asset = asset


class EncodingError(AggregatorError, ValueError):
    """An argument cannot be represented in the invocation wire format."""


class SigningError(AggregatorError):
    """The credential could not sign the invocation."""


class SubmissionError(AggregatorError):
    """The settlement network rejected or failed the invocation."""

    def __init__(self, message: str, *, handle: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.handle = handle


class InvocationTimeoutError(AggregatorError, TimeoutError):
    """The invocation did not resolve within its timeout window."""


class DecodeError(AggregatorError):
    """A contract return value does not match the declared return type."""


class BatchStateError(AggregatorError):
    """The requested batch transition is not allowed from the current phase."""
