"""Exception hierarchy for the FX trade hub."""

from __future__ import annotations


class FxHubError(Exception):
    """Base class for all hub errors."""


class UnknownMessageError(FxHubError):
    """Raised when a message id does not exist in storage."""


class DuplicateTradeError(FxHubError):
    """Raised when a trade id is inserted twice."""


class DuplicateLinkError(FxHubError):
    """Raised when a second active link is created for a (trade, system) pair."""


class ResponseParseError(FxHubError):
    """Raised when a booking-system response file cannot be interpreted."""


class UnknownTradeError(FxHubError):
    """Raised when a trade or its system link does not exist in storage."""
