"""Exception hierarchy shared by every ZapIt layer."""

from typing import Optional


class ZapItError(Exception):
    """Base class for all ZapIt errors."""


class InvalidSelectorError(ZapItError):
    """The selector engine rejected a selector string."""

    def __init__(self, selector: str, reason: Optional[str] = None):
        self.selector = selector
        self.reason = reason
        message = f"Invalid selector: {selector!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class StorageError(ZapItError):
    """Reading or writing the rule store failed."""


class PageNotReadyError(ZapItError):
    """A push message was sent to a page with no attached agent."""


class EmptyElementError(ZapItError):
    """A text edit was requested on an element without text."""


class InvalidRuleError(ZapItError):
    """A rule record is malformed and cannot be applied or stored."""


class UnknownActionError(InvalidRuleError):
    """A rule record names an action outside the supported set."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown rule action: {action!r}")
