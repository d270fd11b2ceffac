"""Failure categories of the poll agent. None of them is fatal to the host page."""

from playwright.async_api import Error as PWError


class AgentError(Exception):
    """Base class for every error the agent raises on purpose."""


class LocatorMiss(AgentError):
    """No qualifying interactive elements were found; skip this cycle."""


class ParseFailure(AgentError):
    """AI reply was neither valid JSON nor a recognizable letter/number."""


class ContextInvalidated(AgentError):
    """The agent lost its browser or page; everything must be torn down."""


class NetworkFailure(AgentError):
    """A notification or reporting call failed."""


class DestinationMissing(AgentError):
    """No open page matches the configured AI service."""


class RequestInFlight(AgentError):
    """An AI request is already outstanding for this context."""


_CLOSED_MARKERS = (
    "has been closed",
    "Target closed",
    "Browser closed",
    "Connection closed",
)


def is_context_lost(exc: BaseException) -> bool:
    """True when a Playwright error means the page or browser is gone."""
    if isinstance(exc, ContextInvalidated):
        return True
    if isinstance(exc, PWError):
        message = str(exc)
        return any(marker in message for marker in _CLOSED_MARKERS)
    return False
