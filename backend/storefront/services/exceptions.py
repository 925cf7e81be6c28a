from storefront.utils.result import Err


class LifecycleException(Exception):
    pass


class RecordNotFound(LifecycleException):
    """Unknown id, token or code."""


class AlreadyTerminal(LifecycleException):
    """The record is past the point where the requested transition is valid."""


class AlreadyCompleted(AlreadyTerminal):
    pass


class CodeAlreadyUsed(AlreadyTerminal):
    pass


class CodeExpired(AlreadyTerminal):
    pass


class StoreError(LifecycleException):
    """Record store unavailable or failing; safe for the caller to retry."""

    retryable = True


def unwrap(result):
    """Return the Ok value or raise StoreError for a failed store call."""
    if result.ok:
        return result.value
    err: Err = result
    raise StoreError(f"{err.kind}: {err.detail}")
