"""Propagate the acting user's identity through the call stack using contextvars.

User IDs are opaque strings issued by the portal's auth provider. The ledger
never authenticates anyone itself; it only records who did what.
"""

from contextlib import contextmanager
from contextvars import ContextVar

# Identity used for mutations that originate outside a human session
GATEWAY_USER_ID = "system:gateway"
SCHEDULER_USER_ID = "system:scheduler"

_current_user_id: ContextVar[str | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> str:
    """
    Get current user ID from context.

    Raises RuntimeError if no user context is set. Every ledger mutation is
    attributed, so reaching one without a user is a bug in the caller.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. This usually means you're calling "
            "ledger mutations outside of an authenticated request or a system job."
        )
    return user_id


def set_current_user_id(user_id: str) -> None:
    """Set current user ID in context."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: str):
    """
    Context manager for temporarily setting user context.

    Useful for tests, the periodic sweep and webhook processing:

        with user_context(SCHEDULER_USER_ID):
            sweeper.tick()
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
