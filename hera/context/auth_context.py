"""
Ambient organization/user context, carried in a ContextVar so it follows
the current task.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class AuthContext:
    organization_id: Optional[str] = None
    actor_user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.organization_id and self.actor_user_id)


_current_auth: ContextVar[AuthContext] = ContextVar('hera_auth_context', default=AuthContext())


def get_auth_context() -> AuthContext:
    return _current_auth.get()


def set_auth_context(organization_id: Optional[str], actor_user_id: Optional[str]):
    """Set the context for the current task. Returns a token for `reset_auth_context`."""
    return _current_auth.set(AuthContext(organization_id=organization_id, actor_user_id=actor_user_id))


def reset_auth_context(token):
    _current_auth.reset(token)


@contextmanager
def auth_context(organization_id: Optional[str], actor_user_id: Optional[str]) -> Iterator[AuthContext]:
    """Run a block as the given organization and user."""
    token = set_auth_context(organization_id, actor_user_id)
    try:
        yield get_auth_context()
    finally:
        reset_auth_context(token)
