"""Dialect lookup for code that only holds a Session."""

from sqlalchemy.exc import UnboundExecutionError
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """Name of the dialect the session talks to, or ``default`` when unbound."""
    try:
        bind = session.get_bind()
    except UnboundExecutionError:
        return default
    name = getattr(getattr(bind, "dialect", None), "name", None)
    return name if isinstance(name, str) else default
