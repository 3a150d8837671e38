"""Workspace-scoped DB context helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session


def set_workspace_context(session: Session, workspace_id: Optional[str]) -> None:
    """Set workspace context for PostgreSQL RLS policies on signal tables."""

    bind = session.get_bind()
    if bind is None or bind.dialect.name != "postgresql":
        return

    session.execute(
        text("SELECT set_config('app.current_workspace_id', :workspace_id, true)"),
        {"workspace_id": workspace_id or ""},
    )


def reset_workspace_context(session: Session) -> None:
    set_workspace_context(session=session, workspace_id=None)


@contextmanager
def workspace_context(session: Session, workspace_id: str) -> Iterator[Session]:
    set_workspace_context(session, workspace_id)
    try:
        yield session
    finally:
        reset_workspace_context(session)
