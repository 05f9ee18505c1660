"""Shared errors and helpers for the CRUD pipelines over the hosted database."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Raised when caller input is malformed."""
    pass


class NotFoundError(Exception):
    """Raised when a requested row does not exist (or is not visible to the caller)."""
    pass


class OwnershipError(Exception):
    """Raised when the caller may not touch the row."""
    pass


class RecordsError(Exception):
    """Raised when a database write fails unexpectedly."""
    pass


def utcnow() -> datetime:
    return datetime.utcnow()


def pick(payload: dict[str, Any], allowed: tuple[str, ...] | list[str]) -> dict[str, Any]:
    """Keep only whitelisted keys that are present in ``payload``."""
    return {k: payload[k] for k in allowed if k in payload}


def reject_nulls(changes: dict[str, Any], required: tuple[str, ...] | list[str]) -> None:
    """Refuse a patch that would null out a required column."""
    nulled = [k for k in required if k in changes and changes[k] is None]
    if nulled:
        raise ValidationError(f"Field(s) cannot be null: {', '.join(nulled)}")


def ensure_owner(row: Any, user_id: str, what: str = "row") -> None:
    if row is None:
        raise NotFoundError(f"{what} not found")
    if getattr(row, "user_id", None) != user_id:
        raise OwnershipError(f"Not the owner of this {what}")


async def commit(session: AsyncSession, action: str) -> None:
    """Commit the session; on failure roll back and raise :class:`RecordsError`.

    Args:
        session: Session holding the pending changes
        action: Short description used in the log line and error, e.g. ``"update note"``
    """
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise RecordsError(f"Failed to {action}: {e}") from e
