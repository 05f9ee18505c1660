"""User portfolio ordering and display preferences."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models

from .records import NotFoundError, ValidationError, commit, pick

logger = logging.getLogger(__name__)

PREF_FIELDS = ("portfolio_theme", "portfolio_layout")


async def reorder_portfolio(session: AsyncSession, user_id: str, updates: list[dict[str, Any]]) -> int:
    """Set ``order_index`` per photo, creating the portfolio row when missing.

    Returns:
        Number of updates applied
    """
    for update in updates:
        if not update.get("photo_id") or not isinstance(update.get("order_index"), int):
            raise ValidationError("Invalid payload")

    for update in updates:
        result = await session.execute(
            select(models.UserPortfolio).where(
                models.UserPortfolio.user_id == user_id,
                models.UserPortfolio.photo_id == update["photo_id"],
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = models.UserPortfolio(user_id=user_id, photo_id=update["photo_id"])
            session.add(row)
        row.order_index = update["order_index"]
    await commit(session, "reorder portfolio")
    logger.info(f"Reordered {len(updates)} portfolio photos for user {user_id}")
    return len(updates)


async def update_portfolio_prefs(session: AsyncSession, user_id: str, body: dict[str, Any]) -> dict[str, Any]:
    """Apply the whitelisted preference fields and return the applied patch."""
    patch = pick(body, PREF_FIELDS)
    if not patch:
        raise ValidationError("No valid fields")
    profile = await session.get(models.Profile, user_id)
    if profile is None:
        raise NotFoundError("Profile not found")
    for key, value in patch.items():
        setattr(profile, key, value)
    await commit(session, "update portfolio preferences")
    return patch
