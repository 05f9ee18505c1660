"""Tests for portfolio ordering and preferences."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from heritage import models
from heritage.pipelines import portfolio
from heritage.pipelines.records import NotFoundError, ValidationError

from .conftest import USER_ID


@pytest.mark.asyncio
async def test_reorder_creates_and_updates_rows(session) -> None:
    session.add(models.UserPortfolio(user_id=USER_ID, photo_id="p1", order_index=5))
    await session.commit()

    count = await portfolio.reorder_portfolio(
        session, USER_ID, [{"photo_id": "p1", "order_index": 1}, {"photo_id": "p2", "order_index": 0}]
    )

    assert count == 2
    rows = await session.execute(
        select(models.UserPortfolio.photo_id, models.UserPortfolio.order_index)
        .where(models.UserPortfolio.user_id == USER_ID)
        .order_by(models.UserPortfolio.order_index)
    )
    assert rows.all() == [("p2", 0), ("p1", 1)]


@pytest.mark.asyncio
@pytest.mark.parametrize("updates", [[{"photo_id": "p1"}], [{"order_index": 1}], [{"photo_id": "p1", "order_index": "1"}]])
async def test_reorder_rejects_invalid_payload(session, updates) -> None:
    with pytest.raises(ValidationError, match="Invalid payload"):
        await portfolio.reorder_portfolio(session, USER_ID, updates)


@pytest.mark.asyncio
async def test_update_prefs_applies_whitelisted_fields(session) -> None:
    session.add(models.Profile(id=USER_ID, username="lan"))
    await session.commit()

    patch = await portfolio.update_portfolio_prefs(
        session, USER_ID, {"portfolio_theme": "dark", "is_admin": True}
    )

    assert patch == {"portfolio_theme": "dark"}
    profile = await session.get(models.Profile, USER_ID)
    assert profile.portfolio_theme == "dark"
    assert profile.is_admin is False


@pytest.mark.asyncio
async def test_update_prefs_errors(session) -> None:
    with pytest.raises(ValidationError, match="No valid fields"):
        await portfolio.update_portfolio_prefs(session, USER_ID, {"is_admin": True})
    with pytest.raises(NotFoundError):
        await portfolio.update_portfolio_prefs(session, USER_ID, {"portfolio_layout": "grid"})
