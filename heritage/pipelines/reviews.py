"""Review lifecycle: listing, soft and hard delete, helpful votes and badges."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models
from heritage.config import settings
from heritage.storage import StorageClient, StorageError

from .records import NotFoundError, OwnershipError, RecordsError, commit, ensure_owner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeTier:
    name: str
    min: int
    max: int | None = None


# Ordered from lowest to highest; counts are active reviews
BADGE_TIERS: tuple[BadgeTier, ...] = (
    BadgeTier("Beginner", 1, 5),
    BadgeTier("Explorer", 6, 30),
    BadgeTier("Adventurer", 31, 80),
    BadgeTier("Voyager", 81, 120),
    BadgeTier("Wanderer", 121, 200),
    BadgeTier("Globetrotter", 201, 300),
    BadgeTier("Heritage Guardian", 301, 500),
    BadgeTier("Master Traveler", 501, 800),
    BadgeTier("Legendary Nomad", 801),
)


def badge_for_count(count: int) -> str:
    for tier in BADGE_TIERS:
        if count >= tier.min and (tier.max is None or count <= tier.max):
            return tier.name
    return BADGE_TIERS[0].name


def progress_to_next_badge(count: int) -> dict:
    """Current badge, the next one, and how many more reviews it takes."""
    current = badge_for_count(count)
    index = next(i for i, t in enumerate(BADGE_TIERS) if t.name == current)
    if index + 1 >= len(BADGE_TIERS):
        return {"current": current, "remaining": 0, "next": None}
    nxt = BADGE_TIERS[index + 1]
    return {"current": current, "remaining": max(nxt.min - count, 0), "next": nxt.name}


def _active():
    return or_(models.Review.status.is_(None), models.Review.status != "deleted")


async def list_user_reviews(session: AsyncSession, user_id: str) -> list[models.Review]:
    result = await session.execute(
        select(models.Review)
        .where(models.Review.user_id == user_id, _active())
        .order_by(models.Review.created_at.desc())
    )
    return list(result.scalars().all())


async def count_user_visits(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(models.Review).where(models.Review.user_id == user_id, _active())
    )
    return int(result.scalar_one())


async def soft_delete_review(session: AsyncSession, review_id: str, user_id: str) -> None:
    review = await session.get(models.Review, review_id)
    ensure_owner(review, user_id, "review")
    review.status = "deleted"
    await commit(session, "delete review")


async def has_user_voted(session: AsyncSession, review_id: str, voter_id: str) -> bool:
    result = await session.execute(
        select(models.HelpfulVote.id).where(
            models.HelpfulVote.review_id == review_id,
            models.HelpfulVote.voter_id == voter_id,
        )
    )
    return result.first() is not None


async def toggle_helpful(session: AsyncSession, review_id: str, voter_id: str) -> bool:
    """Add the caller's helpful vote, or remove it if present. Returns the new state."""
    result = await session.execute(
        select(models.HelpfulVote).where(
            models.HelpfulVote.review_id == review_id,
            models.HelpfulVote.voter_id == voter_id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        await session.delete(existing)
        await commit(session, "remove helpful vote")
        return False
    session.add(models.HelpfulVote(review_id=review_id, voter_id=voter_id))
    await commit(session, "add helpful vote")
    return True


async def hard_delete_review(
    session: AsyncSession,
    storage: StorageClient,
    review_id: str,
    caller_id: str,
) -> list[str]:
    """Permanently delete a review, its photos and votes, then its stored photos.

    The database part runs in one transaction and only for the owner. Storage
    cleanup afterwards is best-effort.

    Args:
        session: Database session
        storage: Storage client holding the service-role key
        review_id: Review to delete
        caller_id: Authenticated caller

    Returns:
        Storage paths that were scheduled for removal

    Raises:
        NotFoundError: If the review does not exist
        OwnershipError: If the caller does not own the review
    """
    paths_result = await session.execute(
        select(models.ReviewPhoto.storage_path).where(models.ReviewPhoto.review_id == review_id)
    )
    storage_paths = [p for p in paths_result.scalars().all() if p]

    try:
        review = await session.get(models.Review, review_id)
        ensure_owner(review, caller_id, "review")
        await session.execute(delete(models.ReviewPhoto).where(models.ReviewPhoto.review_id == review_id))
        await session.execute(delete(models.HelpfulVote).where(models.HelpfulVote.review_id == review_id))
        await session.execute(
            delete(models.Review).where(models.Review.id == review_id, models.Review.user_id == caller_id)
        )
        await session.commit()
    except (NotFoundError, OwnershipError):
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Hard delete failed for review {review_id}: {e}", exc_info=True)
        raise RecordsError(f"Failed to delete review: {e}") from e

    logger.info(f"Hard-deleted review {review_id} with {len(storage_paths)} photos")

    if storage_paths:
        try:
            await storage.remove(settings.storage.user_photos_bucket, storage_paths)
        except StorageError as e:
            logger.warning(f"Storage cleanup failed for review {review_id}: {e}")

    return storage_paths
