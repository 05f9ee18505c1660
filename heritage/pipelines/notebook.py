"""Rich-text notebook persistence, scoped to the owning user."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models

from .records import NotFoundError, ValidationError, commit, pick, reject_nulls, utcnow

logger = logging.getLogger(__name__)

NOTE_TYPES = ("note", "checklist", "todo")
UPDATABLE_FIELDS = ("title", "type", "content", "content_text", "is_archived")

# Block-level nodes that end a line when flattening a document to text
_BLOCK_NODES = {"paragraph", "heading", "listItem", "taskItem", "blockquote", "codeBlock"}


def empty_document() -> dict[str, Any]:
    return {"type": "doc", "content": [{"type": "paragraph"}]}


def document_text(node: Any) -> str:
    """Flatten a rich-text JSON document into plain text for search."""
    lines: list[str] = []
    buffer: list[str] = []

    def walk(n: Any) -> None:
        if not isinstance(n, dict):
            return
        if n.get("type") == "text":
            buffer.append(str(n.get("text", "")))
        elif n.get("type") == "hardBreak":
            buffer.append("\n")
        for child in n.get("content") or []:
            walk(child)
        if n.get("type") in _BLOCK_NODES and buffer:
            lines.append("".join(buffer))
            buffer.clear()

    walk(node)
    if buffer:
        lines.append("".join(buffer))
    return "\n".join(line for line in lines if line.strip())


def note_to_dict(note: models.TravelNote) -> dict[str, Any]:
    return {
        "id": note.id,
        "user_id": note.user_id,
        "title": note.title,
        "type": note.type,
        "content": note.content,
        "content_text": note.content_text,
        "is_archived": note.is_archived,
        "created_at": note.created_at,
        "updated_at": note.updated_at,
    }


async def list_notes(session: AsyncSession, user_id: str) -> list[models.TravelNote]:
    result = await session.execute(
        select(models.TravelNote)
        .where(models.TravelNote.user_id == user_id, models.TravelNote.is_archived.is_(False))
        .order_by(models.TravelNote.updated_at.desc())
    )
    return list(result.scalars().all())


async def create_note(session: AsyncSession, user_id: str, note_type: str) -> models.TravelNote:
    if note_type not in NOTE_TYPES:
        raise ValidationError(f"Unknown note type: {note_type}")
    now = utcnow()
    note = models.TravelNote(
        user_id=user_id,
        title="New Note" if note_type == "note" else "New To-Do",
        type=note_type,
        content=empty_document(),
        content_text="",
        is_archived=False,
        created_at=now,
        updated_at=now,
    )
    session.add(note)
    await commit(session, "create note")
    await session.refresh(note)
    return note


async def get_note(session: AsyncSession, user_id: str, note_id: str) -> models.TravelNote | None:
    result = await session.execute(
        select(models.TravelNote).where(models.TravelNote.id == note_id, models.TravelNote.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def update_note(session: AsyncSession, user_id: str, note_id: str, patch: dict[str, Any]) -> models.TravelNote:
    """Apply a partial update and bump ``updated_at``.

    When ``content`` changes without ``content_text``, the text is derived
    from the document.
    """
    note = await get_note(session, user_id, note_id)
    if note is None:
        raise NotFoundError("Note not found")

    changes = pick(patch, UPDATABLE_FIELDS)
    reject_nulls(changes, UPDATABLE_FIELDS)
    if "type" in changes and changes["type"] not in NOTE_TYPES:
        raise ValidationError(f"Unknown note type: {changes['type']}")
    if "content" in changes and "content_text" not in changes:
        changes["content_text"] = document_text(changes["content"])

    for key, value in changes.items():
        setattr(note, key, value)
    note.updated_at = utcnow()
    await commit(session, "update note")
    await session.refresh(note)
    return note


async def delete_note(session: AsyncSession, user_id: str, note_id: str) -> None:
    await session.execute(
        delete(models.TravelNote).where(models.TravelNote.id == note_id, models.TravelNote.user_id == user_id)
    )
    await commit(session, "delete note")
