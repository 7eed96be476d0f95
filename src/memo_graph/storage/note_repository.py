"""Repository for note rows (metadata and content)."""

import datetime
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from memo_graph.models.db_models import DBNote, utc_now_naive
from memo_graph.models.schema import (Note, NoteSummary, VectorStatus,
                                      ensure_timezone_aware)
from memo_graph.storage.base import SqlRepository
from memo_graph.utils import make_preview

logger = logging.getLogger(__name__)


class NoteRepository(SqlRepository):
    """Storage and retrieval of notes.

    Vectors live on the same rows but are owned by VectorStore; this
    repository only writes the placeholder vector when a note is inserted.
    """

    def __init__(
        self,
        engine: Engine,
        preview_length: int = 120,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        super().__init__(engine, session_factory)
        self.preview_length = preview_length

    def _to_model(self, row: DBNote) -> Note:
        return Note(
            id=row.id,
            title=row.title,
            content=row.content or "",
            created_date=row.created_date,
            accessed_at=ensure_timezone_aware(row.accessed_at),
            vector_status=VectorStatus(row.vector_status),
        )

    def _to_summary(self, row: DBNote) -> NoteSummary:
        return NoteSummary(
            id=row.id,
            title=row.title,
            created_date=row.created_date,
            accessed_at=ensure_timezone_aware(row.accessed_at),
            preview=make_preview(row.content or "", self.preview_length),
        )

    def insert(
        self,
        title: str,
        content: str,
        placeholder_vector: bytes,
        created_date: Optional[datetime.date] = None,
        session: Optional[Session] = None,
    ) -> Note:
        """Insert a new, unvectorized note and return it with its new ID."""
        now = utc_now_naive()
        row = DBNote(
            title=title,
            content=content,
            created_date=created_date or now.date(),
            accessed_at=now,
            document_vector=placeholder_vector,
            vector_status=VectorStatus.UNVECTORIZED.value,
        )
        with self._session_scope(session, "insert_note") as s:
            s.add(row)
            s.flush()
            note = self._to_model(row)
        logger.debug(f"Inserted note {note.id}: {title[:50]!r}")
        return note

    def get(self, note_id: int, session: Optional[Session] = None) -> Optional[Note]:
        """Get a note by ID, or None if it does not exist."""
        with self._session_scope(session, "get_note") as s:
            row = s.get(DBNote, note_id)
            return self._to_model(row) if row is not None else None

    def exists(self, note_id: int, session: Optional[Session] = None) -> bool:
        with self._session_scope(session, "note_exists") as s:
            return s.scalar(select(DBNote.id).where(DBNote.id == note_id)) is not None

    def touch(self, note_id: int, session: Optional[Session] = None) -> bool:
        """Set ``accessed_at`` to now. Returns False if the note does not exist."""
        with self._session_scope(session, "touch_note") as s:
            result = s.execute(
                update(DBNote)
                .where(DBNote.id == note_id)
                .values(accessed_at=utc_now_naive())
            )
            return (result.rowcount or 0) > 0

    def update_fields(
        self,
        note_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> bool:
        """Update title and/or content. Fields left as None are unchanged.

        Returns:
            False if the note does not exist.
        """
        values = {}
        if title is not None:
            values["title"] = title
        if content is not None:
            values["content"] = content
        with self._session_scope(session, "update_note") as s:
            if not values:
                return self.exists(note_id, session=s)
            result = s.execute(
                update(DBNote).where(DBNote.id == note_id).values(**values)
            )
            return (result.rowcount or 0) > 0

    def delete_row(self, note_id: int, session: Optional[Session] = None) -> bool:
        """Delete the note row only. Returns False if it did not exist."""
        with self._session_scope(session, "delete_note") as s:
            result = s.execute(delete(DBNote).where(DBNote.id == note_id))
            return (result.rowcount or 0) > 0

    def list_summaries(self, session: Optional[Session] = None) -> List[NoteSummary]:
        """All notes as summaries (no vectors), ordered by ID."""
        with self._session_scope(session, "list_notes") as s:
            rows = s.scalars(select(DBNote).order_by(DBNote.id)).all()
            return [self._to_summary(row) for row in rows]

    def get_summaries(
        self, note_ids: Iterable[int], session: Optional[Session] = None
    ) -> Dict[int, NoteSummary]:
        """Summaries for the given IDs; missing IDs are absent from the result."""
        ids = sorted(set(note_ids))
        if not ids:
            return {}
        with self._session_scope(session, "get_summaries") as s:
            rows = s.scalars(select(DBNote).where(DBNote.id.in_(ids))).all()
            return {row.id: self._to_summary(row) for row in rows}

    def all_ids(self, session: Optional[Session] = None) -> List[int]:
        with self._session_scope(session, "all_note_ids") as s:
            return list(s.scalars(select(DBNote.id).order_by(DBNote.id)).all())

    def count(self, status: Optional[VectorStatus] = None) -> int:
        """Number of notes, optionally only those with the given vector status."""
        stmt = select(func.count()).select_from(DBNote)
        if status is not None:
            stmt = stmt.where(DBNote.vector_status == status.value)
        with self._session_scope(None, "count_notes") as s:
            return s.scalar(stmt) or 0
