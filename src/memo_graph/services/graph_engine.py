"""Orchestrates note lifecycle events and serves graph queries.

Each lifecycle event embeds first, with no database transaction open, then
writes everything the event changes (note row, paragraph vectors, document
vector, status and edges) in a single transaction. A failed event therefore
leaves the three relations exactly as they were.
"""

import datetime
import logging
import threading
import weakref
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from memo_graph.config import config, validate_similarity_settings
from memo_graph.exceptions import (EmbeddingError, EmptyContentError,
                                   ErrorCode, NoteNotFoundError,
                                   NoteValidationError)
from memo_graph.models.db_models import get_session_factory
from memo_graph.models.schema import (GraphSnapshot, Note, NoteSummary,
                                      SimilarNote, VectorStatus)
from memo_graph.observability import traced
from memo_graph.services.document_vectorizer import DocumentVectorizer
from memo_graph.services.embedding_service import EmbeddingService
from memo_graph.storage.note_repository import NoteRepository
from memo_graph.storage.similarity_index import SimilarityIndex
from memo_graph.storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


class GraphEngine:
    """Entry point for creating, editing, deleting and relating notes.

    Settings left as None are taken from the global config. They are
    validated on construction, so an engine with an invalid threshold,
    limit, policy or dimension never exists.

    Args:
        engine: Shared SQLAlchemy engine from ``init_db``.
        embedding_service: Process-wide embedding service.
    """

    def __init__(
        self,
        engine: Engine,
        embedding_service: EmbeddingService,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        policy: Optional[str] = None,
        embedding_dim: Optional[int] = None,
        preview_length: Optional[int] = None,
    ) -> None:
        threshold = config.similarity_threshold if threshold is None else threshold
        limit = config.similarity_limit if limit is None else limit
        policy = policy or config.similarity_policy
        embedding_dim = embedding_dim or config.embedding_dim
        preview_length = (
            config.preview_length if preview_length is None else preview_length
        )
        validate_similarity_settings(threshold, limit, policy, embedding_dim)

        self.engine = engine
        self.embedding_service = embedding_service
        self.embedding_dim = embedding_dim

        session_factory = get_session_factory(engine)
        self.notes = NoteRepository(engine, preview_length, session_factory)
        self.vectors = VectorStore(engine, embedding_dim, session_factory)
        self.similarity = SimilarityIndex(
            engine, threshold, limit, policy, session_factory
        )
        self.vectorizer = DocumentVectorizer(
            embedding_service, self.vectors, embedding_dim
        )

        # Per-note locks keep events for one note in submission order. The
        # WeakValueDictionary drops a lock once no thread holds it.
        self._note_locks: weakref.WeakValueDictionary[int, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._note_locks_lock = threading.Lock()
        # SQLite has one writer; serializing write transactions here avoids
        # SQLITE_BUSY on read-to-write upgrades inside a refresh.
        self._write_lock = threading.RLock()

    def _get_note_lock(self, note_id: int) -> threading.RLock:
        """Get or create the reentrant lock for one note."""
        with self._note_locks_lock:
            lock = self._note_locks.get(note_id)
            if lock is None:
                lock = threading.RLock()
                self._note_locks[note_id] = lock
            return lock

    @property
    def threshold(self) -> float:
        return self.similarity.threshold

    @property
    def limit(self) -> int:
        return self.similarity.limit

    @property
    def policy(self) -> str:
        return self.similarity.policy

    # =========================================================================
    # Lifecycle events
    # =========================================================================

    @traced("create_note")
    def create_note(
        self,
        title: str,
        content: str = "",
        created_date: Optional[datetime.date] = None,
    ) -> Note:
        """Create a note, vectorize it and link it to similar notes.

        If the content is empty or embedding fails, the note is still created,
        unvectorized and without edges; ``revectorize_note`` can retry later.

        Raises:
            NoteValidationError: If the title is missing.
            StorageError: If the write transaction fails (nothing is stored).
        """
        if not title or not title.strip():
            raise NoteValidationError(
                "Title is required",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        content = content or ""

        document = None
        try:
            document = self.vectorizer.embed_document(content)
        except (EmptyContentError, EmbeddingError) as e:
            logger.warning(f"Creating note {title[:50]!r} unvectorized: {e}")

        with self._write_lock, self.notes.transaction() as session:
            note = self.notes.insert(
                title,
                content,
                self.vectors.placeholder_blob(),
                created_date=created_date,
                session=session,
            )
            edge_count = 0
            if document is not None:
                self.vectorizer.persist(note.id, document, session=session)
                edge_count = len(self.similarity.refresh(note.id, session=session))

        if document is None:
            return note
        logger.info(f"Created note {note.id} with {edge_count} similarity edge(s)")
        return note.model_copy(update={"vector_status": VectorStatus.VECTORIZED})

    @traced("update_note")
    def update_note(
        self,
        note_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Note:
        """Update a note's title and/or content.

        New content is re-vectorized and the note's edges rebuilt. A
        title-only update touches neither vectors nor edges.

        Raises:
            NoteNotFoundError: If the note does not exist.
            NoteValidationError: If ``title`` is given but blank.
            EmptyContentError: If ``content`` is given but has no paragraphs.
            EmbeddingError: If embedding fails or times out.
            In every error case nothing is changed.
        """
        if title is not None and not title.strip():
            raise NoteValidationError(
                "Title cannot be empty",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )

        with self._get_note_lock(note_id):
            if not self.notes.exists(note_id):
                raise NoteNotFoundError(note_id)

            document = None
            if content is not None:
                document = self.vectorizer.embed_document(content, note_id=note_id)

            with self._write_lock, self.notes.transaction() as session:
                if not self.notes.update_fields(
                    note_id, title=title, content=content, session=session
                ):
                    raise NoteNotFoundError(note_id)
                if document is not None:
                    self.vectorizer.persist(note_id, document, session=session)
                    edges = self.similarity.refresh(note_id, session=session)
                    logger.info(
                        f"Re-vectorized note {note_id}: {len(edges)} similarity edge(s)"
                    )
                note = self.notes.get(note_id, session=session)

        return note

    @traced("delete_note")
    def delete_note(self, note_id: int) -> bool:
        """Delete a note with its edges and paragraph vectors, atomically.

        Returns:
            False if the note did not exist.
        """
        with self._get_note_lock(note_id):
            with self._write_lock, self.notes.transaction() as session:
                if not self.notes.exists(note_id, session=session):
                    return False
                edges = self.similarity.remove(note_id, session=session)
                paragraphs = self.vectors.delete_paragraph_vectors(
                    note_id, session=session
                )
                self.notes.delete_row(note_id, session=session)

        logger.info(
            f"Deleted note {note_id} ({edges} edge(s), {paragraphs} paragraph vector(s))"
        )
        return True

    @traced("revectorize_note")
    def revectorize_note(self, note_id: int) -> Note:
        """Vectorize a note's current content again and rebuild its edges.

        This is the recovery path for notes created while the embedder was
        failing.

        Raises:
            NoteNotFoundError: If the note does not exist.
            EmptyContentError: If the note has no content to embed.
            EmbeddingError: If embedding fails or times out.
        """
        with self._get_note_lock(note_id):
            note = self.notes.get(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            document = self.vectorizer.embed_document(note.content, note_id=note_id)

            with self._write_lock, self.notes.transaction() as session:
                self.vectorizer.persist(note_id, document, session=session)
                self.similarity.refresh(note_id, session=session)

        return note.model_copy(update={"vector_status": VectorStatus.VECTORIZED})

    @traced("reindex")
    def reindex(self) -> Dict[str, int]:
        """Re-vectorize every note, then rebuild the whole edge set.

        Per-note failures are logged and counted, not raised. Edges are
        cleared and rebuilt in one transaction, so readers never observe a
        half-built graph. Every note keeps the neighbours it selects itself.
        """
        note_ids = self.notes.all_ids()
        vectorized = 0
        failed = 0

        for note_id in note_ids:
            with self._get_note_lock(note_id):
                note = self.notes.get(note_id)
                if note is None:
                    continue  # Deleted meanwhile
                try:
                    document = self.vectorizer.embed_document(
                        note.content, note_id=note_id
                    )
                except (EmptyContentError, EmbeddingError) as e:
                    logger.warning(f"Reindex skipped note {note_id}: {e}")
                    failed += 1
                    continue
                with self._write_lock, self.notes.transaction() as session:
                    self.vectorizer.persist(note_id, document, session=session)
                vectorized += 1

        with self._write_lock, self.notes.transaction() as session:
            cleared, _ = self.similarity.rebuild(
                self.notes.all_ids(session=session), session=session
            )

        stats = {
            "notes": len(note_ids),
            "vectorized": vectorized,
            "failed": failed,
            "edges_cleared": cleared,
            "edges": self.similarity.count_edges(),
        }
        logger.info(f"Reindex complete: {stats}")
        return stats

    # =========================================================================
    # Queries
    # =========================================================================

    @traced("get_note")
    def get_note(self, note_id: int) -> Note:
        """Return a note and record the access.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self._write_lock, self.notes.transaction() as session:
            if not self.notes.touch(note_id, session=session):
                raise NoteNotFoundError(note_id)
            return self.notes.get(note_id, session=session)

    def list_notes(self) -> List[NoteSummary]:
        return self.notes.list_summaries()

    @traced("get_similar")
    def get_similar(self, note_id: int) -> List[SimilarNote]:
        """Notes linked to ``note_id``, highest score first.

        An empty list is a normal answer.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self.notes.transaction() as session:
            if not self.notes.exists(note_id, session=session):
                raise NoteNotFoundError(note_id)
            return self.similarity.similar_to(note_id, session=session)

    @traced("get_graph")
    def get_graph(self, limit: int = 0) -> GraphSnapshot:
        """The ``limit`` strongest edges and the notes they connect.

        Nodes are only the endpoints of the returned edges, ordered by ID.
        ``limit <= 0`` returns every edge.
        """
        with self.notes.transaction() as session:
            edges = self.similarity.top_edges(limit, session=session)
            node_ids = {edge.note_id_low for edge in edges}
            node_ids.update(edge.note_id_high for edge in edges)
            summaries = self.notes.get_summaries(node_ids, session=session)

        return GraphSnapshot(
            nodes=[summaries[i] for i in sorted(summaries)],
            edges=edges,
        )

    def status(self) -> Dict[str, Any]:
        """Counts and settings for health checks."""
        notes = self.notes.count()
        vectorized = self.notes.count(VectorStatus.VECTORIZED)
        return {
            "notes": notes,
            "vectorized": vectorized,
            "unvectorized": notes - vectorized,
            "paragraph_vectors": self.vectors.count_paragraphs(),
            "edges": self.similarity.count_edges(),
            "similarity_threshold": self.threshold,
            "similarity_limit": self.limit,
            "similarity_policy": self.policy,
            "embedding_dim": self.embedding_dim,
            "embedder_loaded": self.embedding_service.embedder_loaded,
        }

    def shutdown(self) -> None:
        """Release the embedding model and worker threads."""
        self.embedding_service.shutdown()
