"""Turns note content into paragraph vectors and one document vector.

Content is split on blank lines; each non-empty paragraph is embedded (one
batched call per note) and the document vector is the element-wise mean of
the paragraph vectors.

Embedding and persisting are separate steps so callers can embed outside a
database transaction and write everything for one event inside it.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from memo_graph.exceptions import EmbeddingError, EmptyContentError, ErrorCode
from memo_graph.models.schema import VectorStatus
from memo_graph.services.embedding_service import EmbeddingService
from memo_graph.storage.vector_store import VectorStore

logger = logging.getLogger(__name__)

_BLANK_LINE = re.compile(r"\n\s*\n")


def split_paragraphs(content: str) -> List[str]:
    """Split on blank lines into trimmed, non-empty paragraphs."""
    if not content:
        return []
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    parts = (part.strip() for part in _BLANK_LINE.split(normalized))
    return [part for part in parts if part]


def mean_vector(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Element-wise arithmetic mean of equally sized vectors."""
    if not vectors:
        raise ValueError("mean_vector needs at least one vector")
    return np.mean(np.stack(vectors), axis=0).astype(np.float32)


@dataclass(frozen=True)
class VectorizedDocument:
    """Embedding output for one note, ready to persist."""

    paragraphs: List[str]
    paragraph_vectors: List[np.ndarray]
    document_vector: np.ndarray


class DocumentVectorizer:
    """Splits, embeds and reduces note content.

    Args:
        embedding_service: Shared embedding service (injected so tests can
            pass a fake provider).
        vector_store: Where paragraph and document vectors are written.
        embedding_dim: Expected vector dimension.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: VectorStore,
        embedding_dim: int,
    ) -> None:
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.embedding_dim = embedding_dim

    def embed_document(
        self, content: str, note_id: Optional[int] = None
    ) -> VectorizedDocument:
        """Embed ``content`` without touching the database.

        Raises:
            EmptyContentError: If the content has no non-blank paragraph.
            EmbeddingError: If the embedding call fails, times out, or returns
                vectors of the wrong dimension.
        """
        paragraphs = split_paragraphs(content)
        if not paragraphs:
            raise EmptyContentError(note_id)

        vectors = [
            np.asarray(v, dtype=np.float32)
            for v in self.embedding_service.embed_batch(paragraphs)
        ]
        for vector in vectors:
            if vector.shape != (self.embedding_dim,):
                raise EmbeddingError(
                    f"Embedder returned shape {vector.shape}, "
                    f"expected ({self.embedding_dim},)",
                    code=ErrorCode.EMBEDDING_DIMENSION_INVALID,
                    operation="embed_document",
                )

        logger.debug(
            f"Embedded {len(paragraphs)} paragraph(s)"
            + (f" for note {note_id}" if note_id is not None else "")
        )
        return VectorizedDocument(
            paragraphs=paragraphs,
            paragraph_vectors=vectors,
            document_vector=mean_vector(vectors),
        )

    def persist(
        self,
        note_id: int,
        document: VectorizedDocument,
        session: Optional[Session] = None,
    ) -> None:
        """Replace the note's paragraph vectors and write its document vector.

        Both writes share ``session`` (or one new transaction), so they land
        together or not at all.
        """
        if session is None:
            with self.vector_store.transaction() as s:
                self._write(note_id, document, s)
        else:
            self._write(note_id, document, session)

    def _write(
        self, note_id: int, document: VectorizedDocument, session: Session
    ) -> None:
        self.vector_store.replace_paragraph_vectors(
            note_id, document.paragraph_vectors, session=session
        )
        self.vector_store.set_document_vector(
            note_id,
            document.document_vector,
            status=VectorStatus.VECTORIZED,
            session=session,
        )

    def vectorize(
        self, note_id: int, content: str, session: Optional[Session] = None
    ) -> np.ndarray:
        """Embed and persist in one step.

        Returns:
            The note's new document vector.
        """
        document = self.embed_document(content, note_id=note_id)
        self.persist(note_id, document, session=session)
        return document.document_vector
