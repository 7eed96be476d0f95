"""Durable storage for document and paragraph embedding vectors.

Vectors are stored as raw little-endian float32 blobs, the format sqlite-vec
reads natively, so the database can compare them with
``vec_distance_cosine`` without decoding them in Python.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy import Float, LargeBinary, bindparam, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from memo_graph.exceptions import ConfigurationError, EmbeddingError, ErrorCode
from memo_graph.models.db_models import DBNote, DBParagraphVector
from memo_graph.models.schema import VectorStatus
from memo_graph.storage.base import SqlRepository

logger = logging.getLogger(__name__)


def encode_vector(vector: np.ndarray, dim: Optional[int] = None) -> bytes:
    """Serialize a 1-D vector to a float32 blob.

    Raises:
        EmbeddingError: If the vector is not 1-D, has the wrong dimension,
            or contains NaN/inf.
    """
    arr = np.asarray(vector, dtype=np.float32)
    if arr.ndim != 1:
        raise EmbeddingError(
            f"Expected a 1-D vector, got shape {arr.shape}",
            code=ErrorCode.EMBEDDING_DIMENSION_INVALID,
            operation="encode_vector",
        )
    if dim is not None and arr.shape[0] != dim:
        raise EmbeddingError(
            f"Expected a vector of dimension {dim}, got {arr.shape[0]}",
            code=ErrorCode.EMBEDDING_DIMENSION_INVALID,
            operation="encode_vector",
        )
    if not np.all(np.isfinite(arr)):
        raise EmbeddingError(
            "Vector contains NaN or infinite values",
            code=ErrorCode.EMBEDDING_INFERENCE_FAILED,
            operation="encode_vector",
        )
    return arr.astype("<f4").tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Deserialize a float32 blob into a writable numpy array."""
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def zero_vector(dim: int) -> np.ndarray:
    """The placeholder document vector of a note that is not vectorized yet."""
    return np.zeros(dim, dtype=np.float32)


class VectorStore(SqlRepository):
    """Per-note and per-paragraph vector storage plus the distance primitive."""

    def __init__(
        self,
        engine: Engine,
        embedding_dim: int,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        super().__init__(engine, session_factory)
        self.embedding_dim = embedding_dim

    def placeholder_blob(self) -> bytes:
        return encode_vector(zero_vector(self.embedding_dim))

    def replace_paragraph_vectors(
        self,
        note_id: int,
        vectors: Sequence[np.ndarray],
        session: Optional[Session] = None,
    ) -> int:
        """Replace all paragraph vectors of a note (delete-all, then insert-all).

        Returns:
            Number of paragraph rows written.
        """
        blobs = [encode_vector(v, self.embedding_dim) for v in vectors]
        with self._session_scope(session, "replace_paragraph_vectors") as s:
            self.delete_paragraph_vectors(note_id, session=s)
            s.add_all(
                DBParagraphVector(note_id=note_id, paragraph_index=i, vector=blob)
                for i, blob in enumerate(blobs)
            )
            s.flush()
        return len(blobs)

    def delete_paragraph_vectors(
        self, note_id: int, session: Optional[Session] = None
    ) -> int:
        """Delete every paragraph vector of a note. Idempotent."""
        with self._session_scope(session, "delete_paragraph_vectors") as s:
            result = s.execute(
                delete(DBParagraphVector).where(DBParagraphVector.note_id == note_id)
            )
            return result.rowcount or 0

    def get_paragraph_vectors(
        self, note_id: int, session: Optional[Session] = None
    ) -> List[np.ndarray]:
        """Paragraph vectors of a note in paragraph order."""
        with self._session_scope(session, "get_paragraph_vectors") as s:
            blobs = s.scalars(
                select(DBParagraphVector.vector)
                .where(DBParagraphVector.note_id == note_id)
                .order_by(DBParagraphVector.paragraph_index)
            ).all()
        return [decode_vector(b) for b in blobs]

    def set_document_vector(
        self,
        note_id: int,
        vector: np.ndarray,
        status: VectorStatus = VectorStatus.VECTORIZED,
        session: Optional[Session] = None,
    ) -> bool:
        """Write a note's document vector and status.

        Returns:
            True if the note row exists and was updated.
        """
        blob = encode_vector(vector, self.embedding_dim)
        with self._session_scope(session, "set_document_vector") as s:
            result = s.execute(
                update(DBNote)
                .where(DBNote.id == note_id)
                .values(document_vector=blob, vector_status=status.value)
            )
            return (result.rowcount or 0) > 0

    def get_document_vector(
        self, note_id: int, session: Optional[Session] = None
    ) -> Optional[np.ndarray]:
        """Return a note's document vector, or None if the note does not exist."""
        with self._session_scope(session, "get_document_vector") as s:
            blob = s.scalar(select(DBNote.document_vector).where(DBNote.id == note_id))
        if blob is None:
            return None
        return decode_vector(blob)

    def distance(self, a: np.ndarray, b: np.ndarray) -> Optional[float]:
        """Cosine distance between two vectors, computed by sqlite-vec.

        Returns None when the distance is undefined (a zero vector).
        """
        with self._session_scope(None, "distance") as s:
            value = s.scalar(
                select(
                    func.vec_distance_cosine(
                        bindparam("a", encode_vector(a), type_=LargeBinary),
                        bindparam("b", encode_vector(b), type_=LargeBinary),
                        type_=Float,
                    )
                )
            )
        return None if value is None else float(value)

    def count_paragraphs(self, note_id: Optional[int] = None) -> int:
        """Number of stored paragraph vectors, optionally for one note."""
        stmt = select(func.count()).select_from(DBParagraphVector)
        if note_id is not None:
            stmt = stmt.where(DBParagraphVector.note_id == note_id)
        with self._session_scope(None, "count_paragraphs") as s:
            return s.scalar(stmt) or 0

    def check_dimension(self) -> None:
        """Verify stored vectors match the configured dimension.

        Raises:
            ConfigurationError: If any stored document or paragraph vector has
                a different size, i.e. the database was built with another model.
        """
        expected = self.embedding_dim * 4
        with self._session_scope(None, "check_dimension") as s:
            note_sizes = set(
                s.scalars(select(func.length(DBNote.document_vector)).distinct()).all()
            )
            paragraph_sizes = set(
                s.scalars(
                    select(func.length(DBParagraphVector.vector)).distinct()
                ).all()
            )
        bad = (note_sizes | paragraph_sizes) - {expected}
        if bad:
            found = sorted(size // 4 for size in bad)
            raise ConfigurationError(
                f"Stored vectors have dimension {found}, but embedding_dim is "
                f"{self.embedding_dim}. Reindex with the configured model or "
                "restore the matching embedding_dim.",
                config_key="embedding_dim",
                code=ErrorCode.CONFIG_DIMENSION_MISMATCH,
            )
        logger.debug(f"Stored vectors match dimension {self.embedding_dim}")
