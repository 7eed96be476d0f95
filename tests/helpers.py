"""Shared builders for graph tests."""

from typing import Optional, Sequence

import numpy as np

from memo_graph.models.schema import VectorStatus
from memo_graph.services.embedding_service import EmbeddingService
from memo_graph.services.graph_engine import GraphEngine
from memo_graph.storage.note_repository import NoteRepository
from memo_graph.storage.vector_store import VectorStore
from tests.fakes import DIM


def make_graph_engine(db_engine, embedding_service: EmbeddingService, **overrides) -> GraphEngine:
    """GraphEngine with test defaults (threshold 0.6, limit 8, mean policy, dim 8)."""
    settings = dict(
        threshold=0.6,
        limit=8,
        policy="mean",
        embedding_dim=DIM,
        preview_length=40,
    )
    settings.update(overrides)
    return GraphEngine(db_engine, embedding_service, **settings)


def add_vectorized_note(
    notes: NoteRepository,
    vectors: VectorStore,
    document_vector: np.ndarray,
    paragraph_vectors: Optional[Sequence[np.ndarray]] = None,
    title: str = "Note",
) -> int:
    """Insert a note and write its vectors directly, bypassing the embedder."""
    note = notes.insert(title, f"Content of {title}", vectors.placeholder_blob())
    vectors.replace_paragraph_vectors(
        note.id, paragraph_vectors or [document_vector]
    )
    vectors.set_document_vector(note.id, document_vector, VectorStatus.VECTORIZED)
    return note.id
