"""Storage layer for the memo graph."""

from memo_graph.storage.base import SqlRepository
from memo_graph.storage.note_repository import NoteRepository
from memo_graph.storage.similarity_index import SimilarityIndex
from memo_graph.storage.vector_store import VectorStore

__all__ = [
    "SqlRepository",
    "NoteRepository",
    "SimilarityIndex",
    "VectorStore",
]
