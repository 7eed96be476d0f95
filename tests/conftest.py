"""Common test fixtures for the memo graph."""

import pytest

from memo_graph.config import config
from memo_graph.models.db_models import get_session_factory, init_db
from memo_graph.observability import metrics
from memo_graph.services.embedding_service import EmbeddingService
from memo_graph.storage.note_repository import NoteRepository
from memo_graph.storage.similarity_index import SimilarityIndex
from memo_graph.storage.vector_store import VectorStore
from tests.fakes import DIM, FakeEmbeddingProvider
from tests.helpers import make_graph_engine


@pytest.fixture(autouse=True)
def _isolated_metrics(tmp_path, monkeypatch):
    """Keep metrics in memory and out of the home directory."""
    monkeypatch.setattr(metrics, "_metrics_file", tmp_path / "metrics.json")
    monkeypatch.setattr(metrics, "_auto_save_interval", 0)
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Point the global config at a temporary database (auto-restored)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "memo_graph.db")
    yield config


@pytest.fixture
def db_engine(tmp_path):
    """A real SQLite file database with sqlite-vec loaded."""
    engine = init_db(f"sqlite:///{tmp_path / 'memo_graph.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory(db_engine)


@pytest.fixture
def note_repository(db_engine, session_factory):
    return NoteRepository(db_engine, preview_length=40, session_factory=session_factory)


@pytest.fixture
def vector_store(db_engine, session_factory):
    return VectorStore(db_engine, DIM, session_factory=session_factory)


@pytest.fixture
def similarity_index(db_engine, session_factory):
    return SimilarityIndex(
        db_engine, threshold=0.6, limit=8, session_factory=session_factory
    )


@pytest.fixture
def fake_embedder():
    """A FakeEmbeddingProvider matching the test dimension (8)."""
    return FakeEmbeddingProvider(dim=DIM)


@pytest.fixture
def embedding_service(fake_embedder):
    service = EmbeddingService(fake_embedder, concurrency=1, timeout=5.0)
    yield service
    service.shutdown()


@pytest.fixture
def graph_engine(db_engine, embedding_service):
    """GraphEngine on a fresh database with threshold 0.6 and limit 8."""
    return make_graph_engine(db_engine, embedding_service)
