"""SQLAlchemy database models for the memo graph."""
import datetime
import logging
from typing import Optional

import sqlite_vec
from sqlalchemy import (CheckConstraint, Column, Date, DateTime, Float,
                        ForeignKey, Integer, LargeBinary, String, Text,
                        create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from memo_graph.config import config
from memo_graph.exceptions import ErrorCode, StorageError
from memo_graph.models.schema import VectorStatus

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()


def utc_now_naive() -> datetime.datetime:
    """UTC now without tzinfo; SQLite DATETIME columns store no offset."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class DBNote(Base):
    """Database model for a note.

    ``document_vector`` holds ``embedding_dim`` little-endian float32 values.
    It is a zero vector while ``vector_status`` is ``unvectorized``.
    """
    __tablename__ = "notes"
    # AUTOINCREMENT: ids of deleted notes are never handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    created_date = Column(Date, nullable=False, default=lambda: utc_now_naive().date())
    accessed_at = Column(DateTime, nullable=False, default=utc_now_naive)
    document_vector = Column(LargeBinary, nullable=False)
    vector_status = Column(
        String(20),
        nullable=False,
        default=VectorStatus.UNVECTORIZED.value,
        index=True,
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}', status='{self.vector_status}')>"


class DBParagraphVector(Base):
    """Database model for one embedded paragraph of a note."""
    __tablename__ = "paragraph_vectors"
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    )
    paragraph_index = Column(Integer, primary_key=True)
    vector = Column(LargeBinary, nullable=False)

    __table_args__ = (
        CheckConstraint("paragraph_index >= 0", name="ck_paragraph_index"),
    )

    def __repr__(self) -> str:
        """Return string representation of paragraph vector."""
        return f"<ParagraphVector(note_id={self.note_id}, index={self.paragraph_index})>"


class DBSimilarity(Base):
    """Database model for an undirected similarity edge.

    The pair is stored in canonical orientation (low < high), so an
    unordered pair maps to exactly one primary key.
    """
    __tablename__ = "memo_similarities"
    note_id_low = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    )
    note_id_high = Column(
        Integer,
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    score = Column(Float, nullable=False, index=True)
    created_time = Column(DateTime, nullable=False, default=utc_now_naive)

    __table_args__ = (
        CheckConstraint("note_id_low < note_id_high", name="ck_similarity_canonical"),
    )

    def __repr__(self) -> str:
        """Return string representation of similarity edge."""
        return (
            f"<Similarity(low={self.note_id_low}, high={self.note_id_high}, "
            f"score={self.score:.4f})>"
        )


def load_vec_extension(dbapi_connection) -> None:
    """Load sqlite-vec into a raw sqlite3 connection.

    Provides ``vec_distance_cosine`` and friends to SQL.

    Raises:
        StorageError: If this Python's sqlite3 cannot load extensions.
    """
    try:
        dbapi_connection.enable_load_extension(True)
        sqlite_vec.load(dbapi_connection)
        dbapi_connection.enable_load_extension(False)
    except AttributeError as e:
        raise StorageError(
            "This Python build cannot load SQLite extensions; sqlite-vec is required",
            operation="load_vec_extension",
            code=ErrorCode.VECTOR_EXTENSION_UNAVAILABLE,
            original_error=e,
        )


def init_db(database_url: Optional[str] = None) -> Engine:
    """Initialize the database and return the shared engine.

    Applies SQLite settings for crash resilience and integrity:
    - sqlite-vec loaded on every connection (cosine distance primitive)
    - WAL (Write-Ahead Logging) mode for file databases
    - NORMAL synchronous mode (good balance of safety vs speed)
    - Foreign keys enforced
    - Busy timeout so concurrent writers wait instead of failing

    ``:memory:`` URLs use a single shared connection so every session sees
    the same database.
    """
    url = database_url or config.get_db_url()
    in_memory = ":memory:" in url

    if in_memory:
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,           # Base pool size (concurrent reads)
            max_overflow=10,       # Allow up to 15 total connections under load
            pool_timeout=30,       # Wait up to 30s for a connection
            pool_recycle=3600,     # Recycle connections after 1 hour
            pool_pre_ping=True,    # Validate connections before use
            connect_args={"timeout": 30, "check_same_thread": False},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        load_vec_extension(dbapi_connection)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            # WAL mode: writes go to separate journal, preventing corruption on crash
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    logger.debug(f"Database initialized: {url}")
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
