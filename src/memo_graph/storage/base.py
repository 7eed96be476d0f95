"""Shared session handling for the SQLite-backed repositories."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from memo_graph.exceptions import ErrorCode, StorageError
from memo_graph.models.db_models import get_session_factory

logger = logging.getLogger(__name__)


class SqlRepository:
    """Base class for repositories that share one engine.

    Every public method takes an optional ``session``. When given, the work
    joins the caller's transaction (the caller commits or rolls back);
    otherwise the method runs in its own short transaction.
    """

    def __init__(
        self,
        engine: Engine,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory or get_session_factory(engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open a transaction that commits on success and rolls back on error.

        SQLAlchemy errors are re-raised as StorageError.
        """
        try:
            with self.session_factory.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Transaction rolled back: {e}")
            raise StorageError(
                "Database transaction failed",
                operation="transaction",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )

    @contextmanager
    def _session_scope(
        self, session: Optional[Session], operation: str
    ) -> Iterator[Session]:
        """Join ``session`` if given, else run in a new transaction."""
        if session is not None:
            yield session
            return
        try:
            with self.session_factory.begin() as new_session:
                yield new_session
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise StorageError(
                f"Storage operation '{operation}' failed",
                operation=operation,
                original_error=e,
            )
