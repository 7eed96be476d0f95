"""The ``memo_similarities`` relation: a sparse, undirected similarity graph.

Edges are kept in canonical orientation (``note_id_low < note_id_high``) so
each unordered pair has at most one row. A refresh is a full replace: every
edge touching the note is deleted and the surviving candidates are inserted
again, so ``created_time`` is not stable across refreshes.

Scaling limit: a refresh compares the note against every other vectorized
note, O(collection size). That is fine for hundreds to low thousands of
notes; beyond that this index needs an approximate nearest-neighbour front.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import Float, LargeBinary, bindparam, case, delete, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, aliased, sessionmaker

from memo_graph.models.db_models import (DBNote, DBParagraphVector,
                                         DBSimilarity, utc_now_naive)
from memo_graph.models.schema import (SimilarityEdge, SimilarNote,
                                      VectorStatus, canonical_pair,
                                      ensure_timezone_aware)
from memo_graph.storage.base import SqlRepository

logger = logging.getLogger(__name__)

# Scores are rounded so that float32 noise cannot push identical vectors
# below 1.0 or a borderline pair across the threshold between refreshes.
SCORE_DECIMALS = 6


def score_from_distance(distance: float) -> float:
    """Convert a cosine distance into a similarity score in [-1, 1]."""
    score = round(1.0 - distance, SCORE_DECIMALS)
    return min(1.0, max(-1.0, score))


def select_neighbors(
    candidates: Iterable[Tuple[int, float]],
    threshold: float,
    limit: int,
) -> List[Tuple[int, float]]:
    """Keep candidates at or above ``threshold``, best first, at most ``limit``.

    Ties are broken by ascending note ID so repeated refreshes pick the
    same neighbours.
    """
    kept = [(note_id, score) for note_id, score in candidates if score >= threshold]
    kept.sort(key=lambda item: (-item[1], item[0]))
    return kept[:limit]


def _to_edge(row: DBSimilarity) -> SimilarityEdge:
    return SimilarityEdge(
        note_id_low=row.note_id_low,
        note_id_high=row.note_id_high,
        score=row.score,
        created_time=ensure_timezone_aware(row.created_time),
    )


class SimilarityIndex(SqlRepository):
    """Computes, inserts, evicts and queries similarity edges.

    Args:
        engine: Shared SQLAlchemy engine (sqlite-vec loaded on connect).
        threshold: Minimum score for an edge to exist.
        limit: Maximum number of edges written per refresh.
        policy: "mean" compares document vectors; "paragraph_max" takes the
            best score over all paragraph pairs of the two notes.
    """

    def __init__(
        self,
        engine: Engine,
        threshold: float,
        limit: int,
        policy: str = "mean",
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        super().__init__(engine, session_factory)
        self.threshold = threshold
        self.limit = limit
        self.policy = policy

    # =========================================================================
    # Maintenance
    # =========================================================================

    def remove(self, note_id: int, session: Optional[Session] = None) -> int:
        """Delete every edge touching ``note_id``. Idempotent.

        Returns:
            Number of edges deleted.
        """
        with self._session_scope(session, "remove_similarities") as s:
            result = s.execute(
                delete(DBSimilarity).where(
                    or_(
                        DBSimilarity.note_id_low == note_id,
                        DBSimilarity.note_id_high == note_id,
                    )
                )
            )
            return result.rowcount or 0

    def refresh(
        self, note_id: int, session: Optional[Session] = None
    ) -> List[SimilarityEdge]:
        """Replace all edges of ``note_id`` with freshly scored ones.

        A note that is not vectorized ends up with no edges.

        Returns:
            The inserted edges, best first.
        """
        with self._session_scope(session, "refresh_similarities") as s:
            removed = self.remove(note_id, session=s)
            candidates = self.score_candidates(note_id, session=s)
            neighbors = select_neighbors(candidates, self.threshold, self.limit)

            now = utc_now_naive()
            rows = []
            for other_id, score in neighbors:
                low, high = canonical_pair(note_id, other_id)
                rows.append(
                    DBSimilarity(
                        note_id_low=low,
                        note_id_high=high,
                        score=score,
                        created_time=now,
                    )
                )
            s.add_all(rows)
            s.flush()
            edges = [_to_edge(row) for row in rows]

        logger.debug(
            f"Refreshed note {note_id}: removed {removed}, compared "
            f"{len(candidates)}, inserted {len(edges)} edges"
        )
        return edges

    def score_candidates(
        self, note_id: int, session: Optional[Session] = None
    ) -> List[Tuple[int, float]]:
        """Score ``note_id`` against every other vectorized note.

        Self-comparison and unvectorized notes are excluded. Pairs whose
        distance is undefined (zero vectors) are skipped.

        Returns:
            (other_note_id, score) pairs in no particular order.
        """
        with self._session_scope(session, "score_candidates") as s:
            target = s.execute(
                select(DBNote.document_vector, DBNote.vector_status).where(
                    DBNote.id == note_id
                )
            ).first()
            if target is None or target.vector_status != VectorStatus.VECTORIZED.value:
                return []

            if self.policy == "paragraph_max":
                rows = s.execute(self._paragraph_max_query(note_id)).all()
            else:
                rows = s.execute(
                    self._document_mean_query(note_id, target.document_vector)
                ).all()

        return [
            (other_id, score_from_distance(distance))
            for other_id, distance in rows
            if distance is not None
        ]

    @staticmethod
    def _document_mean_query(note_id: int, target_blob: bytes):
        distance = func.vec_distance_cosine(
            DBNote.document_vector,
            bindparam("target", target_blob, type_=LargeBinary),
            type_=Float,
        )
        return select(DBNote.id, distance).where(
            DBNote.id != note_id,
            DBNote.vector_status == VectorStatus.VECTORIZED.value,
        )

    @staticmethod
    def _paragraph_max_query(note_id: int):
        mine = aliased(DBParagraphVector)
        theirs = aliased(DBParagraphVector)
        # Best paragraph pair = smallest cosine distance
        distance = func.min(
            func.vec_distance_cosine(mine.vector, theirs.vector, type_=Float)
        )
        return (
            select(theirs.note_id, distance)
            .select_from(mine)
            .join(theirs, theirs.note_id != mine.note_id)
            .join(DBNote, DBNote.id == theirs.note_id)
            .where(
                mine.note_id == note_id,
                DBNote.vector_status == VectorStatus.VECTORIZED.value,
            )
            .group_by(theirs.note_id)
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def similar_to(
        self, note_id: int, session: Optional[Session] = None
    ) -> List[SimilarNote]:
        """Notes sharing an edge with ``note_id``, highest score first."""
        other = case(
            (DBSimilarity.note_id_low == note_id, DBSimilarity.note_id_high),
            else_=DBSimilarity.note_id_low,
        )
        stmt = (
            select(other.label("other_id"), DBSimilarity.score, DBNote.title)
            .select_from(DBSimilarity)
            .join(DBNote, DBNote.id == other)
            .where(
                or_(
                    DBSimilarity.note_id_low == note_id,
                    DBSimilarity.note_id_high == note_id,
                )
            )
            .order_by(DBSimilarity.score.desc(), other)
        )
        with self._session_scope(session, "similar_to") as s:
            rows = s.execute(stmt).all()
        return [
            SimilarNote(note_id=row.other_id, score=row.score, title=row.title)
            for row in rows
        ]

    def top_edges(
        self, limit: int = 0, session: Optional[Session] = None
    ) -> List[SimilarityEdge]:
        """The ``limit`` highest-scored edges; ``limit <= 0`` returns all."""
        stmt = select(DBSimilarity).order_by(
            DBSimilarity.score.desc(),
            DBSimilarity.note_id_low,
            DBSimilarity.note_id_high,
        )
        if limit > 0:
            stmt = stmt.limit(limit)
        with self._session_scope(session, "top_edges") as s:
            rows = s.scalars(stmt).all()
            return [_to_edge(row) for row in rows]

    def edges_for(
        self, note_id: int, session: Optional[Session] = None
    ) -> List[SimilarityEdge]:
        """All stored edges touching ``note_id``."""
        stmt = (
            select(DBSimilarity)
            .where(
                or_(
                    DBSimilarity.note_id_low == note_id,
                    DBSimilarity.note_id_high == note_id,
                )
            )
            .order_by(DBSimilarity.note_id_low, DBSimilarity.note_id_high)
        )
        with self._session_scope(session, "edges_for") as s:
            return [_to_edge(row) for row in s.scalars(stmt).all()]

    def count_edges(
        self, note_ids: Optional[Sequence[int]] = None
    ) -> int:
        """Number of edges, optionally only those touching ``note_ids``."""
        stmt = select(func.count()).select_from(DBSimilarity)
        if note_ids is not None:
            ids = list(note_ids)
            stmt = stmt.where(
                or_(
                    DBSimilarity.note_id_low.in_(ids),
                    DBSimilarity.note_id_high.in_(ids),
                )
            )
        with self._session_scope(None, "count_edges") as s:
            return s.scalar(stmt) or 0

    def clear(self, session: Optional[Session] = None) -> int:
        """Delete every edge."""
        with self._session_scope(session, "clear_similarities") as s:
            result = s.execute(delete(DBSimilarity))
            return result.rowcount or 0

    def rebuild(
        self, note_ids: Iterable[int], session: Optional[Session] = None
    ) -> Tuple[int, int]:
        """Replace the whole edge set with every note's selected neighbours.

        Each note keeps the edges it selects on its own; one note's selection
        never evicts another's. A pair chosen from both ends is stored once.

        Returns:
            (edges_cleared, edges_inserted)
        """
        with self._session_scope(session, "rebuild_similarities") as s:
            cleared = self.clear(session=s)
            pairs = {}
            for note_id in note_ids:
                candidates = self.score_candidates(note_id, session=s)
                for other_id, score in select_neighbors(
                    candidates, self.threshold, self.limit
                ):
                    pairs[canonical_pair(note_id, other_id)] = score

            now = utc_now_naive()
            s.add_all(
                DBSimilarity(
                    note_id_low=low, note_id_high=high, score=score, created_time=now
                )
                for (low, high), score in sorted(pairs.items())
            )
            s.flush()

        logger.info(f"Rebuilt similarity graph: cleared {cleared}, inserted {len(pairs)}")
        return cleared, len(pairs)
