"""Tests for vector encoding, sqlite-vec distance and dimension checks."""

import numpy as np
import pytest

from memo_graph.exceptions import ConfigurationError, EmbeddingError, ErrorCode
from memo_graph.models.schema import VectorStatus
from memo_graph.storage.vector_store import (VectorStore, decode_vector,
                                             encode_vector, zero_vector)
from tests.fakes import DIM, unit


class TestEncoding:
    def test_float32_little_endian_blob(self):
        blob = encode_vector(np.array([1.0, -2.5, 0.25]))
        assert len(blob) == 12
        np.testing.assert_array_equal(decode_vector(blob), [1.0, -2.5, 0.25])

    def test_dimension_checked(self):
        with pytest.raises(EmbeddingError) as exc_info:
            encode_vector(np.ones(4), dim=8)
        assert exc_info.value.code == ErrorCode.EMBEDDING_DIMENSION_INVALID

    def test_two_dimensional_rejected(self):
        with pytest.raises(EmbeddingError):
            encode_vector(np.ones((2, 4)))

    @pytest.mark.parametrize("bad", [np.nan, np.inf])
    def test_non_finite_rejected(self, bad):
        vec = np.ones(DIM)
        vec[3] = bad
        with pytest.raises(EmbeddingError):
            encode_vector(vec, dim=DIM)

    def test_placeholder_is_zero_vector(self, vector_store):
        blob = vector_store.placeholder_blob()
        assert len(blob) == DIM * 4
        np.testing.assert_array_equal(decode_vector(blob), zero_vector(DIM))


class TestDistance:
    def test_identical(self, vector_store):
        assert vector_store.distance(unit(1, 2), unit(1, 2)) == pytest.approx(0.0, abs=1e-6)

    def test_orthogonal(self, vector_store):
        assert vector_store.distance(unit(1), unit(0, 1)) == pytest.approx(1.0)

    def test_opposite(self, vector_store):
        assert vector_store.distance(unit(1), -unit(1)) == pytest.approx(2.0)

    def test_zero_vector_has_no_distance(self, vector_store):
        assert vector_store.distance(zero_vector(DIM), unit(1)) is None


class TestStorage:
    @pytest.fixture
    def note_id(self, note_repository, vector_store):
        return note_repository.insert("N", "", vector_store.placeholder_blob()).id

    def test_set_document_vector(self, vector_store, note_repository, note_id):
        assert vector_store.set_document_vector(note_id, unit(1, 1)) is True
        np.testing.assert_allclose(vector_store.get_document_vector(note_id), unit(1, 1))
        assert note_repository.get(note_id).vector_status == VectorStatus.VECTORIZED

    def test_set_document_vector_on_missing_note(self, vector_store):
        assert vector_store.set_document_vector(999, unit(1)) is False
        assert vector_store.get_document_vector(999) is None

    def test_replace_paragraph_vectors(self, vector_store, note_id):
        assert vector_store.replace_paragraph_vectors(note_id, [unit(1), unit(0, 1)]) == 2
        assert vector_store.replace_paragraph_vectors(note_id, [unit(0, 0, 1)]) == 1
        stored = vector_store.get_paragraph_vectors(note_id)
        assert len(stored) == 1
        np.testing.assert_allclose(stored[0], unit(0, 0, 1))
        assert vector_store.count_paragraphs() == 1

    def test_paragraph_vectors_cascade_with_note(
        self, vector_store, note_repository, note_id
    ):
        vector_store.replace_paragraph_vectors(note_id, [unit(1)])
        note_repository.delete_row(note_id)
        assert vector_store.count_paragraphs(note_id) == 0


class TestCheckDimension:
    def test_empty_database_passes(self, vector_store):
        vector_store.check_dimension()

    def test_matching_vectors_pass(self, vector_store, note_repository):
        note_repository.insert("N", "", vector_store.placeholder_blob())
        vector_store.check_dimension()

    def test_mismatch_is_configuration_error(
        self, db_engine, vector_store, note_repository
    ):
        note_repository.insert("N", "", vector_store.placeholder_blob())
        wider = VectorStore(db_engine, DIM * 2)
        with pytest.raises(ConfigurationError) as exc_info:
            wider.check_dimension()
        assert exc_info.value.code == ErrorCode.CONFIG_DIMENSION_MISMATCH
        assert str(DIM) in exc_info.value.message
