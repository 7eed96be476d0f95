# tests/test_mcp_server.py
"""Tests for the MCP server tools."""
import datetime
import json
from unittest.mock import MagicMock, patch

import pytest

from memo_graph.exceptions import (ConfigurationError, EmbeddingError,
                                   ErrorCode, NoteNotFoundError)
from memo_graph.models.schema import (GraphSnapshot, Note, NoteSummary,
                                      SimilarityEdge, SimilarNote,
                                      VectorStatus)
from memo_graph.server.mcp_server import (MAX_TITLE_LENGTH,
                                          MemoGraphMcpServer,
                                          _validate_input_lengths)


def _note(note_id=1, status=VectorStatus.VECTORIZED, **kwargs):
    return Note(id=note_id, title=kwargs.pop("title", "Test Note"),
                content=kwargs.pop("content", "Test content"),
                vector_status=status, **kwargs)


def _summary(note_id, title="Note", preview=""):
    return NoteSummary(
        id=note_id, title=title, created_date=datetime.date(2024, 1, 1),
        accessed_at=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
        preview=preview,
    )


class TestMcpServer:
    """Tool functions called directly with a mocked GraphEngine."""

    def setup_method(self):
        """Capture registered tools through a mocked FastMCP."""
        self.registered_tools = {}
        self.mock_mcp = MagicMock()

        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                self.registered_tools[kwargs.get("name")] = func
                return func
            return tool_wrapper
        self.mock_mcp.tool = mock_tool_decorator

        self.mock_engine = MagicMock()
        self.mock_engine.embedding_dim = 8

        self.mcp_patcher = patch(
            "memo_graph.server.mcp_server.FastMCP", return_value=self.mock_mcp
        )
        self.atexit_patcher = patch("memo_graph.server.mcp_server.atexit")
        self.mcp_patcher.start()
        self.atexit_patcher.start()

        self.server = MemoGraphMcpServer(graph_engine=self.mock_engine)

    def teardown_method(self):
        self.mcp_patcher.stop()
        self.atexit_patcher.stop()

    def test_server_initialization_checks_dimensions(self):
        self.mock_engine.embedding_service.verify_dimension.assert_called_once_with(8)
        self.mock_engine.vectors.check_dimension.assert_called_once()

    def test_all_tools_registered(self):
        assert set(self.registered_tools) == {
            "mg_create_note", "mg_get_note", "mg_list_notes", "mg_update_note",
            "mg_delete_note", "mg_get_similar", "mg_get_graph",
            "mg_revectorize_note", "mg_reindex", "mg_status",
        }

    def test_requires_engine_or_graph_engine(self):
        with pytest.raises(ConfigurationError) as exc_info:
            MemoGraphMcpServer()
        assert exc_info.value.code == ErrorCode.CONFIG_MISSING

    def test_create_note_tool(self):
        self.mock_engine.create_note.return_value = _note(5)
        self.mock_engine.get_similar.return_value = [SimilarNote(note_id=2, score=0.9)]

        result = self.registered_tools["mg_create_note"](
            title="Test Note", content="Test content", created_date="2024-03-01"
        )

        assert result == "Note created successfully with ID: 5 (1 similar note(s))"
        self.mock_engine.create_note.assert_called_with(
            title="Test Note", content="Test content",
            created_date=datetime.date(2024, 3, 1),
        )

    def test_create_note_unvectorized(self):
        self.mock_engine.create_note.return_value = _note(
            6, status=VectorStatus.UNVECTORIZED
        )
        result = self.registered_tools["mg_create_note"](title="T", content="")
        assert "ID: 6" in result
        assert "mg_revectorize_note" in result
        self.mock_engine.get_similar.assert_not_called()

    def test_create_note_bad_date(self):
        result = self.registered_tools["mg_create_note"](
            title="T", content="c", created_date="yesterday"
        )
        assert result.startswith("Error: Invalid input (ref: ")
        self.mock_engine.create_note.assert_not_called()

    def test_create_note_title_too_long(self):
        result = self.registered_tools["mg_create_note"](
            title="x" * (MAX_TITLE_LENGTH + 1), content="c"
        )
        assert "Error" in result
        self.mock_engine.create_note.assert_not_called()

    def test_get_note_tool(self):
        self.mock_engine.get_note.return_value = _note(
            3, title="Found", content="Body text",
            created_date=datetime.date(2024, 2, 2),
        )
        result = self.registered_tools["mg_get_note"](note_id=3)
        assert result.startswith("# Found\n")
        assert "ID: 3" in result
        assert "Created: 2024-02-02" in result
        assert "Vector status: vectorized" in result
        assert "Body text" in result

    def test_get_note_not_found(self):
        self.mock_engine.get_note.side_effect = NoteNotFoundError(99)
        result = self.registered_tools["mg_get_note"](note_id=99)
        assert result == "Error: Note with ID 99 not found"

    def test_list_notes_tool(self):
        self.mock_engine.list_notes.return_value = [
            _summary(1, "First", "preview one"), _summary(2, "Second"),
        ]
        result = self.registered_tools["mg_list_notes"]()
        assert "Found 2 note(s)" in result
        assert "- [1] First (2024-01-01): preview one" in result
        assert "- [2] Second (2024-01-01)\n" in result

    def test_list_notes_empty(self):
        self.mock_engine.list_notes.return_value = []
        assert self.registered_tools["mg_list_notes"]() == "No notes found."

    def test_update_note_tool(self):
        self.mock_engine.update_note.return_value = _note(4)
        result = self.registered_tools["mg_update_note"](note_id=4, content="New")
        assert result == "Note updated successfully: 4"
        self.mock_engine.update_note.assert_called_with(4, title=None, content="New")

    def test_update_note_nothing_to_do(self):
        result = self.registered_tools["mg_update_note"](note_id=4)
        assert result.startswith("Nothing to update")
        self.mock_engine.update_note.assert_not_called()

    def test_update_note_embedding_failure_is_retryable(self):
        self.mock_engine.update_note.side_effect = EmbeddingError(
            "Embedding timed out after 30s", code=ErrorCode.EMBEDDING_TIMEOUT
        )
        result = self.registered_tools["mg_update_note"](note_id=4, content="New")
        assert result == "Error: Embedding timed out after 30s (retryable)"

    @pytest.mark.parametrize(
        "deleted,expected",
        [(True, "Note deleted successfully: 7"), (False, "Note not found: 7")],
    )
    def test_delete_note_tool(self, deleted, expected):
        self.mock_engine.delete_note.return_value = deleted
        assert self.registered_tools["mg_delete_note"](note_id=7) == expected

    def test_get_similar_tool(self):
        self.mock_engine.get_similar.return_value = [
            SimilarNote(note_id=2, score=0.95, title="Close"),
            SimilarNote(note_id=9, score=0.61, title="Far"),
        ]
        result = self.registered_tools["mg_get_similar"](note_id=1)
        lines = result.splitlines()
        assert lines[0] == "Found 2 similar note(s) for 1:"
        assert lines[2] == "1. [2] Close (score: 0.9500)"
        assert lines[3] == "2. [9] Far (score: 0.6100)"

    def test_get_similar_empty(self):
        self.mock_engine.get_similar.return_value = []
        result = self.registered_tools["mg_get_similar"](note_id=1)
        assert result == "No similar notes found for note 1."

    def test_get_graph_tool(self):
        self.mock_engine.get_graph.return_value = GraphSnapshot(
            nodes=[_summary(1), _summary(2)],
            edges=[SimilarityEdge(note_id_low=1, note_id_high=2, score=0.8)],
        )
        data = json.loads(self.registered_tools["mg_get_graph"](limit=5))
        self.mock_engine.get_graph.assert_called_with(5)
        assert [n["id"] for n in data["nodes"]] == [1, 2]
        assert data["edges"][0]["source"] == 1
        assert data["edges"][0]["target"] == 2

    def test_revectorize_note_tool(self):
        self.mock_engine.get_similar.return_value = []
        result = self.registered_tools["mg_revectorize_note"](note_id=3)
        self.mock_engine.revectorize_note.assert_called_with(3)
        assert result == "Note 3 vectorized (0 similar note(s))"

    def test_reindex_tool(self):
        self.mock_engine.reindex.return_value = {
            "notes": 4, "vectorized": 3, "failed": 1, "edges_cleared": 2, "edges": 5,
        }
        result = self.registered_tools["mg_reindex"]()
        assert result == (
            "Reindex complete: 3 of 4 note(s) vectorized, 1 failed, 5 edge(s)"
        )

    def test_status_tool(self):
        self.mock_engine.status.return_value = {"notes": 2, "edges": 1}
        data = json.loads(self.registered_tools["mg_status"]())
        assert data["notes"] == 2
        assert "total_operations" in data["metrics"]

    def test_unexpected_error_gets_reference(self):
        self.mock_engine.list_notes.side_effect = RuntimeError("disk on fire")
        result = self.registered_tools["mg_list_notes"]()
        assert result.startswith("Error: An unexpected error occurred (ref: ")
        assert "disk on fire" not in result


class TestMcpServerWithGraphEngine:
    """Tools run against a real GraphEngine with the fake embedder."""

    @pytest.fixture
    def tools(self, graph_engine):
        registered = {}
        mock_mcp = MagicMock()

        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                registered[kwargs.get("name")] = func
                return func
            return tool_wrapper
        mock_mcp.tool = mock_tool_decorator

        with patch("memo_graph.server.mcp_server.FastMCP", return_value=mock_mcp), \
                patch("memo_graph.server.mcp_server.atexit"):
            MemoGraphMcpServer(graph_engine=graph_engine)
        return registered

    def test_create_link_and_delete(self, tools, graph_engine):
        first = tools["mg_create_note"](title="One", content="shared words")
        second = tools["mg_create_note"](title="Two", content="shared words")
        assert first == "Note created successfully with ID: 1 (0 similar note(s))"
        assert second == "Note created successfully with ID: 2 (1 similar note(s))"

        graph = json.loads(tools["mg_get_graph"]())
        assert len(graph["edges"]) == 1
        assert graph["edges"][0]["score"] == 1.0

        assert tools["mg_delete_note"](note_id=1) == "Note deleted successfully: 1"
        assert tools["mg_get_similar"](note_id=2) == "No similar notes found for note 2."

    def test_missing_note(self, tools):
        assert tools["mg_get_similar"](note_id=42) == "Error: Note with ID 42 not found"


def test_validate_input_lengths():
    _validate_input_lengths(title="ok", content="ok")
    with pytest.raises(ValueError):
        _validate_input_lengths(content="x" * 1_000_001)
