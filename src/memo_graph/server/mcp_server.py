"""MCP server exposing the memo graph as tools."""

import atexit
import json
import logging
import uuid
from datetime import date
from typing import Optional

from mcp.server.fastmcp import FastMCP

from memo_graph.config import config
from memo_graph.exceptions import ConfigurationError, ErrorCode, MemoGraphError
from memo_graph.observability import metrics, timed_operation
from memo_graph.services.embedding_service import EmbeddingService
from memo_graph.services.graph_engine import GraphEngine

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 1_000_000  # 1 MB


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


class MemoGraphMcpServer:
    """MCP server for the memo similarity graph."""

    def __init__(self, engine=None, graph_engine: Optional[GraphEngine] = None):
        """Initialize the MCP server.

        Args:
            engine: SQLAlchemy engine from ``init_db``. Used to build a
                GraphEngine with the ONNX embedder when none is given.
            graph_engine: Pre-built GraphEngine (tests inject one with a
                fake embedder).

        Raises:
            ConfigurationError: If the embedder or the stored vectors do not
                match the configured dimension.
        """
        self.mcp = FastMCP(config.server_name)
        if graph_engine is None:
            if engine is None:
                raise ConfigurationError(
                    "MemoGraphMcpServer needs an engine or a graph_engine",
                    code=ErrorCode.CONFIG_MISSING,
                )
            graph_engine = GraphEngine(engine, self._create_embedding_service())
        self.graph_engine = graph_engine
        self.initialize()
        # Register shutdown hook for resource cleanup
        atexit.register(self._shutdown)
        self._register_tools()

    def initialize(self) -> None:
        """Verify the embedder and the database agree on the vector dimension."""
        self.graph_engine.embedding_service.verify_dimension(
            self.graph_engine.embedding_dim
        )
        self.graph_engine.vectors.check_dimension()
        logger.info(
            f"Memo graph MCP server initialized ({config.server_name} "
            f"{config.server_version}, threshold={self.graph_engine.threshold}, "
            f"limit={self.graph_engine.limit}, policy={self.graph_engine.policy})"
        )

    def _shutdown(self) -> None:
        """Clean up resources on server exit."""
        self.graph_engine.shutdown()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors carry their message (and whether retrying may help);
        anything else gets a generic message with a reference ID for the logs.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, MemoGraphError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            if error.retryable:
                return f"Error: {error.message} (retryable)"
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    @staticmethod
    def _create_embedding_service() -> EmbeddingService:
        """Build the process-wide EmbeddingService around the ONNX embedder.

        The model itself is loaded by ``initialize`` (dimension check).
        """
        from memo_graph.services.onnx_providers import OnnxEmbeddingProvider

        embedder = OnnxEmbeddingProvider(
            model_id=config.embedding_model,
            max_length=config.embedding_max_tokens,
            dimension=config.embedding_dim,
            cache_dir=config.embedding_model_cache_dir,
            providers=config.onnx_providers,
        )
        service = EmbeddingService(
            embedder=embedder,
            concurrency=config.embedding_concurrency,
            timeout=config.embedding_timeout,
            batch_size=config.embedding_batch_size,
        )
        logger.info(
            f"Embedding service created (model={config.embedding_model}, "
            f"dim={config.embedding_dim}, concurrency={config.embedding_concurrency})"
        )
        return service

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="mg_create_note")
        def mg_create_note(
            title: str, content: str, created_date: Optional[str] = None
        ) -> str:
            """Create a note and link it to semantically similar notes.
            Args:
                title: The title of the note
                content: The note text; paragraphs are separated by blank lines
                created_date: Optional creation date (YYYY-MM-DD), defaults to today
            """
            with timed_operation("mg_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    parsed_date = (
                        date.fromisoformat(created_date) if created_date else None
                    )
                    note = self.graph_engine.create_note(
                        title=title, content=content, created_date=parsed_date
                    )
                    op["note_id"] = note.id
                    if not note.is_vectorized:
                        return (
                            f"Note created with ID: {note.id}, but it could not be "
                            "vectorized and has no similarity links yet. "
                            "Use mg_revectorize_note to retry."
                        )
                    similar = self.graph_engine.get_similar(note.id)
                    return (
                        f"Note created successfully with ID: {note.id} "
                        f"({len(similar)} similar note(s))"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_get_note")
        def mg_get_note(note_id: int) -> str:
            """Retrieve a note by ID.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("mg_get_note", note_id=note_id) as op:
                try:
                    note = self.graph_engine.get_note(note_id)
                    op["found"] = True
                    result = f"# {note.title}\n"
                    result += f"ID: {note.id}\n"
                    result += f"Created: {note.created_date.isoformat()}\n"
                    result += f"Accessed: {note.accessed_at.isoformat()}\n"
                    result += f"Vector status: {note.vector_status.value}\n"
                    result += f"\n{note.content}\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_list_notes")
        def mg_list_notes() -> str:
            """List all notes with a short preview of their content."""
            with timed_operation("mg_list_notes") as op:
                try:
                    summaries = self.graph_engine.list_notes()
                    op["result_count"] = len(summaries)
                    if not summaries:
                        return "No notes found."
                    result = f"Found {len(summaries)} note(s):\n\n"
                    for s in summaries:
                        result += f"- [{s.id}] {s.title} ({s.created_date.isoformat()})"
                        if s.preview:
                            result += f": {s.preview}"
                        result += "\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_update_note")
        def mg_update_note(
            note_id: int,
            title: Optional[str] = None,
            content: Optional[str] = None,
        ) -> str:
            """Update a note's title and/or content.
            Changing the content re-vectorizes the note and rebuilds its
            similarity links; a title-only change leaves them untouched.
            Args:
                note_id: The ID of the note to update
                title: New title (optional)
                content: New content (optional)
            """
            with timed_operation("mg_update_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    if title is None and content is None:
                        return "Nothing to update: provide a title and/or content."
                    note = self.graph_engine.update_note(
                        note_id, title=title, content=content
                    )
                    op["revectorized"] = content is not None
                    return f"Note updated successfully: {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_delete_note")
        def mg_delete_note(note_id: int) -> str:
            """Delete a note together with its similarity links.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("mg_delete_note", note_id=note_id) as op:
                try:
                    deleted = self.graph_engine.delete_note(note_id)
                    op["deleted"] = deleted
                    if not deleted:
                        return f"Note not found: {note_id}"
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_get_similar")
        def mg_get_similar(note_id: int) -> str:
            """List notes similar to a note, most similar first.
            Args:
                note_id: The ID of the reference note
            """
            with timed_operation("mg_get_similar", note_id=note_id) as op:
                try:
                    similar = self.graph_engine.get_similar(note_id)
                    op["result_count"] = len(similar)
                    if not similar:
                        return f"No similar notes found for note {note_id}."
                    result = f"Found {len(similar)} similar note(s) for {note_id}:\n\n"
                    for i, item in enumerate(similar, 1):
                        result += f"{i}. [{item.note_id}] {item.title} (score: {item.score:.4f})\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_get_graph")
        def mg_get_graph(limit: int = 0) -> str:
            """Get the strongest similarity links and the notes they connect, as JSON.
            Args:
                limit: Maximum number of edges, highest scores first (0 = all)
            """
            with timed_operation("mg_get_graph", limit=limit) as op:
                try:
                    snapshot = self.graph_engine.get_graph(limit)
                    op["edge_count"] = len(snapshot.edges)
                    op["node_count"] = len(snapshot.nodes)
                    return json.dumps(snapshot.to_dict())
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_revectorize_note")
        def mg_revectorize_note(note_id: int) -> str:
            """Vectorize a note again and rebuild its similarity links.
            Use this for notes that were created while embedding was failing.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("mg_revectorize_note", note_id=note_id):
                try:
                    self.graph_engine.revectorize_note(note_id)
                    similar = self.graph_engine.get_similar(note_id)
                    return (
                        f"Note {note_id} vectorized ({len(similar)} similar note(s))"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_reindex")
        def mg_reindex() -> str:
            """Re-vectorize every note and rebuild all similarity links."""
            with timed_operation("mg_reindex") as op:
                try:
                    stats = self.graph_engine.reindex()
                    op.update(stats)
                    return (
                        f"Reindex complete: {stats['vectorized']} of {stats['notes']} "
                        f"note(s) vectorized, {stats['failed']} failed, "
                        f"{stats['edges']} edge(s)"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="mg_status")
        def mg_status() -> str:
            """Show note, vector and edge counts, settings, and operation metrics."""
            with timed_operation("mg_status"):
                try:
                    status = self.graph_engine.status()
                    status["metrics"] = metrics.get_summary()
                    return json.dumps(status, indent=2, default=str)
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
