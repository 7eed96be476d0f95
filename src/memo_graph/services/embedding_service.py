"""Embedding service wrapping the process-wide embedding model.

The model is loaded once and shared by every caller. Calls run on a small
thread pool whose size is the model's concurrency limit, and each call
carries a timeout so a stuck inference cannot block a note operation
forever.

Usage:
    service = EmbeddingService(embedder=embedder, concurrency=1, timeout=30)
    service.verify_dimension(512)  # at startup
    vectors = service.embed_batch(["paragraph one", "paragraph two"])
    service.shutdown()  # Clean up on server exit
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, List, Optional, Sequence

from memo_graph.exceptions import ConfigurationError, EmbeddingError, ErrorCode

if TYPE_CHECKING:
    import numpy as np

    from memo_graph.services.embedding_types import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Manages the embedding model with lazy loading, a concurrency limit and timeouts.

    Thread-safe: model loading is guarded by a lock, and inference is
    funnelled through a ThreadPoolExecutor with ``concurrency`` workers.

    Args:
        embedder: An EmbeddingProvider implementation.
        concurrency: Maximum number of embedding calls in flight.
        timeout: Default seconds to wait for a call, queueing included.
            None waits forever. A call that times out cannot be interrupted:
            it keeps its worker until the provider returns, so with
            ``concurrency=1`` the next call waits behind it and may time out
            as well.
        batch_size: Texts per inference batch passed to the provider.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        concurrency: int = 1,
        timeout: Optional[float] = 30.0,
        batch_size: int = 16,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._embedder = embedder
        self._timeout = timeout
        self._batch_size = batch_size

        # Thread safety
        self._embedder_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="embedder"
        )
        self._shutdown = False

    @property
    def dimension(self) -> int:
        """Embedding dimensionality (delegates to provider)."""
        return self._embedder.dimension

    @property
    def embedder_loaded(self) -> bool:
        """Whether the embedding model is currently in memory."""
        return self._embedder.is_loaded

    def _ensure_embedder(self) -> None:
        """Load the embedder if not already loaded. Thread-safe."""
        if self._embedder.is_loaded:
            return
        with self._embedder_lock:
            if self._embedder.is_loaded:
                return  # Double-check after acquiring lock
            try:
                self._embedder.load()
                logger.info("Embedding model loaded")
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to load embedding model: {e}",
                    code=ErrorCode.EMBEDDING_MODEL_LOAD_FAILED,
                    operation="embedder_load",
                    original_error=e,
                )

    def load(self) -> None:
        """Load the model now instead of on first use."""
        self._ensure_embedder()

    def verify_dimension(self, expected: int) -> None:
        """Load the model and check it produces ``expected``-sized vectors.

        Raises:
            ConfigurationError: On a dimension mismatch. Fatal at startup.
            EmbeddingError: If the model cannot be loaded.
        """
        self._ensure_embedder()
        actual = self._embedder.dimension
        if actual != expected:
            raise ConfigurationError(
                f"Embedding model produces {actual}-dimensional vectors, "
                f"but embedding_dim is {expected}",
                config_key="embedding_dim",
                code=ErrorCode.CONFIG_DIMENSION_MISMATCH,
            )
        logger.info(f"Embedding dimension verified: {actual}")

    def _run(self, operation: str, fn, timeout: Optional[float]):
        """Run ``fn`` on the embedding pool, translating failures to EmbeddingError."""
        if self._shutdown:
            raise EmbeddingError(
                "Embedding service is shut down",
                code=ErrorCode.EMBEDDING_UNAVAILABLE,
                operation=operation,
            )
        self._ensure_embedder()
        wait = self._timeout if timeout is None else timeout
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=wait)
        except FutureTimeoutError as e:
            # Drops the call if still queued; a running call keeps its worker
            future.cancel()
            raise EmbeddingError(
                f"Embedding timed out after {wait}s (waiting time included); "
                "the timed-out call may still occupy an embedding worker",
                code=ErrorCode.EMBEDDING_TIMEOUT,
                operation=operation,
                original_error=e,
            )
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Embedding inference failed: {e}",
                code=ErrorCode.EMBEDDING_INFERENCE_FAILED,
                operation=operation,
                original_error=e,
            )

    def embed(self, text: str, timeout: Optional[float] = None) -> "np.ndarray":
        """Embed a single text into a dense vector.

        Raises:
            EmbeddingError: If model loading or inference fails or times out.
        """
        return self._run("embed", lambda: self._embedder.embed(text), timeout)

    def embed_batch(
        self, texts: Sequence[str], timeout: Optional[float] = None
    ) -> List["np.ndarray"]:
        """Embed multiple texts in one call to the provider.

        Returns:
            One 1-D vector per input text, in input order.

        Raises:
            EmbeddingError: If model loading or inference fails, times out,
                or the provider returns the wrong number of vectors.
        """
        texts = list(texts)
        vectors = self._run(
            "embed_batch",
            lambda: self._embedder.embed_batch(texts, self._batch_size),
            timeout,
        )
        vectors = list(vectors)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                code=ErrorCode.EMBEDDING_INFERENCE_FAILED,
                operation="embed_batch",
            )
        return vectors

    def shutdown(self) -> None:
        """Clean up: stop the worker pool and unload the model.

        Call this when the server is shutting down.
        """
        self._shutdown = True
        self._executor.shutdown(wait=False, cancel_futures=True)

        with self._embedder_lock:
            if self._embedder.is_loaded:
                self._embedder.unload()

        logger.info("EmbeddingService shut down")
