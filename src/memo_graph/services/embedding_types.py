"""Type protocol for embedding providers.

Defines the structural contract that both the production ONNX provider
and test fakes must satisfy. Uses Protocol (PEP 544) for structural
subtyping: implementations don't need to inherit from it.

This module is importable without numpy installed (annotations are
deferred via __future__). Actual providers require numpy at runtime.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, List, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    import numpy as np


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Contract for embedding text into dense vectors.

    Providers must be deterministic: the same text always yields the
    same vector.
    """

    @property
    def dimension(self) -> int:
        """Dimensionality of produced vectors."""
        ...

    def load(self) -> None:
        """Load model into memory. May be called multiple times (idempotent)."""
        ...

    def unload(self) -> None:
        """Release model from memory. May be called multiple times (idempotent)."""
        ...

    @property
    def is_loaded(self) -> bool:
        """Whether the model is currently loaded in memory."""
        ...

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text into a dense vector.

        Args:
            text: Input text to embed.

        Returns:
            1-D numpy array of shape (dimension,).
        """
        ...

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        """Embed multiple texts in batches.

        Args:
            texts: Sequence of input texts.
            batch_size: Number of texts per inference batch.

        Returns:
            List of 1-D numpy arrays, each of shape (dimension,).
        """
        ...
