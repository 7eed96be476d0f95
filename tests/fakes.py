"""Fake embedding providers for testing.

These produce deterministic, controlled outputs without loading real models.
FakeEmbeddingProvider derives small vectors from a hash of the text, so
identical inputs always produce identical vectors. Tests that need exact
scores pin a vector per text instead.

Design principles:
- Never mock sqlite-vec: always use a real SQLite database
- Fake providers produce real numpy arrays of controlled dimensionality
- Deterministic: same input -> same output, always
- Inspectable: test code can predict exact outputs
"""
import hashlib
import threading
import time
from typing import Dict, List, Optional, Sequence

import numpy as np

DIM = 8


def unit(*components: float, dim: int = DIM) -> np.ndarray:
    """L2-normalized vector whose leading components are ``components``.

    ``unit(1)`` is the first basis vector, ``unit(1, 1)`` sits at 45 degrees
    between the first two (cosine 0.7071 with each).
    """
    vec = np.zeros(dim, dtype=np.float32)
    vec[: len(components)] = components
    return (vec / np.linalg.norm(vec)).astype(np.float32)


class FakeEmbeddingProvider:
    """Deterministic embedding provider for testing.

    Texts found in ``vectors`` get their pinned vector; anything else gets an
    L2-normalized vector derived from a hash of the text.
    """

    def __init__(
        self, dim: int = DIM, vectors: Optional[Dict[str, np.ndarray]] = None
    ) -> None:
        self._dim = dim
        self._loaded = False
        self.vectors: Dict[str, np.ndarray] = dict(vectors or {})
        self.load_count = 0
        self.unload_count = 0
        self.embed_count = 0
        self.batch_calls = 0

    def pin(self, text: str, vector: np.ndarray) -> None:
        self.vectors[text] = np.asarray(vector, dtype=np.float32)

    @property
    def dimension(self) -> int:
        return self._dim

    def load(self) -> None:
        self._loaded = True
        self.load_count += 1

    def unload(self) -> None:
        self._loaded = False
        self.unload_count += 1

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def embed(self, text: str) -> np.ndarray:
        """Return the pinned vector, or one derived from hashing the text.

        The hash is extended by iteratively hashing the previous digest, so
        any dimension gets deterministic bytes.
        """
        self.embed_count += 1
        if text in self.vectors:
            return self.vectors[text].copy()
        chunks: List[bytes] = []
        needed = self._dim
        seed = text.encode("utf-8")
        while needed > 0:
            seed = hashlib.sha256(seed).digest()
            chunks.append(seed)
            needed -= len(seed)
        all_bytes = b"".join(chunks)[: self._dim]

        raw_bytes = np.frombuffer(all_bytes, dtype=np.uint8).astype(np.float64)
        # Map [0, 255] -> [-1, 1]
        raw = (raw_bytes / 127.5) - 1.0
        norm = np.linalg.norm(raw)
        if norm > 0:
            raw = raw / norm
        return raw.astype(np.float32)

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        self.batch_calls += 1
        return [self.embed(text) for text in texts]


class FailingEmbeddingProvider(FakeEmbeddingProvider):
    """Raises on every embed call while ``failing`` is True."""

    def __init__(self, dim: int = DIM, vectors=None) -> None:
        super().__init__(dim, vectors)
        self.failing = True

    def embed(self, text: str) -> np.ndarray:
        if self.failing:
            raise RuntimeError("model exploded")
        return super().embed(text)


class SlowEmbeddingProvider(FakeEmbeddingProvider):
    """Sleeps ``delay`` seconds in every batch call."""

    def __init__(self, delay: float, dim: int = DIM, vectors=None) -> None:
        super().__init__(dim, vectors)
        self.delay = delay

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        time.sleep(self.delay)
        return super().embed_batch(texts, batch_size)


class ConcurrencyTrackingProvider(FakeEmbeddingProvider):
    """Records how many batch calls were in flight at the same time."""

    def __init__(self, delay: float = 0.02, dim: int = DIM, vectors=None) -> None:
        super().__init__(dim, vectors)
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return super().embed_batch(texts, batch_size)
        finally:
            with self._lock:
                self.active -= 1
