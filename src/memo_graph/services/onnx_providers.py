"""Direct ONNX Runtime embedding provider.

Implements EmbeddingProvider using onnxruntime directly, without
sentence-transformers, so the only heavy dependency is the runtime itself.

Default model: jinaai/jina-embeddings-v2-small-en (512-dim, mean pooling).
"""

from __future__ import annotations

import logging
import time as _time
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Lazy imports: these are optional dependencies
# These are populated by _ensure_imports()
_ort = None
_tokenizers = None
_hf_hub = None

OUTPUT_MODES = ("mean", "cls", "direct")


def _ensure_imports() -> None:
    """Import optional dependencies, raising a clear error if missing."""
    global _ort, _tokenizers, _hf_hub
    if _ort is None:
        try:
            import onnxruntime as ort

            _ort = ort
        except ImportError:
            raise ImportError(
                "onnxruntime is required for embeddings. "
                "Install with: pip install memo-graph[semantic]"
            )
    if _tokenizers is None:
        try:
            import tokenizers as tok

            _tokenizers = tok
        except ImportError:
            raise ImportError(
                "tokenizers is required for embeddings. "
                "Install with: pip install memo-graph[semantic]"
            )
    if _hf_hub is None:
        try:
            import huggingface_hub as hfh

            _hf_hub = hfh
        except ImportError:
            raise ImportError(
                "huggingface-hub is required for embeddings. "
                "Install with: pip install memo-graph[semantic]"
            )


def _resolve_providers(preference: str = "auto") -> List[str]:
    """Resolve ONNX execution providers based on preference string.

    Args:
        preference: One of:
            - "auto": detect available providers (CUDA > CPU)
            - "cpu": force CPUExecutionProvider only
            - comma-separated list: use as-is

    Returns:
        Ordered list of provider names for ort.InferenceSession.
    """
    _ensure_imports()

    pref = preference.strip().lower()

    if pref == "cpu":
        return ["CPUExecutionProvider"]

    if pref == "auto":
        available = _ort.get_available_providers()
        providers = []
        if "CUDAExecutionProvider" in available:
            providers.append("CUDAExecutionProvider")
        providers.append("CPUExecutionProvider")
        return providers

    return [p.strip() for p in preference.split(",") if p.strip()]


def _download_model_files(
    model_id: str,
    filenames: List[str],
    cache_dir: Optional[Path] = None,
) -> Path:
    """Download model files from HuggingFace Hub and return the snapshot directory."""
    _ensure_imports()
    snapshot_dir = _hf_hub.snapshot_download(
        repo_id=model_id,
        allow_patterns=filenames,
        cache_dir=str(cache_dir) if cache_dir else None,
    )
    return Path(snapshot_dir)


def mean_pool(hidden_states: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """Average token embeddings, ignoring padding positions."""
    mask = attention_mask[..., np.newaxis].astype(hidden_states.dtype)
    summed = (hidden_states * mask).sum(axis=1)
    counts = np.maximum(mask.sum(axis=1), 1e-9)
    return summed / counts


def l2_normalize(embeddings: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
    norms = np.maximum(norms, 1e-12)  # Avoid division by zero
    return embeddings / norms


class OnnxEmbeddingProvider:
    """Embedding provider using direct ONNX Runtime inference.

    Loads a BERT-family model from the HuggingFace Hub's /onnx/ folder,
    pools token states and L2-normalizes, producing unit-length vectors.

    Args:
        model_id: HuggingFace model ID.
        onnx_filename: Path to the ONNX model file within the repo.
        max_length: Maximum token length for truncation.
        dimension: Expected output dimension; replaced by the model's
            actual output width once loaded.
        cache_dir: Optional custom cache directory for model files.
        providers: Provider preference string ("auto", "cpu", or comma-separated).
        output_mode: Pooling strategy. "mean" = attention-masked mean of token
            states (default). "cls" = first token. "direct" = the model
            already outputs pooled (batch, dim) embeddings.
    """

    def __init__(
        self,
        model_id: str = "jinaai/jina-embeddings-v2-small-en",
        onnx_filename: str = "onnx/model.onnx",
        max_length: int = 512,
        dimension: int = 512,
        cache_dir: Optional[Path] = None,
        providers: str = "auto",
        output_mode: str = "mean",
    ) -> None:
        if output_mode not in OUTPUT_MODES:
            raise ValueError(
                f"output_mode must be one of {OUTPUT_MODES}, got {output_mode!r}"
            )
        self._model_id = model_id
        self._onnx_filename = onnx_filename
        self._max_length = max_length
        self._cache_dir = cache_dir
        self._providers_pref = providers
        self._output_mode = output_mode
        self._session: Optional[object] = None  # ort.InferenceSession
        self._tokenizer: Optional[object] = None  # tokenizers.Tokenizer
        self._dim = dimension

    @property
    def dimension(self) -> int:
        return self._dim

    def load(self) -> None:
        """Download and load the ONNX model and tokenizer."""
        if self._session is not None:
            return  # Already loaded

        _ensure_imports()
        logger.info(
            f"Loading embedding model: {self._model_id} [{self._onnx_filename}]"
        )

        model_dir = _download_model_files(
            self._model_id,
            [self._onnx_filename, "tokenizer.json", "tokenizer_config.json"],
            self._cache_dir,
        )

        tokenizer_path = model_dir / "tokenizer.json"
        self._tokenizer = _tokenizers.Tokenizer.from_file(str(tokenizer_path))
        self._tokenizer.enable_truncation(max_length=self._max_length)
        self._tokenizer.enable_padding(length=None)  # Dynamic padding per batch

        onnx_path = model_dir / self._onnx_filename
        if not onnx_path.exists():
            raise FileNotFoundError(
                f"ONNX model not found at {onnx_path}. "
                f"Check that {self._model_id} has an ONNX model at {self._onnx_filename}"
            )

        sess_options = _ort.SessionOptions()
        sess_options.graph_optimization_level = (
            _ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        )
        providers = _resolve_providers(self._providers_pref)
        if providers == ["CPUExecutionProvider"]:
            # The CPU arena never returns memory between calls
            sess_options.enable_cpu_mem_arena = False

        self._session = _ort.InferenceSession(
            str(onnx_path),
            sess_options=sess_options,
            providers=providers,
        )

        # Detect actual dimension from model output shape
        outputs = self._session.get_outputs()
        if outputs and isinstance(outputs[0].shape[-1], int):
            self._dim = outputs[0].shape[-1]

        logger.info(
            f"Embedding model loaded: dim={self._dim}, "
            f"max_tokens={self._max_length}, "
            f"providers={self._session.get_providers()}"
        )

    def unload(self) -> None:
        """Release model from memory."""
        self._session = None
        self._tokenizer = None
        logger.info(f"Embedding model unloaded: {self._model_id}")

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    def _tokenize(self, texts: Sequence[str]) -> dict:
        """Tokenize texts and return numpy arrays for ONNX input."""
        encodings = self._tokenizer.encode_batch(list(texts))
        max_len = max(len(e.ids) for e in encodings)

        input_ids = np.zeros((len(texts), max_len), dtype=np.int64)
        attention_mask = np.zeros((len(texts), max_len), dtype=np.int64)

        for i, encoding in enumerate(encodings):
            length = len(encoding.ids)
            input_ids[i, :length] = encoding.ids
            attention_mask[i, :length] = encoding.attention_mask

        return {"input_ids": input_ids, "attention_mask": attention_mask}

    def _forward(self, inputs: dict) -> np.ndarray:
        """Run ONNX inference, then pool and L2-normalize."""
        input_names = {inp.name for inp in self._session.get_inputs()}
        feed = {}
        if "input_ids" in input_names:
            feed["input_ids"] = inputs["input_ids"]
        if "attention_mask" in input_names:
            feed["attention_mask"] = inputs["attention_mask"]
        if "token_type_ids" in input_names:
            # All zeros for single-sequence input
            feed["token_type_ids"] = np.zeros_like(inputs["input_ids"])

        outputs = self._session.run(None, feed)

        if self._output_mode == "direct":
            embeddings = next((out for out in outputs if out.ndim == 2), None)
            if embeddings is None:
                embeddings = outputs[0][:, 0, :]
        elif self._output_mode == "cls":
            embeddings = outputs[0][:, 0, :]
        else:
            embeddings = mean_pool(outputs[0], inputs["attention_mask"])

        return l2_normalize(embeddings).astype(np.float32)

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text into a normalized dense vector."""
        if not self.is_loaded:
            self.load()

        return self._forward(self._tokenize([text]))[0]

    def embed_batch(
        self, texts: Sequence[str], batch_size: int = 32
    ) -> List[np.ndarray]:
        """Embed multiple texts, processing in fixed-size batches."""
        if not self.is_loaded:
            self.load()

        results: List[np.ndarray] = []
        t0 = _time.perf_counter()
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            embeddings = self._forward(self._tokenize(batch))
            results.extend(embeddings[j] for j in range(len(batch)))

        logger.debug(
            f"embed_batch: {len(texts)} texts in "
            f"{_time.perf_counter() - t0:.2f}s (batch_size={batch_size})"
        )
        return results
