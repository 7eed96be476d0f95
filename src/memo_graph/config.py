"""Configuration module for the memo graph."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from memo_graph import __version__
from memo_graph.exceptions import ConfigurationError, ErrorCode

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside logs and metrics
_USER_ENV = Path.home() / ".memo_graph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

SIMILARITY_POLICIES = ("mean", "paragraph_max")


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


def validate_similarity_settings(
    threshold: float,
    limit: int,
    policy: str = "mean",
    embedding_dim: int = 512,
) -> None:
    """Reject similarity settings the graph cannot honour.

    Raises:
        ConfigurationError: For a threshold outside [-1, 1], a limit below 1,
            an unknown scoring policy, or a non-positive dimension.
    """
    if not -1.0 <= threshold <= 1.0:
        raise ConfigurationError(
            f"similarity_threshold must be within [-1, 1], got {threshold}",
            config_key="similarity_threshold",
        )
    if limit < 1:
        raise ConfigurationError(
            f"similarity_limit must be >= 1, got {limit}",
            config_key="similarity_limit",
        )
    if policy not in SIMILARITY_POLICIES:
        raise ConfigurationError(
            f"similarity_policy must be one of {', '.join(SIMILARITY_POLICIES)}, "
            f"got {policy!r}",
            config_key="similarity_policy",
        )
    if embedding_dim < 1:
        raise ConfigurationError(
            f"embedding_dim must be >= 1, got {embedding_dim}",
            config_key="embedding_dim",
            code=ErrorCode.CONFIG_DIMENSION_MISMATCH,
        )


class MemoGraphConfig(BaseModel):
    """Configuration for the memo graph server."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("MEMO_GRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("MEMO_GRAPH_DATABASE_PATH", "data/db/memo_graph.db")
        )
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("MEMO_GRAPH_SERVER_NAME", "memo-graph"))
    server_version: str = Field(default=__version__)
    log_level: str = Field(
        default_factory=lambda: os.getenv("MEMO_GRAPH_LOG_LEVEL", "INFO")
    )

    # Similarity graph configuration
    similarity_threshold: float = Field(
        default_factory=lambda: _env_float("MEMO_GRAPH_SIMILARITY_THRESHOLD", "0.6")
    )
    similarity_limit: int = Field(
        default_factory=lambda: _env_int("MEMO_GRAPH_SIMILARITY_LIMIT", "8")
    )
    # "mean": cosine between document vectors (mean of paragraph vectors).
    # "paragraph_max": best cosine over all paragraph pairs.
    similarity_policy: str = Field(
        default_factory=lambda: os.getenv("MEMO_GRAPH_SIMILARITY_POLICY", "mean")
    )
    # Characters of content returned as preview in listings and graph nodes
    preview_length: int = Field(
        default_factory=lambda: _env_int("MEMO_GRAPH_PREVIEW_LENGTH", "120")
    )

    # Embedding configuration
    embedding_model: str = Field(
        default=os.getenv(
            "MEMO_GRAPH_EMBEDDING_MODEL", "jinaai/jina-embeddings-v2-small-en"
        )
    )
    embedding_dim: int = Field(
        default_factory=lambda: _env_int("MEMO_GRAPH_EMBEDDING_DIM", "512")
    )
    embedding_max_tokens: int = Field(
        default_factory=lambda: _env_int("MEMO_GRAPH_EMBEDDING_MAX_TOKENS", "512")
    )
    embedding_batch_size: int = Field(
        default_factory=lambda: _env_int("MEMO_GRAPH_EMBEDDING_BATCH_SIZE", "16")
    )
    # Number of embedding calls allowed in flight at once (the model is shared)
    embedding_concurrency: int = Field(
        default_factory=lambda: _env_int("MEMO_GRAPH_EMBEDDING_CONCURRENCY", "1")
    )
    # Seconds a vectorize call may take, queueing included
    embedding_timeout: float = Field(
        default_factory=lambda: _env_float("MEMO_GRAPH_EMBEDDING_TIMEOUT", "30")
    )
    embedding_model_cache_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("MEMO_GRAPH_EMBEDDING_CACHE_DIR"))
            if os.getenv("MEMO_GRAPH_EMBEDDING_CACHE_DIR")
            else None
        )
    )
    # ONNX execution provider preference: "auto" (detect GPU/CPU), "cpu", or
    # comma-separated list like "CUDAExecutionProvider,CPUExecutionProvider"
    onnx_providers: str = Field(
        default_factory=lambda: os.getenv("MEMO_GRAPH_ONNX_PROVIDERS", "auto")
    )

    @model_validator(mode="after")
    def _validate_embedding_config(self) -> "MemoGraphConfig":
        """Validate embedding runtime settings."""
        if self.embedding_batch_size < 1:
            raise ValueError("embedding_batch_size must be >= 1")
        if self.embedding_concurrency < 1:
            raise ValueError("embedding_concurrency must be >= 1")
        if self.embedding_timeout <= 0:
            raise ValueError("embedding_timeout must be > 0")
        if self.preview_length < 0:
            raise ValueError("preview_length must be >= 0")
        return self

    def check_similarity_settings(self) -> None:
        """Check the similarity settings; raises ConfigurationError."""
        validate_similarity_settings(
            self.similarity_threshold,
            self.similarity_limit,
            self.similarity_policy,
            self.embedding_dim,
        )

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = MemoGraphConfig()
