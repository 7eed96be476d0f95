"""Custom exceptions for the memo graph.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1004
    NOTE_CONTENT_EMPTY = 1005

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    VECTOR_EXTENSION_UNAVAILABLE = 4008

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002
    CONFIG_DIMENSION_MISMATCH = 6003

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001

    # Embedding errors (8xxx)
    EMBEDDING_MODEL_LOAD_FAILED = 8001
    EMBEDDING_INFERENCE_FAILED = 8002
    EMBEDDING_TIMEOUT = 8003
    EMBEDDING_DIMENSION_INVALID = 8004
    EMBEDDING_UNAVAILABLE = 8005


class MemoGraphError(Exception):
    """Base exception for all memo graph errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(MemoGraphError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID {note_id} not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class NoteValidationError(MemoGraphError):
    """Raised when note data fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class EmptyContentError(NoteValidationError):
    """Raised when note content yields no paragraphs to embed.

    Not retryable: the caller has to supply content.
    """

    def __init__(self, note_id: Optional[int] = None):
        super().__init__(
            "Content contains no non-empty paragraphs",
            field="content",
            code=ErrorCode.NOTE_CONTENT_EMPTY,
        )
        if note_id is not None:
            self.details["note_id"] = note_id
        self.note_id = note_id


class EmbeddingError(MemoGraphError):
    """Raised when the embedding model fails to load, errors, or times out.

    The vectorize operation that hit this error wrote nothing, so it is
    safe to retry.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_INFERENCE_FAILED,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class StorageError(MemoGraphError):
    """Raised for storage/persistence errors.

    The failed operation was rolled back; callers may retry with backoff.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class ConfigurationError(MemoGraphError):
    """Raised for configuration-related errors. Fatal at startup."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
