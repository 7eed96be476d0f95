"""Logging setup and per-operation metrics for the memo graph server."""
import functools
import json
import logging
import os
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".memo_graph" / "logs"
DEFAULT_METRICS_FILE = Path(
    os.getenv("MEMO_GRAPH_METRICS_FILE", str(Path.home() / ".memo_graph" / "metrics.json"))
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating ``memo_graph.log`` (and optionally stderr) to the package logger.

    Calling it again with the same directory does not add handlers twice.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / "memo_graph.log"

    package_logger = logging.getLogger("memo_graph")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    def _add(handler: logging.Handler) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    handlers = package_logger.handlers
    if not any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file.resolve()
        for h in handlers
    ):
        _add(RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ))

    # stdout is the MCP transport; StreamHandler defaults to stderr
    if console and not any(
        type(h) is logging.StreamHandler for h in handlers
    ):
        _add(logging.StreamHandler())

    package_logger.info(f"Logging to {log_file} (rotating at {max_bytes} bytes x {backup_count})")
    return log_path


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def record(self, duration_ms: float, success: bool, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        self.min_duration_ms = min(self.min_duration_ms, duration_ms)
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = error
            self.last_error_time = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        """Derived view: rates and rounded durations."""
        n = self.count
        return {
            'count': n,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'success_rate': self.success_count / n if n else 0,
            'avg_duration_ms': round(self.total_duration_ms / n, 2) if n else 0,
            'min_duration_ms': round(self.min_duration_ms, 2) if n else 0,
            'max_duration_ms': round(self.max_duration_ms, 2),
            'last_error': self.last_error,
            'last_error_time': _iso(self.last_error_time),
        }

    def to_json(self) -> Dict[str, Any]:
        """Raw totals, the on-disk form."""
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_duration_ms": self.total_duration_ms,
            "min_duration_ms": None if self.count == 0 else self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "last_error": self.last_error,
            "last_error_time": _iso(self.last_error_time),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "OperationMetrics":
        min_dur = data.get("min_duration_ms")
        error_time = data.get("last_error_time")
        return cls(
            count=data.get("count", 0),
            success_count=data.get("success_count", 0),
            error_count=data.get("error_count", 0),
            total_duration_ms=data.get("total_duration_ms", 0.0),
            min_duration_ms=float("inf") if min_dur is None else min_dur,
            max_duration_ms=data.get("max_duration_ms", 0.0),
            last_error=data.get("last_error"),
            last_error_time=datetime.fromisoformat(error_time) if error_time else None,
        )


class MetricsCollector:
    """Thread-safe per-operation counters, persisted to a JSON file.

    Args:
        metrics_file: Where to persist. Defaults to ``DEFAULT_METRICS_FILE``.
        auto_save_interval: Write to disk every N recorded operations; 0 never.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
    ):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0

        self._load_metrics()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            self._metrics[operation].record(duration_ms, success, error)
            self._unsaved += 1
            if 0 < self._auto_save_interval <= self._unsaved:
                self._save_metrics_unlocked()

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation, keyed by name."""
        with self._lock:
            return {op: m.snapshot() for op, m in self._metrics.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations, for ``mg_status``."""
        with self._lock:
            total = sum(m.count for m in self._metrics.values())
            succeeded = sum(m.success_count for m in self._metrics.values())
            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total,
                'total_success': succeeded,
                'total_errors': sum(m.error_count for m in self._metrics.values()),
                'overall_success_rate': succeeded / total if total else 1.0,
                'operations_tracked': list(self._metrics),
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)
            self._unsaved = 0

    def _load_metrics(self) -> bool:
        if not self._metrics_file.exists():
            return False
        try:
            data = json.loads(self._metrics_file.read_text(encoding="utf-8"))
            if "start_time" in data:
                self._start_time = datetime.fromisoformat(data["start_time"])
            for op, op_data in data.get("operations", {}).items():
                self._metrics[op] = OperationMetrics.from_json(op_data)
        except (OSError, json.JSONDecodeError, AttributeError, KeyError, ValueError) as e:
            logger.warning(f"Ignoring unreadable metrics file {self._metrics_file}: {e}")
            self._metrics.clear()
            return False
        logger.debug(f"Loaded metrics from {self._metrics_file}")
        return True

    def _save_metrics_unlocked(self) -> bool:
        """Write metrics atomically; the caller holds ``_lock``."""
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {op: m.to_json() for op, m in self._metrics.items()},
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except (OSError, TypeError) as e:
            logger.error(f"Could not write metrics to {self._metrics_file}: {e}")
            return False
        self._unsaved = 0
        return True

    def save_metrics(self) -> bool:
        with self._lock:
            return self._save_metrics_unlocked()

    def get_metrics_file(self) -> Path:
        return self._metrics_file


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start/end at DEBUG.

    Yields a dict the block can fill with result details (``op["edge_count"] = 3``);
    they are appended to the END log line.
    """
    ref = uuid.uuid4().hex[:8]
    started = time.perf_counter()
    result_info: Dict[str, Any] = {}
    logger.debug(
        f"[{ref}] START {operation} " + " ".join(f"{k}={v}" for k, v in context.items())
    )

    error_msg = None
    try:
        yield result_info
    except Exception as e:
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error_msg is None, error_msg)
        outcome = "OK" if error_msg is None else f"ERROR: {error_msg}"
        details = " ".join(f"{k}={v}" for k, v in result_info.items())
        logger.debug(f"[{ref}] END {operation} {duration_ms:.1f}ms {outcome} {details}")


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a method under ``timed_operation``.

    The note ID (keyword, or first positional int after ``self``) or the title
    goes into the log context; sized results report their length.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if 'note_id' in kwargs:
                context['note_id'] = kwargs['note_id']
            elif len(args) > 1 and isinstance(args[1], int):
                context['note_id'] = args[1]
            elif kwargs.get('title'):
                context['title'] = kwargs['title'][:50]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op['result_count'] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
