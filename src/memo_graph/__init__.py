"""
Memo Graph - a note store that discovers semantic relationships between notes.

Notes are split into paragraphs, embedded, and compared by cosine similarity.
The strongest relationships are kept as a sparse similarity graph that can be
queried per note ("similar notes") or as a whole (graph snapshot).

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("memo-graph")
except PackageNotFoundError:
    __version__ = "0.3.0"
