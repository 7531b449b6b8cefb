"""
Query comments.

A process-wide list of short strings prepended to every statement as
``/* c1; c2 */ `` so queries can be traced back to their origin in the
database's own logs.
"""

from __future__ import annotations

import threading
from typing import List

__all__ = [
    "QueryComments",
    "query_comments",
    "add_query_comment",
    "clear_query_comments",
    "get_query_comments",
    "with_comments",
]


class QueryComments:
    """Thread-safe list of comments rendered as one SQL block comment."""

    def __init__(self) -> None:
        self._comments: List[str] = []
        self._lock = threading.Lock()

    def add_comment(self, comment: str) -> None:
        with self._lock:
            self._comments.append(comment)

    def clear_comments(self) -> None:
        with self._lock:
            self._comments = []

    def __str__(self) -> str:
        with self._lock:
            if not self._comments:
                return ""
            return f"/* {'; '.join(self._comments)} */ "

    def __len__(self) -> int:
        with self._lock:
            return len(self._comments)


query_comments = QueryComments()


def add_query_comment(comment: str) -> None:
    """Prefix every following statement with ``comment``."""
    query_comments.add_comment(comment)


def clear_query_comments() -> None:
    query_comments.clear_comments()


def get_query_comments() -> QueryComments:
    return query_comments


def with_comments(query: str) -> str:
    return f"{query_comments}{query}"
