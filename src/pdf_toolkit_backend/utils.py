"""
Utility functions for file names, directories and page selections.

This module provides helper functions for:
- Sanitizing user-provided filenames for Content-Disposition headers
- Ensuring directory creation
- Validating and resolving page selections against a document
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Sequence, Union

# Pattern to match characters that are not safe in a download filename
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

# A single token of a range expression: "3", "5-7", "5-"
_RANGE_TOKEN = re.compile(r"^(\d+)(?:\s*-\s*(\d*))?$")

PageSelection = Union[Sequence[int], str]


def sanitize_filename(filename: str, fallback: str) -> str:
    """
    Generate a safe ``.pdf`` download name from user input.

    Args:
        filename: The requested filename (may include a path or another extension)
        fallback: Name to use if sanitization leaves nothing usable

    Returns:
        A filename containing only safe characters and ending in ``.pdf``

    Example:
        >>> sanitize_filename("My Report (final).pdf", "document.pdf")
        "My-Report-final.pdf"
        >>> sanitize_filename("@#$", "document.pdf")
        "document.pdf"
    """
    stem = Path(filename.strip()).stem if filename else ""
    cleaned = SANITIZE_PATTERN.sub("-", stem).strip("-_.")
    if not cleaned:
        return fallback
    return f"{cleaned}.pdf"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def validate_page_expression(expression: str) -> str:
    """
    Check the syntax of a range expression such as ``"1,3,5-7"``.

    Only syntax is checked here; bounds depend on the document and are
    resolved later by :func:`resolve_pages`.

    Raises:
        ValueError: If the expression is empty or contains a malformed token
    """
    tokens = [token.strip() for token in expression.split(",")]
    if not any(tokens):
        raise ValueError("page range is empty")
    for token in tokens:
        if token and not _RANGE_TOKEN.match(token):
            raise ValueError(f"invalid page range token {token!r}")
    return expression


def _expand_expression(expression: str, total_pages: int) -> Iterable[int]:
    for token in expression.split(","):
        token = token.strip()
        if not token:
            continue
        match = _RANGE_TOKEN.match(token)
        if match is None:
            raise ValueError(f"invalid page range token {token!r}")
        start = int(match.group(1))
        if match.group(2) is None:
            yield start
            continue
        end = int(match.group(2)) if match.group(2) else total_pages
        if start > end:
            start, end = end, start
        # Clamp so "1-999999" does not iterate past the document
        yield from range(start, min(end, total_pages) + 1)


def resolve_pages(selection: PageSelection, total_pages: int) -> List[int]:
    """
    Resolve a page selection to sorted, unique, 1-based page numbers.

    Entries outside ``1..total_pages`` are silently dropped.

    Example:
        >>> resolve_pages("1,3,5-7", 8)
        [1, 3, 5, 6, 7]
        >>> resolve_pages([9, 2, 2, 0], 4)
        [2]
    """
    if isinstance(selection, str):
        candidates = _expand_expression(selection, total_pages)
    else:
        candidates = selection
    return sorted({page for page in candidates if 1 <= page <= total_pages})


def resolve_order(order: Sequence[int], total_pages: int) -> List[int]:
    """Keep the caller's page order, dropping indices outside the document."""
    return [page for page in order if 1 <= page <= total_pages]


def normalize_angle(angle: int) -> int:
    return angle % 360
