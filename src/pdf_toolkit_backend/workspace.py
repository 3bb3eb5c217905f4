"""
Scoped temporary resources for a single request.

A :class:`RequestWorkspace` hands out uniquely named paths inside the shared
workspace directory and deletes every one of them exactly once when the
request finishes, whatever the outcome.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from .utils import ensure_directory

logger = logging.getLogger(__name__)


class RequestWorkspace:
    """
    Owner of the temporary files allocated while handling one request.

    Paths are named ``<prefix>-<request_id>-<n><suffix>`` so concurrent
    requests sharing the same directory never collide. ``cleanup`` is
    idempotent: the first call attempts one deletion per allocated path,
    later calls do nothing.

    Attributes:
        root: Directory holding the files
        request_id: Identifier embedded in every file name
        attempted_deletions: Number of deletions attempted by cleanup
    """

    def __init__(self, root: Path, request_id: Optional[str] = None) -> None:
        self.root = ensure_directory(root)
        self.request_id = request_id or uuid4().hex
        self.attempted_deletions = 0
        self._resources: List[Path] = []
        self._closed = False
        self._lock = Lock()

    @property
    def resources(self) -> List[Path]:
        return list(self._resources)

    @property
    def closed(self) -> bool:
        return self._closed

    def allocate(self, prefix: str, suffix: str = ".pdf") -> Path:
        """
        Register a new temporary path for cleanup and return it.

        The file itself is not created; the caller writes to it.

        Raises:
            RuntimeError: If the workspace has already been cleaned up
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Workspace already cleaned up")
            path = self.root / f"{prefix}-{self.request_id}-{len(self._resources)}{suffix}"
            self._resources.append(path)
        logger.debug(f"Allocated temporary resource {path.name}")
        return path

    def cleanup(self) -> int:
        """
        Delete every allocated path. Deletion errors are logged, never raised.

        Returns:
            Number of deletions attempted by this call (0 if already cleaned up)
        """
        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            paths = list(self._resources)

        for path in paths:
            self.attempted_deletions += 1
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(f"Failed to delete temporary resource {path}: {exc}")

        logger.debug(f"Workspace {self.request_id} released {len(paths)} temporary resource(s)")
        return len(paths)
