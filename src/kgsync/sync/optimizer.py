"""Optional performance layer for code-side scans.

Three independent helpers, none of which affect conflict detection:

- a SHA-256 checksum cache, used to reuse the analysis of a file whose
  content did not change since the previous scan by the same optimizer;
- a ``watchdog`` subscription that marks changed source files dirty;
- chunked concurrent analysis (``analyze_in_chunks``) so a large tree is
  parsed with bounded fan-out.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Awaitable, Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..core.async_utils import gather_chunked
from .analyzer import SOURCE_SUFFIX

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10


class _SourceChangeHandler(FileSystemEventHandler):
    """Watchdog handler that marks changed source files dirty."""

    def __init__(
        self,
        optimizer: SyncOptimizer,
        on_change: Callable[[Path], None] | None = None,
    ) -> None:
        super().__init__()
        self._optimizer = optimizer
        self._on_change = on_change

    def _handle(self, path: str | bytes) -> None:
        if isinstance(path, bytes):
            path = path.decode()
        src = Path(path)
        if src.suffix != SOURCE_SUFFIX:
            return
        self._optimizer._mark_changed(src)
        if self._on_change is not None:
            self._on_change(src)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.src_path)
            self._handle(event.dest_path)


class SyncOptimizer:
    """Checksum cache, file watching and chunked analysis.

    Args:
        chunk_size: Default number of files analysed concurrently.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.chunk_size = chunk_size
        self._checksums: dict[str, str] = {}
        self._results: dict[str, Any] = {}
        self._changed: set[Path] = set()
        self._lock = threading.Lock()
        self._observer: Observer | None = None

    # ------------------------------------------------------------------
    # Checksum cache
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_file_checksum(path: Path | str) -> str:
        """Return the SHA-256 hex digest of the file's raw bytes."""
        digest = hashlib.sha256()
        with open(path, "rb") as fh:
            for block in iter(lambda: fh.read(65536), b""):
                digest.update(block)
        return digest.hexdigest()

    def get_checksum(self, path: Path | str) -> str | None:
        return self._checksums.get(str(path))

    def set_checksum(self, path: Path | str, checksum: str) -> None:
        self._checksums[str(path)] = checksum

    def is_unchanged(self, path: Path | str) -> bool:
        """True if *path* still has the checksum recorded for it."""
        previous = self.get_checksum(path)
        if previous is None:
            return False
        try:
            return self.calculate_file_checksum(path) == previous
        except OSError:
            return False

    def analyze_cached(
        self, path: Path | str, analyze_fn: Callable[[Path | str], R]
    ) -> R:
        """Run *analyze_fn* unless *path* is unchanged since the last run.

        A file that cannot be hashed is always analysed and never cached.
        """
        key = str(path)
        try:
            checksum = self.calculate_file_checksum(path)
        except OSError:
            return analyze_fn(path)

        if self._checksums.get(key) == checksum and key in self._results:
            logger.debug("Reusing analysis of unchanged file %s", key)
            return self._results[key]

        result = analyze_fn(path)
        self.set_checksum(key, checksum)
        self._results[key] = result
        return result

    # ------------------------------------------------------------------
    # File watching
    # ------------------------------------------------------------------

    def watch_files(
        self,
        dirs: Iterable[Path | str],
        on_change: Callable[[Path], None] | None = None,
    ) -> Observer:
        """Start watching *dirs* recursively for source file changes.

        Args:
            dirs: Directories to watch; missing ones are skipped.
            on_change: Optional callback invoked (from the observer thread)
                with each changed path.

        Returns:
            The started observer.
        """
        self.stop_watching()
        observer = Observer()
        handler = _SourceChangeHandler(self, on_change)
        for directory in dirs:
            if not Path(directory).is_dir():
                logger.debug("Not watching missing directory %s", directory)
                continue
            observer.schedule(handler, str(directory), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Started watching for source changes")
        return observer

    def _mark_changed(self, path: Path) -> None:
        with self._lock:
            self._changed.add(path)
        self._checksums.pop(str(path), None)

    def get_changed_files(self) -> list[Path]:
        with self._lock:
            return sorted(self._changed)

    def clear_changed(self) -> None:
        with self._lock:
            self._changed.clear()

    def stop_watching(self) -> None:
        """Stop the observer started by ``watch_files``, if any."""
        if self._observer is None:
            return
        try:
            self._observer.stop()
            self._observer.join(timeout=2.0)
        finally:
            self._observer = None
        logger.info("Stopped watching for source changes")

    # ------------------------------------------------------------------
    # Chunked analysis
    # ------------------------------------------------------------------

    async def analyze_in_chunks(
        self,
        files: Sequence[T],
        analyze_fn: Callable[[T], Awaitable[R]],
        chunk_size: int | None = None,
    ) -> list[R]:
        """Analyse *files* in fixed-size concurrent chunks.

        Returns:
            One result per file, in input order.
        """
        size = chunk_size or self.chunk_size
        logger.debug(
            "Analysing %d files in chunks of %d", len(files), size
        )
        return await gather_chunked(files, analyze_fn, size)
