"""Sync history persistence layer.

Manages the append-only JSON log of past pull/push operations.  The file is
a single JSON array of entries, oldest first, readable and editable by hand.

Key design choices:

* **Tolerant reads** -- a missing, unreadable or corrupt file is an empty
  history, never an error.
* **Atomic writes** -- every append or rollback rewrites the whole file via
  a temp file and ``os.replace()`` so readers never see partial data.
  Concurrent writers from two processes are not coordinated: the last
  rewrite wins.
* **Audit-log rollback** -- ``rollback()`` truncates the log only; entity
  state written by earlier pulls/pushes is left as it is.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..errors import RollbackPointNotFoundError
from .models import SyncHistoryEntry

logger = logging.getLogger(__name__)


class SyncHistory:
    """Record, list and roll back sync operations.

    Args:
        history_file: Path of the JSON log file.
    """

    def __init__(self, history_file: Path) -> None:
        self.history_file = Path(history_file)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record_sync(
        self,
        action: str,
        details: Any,
        git_commit: str | None = None,
    ) -> SyncHistoryEntry:
        """Append one entry to the log.

        Args:
            action: Operation name (``pull``, ``push``, ...).
            details: Arbitrary JSON-serialisable metadata.
            git_commit: Optional external reference (e.g. a commit hash).

        Returns:
            The entry that was written.
        """
        entry = SyncHistoryEntry(
            timestamp=_now_iso(),
            action=action,
            details=details,
            git_commit=git_commit,
        )
        history = self._read_raw()
        history.append(entry.to_json_dict())
        self._write_raw(history)
        logger.info(
            "Recorded %s in sync history (%d entries)", action, len(history)
        )
        return entry

    def get_history(self) -> list[SyncHistoryEntry]:
        """Return all entries, oldest first.  Empty on any read failure."""
        return _validate_entries(self._read_raw())

    def last_entry(self) -> SyncHistoryEntry | None:
        """Return the newest entry, or ``None`` when the log is empty."""
        history = self.get_history()
        return history[-1] if history else None

    def rollback(self, to: str) -> list[SyncHistoryEntry]:
        """Truncate the log after the first entry matching *to*.

        *to* is compared with each entry's ``timestamp`` and ``gitCommit``,
        oldest first; the matching entry is kept.

        Args:
            to: Timestamp or commit reference of the rollback point.

        Returns:
            The entries that remain.

        Raises:
            ValueError: If *to* is empty.
            RollbackPointNotFoundError: If no entry matches; the log is left
                untouched.
        """
        if not to:
            raise ValueError("A rollback point is required")

        history = self._read_raw()
        index = next(
            (
                i
                for i, raw in enumerate(history)
                if raw.get("timestamp") == to or raw.get("gitCommit") == to
            ),
            None,
        )
        if index is None:
            raise RollbackPointNotFoundError(to)

        truncated = history[: index + 1]
        remaining = _validate_entries(truncated)
        self._write_raw(truncated)
        logger.info(
            "Rollback to sync point %s (history truncated to %d entries)",
            to,
            len(truncated),
        )
        return remaining

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_raw(self) -> list[dict]:
        try:
            with open(self.history_file, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.debug(
                "No readable sync history at %s: %s", self.history_file, exc
            )
            return []
        if not isinstance(data, list):
            logger.debug(
                "Sync history at %s is not a JSON array -- ignoring",
                self.history_file,
            )
            return []
        entries = [item for item in data if isinstance(item, dict)]
        dropped = len(data) - len(entries)
        if dropped:
            logger.warning(
                "Dropping %d non-object element(s) from sync history at %s",
                dropped,
                self.history_file,
            )
        return entries

    def _write_raw(self, history: list[dict]) -> None:
        directory = self.history_file.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(history, fh, indent=2, default=str)
            os.replace(tmp_path, self.history_file)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


def _validate_entries(history: list[dict]) -> list[SyncHistoryEntry]:
    """Validate raw entries, skipping any that are malformed."""
    entries: list[SyncHistoryEntry] = []
    for raw in history:
        try:
            entries.append(SyncHistoryEntry.model_validate(raw))
        except ValidationError as exc:
            logger.debug("Skipping malformed history entry: %s", exc)
    return entries


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
