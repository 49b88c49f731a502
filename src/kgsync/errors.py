"""Exception hierarchy for kgsync.

Invalid arguments and configuration values raise ``ValueError`` (as the
config layer does); everything that is specific to synchronisation derives
from ``KgSyncError`` so the CLI and MCP surfaces can map it to an exit code
or a structured error response.
"""


class KgSyncError(Exception):
    """Base class for all kgsync domain errors."""


class RollbackPointNotFoundError(KgSyncError):
    """No history entry matches the requested rollback point."""

    def __init__(self, to: str) -> None:
        super().__init__(f"Rollback point not found: {to}")
        self.to = to


class StoreConnectionError(KgSyncError):
    """The knowledge graph store could not be opened or queried."""


class SyncCancelledError(KgSyncError):
    """A pending prompt was cancelled through a ``CancellationToken``."""
