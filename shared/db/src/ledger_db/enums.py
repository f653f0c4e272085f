from enum import StrEnum


class SyncStatus(StrEnum):
    """Sync run state machine: idle -> running -> succeeded | partial | failed."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.SUCCEEDED, SyncStatus.PARTIAL, SyncStatus.FAILED)
