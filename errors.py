"""Error taxonomy for the sync job."""

from __future__ import annotations


class SyncJobError(Exception):
    """Base class for every error the job raises on purpose."""


class ConfigurationError(SyncJobError):
    """Bad job configuration, schedule or missing secret. Fatal before a Run starts."""


class TransientExternalError(SyncJobError):
    """Network or API failure talking to an external collaborator."""


class ItemFetchError(TransientExternalError):
    def __init__(self, video_id: str, message: str) -> None:
        super().__init__(f"fetch failed for video_id={video_id}: {message}")
        self.video_id = video_id


class DivergedStateError(SyncJobError):
    """The Run's base snapshot is no longer the published head."""


class PublishConflictError(SyncJobError):
    """Another writer published between our check and our write."""


class RunTimeoutError(SyncJobError):
    """The Run exceeded its maximum duration and was cancelled."""


class RunCancelledError(SyncJobError):
    """Raised inside the executor when the cancel event is set."""
