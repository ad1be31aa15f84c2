# Copyright: Ankitects Pty Ltd and contributors
# License: GNU AGPL, version 3 or later; http://www.gnu.org/licenses/agpl.html

"""
Media Sync - reconciles a draft's local images and videos with the remote store.

Usage:
    from mediasync import DraftCollection, HttpMediaStore, MediaSyncCoordinator, StoreAuth

    store = HttpMediaStore(StoreAuth.with_endpoint("https://api.example.org", token))
    coordinator = MediaSyncCoordinator(DraftCollection("drafts.db"), store)
    await coordinator.load(project_id)
    output = await coordinator.sync(project_id, progress_callback=on_progress)

    # On partial failure the confirmed work is already committed
    try:
        await coordinator.sync(project_id)
    except PartialSyncCommitted as e:
        show_error(e)  # calling sync() again retries what is left
"""

from .client import (
    # Config
    StoreAuth,
    DEFAULT_ENDPOINT,
    MAX_CONCURRENT_OPERATIONS,
    IMAGE_UPLOAD_LIMIT,
    VIDEO_UPLOAD_LIMIT,
    # Identifiers & data structures
    TemporaryId,
    PermanentId,
    MediaId,
    parse_media_id,
    MediaKind,
    MediaItem,
    InsertedMedia,
    OperationSet,
    SyncSnapshot,
    Operation,
    # Results
    SyncStatus,
    SyncOutput,
    ApplyResult,
    Reconciliation,
    ProgressTracker,
    # Engine
    compute_diff,
    apply_operations,
    reconcile,
    # Exceptions
    SyncError,
    SnapshotError,
    UnsupportedOperationError,
    StoreRedirectError,
    RemoteOperationFailed,
    ConcurrentSyncSkipped,
    PartialSyncCommitted,
    # Store
    MediaStoreInterface,
    HttpMediaStore,
    guess_mime_type,
    # State & coordinator
    DraftStateInterface,
    MediaSyncCoordinator,
)
from .collection import DraftCollection

__all__ = [
    "StoreAuth",
    "DEFAULT_ENDPOINT",
    "MAX_CONCURRENT_OPERATIONS",
    "IMAGE_UPLOAD_LIMIT",
    "VIDEO_UPLOAD_LIMIT",
    "TemporaryId",
    "PermanentId",
    "MediaId",
    "parse_media_id",
    "MediaKind",
    "MediaItem",
    "InsertedMedia",
    "OperationSet",
    "SyncSnapshot",
    "Operation",
    "SyncStatus",
    "SyncOutput",
    "ApplyResult",
    "Reconciliation",
    "ProgressTracker",
    "compute_diff",
    "apply_operations",
    "reconcile",
    "SyncError",
    "SnapshotError",
    "UnsupportedOperationError",
    "StoreRedirectError",
    "RemoteOperationFailed",
    "ConcurrentSyncSkipped",
    "PartialSyncCommitted",
    "MediaStoreInterface",
    "HttpMediaStore",
    "guess_mime_type",
    "DraftStateInterface",
    "MediaSyncCoordinator",
    "DraftCollection",
]

__version__ = "1.0.0"
