# Copyright: Ankitects Pty Ltd and contributors
# License: GNU AGPL, version 3 or later; http://www.gnu.org/licenses/agpl.html

"""Media sync client: diffing, remote application and identity reconciliation."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional, Union
from urllib.parse import unquote, urlparse

if TYPE_CHECKING:
    import requests
    import zstandard as zstd
else:
    try:
        import requests
    except ImportError:
        requests = None
    try:
        import zstandard as zstd
    except ImportError:
        zstd = None

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:8080/"
API_VERSION_PREFIX = "v2"
MAX_CONCURRENT_OPERATIONS = 4
IMAGE_UPLOAD_LIMIT = 10
VIDEO_UPLOAD_LIMIT = 5
ZSTD_FRAME_MAGIC = b"\x28\xb5\x2f\xfd"

_MIME_TYPES = {
    "jpg": "image/jpg",
    "png": "image/png",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "3gp": "video/3gpp",
}


# --- Config ---


@dataclass
class StoreAuth:
    """Credentials and endpoint for the remote media store."""

    auth_token: str = ""
    endpoint: Optional[str] = None
    io_timeout_secs: int = 30

    @classmethod
    def with_endpoint(
        cls, endpoint: str, auth_token: str = "", io_timeout_secs: int = 30
    ) -> StoreAuth:
        if endpoint and not endpoint.endswith("/"):
            endpoint += "/"
        return cls(
            auth_token=auth_token, endpoint=endpoint, io_timeout_secs=io_timeout_secs
        )


# --- Identifiers ---


@dataclass(frozen=True)
class TemporaryId:
    """Client-generated id, valid until the server confirms the upload."""

    token: str

    @classmethod
    def new(cls) -> TemporaryId:
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class PermanentId:
    """Server-assigned id."""

    value: int

    def __str__(self) -> str:
        return str(self.value)


MediaId = Union[TemporaryId, PermanentId]


def parse_media_id(raw: Any) -> MediaId:
    if isinstance(raw, (TemporaryId, PermanentId)):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return PermanentId(raw)
    if isinstance(raw, str) and raw.isdigit():
        return PermanentId(int(raw))
    return TemporaryId(str(raw))


class MediaKind(Enum):
    IMAGE = "image"
    VIDEO = "video"

    @property
    def modifiable(self) -> bool:
        # the store has no replace endpoint for videos
        return self is MediaKind.IMAGE

    @property
    def upload_limit(self) -> int:
        return IMAGE_UPLOAD_LIMIT if self is MediaKind.IMAGE else VIDEO_UPLOAD_LIMIT


# --- Data Classes ---


@dataclass
class MediaItem:
    """A single image or video attachment of a draft.

    Matching between collections uses ``id`` only; ``source_uri`` is the
    content reference and decides whether a matched item was modified.
    """

    id: MediaId
    kind: MediaKind
    source_uri: str
    insert_order: Optional[int] = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def local(
        cls, kind: MediaKind, source_uri: str, attributes: Optional[dict] = None
    ) -> MediaItem:
        return cls(TemporaryId.new(), kind, source_uri, attributes=attributes or {})

    @property
    def is_local(self) -> bool:
        return isinstance(self.id, TemporaryId)

    def same_content(self, other: MediaItem) -> bool:
        return self.source_uri == other.source_uri

    def with_id(self, new_id: MediaId) -> MediaItem:
        return replace(self, id=new_id)

    def with_insert_order(self, insert_order: int) -> MediaItem:
        return replace(self, insert_order=insert_order)


@dataclass
class InsertedMedia:
    """What the store returns for a confirmed upload."""

    id: PermanentId
    insert_order: Optional[int] = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class OperationSet:
    """Remote operations needed to move one kind from previous to current."""

    kind: MediaKind
    deletions: list[MediaItem] = field(default_factory=list)
    modifications: list[MediaItem] = field(default_factory=list)
    insertions: list[MediaItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.deletions) + len(self.modifications) + len(self.insertions)

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def ids(self) -> set[MediaId]:
        return {
            i.id for i in (*self.deletions, *self.modifications, *self.insertions)
        }


@dataclass
class SyncSnapshot:
    """Last collections known to match the remote store."""

    images: list[MediaItem] = field(default_factory=list)
    videos: list[MediaItem] = field(default_factory=list)

    def __post_init__(self):
        for item in (*self.images, *self.videos):
            if item.is_local:
                raise SnapshotError(f"Snapshot cannot hold unconfirmed id {item.id}")

    def for_kind(self, kind: MediaKind) -> list[MediaItem]:
        return self.images if kind is MediaKind.IMAGE else self.videos

    def replace(self, kind: MediaKind, items: list[MediaItem]) -> SyncSnapshot:
        if kind is MediaKind.IMAGE:
            return SyncSnapshot(images=list(items), videos=self.videos)
        return SyncSnapshot(images=self.images, videos=list(items))


class Operation(Enum):
    DELETE = "delete"
    MODIFY = "modify"
    INSERT = "insert"


class SyncStatus(Enum):
    NO_CHANGES = "no_changes"
    COMPLETED = "completed"
    PARTIAL = "partial"
    SKIPPED = "skipped"


@dataclass
class SyncOutput:
    """Result of a sync call."""

    status: SyncStatus
    snapshot: Optional[SyncSnapshot] = None
    total: int = 0
    completed: int = 0
    failures: list[RemoteOperationFailed] = field(default_factory=list)


# --- Exceptions ---


class SyncError(Exception):
    pass


class SnapshotError(SyncError):
    pass


class UnsupportedOperationError(SyncError):
    pass


class StoreRedirectError(SyncError):
    def __init__(self, new_endpoint: str):
        self.new_endpoint = new_endpoint
        super().__init__(f"Redirect to: {new_endpoint}")


class RemoteOperationFailed(SyncError):
    def __init__(self, operation: Operation, item: MediaItem, cause: BaseException):
        self.operation, self.item, self.cause = operation, item, cause
        super().__init__(
            f"{operation.value} {item.kind.value} {item.id} failed: {cause}"
        )


class ConcurrentSyncSkipped(SyncError):
    def __init__(self, draft_id: Any):
        self.draft_id = draft_id
        super().__init__(f"Sync already running for draft {draft_id}")


class PartialSyncCommitted(SyncError):
    def __init__(self, output: SyncOutput, failures: list[RemoteOperationFailed]):
        self.output, self.failures = output, failures
        super().__init__(
            f"{len(failures)} media operation(s) failed; "
            f"{output.completed}/{output.total} committed"
        )


# --- Diff ---


def compute_diff(
    previous: list[MediaItem],
    current: list[MediaItem],
    kind: Optional[MediaKind] = None,
) -> OperationSet:
    """Compute the operations that turn ``previous`` into ``current``.

    Insertions keep their order in ``current`` and are numbered from
    ``len(previous) + 1``.
    """
    if kind is None:
        first = next(iter(previous or current), None)
        kind = first.kind if first else MediaKind.IMAGE

    current_by_id = {item.id: item for item in current}
    previous_by_id = {item.id: item for item in previous}

    ops = OperationSet(kind)
    ops.deletions = [p for p in previous if p.id not in current_by_id]
    if kind.modifiable:
        ops.modifications = [
            c
            for c in current
            if c.id in previous_by_id and not c.same_content(previous_by_id[c.id])
        ]
    added = [c for c in current if c.id not in previous_by_id]
    ops.insertions = [
        item.with_insert_order(len(previous) + n) for n, item in enumerate(added, 1)
    ]
    return ops


# --- Apply ---


class ProgressTracker:
    """Counts completed operations against a total fixed up front."""

    def __init__(
        self, total: int, callback: Optional[Callable[[int, int], None]] = None
    ):
        self.total = total
        self.done = 0
        self._callback = callback

    def start(self):
        if self._callback:
            self._callback(self.done, self.total)

    def advance(self):
        self.done += 1
        if self._callback:
            self._callback(self.done, self.total)


@dataclass
class ApplyResult:
    """Outcome of applying one OperationSet."""

    kind: MediaKind
    deleted: list[MediaId] = field(default_factory=list)
    modified: list[MediaId] = field(default_factory=list)
    inserted: dict[MediaId, InsertedMedia] = field(default_factory=dict)
    failures: list[RemoteOperationFailed] = field(default_factory=list)
    skipped: list[MediaItem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.skipped

    @property
    def completed(self) -> int:
        return len(self.deleted) + len(self.modified) + len(self.inserted)

    @property
    def first_error(self) -> Optional[RemoteOperationFailed]:
        return self.failures[0] if self.failures else None

    def failed_ids(self) -> set[MediaId]:
        """Ids whose operation failed or never ran."""
        return {f.item.id for f in self.failures} | {i.id for i in self.skipped}


async def _apply_unordered(
    ops: OperationSet,
    store: MediaStoreInterface,
    draft_id: Any,
    result: ApplyResult,
    progress: Optional[ProgressTracker],
    max_concurrency: int,
):
    semaphore = asyncio.Semaphore(max_concurrency)
    aborted = False

    async def run(operation: Operation, item: MediaItem):
        nonlocal aborted
        async with semaphore:
            if aborted:
                result.skipped.append(item)
                return
            logger.debug("%s %s %s", operation.value, item.kind.value, item.id)
            try:
                if operation is Operation.DELETE:
                    await store.delete(draft_id, item.kind, item.id)
                else:
                    await store.modify(draft_id, item.kind, item.id, item)
            except Exception as e:
                aborted = True
                result.failures.append(RemoteOperationFailed(operation, item, e))
                logger.warning(
                    "%s of %s %s failed: %s",
                    operation.value,
                    item.kind.value,
                    item.id,
                    e,
                )
                return
        if operation is Operation.DELETE:
            result.deleted.append(item.id)
        else:
            result.modified.append(item.id)
        if progress:
            progress.advance()

    await asyncio.gather(
        *[run(Operation.DELETE, item) for item in ops.deletions],
        *[run(Operation.MODIFY, item) for item in ops.modifications],
    )


async def _apply_insertions(
    ops: OperationSet,
    store: MediaStoreInterface,
    draft_id: Any,
    result: ApplyResult,
    progress: Optional[ProgressTracker],
):
    pending = sorted(ops.insertions, key=lambda i: i.insert_order or 0)
    for n, item in enumerate(pending):
        logger.debug(
            "insert %s %s at %s", item.kind.value, item.id, item.insert_order
        )
        try:
            inserted = await store.insert(draft_id, item.kind, item, item.insert_order)
        except Exception as e:
            result.failures.append(RemoteOperationFailed(Operation.INSERT, item, e))
            result.skipped.extend(pending[n + 1 :])
            logger.warning(
                "insert of %s %s failed: %s", item.kind.value, item.id, e
            )
            return
        if inserted.insert_order is None:
            inserted.insert_order = item.insert_order
        result.inserted[item.id] = inserted
        if progress:
            progress.advance()


async def apply_operations(
    ops: OperationSet,
    store: MediaStoreInterface,
    draft_id: Any,
    progress: Optional[ProgressTracker] = None,
    max_concurrency: int = MAX_CONCURRENT_OPERATIONS,
) -> ApplyResult:
    """Apply an OperationSet to the store.

    Deletions and modifications run concurrently; insertions run one at a
    time in ascending insert order once they have all succeeded. Failures
    are collected on the result, never raised.
    """
    result = ApplyResult(ops.kind)
    await _apply_unordered(ops, store, draft_id, result, progress, max_concurrency)
    if result.failures:
        result.skipped.extend(ops.insertions)
    else:
        await _apply_insertions(ops, store, draft_id, result, progress)
    return result


# --- Reconcile ---


@dataclass
class Reconciliation:
    current: list[MediaItem]
    snapshot: list[MediaItem]


def reconcile(
    previous: list[MediaItem],
    synced: list[MediaItem],
    latest: list[MediaItem],
    result: ApplyResult,
) -> Reconciliation:
    """Fold the store's answers back into the local collections.

    ``synced`` is the collection the diff was computed from; ``latest`` is
    the collection as it is now, including edits made during the sync.
    """

    def confirm(item: MediaItem) -> MediaItem:
        inserted = result.inserted.get(item.id)
        if inserted is None:
            return item
        return replace(
            item,
            id=inserted.id,
            insert_order=inserted.insert_order,
            attributes={**inserted.attributes, **item.attributes},
        )

    unresolved = result.failed_ids()
    previous_by_id = {item.id: item for item in previous}

    snapshot = []
    for item in synced:
        if item.id in result.inserted:
            snapshot.append(confirm(item))
        elif item.id in previous_by_id:
            # a modification that did not land keeps the remote version
            snapshot.append(
                previous_by_id[item.id] if item.id in unresolved else item
            )

    synced_ids = {item.id for item in synced}
    for index, item in enumerate(previous):
        if item.id not in synced_ids and item.id in unresolved:
            snapshot.insert(min(index, len(snapshot)), item)

    return Reconciliation(current=[confirm(i) for i in latest], snapshot=snapshot)


# --- Remote Store Interface ---


class MediaStoreInterface(ABC):
    """Remote media store for draft attachments."""

    @abstractmethod
    async def delete(self, draft_id: Any, kind: MediaKind, item_id: MediaId) -> None: ...
    @abstractmethod
    async def modify(
        self, draft_id: Any, kind: MediaKind, item_id: MediaId, item: MediaItem
    ) -> None: ...
    @abstractmethod
    async def insert(
        self, draft_id: Any, kind: MediaKind, item: MediaItem, insert_order: int
    ) -> InsertedMedia: ...
    @abstractmethod
    async def fetch(self, draft_id: Any) -> tuple[list[MediaItem], list[MediaItem]]: ...


# --- HTTP Store ---


def _check_deps():
    if requests is None:
        raise ImportError("requests required: pip install requests")
    if zstd is None:
        raise ImportError("zstandard required: pip install zstandard")


def guess_mime_type(item: MediaItem) -> str:
    suffix = item.source_uri.rsplit(".", 1)[-1].lower()
    return _MIME_TYPES.get(suffix, f"{item.kind.value}/{suffix}")


def _local_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


class HttpMediaStore(MediaStoreInterface):
    """REST client for the project media endpoints.

    Requests are blocking and run on worker threads so the engine can keep
    several of them in flight. Each worker thread gets its own
    ``requests.Session``; an injected session is shared by all of them and
    must be safe to use that way.
    """

    def __init__(self, auth: StoreAuth, session: Optional[requests.Session] = None):
        _check_deps()
        self.auth_token = auth.auth_token
        self.endpoint = auth.endpoint or DEFAULT_ENDPOINT
        self.io_timeout = auth.io_timeout_secs
        self._session = session
        self._local = threading.local()
        self._owned: list[requests.Session] = []
        self._lock = threading.Lock()

    def close(self):
        with self._lock:
            owned, self._owned = self._owned, []
            self._local = threading.local()
        for session in owned:
            session.close()

    def _thread_session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            with self._lock:
                self._local.session = session
                self._owned.append(session)
        return session

    def _url(
        self,
        draft_id: Any,
        kind: Optional[MediaKind] = None,
        item_id: Optional[MediaId] = None,
    ) -> str:
        url = f"{self.endpoint.rstrip('/')}/{API_VERSION_PREFIX}/project/{draft_id}"
        if kind:
            url += f"/{kind.value}"
        if item_id is not None:
            url += f"/{item_id}"
        return url

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[dict] = None,
        upload: Optional[tuple[str, MediaItem]] = None,
    ) -> bytes:
        files = None
        if upload:
            name, item = upload
            content = _local_path(item.source_uri).read_bytes()
            files = {"file": (name, content, guess_mime_type(item))}

        resp = self._thread_session().request(
            method,
            url,
            data=data,
            files=files,
            headers={"auth-token": self.auth_token},
            timeout=self.io_timeout,
        )

        if resp.status_code == 308:
            raise StoreRedirectError(resp.headers.get("location", ""))
        resp.raise_for_status()

        content = resp.content
        if resp.headers.get("content-encoding") == "zstd" and content.startswith(
            ZSTD_FRAME_MAGIC
        ):
            content = zstd.ZstdDecompressor().decompress(
                content, max_output_size=100 * 1024 * 1024
            )
        return content

    def _json(self, method: str, url: str, **kwargs) -> Any:
        resp = self._request(method, url, **kwargs)
        return json.loads(resp) if resp else None

    def _upload_name(self, draft_id: Any, item: MediaItem) -> str:
        return f"project-{draft_id}-{item.kind.value}-{item.id}"

    async def delete(self, draft_id: Any, kind: MediaKind, item_id: MediaId) -> None:
        await asyncio.to_thread(
            self._request, "DELETE", self._url(draft_id, kind, item_id)
        )

    async def modify(
        self, draft_id: Any, kind: MediaKind, item_id: MediaId, item: MediaItem
    ) -> None:
        if not kind.modifiable:
            raise UnsupportedOperationError(f"{kind.value} media cannot be replaced")
        await asyncio.to_thread(
            self._request,
            "PUT",
            self._url(draft_id, kind, item_id),
            upload=(self._upload_name(draft_id, item), item),
        )

    async def insert(
        self, draft_id: Any, kind: MediaKind, item: MediaItem, insert_order: int
    ) -> InsertedMedia:
        body = await asyncio.to_thread(
            self._json,
            "POST",
            self._url(draft_id, kind),
            data={"insertOrder": insert_order},
            upload=(self._upload_name(draft_id, item), item),
        )
        key = "projectImage" if kind is MediaKind.IMAGE else "projectVideo"
        payload = dict((body or {}).get(key) or {})
        if "id" not in payload:
            raise SyncError(f"Upload response is missing {key}.id")
        new_id = parse_media_id(payload.pop("id"))
        if not isinstance(new_id, PermanentId):
            raise SyncError(f"Server returned a non-numeric id: {new_id}")
        return InsertedMedia(
            id=new_id, insert_order=payload.pop("order", None), attributes=payload
        )

    async def fetch(self, draft_id: Any) -> tuple[list[MediaItem], list[MediaItem]]:
        body = await asyncio.to_thread(self._json, "GET", self._url(draft_id))
        project = (body or {}).get("project") or {}
        return (
            [self._to_item(MediaKind.IMAGE, r) for r in project.get("images") or []],
            [self._to_item(MediaKind.VIDEO, r) for r in project.get("videos") or []],
        )

    @staticmethod
    def _to_item(kind: MediaKind, row: dict) -> MediaItem:
        attrs = dict(row)
        return MediaItem(
            id=parse_media_id(attrs.pop("id")),
            kind=kind,
            source_uri=attrs.pop("uri", ""),
            insert_order=attrs.pop("order", None),
            attributes=attrs,
        )


# --- Draft State Interface ---


class DraftStateInterface(ABC):
    """Where a draft's media collections live. Implement for your state store."""

    @abstractmethod
    def get_current_collection(
        self, draft_id: Any, kind: MediaKind
    ) -> list[MediaItem]: ...
    @abstractmethod
    def get_previous_snapshot(
        self, draft_id: Any, kind: MediaKind
    ) -> list[MediaItem]: ...
    @abstractmethod
    def commit_snapshot(
        self, draft_id: Any, kind: MediaKind, items: list[MediaItem]
    ) -> None: ...
    @abstractmethod
    def replace_current_collection(
        self, draft_id: Any, kind: MediaKind, items: list[MediaItem]
    ) -> None: ...
    @abstractmethod
    def seed(
        self, draft_id: Any, images: list[MediaItem], videos: list[MediaItem]
    ) -> None: ...
    @abstractmethod
    def set_in_progress(self, draft_id: Any, in_progress: bool) -> None: ...
    @abstractmethod
    def is_in_progress(self, draft_id: Any) -> bool: ...


# --- Sync Coordinator ---


async def _wait_uninterrupted(task: asyncio.Future):
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue
    if not task.cancelled() and task.exception() is not None:
        logger.error(
            "sync finished after cancellation with an error", exc_info=task.exception()
        )


class MediaSyncCoordinator:
    """Drives a draft's remote media to match its local collections.

    Usage:
        coordinator = MediaSyncCoordinator(DraftCollection(path), HttpMediaStore(auth))
        await coordinator.load(draft_id)
        ...
        output = await coordinator.sync(draft_id, progress_callback=print)
    """

    KINDS = (MediaKind.IMAGE, MediaKind.VIDEO)

    def __init__(
        self,
        state: DraftStateInterface,
        store: MediaStoreInterface,
        max_concurrency: int = MAX_CONCURRENT_OPERATIONS,
    ):
        self.state = state
        self.store = store
        self.max_concurrency = max_concurrency
        self._running: set = set()

    def is_busy(self, draft_id: Any) -> bool:
        return draft_id in self._running or self.state.is_in_progress(draft_id)

    async def load(self, draft_id: Any) -> SyncSnapshot:
        """Fetch a draft's media and make it both current and synced."""
        if self.is_busy(draft_id):
            raise ConcurrentSyncSkipped(draft_id)
        images, videos = await self.store.fetch(draft_id)
        snapshot = SyncSnapshot(images=images, videos=videos)
        self.state.seed(draft_id, images, videos)
        logger.info(
            "loaded draft %s: %d images, %d videos", draft_id, len(images), len(videos)
        )
        return snapshot

    async def sync(
        self,
        draft_id: Any,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        raise_if_busy: bool = False,
    ) -> SyncOutput:
        """Sync draft media with the store. Returns SKIPPED if already syncing.

        Raises PartialSyncCommitted after committing whatever did succeed.
        Cancelling the caller does not stop a started sync; it is awaited to
        completion before CancelledError propagates.
        """
        if self.is_busy(draft_id):
            logger.info("sync for draft %s already running, skipping", draft_id)
            if raise_if_busy:
                raise ConcurrentSyncSkipped(draft_id)
            return SyncOutput(SyncStatus.SKIPPED)

        self._running.add(draft_id)
        self.state.set_in_progress(draft_id, True)
        task = asyncio.ensure_future(self._sync(draft_id, progress_callback))
        try:
            output = await asyncio.shield(task)
        except asyncio.CancelledError:
            # started work must still be reconciled and committed
            logger.info("sync for draft %s cancelled, finishing it first", draft_id)
            await _wait_uninterrupted(task)
            raise
        finally:
            self._running.discard(draft_id)
            self.state.set_in_progress(draft_id, False)

        if output.failures:
            raise PartialSyncCommitted(output, output.failures) from output.failures[0]
        return output

    async def _sync(
        self, draft_id: Any, progress_callback: Optional[Callable[[int, int], None]]
    ) -> SyncOutput:
        previous = SyncSnapshot(
            images=self.state.get_previous_snapshot(draft_id, MediaKind.IMAGE),
            videos=self.state.get_previous_snapshot(draft_id, MediaKind.VIDEO),
        )
        synced = {
            k: self.state.get_current_collection(draft_id, k) for k in self.KINDS
        }
        plans = {
            k: compute_diff(previous.for_kind(k), synced[k], k) for k in self.KINDS
        }

        progress = ProgressTracker(
            sum(p.total for p in plans.values()), progress_callback
        )
        progress.start()
        if progress.total == 0:
            return SyncOutput(SyncStatus.NO_CHANGES, previous)

        for kind, plan in plans.items():
            logger.info(
                "draft %s %ss: %d to delete, %d to modify, %d to insert",
                draft_id,
                kind.value,
                len(plan.deletions),
                len(plan.modifications),
                len(plan.insertions),
            )

        results = await asyncio.gather(
            *[
                apply_operations(
                    plans[k], self.store, draft_id, progress, self.max_concurrency
                )
                for k in self.KINDS
            ]
        )

        snapshot = previous
        failures: list[RemoteOperationFailed] = []
        for kind, result in zip(self.KINDS, results):
            latest = self.state.get_current_collection(draft_id, kind)
            merged = reconcile(previous.for_kind(kind), synced[kind], latest, result)
            snapshot = snapshot.replace(kind, merged.snapshot)
            self.state.replace_current_collection(draft_id, kind, merged.current)
            self.state.commit_snapshot(draft_id, kind, merged.snapshot)
            failures.extend(result.failures)

        status = SyncStatus.PARTIAL if failures else SyncStatus.COMPLETED
        logger.info(
            "draft %s media sync %s: %d/%d operations",
            draft_id,
            status.value,
            progress.done,
            progress.total,
        )
        return SyncOutput(status, snapshot, progress.total, progress.done, failures)
