# Copyright: Ankitects Pty Ltd and contributors
# License: GNU AGPL, version 3 or later; http://www.gnu.org/licenses/agpl.html

"""
Draft media collection backed by SQLite.

Stores, per draft and per media kind, the collection the user is editing
("current") and the last collection confirmed by the server ("synced").
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from .client import (
    DraftStateInterface,
    MediaItem,
    MediaKind,
    PermanentId,
    SyncSnapshot,
    TemporaryId,
)

logger = logging.getLogger(__name__)

CURRENT = "current"
SYNCED = "synced"

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS media (
        draft_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        slot TEXT NOT NULL,
        position INTEGER NOT NULL,
        id_tag TEXT NOT NULL,
        id_value TEXT NOT NULL,
        source_uri TEXT NOT NULL,
        insert_order INTEGER,
        attributes TEXT NOT NULL,
        PRIMARY KEY (draft_id, kind, slot, position)
    );
"""


def _connect_db(path: str | Path) -> sqlite3.Connection:
    db = sqlite3.connect(str(path))
    db.row_factory = sqlite3.Row
    db.executescript(_SCHEMA)
    db.commit()
    return db


def _encode_id(item: MediaItem) -> tuple[str, str]:
    if item.is_local:
        return "tmp", item.id.token
    return "perm", str(item.id.value)


def _decode_row(row: sqlite3.Row) -> MediaItem:
    if row["id_tag"] == "perm":
        media_id = PermanentId(int(row["id_value"]))
    else:
        media_id = TemporaryId(row["id_value"])
    return MediaItem(
        id=media_id,
        kind=MediaKind(row["kind"]),
        source_uri=row["source_uri"],
        insert_order=row["insert_order"],
        attributes=json.loads(row["attributes"]),
    )


class DraftCollection(DraftStateInterface):
    """
    Draft state store that supports media sync.

    Usage:
        col = DraftCollection("/path/to/drafts.db")
        col.add_media(draft_id, [MediaItem.local(MediaKind.IMAGE, "/tmp/a.jpg")])
        await MediaSyncCoordinator(col, store).sync(draft_id)
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = db_path
        self.db = _connect_db(db_path)
        # not persisted: a crashed sync must not leave the draft locked
        self._in_progress: set[str] = set()

    def close(self):
        """Close the database connection."""
        if self.db:
            self.db.close()
            self.db = None

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    def _read(self, draft_id: Any, kind: MediaKind, slot: str) -> list[MediaItem]:
        rows = self.db.execute(
            """SELECT * FROM media WHERE draft_id = ? AND kind = ? AND slot = ?
               ORDER BY position""",
            (str(draft_id), kind.value, slot),
        )
        return [_decode_row(row) for row in rows]

    def _write(
        self, draft_id: Any, kind: MediaKind, slot: str, items: Iterable[MediaItem]
    ) -> None:
        items = list(items)
        for item in items:
            if item.kind is not kind:
                raise ValueError(f"{item.kind.value} item in {kind.value} collection")
        self.db.execute(
            "DELETE FROM media WHERE draft_id = ? AND kind = ? AND slot = ?",
            (str(draft_id), kind.value, slot),
        )
        for position, item in enumerate(items):
            id_tag, id_value = _encode_id(item)
            self.db.execute(
                """INSERT INTO media (draft_id, kind, slot, position, id_tag, id_value,
                                      source_uri, insert_order, attributes)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(draft_id),
                    kind.value,
                    slot,
                    position,
                    id_tag,
                    id_value,
                    item.source_uri,
                    item.insert_order,
                    json.dumps(item.attributes),
                ),
            )

    # -------------------------------------------------------------------------
    # DraftStateInterface
    # -------------------------------------------------------------------------

    def get_current_collection(self, draft_id: Any, kind: MediaKind) -> list[MediaItem]:
        return self._read(draft_id, kind, CURRENT)

    def get_previous_snapshot(self, draft_id: Any, kind: MediaKind) -> list[MediaItem]:
        return self._read(draft_id, kind, SYNCED)

    def commit_snapshot(
        self, draft_id: Any, kind: MediaKind, items: list[MediaItem]
    ) -> None:
        # raises SnapshotError on temporary ids
        SyncSnapshot().replace(kind, items)
        self._write(draft_id, kind, SYNCED, items)
        self.db.commit()

    def replace_current_collection(
        self, draft_id: Any, kind: MediaKind, items: list[MediaItem]
    ) -> None:
        self._write(draft_id, kind, CURRENT, items)
        self.db.commit()

    def seed(
        self, draft_id: Any, images: list[MediaItem], videos: list[MediaItem]
    ) -> None:
        SyncSnapshot(images=images, videos=videos)
        for kind, items in ((MediaKind.IMAGE, images), (MediaKind.VIDEO, videos)):
            self._write(draft_id, kind, CURRENT, items)
            self._write(draft_id, kind, SYNCED, items)
        self.db.commit()

    def set_in_progress(self, draft_id: Any, in_progress: bool) -> None:
        if in_progress:
            self._in_progress.add(str(draft_id))
        else:
            self._in_progress.discard(str(draft_id))

    def is_in_progress(self, draft_id: Any) -> bool:
        return str(draft_id) in self._in_progress

    # -------------------------------------------------------------------------
    # Local editing
    # -------------------------------------------------------------------------

    def add_media(self, draft_id: Any, items: Iterable[MediaItem]) -> list[MediaItem]:
        """
        Append newly picked media to the draft.

        Every item gets a fresh temporary id. Items beyond the kind's upload
        limit are dropped.

        Returns:
            The items that were added, with their assigned ids.
        """
        items = list(items)
        added = []
        for kind in MediaKind:
            current = self.get_current_collection(draft_id, kind)
            room = max(kind.upload_limit - len(current), 0)
            fresh = [
                item.with_id(TemporaryId.new()) for item in items if item.kind is kind
            ]
            if len(fresh) > room:
                logger.info(
                    "draft %s: dropping %d %s(s) over the limit of %d",
                    draft_id,
                    len(fresh) - room,
                    kind.value,
                    kind.upload_limit,
                )
                fresh = fresh[:room]
            if fresh:
                self._write(draft_id, kind, CURRENT, current + fresh)
                added.extend(fresh)
        self.db.commit()
        return added

    def toggle_media(self, draft_id: Any, item: MediaItem) -> bool:
        """Remove ``item`` if present, otherwise append it. Returns True if present after."""
        current = self.get_current_collection(draft_id, item.kind)
        if any(c.id == item.id for c in current):
            self.replace_current_collection(
                draft_id, item.kind, [c for c in current if c.id != item.id]
            )
            return False
        if len(current) >= item.kind.upload_limit:
            return False
        self.replace_current_collection(draft_id, item.kind, current + [item])
        return True

    def edit_media(self, draft_id: Any, item: MediaItem) -> bool:
        """Replace the item with the same id in place (e.g. after a re-crop)."""
        current = self.get_current_collection(draft_id, item.kind)
        for index, existing in enumerate(current):
            if existing.id == item.id:
                current[index] = item
                self.replace_current_collection(draft_id, item.kind, current)
                return True
        return False

    def clear(self, draft_id: Any) -> None:
        self.db.execute("DELETE FROM media WHERE draft_id = ?", (str(draft_id),))
        self.db.commit()
        self._in_progress.discard(str(draft_id))
