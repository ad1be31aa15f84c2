# Copyright: Ankitects Pty Ltd and contributors
# License: GNU AGPL, version 3 or later; http://www.gnu.org/licenses/agpl.html

"""
Shared test utilities for the media sync tests.
"""

import asyncio
import itertools
from dataclasses import replace
from typing import Any, Optional

import pytest

from .. import (
    DraftCollection,
    InsertedMedia,
    MediaId,
    MediaItem,
    MediaKind,
    MediaStoreInterface,
    PermanentId,
)

DRAFT_ID = 7


def image(n: int, uri: Optional[str] = None) -> MediaItem:
    """A server-confirmed image."""
    return MediaItem(PermanentId(n), MediaKind.IMAGE, uri or f"img{n}.jpg")


def video(n: int, uri: Optional[str] = None) -> MediaItem:
    """A server-confirmed video."""
    return MediaItem(PermanentId(n), MediaKind.VIDEO, uri or f"vid{n}.mp4")


def local_image(uri: str) -> MediaItem:
    return MediaItem.local(MediaKind.IMAGE, uri)


def local_video(uri: str) -> MediaItem:
    return MediaItem.local(MediaKind.VIDEO, uri)


class FakeMediaStore(MediaStoreInterface):
    """In-memory store that keeps remote order by arrival, like the real API.

    ``fail_on`` holds ``(operation, source_uri)`` pairs that raise
    ConnectionError instead of succeeding.
    """

    def __init__(self, fail_on=(), delay: float = 0, first_id: int = 100):
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: list[tuple] = []
        self.remote: dict[MediaKind, list[MediaItem]] = {k: [] for k in MediaKind}
        self.in_flight = 0
        self.max_in_flight = 0
        self._ids = itertools.count(first_id)

    def seed(self, images=(), videos=()):
        self.remote[MediaKind.IMAGE] = [replace(i) for i in images]
        self.remote[MediaKind.VIDEO] = [replace(i) for i in videos]

    def remote_uris(self, kind: MediaKind) -> list[str]:
        return [i.source_uri for i in self.remote[kind]]

    async def _call(self, operation: str, uri: str):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if (operation, uri) in self.fail_on:
            raise ConnectionError(f"{operation} {uri} refused")

    def _find(self, kind: MediaKind, item_id: MediaId) -> MediaItem:
        for item in self.remote[kind]:
            if item.id == item_id:
                return item
        raise LookupError(f"no {kind.value} {item_id}")

    async def delete(self, draft_id: Any, kind: MediaKind, item_id: MediaId) -> None:
        target = self._find(kind, item_id)
        self.calls.append(("delete", kind, item_id))
        await self._call("delete", target.source_uri)
        self.remote[kind].remove(target)

    async def modify(
        self, draft_id: Any, kind: MediaKind, item_id: MediaId, item: MediaItem
    ) -> None:
        target = self._find(kind, item_id)
        self.calls.append(("modify", kind, item_id))
        await self._call("modify", item.source_uri)
        target.source_uri = item.source_uri

    async def insert(
        self, draft_id: Any, kind: MediaKind, item: MediaItem, insert_order: int
    ) -> InsertedMedia:
        self.calls.append(("insert", kind, item.id, insert_order))
        await self._call("insert", item.source_uri)
        new_id = PermanentId(next(self._ids))
        self.remote[kind].append(MediaItem(new_id, kind, item.source_uri, insert_order))
        return InsertedMedia(new_id, insert_order, {"width": 640})

    async def fetch(self, draft_id: Any):
        return (
            [replace(i) for i in self.remote[MediaKind.IMAGE]],
            [replace(i) for i in self.remote[MediaKind.VIDEO]],
        )


@pytest.fixture
def collection():
    col = DraftCollection(":memory:")
    yield col
    col.close()


@pytest.fixture
def store():
    return FakeMediaStore()


def run(coro):
    return asyncio.run(coro)
