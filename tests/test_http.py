# Copyright: Ankitects Pty Ltd and contributors
# License: GNU AGPL, version 3 or later; http://www.gnu.org/licenses/agpl.html

"""Tests for HttpMediaStore using a mocked requests session."""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests
import zstandard

from .. import (
    HttpMediaStore,
    MediaItem,
    MediaKind,
    PermanentId,
    StoreAuth,
    StoreRedirectError,
    SyncError,
    UnsupportedOperationError,
    guess_mime_type,
)
from .conftest import DRAFT_ID, image, local_image, local_video, run, video

ENDPOINT = "https://api.example.org"


def _response(status=200, body=None, headers=None, raw=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.content = raw if raw is not None else (json.dumps(body).encode() if body else b"")
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


def _store(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    store = HttpMediaStore(StoreAuth.with_endpoint(ENDPOINT, "secret"), session=session)
    return store, session


def test_with_endpoint_adds_slash():
    auth = StoreAuth.with_endpoint(ENDPOINT, "tok", io_timeout_secs=5)
    assert auth.endpoint == ENDPOINT + "/"
    assert auth.io_timeout_secs == 5


def test_delete():
    store, session = _store(_response())

    run(store.delete(DRAFT_ID, MediaKind.VIDEO, PermanentId(12)))

    args, kwargs = session.request.call_args
    assert args == ("DELETE", f"{ENDPOINT}/v2/project/{DRAFT_ID}/video/12")
    assert kwargs["headers"] == {"auth-token": "secret"}
    assert kwargs["timeout"] == 30


def test_insert_uploads_file_with_order(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(b"png-bytes")
    item = local_image(f"file://{path}")
    body = {"projectImage": {"id": 41, "order": 3, "uri": "https://cdn/41.png"}}
    store, session = _store(_response(body=body))

    inserted = run(store.insert(DRAFT_ID, MediaKind.IMAGE, item, 3))

    assert inserted.id == PermanentId(41)
    assert inserted.insert_order == 3
    assert inserted.attributes == {"uri": "https://cdn/41.png"}
    args, kwargs = session.request.call_args
    assert args == ("POST", f"{ENDPOINT}/v2/project/{DRAFT_ID}/image")
    assert kwargs["data"] == {"insertOrder": 3}
    name, content, mime = kwargs["files"]["file"]
    assert name == f"project-{DRAFT_ID}-image-{item.id}"
    assert content == b"png-bytes"
    assert mime == "image/png"


def test_insert_without_id_is_an_error(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"mp4")
    store, _ = _store(_response(body={"projectVideo": {}}))

    with pytest.raises(SyncError, match="missing"):
        run(store.insert(DRAFT_ID, MediaKind.VIDEO, local_video(str(path)), 1))


def test_modify_replaces_image(tmp_path):
    path = tmp_path / "crop.jpg"
    path.write_bytes(b"jpg")
    store, session = _store(_response())

    run(store.modify(DRAFT_ID, MediaKind.IMAGE, PermanentId(3), image(3, str(path))))

    args, kwargs = session.request.call_args
    assert args == ("PUT", f"{ENDPOINT}/v2/project/{DRAFT_ID}/image/3")
    assert kwargs["files"]["file"][2] == "image/jpg"


def test_videos_cannot_be_modified():
    store, session = _store()
    with pytest.raises(UnsupportedOperationError):
        run(store.modify(DRAFT_ID, MediaKind.VIDEO, PermanentId(1), video(1)))
    session.request.assert_not_called()


def test_redirect_and_http_errors():
    store, _ = _store(
        _response(status=308, headers={"location": "https://new.example.org/"}),
        _response(status=500),
    )

    with pytest.raises(StoreRedirectError) as excinfo:
        run(store.delete(DRAFT_ID, MediaKind.IMAGE, PermanentId(1)))
    assert excinfo.value.new_endpoint == "https://new.example.org/"

    with pytest.raises(requests.HTTPError):
        run(store.delete(DRAFT_ID, MediaKind.IMAGE, PermanentId(1)))


def test_fetch_maps_project_media():
    project = {
        "project": {
            "images": [{"id": 1, "uri": "https://cdn/1.jpg", "order": 1, "width": 800}],
            "videos": [{"id": 2, "uri": "https://cdn/2.mp4", "thumbnailUri": "t.jpg"}],
        }
    }
    raw = zstandard.ZstdCompressor().compress(json.dumps(project).encode())
    store, session = _store(_response(raw=raw, headers={"content-encoding": "zstd"}))

    images, videos = run(store.fetch(DRAFT_ID))

    assert images == [
        MediaItem(PermanentId(1), MediaKind.IMAGE, "https://cdn/1.jpg", 1, {"width": 800})
    ]
    assert videos[0].id == PermanentId(2)
    assert videos[0].attributes == {"thumbnailUri": "t.jpg"}
    assert session.request.call_args[0] == ("GET", f"{ENDPOINT}/v2/project/{DRAFT_ID}")


def test_guess_mime_type():
    assert guess_mime_type(local_image("a.jpg")) == "image/jpg"
    assert guess_mime_type(local_video("b.MOV")) == "video/quicktime"
    assert guess_mime_type(local_video("c.3gp")) == "video/3gpp"
    assert guess_mime_type(local_image("d.webp")) == "image/webp"


def test_close_only_closes_own_session():
    store, session = _store()
    store.close()
    session.close.assert_not_called()


def test_insert_reads_percent_encoded_file_uri(tmp_path):
    path = tmp_path / "my pic.jpg"
    path.write_bytes(b"jpg")
    body = {"projectImage": {"id": 5}}
    store, session = _store(_response(body=body))

    run(store.insert(DRAFT_ID, MediaKind.IMAGE, local_image(path.as_uri()), 1))

    assert "%20" in path.as_uri()
    assert session.request.call_args[1]["files"]["file"][1] == b"jpg"


def test_owned_sessions_are_per_thread():
    with patch.object(requests, "Session", side_effect=lambda: MagicMock()):
        store = HttpMediaStore(StoreAuth.with_endpoint(ENDPOINT, "secret"))
        main = store._thread_session()
        seen = []
        worker = threading.Thread(target=lambda: seen.append(store._thread_session()))
        worker.start()
        worker.join()

    assert store._thread_session() is main
    assert seen[0] is not main
    store.close()
    main.close.assert_called_once()
    seen[0].close.assert_called_once()
