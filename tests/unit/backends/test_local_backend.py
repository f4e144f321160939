"""Tests for LocalFilesystemBackend."""

import io
import os
import stat
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from unistore.backends.local import LocalFilesystemBackend
from unistore.config import LocalBackendConfig
from unistore.diff import get_object_slice_diff
from unistore.exceptions import (
    NewPathNotEmptyError,
    PageAlreadyAdvancedError,
    PrefixIsAnObjectError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)

FIXED_MTIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc).timestamp()


@pytest.fixture()
def backend(tmp_path) -> LocalFilesystemBackend:
    return LocalFilesystemBackend(LocalBackendConfig(root_directory=str(tmp_path)))


def _write(root, relative: str, data: bytes = b"data", mtime: float | None = None) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))


class _LockedEntry:
    name = "locked"

    def is_dir(self):
        return False

    def stat(self):
        raise PermissionError(13, "Permission denied", "locked")


class _FakeScan:
    def __init__(self, entries):
        self._entries = iter(entries)

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._entries)

    def close(self):
        pass


class TestPutAndGet:
    def test_round_trip(self, backend):
        backend.put_object("charts/a.tgz", b"chart-bytes")

        obj = backend.get_object("charts/a.tgz")

        assert obj.path == "charts/a.tgz"
        assert obj.content == b"chart-bytes"
        assert obj.last_modified is not None
        assert obj.has_extension("tgz")

    def test_put_creates_parent_directories(self, backend, tmp_path):
        backend.put_object("deep/er/file.txt", b"x")
        assert (tmp_path / "deep/er/file.txt").read_bytes() == b"x"

    def test_put_replaces_existing(self, backend, tmp_path):
        backend.put_object("a.txt", b"old")
        backend.put_object("a.txt", b"new")

        assert (tmp_path / "a.txt").read_bytes() == b"new"
        assert [p.name for p in tmp_path.iterdir()] == ["a.txt"]

    def test_get_missing_raises_not_found(self, backend):
        with pytest.raises(StorageNotFoundError):
            backend.get_object("missing.txt")

    def test_get_directory_raises(self, backend, tmp_path):
        (tmp_path / "dir").mkdir()
        with pytest.raises(StorageError):
            backend.get_object("dir")

    def test_path_cannot_escape_root(self, backend, tmp_path):
        backend.put_object("../../escape.txt", b"x")
        assert (tmp_path / "escape.txt").exists()


class TestStreams:
    def test_stream_is_closed_after_context(self, backend, tmp_path):
        _write(tmp_path, "a.txt", b"streamed")

        with backend.get_object_stream("a.txt") as stream:
            assert b"".join(stream.iter_chunks(3)) == b"streamed"

        assert stream.closed
        assert stream.content.closed

    def test_close_is_idempotent(self, backend, tmp_path):
        _write(tmp_path, "a.txt")
        stream = backend.get_object_stream("a.txt")

        stream.close()
        stream.close()

        assert stream.closed

    def test_put_stream(self, backend, tmp_path):
        backend.put_object_stream("s.bin", io.BytesIO(b"\x00\x01\x02"))
        assert (tmp_path / "s.bin").read_bytes() == b"\x00\x01\x02"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_written_files_get_default_mode(self, backend, tmp_path):
        umask = os.umask(0)
        os.umask(umask)

        backend.put_object("a.txt", b"x")

        assert stat.S_IMODE((tmp_path / "a.txt").stat().st_mode) == 0o666 & ~umask


class TestDelete:
    def test_delete_removes_file(self, backend, tmp_path):
        _write(tmp_path, "a.txt")
        backend.delete_object("a.txt")
        assert not (tmp_path / "a.txt").exists()

    def test_delete_missing_is_noop(self, backend):
        backend.delete_object("never-existed.txt")


class TestListObjects:
    def test_lists_files_at_depth_one(self, backend, tmp_path):
        _write(tmp_path, "charts/a.tgz")
        _write(tmp_path, "charts/b.tgz")
        _write(tmp_path, "charts/nested/c.tgz")

        objects = backend.list_objects("charts")

        assert [o.path for o in objects] == ["a.tgz", "b.tgz"]
        assert all(o.last_modified is not None for o in objects)

    def test_missing_directory_is_empty(self, backend):
        assert backend.list_objects("nope") == []

    def test_dangling_symlink_is_skipped(self, backend, tmp_path):
        _write(tmp_path, "ok")
        os.symlink(tmp_path / "gone", tmp_path / "dangling")

        assert [o.path for o in backend.list_objects()] == ["ok"]

    def test_snapshots_can_be_diffed(self, backend, tmp_path):
        _write(tmp_path, "a", mtime=FIXED_MTIME)
        _write(tmp_path, "b", mtime=FIXED_MTIME)
        before = backend.list_objects()

        os.remove(tmp_path / "a")
        _write(tmp_path, "b", mtime=FIXED_MTIME + 60)
        _write(tmp_path, "c", mtime=FIXED_MTIME)
        diff = get_object_slice_diff(before, backend.list_objects(), timedelta(seconds=1))

        assert [o.path for o in diff.removed] == ["a"]
        assert [o.path for o in diff.updated] == ["b"]
        assert [o.path for o in diff.added] == ["c"]


class TestListObjectsFromDirectory:
    def _populate(self, root, n_files: int = 5, n_dirs: int = 3) -> None:
        for i in range(n_files):
            _write(root, f"repo/file{i}.txt")
        for i in range(n_dirs):
            _write(root, f"repo/dir{i}/inner.txt")

    @pytest.mark.parametrize("limit", [0, 1, 2, 3, 7, 8, 50])
    def test_pages_cover_every_entry_once(self, backend, tmp_path, limit):
        self._populate(tmp_path)

        page = backend.list_objects_from_directory("repo", limit)
        directories, files = [], []
        for p in page.iter_pages():
            directories.extend(d.path for d in p.directories)
            files.extend(f.path for f in p.files)
        page.close()

        assert sorted(directories) == ["repo/dir0", "repo/dir1", "repo/dir2"]
        assert sorted(files) == [f"repo/file{i}.txt" for i in range(5)]

    def test_truncation_is_exact(self, backend, tmp_path):
        self._populate(tmp_path, n_files=4, n_dirs=0)

        page = backend.list_objects_from_directory("repo", 2)
        last = page.next_page()

        assert page.truncated is True
        assert last.truncated is False
        assert len(last.files) == 2

    def test_files_carry_modification_time(self, backend, tmp_path):
        _write(tmp_path, "repo/a.txt", mtime=FIXED_MTIME)

        page = backend.list_objects_from_directory("repo")

        assert page.files[0].last_modified == datetime.fromtimestamp(FIXED_MTIME, tz=timezone.utc)

    def test_root_listing(self, backend, tmp_path):
        _write(tmp_path, "top.txt")
        _write(tmp_path, "sub/x.txt")

        page = backend.list_objects_from_directory("/")

        assert [d.path for d in page.directories] == ["sub"]
        assert [f.path for f in page.files] == ["top.txt"]

    def test_missing_directory_is_exhausted_empty_page(self, backend):
        page = backend.list_objects_from_directory("nope", 10)

        assert page.truncated is False
        assert page.files == [] and page.directories == []
        assert page.next_page().end_of_sequence is True

    def test_file_path_raises_prefix_is_an_object(self, backend, tmp_path):
        _write(tmp_path, "repo/a.txt")

        with pytest.raises(PrefixIsAnObjectError):
            backend.list_objects_from_directory("repo/a.txt")

    def test_double_advance_fails(self, backend, tmp_path):
        self._populate(tmp_path)
        page = backend.list_objects_from_directory("repo", 2)
        page.next_page()

        with pytest.raises(PageAlreadyAdvancedError):
            page.next_page()

    @pytest.mark.parametrize("limit", [0, 1])
    def test_dangling_symlink_is_skipped(self, backend, tmp_path, limit):
        _write(tmp_path, "d/ok")
        os.symlink(tmp_path / "d/gone", tmp_path / "d/dangling")

        page = backend.list_objects_from_directory("d", limit)
        files = [f.path for p in page.iter_pages() for f in p.files]

        assert files == ["d/ok"]

    def test_stat_failure_is_translated(self, backend, tmp_path):
        (tmp_path / "d").mkdir()

        with patch("unistore.backends.local.os.scandir", return_value=_FakeScan([_LockedEntry()])):
            with pytest.raises(StoragePermissionError) as exc_info:
                backend.list_objects_from_directory("d")

        assert isinstance(exc_info.value.cause, PermissionError)


class TestRename:
    def test_rename_object(self, backend, tmp_path):
        _write(tmp_path, "a.txt", b"payload")

        backend.rename_prefix_or_object("a.txt", "moved/b.txt")

        assert not (tmp_path / "a.txt").exists()
        assert (tmp_path / "moved/b.txt").read_bytes() == b"payload"

    def test_rename_directory(self, backend, tmp_path):
        _write(tmp_path, "d/x", b"1")
        _write(tmp_path, "d/y", b"2")
        _write(tmp_path, "d/sub/z", b"3")

        backend.rename_prefix_or_object("/d", "/e")

        assert (tmp_path / "e/x").read_bytes() == b"1"
        assert (tmp_path / "e/y").read_bytes() == b"2"
        assert (tmp_path / "e/sub/z").read_bytes() == b"3"
        assert not (tmp_path / "d").exists()

    def test_rename_onto_existing_object_fails(self, backend, tmp_path):
        _write(tmp_path, "a.txt", b"a")
        _write(tmp_path, "b.txt", b"b")

        with pytest.raises(NewPathNotEmptyError):
            backend.rename_prefix_or_object("a.txt", "b.txt")

        assert (tmp_path / "a.txt").read_bytes() == b"a"
        assert (tmp_path / "b.txt").read_bytes() == b"b"

    def test_rename_onto_non_empty_directory_fails(self, backend, tmp_path):
        _write(tmp_path, "d/x")
        _write(tmp_path, "e/y")

        with pytest.raises(NewPathNotEmptyError):
            backend.rename_prefix_or_object("d", "e")

    def test_rename_object_onto_empty_directory_fails(self, backend, tmp_path):
        _write(tmp_path, "a.txt", b"payload")
        (tmp_path / "e").mkdir()

        with pytest.raises(NewPathNotEmptyError):
            backend.rename_prefix_or_object("a.txt", "e")

        assert (tmp_path / "a.txt").read_bytes() == b"payload"
        assert list((tmp_path / "e").iterdir()) == []

    def test_rename_missing_source_raises_not_found(self, backend):
        with pytest.raises(StorageNotFoundError):
            backend.rename_prefix_or_object("missing", "dest")


class TestServeHttp:
    @pytest.fixture()
    def client(self, backend):
        app = FastAPI()

        @app.api_route("/charts/{path:path}", methods=["GET", "HEAD"])
        def serve(path: str, request: Request):
            return backend.serve_http(request, path)

        return TestClient(app)

    @pytest.fixture()
    def chart(self, tmp_path):
        _write(tmp_path, "mychart-0.1.0.tgz", bytes(range(200)), mtime=FIXED_MTIME)

    def test_full_download(self, client, chart):
        response = client.get("/charts/mychart-0.1.0.tgz")

        assert response.status_code == 200
        assert response.content == bytes(range(200))
        assert response.headers["Content-Length"] == "200"
        assert response.headers["Last-Modified"] == "Fri, 01 Mar 2024 12:00:00 GMT"
        assert "ETag" in response.headers

    def test_missing_is_404(self, client):
        assert client.get("/charts/missing.tgz").status_code == 404

    def test_not_modified(self, client, chart):
        response = client.get(
            "/charts/mychart-0.1.0.tgz",
            headers={"If-Modified-Since": "Sat, 01 Jun 2024 00:00:00 GMT"},
        )

        assert response.status_code == 304
        assert response.content == b""

    def test_modified_since_earlier_date_is_ok(self, client, chart):
        response = client.get(
            "/charts/mychart-0.1.0.tgz",
            headers={"If-Modified-Since": "Mon, 01 Jan 2024 00:00:00 GMT"},
        )
        assert response.status_code == 200

    def test_etag_revalidation(self, client, chart):
        etag = client.get("/charts/mychart-0.1.0.tgz").headers["ETag"]

        response = client.get("/charts/mychart-0.1.0.tgz", headers={"If-None-Match": etag})

        assert response.status_code == 304

    def test_if_match_mismatch_is_412(self, client, chart):
        response = client.get("/charts/mychart-0.1.0.tgz", headers={"If-Match": '"stale"'})
        assert response.status_code == 412

    def test_range_is_partial_content(self, client, chart):
        response = client.get("/charts/mychart-0.1.0.tgz", headers={"Range": "bytes=10-19"})

        assert response.status_code == 206
        assert response.content == bytes(range(10, 20))
        assert response.headers["Content-Range"] == "bytes 10-19/200"

    def test_range_past_end_is_416(self, client, chart):
        response = client.get("/charts/mychart-0.1.0.tgz", headers={"Range": "bytes=500-"})

        assert response.status_code == 416
        assert response.headers["Content-Range"] == "bytes */200"

    def test_malformed_range_serves_whole_object(self, client, chart):
        response = client.get("/charts/mychart-0.1.0.tgz", headers={"Range": "bytes=abc"})

        assert response.status_code == 200
        assert len(response.content) == 200

    def test_malformed_date_is_400(self, client, chart):
        response = client.get("/charts/mychart-0.1.0.tgz", headers={"If-Unmodified-Since": "garbage"})
        assert response.status_code == 400

    def test_head_has_headers_only(self, client, chart):
        response = client.head("/charts/mychart-0.1.0.tgz")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["Content-Length"] == "200"
