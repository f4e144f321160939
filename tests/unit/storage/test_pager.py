"""Unit tests for single-use directory pagination."""

from unittest.mock import MagicMock

import pytest

from unistore.base import Metadata
from unistore.exceptions import PageAlreadyAdvancedError, StorageConnectionError
from unistore.pager import DirectoryPage, PageBatch, PageSource


class FakePageSource(PageSource):
    """Serves a fixed list of entries; the cursor is an offset."""

    def __init__(self, directories: list[str], files: list[str]):
        self.entries = [(d, True) for d in directories] + [(f, False) for f in files]
        self.fetch_calls: list = []
        self.closed = False

    def fetch(self, cursor, limit):
        self.fetch_calls.append((cursor, limit))
        start = cursor or 0
        end = len(self.entries) if limit <= 0 else start + limit
        chunk = self.entries[start:end]
        return PageBatch(
            directories=[Metadata(path=name) for name, is_dir in chunk if is_dir],
            files=[Metadata(path=name) for name, is_dir in chunk if not is_dir],
            truncated=end < len(self.entries),
            cursor=end,
        )

    def close(self):
        self.closed = True


def _source(n_dirs: int = 3, n_files: int = 7) -> FakePageSource:
    return FakePageSource([f"d{i}" for i in range(n_dirs)], [f"f{i}" for i in range(n_files)])


class TestFirstPage:
    def test_fetches_first_batch(self):
        source = _source()

        page = DirectoryPage.first(source, "dir", 4)

        assert [d.path for d in page.directories] == ["d0", "d1", "d2"]
        assert [f.path for f in page.files] == ["f0"]
        assert page.truncated is True
        assert source.fetch_calls == [(None, 4)]

    def test_unlimited_returns_everything(self):
        page = DirectoryPage.first(_source(), "dir", 0)

        assert len(page.directories) + len(page.files) == 10
        assert page.truncated is False

    def test_exhausted_page_is_empty(self):
        page = DirectoryPage.exhausted("missing")

        assert page.directories == []
        assert page.files == []
        assert page.truncated is False


class TestExhaustiveness:
    @pytest.mark.parametrize("limit", [1, 2, 3, 4, 9, 10, 11, 0, -1])
    def test_every_entry_exactly_once(self, limit):
        page = DirectoryPage.first(_source(), "dir", limit)
        directories: list[str] = []
        files: list[str] = []

        for p in page.iter_pages():
            directories.extend(d.path for d in p.directories)
            files.extend(f.path for f in p.files)

        assert sorted(directories) == ["d0", "d1", "d2"]
        assert sorted(files) == [f"f{i}" for i in range(7)]

    def test_cursor_passed_to_next_fetch(self):
        source = _source()
        page = DirectoryPage.first(source, "dir", 4)

        page.next_page()

        assert source.fetch_calls == [(None, 4), (4, 4)]


class TestSingleUse:
    def test_second_next_page_fails(self):
        page = DirectoryPage.first(_source(), "dir", 2)
        page.next_page()

        with pytest.raises(PageAlreadyAdvancedError):
            page.next_page()

    def test_second_next_page_on_last_page_fails(self):
        page = DirectoryPage.first(_source(), "dir", 0)
        page.next_page()

        with pytest.raises(PageAlreadyAdvancedError):
            page.next_page()

    def test_failed_fetch_leaves_page_advanceable(self):
        source = MagicMock(spec=PageSource)
        source.fetch.side_effect = [
            PageBatch(files=[Metadata(path="a")], truncated=True, cursor="t1"),
            StorageConnectionError("boom"),
            PageBatch(files=[Metadata(path="b")], truncated=False),
        ]
        page = DirectoryPage.first(source, "dir", 1)

        with pytest.raises(StorageConnectionError):
            page.next_page()
        successor = page.next_page()

        assert [f.path for f in successor.files] == ["b"]


class TestEndOfSequence:
    def test_next_on_exhausted_returns_empty_sentinel(self):
        page = DirectoryPage.first(_source(), "dir", 0)

        successor = page.next_page()

        assert successor.end_of_sequence is True
        assert successor.truncated is False
        assert successor.directories == [] and successor.files == []

    def test_next_on_exhausted_does_not_fetch(self):
        source = _source()
        page = DirectoryPage.first(source, "dir", 0)

        page.next_page()

        assert len(source.fetch_calls) == 1

    def test_real_pages_are_not_end_of_sequence(self):
        page = DirectoryPage.first(_source(), "dir", 0)
        assert page.end_of_sequence is False


class TestRelease:
    def test_release_drops_entries_but_keeps_cursor(self):
        source = _source()
        page = DirectoryPage.first(source, "dir", 4)

        page.release()
        successor = page.next_page()

        assert page.directories == [] and page.files == []
        assert [f.path for f in successor.files] == ["f1", "f2", "f3", "f4"]

    def test_close_closes_source(self):
        source = _source()

        with DirectoryPage.first(source, "dir", 4) as page:
            assert page.files

        assert source.closed is True
        assert page.files == []
