"""Unit tests for listing change detection."""

from datetime import datetime, timedelta, timezone

from unistore.base import Metadata, Object
from unistore.diff import get_object_slice_diff

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _obj(path: str, seconds: int = 0) -> Object:
    return Object(path=path, last_modified=T0 + timedelta(seconds=seconds))


class TestAddedAndRemoved:
    def test_removed_and_added(self):
        diff = get_object_slice_diff([_obj("a"), _obj("b")], [_obj("b"), _obj("c")], timedelta(0))

        assert diff.removed == [_obj("a")]
        assert diff.added == [_obj("c")]
        assert diff.updated == []
        assert diff.changed is True

    def test_identical_snapshots_are_unchanged(self):
        snapshot = [_obj("a"), _obj("b")]

        diff = get_object_slice_diff(snapshot, list(snapshot))

        assert diff.changed is False
        assert (diff.removed, diff.added, diff.updated) == ([], [], [])

    def test_empty_to_populated(self):
        diff = get_object_slice_diff([], [_obj("a")])
        assert diff.added == [_obj("a")]
        assert diff.changed is True


class TestTolerance:
    def test_delta_within_tolerance_is_unchanged(self):
        diff = get_object_slice_diff([_obj("a")], [_obj("a", 5)], timedelta(seconds=10))

        assert diff.updated == []
        assert diff.changed is False

    def test_delta_beyond_tolerance_is_updated(self):
        diff = get_object_slice_diff([_obj("a")], [_obj("a", 5)], timedelta(seconds=1))

        assert diff.updated == [_obj("a", 5)]
        assert diff.changed is True

    def test_delta_equal_to_tolerance_is_unchanged(self):
        diff = get_object_slice_diff([_obj("a")], [_obj("a", 5)], timedelta(seconds=5))
        assert diff.updated == []

    def test_backwards_delta_is_unchanged(self):
        diff = get_object_slice_diff([_obj("a", 60)], [_obj("a")], timedelta(0))
        assert diff.changed is False

    def test_updated_reports_current_object(self):
        previous = Object(path="a", last_modified=T0, content=b"old")
        current = Object(path="a", last_modified=T0 + timedelta(hours=1), content=b"new")

        diff = get_object_slice_diff([previous], [current])

        assert diff.updated[0].content == b"new"


class TestMetadataInput:
    def test_accepts_listing_metadata(self):
        diff = get_object_slice_diff(
            [Metadata(path="a", last_modified=T0)],
            [Metadata(path="a", last_modified=T0 + timedelta(minutes=1))],
        )
        assert [m.path for m in diff.updated] == ["a"]

    def test_missing_timestamp_is_never_updated(self):
        diff = get_object_slice_diff([Metadata(path="a")], [Metadata(path="a", last_modified=T0)])
        assert diff.changed is False

    def test_path_appears_in_at_most_one_list(self):
        previous = [_obj("a"), _obj("b"), _obj("c")]
        current = [_obj("b", 100), _obj("c"), _obj("d")]

        diff = get_object_slice_diff(previous, current)

        buckets = [m.path for m in diff.removed + diff.added + diff.updated]
        assert sorted(buckets) == ["a", "b", "d"]
