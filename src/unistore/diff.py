"""Change detection between two listings of the same location."""

from datetime import timedelta
from typing import Sequence

from .base import Metadata, ObjectSliceDiff


def get_object_slice_diff(
    previous: Sequence[Metadata],
    current: Sequence[Metadata],
    tolerance: timedelta = timedelta(0),
) -> ObjectSliceDiff:
    """Compare two snapshots keyed by path.

    An object present in both is updated only when its timestamp moved
    forward by strictly more than *tolerance*; backwards or equal deltas
    count as unchanged.
    """
    previous_by_path = {o.path: o for o in previous}
    current_by_path = {o.path: o for o in current}

    diff = ObjectSliceDiff()
    for prev in previous:
        curr = current_by_path.get(prev.path)
        if curr is None:
            diff.removed.append(prev)
            continue
        if prev.last_modified is None or curr.last_modified is None:
            continue
        if curr.last_modified - prev.last_modified > tolerance:
            diff.updated.append(curr)

    for curr in current:
        if curr.path not in previous_by_path:
            diff.added.append(curr)

    diff.changed = len(diff.removed) + len(diff.added) + len(diff.updated) > 0
    return diff
