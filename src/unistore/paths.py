"""Path rules shared by every backend.

Keys handed to a store are always ``<root prefix>/<relative path>`` with no
leading or trailing separator. Paths handed back to callers are relative to
the root prefix.
"""

import posixpath

SEPARATOR = "/"


def clean(path: str) -> str:
    """Collapse separators, resolve ``.``/``..`` and strip the outer separators.

    ``..`` segments are clamped at the root, so the result never points above
    the namespace it is joined onto.
    """
    if not path:
        return ""
    cleaned = posixpath.normpath(SEPARATOR + path.lstrip(SEPARATOR))
    return cleaned.strip(SEPARATOR)


def normalize(root_prefix: str, relative_path: str) -> str:
    """Join a root prefix and a caller-supplied path into an absolute store key."""
    parts = [p for p in (clean(root_prefix), clean(relative_path)) if p]
    return SEPARATOR.join(parts)


def relativize(root_prefix: str, absolute_key: str) -> str:
    """Strip ``root_prefix + "/"`` from the front of a store key."""
    root = clean(root_prefix)
    if not root:
        return absolute_key
    return absolute_key.removeprefix(root + SEPARATOR)


def is_valid_leaf(relative_path: str) -> bool:
    """True if the path is a direct member of the listed level."""
    return relative_path != "" and SEPARATOR not in relative_path


def listing_prefix(key: str) -> str:
    """The prefix that selects everything below ``key`` treated as a directory."""
    return key + SEPARATOR if key else ""
