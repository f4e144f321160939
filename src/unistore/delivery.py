"""Conditional and range HTTP delivery of stored objects.

Translates inbound conditional-request headers into backend read options,
and a backend's conditional read outcome into an HTTP status and headers.
The body is streamed from the backend without being buffered in memory.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import TYPE_CHECKING, BinaryIO, Iterator, Mapping

from fastapi import status
from fastapi.responses import Response, StreamingResponse

from .base import DEFAULT_CHUNK_SIZE
from .exceptions import (
    NotModifiedError,
    PreconditionFailedError,
    RangeNotSatisfiableError,
    StorageNotFoundError,
)

if TYPE_CHECKING:
    from .base import StreamingBackend

log = logging.getLogger(__name__)


class InvalidConditionalHeaderError(ValueError):
    """An If-Modified-Since or If-Unmodified-Since header is not a valid HTTP-date."""


@dataclass(frozen=True)
class ConditionalRead:
    """Preconditions and range to apply to a backend read."""

    if_modified_since: datetime | None = None
    if_unmodified_since: datetime | None = None
    if_match: str | None = None
    if_none_match: str | None = None
    range: str | None = None


@dataclass(eq=False)
class ConditionalObject:
    """Result of a successful conditional read: response metadata plus an open body."""

    body: BinaryIO
    cache_control: str | None = None
    expires: datetime | str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    content_length: int | None = None
    content_range: str | None = None
    content_type: str | None = None
    etag: str | None = None
    last_modified: datetime | None = None

    def iter_body(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the body, stopping after content_length bytes when it is known."""
        remaining = self.content_length
        while remaining is None or remaining > 0:
            size = chunk_size if remaining is None else min(chunk_size, remaining)
            chunk = self.body.read(size)
            if not chunk:
                return
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk

    def close(self) -> None:
        self.body.close()


def parse_http_date(value: str) -> datetime:
    """Parse an RFC 7231 HTTP-date into an aware UTC datetime."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError) as e:
        raise InvalidConditionalHeaderError(f"Invalid HTTP-date: {value!r}") from e
    if parsed is None:
        raise InvalidConditionalHeaderError(f"Invalid HTTP-date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_http_date(value: datetime) -> str:
    """Format a datetime as an IMF-fixdate (``Sun, 06 Nov 1994 08:49:37 GMT``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def parse_conditional_headers(headers: Mapping[str, str]) -> ConditionalRead:
    """Build backend read options from request headers.

    Raises InvalidConditionalHeaderError if either date header is malformed.
    """
    if_modified_since = headers.get("If-Modified-Since")
    if_unmodified_since = headers.get("If-Unmodified-Since")
    return ConditionalRead(
        if_modified_since=parse_http_date(if_modified_since) if if_modified_since else None,
        if_unmodified_since=parse_http_date(if_unmodified_since) if if_unmodified_since else None,
        if_match=headers.get("If-Match") or None,
        if_none_match=headers.get("If-None-Match") or None,
        range=headers.get("Range") or None,
    )


def _etag_matches(header: str, etag: str, weak: bool) -> bool:
    if header.strip() == "*":
        return True

    def opaque(tag: str) -> str:
        tag = tag.strip()
        if weak and tag.startswith("W/"):
            tag = tag[2:]
        return tag

    return any(opaque(candidate) == opaque(etag) for candidate in header.split(","))


def evaluate_preconditions(conditions: ConditionalRead, etag: str, last_modified: datetime) -> None:
    """Check RFC 7232 preconditions for stores that cannot evaluate them natively.

    Raises PreconditionFailedError or NotModifiedError. Dates are compared
    at second resolution, the precision of an HTTP-date.
    """
    last_modified = last_modified.replace(microsecond=0)
    if conditions.if_match is not None:
        if not _etag_matches(conditions.if_match, etag, weak=False):
            raise PreconditionFailedError("If-Match did not match")
    elif conditions.if_unmodified_since is not None and last_modified > conditions.if_unmodified_since:
        raise PreconditionFailedError("Object modified since If-Unmodified-Since")

    if conditions.if_none_match is not None:
        if _etag_matches(conditions.if_none_match, etag, weak=True):
            raise NotModifiedError("If-None-Match matched")
    elif conditions.if_modified_since is not None and last_modified <= conditions.if_modified_since:
        raise NotModifiedError("Object not modified since If-Modified-Since")


def parse_byte_range(header: str | None, size: int) -> tuple[int, int, str] | None:
    """Resolve a single ``bytes=`` range against an object of *size* bytes.

    Returns ``(start, length, content_range)``, or None when the header is
    absent, malformed or multi-range and the whole object should be served
    instead. Raises RangeNotSatisfiableError when a well-formed range
    starts at or past the end of the object, or asks for an empty suffix.
    """
    if not header:
        return None
    unit, _, ranges = header.partition("=")
    if unit.strip().lower() != "bytes" or "," in ranges:
        return None
    first, sep, last = ranges.strip().partition("-")
    if not sep:
        return None
    try:
        if first:
            start = int(first)
            end = int(last) if last else None
        else:
            suffix = int(last)
    except ValueError:
        return None

    if first:
        if start < 0 or (end is not None and end < start):
            return None
        if start >= size:
            raise RangeNotSatisfiableError(f"Range {header!r} starts past the end", size=size)
        end = size - 1 if end is None else min(end, size - 1)
    else:
        if suffix <= 0 or size == 0:
            raise RangeNotSatisfiableError(f"Range {header!r} selects no bytes", size=size)
        start = max(size - suffix, 0)
        end = size - 1
    return start, end - start + 1, f"bytes {start}-{end}/{size}"


def status_for_error(error: Exception) -> int:
    """Map a failed conditional read to an HTTP status.

    Errors outside the precondition taxonomy are reported as 400, on the
    assumption that they stem from the request rather than the server.
    """
    if isinstance(error, StorageNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, NotModifiedError):
        return status.HTTP_304_NOT_MODIFIED
    if isinstance(error, PreconditionFailedError):
        return status.HTTP_412_PRECONDITION_FAILED
    if isinstance(error, RangeNotSatisfiableError):
        return status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE
    return status.HTTP_400_BAD_REQUEST


def resolve_status(content_range: str | None, content_length: int | None) -> int:
    """206 when Content-Range describes a strict subrange of the object, else 200."""
    if not content_range or content_length is None:
        return status.HTTP_200_OK
    parts = content_range.split("/")
    if len(parts) < 2:
        return status.HTTP_200_OK
    try:
        total_size = int(parts[1].strip())
    except ValueError:
        return status.HTTP_200_OK
    if total_size != content_length:
        return status.HTTP_206_PARTIAL_CONTENT
    return status.HTTP_200_OK


def build_response_headers(obj: ConditionalObject) -> dict[str, str]:
    headers: dict[str, str] = {}
    if obj.cache_control is not None:
        headers["Cache-Control"] = obj.cache_control
    if obj.expires is not None:
        headers["Expires"] = format_http_date(obj.expires) if isinstance(obj.expires, datetime) else obj.expires
    if obj.content_disposition is not None:
        headers["Content-Disposition"] = obj.content_disposition
    if obj.content_encoding is not None:
        headers["Content-Encoding"] = obj.content_encoding
    if obj.content_language is not None:
        headers["Content-Language"] = obj.content_language
    if obj.content_length is not None:
        headers["Content-Length"] = str(obj.content_length)
    if obj.content_range is not None:
        headers["Content-Range"] = obj.content_range
    if obj.content_type is not None:
        headers["Content-Type"] = obj.content_type
    if obj.etag is not None:
        headers["ETag"] = obj.etag
    if obj.last_modified is not None:
        headers["Last-Modified"] = format_http_date(obj.last_modified)
    return headers


def _stream_and_close(obj: ConditionalObject) -> Iterator[bytes]:
    try:
        yield from obj.iter_body()
    finally:
        obj.close()


def deliver(backend: "StreamingBackend", method: str, headers: Mapping[str, str], path: str) -> Response:
    """Serve *path* from *backend* for a GET or HEAD request.

    Failures are always reported as a status code, never raised.
    """
    log_prefix = f"[Deliver:{method} {path}] "
    try:
        conditions = parse_conditional_headers(headers)
    except InvalidConditionalHeaderError as e:
        log.debug("%s%s", log_prefix, e)
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    try:
        obj = backend.get_object_conditional(path, conditions)
    except Exception as e:
        status_code = status_for_error(e)
        log.debug("%sConditional read failed with %s: %s", log_prefix, status_code, e)
        error_headers = None
        if isinstance(e, RangeNotSatisfiableError) and e.size is not None:
            error_headers = {"Content-Range": f"bytes */{e.size}"}
        return Response(status_code=status_code, headers=error_headers)

    response_headers = build_response_headers(obj)
    status_code = resolve_status(obj.content_range, obj.content_length)

    if method.upper() == "HEAD":
        obj.close()
        return Response(status_code=status_code, headers=response_headers)

    return StreamingResponse(
        _stream_and_close(obj),
        status_code=status_code,
        headers=response_headers,
    )
