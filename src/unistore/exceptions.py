"""Common exception hierarchy for object storage backends."""


class StorageError(Exception):
    """Base exception for all storage operations."""

    def __init__(self, message: str, key: str | None = None, cause: Exception | None = None):
        self.key = key
        self.cause = cause
        super().__init__(message)


class StorageNotFoundError(StorageError):
    """Raised when a requested key does not exist."""


class StoragePermissionError(StorageError):
    """Raised when credentials are invalid or access is denied."""


class StorageConnectionError(StorageError):
    """Raised when the storage backend is unreachable."""


class StorageNotImplementedError(StorageError):
    """Raised when a backend does not support the requested operation."""


class PrefixIsAnObjectError(StorageError):
    """Raised when a directory listing targets a path that is a single object."""


class NewPathNotEmptyError(StorageError):
    """Raised when a rename destination already holds an object or a non-empty prefix."""


class PageAlreadyAdvancedError(StorageError):
    """Raised when next_page() is called on a page that already produced its successor."""


class NotModifiedError(StorageError):
    """Conditional read: the object has not changed since the supplied validators."""


class PreconditionFailedError(StorageError):
    """Conditional read: an If-Match or If-Unmodified-Since precondition did not hold."""


class RangeNotSatisfiableError(StorageError):
    """Conditional read: the requested byte range lies entirely outside the object."""

    def __init__(
        self,
        message: str,
        key: str | None = None,
        cause: Exception | None = None,
        size: int | None = None,
    ):
        self.size = size
        super().__init__(message, key=key, cause=cause)
