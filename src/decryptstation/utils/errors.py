"""Failure taxonomy shared by the engines and the pipeline."""


class DecryptStationError(Exception):
    """Base class for every failure that ends one item's processing."""


class FormatError(DecryptStationError, ValueError):
    """Header region table (or image geometry) is malformed."""


class KeyFormatError(DecryptStationError, ValueError):
    """Key string is not 32 hex digits."""


class ConsistencyError(DecryptStationError):
    def __init__(self, region_index: int, expected: int, actual: int):
        self.region_index = region_index
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"region {region_index} starts at sector {actual}, expected {expected}"
        )


class ImageIOError(DecryptStationError, OSError):
    """Short read or filesystem failure while streaming an image."""

    def __init__(self, message: str, *, offset: int | None = None, requested: int | None = None,
                 obtained: int | None = None, cause: BaseException | None = None):
        self.offset = offset
        self.requested = requested
        self.obtained = obtained
        self.cause = cause
        super().__init__(message)

    def diagnostics(self) -> str:
        return f"offset={self.offset} requested={self.requested} obtained={self.obtained} cause={self.cause!r}"


class LookupMiss(DecryptStationError):
    def __init__(self, digest: str):
        self.digest = digest
        super().__init__(f"no title matches digest {digest}")


class DatabaseError(DecryptStationError):
    """Title database file is missing or unreadable."""


class OperationCancelledError(DecryptStationError):
    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)
