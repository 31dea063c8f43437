"""Exception hierarchy for httpstorages.

All exceptions inherit from :class:`StorageError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`httpstorages.exit_codes`. The top-level error handler in
:func:`httpstorages.app.main` catches ``StorageError`` and exits with the
appropriate code, while unexpected exceptions produce a crash log and exit
with :data:`EXIT_GENERIC_FAILURE`.

A missing key is never an error anywhere in this package; absence is a
normal result (``b""`` or ``None``).

Subclass hierarchy::

    StorageError            (exit 1)
    +-- InvalidUsageError   (exit 2)
    +-- InitFailure         (exit 3)
    +-- BackendIOError      (exit 5)
    |   +-- PurgeError      (exit 5)
    +-- CodecError          (exit 6)
    +-- ConfigError         (exit 1)
"""

from __future__ import annotations

from httpstorages.exit_codes import (
    EXIT_BACKEND_IO,
    EXIT_CODEC_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INIT_FAILURE,
    EXIT_INVALID_USAGE,
)


class StorageError(Exception):
    """Base exception for all httpstorages errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`httpstorages.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(StorageError):
    """Raised for invalid CLI arguments or unknown backend names."""

    exit_code = EXIT_INVALID_USAGE


class InitFailure(StorageError):
    """Raised when a storage engine cannot be opened (e.g. unusable path).

    Fatal to the storer instance. No retry is attempted.
    """

    exit_code = EXIT_INIT_FAILURE


class BackendIOError(StorageError):
    """Raised when a read, write or delete against the engine fails.

    The caller decides whether to retry; this package never retries
    internally.
    """

    exit_code = EXIT_BACKEND_IO


class PurgeError(BackendIOError):
    """Raised by a surrogate purge when some entries could not be deleted.

    Successful removals are already committed when this is raised.

    Attributes:
        removed: Variant keys that were deleted and unindexed.
        failures: Mapping of variant key to the error message of the
            deletion that failed.
    """

    def __init__(self, message: str, removed: list[str], failures: dict[str, str]):
        super().__init__(message)
        self.removed = removed
        self.failures = failures


class CodecError(StorageError):
    """Raised when data is present but cannot be decompressed or decoded."""

    exit_code = EXIT_CODEC_ERROR


class ConfigError(StorageError):
    """Raised for configuration problems (invalid JSON, failed validation)."""

    exit_code = EXIT_GENERIC_FAILURE
