"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~httpstorages.exceptions.StorageError` subclass.
External tooling (cron purges, webhooks, shell wrappers) can inspect the exit
code to determine the failure class without parsing stderr.

Example::

    $ httpstorages purge product-42
    $ echo $?
    5   # EXIT_BACKEND_IO -- one or more entries could not be deleted
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_INIT_FAILURE = 3
"""The storage backend could not be opened or created."""

EXIT_NOT_FOUND = 4
"""The requested key is not stored (CLI lookups only; the library returns empty)."""

EXIT_BACKEND_IO = 5
"""A read, write or delete against the storage engine failed."""

EXIT_CODEC_ERROR = 6
"""Stored data is present but could not be decompressed or decoded."""
