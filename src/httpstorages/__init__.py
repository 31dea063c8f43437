"""httpstorages -- durable, compressed storage for cached HTTP responses.

This package is the storage core of an HTTP response cache. It serialises an
HTTP response into a self-describing byte frame, compresses it with LZ4, and
writes it to one of several embedded key-value engines under a cache key.
Lookups return the stored bytes, and an explicit helper turns them back into
a response.

On top of plain key/value access it maintains a multi-level key index: one
*real key* fans out into several *variant keys* (one per negotiated request
variation), and *surrogate keys* tag variants for bulk invalidation.

Typical use::

    from httpstorages import create_storer

    with create_storer() as storer:
        storer.set_multi_level("GET-example.com-/", "", body, {}, "", 60, ["home"])
        storer.purge_by_surrogate("home")

Modules:
    app: Typer application and ``httpstorages`` console entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    core: compressor, response codec, key index and the storer.
    backends: embedded key-value engines and the engine registry.
"""

__version__ = "0.3.0"

from httpstorages.backends.registry import create_storer, list_engines, register_engine  # noqa: E402
from httpstorages.core.storer import CacheStorer  # noqa: E402

__all__ = [
    "__version__",
    "CacheStorer",
    "create_storer",
    "list_engines",
    "register_engine",
]
