"""Shared test fixtures for httpstorages.

Provides isolated config environments, one storer per engine (so contract
tests run identically against every backend), sample responses, output
reset, and a CLI runner. These fixtures are discovered by pytest and
available to all test modules without explicit imports.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from httpstorages.backends import DiskcacheEngine, MemoryEngine, SqliteEngine
from httpstorages.core.base import KVEngine
from httpstorages.core.storer import CacheStorer
from httpstorages.models import SerializedResponse
from httpstorages.output import OutputFormat, OutputManager, reset_output, set_output

ENGINE_NAMES = ["diskcache", "sqlite", "memory"]


def make_engine(name: str, root: Path) -> KVEngine:
    """Build an unopened engine of kind *name* storing under *root*."""
    if name == "diskcache":
        return DiskcacheEngine(root / "diskcache")
    if name == "sqlite":
        return SqliteEngine(root / "storage.db")
    return MemoryEngine()


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams per invocation.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_logging_between_tests() -> Iterator[None]:
    """Undo the CLI's logging setup so ``caplog`` sees library records."""
    yield
    logger = logging.getLogger("httpstorages")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# ---------------------------------------------------------------------------
# Engine and storer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=ENGINE_NAMES)
def engine_name(request: pytest.FixtureRequest) -> str:
    """Engine kind; tests using it run once per backend."""
    return request.param


@pytest.fixture
def engine(engine_name: str, tmp_path: Path) -> Iterator[KVEngine]:
    """An opened engine of each kind, closed after the test."""
    eng = make_engine(engine_name, tmp_path)
    eng.open()
    yield eng
    eng.close()


@pytest.fixture
def engine_factory(engine_name: str, tmp_path: Path) -> Callable[[], KVEngine]:
    """Build unopened engines of each kind under tmp_path."""
    return lambda: make_engine(engine_name, tmp_path)


@pytest.fixture
def storer(engine_name: str, tmp_path: Path) -> Iterator[CacheStorer]:
    """An initialised storer over each engine kind, closed after the test."""
    s = CacheStorer(make_engine(engine_name, tmp_path), default_ttl=60)
    s.init()
    yield s
    s.close()


@pytest.fixture
def storer_factory(engine_name: str, tmp_path: Path) -> Iterator[Callable[..., CacheStorer]]:
    """Build extra storers over each engine kind; all are closed after the test.

    Keyword arguments are passed to :class:`CacheStorer`. The returned
    storers are not initialised.
    """
    created: list[CacheStorer] = []

    def factory(**kwargs: Any) -> CacheStorer:
        s = CacheStorer(make_engine(engine_name, tmp_path), **kwargs)
        created.append(s)
        return s

    yield factory
    for s in created:
        s.close()


# ---------------------------------------------------------------------------
# Response fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_response() -> SerializedResponse:
    """A JSON response with repeated headers and a Vary header."""
    return SerializedResponse(
        status_code=200,
        reason="OK",
        headers=[
            ("Content-Type", "application/json"),
            ("Set-Cookie", "a=1"),
            ("Vary", "Accept-Encoding, Accept-Language"),
            ("Set-Cookie", "b=2"),
            ("Surrogate-Key", "products product-42"),
        ],
        body=b'{"id": 42, "name": "widget"}',
    )


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME, XDG_CACHE_HOME, and XDG_DATA_HOME to
    subdirectories of tmp_path so that tests never touch real user
    config. Clears all HTTPSTORAGES_* environment variables and changes
    the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("httpstorages.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ["HTTPSTORAGES_BACKEND", "HTTPSTORAGES_PATH", "HTTPSTORAGES_TTL"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def json_output() -> Iterator[OutputManager]:
    """Install a JSON-format OutputManager for the test."""
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
