"""Key scheme for multi-level storage.

A *real key* names a resource independent of content negotiation. Each
stored response for that resource lives under a *variant key* derived from
the real key plus the request header values the response varies on (the
headers named by its ``Vary`` header) and an optional free-form label.

Index records share the engine with the entries and are told apart by the
reserved prefixes below; :func:`is_index_key` is used wherever only entry
keys should be listed.
"""

from __future__ import annotations

import hashlib
import json
from typing import Iterable, Mapping, Optional, Union

import httpx

INDEX_PREFIX = "IDX_"
SURROGATE_PREFIX = "SURROGATE_"
VARIANT_PREFIX = "VARIANT_"
RESERVED_PREFIXES = (INDEX_PREFIX, SURROGATE_PREFIX, VARIANT_PREFIX)

VARIANT_SEPARATOR = "#VARY#"
VARY_ANY = "*"

HeadersLike = Union[Mapping[str, str], Iterable[tuple[str, str]], httpx.Headers, None]


def is_index_key(key: str) -> bool:
    """Return ``True`` for keys holding index records rather than entries."""
    return key.startswith(RESERVED_PREFIXES)


def normalize_headers(headers: HeadersLike) -> dict[str, str]:
    """Fold *headers* into ``{lower-cased name: value}``.

    Repeated names are joined with ``", "`` in the order given, which is
    how HTTP allows list-valued headers to be combined.
    """
    if headers is None:
        return {}
    if isinstance(headers, httpx.Headers):
        items: Iterable[tuple[str, str]] = headers.multi_items()
    elif isinstance(headers, Mapping):
        items = headers.items()
    else:
        items = headers

    folded: dict[str, str] = {}
    for name, value in items:
        name = name.strip().lower()
        if name in folded:
            folded[name] = f"{folded[name]}, {value}"
        else:
            folded[name] = value
    return folded


def vary_fields(response_headers: HeadersLike) -> list[str]:
    """Return the lower-cased header names listed in a response's ``Vary``.

    ``Vary: *`` anywhere collapses the result to ``["*"]``.
    """
    fields: list[str] = []
    vary = normalize_headers(response_headers).get("vary", "")
    for name in vary.split(","):
        name = name.strip().lower()
        if name == VARY_ANY:
            return [VARY_ANY]
        if name and name not in fields:
            fields.append(name)
    return fields


def varied_request_headers(request_headers: HeadersLike, fields: Iterable[str]) -> dict[str, str]:
    """Pick the request header values named by *fields* (missing ones as ``""``)."""
    normalized = normalize_headers(request_headers)
    return {field: normalized.get(field, "") for field in fields}


def variant_key(real_key: str, headers: HeadersLike = None, variant_label: str = "") -> str:
    """Derive the variant key for *real_key* under a set of varied headers.

    When nothing varies the real key itself is the variant key. Otherwise a
    short SHA-256 digest of the sorted headers and label is appended, so the
    same negotiation context always maps to the same key.
    """
    normalized = normalize_headers(headers)
    if not normalized and not variant_label:
        return real_key
    raw = json.dumps([sorted(normalized.items()), variant_label], separators=(",", ":"))
    digest = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return f"{real_key}{VARIANT_SEPARATOR}{digest}"


def headers_match(varied: Mapping[str, str], request_headers: HeadersLike) -> bool:
    """Check whether a request carries the header values a variant was stored for.

    A header recorded with an empty value matches a request that does not
    send it. A variant stored under ``Vary: *`` matches no request.
    """
    if VARY_ANY in varied:
        return False
    normalized = normalize_headers(request_headers)
    return all(normalized.get(name, "") == value for name, value in varied.items())


def real_key_of(variant: str) -> Optional[str]:
    """Return the real key encoded in a derived variant key, if any."""
    head, sep, _ = variant.partition(VARIANT_SEPARATOR)
    return head if sep else None
