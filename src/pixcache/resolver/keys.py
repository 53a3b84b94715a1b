"""Cache key derivation.

Keys double as the durable storage layout, so the mapping must never change
between releases: ``cache/<directory><size-token>/<filename>``.
"""

from __future__ import annotations

from urllib.parse import urlsplit

CACHE_PREFIX = "cache/"


def strip_origin(reference: str) -> str:
    """Drop ``scheme://host`` from ``reference`` and return the rest verbatim.

    Query strings and fragments stay part of the key: ``img/x#1.jpg`` and
    ``img/x#2.jpg`` are different originals.
    """

    try:
        netloc = urlsplit(reference).netloc
    except ValueError:
        return reference.lstrip("/")
    if netloc:
        # netloc is an exact substring of the reference, right after "//".
        start = reference.find("//") + 2
        reference = reference[start + len(netloc) :]
    return reference.lstrip("/")


def derive_cache_key(source_reference: str, size_token: str) -> str:
    directory, _, filename = strip_origin(source_reference).rpartition("/")
    if directory:
        directory += "/"
    return f"{CACHE_PREFIX}{directory}{size_token}/{filename}"
