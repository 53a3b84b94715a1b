"""Thumbnail resolution chain.

Requests are authenticated, mapped to a size, looked up in the object store
and, on a miss, fetched from their origin and transformed. New artifacts are
written back through a bounded persist queue.
"""

from .envelope import ResultEnvelope
from .keys import derive_cache_key
from .orchestrator import RequestDescriptor, ThumbnailResolver
from .sizes import SizeSpec, SizeTable, resolve_size
from .sources import RemoteURL, StoreObject, classify_source

__all__ = [
    "RemoteURL",
    "RequestDescriptor",
    "ResultEnvelope",
    "SizeSpec",
    "SizeTable",
    "StoreObject",
    "ThumbnailResolver",
    "classify_source",
    "derive_cache_key",
    "resolve_size",
]
