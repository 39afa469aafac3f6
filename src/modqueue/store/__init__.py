"""Artifact store subpackage for modqueue.

Persists submitted image + caption pairs in a pending area, promotes approved
pairs to the public collection, and polls for copy visibility with a bounded
retry.
"""

from modqueue.store.artifacts import ArtifactNotFoundError, ArtifactStore, LocalArtifactStore
from modqueue.store.retry import PromotionTimeoutError, StorageError, wait_until_visible

__all__: list[str] = [
    "ArtifactNotFoundError",
    "ArtifactStore",
    "LocalArtifactStore",
    "PromotionTimeoutError",
    "StorageError",
    "wait_until_visible",
]
