"""
Algorithm implementations for tiny-digest.
"""

from tiny_digest.algorithms.digest import Digest
from tiny_digest.algorithms.tdigest import CentroidObserver, TDigest

__all__ = [
    "TDigest",
    "Digest",
    "CentroidObserver",
]
