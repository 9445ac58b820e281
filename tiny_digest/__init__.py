"""
tiny-digest - Streaming Distribution Digests

tiny-digest is a Python library for estimating percentiles and
percentile-ranks of unbounded data streams with bounded memory, using
t-digest centroids and an adaptive exact/approximate digest.
"""

__version__ = "0.1.0"

# Import main classes to make them available at the top level
from tiny_digest.algorithms.digest import Digest
from tiny_digest.algorithms.tdigest import TDigest
from tiny_digest.core.base import QuantileEstimator, StreamSummary

__all__ = [
    # Core base classes
    "StreamSummary",
    "QuantileEstimator",
    # Algorithm implementations
    "TDigest",
    "Digest",
]
