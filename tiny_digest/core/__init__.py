"""
Core functionality for tiny-digest.
"""

from tiny_digest.core.base import QuantileEstimator, StreamSummary
from tiny_digest.core.centroids import CentroidStore

__all__ = [
    # Base classes
    "StreamSummary",
    "QuantileEstimator",
    # Data structures
    "CentroidStore",
]
