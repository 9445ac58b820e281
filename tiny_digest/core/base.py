"""
Base classes and interfaces for tiny-digest summaries.

This module defines the abstract base classes that the digests implement
to provide a consistent interface: updating with new samples, querying,
merging, serialization and diagnostics.
"""

import abc
import json
import math
import sys
from collections.abc import Iterable, Mapping
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")  # Type for the items being processed
R = TypeVar("R")  # Type for the result of queries


class StreamSummary(Generic[T, R], abc.ABC):
    """
    Abstract base class for all streaming summaries.

    Defines the common interface every summary implements: updating with new
    items, querying results, merging with other summaries and serialization.
    """

    def __init__(self) -> None:
        """Initialize a new, empty stream summary."""
        self._items_processed = 0

    @abc.abstractmethod
    def update(self, item: T) -> None:
        """
        Update the summary with a new item from the stream.

        Args:
            item: The new item to process.
        """
        self._items_processed += 1

    @abc.abstractmethod
    def query(self, *args: Any, **kwargs: Any) -> R:
        """
        Query the current state of the summary.

        The parameters and return value depend on the specific summary.
        """
        pass

    @abc.abstractmethod
    def merge(self, other: "StreamSummary[T, R]") -> "StreamSummary[T, R]":
        """
        Merge this summary with another of the same type.

        Args:
            other: Another stream summary of the same type.

        Returns:
            A new merged stream summary.

        Raises:
            TypeError: If other is not of the same type.
        """
        pass

    def _check_same_type(self, other: Any) -> None:
        """
        Raise TypeError unless other is an instance of this summary's class.
        """
        if not isinstance(other, self.__class__):
            raise TypeError(f"Cannot merge with {other.__class__.__name__}")

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the summary to a dictionary for serialization.

        Returns:
            A dictionary representation of the summary.
        """
        pass

    def _base_dict(self) -> Dict[str, Any]:
        """Attributes common to all summaries, used by to_dict()."""
        return {
            "type": self.__class__.__name__,
            "items_processed": self.items_processed,
        }

    @classmethod
    def _check_dict(cls, data: Dict[str, Any], required_keys: set) -> None:
        """
        Validate the type tag and required keys of a serialized summary.

        Raises:
            ValueError: If the type tag is absent or wrong, or keys are missing.
        """
        if "type" not in data:
            raise ValueError(f"Invalid dictionary format for {cls.__name__}. Missing 'type'")
        if data["type"] != cls.__name__:
            raise ValueError(
                f"Dictionary represents class '{data['type']}' but expected '{cls.__name__}'"
            )
        missing_keys = (required_keys | {"items_processed"}) - data.keys()
        if missing_keys:
            raise ValueError(
                f"Invalid dictionary format for {cls.__name__}. Missing keys: {missing_keys}"
            )

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamSummary[T, R]":
        """
        Create a summary from a dictionary representation.

        Args:
            data: The dictionary containing the summary state.

        Returns:
            A new stream summary initialized with the given state.
        """
        pass

    def serialize(self, format: str = "json") -> Union[str, bytes]:
        """
        Serialize the summary to a string or bytes.

        Args:
            format: The serialization format ('json' or 'binary').

        Returns:
            The serialized representation of the summary.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            return json.dumps(self.to_dict())
        elif format == "binary":
            # UTF-8 encoded JSON
            return json.dumps(self.to_dict()).encode("utf-8")
        else:
            raise ValueError(f"Unsupported serialization format: {format}")

    @classmethod
    def deserialize(
        cls, data: Union[str, bytes], format: str = "json"
    ) -> "StreamSummary[T, R]":
        """
        Deserialize a summary from a string or bytes.

        Args:
            data: The serialized summary.
            format: The serialization format ('json' or 'binary').

        Returns:
            A new stream summary.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            return cls.from_dict(json.loads(data))
        elif format == "binary":
            if isinstance(data, str):
                data = data.encode("utf-8")
            return cls.from_dict(json.loads(data.decode("utf-8")))
        else:
            raise ValueError(f"Unsupported serialization format: {format}")

    def estimate_size(self) -> int:
        """
        Estimate the current memory usage of this summary in bytes.

        Accounts for the base object and its instance dictionary. Derived
        classes add the size of their own data structures.

        Returns:
            Estimated memory usage in bytes.
        """
        size = sys.getsizeof(self)
        if hasattr(self, "__dict__"):
            size += sys.getsizeof(self.__dict__)
        return size

    def clear(self) -> None:
        """
        Reset the summary to its initial empty state.

        Derived classes override this to clear their own structures and call
        super().clear() so the base counters are reset too.
        """
        self._items_processed = 0

    def get_stats(self) -> Dict[str, Any]:
        """
        Get detailed statistics about the current state of the summary.

        Derived classes extend this with their specific statistics.

        Returns:
            A dictionary containing various statistics about the summary state.
        """
        stats = {
            "type": self.__class__.__name__,
            "items_processed": self.items_processed,
            "memory_bytes": self.estimate_size(),
        }

        error_bounds = self.error_bounds()
        if error_bounds:
            stats.update(error_bounds)

        return stats

    def error_bounds(self) -> Dict[str, Any]:
        """
        Get the theoretical error bounds for this summary.

        The base implementation returns an empty dictionary.
        """
        return {}

    @property
    def items_processed(self) -> int:
        """Get the total number of items processed by this summary."""
        return self._items_processed


class QuantileEstimator(StreamSummary[float, Optional[float]], abc.ABC):
    """
    Abstract base class for summaries answering percentile queries.

    Subclasses implement the single-value primitives (`update`,
    `_percentile`, `_percentile_rank`, `size`, `to_array`); this class turns
    them into the batch-friendly public API shared by all digests.
    """

    @abc.abstractmethod
    def update(self, item: float, n: float = 1) -> None:
        """Add one sample with weight n."""
        super().update(item)

    @abc.abstractmethod
    def size(self) -> int:
        """Return the number of centroids currently held."""
        pass

    @property
    @abc.abstractmethod
    def n_total(self) -> float:
        """Total weight of all samples digested so far."""
        pass

    @property
    @abc.abstractmethod
    def discrete(self) -> bool:
        """True while the summary keeps exact (per-value) accounting."""
        pass

    @abc.abstractmethod
    def to_array(self, everything: bool = False) -> List[Dict[str, float]]:
        """Return the centroids, ordered by mean, as a list of dictionaries."""
        pass

    @abc.abstractmethod
    def _percentile(self, p: float) -> Optional[float]:
        pass

    @abc.abstractmethod
    def _percentile_rank(self, x: float) -> Optional[float]:
        pass

    def push(self, values: Union[float, Iterable[float]], n: float = 1) -> None:
        """
        Incorporate a value, or each value of an iterable, with weight n.

        Args:
            values: A single number or an iterable of numbers.
            n: Weight given to every value pushed. Default: 1.
        """
        if isinstance(values, Iterable):
            for x in values:
                self.update(x, n)
        else:
            self.update(values, n)

    def push_centroid(
        self, centroids: Union[Mapping, Iterable[Mapping]]
    ) -> None:
        """
        Incorporate a centroid or each centroid of an iterable.

        Centroids are mappings with "mean" and "n" keys, such as the output
        of to_array(), so the centroids of one digest can be pushed into
        another to combine digests built from separate shards.

        Raises:
            ValueError: If a centroid lacks a 'mean' or 'n' entry.
        """
        if isinstance(centroids, Mapping):
            centroids = [centroids]
        for c in centroids:
            if "mean" not in c or "n" not in c:
                raise ValueError("Centroid mapping missing 'mean' or 'n'")
            self.update(c["mean"], c["n"])

    def percentile(
        self, p: Union[float, Iterable[float]]
    ) -> Union[Optional[float], List[Optional[float]]]:
        """
        Return the smallest value q such that at least a fraction p of the
        observations are <= q, for a single p or for each p of an iterable.

        Discrete digests select q with the nearest-rank method; continuous
        digests interpolate between count-weighted bracketing means.

        Args:
            p: Fraction in [0, 1], or an iterable of fractions.

        Returns:
            The estimated value (a list of them for an iterable input), or
            None if the digest is empty.

        Raises:
            ValueError: If a fraction is outside [0, 1] or NaN.
        """
        if isinstance(p, Iterable):
            return [self._percentile(self._check_fraction(q)) for q in p]
        return self._percentile(self._check_fraction(p))

    def percentile_rank(
        self, x: Union[float, Iterable[float]]
    ) -> Union[Optional[float], List[Optional[float]]]:
        """
        Return the approximate fraction of observations <= x, for a single
        value or for each value of an iterable.

        Values below the observed range rank 0 and values above it rank 1.
        In continuous mode the extreme samples report half their centroid
        weight inward from 0 and 1.

        Returns:
            The percentile-rank in [0, 1] (a list of them for an iterable
            input), or None if the digest is empty.

        Raises:
            ValueError: If a value is NaN.
        """
        if isinstance(x, Iterable):
            return [self._percentile_rank(self._check_value(v)) for v in x]
        return self._percentile_rank(self._check_value(x))

    def query(self, quantile: float) -> Optional[float]:
        """Estimate the value at a single quantile; see percentile()."""
        return self._percentile(self._check_fraction(quantile))

    @staticmethod
    def _check_fraction(p: float) -> float:
        if not (0.0 <= p <= 1.0):
            raise ValueError("Percentile fraction must be between 0.0 and 1.0")
        return float(p)

    @staticmethod
    def _check_value(x: float) -> float:
        if math.isnan(x):
            raise ValueError("Cannot rank a NaN value")
        return float(x)

    def summary(self) -> str:
        """
        Return a short five-number summary for diagnostics.

        Example::

            exact 6 samples using 3 centroids
            min = 1.0
            Q1  = 1.0
            Q2  = 3.0
            Q3  = 5.0
            max = 5.0
        """
        approx = "exact " if self.discrete else "approximating "
        n_total = float(self.n_total)
        count = int(n_total) if n_total.is_integer() else repr(n_total)
        lines = [
            f"{approx}{count} samples using {self.size()} centroids",
            f"min = {self._percentile(0.0)}",
            f"Q1  = {self._percentile(0.25)}",
            f"Q2  = {self._percentile(0.5)}",
            f"Q3  = {self._percentile(0.75)}",
            f"max = {self._percentile(1.0)}",
        ]
        return "\n".join(lines)

    def __len__(self) -> int:
        """Return the number of samples pushed into the digest."""
        return self.items_processed

    @property
    def is_empty(self) -> bool:
        """Check if the digest holds any data."""
        return self.size() == 0
