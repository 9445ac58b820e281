# tiny_digest/algorithms/tdigest.py

"""
T-Digest implementation for tiny-digest.

Approximates the distribution of a stream of reals with a bounded set of
weighted centroids, answering percentile and percentile-rank queries as data
arrives. Points are digested one at a time into an ordered centroid store;
a randomized re-digestion pass keeps the centroid count bounded even for
sorted input.
"""

import logging
import math
import random
from typing import Any, Dict, List, Optional, Protocol, Tuple, Type, TypeVar, Union

from tiny_digest.core.base import QuantileEstimator
from tiny_digest.core.centroids import CentroidStore, _Centroid

logger = logging.getLogger(__name__)

TDigestType = TypeVar("TDigestType", bound="TDigest")


class CentroidObserver(Protocol):
    """Hooks called by a TDigest as it creates, grows and drops centroids."""

    def centroid_created(self, centroid: _Centroid) -> None:
        """Called after a new centroid has been inserted."""
        ...

    def weight_added(self, centroid: _Centroid, n: float) -> None:
        """Called before weight n is merged into an existing centroid."""
        ...

    def digest_reset(self) -> None:
        """Called after all centroids have been dropped."""
        ...


class TDigest(QuantileEstimator):
    """
    T-Digest for approximating percentiles over a stream of reals.

    Each incoming point either merges into its nearest centroid or becomes a
    new centroid. A centroid holding the mass around rank fraction p may grow
    to at most ``4 * n_total * delta * p * (1 - p)`` observations, which keeps
    centroids small, and estimates precise, near the tails. Some departures
    from the published algorithm keep the structure simple:

    1. Points equal to an existing mean always merge into that centroid, so
       means stay unique and repeated values stay exact.
    2. A point that does not fit entirely in its nearest centroid starts a
       new one rather than being split.
    3. Cumulative counts used for the size bound during ingestion are only
       refreshed when the total weight has grown by `refresh_factor`.
    4. Compression re-digests the centroids in random order instead of
       merging neighbours.

    With ``delta=False`` the digest runs in discrete mode: distinct values
    are never merged and percentiles follow the nearest-rank method, giving
    exact answers for streams with few unique values.

    The digest is not thread-safe. Queries refresh cached cumulative counts,
    so concurrent readers need the same locking as writers.
    """

    DEFAULT_DELTA: float = 0.01
    DEFAULT_K: int = 25
    DEFAULT_REFRESH_FACTOR: float = 1.1

    def __init__(
        self,
        delta: Union[float, bool] = DEFAULT_DELTA,
        k: int = DEFAULT_K,
        refresh_factor: float = DEFAULT_REFRESH_FACTOR,
        seed: Optional[int] = None,
        observer: Optional[CentroidObserver] = None,
    ):
        """
        Initialize a TDigest.

        Args:
            delta: Compression factor, the largest fraction of the total mass
                a single centroid may own (bigger, up to 1.0, means more
                compression). False switches to discrete mode. Default: 0.01.
            k: Recompression trigger. The digest compresses itself when it
                holds more than k / delta centroids. 0 disables automatic
                compression. Default: 25.
            refresh_factor: Cumulative counts are refreshed during ingestion
                once the total weight has grown by this factor since the
                last refresh. 0 refreshes after every point. Default: 1.1.
            seed: Optional random seed for the compression shuffle.
            observer: Optional hooks notified of centroid changes.

        Raises:
            ValueError: If any parameter is out of range.
        """
        super().__init__()
        if delta is False:
            self._discrete = True
            delta = self.DEFAULT_DELTA
        else:
            self._discrete = False
            self._check_delta(delta)
        if isinstance(k, bool) or not isinstance(k, int) or k < 0:
            raise ValueError("k must be a non-negative integer")
        if (
            isinstance(refresh_factor, bool)
            or not isinstance(refresh_factor, (int, float))
            or refresh_factor < 0
        ):
            raise ValueError("Refresh factor must be a non-negative number")

        self.delta: float = float(delta)
        self.k: int = k
        self.refresh_factor: float = float(refresh_factor)

        self._store = CentroidStore()
        self._random = random.Random(seed)
        self._observer = observer
        self._n_total: float = 0
        self._last_refresh: float = 0
        self._compressing = False
        self.reset_count: int = 0

    @staticmethod
    def _check_delta(delta: Any) -> None:
        if (
            isinstance(delta, bool)
            or not isinstance(delta, (int, float))
            or not (0.0 < delta <= 1.0)
        ):
            raise ValueError("Delta must be False or a number in (0, 1]")

    @property
    def discrete(self) -> bool:
        return self._discrete

    @property
    def n_total(self) -> float:
        return self._n_total

    def size(self) -> int:
        return len(self._store)

    def switch_mode(self, discrete: bool, delta: Optional[float] = None) -> None:
        """
        Change the accounting mode of the digest.

        Existing centroids are kept as they are; call compress() to
        re-digest them under the new rules.

        Args:
            discrete: True for exact accounting, False for approximate.
            delta: New compression factor for continuous mode. Keeps the
                current one when omitted.
        """
        if delta is not None:
            self._check_delta(delta)
            self.delta = float(delta)
        self._discrete = discrete

    def update(self, item: float, n: float = 1) -> None:
        """
        Add a value with weight n to the digest.

        Args:
            item: Numeric value to add. Non-finite values (NaN, +/-Inf) are
                ignored.
            n: Weight of the value. Default: 1.

        Raises:
            ValueError: If n is not a positive number.
        """
        if not (n > 0) or math.isinf(n):
            raise ValueError("Weight must be a positive number")
        if not isinstance(item, (int, float)) or not math.isfinite(item):
            return

        super().update(item)
        self._digest_point(float(item), n)

    def _digest_point(self, x: float, n: float) -> None:
        """Incorporate value x having weight n."""
        lowest = self._store.min()
        highest = self._store.max()
        nearest = self._store.nearest(x, self._discrete)
        if nearest is not None and nearest.mean == x:
            # exact matches accumulate without limit so means stay unique
            self._add_weight(nearest, x, n)
        elif nearest is lowest:
            self._new_centroid(x, n, 0)
        elif nearest is highest:
            self._new_centroid(x, n, self._n_total)
        elif self._discrete:
            self._new_centroid(x, n, nearest.cumn)
        elif self._has_room(nearest, n):
            self._add_weight(nearest, x, n)
        else:
            # no partial merges: the remainder would need a new centroid anyway
            self._new_centroid(x, n, nearest.cumn)

        self._refresh(force=False)
        if (
            not self._discrete
            and self.k
            and self.size() > self.k / self.delta
        ):
            self.compress()

    def _has_room(self, centroid: _Centroid, n: float) -> bool:
        """Check whether all of n fits within the centroid's size bound."""
        if centroid.mean_cumn is None:
            return False
        p = centroid.mean_cumn / self._n_total
        max_n = math.floor(4 * self._n_total * self.delta * p * (1 - p))
        return max_n - centroid.n >= n

    def _new_centroid(self, x: float, n: float, cumn: float) -> None:
        centroid = _Centroid(mean=x, n=n, cumn=cumn)
        self._store.insert(centroid)
        self._n_total += n
        if self._observer is not None:
            self._observer.centroid_created(centroid)

    def _add_weight(self, centroid: _Centroid, x: float, n: float) -> None:
        """
        Merge weight n at location x into centroid.

        The new mean lies between the old mean and x, and centroid is the
        nearest to x, so its position in the store does not change.
        """
        if self._observer is not None:
            self._observer.weight_added(centroid, n)
        if x != centroid.mean:
            centroid.mean += n * (x - centroid.mean) / (centroid.n + n)
        centroid.cumn += n
        if centroid.mean_cumn is not None:
            centroid.mean_cumn += n / 2
        centroid.n += n
        self._n_total += n

    def _refresh(self, force: bool) -> None:
        """
        Update the cumulative counts of every centroid.

        Unless forced, only runs once the total weight has grown by
        `refresh_factor` since the previous refresh: during ingestion the
        counts serve as rank estimates for the size bound and work well
        even when somewhat out of date.
        """
        if self._n_total == self._last_refresh:
            return
        if (
            not force
            and self.refresh_factor
            and self._last_refresh
            and self.refresh_factor > self._n_total / self._last_refresh
        ):
            return
        cumn = 0
        for c in self._store:
            c.mean_cumn = cumn + c.n / 2
            cumn += c.n
            c.cumn = cumn
        self._n_total = self._last_refresh = cumn

    def compress(self) -> None:
        """
        Re-digest the centroids in random order.

        Monotonic input is the worst case for a t-digest: every point is a
        new maximum and becomes its own centroid. Replaying the centroids as
        weighted points in shuffled order undoes such bad luck. The result
        is probabilistic; calling compress() from within a compression is a
        no-op.
        """
        if self._compressing:
            return
        points = [(c.mean, c.n) for c in self._store]
        before = len(points)
        self._reset()
        self._compressing = True
        try:
            while points:
                mean, n = self._pop_random(points)
                self._digest_point(mean, n)
            self._refresh(force=True)
        finally:
            self._compressing = False
        logger.debug(
            "Compressed digest from %d to %d centroids (reset #%d).",
            before,
            self.size(),
            self.reset_count,
        )

    def _pop_random(self, points: List[Tuple[float, float]]) -> Tuple[float, float]:
        """Remove and return a uniformly chosen item of points."""
        idx = self._random.randrange(len(points))
        points[idx], points[-1] = points[-1], points[idx]
        return points.pop()

    def find_nearest(self, x: float) -> Optional[Dict[str, float]]:
        """Return a copy of the centroid nearest to x, or None when empty."""
        c = self._store.nearest(x, self._discrete)
        return None if c is None else c.to_dict(everything=True)

    def bound_mean(self, x: float) -> Tuple[Dict[str, float], Dict[str, float]]:
        """
        Return copies of the centroids bracketing x by mean.

        x must lie within the digested range.
        """
        self._refresh(force=True)
        lower, upper = self._store.bound_by_mean(x)
        return lower.to_dict(everything=True), upper.to_dict(everything=True)

    def bound_mean_cumn(
        self, cumn: float
    ) -> Tuple[Optional[Dict[str, float]], Optional[Dict[str, float]]]:
        """Return copies of the centroids bracketing cumn by mean_cumn."""
        self._refresh(force=True)
        lower, upper = self._store.bound_by_cumulative(cumn)
        return (
            None if lower is None else lower.to_dict(everything=True),
            None if upper is None else upper.to_dict(everything=True),
        )

    def _percentile_rank(self, x: float) -> Optional[float]:
        lowest = self._store.min()
        highest = self._store.max()
        if lowest is None:
            return None
        if x < lowest.mean:
            return 0.0
        if x > highest.mean:
            return 1.0

        self._refresh(force=True)
        lower, upper = self._store.bound_by_mean(x)
        if self._discrete:
            return lower.cumn / self._n_total
        cumn = lower.mean_cumn
        if lower is not upper:
            cumn += (
                (x - lower.mean)
                * (upper.mean_cumn - lower.mean_cumn)
                / (upper.mean - lower.mean)
            )
        return cumn / self._n_total

    def _percentile(self, p: float) -> Optional[float]:
        if not self._store:
            return None

        self._refresh(force=True)
        h = self._n_total * p
        lower, upper = self._store.bound_by_cumulative(h)
        if lower is None:
            return upper.mean
        if upper is None or upper is lower:
            return lower.mean
        if not self._discrete:
            return lower.mean + (h - lower.mean_cumn) * (upper.mean - lower.mean) / (
                upper.mean_cumn - lower.mean_cumn
            )
        # nearest rank
        if h <= lower.cumn:
            return lower.mean
        return upper.mean

    def to_array(self, everything: bool = False) -> List[Dict[str, float]]:
        """
        Return the centroids ordered by mean.

        Args:
            everything: Also include the exact cumulative counts "cumn" and
                "mean_cumn" of each centroid.

        Returns:
            A list of {"mean", "n"} dictionaries (copies).
        """
        if everything:
            self._refresh(force=True)
        return [c.to_dict(everything) for c in self._store]

    def _reset(self) -> None:
        """Drop all centroids and counters, keeping the configuration."""
        self._store.clear()
        self._n_total = 0
        self._last_refresh = 0
        self.reset_count += 1
        if self._observer is not None:
            self._observer.digest_reset()

    def clear(self) -> None:
        """
        Reset the digest to its initial empty state.

        Configuration is preserved, so the object can be reused for a
        separate stream.
        """
        super().clear()
        self._reset()

    def reset(self) -> None:
        """Same as clear()."""
        self.clear()

    def _same_config(self, other: "TDigest") -> bool:
        return (
            self._discrete == other._discrete
            and self.delta == other.delta
            and self.k == other.k
            and self.refresh_factor == other.refresh_factor
        )

    def merge(self: TDigestType, other: TDigestType) -> TDigestType:
        """
        Merge this digest with another TDigest.

        Creates a new digest holding the centroids of both inputs, pushed
        as weighted points. The original digests are not modified.

        Raises:
            TypeError: If 'other' is not a TDigest.
            ValueError: If the configurations differ.
        """
        self._check_same_type(other)
        if not self._same_config(other):
            raise ValueError("Cannot merge TDigests with different configurations")

        merged = self.__class__(
            delta=False if self._discrete else self.delta,
            k=self.k,
            refresh_factor=self.refresh_factor,
        )
        merged.push_centroid(self.to_array())
        merged.push_centroid(other.to_array())
        merged._items_processed = self.items_processed + other.items_processed
        return merged

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the digest to a dictionary.

        Returns:
            Dictionary containing the configuration, counters and centroids.
        """
        state = self._base_dict()
        state.update(
            {
                "discrete": self._discrete,
                "delta": self.delta,
                "k": self.k,
                "refresh_factor": self.refresh_factor,
                "reset_count": self.reset_count,
                "n_total": self._n_total,
                "centroids": self.to_array(),
            }
        )
        return state

    @classmethod
    def from_dict(cls: Type[TDigestType], data: Dict[str, Any]) -> TDigestType:
        """
        Deserialize a digest from a dictionary created by to_dict().

        Raises:
            ValueError: If the dictionary is missing keys or has invalid data.
        """
        cls._check_dict(
            data, {"discrete", "delta", "k", "refresh_factor", "n_total", "centroids"}
        )
        instance = cls(
            delta=data["delta"],
            k=data["k"],
            refresh_factor=data["refresh_factor"],
        )
        if data["discrete"]:
            instance.switch_mode(discrete=True)
        instance._load(data)
        return instance

    def _load(self, data: Dict[str, Any]) -> None:
        """Restore counters and centroids from serialized data."""
        try:
            centroids = sorted(_Centroid.from_dict(c) for c in data["centroids"])
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError(f"Error deserializing centroids: {e}") from e
        for prev, c in zip(centroids, centroids[1:]):
            if prev.mean == c.mean:
                raise ValueError(f"Duplicate centroid mean {c.mean} in serialized data")

        for c in centroids:
            self._store.insert(c)
            self._n_total += c.n
        self._refresh(force=True)
        self._items_processed = data["items_processed"]
        self.reset_count = data.get("reset_count", self.reset_count)

    def estimate_size(self) -> int:
        """Estimate the memory footprint of the digest in bytes."""
        return super().estimate_size() + self._store.estimate_size()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get detailed statistics about the current state of the digest.

        Returns:
            A dictionary with configuration, structure and weight statistics.
        """
        stats = super().get_stats()
        stats.update(
            {
                "discrete": self._discrete,
                "delta": self.delta,
                "k": self.k,
                "refresh_factor": self.refresh_factor,
                "n_total": self._n_total,
                "num_centroids": self.size(),
                "reset_count": self.reset_count,
            }
        )
        if not self._discrete and self.k:
            stats["max_centroids"] = self.k / self.delta
            stats["centroid_utilization"] = self.size() / stats["max_centroids"]

        if self._store:
            weights = [c.n for c in self._store]
            stats.update(
                {
                    "min_value": self._store.min().mean,
                    "max_value": self._store.max().mean,
                    "min_weight": min(weights),
                    "max_weight": max(weights),
                    "avg_weight": sum(weights) / len(weights),
                    "compression_ratio": self._n_total / len(weights),
                }
            )
        return stats

    def error_bounds(self) -> Dict[str, Any]:
        """
        Describe the accuracy of the digest.

        In continuous mode the mass of a centroid at rank fraction q is at
        most 4 * delta * q * (1 - q) of the total, which bounds the rank
        error of estimates near q.
        """
        if not self._store:
            return {"state": "empty"}
        if self._discrete:
            return {"accuracy_model": "exact (discrete)"}

        bounds: Dict[str, Any] = {
            "accuracy_model": "non-uniform (higher at tails)",
            "error_bounds": {},
        }
        for q in [0.001, 0.01, 0.05, 0.25, 0.5, 0.75, 0.95, 0.99, 0.999]:
            bounds["error_bounds"][f"q{q:.3f}"] = 4 * self.delta * q * (1 - q)
        return bounds
