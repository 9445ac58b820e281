# tiny_digest/core/centroids.py

"""
Centroids and the ordered store that holds them.

The store is a list kept sorted by centroid mean and searched with binary
search. Means may be updated in place by the digest as long as an update
never moves a mean past one of its neighbours; the ingestion rules
guarantee this, so no reinsertion is ever needed.

Because `mean_cumn` grows monotonically with `mean` (means are unique), the
same list also answers bracketing queries by cumulative count: the search
simply reads a different key.
"""

import bisect
import sys
from operator import attrgetter
from typing import Dict, Iterator, List, Optional, Tuple

_by_mean = attrgetter("mean")
_by_mean_cumn = attrgetter("mean_cumn")


class _Centroid:
    """A weighted point summarizing one or more merged observations."""

    __slots__ = ["mean", "n", "cumn", "mean_cumn"]

    def __init__(
        self,
        mean: float,
        n: float = 1,
        cumn: float = 0,
        mean_cumn: Optional[float] = None,
    ):
        """
        Initialize a centroid.

        `mean_cumn` stays None until the next cumulative refresh after the
        centroid is created.
        """
        if n <= 0:
            raise ValueError("Centroid weight must be positive")
        self.mean = float(mean)
        self.n = n
        self.cumn = cumn
        self.mean_cumn = mean_cumn

    def __lt__(self, other: "_Centroid") -> bool:
        """Allow centroids to be sorted by mean value."""
        return self.mean < other.mean

    def __repr__(self) -> str:
        return f"Centroid(mean={self.mean:.4g}, n={self.n:.4g})"

    def to_dict(self, everything: bool = False) -> Dict[str, float]:
        """Copy the centroid out as a dictionary."""
        if everything:
            return {
                "mean": self.mean,
                "n": self.n,
                "cumn": self.cumn,
                "mean_cumn": self.mean_cumn,
            }
        return {"mean": self.mean, "n": self.n}

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "_Centroid":
        """Build a centroid from a {"mean", "n"} dictionary."""
        if "mean" not in data or "n" not in data:
            raise ValueError("Centroid dictionary missing 'mean' or 'n'")
        if data["n"] <= 0:
            raise ValueError(
                f"Invalid serialized data: Centroid weight must be positive ({data['n']})"
            )
        return cls(mean=data["mean"], n=data["n"])


class CentroidStore:
    """
    Centroids ordered by mean, with nearest-neighbour and bound queries.

    All searches are O(log n); insertion is O(n) in the worst case because of
    the list shift, which is cheap for the centroid counts a digest keeps.
    """

    def __init__(self) -> None:
        self._centroids: List[_Centroid] = []

    def __len__(self) -> int:
        return len(self._centroids)

    def __iter__(self) -> Iterator[_Centroid]:
        """Traverse centroids in ascending mean order."""
        return iter(self._centroids)

    def clear(self) -> None:
        self._centroids = []

    def min(self) -> Optional[_Centroid]:
        """Return the centroid with the smallest mean, or None when empty."""
        return self._centroids[0] if self._centroids else None

    def max(self) -> Optional[_Centroid]:
        """Return the centroid with the largest mean, or None when empty."""
        return self._centroids[-1] if self._centroids else None

    def insert(self, centroid: _Centroid) -> None:
        """
        Add a centroid at its ordered position.

        A centroid whose mean is already present must be merged into the
        existing one instead; inserting it is a programming error.
        """
        i = bisect.bisect_left(self._centroids, centroid.mean, key=_by_mean)
        assert (
            i == len(self._centroids) or self._centroids[i].mean != centroid.mean
        ), f"duplicate centroid mean {centroid.mean}"
        self._centroids.insert(i, centroid)

    def nearest(self, x: float, discrete: bool = False) -> Optional[_Centroid]:
        """
        Find the centroid whose mean is closest to x.

        On a distance tie the centroid at or above x wins. In discrete mode
        the centroid at or above x (or the last one, when x is above every
        mean) is returned without comparing distances.

        Returns:
            The nearest centroid, or None if the store is empty.
        """
        centroids = self._centroids
        if not centroids:
            return None
        i = bisect.bisect_left(centroids, x, key=_by_mean)  # x <= centroids[i]
        if i == len(centroids):
            return centroids[-1]
        c = centroids[i]
        if c.mean == x or discrete or i == 0:
            return c
        prev = centroids[i - 1]
        if abs(prev.mean - x) < abs(c.mean - x):
            return prev
        return c

    def bound_by_mean(self, x: float) -> Tuple[_Centroid, _Centroid]:
        """
        Find centroids lower and upper such that lower.mean < x < upper.mean,
        or lower is upper when x equals a centroid's mean.

        x must lie within [min().mean, max().mean].
        """
        centroids = self._centroids
        assert (
            centroids and centroids[0].mean <= x <= centroids[-1].mean
        ), f"{x} is outside the digested range"
        i = bisect.bisect_right(centroids, x, key=_by_mean)  # x < centroids[i]
        lower = centroids[i - 1]
        if lower.mean == x:
            return lower, lower
        return lower, centroids[i]

    def bound_by_cumulative(
        self, cumn: float
    ) -> Tuple[Optional[_Centroid], Optional[_Centroid]]:
        """
        Find centroids lower and upper such that
        lower.mean_cumn < cumn < upper.mean_cumn, or lower is upper when
        cumn equals a centroid's mean_cumn.

        Either side is None when cumn falls before the first or after the
        last centroid's mean_cumn. Cumulative counts must be up to date.
        """
        centroids = self._centroids
        i = bisect.bisect_right(centroids, cumn, key=_by_mean_cumn)
        lower = centroids[i - 1] if i > 0 else None
        if lower is not None and lower.mean_cumn == cumn:
            return lower, lower
        upper = centroids[i] if i < len(centroids) else None
        return lower, upper

    def estimate_size(self) -> int:
        """Approximate bytes held by the list and its centroids."""
        size = sys.getsizeof(self._centroids)
        for c in self._centroids:
            size += sys.getsizeof(c)
            size += sys.getsizeof(c.mean) + sys.getsizeof(c.n)
        return size
