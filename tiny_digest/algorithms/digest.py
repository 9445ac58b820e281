# tiny_digest/algorithms/digest.py

"""
Adaptive distribution digest.

A Digest starts out as an exact histogram (a discrete-mode TDigest) and
switches, once and for good, to approximate t-digest accounting when the
stream looks continuous, that is when almost every centroid holds a single
observation.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from tiny_digest.algorithms.tdigest import TDigest
from tiny_digest.core.base import QuantileEstimator
from tiny_digest.core.centroids import _Centroid

logger = logging.getLogger(__name__)

DigestType = TypeVar("DigestType", bound="Digest")


class _SingletonCounter:
    """Counts the centroids of a TDigest that hold exactly one observation."""

    def __init__(self) -> None:
        self.n_unique = 0

    def centroid_created(self, centroid: _Centroid) -> None:
        if centroid.n == 1:
            self.n_unique += 1

    def weight_added(self, centroid: _Centroid, n: float) -> None:
        if centroid.n == 1:
            self.n_unique -= 1

    def digest_reset(self) -> None:
        self.n_unique = 0


class Digest(QuantileEstimator):
    """
    Distribution digest that picks exact or approximate accounting by itself.

    Modes:
        "discrete": exact accounting, every distinct value keeps its own
            centroid.
        "continuous": t-digest accounting from the start.
        "auto": starts discrete; once at least `thresh` centroids exist and
            more than a fraction `ratio` of them are singletons, the digest
            turns continuous and re-digests what it holds.

    Example:
        >>> d = Digest()
        >>> d.push([5, 1, 3, 1, 5, 5])
        >>> d.percentile(0.5)
        3.0
    """

    MODES = ("discrete", "continuous", "auto")
    DEFAULT_RATIO: float = 0.9
    DEFAULT_THRESH: int = 1000

    def __init__(
        self,
        mode: str = "auto",
        delta: float = TDigest.DEFAULT_DELTA,
        ratio: float = DEFAULT_RATIO,
        thresh: int = DEFAULT_THRESH,
        k: int = TDigest.DEFAULT_K,
        refresh_factor: float = TDigest.DEFAULT_REFRESH_FACTOR,
        seed: Optional[int] = None,
    ):
        """
        Initialize a Digest.

        Args:
            mode: One of "discrete", "continuous" or "auto". Default: "auto".
            delta: Compression factor used in continuous mode. Default: 0.01.
            ratio: Fraction of singleton centroids above which an "auto"
                digest turns continuous. Default: 0.9.
            thresh: Minimum centroid count before the switch is considered.
                Default: 1000.
            k: Recompression trigger, see TDigest.
            refresh_factor: Cumulative refresh factor, see TDigest.
            seed: Optional random seed for the compression shuffle.

        Raises:
            ValueError: If any parameter is out of range.
        """
        super().__init__()
        if mode not in self.MODES:
            raise ValueError(f"Mode must be one of {self.MODES}, got {mode!r}")
        TDigest._check_delta(delta)
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)) or not (
            0.0 < ratio <= 1.0
        ):
            raise ValueError("Ratio must be a number in (0, 1]")
        if isinstance(thresh, bool) or not isinstance(thresh, int) or thresh < 1:
            raise ValueError("Threshold must be a positive integer")

        self._initial_mode = mode
        self.mode = mode
        self._delta = float(delta)
        self.ratio = float(ratio)
        self.thresh = thresh

        self._counter = _SingletonCounter()
        self._digest = TDigest(
            delta=self._delta if mode == "continuous" else False,
            k=k,
            refresh_factor=refresh_factor,
            seed=seed,
            observer=self._counter,
        )

    @property
    def n_unique(self) -> int:
        """Number of centroids holding exactly one observation."""
        return self._counter.n_unique

    @property
    def discrete(self) -> bool:
        return self._digest.discrete

    @property
    def delta(self) -> float:
        return self._digest.delta

    @property
    def n_total(self) -> float:
        return self._digest.n_total

    @property
    def reset_count(self) -> int:
        return self._digest.reset_count

    @property
    def items_processed(self) -> int:
        return self._digest.items_processed

    def size(self) -> int:
        return self._digest.size()

    def update(self, item: float, n: float = 1) -> None:
        """
        Add a value with weight n, then check whether to turn continuous.

        Raises:
            ValueError: If n is not a positive number.
        """
        self._digest.update(item, n)
        self.check_continuous()

    def check_continuous(self) -> bool:
        """
        Switch an "auto" digest to continuous mode if its data looks continuous.

        Returns:
            True if this call made the transition, False otherwise.
        """
        if self.mode != "auto" or self.size() < self.thresh:
            return False
        if self.n_unique / self.size() > self.ratio:
            logger.info(
                "Switching digest to continuous mode: %d of %d centroids are unique.",
                self.n_unique,
                self.size(),
            )
            self.mode = "continuous"
            self._digest.switch_mode(discrete=False, delta=self._delta)
            self._digest.compress()
            return True
        return False

    def compress(self) -> None:
        """Re-digest the centroids in random order; see TDigest.compress()."""
        self._digest.compress()

    def _percentile(self, p: float) -> Optional[float]:
        return self._digest._percentile(p)

    def _percentile_rank(self, x: float) -> Optional[float]:
        return self._digest._percentile_rank(x)

    def to_array(self, everything: bool = False) -> List[Dict[str, float]]:
        return self._digest.to_array(everything)

    def find_nearest(self, x: float) -> Optional[Dict[str, float]]:
        return self._digest.find_nearest(x)

    def bound_mean(self, x: float) -> Tuple[Dict[str, float], Dict[str, float]]:
        return self._digest.bound_mean(x)

    def bound_mean_cumn(
        self, cumn: float
    ) -> Tuple[Optional[Dict[str, float]], Optional[Dict[str, float]]]:
        return self._digest.bound_mean_cumn(cumn)

    def clear(self) -> None:
        """
        Reset the digest to its initial empty state.

        An "auto" digest that turned continuous goes back to discrete
        accounting and may switch again.
        """
        self._digest.clear()
        self.mode = self._initial_mode
        if self._initial_mode == "auto":
            self._digest.switch_mode(discrete=True)

    def reset(self) -> None:
        """Same as clear()."""
        self.clear()

    def _same_config(self, other: "Digest") -> bool:
        return (
            self._initial_mode == other._initial_mode
            and self._delta == other._delta
            and self.ratio == other.ratio
            and self.thresh == other.thresh
            and self._digest.k == other._digest.k
            and self._digest.refresh_factor == other._digest.refresh_factor
        )

    def _config(self) -> Dict[str, Any]:
        return {
            "mode": self._initial_mode,
            "delta": self._delta,
            "ratio": self.ratio,
            "thresh": self.thresh,
            "k": self._digest.k,
            "refresh_factor": self._digest.refresh_factor,
        }

    def merge(self: DigestType, other: DigestType) -> DigestType:
        """
        Merge this digest with another Digest.

        Creates a new digest with the same configuration and pushes the
        centroids of both inputs into it. If either input has turned
        continuous, so does the result. The inputs are not modified.

        Raises:
            TypeError: If 'other' is not a Digest.
            ValueError: If the configurations differ.
        """
        self._check_same_type(other)
        if not self._same_config(other):
            raise ValueError("Cannot merge Digests with different configurations")

        merged = self.__class__(**self._config())
        if "continuous" in (self.mode, other.mode) and merged.mode == "auto":
            merged.mode = "continuous"
            merged._digest.switch_mode(discrete=False, delta=merged._delta)
        merged.push_centroid(self.to_array())
        merged.push_centroid(other.to_array())
        merged._digest._items_processed = self.items_processed + other.items_processed
        return merged

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the digest, including the wrapped TDigest state."""
        state = self._base_dict()
        state.update(self._config())
        state.update(
            {
                "current_mode": self.mode,
                "n_unique": self.n_unique,
                "digest": self._digest.to_dict(),
            }
        )
        return state

    @classmethod
    def from_dict(cls: Type[DigestType], data: Dict[str, Any]) -> DigestType:
        """
        Deserialize a digest from a dictionary created by to_dict().

        Raises:
            ValueError: If the dictionary is missing keys or has invalid data.
        """
        cls._check_dict(
            data,
            {"mode", "delta", "ratio", "thresh", "k", "refresh_factor", "current_mode", "digest"},
        )
        instance = cls(
            mode=data["mode"],
            delta=data["delta"],
            ratio=data["ratio"],
            thresh=data["thresh"],
            k=data["k"],
            refresh_factor=data["refresh_factor"],
        )
        inner = data["digest"]
        TDigest._check_dict(inner, {"n_total", "centroids"})
        if data["current_mode"] == "continuous" and instance.mode == "auto":
            instance.mode = "continuous"
            instance._digest.switch_mode(discrete=False, delta=instance._delta)
        instance._digest._load(inner)
        instance._counter.n_unique = sum(
            1 for c in instance.to_array() if c["n"] == 1
        )
        return instance

    def estimate_size(self) -> int:
        """Estimate the memory footprint of the digest in bytes."""
        return super().estimate_size() + self._digest.estimate_size()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the digest and its mode detection.

        Returns:
            The wrapped TDigest statistics plus mode and uniqueness data.
        """
        stats = self._digest.get_stats()
        stats.update(
            {
                "type": self.__class__.__name__,
                "memory_bytes": self.estimate_size(),
                "mode": self.mode,
                "n_unique": self.n_unique,
                "ratio": self.ratio,
                "thresh": self.thresh,
            }
        )
        if self.size():
            stats["unique_ratio"] = self.n_unique / self.size()
        return stats

    def error_bounds(self) -> Dict[str, Any]:
        return self._digest.error_bounds()
