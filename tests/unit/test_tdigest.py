# tests/unit/test_tdigest.py

import json
import math
import random
import unittest

from tiny_digest.algorithms.tdigest import TDigest


class TestTDigestInit(unittest.TestCase):
    """Construction and configuration checks."""

    def test_initialization_defaults(self):
        td = TDigest()
        self.assertEqual(td.delta, TDigest.DEFAULT_DELTA)
        self.assertEqual(td.k, TDigest.DEFAULT_K)
        self.assertEqual(td.refresh_factor, TDigest.DEFAULT_REFRESH_FACTOR)
        self.assertFalse(td.discrete)
        self.assertEqual(td.size(), 0)
        self.assertEqual(td.n_total, 0)
        self.assertEqual(td.items_processed, 0)
        self.assertEqual(td.reset_count, 0)
        self.assertTrue(td.is_empty)

    def test_discrete_sentinel(self):
        td = TDigest(delta=False)
        self.assertTrue(td.discrete)
        self.assertEqual(td.delta, TDigest.DEFAULT_DELTA)

    def test_invalid_configuration(self):
        for delta in [0, -0.1, 1.5, True, "0.1"]:
            with self.assertRaises(ValueError, msg=f"delta={delta!r}"):
                TDigest(delta=delta)
        for k in [-1, 2.5, True]:
            with self.assertRaises(ValueError, msg=f"k={k!r}"):
                TDigest(k=k)
        with self.assertRaises(ValueError):
            TDigest(refresh_factor=-1)

    def test_delta_one_allowed(self):
        self.assertEqual(TDigest(delta=1.0).delta, 1.0)


class TestTDigestDiscrete(unittest.TestCase):
    """Exact accounting with delta=False."""

    def setUp(self):
        self.td = TDigest(delta=False)
        self.td.push([5, 1, 3, 1, 5, 5])

    def test_centroids(self):
        self.assertEqual(self.td.size(), 3)
        self.assertEqual(
            self.td.to_array(),
            [{"mean": 1.0, "n": 2}, {"mean": 3.0, "n": 1}, {"mean": 5.0, "n": 3}],
        )
        self.assertEqual(self.td.n_total, 6)
        self.assertEqual(self.td.items_processed, 6)

    def test_percentile_nearest_rank(self):
        self.assertEqual(self.td.percentile(0.5), 3.0)
        self.assertEqual(self.td.percentile(0.25), 1.0)
        self.assertEqual(self.td.percentile(0.4), 3.0)  # Rank 2.4 rounds up to 3
        self.assertEqual(self.td.percentile(0.75), 5.0)

    def test_percentile_boundaries(self):
        self.assertEqual(self.td.percentile(0.0), 1.0)
        self.assertEqual(self.td.percentile(1.0), 5.0)

    def test_percentile_rank(self):
        self.assertEqual(self.td.percentile_rank(3), 0.5)
        self.assertAlmostEqual(self.td.percentile_rank(1), 2 / 6)
        self.assertAlmostEqual(self.td.percentile_rank(2), 2 / 6)
        self.assertEqual(self.td.percentile_rank(5), 1.0)

    def test_percentile_rank_out_of_range(self):
        self.assertEqual(self.td.percentile_rank(0), 0.0)
        self.assertEqual(self.td.percentile_rank(100), 1.0)

    def test_list_queries(self):
        self.assertEqual(self.td.percentile([0, 0.5, 1]), [1.0, 3.0, 5.0])
        self.assertEqual(self.td.percentile_rank([0, 3, 9]), [0.0, 0.5, 1.0])

    def test_query_alias(self):
        self.assertEqual(self.td.query(0.5), 3.0)

    def test_no_merging_of_distinct_values(self):
        td = TDigest(delta=False)
        td.push([1.0, 1.0001, 1.0002, 1.0003])
        self.assertEqual(td.size(), 4)

    def test_discrete_never_compresses(self):
        td = TDigest(delta=False, k=1)
        td.push(range(500))
        self.assertEqual(td.size(), 500)
        self.assertEqual(td.reset_count, 0)

    def test_summary(self):
        expected = "\n".join(
            [
                "exact 6 samples using 3 centroids",
                "min = 1.0",
                "Q1  = 1.0",
                "Q2  = 3.0",
                "Q3  = 5.0",
                "max = 5.0",
            ]
        )
        self.assertEqual(self.td.summary(), expected)

    def test_summary_reports_exact_counts(self):
        td = TDigest(delta=False)
        td.update(1.0, n=1234567)
        self.assertTrue(td.summary().startswith("exact 1234567 samples using 1 centroids"))

        td.update(2.0, n=0.5)
        self.assertTrue(td.summary().startswith("exact 1234567.5 samples using 2 centroids"))

    def test_summary_empty(self):
        self.assertTrue(TDigest().summary().startswith("approximating 0 samples using 0 centroids"))


class TestTDigestIngestion(unittest.TestCase):
    """Merge and new-centroid decisions."""

    def test_exact_match_merges_without_limit(self):
        td = TDigest()
        for _ in range(100):
            td.update(50.0)
        self.assertEqual(td.to_array(), [{"mean": 50.0, "n": 100}])

    def test_weighted_update(self):
        td = TDigest()
        td.update(2.0, n=4)
        td.update(2.0, n=3)
        self.assertEqual(td.to_array(), [{"mean": 2.0, "n": 7}])
        self.assertEqual(td.n_total, 7)
        self.assertEqual(td.items_processed, 2)

    def test_interior_merge_within_budget(self):
        td = TDigest(delta=1.0)
        td.push([0, 10, 5, 4])
        # 4 merges into the interior centroid at 5
        self.assertEqual(
            td.to_array(),
            [{"mean": 0.0, "n": 1}, {"mean": 4.5, "n": 2}, {"mean": 10.0, "n": 1}],
        )
        self.assertEqual(td.percentile_rank(4.5), 0.5)
        self.assertEqual(td.percentile(0.5), 4.5)

    def test_interior_point_over_budget_creates_centroid(self):
        td = TDigest(delta=0.01)
        td.push([0, 10, 5, 4])
        self.assertEqual([c["mean"] for c in td.to_array()], [0.0, 4.0, 5.0, 10.0])

    def test_stale_interior_centroid_refuses_merge(self):
        # With a large refresh factor only the first point gets counts
        td = TDigest(delta=1.0, refresh_factor=100.0)
        td.push([0, 10, 5])
        self.assertIsNone(td._store.nearest(4.0).mean_cumn)

        # Same stream as the interior merge case, but 5 has no rank yet
        td.update(4)
        self.assertEqual([c["mean"] for c in td.to_array()], [0.0, 4.0, 5.0, 10.0])
        self.assertEqual(td.n_total, 4)

    def test_boundary_points_create_centroids(self):
        td = TDigest(delta=1.0)
        td.push([5, 6, 7])
        td.update(100)  # New maximum
        td.update(-100)  # New minimum
        means = [c["mean"] for c in td.to_array()]
        self.assertEqual(means[0], -100.0)
        self.assertEqual(means[-1], 100.0)

    def test_non_finite_values_ignored(self):
        td = TDigest()
        td.push([10, float("inf"), 20, float("-inf"), float("nan"), 5])
        self.assertEqual(td.items_processed, 3)
        self.assertEqual(td.n_total, 3)
        self.assertEqual(td.percentile(0.0), 5.0)
        self.assertEqual(td.percentile(1.0), 20.0)

    def test_invalid_weight(self):
        td = TDigest()
        for n in [0, -1, float("nan"), float("inf")]:
            with self.assertRaises(ValueError, msg=f"n={n!r}"):
                td.update(1.0, n)

    def test_push_centroid(self):
        td = TDigest(delta=False)
        td.push_centroid({"mean": 2.0, "n": 3})
        td.push_centroid([{"mean": 1.0, "n": 1}, {"mean": 2.0, "n": 2}])
        self.assertEqual(td.to_array(), [{"mean": 1.0, "n": 1}, {"mean": 2.0, "n": 5}])

    def test_push_centroid_invalid(self):
        td = TDigest()
        with self.assertRaises(ValueError):
            td.push_centroid({"mean": 1.0})


class TestTDigestRefresh(unittest.TestCase):
    """Lazy refresh of the cumulative counts."""

    def test_stale_counts_until_forced(self):
        td = TDigest(delta=False, refresh_factor=2.0)
        td.push([1, 2, 3])
        # Growth from 2 to 3 is below the refresh factor
        self.assertIsNone(td._store.max().mean_cumn)

        exported = td.to_array(everything=True)
        self.assertEqual(exported[-1]["mean_cumn"], 2.5)
        self.assertEqual(exported[-1]["cumn"], 3)

    def test_zero_refresh_factor_always_exact(self):
        td = TDigest(delta=False, refresh_factor=0)
        td.push([1, 2, 3])
        self.assertEqual([c.mean_cumn for c in td._store], [0.5, 1.5, 2.5])
        self.assertEqual([c.cumn for c in td._store], [1, 2, 3])

    def test_export_everything(self):
        td = TDigest(delta=False)
        td.push([5, 1, 3, 1, 5, 5])
        self.assertEqual(
            td.to_array(everything=True),
            [
                {"mean": 1.0, "n": 2, "cumn": 2, "mean_cumn": 1.0},
                {"mean": 3.0, "n": 1, "cumn": 3, "mean_cumn": 2.5},
                {"mean": 5.0, "n": 3, "cumn": 6, "mean_cumn": 4.5},
            ],
        )

    def test_export_is_a_copy(self):
        td = TDigest(delta=False)
        td.push([1, 2])
        exported = td.to_array(everything=True)
        exported[0]["mean"] = 99.0
        exported[0]["n"] = 99
        self.assertEqual(td.to_array(), [{"mean": 1.0, "n": 1}, {"mean": 2.0, "n": 1}])


class TestTDigestQueries(unittest.TestCase):
    """Percentile and percentile-rank queries."""

    def test_empty_queries(self):
        td = TDigest()
        self.assertIsNone(td.percentile(0.5))
        self.assertIsNone(td.percentile_rank(1.0))
        self.assertEqual(td.percentile([0.1, 0.9]), [None, None])

    def test_invalid_fraction(self):
        td = TDigest()
        td.update(10)
        with self.assertRaises(ValueError):
            td.percentile(-0.1)
        with self.assertRaises(ValueError):
            td.percentile(1.1)
        with self.assertRaises(ValueError):
            td.percentile(float("nan"))
        with self.assertRaises(ValueError):
            td.percentile_rank(float("nan"))

    def test_single_item(self):
        td = TDigest()
        td.update(42.0)
        for p in [0.0, 0.25, 0.5, 0.75, 1.0]:
            self.assertEqual(td.percentile(p), 42.0)
        self.assertEqual(td.percentile_rank(42.0), 0.5)

    def test_two_items_interpolate(self):
        td = TDigest()
        td.push([10.0, 20.0])
        self.assertEqual(td.percentile(0.0), 10.0)
        self.assertEqual(td.percentile(1.0), 20.0)
        self.assertAlmostEqual(td.percentile(0.5), 15.0)
        self.assertAlmostEqual(td.percentile_rank(15.0), 0.5)
        # Boundary samples keep half their weight inward
        self.assertAlmostEqual(td.percentile_rank(10.0), 0.25)
        self.assertAlmostEqual(td.percentile_rank(20.0), 0.75)

    def test_uniform_distribution(self):
        rng = random.Random(42)
        data = [rng.uniform(0, 100) for _ in range(10000)]
        td = TDigest(seed=1)
        td.push(data)
        data.sort()

        for q in [0.01, 0.1, 0.25, 0.5, 0.75, 0.9, 0.99]:
            estimated = td.percentile(q)
            actual = data[min(len(data) - 1, int(q * len(data)))]
            self.assertAlmostEqual(
                estimated,
                actual,
                delta=2.0,
                msg=f"Quantile {q}: Estimated={estimated:.4f}, Actual={actual:.4f}",
            )
        for x in [1.0, 25.0, 50.0, 75.0, 99.0]:
            self.assertAlmostEqual(td.percentile_rank(x), x / 100, delta=0.02)

    def test_monotonic_queries(self):
        rng = random.Random(7)
        td = TDigest(seed=7)
        td.push(rng.gauss(0, 1) for _ in range(5000))

        ps = [i / 100 for i in range(101)]
        qs = td.percentile(ps)
        for a, b in zip(qs, qs[1:]):
            self.assertLessEqual(a, b)

        xs = [-6 + i * 0.075 for i in range(161)]
        ranks = td.percentile_rank(xs)
        for a, b in zip(ranks, ranks[1:]):
            self.assertLessEqual(a, b)
        self.assertEqual(ranks[0], 0.0)
        self.assertEqual(ranks[-1], 1.0)

    def test_bracket_helpers(self):
        td = TDigest()
        td.push([1, 3, 5])
        self.assertEqual(td.find_nearest(3.9)["mean"], 3.0)
        self.assertEqual(td.find_nearest(4.0)["mean"], 5.0)
        lower, upper = td.bound_mean(4.0)
        self.assertEqual((lower["mean"], upper["mean"]), (3.0, 5.0))
        lower, upper = td.bound_mean_cumn(0.1)
        self.assertIsNone(lower)
        self.assertEqual(upper["mean"], 1.0)
        self.assertIsNone(TDigest().find_nearest(1.0))


class TestTDigestCompression(unittest.TestCase):
    """Randomized re-digestion."""

    def test_sorted_input_is_compressed(self):
        # Every sorted point is a new maximum and gets its own centroid
        # until the k / delta = 500 trigger compresses the digest
        td = TDigest(delta=0.05, k=25, seed=3)
        td.push(float(i) for i in range(10000))

        self.assertGreater(td.reset_count, 0)
        self.assertLessEqual(td.size(), 500)
        self.assertEqual(sum(c["n"] for c in td.to_array()), 10000)
        self.assertEqual(td.n_total, 10000)
        self.assertEqual(td.items_processed, 10000)

    def test_uniform_input_stays_bounded(self):
        rng = random.Random(11)
        td = TDigest(delta=0.01, k=25, seed=11)
        td.push(rng.random() for _ in range(100000))

        self.assertLess(td.size(), 10000)
        self.assertEqual(td.n_total, 100000)
        self.assertAlmostEqual(td.percentile(0.5), 0.5, delta=0.02)

        for _ in range(3):
            size_before = td.size()
            td.compress()
            self.assertEqual(td.n_total, 100000)
            self.assertEqual(sum(c["n"] for c in td.to_array()), 100000)
            # Each replayed centroid merges or becomes one centroid
            self.assertLessEqual(td.size(), size_before)
        self.assertAlmostEqual(td.percentile(0.5), 0.5, delta=0.02)

    def test_compress_conserves_mass(self):
        td = TDigest(delta=0.05, k=0, seed=5)
        td.push(range(1000))
        self.assertEqual(td.size(), 1000)  # k=0: no automatic compression

        td.compress()
        self.assertEqual(td.reset_count, 1)
        self.assertEqual(td.n_total, 1000)
        self.assertEqual(sum(c["n"] for c in td.to_array()), 1000)
        self.assertLess(td.size(), 1000)

        means = [c["mean"] for c in td.to_array()]
        self.assertEqual(means, sorted(means))
        self.assertEqual(len(set(means)), len(means))

    def test_compress_discrete_is_lossless(self):
        td = TDigest(delta=False, seed=2)
        td.push([5, 1, 3, 1, 5, 5])
        before = td.to_array()
        td.compress()
        self.assertEqual(td.to_array(), before)

    def test_reentrant_compress_is_noop(self):
        td = TDigest(seed=1)
        td.push(range(100))
        td._compressing = True
        td.compress()
        self.assertEqual(td.reset_count, 0)
        self.assertEqual(td.size(), 100)

    def test_seeded_compression_is_reproducible(self):
        arrays = []
        for _ in range(2):
            td = TDigest(delta=0.05, k=0, seed=99)
            td.push(range(500))
            td.compress()
            arrays.append(td.to_array())
        self.assertEqual(arrays[0], arrays[1])


class TestTDigestReset(unittest.TestCase):

    def test_reset(self):
        td = TDigest(delta=0.05, k=10, refresh_factor=1.5)
        td.push(range(100))
        td.reset()

        self.assertEqual(td.size(), 0)
        self.assertEqual(td.n_total, 0)
        self.assertEqual(td.items_processed, 0)
        self.assertIsNone(td.percentile(0.5))
        self.assertEqual(td.reset_count, 1)
        # Configuration survives
        self.assertEqual((td.delta, td.k, td.refresh_factor), (0.05, 10, 1.5))

    def test_reset_digest_behaves_like_new(self):
        data = [3, 1, 4, 1, 5, 9, 2, 6, 5, 3, 5]
        reused = TDigest(delta=False)
        reused.push(range(50))
        reused.clear()
        reused.push(data)

        fresh = TDigest(delta=False)
        fresh.push(data)
        self.assertEqual(reused.to_array(everything=True), fresh.to_array(everything=True))
        self.assertEqual(reused.summary(), fresh.summary())


class TestTDigestMerge(unittest.TestCase):

    def test_merge_basic(self):
        td1 = TDigest(delta=False)
        td1.push([1, 2, 3])
        td2 = TDigest(delta=False)
        td2.push([3, 4])

        merged = td1.merge(td2)
        self.assertIsInstance(merged, TDigest)
        self.assertTrue(merged.discrete)
        self.assertEqual(merged.items_processed, 5)
        self.assertEqual(
            merged.to_array(),
            [
                {"mean": 1.0, "n": 1},
                {"mean": 2.0, "n": 1},
                {"mean": 3.0, "n": 2},
                {"mean": 4.0, "n": 1},
            ],
        )
        # Inputs untouched
        self.assertEqual(td1.size(), 3)
        self.assertEqual(td2.size(), 2)

    def test_merge_shards_approximates_combined(self):
        rng = random.Random(43)
        data1 = [rng.gauss(100, 10) for _ in range(2000)]
        data2 = [rng.gauss(200, 20) for _ in range(3000)]
        combined = sorted(data1 + data2)

        td1 = TDigest(seed=1)
        td1.push(data1)
        td2 = TDigest(seed=2)
        td2.push(data2)
        merged = td1.merge(td2)

        self.assertEqual(merged.n_total, 5000)
        for q in [0.1, 0.25, 0.5, 0.75, 0.9]:
            actual = combined[int(q * len(combined))]
            self.assertAlmostEqual(merged.percentile(q), actual, delta=5.0)

    def test_merge_different_configuration(self):
        with self.assertRaises(ValueError):
            TDigest(delta=0.01).merge(TDigest(delta=0.02))
        with self.assertRaises(ValueError):
            TDigest(delta=False).merge(TDigest())

    def test_merge_different_types(self):
        with self.assertRaises(TypeError):
            TDigest().merge(object())


class TestTDigestSerialization(unittest.TestCase):

    def test_round_trip(self):
        td = TDigest(delta=0.05, k=10, refresh_factor=1.2)
        rng = random.Random(8)
        td.push(rng.random() for _ in range(2000))

        data = td.to_dict()
        self.assertEqual(data["type"], "TDigest")
        self.assertEqual(data["items_processed"], 2000)
        self.assertEqual(data["n_total"], 2000)
        self.assertEqual(len(data["centroids"]), td.size())

        restored = TDigest.from_dict(data)
        self.assertEqual((restored.delta, restored.k, restored.refresh_factor), (0.05, 10, 1.2))
        self.assertEqual(restored.to_array(everything=True), td.to_array(everything=True))
        self.assertEqual(restored.items_processed, 2000)
        for q in [0.0, 0.1, 0.5, 0.9, 1.0]:
            self.assertEqual(restored.percentile(q), td.percentile(q))

    def test_json_and_binary(self):
        td = TDigest(delta=False)
        td.push([5, 1, 3, 1, 5, 5])

        text = td.serialize(format="json")
        self.assertEqual(json.loads(text)["discrete"], True)
        self.assertEqual(TDigest.deserialize(text).percentile(0.5), 3.0)

        blob = td.serialize(format="binary")
        self.assertIsInstance(blob, bytes)
        self.assertEqual(TDigest.deserialize(blob, format="binary").percentile_rank(3), 0.5)

        with self.assertRaises(ValueError):
            td.serialize(format="xml")
        with self.assertRaises(ValueError):
            TDigest.deserialize(text, format="xml")

    def test_round_trip_keeps_delta_of_discrete_digest(self):
        td = TDigest(delta=0.2)
        td.switch_mode(discrete=True)
        td.push([1, 2, 2])

        restored = TDigest.from_dict(td.to_dict())
        self.assertTrue(restored.discrete)
        self.assertEqual(restored.delta, 0.2)
        self.assertEqual(restored.to_array(), td.to_array())

        restored.switch_mode(discrete=False)
        self.assertEqual(restored.delta, 0.2)

    def test_empty_round_trip(self):
        restored = TDigest.from_dict(TDigest().to_dict())
        self.assertTrue(restored.is_empty)
        self.assertIsNone(restored.percentile(0.5))

    def test_invalid_data(self):
        td = TDigest()
        td.push([1, 2])
        valid = td.to_dict()

        for key in ["type", "delta", "k", "centroids", "n_total", "items_processed"]:
            invalid = dict(valid)
            del invalid[key]
            with self.assertRaises(ValueError, msg=f"Failed on missing key: {key}"):
                TDigest.from_dict(invalid)

        invalid = dict(valid, type="WrongClass")
        with self.assertRaises(ValueError):
            TDigest.from_dict(invalid)

        invalid = dict(valid, centroids=[{"mean": 10}])
        with self.assertRaises(ValueError):
            TDigest.from_dict(invalid)

        invalid = dict(valid, centroids=[{"mean": 10, "n": -1}])
        with self.assertRaises(ValueError):
            TDigest.from_dict(invalid)

        invalid = dict(valid, centroids=[{"mean": 1, "n": 1}, {"mean": 1, "n": 2}])
        with self.assertRaises(ValueError):
            TDigest.from_dict(invalid)


class TestTDigestLen(unittest.TestCase):

    def test_len_and_is_empty(self):
        td = TDigest()
        self.assertEqual(len(td), 0)
        self.assertTrue(td.is_empty)

        td.push([10, 20, 20])
        self.assertEqual(len(td), 3)
        self.assertFalse(td.is_empty)
        self.assertTrue(math.isclose(td.n_total, 3))


if __name__ == "__main__":
    unittest.main()
