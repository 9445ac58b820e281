"""
Basic example of using tiny-digest for stream percentiles.

This example demonstrates how the TDigest and the adaptive Digest
summarize a data stream and answer percentile queries.
"""

import logging
import random
import time

from tiny_digest.algorithms.digest import Digest
from tiny_digest.algorithms.tdigest import TDigest


def demonstrate_discrete_digest():
    """Demonstrate exact percentiles on a stream with few distinct values."""
    print("\n=== Discrete Digest Demo ===")

    # Dice rolls only ever take six values, so the digest stays exact
    digest = Digest(seed=42)
    rng = random.Random(42)

    print("Processing 10000 dice rolls...")
    for i in range(10000):
        digest.update(rng.randint(1, 6))

        if i % 2000 == 0:
            print(f"  Processed {i} items")

    print(f"\nMode: {digest.mode} ({digest.size()} centroids)")
    print(digest.summary())
    print(f"\nFraction of rolls <= 3: {digest.percentile_rank(3):.3f}")
    print(f"Centroids: {digest.to_array()}")


def demonstrate_continuous_digest():
    """Demonstrate the switch to approximate accounting for continuous data."""
    print("\n=== Adaptive Digest Demo ===")

    digest = Digest(seed=42)
    rng = random.Random(7)

    print("Processing 50000 normally distributed values...")
    start_time = time.time()
    for i in range(50000):
        digest.update(rng.gauss(100.0, 15.0))

        if i % 10000 == 0:
            print(f"  Processed {i} items (mode: {digest.mode})")
    elapsed = time.time() - start_time
    print(f"  Done in {elapsed:.3f} seconds")

    print(f"\n{digest.summary()}")
    for p, value in zip([0.01, 0.5, 0.99], digest.percentile([0.01, 0.5, 0.99])):
        print(f"  p{p * 100:g}: {value:.2f}")

    stats = digest.get_stats()
    print(f"\nCompression ratio: {stats['compression_ratio']:.1f} samples per centroid")
    print(f"Approximate memory usage: {digest.estimate_size()} bytes")


def simulate_sharded_latencies():
    """Simulate combining per-shard latency digests into a global view."""
    print("\n=== Sharded Latency Simulation ===")

    shards = []
    for shard_id in range(4):
        rng = random.Random(shard_id)
        digest = TDigest(delta=0.01, seed=shard_id)

        # Each shard sees a slightly different latency profile
        digest.push(rng.expovariate(1.0 / (20 + 5 * shard_id)) for _ in range(5000))

        # In a real deployment each shard would ship its serialized state
        serialized = digest.serialize()
        print(f"  Shard {shard_id}: p99 = {digest.percentile(0.99):.1f} ms, "
              f"checkpoint {len(serialized)} bytes")
        shards.append(TDigest.deserialize(serialized))

    combined = shards[0]
    for shard in shards[1:]:
        combined = combined.merge(shard)

    print(f"\nCombined digest: {len(combined)} samples, {combined.size()} centroids")
    print(f"Global p50 = {combined.percentile(0.5):.1f} ms")
    print(f"Global p99 = {combined.percentile(0.99):.1f} ms")
    print(f"Share of requests under 50 ms: {combined.percentile_rank(50.0):.3f}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    demonstrate_discrete_digest()
    demonstrate_continuous_digest()
    simulate_sharded_latencies()
