#!/usr/bin/env python3
"""
Micro-benchmark for CryptoSage hot paths.

Tests:
1. Live tick aggregator throughput (bursty stream)
2. Kline normalization speed
3. Heat map treemap layout speed

Usage:
    python -m cryptosage.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

import orjson

from .engine.candles import normalize_klines
from .engine.live import LiveTickAggregator
from .engine.treemap import heat_map_layout
from .types import HeatMapTile, Rect


def generate_mock_klines(count: int = 1000, base_price: float = 60000.0) -> bytes:
    """Generate a shuffled kline payload with mixed number/string closes."""
    start_ms = 1_700_000_000_000
    rows = []
    for i in range(count):
        close = base_price + random.uniform(-500, 500)
        rows.append([
            start_ms + i * 60_000,
            str(close), str(close + 5), str(close - 5),
            close if i % 2 else str(close),
            "12.5",
        ])
    random.shuffle(rows)
    return orjson.dumps(rows)


def generate_mock_tiles(count: int = 100) -> list[HeatMapTile]:
    return [
        HeatMapTile(f"C{i}", random.uniform(-15, 15), random.uniform(1e6, 1e12))
        for i in range(count)
    ]


def benchmark_aggregator(iterations: int = 200_000) -> None:
    """Benchmark tick ingestion with 100 ticks per simulated second."""
    print("\n=== Live Tick Aggregator Benchmark ===")

    agg = LiveTickAggregator(capacity=300)
    base_ms = 1_700_000_000_000
    messages = [
        {"p": f"{60000 + random.uniform(-50, 50):.2f}", "T": base_ms + i * 10}
        for i in range(iterations)
    ]

    start = time.perf_counter()
    for i, msg in enumerate(messages):
        agg.offer(msg, now=1_700_000_000 + i * 0.01)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Ticks offered: {iterations:,}")
    print(f"  Accepted: {agg.accepted_count:,}  Dropped: {agg.dropped_count:,}")
    print(f"  Window size: {len(agg.window)}")
    print(f"  Rate: {rate:,.0f} ticks/sec")
    print(f"  Per tick: {elapsed/iterations*1_000_000:.2f}µs")


def benchmark_klines(iterations: int = 200) -> None:
    """Benchmark kline payload normalization."""
    print("\n=== Kline Normalization Benchmark ===")

    payload = generate_mock_klines()
    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        normalize_klines(payload)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000
    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")


def benchmark_treemap(iterations: int = 2000) -> None:
    """Benchmark heat map collapse + layout."""
    print("\n=== Heat Map Layout Benchmark ===")

    tiles = generate_mock_tiles()
    bounds = Rect(0.0, 0.0, 120.0, 40.0)
    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        heat_map_layout(tiles, bounds, top_count=10)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000
    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Rate: {1000/avg_time:,.0f} layouts/sec")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("CryptoSage Performance Benchmark")
    print("=" * 60)

    benchmark_aggregator()
    benchmark_klines()
    benchmark_treemap()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
