#!/usr/bin/env python3
"""
Micro-benchmark for Live Desk reconciliation.

Tests:
1. Book reconcile throughput (full-depth replace + price-keyed diff)
2. Trade reconcile throughput under bursts larger than the retention cap
3. Tick reconcile throughput with duplicate and out-of-order timestamps

Usage:
    python -m live_desk.benchmark
"""

from __future__ import annotations

import random
import time
from decimal import Decimal
from statistics import mean, stdev

from .engine.reconciler import Reconciler
from .types import BookLevel, QuoteTick, Trade, TradeTick

TICK = Decimal("0.01")


def generate_mock_book(base_price: Decimal = Decimal("150.00"), levels: int = 50) -> tuple[list[BookLevel], list[BookLevel]]:
    """Generate one side-pair of book levels with random sizes."""
    bids = [
        BookLevel(base_price - (i + 1) * TICK, random.randint(1, 500), random.randint(1, 10))
        for i in range(levels)
    ]
    asks = [
        BookLevel(base_price + (i + 1) * TICK, random.randint(1, 500), random.randint(1, 10))
        for i in range(levels)
    ]
    return bids, asks


def generate_mock_trades(start_id: int, count: int) -> list[Trade]:
    trades = []
    base_ts = int(time.time() * 1000)
    for i in range(count):
        price = Decimal("150.00") + random.randint(-50, 50) * TICK
        qty = random.randint(1, 100)
        trades.append(Trade(start_id + i, 1, 2, "AAPL", price, qty, price * qty, base_ts + i))
    return trades


def benchmark_book(iterations: int = 2000) -> None:
    print("\n=== Book Reconcile Benchmark ===")

    reconciler = Reconciler()
    books = [generate_mock_book() for _ in range(iterations)]

    view = None
    start = time.perf_counter()
    for bids, asks in books:
        view = reconciler.reconcile_book(view, bids, asks)
    elapsed = time.perf_counter() - start

    print(f"  Snapshots reconciled: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Per snapshot: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_trades(iterations: int = 1000, burst: int = 500) -> None:
    print("\n=== Trade Reconcile Benchmark ===")

    reconciler = Reconciler(trade_retention=50)
    windows = [generate_mock_trades(i * 10, burst) for i in range(iterations)]

    times = []
    view = None
    for window in windows:
        start = time.perf_counter()
        view = reconciler.reconcile_trades(view, window)
        times.append(time.perf_counter() - start)

    print(f"  Windows: {iterations:,} x {burst} trades")
    print(f"  Retained: {len(view.data)}")
    print(f"  Avg time: {mean(times)*1000:.3f}ms")
    print(f"  Std dev: {stdev(times)*1000:.3f}ms")


def benchmark_ticks(iterations: int = 2000, window: int = 100) -> None:
    print("\n=== Tick Reconcile Benchmark ===")

    reconciler = Reconciler(tick_window=20)
    base_ts = int(time.time() * 1000)
    snapshots = []
    for i in range(iterations):
        ticks = []
        for j in range(window):
            # Jittered timestamps: some repeat, some go backwards
            ts = base_ts + i * 10 + j - random.randint(0, 3)
            if j % 2:
                ticks.append(TradeTick("AAPL", ts, Decimal("150.00"), 10))
            else:
                ticks.append(QuoteTick("AAPL", ts, Decimal("149.99"), 5, Decimal("150.01"), 7))
        snapshots.append(ticks)

    view = None
    start = time.perf_counter()
    for ticks in snapshots:
        view = reconciler.reconcile_ticks(view, ticks)
    elapsed = time.perf_counter() - start

    print(f"  Snapshots reconciled: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Per snapshot: {elapsed/iterations*1_000_000:.1f}µs")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Live Desk Reconcile Benchmark")
    print("=" * 60)

    benchmark_book()
    benchmark_trades()
    benchmark_ticks()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
