"""Shared helpers for hydration benchmarks."""

import gc
import json
import os
import time
from typing import Any, Callable, Coroutine

# Configuration from environment
ITERATIONS = int(os.environ.get("BENCH_ITERATIONS", "50"))
WARMUP = 5


async def timeit(fn: Callable[[], Coroutine[Any, Any, Any]], iterations: int = ITERATIONS) -> float:
    """Time an async function, return average time in ms."""
    # Warmup
    for _ in range(WARMUP):
        await fn()

    # Force GC before timing
    gc.collect()

    start = time.perf_counter()
    for _ in range(iterations):
        await fn()
    return (time.perf_counter() - start) / iterations * 1000


def make_result(strategy: str, shape: str, entities: int, time_ms: float) -> dict[str, Any]:
    """Create a result dict."""
    return {
        "strategy": strategy,
        "shape": shape,
        "entities": entities,
        "time_ms": round(time_ms, 3),
    }


def output_results(results: list[dict[str, Any]]) -> None:
    """Output results as JSON to stdout."""
    print(json.dumps(results, indent=2))
