#!/usr/bin/env python3
"""
Benchmark script for Shelfguard admission latency.

Measures p50, p95, p99 latency and throughput for:
- HTTP, sequential requests against a running server
- HTTP, concurrent requests with asyncio
- In-process AdmissionController.admit calls from several threads

Usage:
    python benchmark_latency.py --url http://localhost:4000 --requests 1000
    python benchmark_latency.py --url http://localhost:4000 --concurrent 50 --requests 5000
    python benchmark_latency.py --in-process --threads 8 --requests 100000
"""

import argparse
import asyncio
import json
import statistics
import threading
import time
from dataclasses import dataclass

import httpx

from shelfguard.admission import AdmissionController


@dataclass
class BenchmarkResult:
    """Benchmark result metrics."""

    total_requests: int
    allowed_requests: int
    blocked_requests: int
    total_duration_seconds: float
    latencies_ms: list[float]

    @property
    def failed_requests(self) -> int:
        return self.total_requests - self.allowed_requests - self.blocked_requests

    @property
    def throughput(self) -> float:
        """Requests per second."""
        return self.total_requests / self.total_duration_seconds

    @property
    def mean(self) -> float:
        return statistics.mean(self.latencies_ms) if self.latencies_ms else 0

    def percentile(self, p: int) -> float:
        if not self.latencies_ms:
            return 0
        ordered = sorted(self.latencies_ms)
        return ordered[min(int(len(ordered) * p / 100), len(ordered) - 1)]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        return {
            "total_requests": self.total_requests,
            "allowed_requests": self.allowed_requests,
            "blocked_requests": self.blocked_requests,
            "failed_requests": self.failed_requests,
            "total_duration_seconds": round(self.total_duration_seconds, 3),
            "throughput_rps": round(self.throughput, 2),
            "latency_ms": {
                "mean": round(self.mean, 4),
                "p50": round(self.percentile(50), 4),
                "p95": round(self.percentile(95), 4),
                "p99": round(self.percentile(99), 4),
                "max": round(max(self.latencies_ms), 4) if self.latencies_ms else 0,
            },
        }


async def timed_get(client: httpx.AsyncClient, url: str) -> tuple[float, int]:
    """Make a single request. Returns: (latency_ms, status_code or 0 on error)"""
    start = time.perf_counter()
    try:
        response = await client.get(url)
        status = response.status_code
    except httpx.HTTPError:
        status = 0
    return (time.perf_counter() - start) * 1000, status


async def benchmark_http(url: str, num_requests: int, concurrency: int) -> BenchmarkResult:
    """Run the HTTP benchmark; concurrency 1 is sequential."""
    latencies: list[float] = []
    statuses: list[int] = []
    queue: asyncio.Queue[int] = asyncio.Queue()
    for i in range(num_requests):
        queue.put_nowait(i)

    async def worker(client: httpx.AsyncClient) -> None:
        while True:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            latency_ms, status = await timed_get(client, url)
            latencies.append(latency_ms)
            statuses.append(status)

    limits = httpx.Limits(max_connections=concurrency)
    async with httpx.AsyncClient(timeout=30.0, limits=limits) as client:
        start_time = time.perf_counter()
        await asyncio.gather(*(worker(client) for _ in range(concurrency)))
        total_duration = time.perf_counter() - start_time

    return BenchmarkResult(
        total_requests=num_requests,
        allowed_requests=statuses.count(200),
        blocked_requests=statuses.count(429),
        total_duration_seconds=total_duration,
        latencies_ms=latencies,
    )


def benchmark_in_process(num_requests: int, threads: int, clients: int) -> BenchmarkResult:
    """Hammer admit() from several threads over a pool of client keys."""
    controller = AdmissionController(refill_rate=1000.0, burst=100, autostart=False)
    per_thread = num_requests // threads
    latencies: list[list[float]] = [[] for _ in range(threads)]
    allowed = [0] * threads
    barrier = threading.Barrier(threads)

    def worker(index: int) -> None:
        barrier.wait()
        for i in range(per_thread):
            key = f"10.0.{(index * per_thread + i) % clients}.1"
            start = time.perf_counter()
            ok = controller.admit(key)
            latencies[index].append((time.perf_counter() - start) * 1000)
            allowed[index] += ok

    pool = [threading.Thread(target=worker, args=(i,)) for i in range(threads)]
    start_time = time.perf_counter()
    for t in pool:
        t.start()
    for t in pool:
        t.join()
    total_duration = time.perf_counter() - start_time

    total = per_thread * threads
    return BenchmarkResult(
        total_requests=total,
        allowed_requests=sum(allowed),
        blocked_requests=total - sum(allowed),
        total_duration_seconds=total_duration,
        latencies_ms=[x for chunk in latencies for x in chunk],
    )


def print_results(result: BenchmarkResult, title: str) -> None:
    """Print benchmark results in a formatted table."""
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}")
    print(f"  Total requests:      {result.total_requests:,}")
    print(f"  Allowed:             {result.allowed_requests:,}")
    print(f"  Blocked:             {result.blocked_requests:,}")
    print(f"  Failed:              {result.failed_requests:,}")
    print(f"  Duration:            {result.total_duration_seconds:.2f}s")
    print(f"  Throughput:          {result.throughput:,.2f} req/s")
    print("  Latency (ms):")
    print(f"    Mean:              {result.mean:.4f}")
    print(f"    P50:               {result.percentile(50):.4f}")
    print(f"    P95:               {result.percentile(95):.4f}")
    print(f"    P99:               {result.percentile(99):.4f}")
    print(f"{'=' * 60}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Shelfguard Benchmark")
    parser.add_argument("--url", default="http://localhost:4000", help="Shelfguard URL")
    parser.add_argument("--path", default="/v1/healthcheck", help="Path to request")
    parser.add_argument("--requests", type=int, default=1000, help="Number of requests")
    parser.add_argument("--concurrent", type=int, default=1, help="HTTP concurrency")
    parser.add_argument("--in-process", action="store_true", help="Benchmark admit() directly")
    parser.add_argument("--threads", type=int, default=8, help="Threads for --in-process")
    parser.add_argument("--clients", type=int, default=256, help="Distinct client keys")
    parser.add_argument("--output", help="Output JSON file")
    args = parser.parse_args()

    if args.in_process:
        result = benchmark_in_process(args.requests, args.threads, args.clients)
        title = f"In-process admit ({args.threads} threads, {args.clients} clients)"
    else:
        url = args.url.rstrip("/") + args.path
        result = asyncio.run(benchmark_http(url, args.requests, max(args.concurrent, 1)))
        title = f"HTTP {url} ({args.concurrent} workers)"

    print_results(result, title)

    if args.output:
        with open(args.output, "w") as f:
            json.dump({"title": title, **result.to_dict()}, f, indent=2)
        print(f"\nResults saved to {args.output}")


if __name__ == "__main__":
    main()
