#!/usr/bin/env python3
"""Benchmark cold (generated) versus warm (cached) embedding latency in-process."""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import statistics
import string
import sys
import tempfile
import time
from pathlib import Path

from lumara_embeddings.config import Settings
from lumara_embeddings.main import build_service


def percentile(values: list[float], p: float) -> float:
    """Compute a percentile using linear interpolation."""
    if not values:
        return 0.0
    if len(values) == 1:
        return values[0]

    pos = (len(values) - 1) * (p / 100.0)
    lower = math.floor(pos)
    upper = math.ceil(pos)
    if lower == upper:
        return values[int(pos)]

    lower_val = values[lower]
    upper_val = values[upper]
    return lower_val + (upper_val - lower_val) * (pos - lower)


def make_input_text(chars: int, index: int) -> str:
    """Build a deterministic input string with approximate length."""
    seed = f"memory-{index} "
    if len(seed) >= chars:
        return seed[:chars]

    filler = string.ascii_lowercase + " "
    repeats = (chars - len(seed)) // len(filler) + 1
    text = seed + (filler * repeats)
    return text[:chars]


def latency_summary(latencies: list[float]) -> dict[str, float]:
    ordered = sorted(latencies)
    return {
        "min": ordered[0] if ordered else 0.0,
        "mean": statistics.fmean(ordered) if ordered else 0.0,
        "p50": percentile(ordered, 50),
        "p95": percentile(ordered, 95),
        "p99": percentile(ordered, 99),
        "max": ordered[-1] if ordered else 0.0,
    }


async def timed_pass(service, texts: list[str]) -> list[float]:
    latencies: list[float] = []
    for text in texts:
        started = time.perf_counter()
        await service.generate_embedding(text)
        latencies.append((time.perf_counter() - started) * 1000.0)
    return latencies


async def run_bench(args: argparse.Namespace, db_path: str) -> dict[str, object]:
    settings = Settings()
    settings.embedding.backend = args.backend
    settings.cache.durable_backend = args.durable_backend
    settings.cache.db_path = db_path

    service = build_service(settings)
    try:
        load_started = time.perf_counter()
        await service.initialize()
        load_ms = (time.perf_counter() - load_started) * 1000.0

        texts = [make_input_text(args.input_chars, idx) for idx in range(args.texts)]
        cold = await timed_pass(service, texts)
        warm = await timed_pass(service, texts)
        stats = await service.get_cache_stats()
    finally:
        await service.close()

    return {
        "config": {
            "backend": args.backend,
            "durable_backend": args.durable_backend,
            "texts": args.texts,
            "input_chars": args.input_chars,
        },
        "results": {
            "model_load_ms": load_ms,
            "cold_latency_ms": latency_summary(cold),
            "warm_latency_ms": latency_summary(warm),
            "cache_hit_rate": stats.hit_rate,
        },
    }


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark lumara-embeddings cache latency.")
    parser.add_argument("--backend", choices=["deterministic", "sentence_transformers"], default="deterministic")
    parser.add_argument("--durable-backend", choices=["sqlite", "memory"], default="sqlite")
    parser.add_argument("--texts", type=int, default=200)
    parser.add_argument("--input-chars", type=int, default=256)
    parser.add_argument("--output", type=Path)
    return parser.parse_args()


def validate_args(args: argparse.Namespace) -> None:
    if args.texts <= 0:
        raise SystemExit("--texts must be > 0")
    if args.input_chars <= 0:
        raise SystemExit("--input-chars must be > 0")


def main() -> None:
    args = parse_args()
    validate_args(args)
    with tempfile.TemporaryDirectory() as tmp_dir:
        summary = asyncio.run(run_bench(args, str(Path(tmp_dir) / "bench.db")))

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote benchmark report: {args.output}", file=sys.stderr)


if __name__ == "__main__":
    main()
