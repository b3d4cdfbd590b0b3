#!/usr/bin/env python3
"""Benchmark torchxmatch k-d tree construction and catalog matching."""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path
from typing import Any, Callable

import numpy as np
import torch

from torchxmatch import build_kdtree, match_kdtree, match_sort_based, query


def _bench(fn: Callable[[], Any], runs: int) -> float:
    fn()
    samples: list[float] = []
    for _ in range(runs):
        t0 = time.perf_counter()
        fn()
        samples.append(time.perf_counter() - t0)
    return float(np.median(samples))


def _sample_catalogs(n: int, ndim: int, overlap: float, jitter: float,
                     seed: int) -> tuple[torch.Tensor, torch.Tensor]:
    rng = np.random.default_rng(seed)
    cat1 = rng.uniform(0.0, 100.0, size=(n, ndim))
    n_common = int(n * overlap)
    common = cat1[rng.permutation(n)[:n_common]] + rng.normal(0.0, jitter, size=(n_common, ndim))
    extra = rng.uniform(0.0, 100.0, size=(n - n_common, ndim))
    cat2 = rng.permutation(np.concatenate([common, extra]))
    return torch.from_numpy(cat1), torch.from_numpy(cat2)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--n-points", type=int, default=20_000)
    parser.add_argument("--ndim", type=int, choices=[1, 2, 3], default=2)
    parser.add_argument("--radius", type=float, default=0.05)
    parser.add_argument("--overlap", type=float, default=0.5)
    parser.add_argument("--threads", type=int, default=4)
    parser.add_argument("--runs", type=int, default=3)
    parser.add_argument("--seed", type=int, default=123)
    parser.add_argument("--json-out", type=Path, default=Path("bench_results/match.json"))
    args = parser.parse_args()

    cat1, cat2 = _sample_catalogs(args.n_points, args.ndim, args.overlap,
                                  args.radius / 5.0, args.seed)
    results: list[dict[str, Any]] = []

    t_build = _bench(lambda: build_kdtree(cat1), runs=args.runs)
    results.append(
        {
            "operation": "build_kdtree",
            "ndim": args.ndim,
            "n_points": args.n_points,
            "k_points_s": args.n_points / t_build / 1e3,
        }
    )

    tree = build_kdtree(cat1)
    n_query = min(5_000, args.n_points)
    t_query = _bench(lambda: query(tree, cat1, cat2[:n_query]), runs=args.runs)
    results.append(
        {
            "operation": "nearest_neighbour_query",
            "ndim": args.ndim,
            "n_points": args.n_points,
            "n_queries": n_query,
            "k_queries_s": n_query / t_query / 1e3,
        }
    )

    t_sort = _bench(lambda: match_sort_based(cat1, cat2, args.radius), runs=args.runs)
    nmatch_sort = match_sort_based(cat1, cat2, args.radius).nummatched
    results.append(
        {
            "operation": "match_sort_based",
            "ndim": args.ndim,
            "n_points": args.n_points,
            "nummatched": nmatch_sort,
            "seconds": t_sort,
        }
    )

    for threads in sorted({1, args.threads}):
        t_tree = _bench(
            lambda: match_kdtree(cat1, cat2, args.radius, kdtree=tree,
                                 num_threads=threads, min_items_for_parallel=0),
            runs=args.runs,
        )
        results.append(
            {
                "operation": "match_kdtree",
                "ndim": args.ndim,
                "n_points": args.n_points,
                "threads": threads,
                "seconds": t_tree,
                "ratio_sort_vs_kdtree": t_sort / t_tree,
            }
        )

    # Brute force is O(N^2); keep N small for benchmark sanity.
    brute_n = min(4_000, args.n_points)
    small1, small2 = cat1[:brute_n], cat2[:brute_n]
    t_brute = _bench(lambda: torch.cdist(small2, small1).min(dim=1), runs=args.runs)
    t_small = _bench(lambda: match_kdtree(small1, small2, args.radius, num_threads=1),
                     runs=args.runs)
    results.append(
        {
            "operation": "brute_force_baseline",
            "ndim": args.ndim,
            "n_points": brute_n,
            "seconds": t_brute,
            "ratio_brute_vs_kdtree": t_brute / t_small,
        }
    )

    for row in results:
        line = ", ".join(f"{k}={v}" for k, v in row.items())
        print(line)

    args.json_out.parent.mkdir(parents=True, exist_ok=True)
    args.json_out.write_text(json.dumps(results, indent=2), encoding="utf-8")
    print(f"\nJSON: {args.json_out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
