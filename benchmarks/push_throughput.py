#!/usr/bin/env python3
# Copyright 2025 Maida.AI
# SPDX-License-Identifier: Apache-2.0
"""Push throughput benchmark against the in-process SDB daemon.

Every chunk waits for its acknowledgement before the next one is sent, so
throughput is bounded by the local round-trip time times the number of
4 KiB frames.

Usage
-----
$ python benchmarks/push_throughput.py --runs 20 --sizes 4096 65536 1048576
"""
from __future__ import annotations

import argparse
import os
import tempfile
import time
from statistics import quantiles

from rich import box
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from tinysdb import Client, Server


def bench_push(server: Server, size: int, runs: int) -> dict[str, float]:
    """Push a random file of ``size`` bytes ``runs`` times over one connection."""
    latencies = []
    errors = 0
    with tempfile.TemporaryDirectory() as tmp:
        with Client.from_address("127.0.0.1", server.port) as client:
            client.connect()
            for run_num in tqdm(range(runs), desc=f"push {size} B"):
                payload = os.urandom(size)
                path = os.path.join(tmp, f"payload-{run_num}.bin")
                with open(path, "wb") as f:
                    f.write(payload)
                remote = f"/tmp/bench/{run_num}.bin"

                start = time.perf_counter()
                client.push(path, remote, run_num + 1)
                latencies.append(time.perf_counter() - start)
                os.unlink(path)

                if server.files.get(remote) != payload:
                    errors += 1
                server.files.pop(remote, None)

    lat_ms = [x * 1e3 for x in latencies]
    p50 = quantiles(lat_ms, n=100)[49] if len(lat_ms) > 1 else lat_ms[0]
    throughput = size * len(latencies) / sum(latencies) / (2**20)
    return {"p50": p50, "thr": throughput, "errors": errors}


def print_table(results: dict[int, dict[str, float]]):
    """Print benchmark results table."""
    console = Console()
    table = Table(title="SDB push throughput", box=box.SIMPLE_HEAVY)
    table.add_column("Size (bytes)")
    table.add_column("p50 (ms, ↓)")
    table.add_column("Throughput (MiB/s, ↑)")
    table.add_column("Mismatches")

    for size, v in results.items():
        color = "green" if v["errors"] == 0 else "red"
        table.add_row(str(size), f"{v['p50']:.2f}", f"{v['thr']:.1f}", f"[{color}]{v['errors']}[/{color}]")

    console.print(table)


def main():
    """Main benchmark function."""
    parser = argparse.ArgumentParser(description="Benchmark SDB file push")
    parser.add_argument("--runs", type=int, default=20, help="Pushes per size")
    parser.add_argument("--sizes", type=int, nargs="+", default=[4096, 65536, 1 << 20], help="File sizes in bytes")
    args = parser.parse_args()

    server = Server("127.0.0.1", 0)
    server.start()
    try:
        results = {size: bench_push(server, size, args.runs) for size in args.sizes}
    finally:
        server.stop()

    print_table(results)


if __name__ == "__main__":
    main()
