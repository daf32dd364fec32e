import argparse
import json
import os
from typing import Any, Dict, List, Optional

import jax
import numpy as np
from absl import logging

from gpu_hashtable import GpuHashTable
from gpu_hashtable_benchmarks.common import (
    make_workload,
    print_results_table,
    throughput_entry,
    timer,
    validate_results_schema,
)


def _chunks(array: np.ndarray, num_chunks: int) -> List[np.ndarray]:
    return [c for c in np.array_split(array, num_chunks) if c.size]


def benchmark_hashtable_insert(
    keys: np.ndarray,
    values: np.ndarray,
    num_chunks: int,
    initial_capacity: int,
    trials: int = 10,
):
    """Benchmarks chunked insertion into a fresh GpuHashTable, growth included."""

    def insert_op():
        table = GpuHashTable(initial_capacity)
        for key_chunk, value_chunk in zip(_chunks(keys, num_chunks), _chunks(values, num_chunks)):
            table.insert_batch(key_chunk, value_chunk)
        table.close()

    return timer(insert_op, trials)


def benchmark_hashtable_lookup(table: GpuHashTable, keys: np.ndarray, num_chunks: int, trials: int = 10):
    """Benchmarks chunked lookups, device-to-host transfer included."""

    def lookup_op():
        for key_chunk in _chunks(keys, num_chunks):
            table.get_batch(key_chunk)

    return timer(lookup_op, trials)


def benchmark_dict_insert(keys: np.ndarray, values: np.ndarray, trials: int = 10):
    """Benchmarks insertion into a standard Python dict."""
    key_list = keys.tolist()
    value_list = values.tolist()

    def insert_op():
        data_dict = {}
        for key, value in zip(key_list, value_list):
            data_dict[key] = value

    return timer(insert_op, trials, warmup=0)


def benchmark_dict_lookup(data_dict: Dict[int, int], keys: np.ndarray, trials: int = 10):
    """Benchmarks lookup from a standard Python dict."""
    key_list = keys.tolist()

    def lookup_op():
        return [data_dict.get(key) for key in key_list]

    return timer(lookup_op, trials, warmup=0)


def verify_lookups(table: GpuHashTable, keys: np.ndarray, values: np.ndarray, num_chunks: int) -> int:
    """Returns the number of keys whose looked-up value is wrong."""
    errors = 0
    for key_chunk, value_chunk in zip(_chunks(keys, num_chunks), _chunks(values, num_chunks)):
        errors += int(np.count_nonzero(table.get_batch(key_chunk) != value_chunk))
    return errors


def run_benchmarks(
    trials: int = 10,
    batch_sizes: Optional[List[int]] = None,
    num_chunks: int = 4,
    initial_capacity: int = 1024,
    output_path: str = "gpu_hashtable_benchmarks/results/hashtable_results.json",
):
    """Runs the full suite of hash table benchmarks and saves the results."""
    if batch_sizes is None:
        batch_sizes = [2**12, 2**14, 2**16]
    results: Dict[str, Any] = {"batch_sizes": batch_sizes, "gpu_hashtable": {}, "python": {}}

    print("Running GpuHashTable Benchmarks...")
    print(f"JAX backend: {jax.default_backend()}")
    print("JAX devices:", ", ".join([d.platform + ":" + d.device_kind for d in jax.devices()]))

    for num_keys in batch_sizes:
        print(f"  Keys: {num_keys} in {num_chunks} chunks")
        keys, values = make_workload(num_keys)

        insert_median, insert_iqr = benchmark_hashtable_insert(
            keys, values, num_chunks, initial_capacity, trials=trials
        )

        table = GpuHashTable(initial_capacity)
        for key_chunk, value_chunk in zip(_chunks(keys, num_chunks), _chunks(values, num_chunks)):
            table.insert_batch(key_chunk, value_chunk)
        errors = verify_lookups(table, keys, values, num_chunks)
        if errors:
            logging.warning("%d of %d lookups returned a wrong value", errors, num_keys)
        print(
            f"    capacity={table.capacity} used={table.used} "
            f"load_factor={table.load_factor:.3f} errors={errors}"
        )
        lookup_median, lookup_iqr = benchmark_hashtable_lookup(
            table, keys, num_chunks, trials=trials
        )
        table.close()

        results["gpu_hashtable"].setdefault("insert_ops_per_sec", []).append(
            throughput_entry(num_keys, insert_median, insert_iqr)
        )
        results["gpu_hashtable"].setdefault("lookup_ops_per_sec", []).append(
            throughput_entry(num_keys, lookup_median, lookup_iqr)
        )

        py_insert_median, py_insert_iqr = benchmark_dict_insert(keys, values, trials=trials)
        py_dict = dict(zip(keys.tolist(), values.tolist()))
        py_lookup_median, py_lookup_iqr = benchmark_dict_lookup(py_dict, keys, trials=trials)

        results["python"].setdefault("insert_ops_per_sec", []).append(
            throughput_entry(num_keys, py_insert_median, py_insert_iqr)
        )
        results["python"].setdefault("lookup_ops_per_sec", []).append(
            throughput_entry(num_keys, py_lookup_median, py_lookup_iqr)
        )

    validate_results_schema(results)
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(results, f, indent=4)

    print(f"Hash table benchmark results saved to {output_path}")
    print_results_table(results, "GpuHashTable Performance Results")
    return results


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="GpuHashTable benchmarks")
    parser.add_argument("--trials", type=int, default=10)
    parser.add_argument(
        "--batch-sizes",
        type=str,
        default="",
        help="Comma-separated total key counts (e.g. 4096,16384,65536)",
    )
    parser.add_argument("--num-chunks", type=int, default=4, help="Insert/lookup batches per run")
    parser.add_argument("--initial-capacity", type=int, default=1024)
    parser.add_argument(
        "--output",
        type=str,
        default="gpu_hashtable_benchmarks/results/hashtable_results.json",
    )
    args = parser.parse_args(argv)

    batch_sizes_arg: Optional[List[int]] = None
    if args.batch_sizes:
        batch_sizes_arg = [int(x.strip()) for x in args.batch_sizes.split(",") if x.strip()]

    return run_benchmarks(
        trials=args.trials,
        batch_sizes=batch_sizes_arg,
        num_chunks=args.num_chunks,
        initial_capacity=args.initial_capacity,
        output_path=args.output,
    )


if __name__ == "__main__":
    main()
