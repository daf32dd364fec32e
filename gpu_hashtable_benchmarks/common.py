import time
from typing import Any, Callable, Dict, Tuple

import numpy as np
from rich.console import Console
from rich.table import Table

from gpu_hashtable import EMPTY_KEY, jenkins_hash_host

IMPLEMENTATIONS = ("gpu_hashtable", "python")


def human_format(num, pos=None):
    num = float("{:.3g}".format(num))
    magnitude = 0
    while abs(num) >= 1000:
        magnitude += 1
        num /= 1000.0
    return "{}{}".format(
        "{:f}".format(num).rstrip("0").rstrip("."), ["", "K", "M", "B", "T"][magnitude]
    )


def make_workload(num_keys: int, seed: int = 0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Distinct random keys and values derived from them.

    Values are the host hash of each key, so a lookup result can be checked
    without keeping a reference dict around.
    """
    rng = np.random.default_rng(seed)
    keys = rng.choice(EMPTY_KEY, size=num_keys, replace=False).astype(np.uint32)
    values = jenkins_hash_host(keys)
    return keys, values


def validate_results_schema(results: Dict[str, Any]) -> None:
    """
    Validates that the results dictionary has consistent shapes and symmetric ops.

    Requirements:
      - keys: batch_sizes plus one dict per implementation
      - every implementation reports the same operations
      - for every operation, list lengths equal len(batch_sizes)
      - entries are either numbers or dicts with {median, iqr}
    Raises AssertionError on violation.
    """
    assert isinstance(results, dict), "results must be a dict"
    assert "batch_sizes" in results and isinstance(
        results["batch_sizes"], list
    ), "results must contain a list 'batch_sizes'"
    batch_sizes = results["batch_sizes"]
    for impl in IMPLEMENTATIONS:
        assert impl in results and isinstance(
            results[impl], dict
        ), f"results must contain dict '{impl}'"

    ops = set(results[IMPLEMENTATIONS[0]].keys())
    for impl in IMPLEMENTATIONS[1:]:
        other = set(results[impl].keys())
        assert ops == other, f"operation keys mismatch between implementations: {ops} vs {other}"

    def _validate_entry(e: Any) -> None:
        if isinstance(e, (int, float)):
            return
        assert (
            isinstance(e, dict) and "median" in e and "iqr" in e
        ), "each entry must be a number or a dict with 'median' and 'iqr'"

    for impl in IMPLEMENTATIONS:
        for op in ops:
            entries = results[impl][op]
            assert isinstance(entries, list), f"'{op}' entries must be lists"
            assert len(entries) == len(
                batch_sizes
            ), f"{impl}['{op}'] length {len(entries)} != len(batch_sizes) {len(batch_sizes)}"
            for e in entries:
                _validate_entry(e)


def timer(func: Callable[[], Any], trials: int = 10, warmup: int = 1) -> Tuple[float, float]:
    """
    Time ``func`` over several trials and return median and IQR in seconds.

    ``func`` must block until its work is done; the hash table's host API
    already synchronizes before returning.
    """
    for _ in range(warmup):
        func()

    times = []
    for _ in range(trials):
        start_time = time.perf_counter()
        func()
        end_time = time.perf_counter()
        times.append(end_time - start_time)

    times = np.array(times)
    median_time = np.median(times)
    q75, q25 = np.percentile(times, [75, 25])
    iqr_time = q75 - q25

    return median_time, iqr_time


def throughput_entry(num_items: int, median: float, iqr: float) -> Dict[str, float]:
    return {"median": num_items / median, "iqr": num_items * iqr / (median**2)}


def print_results_table(results: Dict[str, Any], title: str):
    """
    Displays benchmark results in a formatted table using the rich library.
    """
    console = Console()
    table = Table(title=title, show_header=True, header_style="bold magenta")

    table.add_column("Keys", justify="right", style="cyan")
    table.add_column("Operation", style="green")
    table.add_column("Implementation", style="yellow")
    table.add_column("Ops/Sec (Median)", justify="right", style="bold blue")
    table.add_column("IQR", justify="right", style="dim blue")

    batch_sizes = results.get("batch_sizes", [])
    operations = list(results.get(IMPLEMENTATIONS[0], {}).keys())

    for i, size in enumerate(batch_sizes):
        for op in operations:
            op_name = op.replace("_ops_per_sec", "")
            for j, impl in enumerate(IMPLEMENTATIONS):
                data = results.get(impl, {}).get(op, [])[i]
                if isinstance(data, dict):
                    perf, iqr = data["median"], data["iqr"]
                else:
                    perf, iqr = data, 0
                table.add_row(
                    f"{size:,}" if j == 0 else "",
                    op_name,
                    impl,
                    human_format(perf),
                    f"±{human_format(iqr)}",
                )
        if i < len(batch_sizes) - 1:
            table.add_row("", "", "", "", "", end_section=True)

    console.print(table)
