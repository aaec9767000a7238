from __future__ import annotations

import argparse
import csv
import json
from pathlib import Path

import matplotlib
import numpy as np

from .plots import plot_cost_history, plot_path_overlay, plot_run_summary

REQUIRED_FIELDS = [
    "iteration",
    "cost",
]
OPTIONAL_FIELDS = [
    "cost_change",
    "step_norm",
    "grad_norm",
    "elapsed_s",
]


def read_metrics(csv_path: Path) -> dict[str, np.ndarray]:
    with csv_path.open(newline="") as csv_file:
        reader = csv.DictReader(csv_file)
        if reader.fieldnames is None:
            raise ValueError(f"{csv_path.name} is missing a header row")
        missing = [field for field in REQUIRED_FIELDS if field not in reader.fieldnames]
        if missing:
            raise ValueError(f"{csv_path.name} missing columns: {', '.join(missing)}")
        optional = [field for field in OPTIONAL_FIELDS if field in reader.fieldnames]
        rows = list(reader)

    if not rows:
        raise ValueError(f"{csv_path.name} has no data rows")

    iterations = np.array([int(row["iteration"]) for row in rows], dtype=np.int32)
    order = np.argsort(iterations)

    def col_float(name: str) -> np.ndarray:
        return np.array([float(row[name]) for row in rows], dtype=np.float64)[order]

    data = {
        "iteration": iterations[order],
        "cost": col_float("cost"),
    }
    for name in optional:
        data[name] = col_float(name)
    return data


def plot_metrics(
    csv_path: Path,
    out_dir: Path,
    prefix: str,
    show: bool,
    start_iteration: int | None,
) -> list[Path]:
    if not show:
        matplotlib.use("Agg")
    data = read_metrics(csv_path)
    out_dir.mkdir(parents=True, exist_ok=True)

    suffix = ""
    if start_iteration is not None:
        mask = data["iteration"] >= start_iteration
        if not np.any(mask):
            raise ValueError(f"No rows with iteration >= {start_iteration}")
        data = {key: val[mask] for key, val in data.items()}
        suffix = f"_from_iter{start_iteration}"

    written: list[Path] = []
    metadata_path = csv_path.with_name("metadata.json")
    if metadata_path.exists():
        metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
        summary_path = out_dir / f"{prefix}{suffix}_run_summary.png"
        plot_run_summary(summary_path, "Run Summary", csv_path.parent, metadata)
        written.append(summary_path)

    history_path = out_dir / f"{prefix}{suffix}_cost_history.png"
    plot_cost_history(
        history_path,
        data["iteration"],
        data["cost"],
        data.get("step_norm"),
    )
    written.append(history_path)

    result_path = csv_path.with_name("result.npz")
    problem_path = csv_path.with_name("problem.npz")
    if result_path.exists() and problem_path.exists():
        with np.load(result_path) as result, np.load(problem_path) as problem:
            refined = None
            if "refined_points" in result.files:
                refined = np.asarray(result["refined_points"])
            overlay_path = out_dir / f"{prefix}_path_overlay.png"
            plot_path_overlay(
                overlay_path,
                np.asarray(problem["unary"]),
                np.asarray(result["path"]),
                refined,
                title=f"cost={float(result['cost']):.6g}",
            )
            written.append(overlay_path)

    if show:
        import matplotlib.pyplot as plt

        plt.show()
    return written


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--input", required=True, help="Path to refine_metrics.csv")
    ap.add_argument(
        "--out-dir",
        default=None,
        help="Output directory for plots (defaults to CSV directory)",
    )
    ap.add_argument(
        "--prefix",
        default=None,
        help="Output filename prefix (defaults to CSV stem)",
    )
    ap.add_argument("--show", action="store_true", help="Show plots interactively")
    ap.add_argument(
        "--start-iteration",
        type=int,
        default=None,
        help="Only plot rows with iteration >= this value",
    )
    args = ap.parse_args()

    csv_path = Path(args.input)
    out_dir = Path(args.out_dir) if args.out_dir is not None else csv_path.parent
    prefix = args.prefix if args.prefix is not None else csv_path.stem

    plot_metrics(csv_path, out_dir, prefix, args.show, args.start_iteration)


if __name__ == "__main__":
    main()
