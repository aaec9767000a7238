from __future__ import annotations

import csv
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

REFINE_CSV_FIELDS = [
    "iteration",
    "cost",
    "cost_change",
    "step_norm",
    "grad_norm",
    "elapsed_s",
    "step_s",
]


@dataclass(frozen=True)
class RunDir:
    run_dir: Path
    result_path: Path
    refine_csv_path: Path


def init_run_dir(base_dir: Path, metadata: dict[str, Any]) -> RunDir:
    base_dir.mkdir(parents=True, exist_ok=True)
    now = time.localtime()
    timestamp = time.strftime("%Y%m%d_%H%M%S", now)
    nonce = time.time_ns() % 1_000_000_000
    run_id = f"run_{timestamp}_{nonce:09d}"
    run_dir = base_dir / run_id
    while run_dir.exists():
        nonce = (nonce + 1) % 1_000_000_000
        run_id = f"run_{timestamp}_{nonce:09d}"
        run_dir = base_dir / run_id
    run_dir.mkdir(parents=True, exist_ok=False)

    metadata_out = dict(metadata)
    metadata_out["run_id"] = run_id
    metadata_out["created_at"] = time.strftime("%Y-%m-%dT%H:%M:%S", now)
    (run_dir / "metadata.json").write_text(
        json.dumps(metadata_out, indent=2, sort_keys=True), encoding="utf-8"
    )
    print(f"run dir={run_dir}")

    return RunDir(
        run_dir=run_dir,
        result_path=run_dir / "result.npz",
        refine_csv_path=run_dir / "refine_metrics.csv",
    )


def append_metrics_csv(
    csv_path: Path,
    fieldnames: list[str],
    row: dict[str, Any],
) -> None:
    write_header = not csv_path.exists()
    with csv_path.open("a", newline="") as csv_file:
        writer = csv.DictWriter(csv_file, fieldnames=fieldnames)
        if write_header:
            writer.writeheader()
        writer.writerow(row)


def save_result_npz(
    result_path: Path,
    path: np.ndarray,
    cost: float,
    *,
    evaluations: int,
    mode: str,
    refined_points: np.ndarray | None = None,
    refined_cost: float | None = None,
) -> Path:
    arrays: dict[str, Any] = {
        "path": path,
        "cost": cost,
        "evaluations": evaluations,
        "mode": mode,
    }
    if refined_points is not None:
        arrays["refined_points"] = refined_points
        arrays["refined_cost"] = float("nan") if refined_cost is None else refined_cost
    np.savez_compressed(result_path, **arrays)
    return result_path


def load_problem_npz(problem_path: Path) -> dict[str, np.ndarray]:
    """
    Read an extraction problem. Required keys: mesh_map, unary, connectivity.
    Optional keys: voxel_dims, start_points, end_points.
    """
    with np.load(problem_path) as data:
        arrays = {key: np.asarray(data[key]) for key in data.files}
    missing = [k for k in ("mesh_map", "unary", "connectivity") if k not in arrays]
    if missing:
        raise ValueError(f"{problem_path} missing arrays: {', '.join(missing)}")
    return arrays
