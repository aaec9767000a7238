from __future__ import annotations

import argparse
import shutil
from pathlib import Path
from typing import Protocol, cast

import numpy as np

from .refine import RefinementResult, refine_curve
from .run_io import init_run_dir, load_problem_npz, save_result_npz
from .segmentation import extract_curve
from .settings import RefinementOptions, RegularizationSettings, SearchOptions
from .utils import debug, debug_helpers


class CliArgs(Protocol):
    input: str
    out_dir: str
    length: float
    curvature: float
    curvature_power: float
    torsion: float
    torsion_power: float
    max_queue: int
    progress: bool
    refine: bool
    method: str
    factorization: str
    max_iter: int
    plot: bool
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Extract a minimum-cost curve from an .npz cost volume"
    )
    ap.add_argument(
        "--input",
        required=True,
        help="Problem .npz with mesh_map, unary, connectivity "
        "(optional: voxel_dims, start_points, end_points)",
    )
    ap.add_argument(
        "--out-dir", default="runs", help="Base directory for timestamped run output"
    )

    # Regularization
    ap.add_argument("--length", type=float, default=0.0, help="Length penalty")
    ap.add_argument("--curvature", type=float, default=0.0, help="Curvature penalty")
    ap.add_argument("--curvature-power", type=float, default=2.0)
    ap.add_argument("--torsion", type=float, default=0.0, help="Torsion penalty")
    ap.add_argument("--torsion-power", type=float, default=2.0)

    # Search
    ap.add_argument(
        "--max-queue",
        type=int,
        default=1000 * 1000 * 1000,
        help="Maximum number of distinct states labelled by the search",
    )
    ap.add_argument("--progress", action="store_true", help="Show a progress bar")

    # Refinement
    ap.add_argument(
        "--refine", action="store_true", help="Refine the grid path continuously"
    )
    ap.add_argument("--method", default="lbfgs", help="lbfgs or newton")
    ap.add_argument(
        "--factorization", default="iterative", help="iterative or bkp (newton only)"
    )
    ap.add_argument("--max-iter", type=int, default=1000)

    ap.add_argument("--plot", action="store_true", help="Write diagnostic plots")
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logs")
    return ap


def _point_sets(arrays: dict[str, np.ndarray], key: str) -> list[np.ndarray] | None:
    if key not in arrays:
        return None
    return [np.asarray(arrays[key])]


def run(argv: list[str] | None = None) -> Path:
    args = cast(CliArgs, build_parser().parse_args(argv))
    debug.set_verbose(args.verbose)

    problem_path = Path(args.input)
    arrays = load_problem_npz(problem_path)
    voxel_dims = None
    if "voxel_dims" in arrays:
        voxel_dims = tuple(float(v) for v in np.ravel(arrays["voxel_dims"]))
    if debug.is_verbose():
        debug_helpers.log_array("mesh_map", arrays["mesh_map"])
        debug_helpers.log_array("unary", arrays["unary"])
        debug_helpers.log_array("connectivity", arrays["connectivity"])

    settings = RegularizationSettings(
        length_penalty=args.length,
        curvature_penalty=args.curvature,
        curvature_power=args.curvature_power,
        torsion_penalty=args.torsion,
        torsion_power=args.torsion_power,
        verbose=args.verbose,
    )
    search_options = SearchOptions(
        maximum_queue_size=args.max_queue, print_progress=args.progress
    )
    refine_options = None
    if args.refine:
        refine_options = RefinementOptions(
            method=args.method,  # type: ignore[arg-type]
            factorization=args.factorization,  # type: ignore[arg-type]
            maximum_iterations=args.max_iter,
            verbose=args.verbose,
        )

    out = init_run_dir(
        Path(args.out_dir),
        {
            "input": str(problem_path),
            "length_penalty": settings.length_penalty,
            "curvature_penalty": settings.curvature_penalty,
            "curvature_power": settings.curvature_power,
            "torsion_penalty": settings.torsion_penalty,
            "torsion_power": settings.torsion_power,
            "maximum_queue_size": int(args.max_queue),
            "voxel_dims": list(voxel_dims) if voxel_dims is not None else None,
            "refine": bool(args.refine),
            "method": refine_options.method.value if refine_options else None,
            "factorization": (
                refine_options.factorization.value if refine_options else None
            ),
            "maximum_iterations": int(args.max_iter),
            "shapes": {
                "mesh_map": list(arrays["mesh_map"].shape),
                "unary": list(arrays["unary"].shape),
                "connectivity": list(arrays["connectivity"].shape),
            },
        },
    )
    shutil.copyfile(problem_path, out.run_dir / "problem.npz")

    result = extract_curve(
        arrays["mesh_map"],
        arrays["unary"],
        arrays["connectivity"],
        settings,
        search_options,
        start_sets=_point_sets(arrays, "start_points"),
        end_sets=_point_sets(arrays, "end_points"),
        voxel_dims=voxel_dims,
    )
    print(
        f"mode={result.mode.value} cost={result.cost:.6g} points={result.path.shape[0]} "
        f"evaluations={result.evaluations} time={result.run_time:.3f}s"
    )

    refined: RefinementResult | None = None
    if refine_options is not None:
        refined = refine_curve(
            result.path,
            np.asarray(arrays["unary"], dtype=np.float64),
            settings,
            refine_options,
            voxel_dims=voxel_dims,
            metrics_csv=out.refine_csv_path,
        )
        print(
            f"refined cost={refined.cost:.6g} (from {refined.initial_cost:.6g}) "
            f"iterations={refined.iterations} termination={refined.termination.value}"
        )

    save_result_npz(
        out.result_path,
        result.path,
        result.cost,
        evaluations=result.evaluations,
        mode=result.mode.value,
        refined_points=refined.points if refined is not None else None,
        refined_cost=refined.cost if refined is not None else None,
    )

    if args.plot:
        import matplotlib

        matplotlib.use("Agg")
        from .utils.plot_metrics import plot_metrics
        from .utils.plots import plot_path_overlay

        if out.refine_csv_path.exists():
            plot_metrics(out.refine_csv_path, out.run_dir, "refine", False, None)
        else:
            plot_path_overlay(
                out.run_dir / "path_overlay.png",
                np.asarray(arrays["unary"]),
                result.path,
                title=f"cost={result.cost:.6g}",
            )

    return out.run_dir


def main() -> None:
    run()


if __name__ == "__main__":
    main()
