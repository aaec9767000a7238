from __future__ import annotations

import numpy as np

from . import debug


def describe_array(name: str, arr: np.ndarray) -> str:
    if arr.size == 0:
        finite_all = True
        min_val = float("nan")
        max_val = float("nan")
    else:
        finite_mask = np.isfinite(arr)
        finite_all = bool(finite_mask.all())
        if finite_mask.any():
            finite_vals = arr[finite_mask]
            min_val = float(np.min(finite_vals))
            max_val = float(np.max(finite_vals))
        else:
            min_val = float("nan")
            max_val = float("nan")
    return (
        f"{name}: shape={arr.shape} dtype={arr.dtype} "
        f"finite_all={finite_all} min={min_val:.6g} max={max_val:.6g}"
    )


def log_array(name: str, arr: np.ndarray, *, enabled: bool = False) -> None:
    if not (enabled or debug.is_verbose()):
        return
    debug.log_if(enabled, describe_array(name, arr))
