from __future__ import annotations

from pathlib import Path

import numpy as np


def plot_path_overlay(
    out_path: Path,
    unary: np.ndarray,
    path: np.ndarray,
    refined: np.ndarray | None = None,
    *,
    title: str = "",
) -> None:
    """
    Minimum-intensity projection of the cost volume along z with the grid
    path (and optionally the refined curve) drawn in x/y.
    """
    import matplotlib.pyplot as plt

    volume = unary if unary.ndim == 3 else unary[:, :, None]
    projection = np.min(volume, axis=2)

    fig, ax = plt.subplots(figsize=(7.0, 7.0), dpi=120)
    # rows of the image are y, columns are x
    ax.imshow(projection.T, origin="lower", cmap="viridis", interpolation="nearest")
    ax.plot(
        path[:, 0],
        path[:, 1],
        "o-",
        color="#ff7f0e",
        linewidth=1.5,
        markersize=3,
        label="grid path",
    )
    if refined is not None:
        ax.plot(
            refined[:, 0],
            refined[:, 1],
            "-",
            color="#d62728",
            linewidth=2.0,
            label="refined",
        )
    ax.scatter(
        path[:1, 0],
        path[:1, 1],
        color="white",
        edgecolor="black",
        zorder=3,
        label="start",
    )
    ax.scatter(path[-1:, 0], path[-1:, 1], color="black", zorder=3, label="end")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    if title:
        ax.set_title(title)
    ax.legend(loc="best")
    fig.tight_layout()
    fig.savefig(out_path, dpi=160)
