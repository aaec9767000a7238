from __future__ import annotations

from pathlib import Path

import numpy as np


def plot_cost_history(
    out_path: Path,
    iterations: np.ndarray,
    cost: np.ndarray,
    step_norm: np.ndarray | None = None,
) -> None:
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(8.5, 5.0), dpi=120)
    ax.plot(iterations, cost, label="cost", color="#1f77b4", linewidth=2.0)
    ax.set_xlabel("iteration")
    ax.set_ylabel("cost", color="#1f77b4")
    ax.tick_params(axis="y", labelcolor="#1f77b4")
    ax.grid(True, alpha=0.3)

    lines = ax.get_lines()
    if step_norm is not None:
        ax_step = ax.twinx()
        ax_step.semilogy(
            iterations,
            np.maximum(step_norm, 1e-16),
            label="step norm",
            color="#d62728",
            linewidth=1.5,
        )
        ax_step.set_ylabel("step norm", color="#d62728")
        ax_step.tick_params(axis="y", labelcolor="#d62728")
        lines = lines + ax_step.get_lines()

    labels = [str(line.get_label()) for line in lines]
    ax.legend(lines, labels, loc="best")
    fig.tight_layout()
    fig.savefig(out_path, dpi=160)
