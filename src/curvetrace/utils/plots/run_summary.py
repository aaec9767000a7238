from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def plot_run_summary(
    out_path: Path, title: str, run_dir: Path, metadata: dict[str, Any]
) -> None:
    import matplotlib.pyplot as plt

    lines = [
        f"run_dir: {run_dir}",
        "",
        "metadata.json:",
        *json.dumps(metadata, indent=2, sort_keys=True).splitlines(),
    ]
    fig, ax = plt.subplots(figsize=(8.5, 11.0), dpi=120)
    ax.axis("off")
    fig.suptitle(title, fontsize=12, y=0.98)
    ax.text(
        0.01,
        0.98,
        "\n".join(lines),
        va="top",
        ha="left",
        family="monospace",
        fontsize=8,
    )
    fig.tight_layout()
    fig.savefig(out_path, dpi=160)
