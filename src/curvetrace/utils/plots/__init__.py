from .cost_history import plot_cost_history
from .path_overlay import plot_path_overlay
from .run_summary import plot_run_summary

__all__ = [
    "plot_cost_history",
    "plot_path_overlay",
    "plot_run_summary",
]
