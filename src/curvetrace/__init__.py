from __future__ import annotations

import jax

jax.config.update("jax_enable_x64", True)

from .cost_model import CostModel  # noqa: E402
from .data_term import PiecewiseConstantField  # noqa: E402
from .decode import decode_path, encode_path  # noqa: E402
from .errors import (  # noqa: E402
    CurveExtractionError,
    InvalidInputError,
    ResourceLimitExceededError,
    SearchExhaustedError,
    UnsupportedConfigurationError,
)
from .grid import Connectivity, GridIndexer, make_connectivity  # noqa: E402
from .refine import RefinementResult, Termination, refine_curve  # noqa: E402
from .segmentation import ExtractionResult, evaluate_path_cost, extract_curve  # noqa: E402
from .settings import (  # noqa: E402
    FactorizationMethod,
    GraphMode,
    MeshLabel,
    RefinementOptions,
    RegularizationSettings,
    SearchOptions,
    SolverMethod,
    UnaryType,
)
from .shortest_path import SearchResult, SearchStatus, shortest_path  # noqa: E402

__all__ = [
    "Connectivity",
    "CostModel",
    "CurveExtractionError",
    "ExtractionResult",
    "FactorizationMethod",
    "GraphMode",
    "GridIndexer",
    "InvalidInputError",
    "MeshLabel",
    "PiecewiseConstantField",
    "RefinementOptions",
    "RefinementResult",
    "RegularizationSettings",
    "ResourceLimitExceededError",
    "SearchExhaustedError",
    "SearchOptions",
    "SearchResult",
    "SearchStatus",
    "SolverMethod",
    "Termination",
    "UnaryType",
    "UnsupportedConfigurationError",
    "decode_path",
    "encode_path",
    "evaluate_path_cost",
    "extract_curve",
    "make_connectivity",
    "refine_curve",
    "shortest_path",
]
