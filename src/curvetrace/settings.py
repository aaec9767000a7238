"""Query configuration: regularization weights, search caps and solver choice.

Every option is an explicit field validated when the object is built, so a
bad configuration fails before any search or optimization work starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import InvalidInputError, UnsupportedConfigurationError


class MeshLabel(IntEnum):
    DISALLOWED = 0
    ALLOWED = 1
    START = 2
    END = 3


class GraphMode(Enum):
    NODE = "node"
    EDGE = "edge"
    EDGEPAIR = "edgepair"


class SolverMethod(Enum):
    LBFGS = "lbfgs"
    NEWTON = "newton"
    NELDER_MEAD = "nelder_mead"


class FactorizationMethod(Enum):
    ITERATIVE = "iterative"
    DENSE = "bkp"


class UnaryType(Enum):
    LINEAR = "linear"
    TRILINEAR = "trilinear"


def _parse_enum(enum_cls: type[Enum], value: object, what: str) -> Enum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(repr(m.value) for m in enum_cls)
        raise InvalidInputError(
            f"Unknown {what} {value!r}; expected one of {choices}"
        ) from None


@dataclass(frozen=True)
class RegularizationSettings:
    length_penalty: float = 0.0
    curvature_penalty: float = 0.0
    curvature_power: float = 2.0
    torsion_penalty: float = 0.0
    torsion_power: float = 2.0
    regularization_radius: float = 1.0
    verbose: bool = False

    def __post_init__(self) -> None:
        for name in (
            "length_penalty",
            "curvature_penalty",
            "curvature_power",
            "torsion_penalty",
            "torsion_power",
            "regularization_radius",
        ):
            object.__setattr__(self, name, float(getattr(self, name)))
        if self.length_penalty < 0:
            raise InvalidInputError("length_penalty must be >= 0")
        if self.curvature_penalty < 0:
            raise InvalidInputError("curvature_penalty must be >= 0")
        if self.torsion_penalty < 0:
            raise InvalidInputError("torsion_penalty must be >= 0")
        if self.curvature_power <= 0:
            raise InvalidInputError("curvature_power must be positive")
        if self.torsion_power <= 0:
            raise InvalidInputError("torsion_power must be positive")
        if self.regularization_radius <= 0:
            raise InvalidInputError("regularization_radius must be positive")

    @property
    def mode(self) -> GraphMode:
        if self.torsion_penalty > 0:
            return GraphMode.EDGEPAIR
        if self.curvature_penalty > 0:
            return GraphMode.EDGE
        return GraphMode.NODE


@dataclass(frozen=True)
class SearchOptions:
    maximum_queue_size: int = 1000 * 1000 * 1000
    store_visit_time: bool = False
    store_visit_order: bool = False
    print_progress: bool = False
    num_threads: int = -1

    def __post_init__(self) -> None:
        if self.maximum_queue_size <= 0:
            raise InvalidInputError("maximum_queue_size must be positive")
        if self.store_visit_time:
            raise UnsupportedConfigurationError("store_visit_time is not supported")


@dataclass(frozen=True)
class RefinementOptions:
    method: SolverMethod = SolverMethod.LBFGS
    factorization: FactorizationMethod = FactorizationMethod.ITERATIVE
    unary_type: UnaryType = UnaryType.LINEAR
    maximum_iterations: int = 1000
    function_improvement_tolerance: float = 1e-12
    argument_improvement_tolerance: float = 1e-12
    margin: float = 0.1
    verbose: bool = False

    def __post_init__(self) -> None:
        method = _parse_enum(SolverMethod, self.method, "local solver")
        factorization = _parse_enum(
            FactorizationMethod, self.factorization, "factorization method"
        )
        unary_type = _parse_enum(UnaryType, self.unary_type, "unary type")
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "factorization", factorization)
        object.__setattr__(self, "unary_type", unary_type)

        if method is SolverMethod.NELDER_MEAD:
            raise UnsupportedConfigurationError(
                "Nelder-Mead is not a supported local solver"
            )
        if unary_type is UnaryType.TRILINEAR:
            raise UnsupportedConfigurationError("Trilinear data term is not supported")
        if self.maximum_iterations <= 0:
            raise InvalidInputError("maximum_iterations must be positive")
        if self.function_improvement_tolerance < 0:
            raise InvalidInputError("function_improvement_tolerance must be >= 0")
        if self.argument_improvement_tolerance < 0:
            raise InvalidInputError("argument_improvement_tolerance must be >= 0")
        if not 0.0 <= self.margin < 0.5:
            raise InvalidInputError("margin must be in [0, 0.5)")
