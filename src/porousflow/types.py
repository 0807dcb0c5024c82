import typing

import numpy as np
from scipy.sparse import csr_matrix
from typing_extensions import Literal, TypeAlias

if typing.TYPE_CHECKING:
    from porousflow.model import Model


__all__ = [
    "FloatOrArray",
    "Vector",
    "SolutionArray",
    "LinearSystem",
    "BoundaryKind",
    "Clock",
    "NonlinearSolver",
    "Discretization",
]


FloatOrArray = typing.Union[float, np.typing.NDArray[np.floating]]
Vector: TypeAlias = np.typing.NDArray[np.floating]
"""A position, normal or gravity vector with one entry per spatial dimension."""
SolutionArray: TypeAlias = np.typing.NDArray[np.floating]
"""Primary variables of all cells, shaped `(num_cells, num_eq)`."""
LinearSystem: TypeAlias = typing.Tuple[csr_matrix, np.typing.NDArray[np.floating]]
"""A Jacobian matrix and the residual vector it was linearized at."""

BoundaryKind = Literal["no_flow", "mass_rate", "free_flow"]
"""Type of condition applied on a boundary segment."""


@typing.runtime_checkable
class Clock(typing.Protocol):
    """What the time integration controller needs to know about simulated time."""

    time_step_size: float

    @property
    def time_step_index(self) -> int: ...

    def set_time_step_size(self, time_step_size: float) -> None: ...

    def episode_will_be_over(self) -> bool: ...

    def will_be_finished(self) -> bool: ...


@typing.runtime_checkable
class NonlinearSolver(typing.Protocol):
    """Phase timings and step size heuristics of a nonlinear solver."""

    @property
    def assemble_time(self) -> float: ...

    @property
    def solve_time(self) -> float: ...

    @property
    def update_time(self) -> float: ...

    @property
    def num_iterations(self) -> int: ...

    def apply(self, model: "Model") -> bool: ...

    def suggest_time_step_size(self, time_step_size: float) -> float: ...


@typing.runtime_checkable
class Discretization(typing.Protocol):
    """A spatial discretization holding the current and previous time levels."""

    def update(self, solver: NonlinearSolver) -> bool: ...

    def advance_time_level(self) -> None: ...
