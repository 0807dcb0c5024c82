"""
Shared pytest fixtures for the test suite.

Provides scripted stand-ins for the clock, model and nonlinear solver used by
the time integration controller, and small closed-box problems for the
immiscible model and the simulator.
"""

import typing

import numpy as np
import pytest

from porousflow.boundary_conditions import BoundaryCondition
from porousflow.config import Config
from porousflow.controller import ConvergenceBudget, TimeIntegrationController
from porousflow.grid import CubeGrid
from porousflow.immiscible import ImmiscibleModel
from porousflow.materials import LinearMaterial
from porousflow.problem import Problem
from porousflow.timing import CumulativeTiming


# =============================================================================
# Scripted collaborators for the time integration controller
# =============================================================================


class FakeClock:
    """Clock with fixed lookahead answers that records every step size set."""

    def __init__(
        self,
        time_step_size: float,
        episode_will_be_over: bool = False,
        will_be_finished: bool = False,
        time_step_index: int = 0,
    ) -> None:
        self.time_step_size = time_step_size
        self.time_step_index = time_step_index
        self._episode_will_be_over = episode_will_be_over
        self._will_be_finished = will_be_finished
        self.history: typing.List[float] = []

    def set_time_step_size(self, time_step_size: float) -> None:
        self.history.append(time_step_size)
        self.time_step_size = time_step_size

    def episode_will_be_over(self) -> bool:
        return self._episode_will_be_over

    def will_be_finished(self) -> bool:
        return self._will_be_finished


class ScriptedSolver:
    """
    Nonlinear solver whose attempts converge according to a script.

    Attempt `k` reports assemble/solve/update times of `(k+1)`, `10*(k+1)` and
    `100*(k+1)` seconds so that accumulated totals identify the attempts.
    """

    def __init__(
        self,
        clock: FakeClock,
        outcomes: typing.Sequence[bool],
        suggestion: typing.Optional[float] = None,
        iterations: int = 5,
    ) -> None:
        self.clock = clock
        self.outcomes = list(outcomes)
        self.suggestion = suggestion
        self.attempted_sizes: typing.List[float] = []
        self.assemble_time = 0.0
        self.solve_time = 0.0
        self.update_time = 0.0
        self.num_iterations = 0
        self._iterations = iterations

    @property
    def num_attempts(self) -> int:
        return len(self.attempted_sizes)

    def apply(self, model: typing.Any) -> bool:
        attempt = self.num_attempts
        if attempt >= len(self.outcomes):
            raise AssertionError("More attempts than scripted")
        self.attempted_sizes.append(self.clock.time_step_size)
        self.assemble_time = 1.0 * (attempt + 1)
        self.solve_time = 10.0 * (attempt + 1)
        self.update_time = 100.0 * (attempt + 1)
        self.num_iterations = self._iterations
        return self.outcomes[attempt]

    def suggest_time_step_size(self, time_step_size: float) -> float:
        if self.suggestion is None:
            return time_step_size
        return self.suggestion


class ScriptedModel:
    """Discretization that delegates every update to the solver's script."""

    def __init__(self) -> None:
        self.updates = 0
        self.advanced = 0

    def update(self, solver: ScriptedSolver) -> bool:
        self.updates += 1
        return solver.apply(self)

    def advance_time_level(self) -> None:
        self.advanced += 1


class ControllerHarness(typing.NamedTuple):
    controller: TimeIntegrationController
    clock: FakeClock
    solver: ScriptedSolver
    model: ScriptedModel
    timing: CumulativeTiming


@pytest.fixture
def make_controller() -> typing.Callable[..., ControllerHarness]:
    """Factory building a controller around scripted collaborators."""

    def _make(
        outcomes: typing.Sequence[bool],
        time_step_size: float = 8.0,
        min_time_step_size: float = 1.0,
        max_time_step_size: float = 100.0,
        max_divisions: int = 3,
        episode_will_be_over: bool = False,
        will_be_finished: bool = False,
        suggestion: typing.Optional[float] = None,
        time_step_index: int = 0,
        timing: typing.Optional[CumulativeTiming] = None,
    ) -> ControllerHarness:
        clock = FakeClock(
            time_step_size,
            episode_will_be_over=episode_will_be_over,
            will_be_finished=will_be_finished,
            time_step_index=time_step_index,
        )
        solver = ScriptedSolver(clock, outcomes, suggestion=suggestion)
        model = ScriptedModel()
        timing = timing if timing is not None else CumulativeTiming()
        controller = TimeIntegrationController(
            clock=clock,
            model=model,
            solver=solver,
            budget=ConvergenceBudget(
                max_divisions=max_divisions,
                min_time_step_size=min_time_step_size,
                max_time_step_size=max_time_step_size,
            ),
            timing=timing,
        )
        return ControllerHarness(controller, clock, solver, model, timing)

    return _make


# =============================================================================
# Closed-box problems
# =============================================================================


class ClosedBoxProblem(Problem):
    """
    Two-phase problem without any flow across the boundary.

    The non-wetting saturation is `left_saturation` in the left half of the
    domain and `right_saturation` in the right half. The wetting pressure is
    uniform.
    """

    def __init__(
        self,
        grid: CubeGrid,
        config: Config,
        left_saturation: float = 0.4,
        right_saturation: float = 0.2,
        pressure: float = 1e5,
        material_law: typing.Optional[LinearMaterial] = None,
        permeability: float = 1e-10,
        porosity: float = 0.3,
    ) -> None:
        super().__init__(grid, config)
        self.left_saturation = left_saturation
        self.right_saturation = right_saturation
        self.pressure = pressure
        self._material_law = (
            material_law
            if material_law is not None
            else LinearMaterial(entry_pressure=0.0, max_pressure=1e4)
        )
        self._permeability = permeability
        self._porosity = porosity
        self._middle = 0.5 * (grid.bounding_box_min[0] + grid.bounding_box_max[0])

    def boundary(self, position, normal, time):
        return BoundaryCondition.no_flow()

    def initial(self, position):
        saturation = (
            self.left_saturation if position[0] < self._middle else self.right_saturation
        )
        return np.array([self.pressure, saturation])

    def source(self, position, time):
        return np.zeros(2)

    def intrinsic_permeability(self, position):
        return self._permeability

    def porosity(self, position):
        return self._porosity

    def material_law(self, position):
        return self._material_law


@pytest.fixture
def line_grid() -> CubeGrid:
    return CubeGrid(lower_left=(0.0,), upper_right=(10.0,), cells=(10,))


@pytest.fixture
def box_grid() -> CubeGrid:
    return CubeGrid(lower_left=(0.0, 0.0), upper_right=(4.0, 3.0), cells=(4, 3))


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        max_time_step_size=0.25,
        min_time_step_size=1e-3,
        max_time_step_divisions=6,
        enable_vtk_output=False,
        output_directory=str(tmp_path),
    )


@pytest.fixture
def closed_box_model() -> ImmiscibleModel:
    return ImmiscibleModel()
