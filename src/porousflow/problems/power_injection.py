"""
Fast gas injection into a water saturated one-dimensional column.

Air is injected with 1 kg/(m²·s) through the left boundary of a 100 m
column of highly permeable, fully water saturated rock. The right boundary
is in contact with the initial (water saturated) state. Gravity is ignored.
"""

import logging
import typing

import numpy as np

from porousflow.boundary_conditions import (
    NONWETTING_PHASE,
    BoundaryCondition,
    FluidState,
)
from porousflow.config import Config
from porousflow.constants import c
from porousflow.grid import CubeGrid
from porousflow.materials import EffToAbsLaw, MaterialLaw, RegularizedVanGenuchten
from porousflow.problem import Problem
from porousflow.types import Vector

logger = logging.getLogger(__name__)

__all__ = ["PowerInjectionProblem", "power_injection_grid"]


def power_injection_grid(
    length: float = 100.0, cells: int = 250
) -> CubeGrid:
    """One-dimensional column the power injection problem is defined on."""
    return CubeGrid(lower_left=(0.0,), upper_right=(length,), cells=(cells,))


class PowerInjectionProblem(Problem):
    """
    Non-wetting phase injection into a fully wetting phase saturated domain.

    :param grid: Grid of the column. See `power_injection_grid`.
    :param config: Run configuration.
    :param injection_rate: Non-wetting phase mass injected through the left
        boundary in kg/(m²·s).
    """

    boundary_tolerance = 3e-6
    """Distance (m) from the bounding box within which a face counts as on the left boundary."""

    def __init__(
        self,
        grid: CubeGrid,
        config: Config,
        injection_rate: float = 1.0,
    ) -> None:
        super().__init__(grid, config)
        self.injection_rate = injection_rate
        self._temperature = c.KELVIN_OFFSET + 20.0
        self._permeability = 9.05e-8
        self._porosity = 0.8
        self._material_law = EffToAbsLaw(
            law=RegularizedVanGenuchten(alpha=0.00045, n=7.3)
        )
        self.initial_fluid_state = FluidState(
            pressures=(1e5, 1e5),
            saturations=(1.0, 0.0),
            temperature=self._temperature,
        )
        """Fluid state of the whole column at the start and beyond the right boundary."""
        self.storage_history: typing.List[np.ndarray] = []
        """Global phase masses (kg) after every converged time step."""

    def name(self) -> str:
        return "powerinjection"

    def _on_left_boundary(self, position: Vector) -> bool:
        return bool(position[0] < self.bounding_box_min[0] + self.boundary_tolerance)

    def boundary(self, position: Vector, normal: Vector, time: float) -> BoundaryCondition:
        if self._on_left_boundary(position):
            rates = np.zeros(2)
            rates[NONWETTING_PHASE] = -self.injection_rate
            return BoundaryCondition.mass_rate(rates)
        return BoundaryCondition.free_flow(self.initial_fluid_state)

    def initial(self, position: Vector) -> np.ndarray:
        return self.initial_fluid_state.primary_variables()

    def source(self, position: Vector, time: float) -> np.ndarray:
        return np.zeros(2)

    def intrinsic_permeability(self, position: Vector) -> float:
        return self._permeability

    def porosity(self, position: Vector) -> float:
        return self._porosity

    def material_law(self, position: Vector) -> MaterialLaw:
        return self._material_law

    def temperature(self, position: Vector) -> float:
        return self._temperature

    def end_time_step(self) -> None:
        storage = self.model.global_storage()
        self.storage_history.append(storage)
        logger.info(f"Storage: {storage.tolist()}")
