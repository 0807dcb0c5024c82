"""
Fully implicit two-phase immiscible model on cell-centred finite volumes.

Primary variables are the wetting phase pressure and the non-wetting phase
saturation. Each phase obeys

    ∂(φ ρ S)/∂t V + Σ_faces ρ λ K ∇Φ·n A - q V = 0

with mobilities `λ = kr / μ` taken from the upstream cell (potential
upwinding) and a two-point flux approximation with harmonically averaged
permeabilities.
"""

import logging
import typing

import numpy as np

from porousflow.boundary_conditions import (
    NONWETTING_PHASE,
    WETTING_PHASE,
    BoundaryCondition,
    FreeFlowBoundary,
    MassRateBoundary,
    NoFlowBoundary,
)
from porousflow.errors import ComputationError, ProblemDefinitionError
from porousflow.materials import Air, FluidPhase, MaterialLaw, SimpleH2O
from porousflow.model import Model
from porousflow.types import SolutionArray
from porousflow.utils import clip, harmonic_mean, upwind

if typing.TYPE_CHECKING:
    from porousflow.problem import Problem

logger = logging.getLogger(__name__)

__all__ = ["ImmiscibleModel"]

PRESSURE_INDEX = 0
SATURATION_INDEX = 1


class ImmiscibleModel(Model):
    """
    Two-phase immiscible flow of a wetting and a non-wetting fluid.

    :param wetting_phase: Fluid of the wetting phase. Defaults to liquid water.
    :param nonwetting_phase: Fluid of the non-wetting phase. Defaults to air.
    :param max_saturation_change: Largest saturation change applied in a
        single Newton iteration. Larger updates are chopped.
    """

    primary_variable_names = ("pressure_w", "saturation_n")
    equation_names = ("conti_w", "conti_n")

    def __init__(
        self,
        wetting_phase: typing.Optional[FluidPhase] = None,
        nonwetting_phase: typing.Optional[FluidPhase] = None,
        max_saturation_change: float = 0.2,
    ) -> None:
        super().__init__()
        self.wetting_phase = wetting_phase if wetting_phase is not None else SimpleH2O()
        self.nonwetting_phase = (
            nonwetting_phase if nonwetting_phase is not None else Air()
        )
        self.max_saturation_change = max_saturation_change

    @property
    def phases(self) -> typing.Tuple[FluidPhase, FluidPhase]:
        return self.wetting_phase, self.nonwetting_phase

    def finish_init(self, problem: "Problem") -> None:
        super().finish_init(problem)
        grid = problem.grid
        centers = grid.cell_centers

        self._porosity = np.array([problem.porosity(x) for x in centers], dtype=float)
        self._permeability = np.array(
            [problem.intrinsic_permeability(x) for x in centers], dtype=float
        )
        self._temperature = np.array([problem.temperature(x) for x in centers], dtype=float)
        self._extrusion = np.array(
            [problem.extrusion_factor(x) for x in centers], dtype=float
        )
        self._volume = grid.cell_volume * self._extrusion
        if np.any(self._porosity <= 0) or np.any(self._porosity > 1):
            raise ProblemDefinitionError("Porosity must lie in (0, 1] in every cell")
        if np.any(self._permeability < 0):
            raise ProblemDefinitionError("Intrinsic permeability cannot be negative")

        laws: typing.Dict[int, MaterialLaw] = {}
        members: typing.Dict[int, typing.List[int]] = {}
        for cell, position in enumerate(centers):
            law = problem.material_law(position)
            laws.setdefault(id(law), law)
            members.setdefault(id(law), []).append(cell)
        self._law_groups = [
            (laws[key], np.asarray(cells, dtype=np.int64)) for key, cells in members.items()
        ]
        self._cell_laws = [None] * grid.num_cells
        for law, cells in self._law_groups:
            for cell in cells:
                self._cell_laws[cell] = law

        faces = grid.interior_faces
        extrusion = 0.5 * (self._extrusion[faces.inside] + self._extrusion[faces.outside])
        self._interior_transmissibility = (
            harmonic_mean(self._permeability[faces.inside], self._permeability[faces.outside])
            * faces.area
            * extrusion
            / faces.distance
        )
        boundary = grid.boundary_faces
        self._boundary_area = boundary.area * self._extrusion[boundary.cell]
        self._boundary_transmissibility = (
            self._permeability[boundary.cell] * self._boundary_area / boundary.distance
        )
        self._previous_storage = np.zeros((grid.num_cells, 2))
        self._source = np.zeros((grid.num_cells, 2))
        self._boundary_conditions: typing.List[BoundaryCondition] = []
        self._gravity = np.zeros(grid.dimension)
        self._boundary_mass_flux = np.zeros((len(boundary), 2))
        self._free_flow = np.zeros(len(boundary), dtype=bool)
        logger.debug(
            f"Immiscible model on {grid.num_cells} cells with "
            f"{len(self._law_groups)} material law(s)"
        )

    def _capillary_pressure(self, wetting_saturation: np.ndarray) -> np.ndarray:
        pc = np.empty_like(wetting_saturation)
        for law, cells in self._law_groups:
            pc[cells] = law.capillary_pressure(wetting_saturation[cells])
        return pc

    def _relative_permeabilities(self, wetting_saturation: np.ndarray) -> np.ndarray:
        kr = np.empty((wetting_saturation.size, 2))
        for law, cells in self._law_groups:
            krw, krn = law.relative_permeabilities(wetting_saturation[cells])
            kr[cells, WETTING_PHASE] = krw
            kr[cells, NONWETTING_PHASE] = krn
        return kr

    def secondary_variables(
        self, solution: SolutionArray
    ) -> typing.Dict[str, np.ndarray]:
        """
        Phase pressures, saturations, densities and mobilities of every cell.

        :param solution: Primary variables shaped `(num_cells, 2)`.
        :return: Per-phase arrays shaped `(num_cells, 2)` and the capillary pressure.
        """
        pressure_w = solution[:, PRESSURE_INDEX]
        saturation_n = solution[:, SATURATION_INDEX]
        saturation_w = 1.0 - saturation_n
        capillary_pressure = self._capillary_pressure(saturation_w)

        pressures = np.stack([pressure_w, pressure_w + capillary_pressure], axis=-1)
        saturations = np.stack([saturation_w, saturation_n], axis=-1)
        densities = np.empty_like(pressures)
        viscosities = np.empty_like(pressures)
        for index, phase in enumerate(self.phases):
            densities[:, index] = phase.density(self._temperature, pressures[:, index])
            viscosities[:, index] = phase.viscosity(self._temperature, pressures[:, index])
        relative_permeabilities = self._relative_permeabilities(saturation_w)
        return {
            "pressures": pressures,
            "saturations": saturations,
            "densities": densities,
            "mobilities": relative_permeabilities / viscosities,
            "relative_permeabilities": relative_permeabilities,
            "capillary_pressure": capillary_pressure,
        }

    def storage(self, solution: SolutionArray) -> np.ndarray:
        """Mass of each phase in every cell (kg), shaped `(num_cells, 2)`."""
        variables = self.secondary_variables(solution)
        return (
            self._porosity[:, None]
            * variables["densities"]
            * variables["saturations"]
            * self._volume[:, None]
        )

    def prepare_linearization(self, time: float) -> None:
        problem = self._problem()
        grid = self.grid
        self._previous_storage = self.storage(self.previous_solution)

        source = np.zeros((grid.num_cells, 2))
        for cell, position in enumerate(grid.cell_centers):
            source[cell] = problem.source(position, time)
        self._source = source * self._volume[:, None]

        boundary = grid.boundary_faces
        conditions = []
        for position, normal in zip(boundary.center, boundary.normal):
            condition = problem.boundary(position, normal, time)
            if not isinstance(condition, BoundaryCondition):
                raise ProblemDefinitionError(
                    f"Boundary condition at {position} must be a BoundaryCondition, "
                    f"got {type(condition).__name__}"
                )
            conditions.append(condition)
        self._boundary_conditions = conditions
        self._gravity = np.asarray(problem.gravity(), dtype=float)

        mass_rates = np.zeros((len(boundary), 2))
        free_flow = np.zeros(len(boundary), dtype=bool)
        outer_pressures = np.zeros((len(boundary), 2))
        outer_densities = np.zeros((len(boundary), 2))
        outer_mass_mobilities = np.zeros((len(boundary), 2))
        for face, condition in enumerate(conditions):
            if isinstance(condition, MassRateBoundary):
                mass_rates[face] = condition.rates
            elif isinstance(condition, FreeFlowBoundary):
                state = condition.fluid_state
                law = self._cell_laws[boundary.cell[face]]
                kr = np.array(
                    law.relative_permeabilities(
                        np.asarray([state.saturations[WETTING_PHASE]])
                    ),
                    dtype=float,
                ).reshape(2)
                free_flow[face] = True
                outer_pressures[face] = state.pressures
                for index, phase in enumerate(self.phases):
                    rho = float(np.asarray(phase.density(state.temperature, state.pressures[index])))
                    mu = float(np.asarray(phase.viscosity(state.temperature, state.pressures[index])))
                    outer_densities[face, index] = rho
                    outer_mass_mobilities[face, index] = rho * kr[index] / mu
            elif not isinstance(condition, NoFlowBoundary):
                raise ProblemDefinitionError(
                    f"Unsupported boundary condition {type(condition).__name__}"
                )
        self._boundary_mass_flux = mass_rates * self._boundary_area[:, None]
        self._free_flow = free_flow
        self._outer_pressures = outer_pressures
        self._outer_densities = outer_densities
        self._outer_mass_mobilities = outer_mass_mobilities

    def _potential_difference(
        self,
        pressure_difference: np.ndarray,
        density: np.ndarray,
        distance_vector: np.ndarray,
    ) -> np.ndarray:
        if not np.any(self._gravity):
            return pressure_difference
        return pressure_difference - density * (distance_vector @ self._gravity)[:, None]

    def residual(self, solution: SolutionArray) -> SolutionArray:
        clock = self._problem().clock
        time_step_size = clock.time_step_size
        if time_step_size <= 0:
            raise ComputationError(
                f"Cannot linearize with non-positive time step size {time_step_size}"
            )

        grid = self.grid
        centers = grid.cell_centers
        variables = self.secondary_variables(solution)
        pressures = variables["pressures"]
        densities = variables["densities"]
        mass_mobilities = densities * variables["mobilities"]

        storage = (
            self._porosity[:, None]
            * densities
            * variables["saturations"]
            * self._volume[:, None]
        )
        residual = (storage - self._previous_storage) / time_step_size

        faces = grid.interior_faces
        inside, outside = faces.inside, faces.outside
        potential = self._potential_difference(
            pressures[inside] - pressures[outside],
            0.5 * (densities[inside] + densities[outside]),
            centers[inside] - centers[outside],
        )
        upstream = upwind(potential, mass_mobilities[inside], mass_mobilities[outside])
        flux = self._interior_transmissibility[:, None] * upstream * potential
        np.add.at(residual, inside, flux)
        np.subtract.at(residual, outside, flux)

        boundary = grid.boundary_faces
        np.add.at(residual, boundary.cell, self._boundary_mass_flux)
        if np.any(self._free_flow):
            free = self._free_flow
            cells = boundary.cell[free]
            potential = self._potential_difference(
                pressures[cells] - self._outer_pressures[free],
                0.5 * (densities[cells] + self._outer_densities[free]),
                centers[cells] - boundary.center[free],
            )
            upstream = upwind(
                potential, mass_mobilities[cells], self._outer_mass_mobilities[free]
            )
            flux = self._boundary_transmissibility[free][:, None] * upstream * potential
            np.add.at(residual, cells, flux)

        return residual - self._source

    def update_solution(self, delta: SolutionArray) -> None:
        delta = delta.copy()
        delta[:, SATURATION_INDEX] = clip(
            delta[:, SATURATION_INDEX],
            -self.max_saturation_change,
            self.max_saturation_change,
        )
        self.solution += delta

    def global_storage(self) -> np.ndarray:
        """Total mass (kg) of each phase in the domain."""
        return self.storage(self.solution).sum(axis=0)

    def output_fields(self) -> typing.Dict[str, np.ndarray]:
        variables = self.secondary_variables(self.solution)
        fields = {}
        for index, suffix in ((WETTING_PHASE, "w"), (NONWETTING_PHASE, "n")):
            fields[f"pressure_{suffix}"] = variables["pressures"][:, index]
            fields[f"saturation_{suffix}"] = variables["saturations"][:, index]
            fields[f"density_{suffix}"] = variables["densities"][:, index]
            fields[f"relative_permeability_{suffix}"] = variables[
                "relative_permeabilities"
            ][:, index]
            fields[f"mobility_{suffix}"] = variables["mobilities"][:, index]
        fields["capillary_pressure"] = variables["capillary_pressure"]
        fields["porosity"] = self._porosity
        fields["permeability"] = self._permeability
        return fields
