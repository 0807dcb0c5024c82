"""Discretization base class: solution storage, time levels and linearization."""

import abc
import logging
import typing

import h5py
import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

from porousflow._precision import get_dtype, get_floating_point_info
from porousflow.errors import ComputationError, DeserializationError, ValidationError
from porousflow.types import LinearSystem, NonlinearSolver, SolutionArray

if typing.TYPE_CHECKING:
    from porousflow.grid import CubeGrid
    from porousflow.problem import Problem

logger = logging.getLogger(__name__)

__all__ = ["Model"]


class Model(abc.ABC):
    """
    Cell-centred discretization holding the solution at the current and the
    previous time level.

    Subclasses provide the residual of all cells for a given solution. The
    Jacobian is then obtained by finite differences, perturbing all cells of
    one grid colour at once.
    """

    primary_variable_names: typing.ClassVar[typing.Tuple[str, ...]] = ()
    """Names of the primary variables of a cell, one per equation."""
    equation_names: typing.ClassVar[typing.Tuple[str, ...]] = ()
    """Names of the conservation equations of a cell."""

    def __init__(self) -> None:
        self.problem: typing.Optional["Problem"] = None
        self.solution: SolutionArray = np.empty((0, self.num_eq), dtype=get_dtype())
        self.previous_solution: SolutionArray = np.empty(
            (0, self.num_eq), dtype=get_dtype()
        )
        self._constraint_rows: np.typing.NDArray[np.integer] = np.empty(0, dtype=np.int64)
        self._constraint_values: np.typing.NDArray[np.floating] = np.empty(0)

    @property
    def num_eq(self) -> int:
        return len(self.primary_variable_names)

    @property
    def grid(self) -> "CubeGrid":
        return self._problem().grid

    @property
    def num_cells(self) -> int:
        return self.grid.num_cells

    @property
    def num_dofs(self) -> int:
        return self.num_cells * self.num_eq

    def _problem(self) -> "Problem":
        if self.problem is None:
            raise ValidationError(
                f"{type(self).__name__} is not attached to a problem. Call `finish_init` first."
            )
        return self.problem

    def finish_init(self, problem: "Problem") -> None:
        """
        Attach the model to its problem and allocate the solution arrays.

        :param problem: The problem supplying initial and boundary conditions.
        """
        self.problem = problem
        shape = (problem.grid.num_cells, self.num_eq)
        self.solution = np.zeros(shape, dtype=get_dtype())
        self.previous_solution = np.zeros(shape, dtype=get_dtype())

    def apply_initial_solution(self) -> None:
        """Evaluate the problem's initial condition at every cell centre."""
        problem = self._problem()
        for cell, position in enumerate(self.grid.cell_centers):
            values = np.asarray(problem.initial(position), dtype=get_dtype())
            if values.shape != (self.num_eq,):
                raise ValidationError(
                    f"Initial condition at {position} must have {self.num_eq} entries, "
                    f"got shape {values.shape}"
                )
            self.solution[cell] = values
        self.previous_solution = self.solution.copy()

    def update(self, solver: NonlinearSolver) -> bool:
        """
        Attempt to solve the current time step.

        On failure the solution is reset to the previous time level so that
        the next attempt starts from a converged state.

        :param solver: The nonlinear solver performing the attempt.
        :return: True if the attempt converged.
        """
        self.update_begin()
        converged = solver.apply(self)
        if converged:
            self.update_successful()
        else:
            self.update_failed()
        return converged

    def update_begin(self) -> None:
        pass

    def update_successful(self) -> None:
        pass

    def update_failed(self) -> None:
        logger.debug("Restoring solution of the previous time level")
        self.solution = self.previous_solution.copy()

    def advance_time_level(self) -> None:
        """Make the current solution the previous time level."""
        self.previous_solution = self.solution.copy()

    def update_solution(self, delta: SolutionArray) -> None:
        """
        Apply a Newton update to the current solution in place.

        :param delta: Update shaped like the solution.
        """
        self.solution += delta

    @abc.abstractmethod
    def prepare_linearization(self, time: float) -> None:
        """
        Evaluate everything that does not depend on the solution, such as
        sources and boundary conditions, for a linearization at `time`.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def residual(self, solution: SolutionArray) -> SolutionArray:
        """
        Residual of every cell's equations for the given solution.

        :param solution: Primary variables shaped `(num_cells, num_eq)`.
        :return: Residuals shaped `(num_cells, num_eq)`.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def global_storage(self) -> np.typing.NDArray[np.floating]:
        """Total amount of each conserved quantity in the domain."""
        raise NotImplementedError

    def output_fields(self) -> typing.Dict[str, np.typing.NDArray[np.floating]]:
        """Cell fields to visualize, keyed by name."""
        return {
            name: self.solution[:, index]
            for index, name in enumerate(self.primary_variable_names)
        }

    def stencil(self) -> typing.Tuple[np.typing.NDArray[np.integer], np.typing.NDArray[np.integer]]:
        """
        Pairs `(cell, affected)` such that perturbing `cell` may change the
        residual of `affected`.
        """
        grid = self.grid
        cells = [np.arange(grid.num_cells)]
        affected = [np.arange(grid.num_cells)]
        faces = grid.interior_faces
        cells.extend((faces.inside, faces.outside))
        affected.extend((faces.outside, faces.inside))
        return np.concatenate(cells), np.concatenate(affected)

    def _update_constraints(self, time: float) -> None:
        problem = self._problem()
        if not problem.config.enable_constraints:
            self._constraint_rows = np.empty(0, dtype=np.int64)
            self._constraint_values = np.empty(0)
            return

        rows, values = [], []
        for cell, position in enumerate(self.grid.cell_centers):
            constraint = problem.constraints(position, time)
            if constraint is None:
                continue
            constraint = np.asarray(constraint, dtype=float)
            for eq in np.flatnonzero(np.isfinite(constraint)):
                rows.append(cell * self.num_eq + eq)
                values.append(constraint[eq])
        self._constraint_rows = np.asarray(rows, dtype=np.int64)
        self._constraint_values = np.asarray(values, dtype=float)

    def linearize(self) -> LinearSystem:
        """
        Linearize the model around the current solution at the end of the
        current time step.

        :return: The Jacobian (CSR) and the flattened residual.
        """
        problem = self._problem()
        clock = problem.clock
        time = clock.time + clock.time_step_size
        self.prepare_linearization(time)
        self._update_constraints(time)

        solution = self.solution
        base = self.residual(solution)
        if base.shape != solution.shape:
            raise ComputationError(
                f"Residual shape {base.shape} does not match solution shape {solution.shape}"
            )

        num_eq = self.num_eq
        colors = self.grid.colors
        pair_cells, pair_affected = self.stencil()
        sqrt_eps = np.sqrt(get_floating_point_info().eps)

        rows, cols, values = [], [], []
        for color in np.unique(colors):
            color_mask = colors[pair_cells] == color
            perturbed_cells = pair_cells[color_mask]
            affected_cells = pair_affected[color_mask]
            cell_mask = colors == color
            for eq in range(num_eq):
                delta = sqrt_eps * (1.0 + np.abs(solution[cell_mask, eq]))
                perturbed = solution.copy()
                perturbed[cell_mask, eq] += delta
                step = np.zeros(self.num_cells)
                step[cell_mask] = perturbed[cell_mask, eq] - solution[cell_mask, eq]

                derivative = (
                    self.residual(perturbed)[affected_cells] - base[affected_cells]
                ) / step[perturbed_cells][:, None]
                for equation in range(num_eq):
                    rows.append(affected_cells * num_eq + equation)
                    cols.append(perturbed_cells * num_eq + eq)
                    values.append(derivative[:, equation])

        row_index = np.concatenate(rows)
        col_index = np.concatenate(cols)
        data = np.concatenate(values)
        residual = base.reshape(-1).astype(get_dtype(), copy=True)

        if self._constraint_rows.size:
            keep = ~np.isin(row_index, self._constraint_rows)
            row_index = np.concatenate([row_index[keep], self._constraint_rows])
            col_index = np.concatenate([col_index[keep], self._constraint_rows])
            data = np.concatenate([data[keep], np.ones(self._constraint_rows.size)])
            residual[self._constraint_rows] = (
                solution.reshape(-1)[self._constraint_rows] - self._constraint_values
            )

        jacobian = coo_matrix(
            (data, (row_index, col_index)), shape=(self.num_dofs, self.num_dofs)
        ).tocsr()
        return typing.cast(csr_matrix, jacobian), residual

    def serialize(self, group: h5py.Group) -> None:
        """Write both time levels to an HDF5 group."""
        group.create_dataset("solution", data=self.solution)
        group.create_dataset("previous_solution", data=self.previous_solution)
        group.attrs["primary_variable_names"] = list(self.primary_variable_names)

    def deserialize(self, group: h5py.Group) -> None:
        """Restore both time levels from an HDF5 group."""
        for name in ("solution", "previous_solution"):
            if name not in group:
                raise DeserializationError(f"Restart data has no '{name}' dataset")
        solution = np.asarray(group["solution"][()], dtype=get_dtype())
        if solution.shape != self.solution.shape:
            raise DeserializationError(
                f"Restart solution has shape {solution.shape}, expected {self.solution.shape}"
            )
        self.solution = solution
        self.previous_solution = np.asarray(
            group["previous_solution"][()], dtype=get_dtype()
        )
