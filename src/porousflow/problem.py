"""Base class for simulation problems (scenarios)."""

import abc
import logging
import typing

import h5py
import numpy as np

from porousflow.boundary_conditions import BoundaryCondition
from porousflow.config import Config
from porousflow.constants import c
from porousflow.controller import ConvergenceBudget, TimeIntegrationController
from porousflow.errors import ProblemDefinitionError, ValidationError
from porousflow.grid import CubeGrid
from porousflow.materials import MaterialLaw
from porousflow.newton import NewtonMethod
from porousflow.timing import CumulativeTiming, SimulationClock, human_readable_time
from porousflow.types import Vector
from porousflow.vtk import VtkMultiWriter

if typing.TYPE_CHECKING:
    from porousflow.model import Model
    from porousflow.simulator import Simulator

logger = logging.getLogger(__name__)

__all__ = ["Problem"]


class Problem(abc.ABC):
    """
    Defines a scenario: boundary, initial and source terms, material
    parameters and the hooks called by the simulator around every time step.

    Concrete problems must implement `boundary`, `initial` and `source`.
    Problems run with `Config.enable_constraints` must also implement
    `constraints`.

    :param grid: The grid the problem is defined on.
    :param config: Run configuration.
    """

    def __init__(self, grid: CubeGrid, config: Config) -> None:
        self.grid = grid
        self.config = config
        self.timing = CumulativeTiming()
        """Cumulative Newton phase timings of the run, including failed attempts."""
        self._simulator: typing.Optional["Simulator"] = None
        self._newton: typing.Optional[NewtonMethod] = None
        self._controller: typing.Optional[TimeIntegrationController] = None
        self.vtk_writer: typing.Optional[VtkMultiWriter] = None

    def finish_init(self, simulator: "Simulator") -> None:
        """
        Connect the problem to the simulator running it.

        Called once by the simulator before the initial solution is applied.

        :param simulator: The simulator owning the clock and the model.
        """
        if (
            self.config.enable_constraints
            and type(self).constraints is Problem.constraints
        ):
            raise ProblemDefinitionError(
                f"{type(self).__name__} enables constraints but does not provide a constraints() method"
            )

        self._simulator = simulator
        self.timing.reset()
        self._newton = self.create_newton_method()
        self._controller = TimeIntegrationController(
            clock=simulator.clock,
            model=simulator.model,
            solver=self._newton,
            budget=ConvergenceBudget.from_config(self.config),
            timing=self.timing,
            restart_interval=self.config.restart_interval,
        )
        if self.config.enable_vtk_output:
            self.vtk_writer = VtkMultiWriter(
                grid=self.grid,
                name=self.name(),
                output_directory=self.config.output_directory,
            )

    def create_newton_method(self) -> NewtonMethod:
        return NewtonMethod(self.config)

    @property
    def simulator(self) -> "Simulator":
        if self._simulator is None:
            raise ValidationError(
                f"{type(self).__name__} is not attached to a simulator. Call `finish_init` first."
            )
        return self._simulator

    @property
    def clock(self) -> SimulationClock:
        return self.simulator.clock

    @property
    def model(self) -> "Model":
        return self.simulator.model

    @property
    def newton_method(self) -> NewtonMethod:
        if self._newton is None:
            raise ValidationError("Newton method is created in `finish_init`")
        return self._newton

    @property
    def controller(self) -> TimeIntegrationController:
        if self._controller is None:
            raise ValidationError("Time integration controller is created in `finish_init`")
        return self._controller

    @property
    def bounding_box_min(self) -> Vector:
        return self.grid.bounding_box_min

    @property
    def bounding_box_max(self) -> Vector:
        return self.grid.bounding_box_max

    def name(self) -> str:
        """Prefix of the files written by the simulation."""
        return "sim"

    @abc.abstractmethod
    def boundary(self, position: Vector, normal: Vector, time: float) -> BoundaryCondition:
        """
        Boundary condition of the boundary segment centred at `position`.

        :param position: Centre of the boundary segment.
        :param normal: Outer unit normal of the segment.
        :param time: Simulated time at the end of the current step.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def initial(self, position: Vector) -> np.typing.ArrayLike:
        """Primary variables at `position` at the start of the run."""
        raise NotImplementedError

    @abc.abstractmethod
    def source(self, position: Vector, time: float) -> np.typing.ArrayLike:
        """Mass source per equation at `position` in kg/(m³·s). Positive adds mass."""
        raise NotImplementedError

    def constraints(
        self, position: Vector, time: float
    ) -> typing.Optional[np.typing.ArrayLike]:
        """
        Fixed primary variables at `position`.

        Return `None` for an unconstrained cell, or one value per primary
        variable where NaN leaves that variable free.
        """
        raise ProblemDefinitionError(
            f"{type(self).__name__} does not provide a constraints() method"
        )

    def intrinsic_permeability(self, position: Vector) -> float:
        raise ProblemDefinitionError(
            f"{type(self).__name__} does not provide an intrinsic_permeability() method"
        )

    def porosity(self, position: Vector) -> float:
        raise ProblemDefinitionError(
            f"{type(self).__name__} does not provide a porosity() method"
        )

    def material_law(self, position: Vector) -> MaterialLaw:
        raise ProblemDefinitionError(
            f"{type(self).__name__} does not provide a material_law() method"
        )

    def temperature(self, position: Vector) -> float:
        """Temperature (K) at `position`. Defaults to 20 °C."""
        return c.KELVIN_OFFSET + 20.0

    def extrusion_factor(self, position: Vector) -> float:
        return 1.0

    def gravity(self) -> Vector:
        """Gravitational acceleration vector. Zero unless gravity is enabled."""
        gravity = np.zeros(self.grid.dimension)
        if self.config.enable_gravity:
            gravity[-1] = -c.ACCELERATION_DUE_TO_GRAVITY
        return gravity

    def begin_episode(self) -> None:
        pass

    def begin_time_step(self) -> None:
        pass

    def begin_iteration(self) -> None:
        pass

    def end_iteration(self) -> None:
        pass

    def end_time_step(self) -> None:
        pass

    def end_episode(self) -> None:
        logger.warning(
            "The end of an episode is reached, but the problem does not override "
            "the end_episode() method. Doing nothing!"
        )

    def time_integration(self) -> None:
        self.controller.time_integration()

    def next_time_step_size(self) -> float:
        return self.controller.next_time_step_size()

    def should_write_restart_file(self) -> bool:
        return self.controller.should_write_restart_file()

    def should_write_output(self) -> bool:
        return self.controller.should_write_output()

    def advance_time_level(self) -> None:
        self.model.advance_time_level()

    def write_output(self) -> None:
        """Write the converged solution at the end of the current time step."""
        time = self.clock.time + self.clock.time_step_size
        if self.vtk_writer is None:
            return
        logger.info(f"Writing visualization results for time {time}")
        self.vtk_writer.begin_write(time)
        for name, values in self.model.output_fields().items():
            self.vtk_writer.attach_cell_data(name, values)
        self.vtk_writer.end_write()

    def serialize(self, group: h5py.Group) -> None:
        if self.vtk_writer is not None:
            self.vtk_writer.serialize(group.create_group("vtk"))

    def deserialize(self, group: h5py.Group) -> None:
        if self.vtk_writer is not None and "vtk" in group:
            self.vtk_writer.deserialize(group["vtk"])

    def finalize(self) -> None:
        """Log the timing receipt of the run and release the VTK writer."""
        simulator = self.simulator
        wall_time = simulator.stopwatch.wall_time_elapsed()
        cpu_time = simulator.stopwatch.cpu_time_elapsed()
        setup_time = simulator.setup_time
        timing = self.timing

        def percentage(value: float) -> str:
            if wall_time <= 0:
                return "n/a"
            return f"{value / wall_time * 100:.3g}%"

        overhead = wall_time - timing.total_time
        logger.info(f"Simulation of problem '{self.name()}' finished.")
        logger.info("-------------- Timing receipt --------------")
        logger.info(f"  Wall-clock time: {human_readable_time(wall_time)}")
        logger.info(f"  CPU time: {human_readable_time(cpu_time)}")
        logger.info(f"  Setup time: {human_readable_time(setup_time)}, {percentage(setup_time)}")
        logger.info(
            f"  Linearization time: {human_readable_time(timing.assemble_time)}, "
            f"{percentage(timing.assemble_time)}"
        )
        logger.info(
            f"  Linear solve time: {human_readable_time(timing.solve_time)}, "
            f"{percentage(timing.solve_time)}"
        )
        logger.info(
            f"  Newton update time: {human_readable_time(timing.update_time)}, "
            f"{percentage(timing.update_time)}"
        )
        logger.info(
            f"  Newton attempts: {timing.num_attempts} "
            f"({timing.num_failed_attempts} failed, {timing.newton_iterations} iterations)"
        )
        logger.info(f"  Overhead: {percentage(overhead)} of total execution time")
        logger.info("--------------------------------------------")

        if self.vtk_writer is not None:
            self.vtk_writer.close()
            self.vtk_writer = None
