"""Run driver: owns the clock, sequences problem hooks around every time step."""

import logging
import math
import typing

import attrs
import h5py
import yaml

from porousflow.config import Config
from porousflow.errors import (
    DeserializationError,
    SimulationError,
    TimingError,
    ValidationError,
)
from porousflow.grid import CubeGrid
from porousflow.model import Model
from porousflow.problem import Problem
from porousflow.restart import read_restart_file, write_restart_file
from porousflow.serialization import dump
from porousflow.timing import SimulationClock, Stopwatch, human_readable_time

logger = logging.getLogger(__name__)

__all__ = ["Simulator", "log_progress"]

_CLOCK_STATE = (
    "start_time",
    "end_time",
    "time",
    "time_step_size",
    "time_step_index",
    "episode_index",
    "episode_start_time",
    "episode_length",
    "finished",
)


def log_progress(
    step: int,
    step_size: float,
    time: float,
    end_time: float,
    is_last_step: bool = False,
    interval: int = 1,
) -> None:
    """Logs the simulation progress at specified intervals."""
    if step <= 1 or step % interval == 0 or is_last_step:
        if math.isfinite(end_time) and end_time > 0:
            progress = f"({time / end_time * 100.0:.4f}%) - "
        else:
            progress = ""
        logger.info(
            f"Time Step {step} with Δt = {step_size:.6g}s - {progress}"
            f"Time: {time:.6g}s / {end_time:.6g}s"
        )


class Simulator:
    """
    Drives a problem and its model from the start to the end time.

    The simulator owns the clock. The problem's time integration controller
    may change the step size while a step is attempted. Output and restart
    files are only written for converged time levels.

    :param problem: The scenario to simulate.
    :param model: The discretization solving it.
    :param end_time: Simulated time (in seconds) at which the run ends.
    :param initial_time_step_size: Size (in seconds) of the first time step.
    :param start_time: Simulated time at which the run starts.
    :param restart_time: If given, resume from the restart file written at this time.
    """

    def __init__(
        self,
        problem: Problem,
        model: Model,
        end_time: float,
        initial_time_step_size: float,
        start_time: float = 0.0,
        restart_time: typing.Optional[float] = None,
    ) -> None:
        if initial_time_step_size <= 0:
            raise ValidationError(
                f"Initial time step size must be positive, got {initial_time_step_size}"
            )
        self.stopwatch = Stopwatch().start()
        self.problem = problem
        self.model = model
        self.clock = SimulationClock(start_time=start_time, end_time=end_time)
        self.initial_time_step_size = initial_time_step_size
        self.restart_time = restart_time
        self.setup_time = 0.0

        logger.info(f"Initializing problem '{problem.name()}'...")
        self.problem.finish_init(self)
        self.model.finish_init(problem)

        if restart_time is None:
            logger.debug("Applying initial solution")
            self.model.apply_initial_solution()
        else:
            logger.info(f"Resuming from restart file at time {restart_time}")
            self.deserialize(restart_time)
        self.setup_time = self.stopwatch.wall_time_elapsed()
        logger.info(f"Setup took {human_readable_time(self.setup_time)}")

    @property
    def config(self) -> Config:
        return self.problem.config

    @property
    def grid(self) -> CubeGrid:
        return self.problem.grid

    def start_next_episode(self, episode_length: float = math.inf) -> None:
        self.clock.start_next_episode(episode_length)

    def episode_is_over(self) -> bool:
        return self.clock.episode_is_over()

    def episode_will_be_over(self) -> bool:
        return self.clock.episode_will_be_over()

    def _write_initial_output(self) -> None:
        self.clock.time_step_size = 0.0
        if self.problem.should_write_output():
            self.problem.write_output()

    def run(self) -> None:
        """
        Run the simulation to the end time.

        :raises ConvergenceError: If a time step cannot be brought to convergence.
        :raises ProblemDefinitionError: If the problem is misconfigured.
        """
        clock = self.clock
        problem = self.problem

        if self.restart_time is None:
            problem.begin_episode()
            self._write_initial_output()
            clock.set_time_step_size(self.initial_time_step_size)

        logger.info(
            f"Starting simulation of '{problem.name()}' at time {clock.time} "
            f"with end time {clock.end_time}"
        )
        while not clock.is_finished():
            problem.begin_time_step()
            problem.time_integration()
            problem.end_time_step()
            problem.advance_time_level()

            if problem.should_write_output():
                problem.write_output()

            time_step_size = clock.time_step_size
            clock.increment_time()

            if problem.should_write_restart_file():
                self.serialize()

            next_time_step_size = problem.next_time_step_size()

            if clock.episode_is_over():
                episode_index = clock.episode_index
                problem.end_episode()
                if clock.episode_is_over():
                    logger.warning(
                        f"Episode {clock.episode_index} is over but no new episode was "
                        "started. Continuing with an unbounded episode."
                    )
                    clock.start_next_episode()
                if clock.episode_index != episode_index:
                    problem.begin_episode()

            try:
                clock.set_time_step_size(next_time_step_size)
            except TimingError as exc:
                raise SimulationError(
                    f"Failed to set time step size at step {clock.time_step_index}: {exc}"
                ) from exc

            log_progress(
                step=clock.time_step_index,
                step_size=time_step_size,
                time=clock.time,
                end_time=clock.end_time,
                is_last_step=clock.is_finished(),
                interval=self.config.log_interval,
            )

        problem.finalize()
        self.stopwatch.stop()

    def serialize(self) -> None:
        """Write a restart file for the current (converged) time level."""
        write_restart_file(self)

    def deserialize(self, time: float) -> None:
        """Restore the state saved in the restart file at `time`."""
        read_restart_file(self, time)

    def serialize_state(self, group: h5py.Group) -> None:
        """Store the clock and the run configuration in an HDF5 group."""
        clock_state = attrs.asdict(self.clock)
        for name in _CLOCK_STATE:
            group.attrs[name] = clock_state[name]
        group.attrs["problem_name"] = self.problem.name()
        group.attrs["config"] = yaml.safe_dump(dump(self.config), sort_keys=False)

    def deserialize_state(self, group: h5py.Group) -> None:
        """Restore the clock from an HDF5 group."""
        missing = [name for name in _CLOCK_STATE if name not in group.attrs]
        if missing:
            raise DeserializationError(f"Restart data lacks clock fields {missing}")
        if group.attrs.get("problem_name") != self.problem.name():
            raise DeserializationError(
                f"Restart file belongs to problem {group.attrs.get('problem_name')!r}, "
                f"not {self.problem.name()!r}"
            )
        clock = self.clock
        clock.start_time = float(group.attrs["start_time"])
        clock.time = float(group.attrs["time"])
        clock.time_step_size = float(group.attrs["time_step_size"])
        clock.time_step_index = int(group.attrs["time_step_index"])
        clock.episode_index = int(group.attrs["episode_index"])
        clock.episode_start_time = float(group.attrs["episode_start_time"])
        clock.episode_length = float(group.attrs["episode_length"])
        clock.finished = bool(group.attrs["finished"])

