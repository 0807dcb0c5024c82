from datetime import timedelta
import logging
import math
import time as _time
import typing

import attrs

from porousflow.errors import TimingError, ValidationError

__all__ = [
    "Time",
    "human_readable_time",
    "SimulationClock",
    "StepAttempt",
    "CumulativeTiming",
    "Stopwatch",
]

logger = logging.getLogger(__name__)

_EPSILON = 1e3 * 2.220446049250313e-16
"""Relative tolerance used when comparing simulated times against episode and run ends."""


SECONDS_PER_YEAR = 365.25 * 86400.0


def Time(
    *,
    milliseconds: float = 0,
    seconds: float = 0,
    minutes: float = 0,
    hours: float = 0,
    days: float = 0,
    weeks: float = 0,
    years: float = 0,
) -> float:
    """
    Simulation time in seconds from calendar components, e.g.
    `Time(days=3, hours=12)`. A year is 365.25 days.
    """
    span = timedelta(
        days=days + 7 * weeks, hours=hours, minutes=minutes, seconds=seconds
    ).total_seconds()
    return span + milliseconds / 1000.0 + years * SECONDS_PER_YEAR


def human_readable_time(seconds: float) -> str:
    """
    Format a duration for log messages, e.g. `93784.0 seconds (1 day, 2:03:04)`.

    :param seconds: Duration in seconds.
    :return: The formatted duration.
    """
    if not math.isfinite(seconds):
        return f"{seconds} seconds"
    return f"{seconds:.6g} seconds ({timedelta(seconds=seconds)})"


@attrs.define
class SimulationClock:
    """
    Simulated time, time step size, step index and episode bookkeeping of a run.

    Only the simulator advances the clock. The time integration controller may
    overwrite the step size while a step is being attempted.
    """

    start_time: float = 0.0
    """Simulated time (in seconds) at which the run starts."""
    end_time: float = math.inf
    """Simulated time (in seconds) at which the run ends."""
    time: float = attrs.field(init=False)
    """Current simulated time in seconds."""
    time_step_size: float = attrs.field(init=False, default=0.0)
    """Size (in seconds) of the time step currently being attempted."""
    time_step_index: int = attrs.field(init=False, default=0)
    """Number of time steps completed so far."""
    episode_index: int = attrs.field(init=False, default=0)
    """Index of the current episode."""
    episode_start_time: float = attrs.field(init=False)
    """Simulated time (in seconds) at which the current episode started."""
    episode_length: float = attrs.field(init=False, default=math.inf)
    """Length (in seconds) of the current episode."""
    finished: bool = attrs.field(init=False, default=False)
    """Whether the run was ended explicitly."""

    def __attrs_post_init__(self) -> None:
        if self.end_time < self.start_time:
            raise ValidationError(
                f"End time ({self.end_time}) cannot be before start time ({self.start_time})"
            )
        self.time = self.start_time
        self.episode_start_time = self.start_time

    def set_time(self, time: float, time_step_index: typing.Optional[int] = None) -> None:
        """
        Set the current simulated time and optionally the step index.

        :param time: Simulated time in seconds.
        :param time_step_index: Number of completed time steps at `time`.
        """
        self.time = time
        if time_step_index is not None:
            self.time_step_index = time_step_index

    def set_end_time(self, end_time: float) -> None:
        if end_time < self.time:
            raise TimingError(
                f"End time ({end_time}) cannot be before the current time ({self.time})"
            )
        self.end_time = end_time

    def max_allowed_time_step_size(self) -> float:
        """Time (in seconds) remaining until the end of the current episode or of the run, whichever is first."""
        episode_remaining = self.episode_start_time + self.episode_length - self.time
        return max(0.0, min(episode_remaining, self.end_time - self.time))

    def set_time_step_size(self, time_step_size: float) -> None:
        """
        Set the size of the next time step.

        The size is truncated so that the step ends no later than the current
        episode or the run, and is never negative.

        :param time_step_size: Requested step size in seconds.
        """
        if math.isnan(time_step_size):
            raise TimingError("Time step size cannot be NaN")
        truncated = max(0.0, min(time_step_size, self.max_allowed_time_step_size()))
        if truncated < time_step_size:
            logger.debug(
                f"Time step size {time_step_size} truncated to {truncated} to land on "
                f"the end of episode {self.episode_index} or of the run"
            )
        self.time_step_size = truncated

    def increment_time(self) -> None:
        """Advance the clock by the current time step size and count the step."""
        self.time += self.time_step_size
        self.time_step_index += 1

    def start_next_episode(self, episode_length: float = math.inf) -> None:
        """
        Begin a new episode at the current time.

        :param episode_length: Length of the new episode in seconds.
        """
        if episode_length <= 0:
            raise ValidationError(
                f"Episode length must be positive, got {episode_length}"
            )
        self.episode_index += 1
        self.episode_start_time = self.time
        self.episode_length = episode_length
        logger.debug(
            f"Episode {self.episode_index} started at time {self.time} "
            f"with length {episode_length}"
        )

    def episode_is_over(self) -> bool:
        """Whether the current time has reached the end of the current episode."""
        return self.time >= self.episode_start_time + self.episode_length * (
            1 - _EPSILON
        )

    def episode_will_be_over(self) -> bool:
        """Whether the current episode ends with the step currently being attempted."""
        return self.time + self.time_step_size >= self.episode_start_time + (
            self.episode_length * (1 - _EPSILON)
        )

    def set_finished(self, finished: bool = True) -> None:
        self.finished = finished

    def is_finished(self) -> bool:
        """Whether the run is over."""
        return self.finished or self.time * (1 + _EPSILON) >= self.end_time

    def will_be_finished(self) -> bool:
        """Whether the run ends with the step currently being attempted."""
        return (
            self.finished
            or (self.time + self.time_step_size) * (1 + _EPSILON) >= self.end_time
        )


@attrs.frozen(slots=True)
class StepAttempt:
    """Outcome and phase timings of one nonlinear solve attempt."""

    time_step_size: float
    converged: bool
    assemble_time: float = 0.0
    solve_time: float = 0.0
    update_time: float = 0.0
    newton_iterations: int = 0


@attrs.define
class CumulativeTiming:
    """
    Running totals of the time spent in each phase of the nonlinear solver.

    Failed attempts are included. Totals only ever grow during a run.
    """

    assemble_time: float = 0.0
    """Total wall time (in seconds) spent linearizing."""
    solve_time: float = 0.0
    """Total wall time (in seconds) spent solving linear systems."""
    update_time: float = 0.0
    """Total wall time (in seconds) spent updating solutions."""
    num_attempts: int = 0
    """Number of nonlinear solve attempts recorded."""
    num_failed_attempts: int = 0
    """Number of nonlinear solve attempts that did not converge."""
    newton_iterations: int = 0
    """Total number of Newton iterations over all attempts."""

    def record(self, attempt: StepAttempt) -> None:
        """
        Fold the timings of an attempt into the totals.

        :param attempt: The attempt to account for.
        """
        if min(attempt.assemble_time, attempt.solve_time, attempt.update_time) < 0:
            raise TimingError(f"Negative phase timing in {attempt!r}")
        self.assemble_time += attempt.assemble_time
        self.solve_time += attempt.solve_time
        self.update_time += attempt.update_time
        self.num_attempts += 1
        self.newton_iterations += attempt.newton_iterations
        if not attempt.converged:
            self.num_failed_attempts += 1

    @property
    def total_time(self) -> float:
        return self.assemble_time + self.solve_time + self.update_time

    def reset(self) -> None:
        self.assemble_time = 0.0
        self.solve_time = 0.0
        self.update_time = 0.0
        self.num_attempts = 0
        self.num_failed_attempts = 0
        self.newton_iterations = 0


@attrs.define
class Stopwatch:
    """Measures wall clock and CPU time across start/stop cycles."""

    _wall_started_at: typing.Optional[float] = attrs.field(init=False, default=None)
    _cpu_started_at: typing.Optional[float] = attrs.field(init=False, default=None)
    _wall_elapsed: float = attrs.field(init=False, default=0.0)
    _cpu_elapsed: float = attrs.field(init=False, default=0.0)

    @property
    def is_running(self) -> bool:
        return self._wall_started_at is not None

    def start(self) -> "Stopwatch":
        if self.is_running:
            return self
        self._wall_started_at = _time.perf_counter()
        self._cpu_started_at = _time.process_time()
        return self

    def stop(self) -> float:
        """
        Stop measuring and return the wall time elapsed since the last `start`.
        """
        if self._wall_started_at is None or self._cpu_started_at is None:
            return 0.0
        wall = _time.perf_counter() - self._wall_started_at
        self._wall_elapsed += wall
        self._cpu_elapsed += _time.process_time() - self._cpu_started_at
        self._wall_started_at = None
        self._cpu_started_at = None
        return wall

    def halt(self) -> None:
        """Stop measuring and discard all time measured so far."""
        self._wall_started_at = None
        self._cpu_started_at = None
        self._wall_elapsed = 0.0
        self._cpu_elapsed = 0.0

    def wall_time_elapsed(self) -> float:
        elapsed = self._wall_elapsed
        if self._wall_started_at is not None:
            elapsed += _time.perf_counter() - self._wall_started_at
        return elapsed

    def cpu_time_elapsed(self) -> float:
        elapsed = self._cpu_elapsed
        if self._cpu_started_at is not None:
            elapsed += _time.process_time() - self._cpu_started_at
        return elapsed
