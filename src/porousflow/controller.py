"""Time step control: drives a single time step to convergence with step size bisection."""

import logging

import attrs

from porousflow.config import Config
from porousflow.errors import ConvergenceError, ValidationError
from porousflow.timing import CumulativeTiming, StepAttempt
from porousflow.types import Clock, Discretization, NonlinearSolver

__all__ = ["ConvergenceBudget", "TimeIntegrationController"]

logger = logging.getLogger(__name__)


@attrs.frozen(slots=True)
class ConvergenceBudget:
    """Bounds on the retries and step sizes of one time step."""

    max_divisions: int = attrs.field(validator=attrs.validators.ge(0))
    """Maximum number of times a step may be halved after a failed attempt."""
    min_time_step_size: float = attrs.field(validator=attrs.validators.ge(0))
    """Floor below which a failed step is not halved any further."""
    max_time_step_size: float = attrs.field(validator=attrs.validators.gt(0))
    """Ceiling on any step size."""

    def __attrs_post_init__(self) -> None:
        if self.min_time_step_size > self.max_time_step_size:
            raise ValidationError(
                f"Minimum time step size ({self.min_time_step_size}) cannot exceed "
                f"maximum time step size ({self.max_time_step_size})"
            )

    @classmethod
    def from_config(cls, config: Config) -> "ConvergenceBudget":
        return cls(
            max_divisions=config.max_time_step_divisions,
            min_time_step_size=config.min_time_step_size,
            max_time_step_size=config.max_time_step_size,
        )


class TimeIntegrationController:
    """
    Brings one time step to convergence, halving the step size after every
    failed Newton attempt until the attempt converges or the budget is spent.

    The controller only mutates the clock's step size and the cumulative
    timing it was given. Every simulation owns its own controller.

    :param clock: Clock holding the tentative step size.
    :param model: Discretization performing the attempts.
    :param solver: Nonlinear solver reporting phase timings and step size suggestions.
    :param budget: Retry budget and step size bounds.
    :param timing: Cumulative phase timings of the run.
    :param restart_interval: Number of time steps between two restart files.
    """

    def __init__(
        self,
        clock: Clock,
        model: Discretization,
        solver: NonlinearSolver,
        budget: ConvergenceBudget,
        timing: CumulativeTiming,
        restart_interval: int = 10,
    ) -> None:
        if restart_interval < 1:
            raise ValidationError(
                f"Restart interval must be at least 1, got {restart_interval}"
            )
        self.clock = clock
        self.model = model
        self.solver = solver
        self.budget = budget
        self.timing = timing
        self.restart_interval = restart_interval

    def _record(self, time_step_size: float, converged: bool) -> StepAttempt:
        attempt = StepAttempt(
            time_step_size=time_step_size,
            converged=converged,
            assemble_time=self.solver.assemble_time,
            solve_time=self.solver.solve_time,
            update_time=self.solver.update_time,
            newton_iterations=self.solver.num_iterations,
        )
        self.timing.record(attempt)
        return attempt

    def time_integration(self) -> None:
        """
        Solve the current time step.

        :raises ConvergenceError: If no attempt converged before the division
            budget was spent or halving would go below the minimum step size.
        """
        clock = self.clock
        budget = self.budget

        if (
            clock.time_step_size < budget.min_time_step_size
            and not clock.episode_will_be_over()
            and not clock.will_be_finished()
        ):
            clock.set_time_step_size(budget.min_time_step_size)
        if clock.time_step_size > budget.max_time_step_size:
            clock.set_time_step_size(budget.max_time_step_size)

        divisions = 0
        for _ in range(budget.max_divisions + 1):
            time_step_size = clock.time_step_size
            converged = self.model.update(self.solver)
            self._record(time_step_size, converged)
            if converged:
                return

            if divisions >= budget.max_divisions:
                break
            next_time_step_size = time_step_size / 2
            if next_time_step_size < budget.min_time_step_size:
                break

            clock.set_time_step_size(next_time_step_size)
            divisions += 1
            logger.warning(
                f"Newton solver did not converge with dt={time_step_size} seconds. "
                f"Retrying with time step of {next_time_step_size} seconds"
            )

        logger.error(
            f"Giving up on time step after {divisions} divisions "
            f"(maximum {budget.max_divisions}), dt={clock.time_step_size}"
        )
        raise ConvergenceError(
            divisions=divisions,
            time_step_size=clock.time_step_size,
            max_divisions=budget.max_divisions,
        )

    def next_time_step_size(self) -> float:
        """Step size to offer for the following time step."""
        return min(
            self.budget.max_time_step_size,
            self.solver.suggest_time_step_size(self.clock.time_step_size),
        )

    def should_write_restart_file(self) -> bool:
        index = self.clock.time_step_index
        return index > 0 and index % self.restart_interval == 0

    def should_write_output(self) -> bool:
        return True
