"""Newton-Raphson iteration over a model's linearization."""

import logging
import typing
import warnings

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import MatrixRankWarning, spsolve

from porousflow.config import Config
from porousflow.errors import ComputationError, SolverError
from porousflow.timing import Stopwatch
from porousflow.utils import is_finite, relative_shift

if typing.TYPE_CHECKING:
    from porousflow.model import Model

logger = logging.getLogger(__name__)

__all__ = ["NewtonMethod", "solve_linear_system"]


def solve_linear_system(
    jacobian: csr_matrix, residual: np.typing.NDArray[np.floating]
) -> np.typing.NDArray[np.floating]:
    """
    Solve the Newton update system J·δx = -R for the update vector δx.

    :param jacobian: Jacobian matrix J
    :param residual: Residual vector R
    :return: The update vector δx.
    :raises SolverError: If the matrix is singular or the solution is not finite.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("error", MatrixRankWarning)
        try:
            update = spsolve(jacobian.tocsc(), -residual)
        except (MatrixRankWarning, RuntimeError, ValueError) as exc:
            raise SolverError(f"Direct solver failed: {exc}") from exc

    update = np.atleast_1d(update)
    if not is_finite(update):
        raise SolverError("Direct solver produced a non-finite update")
    return update


class NewtonMethod:
    """
    Newton-Raphson solver with per-phase timings.

    One call to `apply` is one attempt to solve the current time step at the
    clock's current step size. The attempt converges when the largest relative
    change of the primary variables in an iteration drops below the configured
    tolerance.
    """

    def __init__(self, config: Config) -> None:
        self.tolerance = config.newton_tolerance
        self.max_iterations = config.newton_max_iterations
        self.target_iterations = config.newton_target_iterations
        self._assemble_time = 0.0
        self._solve_time = 0.0
        self._update_time = 0.0
        self._num_iterations = 0
        self._last_shift = np.inf

    @property
    def assemble_time(self) -> float:
        """Wall time (in seconds) spent linearizing during the last attempt."""
        return self._assemble_time

    @property
    def solve_time(self) -> float:
        """Wall time (in seconds) spent in the linear solver during the last attempt."""
        return self._solve_time

    @property
    def update_time(self) -> float:
        """Wall time (in seconds) spent updating the solution during the last attempt."""
        return self._update_time

    @property
    def num_iterations(self) -> int:
        """Number of iterations performed in the last attempt."""
        return self._num_iterations

    @property
    def last_shift(self) -> float:
        return self._last_shift

    def _reset(self) -> None:
        self._assemble_time = 0.0
        self._solve_time = 0.0
        self._update_time = 0.0
        self._num_iterations = 0
        self._last_shift = np.inf

    def apply(self, model: "Model") -> bool:
        """
        Run one Newton attempt on the model at the current time step size.

        Linear solver failures and non-finite residuals end the attempt as not
        converged. They are logged, not raised.

        :param model: The model whose solution is iterated in place.
        :return: True if the attempt converged.
        """
        self._reset()
        problem = model.problem
        stopwatch = Stopwatch()

        for iteration in range(self.max_iterations):
            problem.begin_iteration()

            logger.debug(f"Linearizing for Newton iteration {iteration}...")
            stopwatch.start()
            try:
                jacobian, residual = model.linearize()
            except ComputationError as exc:
                self._assemble_time += stopwatch.stop()
                self._num_iterations = iteration + 1
                logger.error(f"Linearization failed at Newton iteration {iteration}: {exc}")
                return False
            self._assemble_time += stopwatch.stop()

            if not is_finite(residual):
                self._num_iterations = iteration + 1
                logger.error(
                    f"Non-finite residual at Newton iteration {iteration}, giving up on this attempt"
                )
                return False

            stopwatch.start()
            try:
                update = solve_linear_system(jacobian, residual)
            except SolverError as exc:
                self._solve_time += stopwatch.stop()
                self._num_iterations = iteration + 1
                logger.error(
                    f"Linear solver failed at Newton iteration {iteration} with error: {exc}"
                )
                return False
            self._solve_time += stopwatch.stop()

            stopwatch.start()
            previous = model.solution.copy()
            model.update_solution(update.reshape(previous.shape))
            shift = relative_shift(previous, model.solution)
            self._update_time += stopwatch.stop()

            self._num_iterations = iteration + 1
            self._last_shift = shift
            problem.end_iteration()

            logger.debug(
                f"Newton iteration {iteration}: residual norm {np.linalg.norm(residual):.6e}, "
                f"relative shift {shift:.6e}"
            )
            if not np.isfinite(shift):
                logger.error(
                    f"Non-finite solution update at Newton iteration {iteration}"
                )
                return False
            if shift < self.tolerance:
                logger.debug(
                    f"Newton converged in {self._num_iterations} iterations "
                    f"(relative shift {shift:.3e})"
                )
                return True

        logger.debug(
            f"Newton did not converge within {self.max_iterations} iterations "
            f"(relative shift {self._last_shift:.3e})"
        )
        return False

    def suggest_time_step_size(self, time_step_size: float) -> float:
        """
        Propose the size of the next time step from the iteration count of the
        last attempt.

        Reduces aggressively when more iterations than targeted were needed and
        grows conservatively otherwise.

        :param time_step_size: The step size that just converged.
        :return: The proposed step size.
        """
        n = self._num_iterations
        target = self.target_iterations
        if n > target:
            percent = (n - target) / target
            return time_step_size / (1.0 + percent)
        percent = (target - n) / target
        return time_step_size * (1.0 + percent / 1.2)
