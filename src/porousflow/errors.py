import typing

__all__ = [
    "PorousFlowError",
    "ValidationError",
    "SolverError",
    "ComputationError",
    "ProblemDefinitionError",
    "SimulationError",
    "TimingError",
    "ConvergenceError",
    "SerializationError",
    "DeserializationError",
]


class PorousFlowError(Exception):
    """Base class for all porousflow-related errors."""

    pass


class ValidationError(PorousFlowError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class SolverError(PorousFlowError):
    """Raised when a linear solver fails to produce a usable solution."""

    pass


class ComputationError(PorousFlowError):
    """Raised when there is an error during numerical computations."""

    pass


class ProblemDefinitionError(PorousFlowError):
    """
    Raised when a problem (scenario) is misconfigured.

    For example, when a callback the model needs is not provided by the problem.
    This is a logic error and is never retried.
    """

    pass


class SimulationError(PorousFlowError):
    """Base class for simulation-related errors."""

    pass


class TimingError(SimulationError):
    """Raised when there is an error related to simulation timing."""

    pass


class ConvergenceError(SimulationError):
    """
    Raised when a time step cannot be brought to convergence within the
    time step division budget. Unrecoverable for the current run.
    """

    def __init__(
        self,
        divisions: int,
        time_step_size: float,
        max_divisions: typing.Optional[int] = None,
    ) -> None:
        self.divisions = divisions
        """Number of time step divisions performed before giving up."""
        self.time_step_size = time_step_size
        """Time step size (in seconds) of the last failed attempt."""
        self.max_divisions = max_divisions
        """Configured maximum number of time step divisions."""
        super().__init__(
            f"Newton solver didn't converge after {divisions} time-step divisions. "
            f"dt={time_step_size}"
        )


class SerializationError(PorousFlowError):
    """Raised when simulation state cannot be written."""

    pass


class DeserializationError(PorousFlowError):
    """Raised when simulation state cannot be restored."""

    pass
