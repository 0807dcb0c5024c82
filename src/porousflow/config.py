from os import PathLike
import typing

import attrs

from porousflow.errors import ValidationError
from porousflow.serialization import dump_yaml, load_yaml

__all__ = ["Config", "load_config"]


def _not_bool(instance, attribute, value) -> None:
    if isinstance(value, bool):
        raise TypeError(f"`{attribute.name}` must be an integer, got {value!r}")


@attrs.frozen
class Config:
    """Simulation run configuration and parameters."""

    max_time_step_size: float = attrs.field(validator=attrs.validators.gt(0))
    """Ceiling (in seconds) on any time step size proposed during the run."""
    min_time_step_size: float = attrs.field(validator=attrs.validators.ge(0))
    """
    Floor (in seconds) below which the time step is not bisected any further.

    Tentative step sizes below this value are raised to it before a step is
    attempted, unless the step is meant to land on the end of an episode or
    of the run.
    """
    max_time_step_divisions: int = attrs.field(
        validator=attrs.validators.and_(
            attrs.validators.instance_of(int), _not_bool, attrs.validators.ge(0)
        )
    )
    """
    Maximum number of times a time step may be halved after a failed Newton attempt.

    Zero means exactly one attempt per time step and no bisection.
    """
    restart_interval: int = attrs.field(default=10, validator=attrs.validators.ge(1))
    """Number of time steps between two restart files."""
    enable_vtk_output: bool = True
    """Whether to write VTK files of the converged solution."""
    output_directory: str = "."
    """Directory receiving VTK and restart files."""
    newton_tolerance: float = attrs.field(
        default=1e-8,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.le(1e-2)),
    )
    """Maximum relative change of the primary variables for which a Newton iteration counts as converged."""
    newton_max_iterations: int = attrs.field(
        default=18,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(500)
        ),
    )
    """
    Maximum number of Newton iterations in a single attempt.

    An attempt that does not converge within this limit is reported as failed
    and the time step is bisected.
    """
    newton_target_iterations: int = attrs.field(
        default=10, validator=attrs.validators.ge(1)
    )
    """Number of Newton iterations considered optimal when suggesting the next time step size."""
    enable_gravity: bool = False
    """Whether gravity is included in the phase potentials."""
    enable_constraints: bool = False
    """Whether the problem fixes primary variables in some cells."""
    log_interval: int = attrs.field(default=1, validator=attrs.validators.ge(1))
    """Interval (in time steps) at which to log simulation progress."""

    def __attrs_post_init__(self) -> None:
        if self.min_time_step_size > self.max_time_step_size:
            raise ValidationError(
                f"Minimum time step size ({self.min_time_step_size}) cannot exceed "
                f"maximum time step size ({self.max_time_step_size})"
            )
        if self.newton_target_iterations > self.newton_max_iterations:
            raise ValidationError(
                f"Target Newton iterations ({self.newton_target_iterations}) cannot exceed "
                f"maximum Newton iterations ({self.newton_max_iterations})"
            )

    def with_updates(self, **kwargs: typing.Any) -> "Config":
        """Return a copy of the configuration with the given fields replaced."""
        return attrs.evolve(self, **kwargs)

    def dump(self, filepath: typing.Union[str, PathLike]) -> None:
        """Write the configuration to a YAML file."""
        dump_yaml(self, filepath)


def load_config(filepath: typing.Union[str, PathLike]) -> Config:
    """
    Load a run configuration from a YAML file.

    :param filepath: Path to the YAML file.
    :return: The validated configuration.
    """
    return load_yaml(Config, filepath)
