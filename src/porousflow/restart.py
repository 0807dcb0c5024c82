"""HDF5 restart files holding the simulator, model and problem state of a converged time step."""

from os import PathLike
from pathlib import Path
import functools
import logging
import typing

import h5py
from typing_extensions import ParamSpec

from porousflow.errors import DeserializationError, SerializationError

if typing.TYPE_CHECKING:
    from porousflow.simulator import Simulator

logger = logging.getLogger(__name__)

__all__ = ["RESTART_EXTENSION", "restart_file_path", "write_restart_file", "read_restart_file"]

RESTART_EXTENSION = ".ers"

P = ParamSpec("P")
R = typing.TypeVar("R")


def restart_file_path(
    directory: typing.Union[str, PathLike], name: str, time: float
) -> Path:
    """
    Path of the restart file of problem `name` at simulated time `time`.

    :param directory: Directory holding restart files.
    :param name: Problem name.
    :param time: Simulated time the file belongs to.
    """
    return Path(directory) / f"{name}_time={time!r}{RESTART_EXTENSION}"


def _raise_serialization_error(func: typing.Callable[P, R]) -> typing.Callable[P, R]:
    """Wraps a function to raise SerializationError on HDF5 and OS errors."""

    @functools.wraps(func)
    def _wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except (OSError, ValueError, TypeError) as exc:
            raise SerializationError(f"Failed to write restart file: {exc}") from exc

    return _wrapper


@_raise_serialization_error
def write_restart_file(simulator: "Simulator") -> Path:
    """
    Write the restart file for the simulator's current time.

    :param simulator: The simulator to checkpoint.
    :return: Path of the written file.
    """
    path = restart_file_path(
        simulator.config.output_directory,
        simulator.problem.name(),
        simulator.clock.time,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    with h5py.File(str(path), mode="w") as f:
        simulator.serialize_state(f.create_group("simulator"))
        simulator.model.serialize(f.create_group("model"))
        simulator.problem.serialize(f.create_group("problem"))
    logger.info(f"Wrote restart file {path}")
    return path


def read_restart_file(simulator: "Simulator", time: float) -> Path:
    """
    Restore the simulator, model and problem state from the restart file at `time`.

    :param simulator: The simulator to restore.
    :param time: Simulated time of the restart file.
    :return: Path of the file read.
    """
    path = restart_file_path(
        simulator.config.output_directory, simulator.problem.name(), time
    )
    if not path.is_file():
        raise DeserializationError(f"Restart file {path} does not exist")

    try:
        with h5py.File(str(path), mode="r") as f:
            for group in ("simulator", "model", "problem"):
                if group not in f:
                    raise DeserializationError(
                        f"Restart file {path} has no '{group}' group"
                    )
            simulator.deserialize_state(f["simulator"])
            simulator.model.deserialize(f["model"])
            simulator.problem.deserialize(f["problem"])
    except OSError as exc:
        raise DeserializationError(f"Failed to read restart file {path}: {exc}") from exc
    logger.info(f"Restored state from restart file {path}")
    return path
