"""
Multi-file VTK output.

Every call to `begin_write`/`end_write` produces one rectilinear grid file
(`<name>-<nnnnn>.vtr`). A ParaView collection file (`<name>.pvd`) listing all
files written so far, with their simulated times, is rewritten after every
file so it stays valid if the run aborts.
"""

from os import PathLike
from pathlib import Path
import logging
import typing
from xml.dom import minidom

import h5py
import numpy as np
import pyvista as pv

from porousflow.errors import DeserializationError, SerializationError, ValidationError
from porousflow.grid import CubeGrid

__all__ = ["VtkMultiWriter", "to_rectilinear_grid"]

logger = logging.getLogger(__name__)


def to_rectilinear_grid(grid: CubeGrid) -> pv.RectilinearGrid:
    """
    Build the pyvista counterpart of a cube grid.

    Missing axes of 1D and 2D grids get a single coordinate at zero.
    """
    coordinates = [grid.coordinates(axis) for axis in range(grid.dimension)]
    while len(coordinates) < 3:
        coordinates.append(np.array([0.0]))
    return pv.RectilinearGrid(*coordinates)


class VtkMultiWriter:
    """
    Writes a series of VTK files for a grid and keeps the `.pvd` collection in sync.

    :param grid: The grid the cell data lives on.
    :param name: Prefix of all files written.
    :param output_directory: Directory to write into. Created if missing.
    """

    def __init__(
        self,
        grid: CubeGrid,
        name: str,
        output_directory: typing.Union[str, PathLike] = ".",
    ) -> None:
        self.grid = grid
        self.name = name
        self.output_directory = Path(output_directory)
        self.output_directory.mkdir(parents=True, exist_ok=True)
        self.entries: typing.List[typing.Tuple[float, str]] = []
        """Simulated time and file name of every file written so far."""
        self._current_time: typing.Optional[float] = None
        self._cell_data: typing.Dict[str, np.ndarray] = {}

    @property
    def num_files(self) -> int:
        return len(self.entries)

    @property
    def collection_path(self) -> Path:
        return self.output_directory / f"{self.name}.pvd"

    def begin_write(self, time: float) -> None:
        """
        Start a new output file for the given simulated time.

        :param time: Simulated time the data belongs to.
        """
        if self._current_time is not None:
            raise ValidationError("Previous VTK write was not finished with `end_write`")
        self._current_time = time
        self._cell_data = {}

    def attach_cell_data(self, name: str, values: np.typing.ArrayLike) -> None:
        """
        Add a cell field to the file being written.

        :param name: Field name shown in the viewer.
        :param values: One value per cell.
        """
        if self._current_time is None:
            raise ValidationError("Call `begin_write` before attaching cell data")
        array = np.asarray(values, dtype=float)
        if array.shape[0] != self.grid.num_cells:
            raise ValidationError(
                f"Field '{name}' has {array.shape[0]} values, expected {self.grid.num_cells}"
            )
        self._cell_data[name] = array

    def end_write(self) -> Path:
        """
        Write the file started by `begin_write` and update the collection.

        :return: Path of the written VTK file.
        """
        if self._current_time is None:
            raise ValidationError("Call `begin_write` before `end_write`")

        mesh = to_rectilinear_grid(self.grid)
        for name, values in self._cell_data.items():
            mesh.cell_data[name] = values

        filename = f"{self.name}-{self.num_files:05d}.vtr"
        path = self.output_directory / filename
        mesh.save(str(path))
        self.entries.append((self._current_time, filename))
        self._write_collection()
        logger.debug(f"Wrote VTK file {path} for time {self._current_time}")

        self._current_time = None
        self._cell_data = {}
        return path

    def _write_collection(self) -> None:
        document = minidom.getDOMImplementation().createDocument(None, "VTKFile", None)
        root = document.documentElement
        root.setAttribute("type", "Collection")
        root.setAttribute("version", "0.1")
        root.setAttribute("byte_order", "LittleEndian")
        collection = root.appendChild(document.createElement("Collection"))
        for time, filename in self.entries:
            dataset = collection.appendChild(document.createElement("DataSet"))
            dataset.setAttribute("timestep", repr(float(time)))
            dataset.setAttribute("group", "")
            dataset.setAttribute("part", "0")
            dataset.setAttribute("file", filename)
        with open(self.collection_path, "w", encoding="utf-8") as f:
            document.writexml(f, addindent="  ", newl="\n", encoding="utf-8")

    def serialize(self, group: h5py.Group) -> None:
        """Store the list of files written so far in a restart file."""
        if self._current_time is not None:
            raise SerializationError("Cannot serialize VTK writer in the middle of a write")
        group.create_dataset(
            "times", data=np.asarray([time for time, _ in self.entries], dtype=float)
        )
        group.create_dataset(
            "files",
            data=np.asarray([filename for _, filename in self.entries], dtype=object),
            dtype=h5py.string_dtype(),
        )

    def deserialize(self, group: h5py.Group) -> None:
        """Continue the collection stored in a restart file."""
        if "times" not in group or "files" not in group:
            raise DeserializationError("Restart data has no VTK collection")
        times = group["times"][()]
        files = group["files"].asstr()[()]
        self.entries = [(float(t), str(f)) for t, f in zip(times, files)]
        self._write_collection()

    def close(self) -> None:
        if self.entries:
            self._write_collection()
        self._current_time = None
        self._cell_data = {}
