"""Structured cube grid geometry for cell-centred finite volumes."""

import functools
import typing

import attrs
import numpy as np

from porousflow.errors import ValidationError

__all__ = ["CubeGrid", "InteriorFaces", "BoundaryFaces"]


@attrs.frozen(slots=True)
class InteriorFaces:
    """Faces shared by two cells of the grid."""

    inside: np.typing.NDArray[np.integer]
    """Index of the cell on the lower side of each face."""
    outside: np.typing.NDArray[np.integer]
    """Index of the cell on the upper side of each face."""
    axis: np.typing.NDArray[np.integer]
    """Axis the face normal points along."""
    area: np.typing.NDArray[np.floating]
    """Face areas (m² in 3D, m in 2D, 1 in 1D)."""
    distance: np.typing.NDArray[np.floating]
    """Distance between the two cell centres."""

    def __len__(self) -> int:
        return int(self.inside.size)


@attrs.frozen(slots=True)
class BoundaryFaces:
    """Faces on the boundary of the domain."""

    cell: np.typing.NDArray[np.integer]
    """Index of the cell owning each face."""
    axis: np.typing.NDArray[np.integer]
    normal: np.typing.NDArray[np.floating]
    """Outer unit normal of each face, shaped `(num_faces, dimension)`."""
    center: np.typing.NDArray[np.floating]
    """Face centre positions, shaped `(num_faces, dimension)`."""
    area: np.typing.NDArray[np.floating]
    distance: np.typing.NDArray[np.floating]
    """Distance between the owning cell's centre and the face centre."""

    def __len__(self) -> int:
        return int(self.cell.size)


def _as_float_tuple(value: typing.Sequence[float]) -> typing.Tuple[float, ...]:
    return tuple(float(v) for v in np.atleast_1d(value))


def _as_int_tuple(value: typing.Sequence[int]) -> typing.Tuple[int, ...]:
    return tuple(int(v) for v in np.atleast_1d(value))


@attrs.frozen(slots=False)
class CubeGrid:
    """
    Axis-aligned rectilinear grid of equally sized cells in 1, 2 or 3 dimensions.

    Cells are numbered with the first axis varying fastest, which is the
    ordering VTK expects for cell data on rectilinear grids.
    """

    lower_left: typing.Tuple[float, ...] = attrs.field(converter=_as_float_tuple)
    """Coordinates of the lower left corner of the domain."""
    upper_right: typing.Tuple[float, ...] = attrs.field(converter=_as_float_tuple)
    """Coordinates of the upper right corner of the domain."""
    cells: typing.Tuple[int, ...] = attrs.field(converter=_as_int_tuple)
    """Number of cells along each axis."""

    def __attrs_post_init__(self) -> None:
        if not (len(self.lower_left) == len(self.upper_right) == len(self.cells)):
            raise ValidationError(
                "Corner coordinates and cell counts must have the same dimension"
            )
        if not 1 <= len(self.cells) <= 3:
            raise ValidationError(
                f"Only 1, 2 and 3 dimensional grids are supported, got {len(self.cells)}"
            )
        if any(n < 1 for n in self.cells):
            raise ValidationError(f"Cell counts must be positive, got {self.cells}")
        if any(hi <= lo for lo, hi in zip(self.lower_left, self.upper_right)):
            raise ValidationError(
                f"Upper right corner {self.upper_right} must lie above lower left corner {self.lower_left}"
            )

    @property
    def dimension(self) -> int:
        return len(self.cells)

    @property
    def num_cells(self) -> int:
        return int(np.prod(self.cells))

    @property
    def bounding_box_min(self) -> np.typing.NDArray[np.floating]:
        return np.asarray(self.lower_left, dtype=float)

    @property
    def bounding_box_max(self) -> np.typing.NDArray[np.floating]:
        return np.asarray(self.upper_right, dtype=float)

    @property
    def cell_sizes(self) -> np.typing.NDArray[np.floating]:
        """Edge lengths of a cell along each axis."""
        return (self.bounding_box_max - self.bounding_box_min) / np.asarray(self.cells)

    @property
    def cell_volume(self) -> float:
        return float(np.prod(self.cell_sizes))

    def face_area(self, axis: int) -> float:
        """Area of a face whose normal points along `axis`."""
        sizes = self.cell_sizes
        return float(np.prod(np.delete(sizes, axis)))

    def coordinates(self, axis: int) -> np.typing.NDArray[np.floating]:
        """Vertex coordinates along `axis`."""
        return np.linspace(
            self.lower_left[axis], self.upper_right[axis], self.cells[axis] + 1
        )

    def cell_index(self, multi_index: typing.Sequence[int]) -> int:
        return int(np.ravel_multi_index(tuple(multi_index), self.cells, order="F"))

    @functools.cached_property
    def cell_centers(self) -> np.typing.NDArray[np.floating]:
        """Cell centre positions, shaped `(num_cells, dimension)`."""
        ijk = np.unravel_index(np.arange(self.num_cells), self.cells, order="F")
        sizes = self.cell_sizes
        return np.stack(
            [
                self.lower_left[axis] + (ijk[axis] + 0.5) * sizes[axis]
                for axis in range(self.dimension)
            ],
            axis=-1,
        )

    @functools.cached_property
    def interior_faces(self) -> InteriorFaces:
        inside, outside, axes, areas, distances = [], [], [], [], []
        index = np.arange(self.num_cells).reshape(self.cells, order="F")
        sizes = self.cell_sizes
        for axis in range(self.dimension):
            lower = np.take(index, np.arange(self.cells[axis] - 1), axis=axis)
            upper = np.take(index, np.arange(1, self.cells[axis]), axis=axis)
            lower = lower.ravel(order="F")
            inside.append(lower)
            outside.append(upper.ravel(order="F"))
            axes.append(np.full(lower.size, axis))
            areas.append(np.full(lower.size, self.face_area(axis)))
            distances.append(np.full(lower.size, sizes[axis]))
        return InteriorFaces(
            inside=np.concatenate(inside).astype(np.int64),
            outside=np.concatenate(outside).astype(np.int64),
            axis=np.concatenate(axes).astype(np.int64),
            area=np.concatenate(areas),
            distance=np.concatenate(distances),
        )

    @functools.cached_property
    def boundary_faces(self) -> BoundaryFaces:
        cells, axes, normals, centers, areas, distances = [], [], [], [], [], []
        index = np.arange(self.num_cells).reshape(self.cells, order="F")
        sizes = self.cell_sizes
        for axis in range(self.dimension):
            for side, position in ((-1.0, 0), (1.0, self.cells[axis] - 1)):
                owners = np.take(index, position, axis=axis).ravel(order="F")
                normal = np.zeros(self.dimension)
                normal[axis] = side
                center = self.cell_centers[owners].copy()
                center[:, axis] += side * 0.5 * sizes[axis]
                cells.append(owners)
                axes.append(np.full(owners.size, axis))
                normals.append(np.tile(normal, (owners.size, 1)))
                centers.append(center)
                areas.append(np.full(owners.size, self.face_area(axis)))
                distances.append(np.full(owners.size, 0.5 * sizes[axis]))
        return BoundaryFaces(
            cell=np.concatenate(cells).astype(np.int64),
            axis=np.concatenate(axes).astype(np.int64),
            normal=np.concatenate(normals),
            center=np.concatenate(centers),
            area=np.concatenate(areas),
            distance=np.concatenate(distances),
        )

    @functools.cached_property
    def neighbours(self) -> typing.List[typing.List[int]]:
        """Face neighbours of every cell."""
        result: typing.List[typing.List[int]] = [[] for _ in range(self.num_cells)]
        faces = self.interior_faces
        for i, j in zip(faces.inside.tolist(), faces.outside.tolist()):
            result[i].append(j)
            result[j].append(i)
        return result

    @functools.cached_property
    def colors(self) -> np.typing.NDArray[np.integer]:
        """
        Colouring of the cells such that no two cells of the same colour share a
        neighbour or are neighbours themselves.

        Perturbing all cells of one colour at once leaves the residual stencils of
        distinct perturbed cells disjoint, so one residual evaluation per colour
        yields a full set of Jacobian columns.
        """
        ijk = np.unravel_index(np.arange(self.num_cells), self.cells, order="F")
        color = np.zeros(self.num_cells, dtype=np.int64)
        stride = 1
        for axis in range(self.dimension):
            color += (ijk[axis] % 3) * stride
            stride *= 3
        return color
