"""Boundary conditions and fluid states for boundary segments of a two-phase model."""

import typing

import attrs
import numpy as np

from porousflow.errors import ValidationError
from porousflow.types import BoundaryKind


__all__ = [
    "WETTING_PHASE",
    "NONWETTING_PHASE",
    "FluidState",
    "BoundaryCondition",
    "NoFlowBoundary",
    "MassRateBoundary",
    "FreeFlowBoundary",
]

WETTING_PHASE = 0
"""Index of the wetting phase in per-phase arrays."""
NONWETTING_PHASE = 1
"""Index of the non-wetting phase in per-phase arrays."""


def _as_phase_array(value: typing.Any) -> np.typing.NDArray[np.floating]:
    array = np.asarray(value, dtype=float).reshape(-1)
    if array.size != 2:
        raise ValidationError(
            f"Expected one value per phase (2), got {array.size}"
        )
    return array


@attrs.frozen(eq=False)
class FluidState:
    """
    Thermodynamic state of both phases at a point, independent of any cell.

    Example usage:
    ```python
    from porousflow.boundary_conditions import FluidState

    # Fully water saturated at atmospheric pressure and 20 °C
    state = FluidState(
        pressures=(1e5, 1e5),
        saturations=(1.0, 0.0),
        temperature=293.15,
    )
    ```
    """

    pressures: np.typing.NDArray[np.floating] = attrs.field(converter=_as_phase_array)
    """Phase pressures (wetting, non-wetting) in Pa."""
    saturations: np.typing.NDArray[np.floating] = attrs.field(converter=_as_phase_array)
    """Phase saturations (wetting, non-wetting)."""
    temperature: float = attrs.field(converter=float)
    """Temperature in K."""

    def __attrs_post_init__(self) -> None:
        if self.temperature <= 0:
            raise ValidationError(
                f"Temperature must be positive (K), got {self.temperature}"
            )
        if not np.isclose(self.saturations.sum(), 1.0):
            raise ValidationError(
                f"Phase saturations must sum to 1, got {self.saturations.tolist()}"
            )

    @property
    def wetting_pressure(self) -> float:
        return float(self.pressures[WETTING_PHASE])

    @property
    def nonwetting_saturation(self) -> float:
        return float(self.saturations[NONWETTING_PHASE])

    def primary_variables(self) -> np.typing.NDArray[np.floating]:
        """Primary variables `(p_w, S_n)` taken from the state as-is."""
        return np.array([self.wetting_pressure, self.nonwetting_saturation])


@attrs.frozen
class BoundaryCondition:
    """Base class for conditions on a boundary segment."""

    kind: typing.ClassVar[BoundaryKind]

    @classmethod
    def no_flow(cls) -> "NoFlowBoundary":
        return NoFlowBoundary()

    @classmethod
    def mass_rate(cls, rates: typing.Sequence[float]) -> "MassRateBoundary":
        return MassRateBoundary(rates=rates)

    @classmethod
    def free_flow(cls, fluid_state: FluidState) -> "FreeFlowBoundary":
        return FreeFlowBoundary(fluid_state=fluid_state)


@attrs.frozen
class NoFlowBoundary(BoundaryCondition):
    """Impermeable boundary segment. No mass of either phase crosses it."""

    kind: typing.ClassVar[BoundaryKind] = "no_flow"


@attrs.frozen(eq=False)
class MassRateBoundary(BoundaryCondition):
    """
    Prescribed mass flux per phase across the boundary segment.

    Rates are in kg/(m²·s). Positive rates leave the domain, negative rates
    enter it.

    Example usage:
    ```python
    # Inject 1 kg/(m²·s) of the non-wetting phase
    inflow = MassRateBoundary(rates=(0.0, -1.0))
    ```
    """

    kind: typing.ClassVar[BoundaryKind] = "mass_rate"

    rates: np.typing.NDArray[np.floating] = attrs.field(converter=_as_phase_array)
    """Mass rates (wetting, non-wetting) in kg/(m²·s), positive out of the domain."""


@attrs.frozen(eq=False)
class FreeFlowBoundary(BoundaryCondition):
    """
    Boundary segment in contact with a reservoir at a given fluid state.

    Fluxes follow the two-point potential difference between the cell and the
    state. Phase mobilities are upwinded: outflow uses the cell, inflow uses
    the boundary state.
    """

    kind: typing.ClassVar[BoundaryKind] = "free_flow"

    fluid_state: FluidState
    """State of the fluid outside the domain."""
