"""Fluid phases and capillary pressure / relative permeability laws."""

import typing

import attrs
import numpy as np

from porousflow.constants import c
from porousflow.errors import ValidationError
from porousflow.types import FloatOrArray
from porousflow.utils import clip

__all__ = [
    "FluidPhase",
    "SimpleH2O",
    "Air",
    "MaterialLaw",
    "RegularizedVanGenuchten",
    "LinearMaterial",
    "EffToAbsLaw",
]


class FluidPhase(typing.Protocol):
    name: str

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray: ...

    def viscosity(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray: ...


@attrs.frozen
class SimpleH2O:
    """Incompressible liquid water with constant viscosity."""

    name: str = "water"
    reference_density: typing.Optional[float] = None
    """Density override in kg/m³. Defaults to `c.LIQUID_WATER_DENSITY`."""
    reference_viscosity: typing.Optional[float] = None
    """Viscosity override in Pa·s. Defaults to `c.LIQUID_WATER_VISCOSITY`."""

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        rho = (
            self.reference_density
            if self.reference_density is not None
            else c.LIQUID_WATER_DENSITY
        )
        return np.full_like(np.asarray(pressure, dtype=float), rho)

    def viscosity(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        mu = (
            self.reference_viscosity
            if self.reference_viscosity is not None
            else c.LIQUID_WATER_VISCOSITY
        )
        return np.full_like(np.asarray(pressure, dtype=float), mu)


@attrs.frozen
class Air:
    """
    Dry air as an ideal gas.

    Density follows `ρ = p·M / (R·T)`, viscosity follows Sutherland's law.
    """

    name: str = "air"

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return (
            np.asarray(pressure, dtype=float)
            * c.MOLAR_MASS_AIR
            / (c.UNIVERSAL_GAS_CONSTANT * np.asarray(temperature, dtype=float))
        )

    def viscosity(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        t = np.asarray(temperature, dtype=float)
        t0 = c.KELVIN_OFFSET
        s = c.AIR_SUTHERLAND_TEMPERATURE
        mu = c.AIR_SUTHERLAND_REFERENCE_VISCOSITY * (t / t0) ** 1.5 * (t0 + s) / (t + s)
        return mu * np.ones_like(np.asarray(pressure, dtype=float))


class MaterialLaw(typing.Protocol):
    """Capillary pressure and relative permeabilities as functions of the wetting phase saturation."""

    def capillary_pressure(self, wetting_saturation: FloatOrArray) -> FloatOrArray: ...

    def relative_permeabilities(
        self, wetting_saturation: FloatOrArray
    ) -> typing.Tuple[FloatOrArray, FloatOrArray]: ...


@attrs.frozen
class RegularizedVanGenuchten:
    """
    van Genuchten-Mualem law on effective saturations, regularized at the ends.

    Implements: Pc = (1/α) * [(Se^(-1/m) - 1)^(1/n)] where m = 1 - 1/n

    Below `low_saturation` the capillary pressure is extrapolated linearly with
    the slope at `low_saturation`. Above `high_saturation` it is interpolated
    linearly to zero at `Se = 1`. Relative permeabilities are evaluated on the
    effective saturation clipped to [0, 1].
    """

    alpha: float
    """van Genuchten α parameter [1/Pa]."""
    n: float
    """van Genuchten n parameter."""
    low_saturation: float = 0.01
    high_saturation: float = 0.99

    def __attrs_post_init__(self) -> None:
        if self.alpha <= 0:
            raise ValidationError(f"van Genuchten alpha must be positive, got {self.alpha}")
        if self.n <= 1:
            raise ValidationError(f"van Genuchten n must be greater than 1, got {self.n}")
        if not 0 < self.low_saturation < self.high_saturation < 1:
            raise ValidationError(
                "Regularization thresholds must satisfy 0 < low < high < 1"
            )

    @property
    def m(self) -> float:
        return 1.0 - 1.0 / self.n

    def _raw_capillary_pressure(self, swe: FloatOrArray) -> FloatOrArray:
        return (np.power(swe, -1.0 / self.m) - 1.0) ** (1.0 / self.n) / self.alpha

    def _raw_capillary_pressure_derivative(self, swe: FloatOrArray) -> FloatOrArray:
        return (
            -1.0
            / (self.alpha * self.n * self.m)
            * (np.power(swe, -1.0 / self.m) - 1.0) ** (1.0 / self.n - 1.0)
            * np.power(swe, -1.0 / self.m - 1.0)
        )

    def capillary_pressure(self, wetting_saturation: FloatOrArray) -> FloatOrArray:
        swe = np.asarray(wetting_saturation, dtype=float)
        low, high = self.low_saturation, self.high_saturation
        inner = clip(swe, low, high)
        pc = self._raw_capillary_pressure(inner)

        pc_low = self._raw_capillary_pressure(low)
        slope_low = self._raw_capillary_pressure_derivative(low)
        pc_high = self._raw_capillary_pressure(high)
        slope_high = -pc_high / (1.0 - high)

        pc = np.where(swe < low, pc_low + slope_low * (swe - low), pc)
        pc = np.where(swe > high, pc_high + slope_high * (swe - high), pc)
        return pc

    def relative_permeabilities(
        self, wetting_saturation: FloatOrArray
    ) -> typing.Tuple[FloatOrArray, FloatOrArray]:
        swe = clip(np.asarray(wetting_saturation, dtype=float), 0.0, 1.0)
        m = self.m
        r = 1.0 - np.power(swe, 1.0 / m)
        krw = np.sqrt(swe) * (1.0 - np.power(r, m)) ** 2
        krn = np.power(1.0 - swe, 1.0 / 3.0) * np.power(r, 2.0 * m)
        return krw, krn


@attrs.frozen
class LinearMaterial:
    """
    Capillary pressure linear in the effective saturation, relative permeabilities equal to it.
    """

    entry_pressure: float = 0.0
    """Capillary pressure at `Se = 1` [Pa]."""
    max_pressure: float = 0.0
    """Capillary pressure at `Se = 0` [Pa]."""

    def capillary_pressure(self, wetting_saturation: FloatOrArray) -> FloatOrArray:
        swe = np.asarray(wetting_saturation, dtype=float)
        return self.entry_pressure + (1.0 - swe) * (self.max_pressure - self.entry_pressure)

    def relative_permeabilities(
        self, wetting_saturation: FloatOrArray
    ) -> typing.Tuple[FloatOrArray, FloatOrArray]:
        swe = clip(np.asarray(wetting_saturation, dtype=float), 0.0, 1.0)
        return swe, 1.0 - swe


@attrs.frozen
class EffToAbsLaw:
    """Applies a law defined on effective saturations to absolute saturations."""

    law: MaterialLaw
    residual_wetting_saturation: float = 0.0
    residual_nonwetting_saturation: float = 0.0

    def __attrs_post_init__(self) -> None:
        total = self.residual_wetting_saturation + self.residual_nonwetting_saturation
        if self.residual_wetting_saturation < 0 or self.residual_nonwetting_saturation < 0:
            raise ValidationError("Residual saturations cannot be negative")
        if total >= 1.0:
            raise ValidationError(
                f"Sum of residual saturations must be less than 1, got {total}"
            )

    def effective_saturation(self, wetting_saturation: FloatOrArray) -> FloatOrArray:
        return (np.asarray(wetting_saturation, dtype=float) - self.residual_wetting_saturation) / (
            1.0 - self.residual_wetting_saturation - self.residual_nonwetting_saturation
        )

    def capillary_pressure(self, wetting_saturation: FloatOrArray) -> FloatOrArray:
        return self.law.capillary_pressure(self.effective_saturation(wetting_saturation))

    def relative_permeabilities(
        self, wetting_saturation: FloatOrArray
    ) -> typing.Tuple[FloatOrArray, FloatOrArray]:
        return self.law.relative_permeabilities(
            self.effective_saturation(wetting_saturation)
        )
