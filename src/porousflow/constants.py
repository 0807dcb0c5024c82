"""Physical constants used by the fluid systems and the discretization"""

from contextlib import contextmanager
from contextvars import ContextVar
import typing

import attrs


__all__ = ["Constant", "Constants", "c", "use_constants", "DEFAULT_CONSTANTS"]


@attrs.frozen(slots=True)
class Constant:
    """A physical quantity with its SI unit."""

    value: float
    description: str = ""
    unit: str = ""

    def __str__(self) -> str:
        return f"{self.value} {self.unit}".rstrip()


DEFAULT_CONSTANTS: typing.Dict[str, Constant] = {
    "STANDARD_PRESSURE": Constant(101325.0, "Standard atmospheric pressure", "Pa"),
    "KELVIN_OFFSET": Constant(273.15, "Offset between Celsius and Kelvin", "K"),
    "UNIVERSAL_GAS_CONSTANT": Constant(8.314462618, "Molar gas constant", "J/(mol·K)"),
    "ACCELERATION_DUE_TO_GRAVITY": Constant(9.80665, "Standard gravity", "m/s²"),
    # Components
    "MOLAR_MASS_AIR": Constant(0.02896546, "Molar mass of dry air", "kg/mol"),
    "MOLAR_MASS_WATER": Constant(0.018015268, "Molar mass of water", "kg/mol"),
    "LIQUID_WATER_DENSITY": Constant(1000.0, "Incompressible liquid water", "kg/m³"),
    "LIQUID_WATER_VISCOSITY": Constant(1.0e-3, "Liquid water at 20 °C", "Pa·s"),
    "AIR_SUTHERLAND_REFERENCE_VISCOSITY": Constant(
        1.716e-5, "Air viscosity at 273.15 K (Sutherland)", "Pa·s"
    ),
    "AIR_SUTHERLAND_TEMPERATURE": Constant(110.4, "Sutherland temperature of air", "K"),
}


@attrs.frozen(slots=True)
class Constants:
    """
    Immutable table of physical constants.

    Values are read as attributes (`constants.LIQUID_WATER_DENSITY`), the
    `Constant` records with their units by item access.
    """

    table: typing.Mapping[str, Constant] = attrs.field(
        factory=lambda: dict(DEFAULT_CONSTANTS)
    )

    def __getattr__(self, name: str) -> float:
        if name.startswith("_") or name == "table":
            raise AttributeError(name)
        try:
            return self.table[name].value
        except KeyError:
            raise AttributeError(f"Unknown physical constant '{name}'") from None

    def __getitem__(self, name: str) -> Constant:
        return self.table[name]

    def __contains__(self, name: object) -> bool:
        return name in self.table

    def override(self, **values: typing.Union[float, Constant]) -> "Constants":
        """
        Copy of the table with some constants replaced.

        Plain numbers keep the description and unit of the constant they
        replace.

        :param values: New values keyed by constant name.
        :return: A new `Constants` instance.
        """
        table = dict(self.table)
        for name, value in values.items():
            if isinstance(value, Constant):
                table[name] = value
            elif name in table:
                table[name] = attrs.evolve(table[name], value=float(value))
            else:
                table[name] = Constant(float(value))
        return type(self)(table)


_active_constants: ContextVar[Constants] = ContextVar(
    "_active_constants", default=Constants()
)


@contextmanager
def use_constants(constants: typing.Optional[Constants] = None, **values: float):
    """
    Context manager making a constants table the one seen through `c`.

    :param constants: Table to activate. Defaults to the active one.
    :param values: Individual overrides applied on top of `constants`.
    """
    base = constants if constants is not None else _active_constants.get()
    token = _active_constants.set(base.override(**values) if values else base)
    try:
        yield _active_constants.get()
    finally:
        _active_constants.reset(token)


class _ActiveConstants:
    """Reads through to the table activated by `use_constants`."""

    def __getattr__(self, name: str) -> float:
        return getattr(_active_constants.get(), name)

    def __getitem__(self, name: str) -> Constant:
        return _active_constants.get()[name]

    def __contains__(self, name: object) -> bool:
        return name in _active_constants.get()


c = _ActiveConstants()
"""Physical constants of the active context."""
