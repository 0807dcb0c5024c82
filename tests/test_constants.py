"""Tests for the physical constants table and the solution precision switch."""

import numpy as np
import pytest

from porousflow._precision import get_dtype, get_floating_point_info, with_precision
from porousflow.constants import Constant, Constants, c, use_constants
from porousflow.materials import SimpleH2O


class TestConstants:
    def test_attribute_access_returns_value(self):
        assert c.ACCELERATION_DUE_TO_GRAVITY == pytest.approx(9.80665)
        assert c["LIQUID_WATER_DENSITY"].unit == "kg/m³"

    def test_unknown_constant(self):
        with pytest.raises(AttributeError):
            c.SPEED_OF_SOUND

    def test_override_keeps_unit(self):
        constants = Constants().override(LIQUID_WATER_DENSITY=998.2)

        assert constants.LIQUID_WATER_DENSITY == pytest.approx(998.2)
        assert constants["LIQUID_WATER_DENSITY"].unit == "kg/m³"
        assert Constants().LIQUID_WATER_DENSITY == pytest.approx(1000.0)

    def test_override_adds_new_constant(self):
        constants = Constants().override(REFERENCE_DEPTH=Constant(10.0, "Datum", "m"))

        assert "REFERENCE_DEPTH" in constants
        assert str(constants["REFERENCE_DEPTH"]) == "10.0 m"

    def test_context_override_is_scoped(self):
        with use_constants(LIQUID_WATER_DENSITY=500.0):
            assert c.LIQUID_WATER_DENSITY == pytest.approx(500.0)
            assert SimpleH2O().density(293.15, 1e5) == pytest.approx(500.0)

        assert c.LIQUID_WATER_DENSITY == pytest.approx(1000.0)

    def test_nested_contexts(self):
        with use_constants(Constants().override(KELVIN_OFFSET=273.0)):
            with use_constants(ACCELERATION_DUE_TO_GRAVITY=0.0):
                assert c.KELVIN_OFFSET == pytest.approx(273.0)
                assert c.ACCELERATION_DUE_TO_GRAVITY == 0.0
            assert c.ACCELERATION_DUE_TO_GRAVITY == pytest.approx(9.80665)


class TestPrecision:
    def test_default_is_double(self):
        assert get_dtype() == np.float64

    def test_with_precision_is_scoped(self):
        with with_precision(np.float32):
            assert get_dtype() == np.float32
            assert get_floating_point_info().eps == np.finfo(np.float32).eps

        assert get_dtype() == np.float64
