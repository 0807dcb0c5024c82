"""Tests for run configuration validation and YAML persistence."""

import pytest
import yaml

from porousflow.config import Config, load_config
from porousflow.errors import DeserializationError, ValidationError


def _config(**kwargs):
    values = dict(
        max_time_step_size=20.0,
        min_time_step_size=1.0,
        max_time_step_divisions=3,
    )
    values.update(kwargs)
    return Config(**values)


class TestValidation:
    def test_defaults(self):
        config = _config()

        assert config.restart_interval == 10
        assert config.enable_vtk_output is True
        assert config.newton_tolerance == 1e-8
        assert config.newton_max_iterations == 18
        assert config.newton_target_iterations == 10
        assert config.enable_constraints is False

    def test_floor_above_ceiling_rejected(self):
        with pytest.raises(ValidationError):
            _config(min_time_step_size=30.0)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_time_step_size", 0.0),
            ("min_time_step_size", -1.0),
            ("max_time_step_divisions", -1),
            ("restart_interval", 0),
            ("newton_tolerance", 0.0),
            ("newton_max_iterations", 0),
        ],
    )
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValueError):
            _config(**{field: value})

    def test_non_integer_divisions_rejected(self):
        with pytest.raises(TypeError):
            _config(max_time_step_divisions=2.5)

    @pytest.mark.parametrize("value", [True, False])
    def test_boolean_divisions_rejected(self, value):
        with pytest.raises(TypeError):
            _config(max_time_step_divisions=value)

    def test_target_above_maximum_iterations_rejected(self):
        with pytest.raises(ValidationError):
            _config(newton_max_iterations=5, newton_target_iterations=6)

    def test_with_updates(self):
        config = _config()

        updated = config.with_updates(max_time_step_divisions=7)

        assert updated.max_time_step_divisions == 7
        assert config.max_time_step_divisions == 3

    def test_immutable(self):
        config = _config()

        with pytest.raises(AttributeError):
            config.max_time_step_size = 1.0


class TestYaml:
    def test_round_trip(self, tmp_path):
        config = _config(output_directory="out", enable_gravity=True)
        path = tmp_path / "config.yaml"

        config.dump(path)

        assert load_config(path) == config

    def test_partial_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "max_time_step_size": 50,
                    "min_time_step_size": 0.5,
                    "max_time_step_divisions": 4,
                }
            )
        )

        config = load_config(path)

        assert config.max_time_step_size == 50.0
        assert config.restart_interval == 10

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeserializationError):
            load_config(tmp_path / "missing.yaml")

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(DeserializationError):
            load_config(path)

    def test_missing_required_field_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"max_time_step_size": 50}))

        with pytest.raises(DeserializationError):
            load_config(path)
