"""
Tests for the time integration controller: step size bisection, the
pre-step clamp, the retry budget and cumulative timing.
"""

import pytest

from porousflow.config import Config
from porousflow.controller import ConvergenceBudget
from porousflow.errors import ConvergenceError, ValidationError
from porousflow.timing import CumulativeTiming


class TestBisection:
    """Step size halving after failed attempts."""

    def test_converges_after_three_divisions(self, make_controller):
        """Attempts at 8, 4 and 2 fail, the attempt at 1 converges."""
        harness = make_controller([False, False, False, True])

        harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [8.0, 4.0, 2.0, 1.0]
        assert harness.clock.time_step_size == 1.0
        assert harness.model.updates == 4

    def test_exhausted_budget_raises(self, make_controller):
        """All four attempts fail and the next halving is below the floor."""
        harness = make_controller([False, False, False, False])

        with pytest.raises(ConvergenceError) as exc_info:
            harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [8.0, 4.0, 2.0, 1.0]
        assert exc_info.value.divisions == 3
        assert exc_info.value.time_step_size == 1.0
        assert exc_info.value.max_divisions == 3
        assert "after 3 time-step divisions" in str(exc_info.value)
        assert "dt=1.0" in str(exc_info.value)

    def test_zero_divisions_fails_immediately(self, make_controller):
        """With no division budget a single failed attempt is fatal."""
        harness = make_controller([False], time_step_size=5.0, max_divisions=0)

        with pytest.raises(ConvergenceError) as exc_info:
            harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [5.0]
        assert exc_info.value.divisions == 0
        assert exc_info.value.time_step_size == 5.0

    def test_each_retry_halves_step(self, make_controller):
        """Consecutive attempts differ by exactly a factor of two."""
        harness = make_controller(
            [False] * 5 + [True],
            time_step_size=64.0,
            min_time_step_size=0.5,
            max_divisions=10,
        )

        harness.controller.time_integration()

        sizes = harness.solver.attempted_sizes
        for previous, current in zip(sizes, sizes[1:]):
            assert current == previous / 2

    def test_floor_stops_bisection_before_budget(self, make_controller):
        """Halving never produces an attempt below the minimum step size."""
        harness = make_controller(
            [False] * 3,
            time_step_size=4.0,
            min_time_step_size=1.5,
            max_divisions=10,
        )

        with pytest.raises(ConvergenceError) as exc_info:
            harness.controller.time_integration()

        # 4 -> 2, then 1 would be below the floor
        assert harness.solver.attempted_sizes == [4.0, 2.0]
        assert exc_info.value.divisions == 1
        assert all(size >= 1.5 for size in harness.solver.attempted_sizes)

    @pytest.mark.parametrize("max_divisions", [0, 1, 2, 5])
    def test_attempts_bounded_by_budget(self, make_controller, max_divisions):
        """No more than max_divisions + 1 attempts are made per time step."""
        harness = make_controller(
            [False] * (max_divisions + 1),
            time_step_size=1024.0,
            min_time_step_size=0.0,
            max_time_step_size=1024.0,
            max_divisions=max_divisions,
        )

        with pytest.raises(ConvergenceError):
            harness.controller.time_integration()

        assert harness.solver.num_attempts == max_divisions + 1

    def test_success_stops_immediately(self, make_controller):
        """A converged attempt ends the step without touching the clock again."""
        harness = make_controller([False, True, True], time_step_size=8.0)

        harness.controller.time_integration()

        assert harness.solver.num_attempts == 2
        assert harness.clock.history == [4.0]
        assert harness.clock.time_step_size == 4.0


class TestClamp:
    """Clamping of the tentative step size before the first attempt."""

    def test_small_step_raised_to_floor(self, make_controller):
        harness = make_controller([True], time_step_size=0.3)

        harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [1.0]

    def test_no_floor_when_run_ends(self, make_controller):
        """A short final step of the run is attempted as is."""
        harness = make_controller([True], time_step_size=0.3, will_be_finished=True)

        harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [0.3]
        assert harness.clock.history == []

    def test_no_floor_when_episode_ends(self, make_controller):
        """A short final step of an episode is attempted as is."""
        harness = make_controller(
            [True], time_step_size=0.3, episode_will_be_over=True
        )

        harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [0.3]

    def test_large_step_capped_at_maximum(self, make_controller):
        harness = make_controller([True], time_step_size=500.0, max_time_step_size=20.0)

        harness.controller.time_integration()

        assert harness.solver.attempted_sizes == [20.0]

    def test_step_within_bounds_untouched(self, make_controller):
        harness = make_controller([True], time_step_size=8.0)

        harness.controller.time_integration()

        assert harness.clock.history == []


class TestTimingAccumulation:
    """Phase timings of all attempts end up in the cumulative totals."""

    def test_failed_attempts_are_counted(self, make_controller):
        harness = make_controller([False, False, True])

        harness.controller.time_integration()

        timing = harness.timing
        # Attempts report 1, 2 and 3 times the base timings
        assert timing.assemble_time == pytest.approx(1.0 + 2.0 + 3.0)
        assert timing.solve_time == pytest.approx(10.0 + 20.0 + 30.0)
        assert timing.update_time == pytest.approx(100.0 + 200.0 + 300.0)
        assert timing.num_attempts == 3
        assert timing.num_failed_attempts == 2
        assert timing.newton_iterations == 15

    def test_totals_accumulate_over_time_steps(self, make_controller):
        """Totals keep growing across calls sharing one timing object."""
        timing = CumulativeTiming()
        first = make_controller([True], timing=timing)
        second = make_controller([False, True], timing=timing)

        first.controller.time_integration()
        second.controller.time_integration()

        assert timing.assemble_time == pytest.approx(1.0 + 1.0 + 2.0)
        assert timing.solve_time == pytest.approx(10.0 + 10.0 + 20.0)
        assert timing.update_time == pytest.approx(100.0 + 100.0 + 200.0)
        assert timing.num_attempts == 3

    def test_exhausted_step_still_recorded(self, make_controller):
        harness = make_controller([False], max_divisions=0)

        with pytest.raises(ConvergenceError):
            harness.controller.time_integration()

        assert harness.timing.num_attempts == 1
        assert harness.timing.num_failed_attempts == 1
        assert harness.timing.total_time == pytest.approx(111.0)


class TestNextTimeStepSize:
    """Suggestions for the following time step."""

    def test_suggestion_capped_at_maximum(self, make_controller):
        harness = make_controller([True], suggestion=50.0, max_time_step_size=20.0)

        assert harness.controller.next_time_step_size() == 20.0

    def test_suggestion_below_maximum_passes_through(self, make_controller):
        harness = make_controller([True], suggestion=12.5, max_time_step_size=20.0)

        assert harness.controller.next_time_step_size() == 12.5

    def test_suggestion_based_on_current_step(self, make_controller):
        """Without an explicit suggestion the scripted solver echoes the step size."""
        harness = make_controller([True], time_step_size=8.0)

        assert harness.controller.next_time_step_size() == 8.0


class TestRestartCadence:
    @pytest.mark.parametrize(
        "index,expected",
        [(0, False), (1, False), (9, False), (10, True), (20, True), (25, False)],
    )
    def test_restart_every_interval(self, make_controller, index, expected):
        harness = make_controller([True], time_step_index=index)

        assert harness.controller.should_write_restart_file() is expected

    def test_output_every_step(self, make_controller):
        harness = make_controller([True])

        assert harness.controller.should_write_output() is True


class TestConvergenceBudget:
    def test_from_config(self):
        config = Config(
            max_time_step_size=20.0,
            min_time_step_size=1.0,
            max_time_step_divisions=4,
        )

        budget = ConvergenceBudget.from_config(config)

        assert budget.max_divisions == 4
        assert budget.min_time_step_size == 1.0
        assert budget.max_time_step_size == 20.0

    def test_floor_above_ceiling_rejected(self):
        with pytest.raises(ValidationError):
            ConvergenceBudget(
                max_divisions=1, min_time_step_size=5.0, max_time_step_size=1.0
            )

    def test_negative_divisions_rejected(self):
        with pytest.raises(ValueError):
            ConvergenceBudget(
                max_divisions=-1, min_time_step_size=0.0, max_time_step_size=1.0
            )
