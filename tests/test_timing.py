"""Tests for the simulation clock, cumulative timing and the stopwatch."""

import math

import pytest

from porousflow.errors import TimingError, ValidationError
from porousflow.timing import (
    CumulativeTiming,
    SimulationClock,
    StepAttempt,
    Stopwatch,
    Time,
    human_readable_time,
)


class TestSimulationClock:
    """Time step truncation and the episode and run predicates."""

    def test_step_truncated_to_run_end(self):
        clock = SimulationClock(start_time=0.0, end_time=10.0)
        clock.set_time(9.0)

        clock.set_time_step_size(5.0)

        assert clock.time_step_size == pytest.approx(1.0)
        assert clock.will_be_finished()

    def test_step_truncated_to_episode_end(self):
        clock = SimulationClock(end_time=100.0)
        clock.start_next_episode(3.0)

        clock.set_time_step_size(5.0)

        assert clock.time_step_size == 3.0
        assert clock.episode_will_be_over()
        assert not clock.will_be_finished()

    def test_step_below_limits_kept(self):
        clock = SimulationClock(end_time=100.0)

        clock.set_time_step_size(2.5)

        assert clock.time_step_size == 2.5
        assert not clock.episode_will_be_over()

    def test_step_never_negative(self):
        clock = SimulationClock(end_time=1.0)
        clock.set_time(2.0)

        clock.set_time_step_size(1.0)

        assert clock.time_step_size == 0.0

    def test_nan_step_rejected(self):
        clock = SimulationClock(end_time=1.0)

        with pytest.raises(TimingError):
            clock.set_time_step_size(math.nan)

    def test_increment_time(self):
        clock = SimulationClock(start_time=1.0, end_time=10.0)
        clock.set_time_step_size(2.0)

        clock.increment_time()

        assert clock.time == 3.0
        assert clock.time_step_index == 1

    def test_episode_over_after_landing_on_boundary(self):
        """Steps truncated to the episode end land on it despite rounding."""
        clock = SimulationClock(end_time=10.0)
        clock.start_next_episode(1.0)
        for _ in range(10):
            clock.set_time_step_size(0.1)
            clock.increment_time()

        assert clock.episode_is_over()

    def test_start_next_episode(self):
        clock = SimulationClock(end_time=10.0)
        clock.set_time(4.0)

        clock.start_next_episode(2.0)

        assert clock.episode_index == 1
        assert clock.episode_start_time == 4.0
        assert clock.episode_length == 2.0
        assert not clock.episode_is_over()

    def test_non_positive_episode_rejected(self):
        clock = SimulationClock()

        with pytest.raises(ValidationError):
            clock.start_next_episode(0.0)

    def test_finished_flag(self):
        clock = SimulationClock(end_time=10.0)
        assert not clock.is_finished()

        clock.set_finished()

        assert clock.is_finished()
        assert clock.will_be_finished()

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            SimulationClock(start_time=5.0, end_time=1.0)

    def test_end_time_before_current_time_rejected(self):
        clock = SimulationClock(end_time=10.0)
        clock.set_time(5.0)

        with pytest.raises(TimingError):
            clock.set_end_time(4.0)


class TestCumulativeTiming:
    def test_record_accumulates(self):
        timing = CumulativeTiming()

        timing.record(StepAttempt(1.0, False, 0.5, 0.25, 0.125, newton_iterations=18))
        timing.record(StepAttempt(0.5, True, 0.5, 0.25, 0.125, newton_iterations=4))

        assert timing.assemble_time == 1.0
        assert timing.solve_time == 0.5
        assert timing.update_time == 0.25
        assert timing.total_time == 1.75
        assert timing.num_attempts == 2
        assert timing.num_failed_attempts == 1
        assert timing.newton_iterations == 22

    def test_negative_timing_rejected(self):
        timing = CumulativeTiming()

        with pytest.raises(TimingError):
            timing.record(StepAttempt(1.0, True, assemble_time=-1.0))

    def test_reset(self):
        timing = CumulativeTiming()
        timing.record(StepAttempt(1.0, True, 1.0, 1.0, 1.0, 3))

        timing.reset()

        assert timing == CumulativeTiming()


class TestStopwatch:
    def test_elapsed_times_non_negative(self):
        stopwatch = Stopwatch().start()
        sum(range(1000))

        wall = stopwatch.stop()

        assert wall >= 0.0
        assert stopwatch.wall_time_elapsed() == wall
        assert stopwatch.cpu_time_elapsed() >= 0.0
        assert not stopwatch.is_running

    def test_accumulates_over_cycles(self):
        stopwatch = Stopwatch()
        first = stopwatch.start().stop()
        second = stopwatch.start().stop()

        assert stopwatch.wall_time_elapsed() == pytest.approx(first + second)

    def test_stop_without_start(self):
        assert Stopwatch().stop() == 0.0

    def test_halt_discards(self):
        stopwatch = Stopwatch().start()
        stopwatch.stop()

        stopwatch.halt()

        assert stopwatch.wall_time_elapsed() == 0.0


def test_time_components():
    assert Time(minutes=1, seconds=30) == 90.0
    assert Time(days=1) == 86400.0
    assert Time(milliseconds=500) == 0.5
    assert Time(weeks=1, hours=1) == 7 * 86400.0 + 3600.0
    assert Time(years=1) == 365.25 * 86400.0


def test_human_readable_time():
    assert human_readable_time(93784.0).startswith("93784 seconds (1 day, 2:03:04)")
    assert human_readable_time(math.inf) == "inf seconds"
