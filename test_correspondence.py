"""Tests for the forward-backward correspondence engine."""

from types import SimpleNamespace

import numpy as np

from sparseflow import ForwardBackwardEngine, KltTrackFault, forward_backward_error
from synthetic_scenes import ShiftPointTracker


def stub_pyramids():
    return SimpleNamespace(
        previous=SimpleNamespace(num_layers=1),
        current=SimpleNamespace(num_layers=1),
    )


def engine_with(tracker: ShiftPointTracker, max_error_sq: float):
    pyramids = stub_pyramids()
    tracker.pyramids = pyramids
    return ForwardBackwardEngine(tracker, max_error_sq), pyramids


SAMPLES = np.array([[10.0, 10.0], [20.0, 10.0], [10.0, 20.0], [20.0, 20.0]])


def test_forward_backward_error_is_squared():
    assert forward_backward_error(0, 0, 3, 4) == 25
    assert forward_backward_error(1.5, 2.5, 1.5, 2.5) == 0


def test_exact_round_trip_survives_zero_threshold():
    engine, pyramids = engine_with(ShiftPointTracker(dx=2.0, dy=-1.0), max_error_sq=0.0)
    pairs = engine.build(pyramids, SAMPLES)

    assert len(pairs) == 4
    for pair, (x, y) in zip(pairs, SAMPLES):
        assert (pair.x1, pair.y1) == (x, y)
        assert (pair.x2, pair.y2) == (x + 2.0, y - 1.0)


def test_round_trip_error_above_threshold_is_dropped():
    # Comes back 0.5 px short: error 0.25
    tracker = ShiftPointTracker(dx=3.0, dy=0.0, back_dx=2.5, back_dy=0.0)

    engine, pyramids = engine_with(tracker, max_error_sq=0.2)
    assert engine.build(pyramids, SAMPLES) == []

    engine, pyramids = engine_with(tracker, max_error_sq=0.25)
    assert len(engine.build(pyramids, SAMPLES)) == 4


def test_description_failure_skips_point():
    tracker = ShiftPointTracker(dx=1.0, describe_ok=lambda x, y: x < 15.0)
    engine, pyramids = engine_with(tracker, max_error_sq=1.0)

    pairs = engine.build(pyramids, SAMPLES)
    # Points at x=20 fail the first description; points at x=10 would be
    # re-described at x=11 and pass
    assert [(p.x1, p.y1) for p in pairs] == [(10.0, 10.0), (10.0, 20.0)]


def test_second_description_failure_skips_point():
    tracker = ShiftPointTracker(dx=10.0, describe_ok=lambda x, y: x < 25.0)
    engine, pyramids = engine_with(tracker, max_error_sq=1.0)

    pairs = engine.build(pyramids, SAMPLES)
    # x=20 -> 30 after the forward track, which can no longer be described
    assert [(p.x1, p.y1) for p in pairs] == [(10.0, 10.0), (10.0, 20.0)]


def test_track_fault_skips_point():
    tracker = ShiftPointTracker(dx=1.0, forward_fault=KltTrackFault.OUT_OF_BOUNDS)
    engine, pyramids = engine_with(tracker, max_error_sq=1.0)
    assert engine.build(pyramids, SAMPLES) == []


def test_call_sequence_per_sample():
    tracker = ShiftPointTracker(dx=1.0)
    engine, pyramids = engine_with(tracker, max_error_sq=1.0)
    engine.build(pyramids, SAMPLES[:1])

    assert tracker.calls == [
        ("describe", 10.0, 10.0),
        ("track", "forward"),
        ("describe", 11.0, 10.0),
        ("track", "backward"),
    ]


def test_no_state_leaks_between_calls():
    tracker = ShiftPointTracker(dx=1.0)
    engine, pyramids = engine_with(tracker, max_error_sq=1.0)

    assert len(engine.build(pyramids, SAMPLES)) == 4
    assert len(engine.build(pyramids, SAMPLES[:1])) == 1
    assert len(engine.build(pyramids, np.empty((0, 2)))) == 0
