"""Tests for the tracker state machine."""

import logging

import numpy as np
import pytest

from sparseflow import (
    RotatedRectangle,
    ScaleTranslateRotate2D,
    SfotConfig,
    SparseFlowObjectTracker,
    TrackerNotInitializedError,
    TrackerStatus,
    TrackFailure,
)
from synthetic_scenes import ScriptedEstimator, ShiftPointTracker, make_texture


INITIAL = RotatedRectangle(50, 50, 20, 10, 0.0)


def scripted_tracker(dx=0.0, dy=0.0, estimator=None, **config):
    params = dict(number_of_samples=3, min_correspondences=9, pyramid_scales=(1,))
    params.update(config)
    points = ShiftPointTracker(dx=dx, dy=dy)
    tracker = SparseFlowObjectTracker(SfotConfig(**params), point_tracker=points,
                                      estimator=estimator, tracker_id="test")
    points.pyramids = tracker.pyramids
    return tracker


@pytest.fixture
def frame():
    return make_texture(100, 100, seed=31)


def test_starts_uninitialized():
    tracker = scripted_tracker()
    assert tracker.status == TrackerStatus.UNINITIALIZED
    assert not tracker.is_lost()
    assert tracker.region is None
    assert tracker.last_result is None


def test_update_before_init_raises(frame):
    tracker = scripted_tracker()
    with pytest.raises(TrackerNotInitializedError):
        tracker.update(frame)
    assert tracker.status == TrackerStatus.UNINITIALIZED


def test_init_activates_and_copies_region(frame):
    tracker = scripted_tracker()
    region = INITIAL.copy()
    tracker.init(frame, region)

    assert tracker.status == TrackerStatus.ACTIVE
    region.cx = 0
    assert tracker.region == INITIAL


def test_scripted_translation(frame):
    tracker = scripted_tracker(dx=5.0)
    tracker.init(frame, INITIAL)

    result = tracker.update(frame)
    assert result.success
    assert result.failure is None
    assert result.num_correspondences == 9
    assert abs(result.region.cx - 55.0) < 1e-9
    assert abs(result.region.cy - 50.0) < 1e-9
    assert abs(result.region.width - 20.0) < 1e-9

    result = tracker.update(frame)
    assert abs(result.region.cx - 60.0) < 1e-9


def test_output_region_is_overwritten(frame):
    tracker = scripted_tracker(dy=-3.0)
    tracker.init(frame, INITIAL)

    output = RotatedRectangle(0, 0, 1, 1)
    result = tracker.update(frame, output)
    assert result.success
    assert output == result.region
    assert abs(output.cy - 47.0) < 1e-9


def test_result_region_is_a_copy(frame):
    tracker = scripted_tracker(dx=1.0)
    tracker.init(frame, INITIAL)
    result = tracker.update(frame)
    result.region.cx = -100
    assert tracker.region.cx != -100


def test_min_correspondences_above_grid_always_fails(frame):
    tracker = scripted_tracker(min_correspondences=10)
    tracker.init(frame, INITIAL)

    result = tracker.update(frame)
    assert not result.success
    assert result.region is None
    assert result.failure == TrackFailure.INSUFFICIENT_CORRESPONDENCES
    assert result.num_correspondences == 9
    assert tracker.is_lost()


def test_lost_is_permanent_until_init(frame):
    tracker = scripted_tracker(min_correspondences=10)
    tracker.init(frame, INITIAL)
    tracker.update(frame)

    for _ in range(3):
        result = tracker.update(frame)
        assert not result.success
        assert result.failure == TrackFailure.ALREADY_LOST
        assert tracker.region == INITIAL
        assert tracker.last_result is result

    tracker.init(frame, RotatedRectangle(30, 30, 10, 10))
    assert tracker.status == TrackerStatus.ACTIVE
    assert not tracker.is_lost()


def test_already_lost_does_not_touch_pyramids(frame):
    tracker = scripted_tracker(min_correspondences=10)
    tracker.init(frame, INITIAL)
    previous = tracker.pyramids.previous

    assert tracker.update(frame).failure == TrackFailure.INSUFFICIENT_CORRESPONDENCES
    assert tracker.pyramids.previous is previous

    # A frame of the wrong size would raise if it were processed
    result = tracker.update(np.zeros((10, 10), dtype=np.uint8))
    assert result.failure == TrackFailure.ALREADY_LOST
    assert tracker.pyramids.previous is previous


def test_pyramids_swap_only_on_success(frame):
    tracker = scripted_tracker(dx=1.0)
    tracker.init(frame, INITIAL)
    previous, current = tracker.pyramids.previous, tracker.pyramids.current

    assert tracker.update(frame).success
    assert tracker.pyramids.previous is current
    assert tracker.pyramids.current is previous


def test_frame_size_mismatch_is_a_contract_error(frame):
    tracker = scripted_tracker()
    tracker.init(frame, INITIAL)
    with pytest.raises(ValueError):
        tracker.update(np.zeros((50, 50), dtype=np.uint8))


def test_reinit_with_new_size_reallocates(frame):
    tracker = scripted_tracker(dx=1.0)
    tracker.init(frame, INITIAL)
    assert tracker.pyramids.frame_size == (100, 100)

    bigger = make_texture(160, 120, seed=32)
    tracker.init(bigger, INITIAL)
    assert tracker.pyramids.frame_size == (160, 120)
    assert tracker.update(bigger).success


def test_bgr_frames_are_accepted():
    gray = make_texture(100, 100, seed=33)
    bgr = np.dstack([gray, gray, gray])
    tracker = scripted_tracker(dx=2.0)
    tracker.init(bgr, INITIAL)
    assert tracker.update(bgr).success


def test_loss_is_logged(frame, caplog):
    tracker = scripted_tracker(min_correspondences=10)
    tracker.init(frame, INITIAL)
    with caplog.at_level(logging.WARNING, logger="SparseFlowTracker-test"):
        tracker.update(frame)
    assert "insufficient_correspondences" in caplog.text


def test_default_collaborators_track_real_motion():
    image = make_texture(100, 100, seed=34)
    moved = np.roll(image, 3, axis=1)
    config = SfotConfig(number_of_samples=4, min_correspondences=8,
                        tracker_feature_radius=4, pyramid_scales=(1, 2))
    tracker = SparseFlowObjectTracker(config)
    tracker.init(image, RotatedRectangle(50, 50, 24, 18))

    result = tracker.update(moved)
    assert result.success, result.failure
    assert abs(result.region.cx - 53.0) < 0.5
    assert abs(result.region.cy - 50.0) < 0.5
    assert result.fit_error <= config.robust_max_error


@pytest.mark.parametrize("estimator, failure", [
    (ScriptedEstimator(error=1e9), TrackFailure.FIT_QUALITY_TOO_LOW),
    (ScriptedEstimator(ok=False), TrackFailure.MODEL_FIT_FAILED),
    (ScriptedEstimator(model=ScaleTranslateRotate2D(scale=-1.0)), TrackFailure.MODEL_FIT_FAILED),
])
def test_rejected_fit_leaves_region_and_pyramids(frame, estimator, failure):
    tracker = scripted_tracker(dx=2.0, estimator=estimator)
    tracker.init(frame, INITIAL)
    previous, current = tracker.pyramids.previous, tracker.pyramids.current

    result = tracker.update(frame)

    assert not result.success
    assert result.failure == failure
    assert result.num_correspondences == 9
    assert estimator.calls == 1
    assert tracker.pyramids.previous is previous
    assert tracker.pyramids.current is current
    assert tracker.region == INITIAL
    assert tracker.is_lost()

    assert tracker.update(frame).failure == TrackFailure.ALREADY_LOST
    assert estimator.calls == 1
    assert tracker.region == INITIAL


def test_fit_error_is_reported_on_rejection(frame):
    tracker = scripted_tracker(dx=2.0, estimator=ScriptedEstimator(error=1e9), robust_max_error=6.0)
    tracker.init(frame, INITIAL)
    assert tracker.update(frame).fit_error == 1e9


def test_injected_estimator_model_moves_region(frame):
    model = ScaleTranslateRotate2D(scale=1.0, theta=0.0, trans_x=4.0, trans_y=-1.0)
    tracker = scripted_tracker(dx=2.0, estimator=ScriptedEstimator(model=model, error=0.5))
    tracker.init(frame, INITIAL)

    result = tracker.update(frame)
    assert result.success
    assert result.fit_error == 0.5
    assert (result.region.cx, result.region.cy) == (54.0, 49.0)
