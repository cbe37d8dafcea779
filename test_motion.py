"""Tests for the motion estimator adapter."""

import math

import pytest

from sparseflow import (
    AssociatedPair,
    MotionEstimatorAdapter,
    RotatedRectangle,
    ScaleTranslateRotate2D,
    TrackFailure,
    create_similarity_lmeds,
)
from synthetic_scenes import ScriptedEstimator


def some_pairs(n):
    return [AssociatedPair(i, 2 * i, i + 1, 2 * i) for i in range(n)]


@pytest.fixture
def region():
    return RotatedRectangle(50, 50, 20, 10, 0.0)


def test_too_few_pairs(region):
    estimator = ScriptedEstimator()
    adapter = MotionEstimatorAdapter(estimator, min_correspondences=5, max_error=1.0)

    assert adapter.estimate(some_pairs(4), region) == TrackFailure.INSUFFICIENT_CORRESPONDENCES
    assert estimator.calls == 0
    assert region == RotatedRectangle(50, 50, 20, 10, 0.0)


def test_fit_failure(region):
    adapter = MotionEstimatorAdapter(ScriptedEstimator(ok=False), 2, 1.0)
    assert adapter.estimate(some_pairs(5), region) == TrackFailure.MODEL_FIT_FAILED
    assert region == RotatedRectangle(50, 50, 20, 10, 0.0)
    assert adapter.last_model is None


def test_fit_quality_too_low(region):
    adapter = MotionEstimatorAdapter(ScriptedEstimator(error=2.5), 2, max_error=2.0)
    assert adapter.estimate(some_pairs(5), region) == TrackFailure.FIT_QUALITY_TOO_LOW
    assert adapter.last_error == 2.5
    assert region == RotatedRectangle(50, 50, 20, 10, 0.0)


def test_error_equal_to_threshold_is_accepted(region):
    adapter = MotionEstimatorAdapter(ScriptedEstimator(error=2.0), 2, max_error=2.0)
    assert adapter.estimate(some_pairs(5), region) is None


def test_success_applies_model(region):
    model = ScaleTranslateRotate2D(scale=2.0, theta=0.0, trans_x=-50.0, trans_y=-50.0)
    adapter = MotionEstimatorAdapter(ScriptedEstimator(model=model, error=0.1), 2, 1.0)

    assert adapter.estimate(some_pairs(3), region) is None
    assert region == RotatedRectangle(50, 50, 40, 20, 0.0)
    assert adapter.last_model is model
    assert adapter.last_error == 0.1


def test_with_real_estimator_translation(region):
    pairs = [AssociatedPair(x, y, x + 5.0, y) for x in (40, 50, 60) for y in (45, 50, 55)]
    adapter = MotionEstimatorAdapter(create_similarity_lmeds(0xDEADBEEF, 50), 9, 6.0)

    assert adapter.estimate(pairs, region) is None
    assert math.isclose(region.cx, 55.0, abs_tol=1e-9)
    assert math.isclose(region.cy, 50.0, abs_tol=1e-9)
    assert math.isclose(region.width, 20.0, abs_tol=1e-9)
    assert math.isclose(region.theta, 0.0, abs_tol=1e-12)


def test_with_real_estimator_collinear_duplicates(region):
    # Every correspondence is the same point: nothing to fit
    pairs = [AssociatedPair(50, 50, 55, 50)] * 9
    adapter = MotionEstimatorAdapter(create_similarity_lmeds(1, 20), 9, 6.0)
    assert adapter.estimate(pairs, region) == TrackFailure.MODEL_FIT_FAILED


@pytest.mark.parametrize("scale", [0.0, -1.5, float("nan")])
def test_non_positive_scale_is_a_fit_failure(region, scale):
    model = ScaleTranslateRotate2D(scale=scale)
    adapter = MotionEstimatorAdapter(ScriptedEstimator(model=model, error=0.0), 2, 1.0)

    assert adapter.estimate(some_pairs(5), region) == TrackFailure.MODEL_FIT_FAILED
    assert region == RotatedRectangle(50, 50, 20, 10, 0.0)
    assert adapter.last_model is None
