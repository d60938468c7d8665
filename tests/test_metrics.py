import numpy as np
import pytest

from scipy.spatial.distance import cdist

from streamcore.clustering.metrics import (
    CallableMetric,
    ChebyshevMetric,
    EuclideanMetric,
    ManhattanMetric,
    MetricSpace,
    get_metric,
    validate_distances,
)
from streamcore.helpers.errors import InvalidMetricError


def test_euclidean_distance():
    metric = EuclideanMetric()
    assert metric.distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)


def test_vector_metrics_agree_with_scipy():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(20, 5))
    for metric, scipy_name in [
        (EuclideanMetric(), "euclidean"),
        (ManhattanMetric(), "cityblock"),
        (ChebyshevMetric(), "chebyshev"),
    ]:
        expected = cdist(X[:1], X, metric=scipy_name)[0]
        np.testing.assert_allclose(metric.distances(X[0], X), expected)
        np.testing.assert_allclose(metric.pairwise(X), cdist(X, X, metric=scipy_name))


def test_distance_is_symmetric_and_zero_on_identical_points():
    metric = ManhattanMetric()
    a = np.array([1.0, -2.0, 3.0])
    b = np.array([0.5, 4.0, -1.0])
    assert metric.distance(a, b) == pytest.approx(metric.distance(b, a))
    assert metric.distance(a, a) == 0.0


def test_parallel_pairwise_is_identical():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(31, 3))
    metric = EuclideanMetric()
    np.testing.assert_array_equal(metric.pairwise(X, n_jobs=1), metric.pairwise(X, n_jobs=2))


def test_prepare_returns_read_only_copy():
    metric = EuclideanMetric()
    source = np.array([[1.0, 2.0]])
    prepared = metric.prepare(source[0])
    source[0, 0] = 100.0
    assert prepared[0] == 1.0
    assert not prepared.flags.writeable


def test_dimension_mismatch_is_rejected():
    metric = EuclideanMetric()
    with pytest.raises(ValueError):
        metric.distances(np.zeros(3), np.zeros((2, 4)))


def test_callable_metric_works_on_arbitrary_objects():
    metric = CallableMetric(lambda a, b: abs(len(a) - len(b)), name="length")
    words = ["a", "abc", "abcdef"]
    np.testing.assert_array_equal(metric.distances("ab", metric.stack(words)), [1.0, 1.0, 4.0])
    assert metric.pairwise(words).shape == (3, 3)
    assert metric.name == "length"


def test_get_metric():
    assert isinstance(get_metric("euclidean"), EuclideanMetric)
    assert isinstance(get_metric("L1"), ManhattanMetric)
    with pytest.raises(ValueError):
        get_metric("cosine")


@pytest.mark.parametrize("values", [[0.0, np.nan], [1.0, -0.5]])
def test_validate_distances_rejects_invalid_values(values):
    with pytest.raises(InvalidMetricError):
        validate_distances(np.array(values))


def test_validate_distances_accepts_empty_and_valid_values():
    assert validate_distances(np.empty(0)).size == 0
    np.testing.assert_array_equal(validate_distances(np.array([0.0, 2.0])), [0.0, 2.0])


@pytest.mark.parametrize("metric", [EuclideanMetric(), ManhattanMetric(), ChebyshevMetric()])
def test_centroid_lies_on_the_segment(metric):
    a = metric.prepare([0.0, 0.0])
    b = metric.prepare([3.0, 6.0])
    centroid = metric.centroid(a, 1.0, b, 2.0)

    np.testing.assert_allclose(centroid, [2.0, 4.0])
    assert metric.distance(a, centroid) == pytest.approx(2 / 3 * metric.distance(a, b))
    assert metric.distance(b, centroid) == pytest.approx(1 / 3 * metric.distance(a, b))


def test_callable_metric_has_no_centroids():
    metric = CallableMetric(lambda a, b: abs(a - b))
    assert not metric.has_centroids
    with pytest.raises(NotImplementedError):
        metric.centroid(0.0, 1.0, 1.0, 1.0)


def test_metric_space_is_abstract():
    with pytest.raises(TypeError):
        MetricSpace()
