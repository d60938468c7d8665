import numpy as np
import pytest

from streamcore.clustering.metrics import CallableMetric, EuclideanMetric
from streamcore.coresets.facility import Facility, FacilityRegistry, moved_weight


def make_registry(positions, weights=None, metric=None):
    metric = EuclideanMetric() if metric is None else metric
    registry = FacilityRegistry(metric)
    weights = [1.0] * len(positions) if weights is None else weights
    for i, (position, weight) in enumerate(zip(positions, weights)):
        registry.open(metric.prepare(position), weight=weight, point_id=i)
    return registry


def absolute_difference():
    return CallableMetric(lambda a, b: abs(a - b))


def test_nearest_on_empty_registry():
    registry = FacilityRegistry(EuclideanMetric())
    index, distance = registry.nearest(np.zeros(2))
    assert index == -1
    assert distance == np.inf


def test_nearest_breaks_ties_by_lowest_index():
    registry = make_registry([[-1.0, 0.0], [1.0, 0.0]])
    index, distance = registry.nearest(np.zeros(2))
    assert index == 0
    assert distance == pytest.approx(1.0)


def test_assign_moves_representative_to_centroid():
    registry = make_registry([[0.0]])
    increase = registry.assign(0, np.array([1.0]), weight=1.0, distance=1.0)

    # Both the old and the new point end up 0.5 away from the centroid
    assert increase == pytest.approx(1.0)
    np.testing.assert_allclose(registry[0].position, [0.5])
    np.testing.assert_allclose(registry.positions(), [[0.5]])

    assert registry.assign(0, np.array([0.5]), weight=2.0, distance=0.0) == 0.0
    assert registry[0].weight == pytest.approx(4.0)
    assert registry[0].cost == pytest.approx(1.0)
    assert registry.total_cost == pytest.approx(1.0)
    assert registry[0].point_id == 0


def test_assign_keeps_representative_without_centroids():
    registry = make_registry([0.0], metric=absolute_difference())
    assert registry.assign(0, 1.0, weight=2.0, distance=1.0) == pytest.approx(2.0)
    assert registry[0].position == 0.0
    assert registry.total_weight == pytest.approx(3.0)
    assert registry.total_cost == pytest.approx(2.0)


def test_representative_is_the_mean_of_its_points():
    rng = np.random.default_rng(5)
    points = rng.normal(size=(20, 3))
    metric = EuclideanMetric()
    registry = FacilityRegistry(metric)
    registry.open(metric.prepare(points[0]))
    for point in points[1:]:
        _, distance = registry.nearest(point)
        registry.assign(0, metric.prepare(point), weight=1.0, distance=distance)

    np.testing.assert_allclose(registry[0].position, points.mean(axis=0))
    assert np.linalg.norm(points - registry[0].position, axis=1).sum() <= registry.total_cost + 1e-9


def test_merge_onto_weighted_centroid():
    registry = make_registry([[0.0], [2.0], [5.0]], weights=[1.0, 3.0, 1.0])
    survivor = registry.merge(0, 1)

    assert survivor == 0
    assert len(registry) == 2
    np.testing.assert_allclose(registry[0].position, [1.5])
    # The heavier facility keeps its identity
    assert registry[0].point_id == 1
    assert registry[0].weight == pytest.approx(4.0)
    # 1 * 1.5 + 3 * 0.5
    assert registry[0].cost == pytest.approx(3.0)
    np.testing.assert_array_equal(registry[1].position, [5.0])
    np.testing.assert_allclose(registry.positions(), [[1.5], [5.0]])


def test_merge_keeps_heavier_representative_without_centroids():
    registry = make_registry([0.0, 2.0, 5.0], weights=[1.0, 3.0, 1.0], metric=absolute_difference())
    registry.merge(0, 1)
    assert registry[0].position == 2.0
    assert registry[0].point_id == 1
    assert registry[0].cost == pytest.approx(2.0)


def test_merge_of_equal_weights_keeps_older_identity():
    registry = make_registry([[0.0], [4.0]])
    registry.merge(1, 0)
    assert registry[0].point_id == 0
    assert registry[0].order == 0
    np.testing.assert_allclose(registry[0].position, [2.0])
    assert registry[0].cost == pytest.approx(4.0)


def test_merge_with_itself_is_rejected():
    registry = make_registry([[0.0], [1.0]])
    with pytest.raises(ValueError):
        registry.merge(1, 1)


def test_absorb_external_facility():
    registry = make_registry([[0.0]])
    outsider = Facility(position=np.array([3.0]), point_id=7, order=5, weight=2.0, cost=0.5)
    increase = registry.absorb(0, outsider, distance=3.0)

    # 1 * 2 + 2 * 1
    assert increase == pytest.approx(4.0)
    assert registry[0].point_id == 7
    assert registry[0].weight == pytest.approx(3.0)
    assert registry[0].cost == pytest.approx(4.5)
    np.testing.assert_allclose(registry.positions(), [[2.0]])


def test_orders_stay_unique_after_absorbing_a_newer_facility():
    registry = make_registry([[0.0]])
    registry.absorb(0, Facility(position=np.array([1.0]), point_id=9, order=4, weight=3.0), distance=1.0)
    assert registry[0].order == 4

    registry.open(np.array([50.0]))
    assert [f.order for f in registry] == [4, 5]


def test_adopt_continues_insertion_order():
    registry = FacilityRegistry(EuclideanMetric())
    registry.adopt(Facility(position=np.array([0.0]), point_id=0, order=10, weight=1.0))
    registry.open(np.array([1.0]))
    assert registry[1].order == 11


def test_min_separation():
    assert make_registry([[0.0]]).min_separation() == np.inf
    assert make_registry([[0.0], [0.0]]).min_separation() == np.inf
    assert make_registry([[0.0], [3.0], [0.0], [4.5]]).min_separation() == pytest.approx(1.5)


def test_moved_weight():
    assert moved_weight(1.0, 3.0, centroid=True) == pytest.approx(1.5)
    assert moved_weight(1.0, 3.0, centroid=False) == 1.0
    np.testing.assert_allclose(moved_weight(np.array([2.0, 4.0]), 4.0, centroid=True), [8 / 3, 4.0])


def test_mean_cost():
    facility = Facility(position=np.zeros(1), point_id=0, order=0)
    assert facility.mean_cost == 0.0
    facility.insert(weight=4.0, distance=0.5)
    assert facility.mean_cost == pytest.approx(0.5)
