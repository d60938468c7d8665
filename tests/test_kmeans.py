import numpy as np
import pytest

from streamcore.clustering.kmeans import kmeans_plusplus
from streamcore.clustering.metrics import CallableMetric


def test_seeds_one_point_per_separated_cluster(four_balls):
    X, labels = four_balls
    indices = kmeans_plusplus(X, n_clusters=4, random_state=0)
    assert len(set(indices)) == 4
    assert sorted(labels[indices]) == [0, 1, 2, 3]


def test_k_median_seeding(four_balls):
    X, labels = four_balls
    indices = kmeans_plusplus(X, n_clusters=4, power=1, random_state=0)
    assert sorted(labels[indices]) == [0, 1, 2, 3]


def test_weights_exclude_points():
    X = np.array([[0.0], [1.0], [2.0], [50.0]])
    indices = kmeans_plusplus(X, n_clusters=1, weights=np.array([0.0, 0.0, 1.0, 0.0]), random_state=3)
    np.testing.assert_array_equal(indices, [2])


def test_more_clusters_than_points():
    X = np.array([[0.0], [1.0]])
    indices = kmeans_plusplus(X, n_clusters=5, random_state=0)
    assert sorted(indices) == [0, 1]


def test_identical_points_are_filled_up():
    indices = kmeans_plusplus(np.zeros((5, 2)), n_clusters=3, random_state=0)
    assert len(set(indices)) == 3


def test_generic_metric():
    metric = CallableMetric(lambda a, b: abs(a - b))
    indices = kmeans_plusplus([0, 1, 100, 101], n_clusters=2, metric=metric, random_state=0)
    assert {i // 2 for i in indices} == {0, 1}


def test_invalid_arguments():
    with pytest.raises(ValueError):
        kmeans_plusplus(np.empty((0, 2)), n_clusters=1)
    with pytest.raises(ValueError):
        kmeans_plusplus(np.zeros((3, 2)), n_clusters=0)
