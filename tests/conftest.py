import numpy as np
import pytest

from streamcore.clustering.metrics import EuclideanMetric
from streamcore.data.synthetic import generate_separated_balls


BALL_RADIUS = 0.25


@pytest.fixture
def metric():
    return EuclideanMetric()


@pytest.fixture
def four_balls():
    """Four clusters of 100 points, tight compared to the distance between clusters."""
    return generate_separated_balls(
        n_clusters=4,
        n_points_per_cluster=100,
        radius=BALL_RADIUS,
        separation=100.0,
        random_state=7,
    )


@pytest.fixture
def ball_radius():
    return BALL_RADIUS


@pytest.fixture
def cluster_diameter():
    return 2 * BALL_RADIUS


@pytest.fixture
def uniform_points():
    rng = np.random.default_rng(12)
    return rng.uniform(low=0.0, high=10.0, size=(300, 2))
