import numpy as np
import pytest

from incremental_sfm.camera import PinholeCamera
from incremental_sfm.reconstruction import Reconstruction
from incremental_sfm.structure import PointStructure
from incremental_sfm.synthetic import matches_from_dataset, n_realistic_cameras

N_VIEWS = 6
N_POINTS = 100


@pytest.fixture
def dataset():
    return n_realistic_cameras(N_VIEWS, N_POINTS, seed=3)


@pytest.fixture
def matches(dataset):
    return matches_from_dataset(dataset)


@pytest.fixture
def outlier_matches(dataset):
    return matches_from_dataset(dataset, n_outliers=int(0.4 * N_POINTS), seed=5)


def ground_truth_reconstruction(dataset, views, with_structure=True):
    recon = Reconstruction()
    for i in views:
        recon.insert_camera(i, PinholeCamera(dataset.K[i], dataset.R[i], dataset.t[i]))
    if with_structure:
        for track, X in enumerate(dataset.X):
            recon.insert_structure(track, PointStructure(X))
    return recon


def relative_motion(dataset, a, b):
    R = dataset.R[b] @ dataset.R[a].T
    t = dataset.t[b] - R @ dataset.t[a]
    return R, t


def assert_allclose(actual, expected, atol):
    np.testing.assert_allclose(actual, expected, rtol=0, atol=atol)
