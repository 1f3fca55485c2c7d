import numpy as np
import pytest
from conftest import assert_allclose

from incremental_sfm.camera import PinholeCamera, ProjectiveCamera
from incremental_sfm.errors import DegenerateConfiguration
from incremental_sfm.metric import dual_absolute_quadric, image_extent, upgrade_to_metric
from incremental_sfm.reconstruction import Reconstruction
from incremental_sfm.structure import PointStructure


def projective_reconstruction(dataset, views, seed=0):
    """Ground truth distorted by a random projective transformation."""
    rng = np.random.default_rng(seed)
    H = np.eye(4) + 0.2 * rng.standard_normal((4, 4))
    H_inv = np.linalg.inv(H)

    recon = Reconstruction()
    for i in views:
        scale = rng.uniform(0.5, 2.0) * rng.choice([-1.0, 1.0])
        recon.insert_camera(i, ProjectiveCamera(scale * dataset.projection_matrix(i) @ H))
    for track, X in enumerate(dataset.X):
        recon.insert_structure(track, PointStructure(H_inv @ np.append(X, 1.0)))
    return recon


def test_upgrade_recovers_metric_invariants(dataset, matches):
    views = list(range(dataset.n))
    recon = projective_reconstruction(dataset, views)

    assert upgrade_to_metric(recon, matches, image_size=(1000, 1000))

    cameras = [recon.get_camera(i) for i in views]
    assert all(isinstance(camera, PinholeCamera) for camera in cameras)
    for i, camera in enumerate(cameras):
        assert_allclose(camera.K, dataset.K[i], 1e-4)
        relative = camera.orientation_matrix @ cameras[0].orientation_matrix.T
        assert_allclose(relative, dataset.R[i] @ dataset.R[0].T, 1e-6)

    baseline = np.linalg.norm(cameras[1].center - cameras[0].center)
    true_baseline = np.linalg.norm(dataset.C[1] - dataset.C[0])
    for i, camera in enumerate(cameras[2:], start=2):
        ratio = np.linalg.norm(camera.center - cameras[0].center) / baseline
        true_ratio = np.linalg.norm(dataset.C[i] - dataset.C[0]) / true_baseline
        assert np.isclose(ratio, true_ratio, rtol=1e-6)

    points = np.array([recon.get_structure(t).coords for t in recon.structure_ids()])
    for camera in cameras:
        assert camera.in_front(points).all()
        assert_allclose(camera.project(points), dataset.x[cameras.index(camera)], 1e-6)


def test_upgrade_needs_three_views(dataset, matches):
    recon = projective_reconstruction(dataset, [0, 1])
    before = {i: recon.get_camera(i) for i in recon.camera_ids()}

    assert not upgrade_to_metric(recon, matches, image_size=(1000, 1000))
    for i, camera in before.items():
        assert recon.get_camera(i) is camera


def test_identical_views_are_degenerate(dataset):
    P = dataset.projection_matrix(0)
    with pytest.raises(DegenerateConfiguration):
        dual_absolute_quadric([P, P, P])


def test_image_extent_from_observations(matches):
    width, height = image_extent(matches)
    assert 0 < width < 1000
    assert 0 < height < 1000
