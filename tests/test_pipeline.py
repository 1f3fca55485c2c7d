import numpy as np
from conftest import N_VIEWS, assert_allclose

from incremental_sfm.camera import PinholeCamera
from incremental_sfm.initialization import reconstruct_two_calibrated
from incremental_sfm.pipeline import reconstruct_incremental
from incremental_sfm.reconstruction import Reconstruction
from incremental_sfm.resection import resect_calibrated
from incremental_sfm.triangulation import triangulate_structure
from incremental_sfm.utils import rms_error, rotation_distance

PRECISION_ORIENTATION = 5e-2
PRECISION_POSITION = 5e-2


def test_incremental_euclidean_reconstruction_with_outliers(dataset, outlier_matches):
    recon = Reconstruction()
    # the gauge is fixed by giving the first camera its true pose
    camera0 = PinholeCamera(dataset.K[0], dataset.R[0], dataset.t[0])
    recon.insert_camera(0, camera0)

    result = reconstruct_two_calibrated(recon, outlier_matches, 0, 1, dataset.K[0], dataset.K[1])

    assert result.success
    assert recon.get_camera_count() == 2
    assert_allclose(recon.get_camera(0).orientation_matrix, dataset.R[0], 1e-8)
    assert_allclose(recon.get_camera(0).position, dataset.t[0], 1e-8)

    # monocular reconstruction: fix the scale with the true baseline
    camera = recon.get_camera(1)
    true_baseline = np.linalg.norm(dataset.C[1] - dataset.C[0])
    baseline = camera.center - camera0.center
    center = camera0.center + baseline * true_baseline / np.linalg.norm(baseline)
    camera.set_position(-camera.orientation_matrix @ center)

    assert rotation_distance(camera.orientation_matrix, dataset.R[1]) < PRECISION_ORIENTATION
    assert np.linalg.norm(camera.position - dataset.t[1]) < PRECISION_POSITION

    triangulate_structure(recon, outlier_matches, 1, 2)
    assert recon.get_structure_count() > 0

    for i in range(2, N_VIEWS):
        result = resect_calibrated(recon, outlier_matches, i, dataset.K[i])

        assert result.success
        assert recon.get_camera_count() == i + 1
        camera = recon.get_camera(i)
        assert rotation_distance(camera.orientation_matrix, dataset.R[i]) < PRECISION_ORIENTATION
        assert np.linalg.norm(camera.position - dataset.t[i]) < PRECISION_POSITION

        triangulate_structure(recon, outlier_matches, i, 3)
        assert rms_error(dataset.x[i], dataset.X, camera.projection_matrix) < 1.0

    recon.clear_cameras()
    recon.clear_structures()
    assert recon.get_camera_count() == 0
    assert recon.get_structure_count() == 0


def relative_rotations(cameras):
    return [c.orientation_matrix @ cameras[0].orientation_matrix.T for c in cameras]


def test_calibrated_pipeline_registers_every_view(dataset, outlier_matches):
    recon = reconstruct_incremental(outlier_matches, intrinsics=dataset.K[0])

    assert recon.camera_ids() == list(range(N_VIEWS))
    cameras = [recon.get_camera(i) for i in range(N_VIEWS)]
    truth = [dataset.R[i] @ dataset.R[0].T for i in range(N_VIEWS)]
    for estimated, expected in zip(relative_rotations(cameras), truth):
        assert rotation_distance(estimated, expected) < 1e-3

    assert recon.get_structure_count() > 0
    for track in recon.structure_ids():
        assert len(recon.matches.images_for_track(track)) >= 2


def test_uncalibrated_pipeline_is_metric(dataset, matches):
    recon = reconstruct_incremental(matches, image_size=(1000, 1000), run_ba=False)

    assert recon.camera_ids() == list(range(N_VIEWS))
    cameras = [recon.get_camera(i) for i in range(N_VIEWS)]
    assert all(isinstance(camera, PinholeCamera) for camera in cameras)
    for i, camera in enumerate(cameras):
        np.testing.assert_allclose(camera.K, dataset.K[i], rtol=1e-3, atol=1e-3)

    truth = [dataset.R[i] @ dataset.R[0].T for i in range(N_VIEWS)]
    for estimated, expected in zip(relative_rotations(cameras), truth):
        assert rotation_distance(estimated, expected) < 1e-3
