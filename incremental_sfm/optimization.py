import numpy as np
from loguru import logger
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from incremental_sfm.config import BA_FTOL, BA_LOSS, BA_MAX_NFEV
from incremental_sfm.errors import NonConvergence


def _collect_observations(reconstruction, matches, cameras):
    """(camera index, point index, 2D) triples sorted by camera, and the point ids."""
    track_ids = [
        track for track in reconstruction.structure_ids()
        if reconstruction.get_structure(track).is_finite
    ]
    point_index = {track: i for i, track in enumerate(track_ids)}

    observations = []
    for cam_idx, cam_id in enumerate(cameras):
        for track in matches.tracks_in_image(cam_id):
            if track in point_index:
                observations.append((cam_idx, point_index[track], matches.get(cam_id, track)))
    return observations, track_ids


def _fix_scale(reconstruction, cameras, mean_distance_before, track_ids):
    """Rescales about the fixed camera so the mean camera distance to it is unchanged."""
    reference = reconstruction.get_camera(cameras[0]).center
    others = [reconstruction.get_camera(cam_id) for cam_id in cameras[1:]]
    mean_distance_after = np.mean([np.linalg.norm(camera.center - reference) for camera in others])
    if mean_distance_after <= 0:
        return
    scale = mean_distance_before / mean_distance_after

    for camera in others:
        center = reference + scale * (camera.center - reference)
        camera.set_position(-camera.R @ center)
    for track in track_ids:
        structure = reconstruction.get_structure(track)
        structure.set_params(reference + scale * (structure.point - reference))


def bundle_adjust(reconstruction, matches, loss=BA_LOSS, ftol=BA_FTOL, max_nfev=BA_MAX_NFEV):
    """Jointly refines every camera and finite structure point; returns the RMS reprojection error.

    The camera with the smallest id is held fixed. When every camera is
    metric the scale is fixed too: after the solve, the scene is rescaled
    about the fixed camera so the mean distance from the other camera
    centres to it matches its value before the adjustment.
    Raises NonConvergence, leaving the reconstruction unchanged, when the
    solver stops on its evaluation budget or reports failure.
    """
    cameras = reconstruction.camera_ids()
    observations, track_ids = _collect_observations(reconstruction, matches, cameras)
    logger.info(
        f"Starting Bundle Adjustment (Cameras: {len(cameras)}, Points: {len(track_ids)}, "
        f"Observations: {len(observations)})"
    )
    if not observations:
        return 0.0

    camera_objs = [reconstruction.get_camera(cam_id) for cam_id in cameras]
    fixed_params = camera_objs[0].params()

    # parameter layout: cameras[1:] in order, then 3 coordinates per point
    offsets = []
    n_cam_params = 0
    for camera in camera_objs[1:]:
        size = len(camera.params())
        offsets.append((n_cam_params, size))
        n_cam_params += size
    n_points = len(track_ids)

    x0 = np.concatenate(
        [camera.params() for camera in camera_objs[1:]]
        + [reconstruction.get_structure(track).params() for track in track_ids]
    )

    cam_indices = np.array([obs[0] for obs in observations])
    pt_indices = np.array([obs[1] for obs in observations])
    points_2d = np.array([obs[2] for obs in observations])
    blocks = [np.flatnonzero(cam_indices == i) for i in range(len(cameras))]

    def camera_params(params, cam_idx):
        if cam_idx == 0:
            return fixed_params
        start, size = offsets[cam_idx - 1]
        return params[start:start + size]

    def fun(params):
        points = params[n_cam_params:].reshape((n_points, 3))
        residuals = np.empty_like(points_2d)
        for cam_idx, block in enumerate(blocks):
            if len(block) == 0:
                continue
            proj = camera_objs[cam_idx].project_params(camera_params(params, cam_idx), points[pt_indices[block]])
            residuals[block] = proj - points_2d[block]
        return residuals.ravel()

    def rms(params):
        return float(np.sqrt(np.mean(np.sum(fun(params).reshape(-1, 2) ** 2, axis=1))))

    m = len(observations) * 2
    n = len(x0)
    if n == 0:
        return rms(x0)

    A = lil_matrix((m, n), dtype=int)
    for i, (cam_idx, pt_idx, _) in enumerate(observations):
        pt_offset = n_cam_params + pt_idx * 3
        A[2 * i:2 * i + 2, pt_offset:pt_offset + 3] = 1

        if cam_idx > 0:
            start, size = offsets[cam_idx - 1]
            A[2 * i:2 * i + 2, start:start + size] = 1

    initial_rms = rms(x0)
    res = least_squares(fun, x0, jac_sparsity=A, loss=loss, verbose=0, x_scale="jac",
                        ftol=ftol, method="trf", max_nfev=max_nfev)
    final_rms = rms(res.x)

    if res.status <= 0 or not res.success:
        raise NonConvergence(f"bundle adjustment did not converge: {res.message}", final_rms)

    metric = all(camera.is_metric for camera in camera_objs)
    if metric and len(camera_objs) > 1:
        reference = camera_objs[0].center
        mean_distance = np.mean([np.linalg.norm(camera.center - reference) for camera in camera_objs[1:]])

    for camera, (start, size) in zip(camera_objs[1:], offsets):
        camera.set_params(res.x[start:start + size])
    optimized_pts = res.x[n_cam_params:].reshape((n_points, 3))
    for track, point in zip(track_ids, optimized_pts):
        reconstruction.get_structure(track).set_params(point)

    if metric and len(camera_objs) > 1:
        _fix_scale(reconstruction, cameras, mean_distance, track_ids)

    logger.info(f"BA Complete. RMS: {initial_rms:.4f} -> {final_rms:.4f} px, final cost: {res.cost:.4f}")
    return final_rms
