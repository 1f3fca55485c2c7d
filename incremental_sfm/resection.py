import cv2
import numpy as np
from loguru import logger

from incremental_sfm.camera import PinholeCamera, ProjectiveCamera
from incremental_sfm.config import (
    CONFIDENCE,
    MIN_CALIBRATED_RESECTION,
    MIN_UNCALIBRATED_RESECTION,
    RANSAC_MAX_ITERATIONS,
    RANSAC_SEED,
    REPROJ_ERROR_THRESH,
    RESECTION_THRESHOLD,
)
from incremental_sfm.errors import InsufficientCorrespondences, NoGeometricSolution
from incremental_sfm.initialization import inlier_matches
from incremental_sfm.reconstruction import estimation_stage
from incremental_sfm.robust import check_support, estimate_projection


def find_2d_3d_correspondences(reconstruction, matches, image, finite_only=False):
    tracks = []
    points_3d = []
    for track in matches.tracks_in_image(image):
        structure = reconstruction.get_structure(track)
        if structure is None or (finite_only and not structure.is_finite):
            continue
        tracks.append(track)
        points_3d.append(structure.coords)

    points_2d = matches.observations(image, tracks)
    return tracks, points_2d, np.array(points_3d, dtype=np.float64).reshape(-1, 4)


def _checked_correspondences(reconstruction, matches, image, required, finite_only=False):
    tracks, points_2d, points_3d = find_2d_3d_correspondences(reconstruction, matches, image, finite_only)
    if len(tracks) < required:
        raise InsufficientCorrespondences(len(tracks), required, f"reconstructed tracks in image {image}")
    return tracks, points_2d, points_3d


def _finish(reconstruction, matches, image, tracks, mask, camera):
    reconstruction.insert_camera(image, camera)
    inlier_tracks = [track for track, keep in zip(tracks, mask) if keep]
    logger.info(f"Resected camera {image}: {len(inlier_tracks)}/{len(tracks)} inliers")

    inliers = inlier_matches(matches, [image], inlier_tracks)
    reconstruction.matches.update(inliers)
    return inliers


@estimation_stage
def resect_uncalibrated(reconstruction, matches, image, seed=RANSAC_SEED):
    """Projection matrix of `image` from its already reconstructed tracks."""
    tracks, points_2d, points_3d = _checked_correspondences(
        reconstruction, matches, image, MIN_UNCALIBRATED_RESECTION
    )
    rng = np.random.default_rng(seed)
    P, mask = estimate_projection(points_2d, points_3d, RESECTION_THRESHOLD, rng)
    return _finish(reconstruction, matches, image, tracks, mask, ProjectiveCamera(P))


@estimation_stage
def resect_calibrated(reconstruction, matches, image, K, seed=RANSAC_SEED):
    """Pose of `image` with known intrinsics K from its already reconstructed tracks."""
    K = np.asarray(K, dtype=np.float64)
    tracks, points_2d, points_4d = _checked_correspondences(
        reconstruction, matches, image, MIN_CALIBRATED_RESECTION, finite_only=True
    )
    points_3d = np.ascontiguousarray(points_4d[:, :3] / points_4d[:, 3:4])
    points_2d = np.ascontiguousarray(points_2d)

    cv2.setRNGSeed(seed)
    success, rvec, tvec, inliers = cv2.solvePnPRansac(
        points_3d,
        points_2d,
        K, None,
        iterationsCount=RANSAC_MAX_ITERATIONS,
        reprojectionError=REPROJ_ERROR_THRESH,
        confidence=CONFIDENCE,
        flags=cv2.SOLVEPNP_EPNP,
    )
    if not success or inliers is None or len(inliers) < MIN_CALIBRATED_RESECTION:
        raise NoGeometricSolution(f"PnP failed for image {image}")

    inliers = inliers.ravel()
    rvec, tvec = cv2.solvePnPRefineLM(points_3d[inliers], points_2d[inliers], K, None, rvec, tvec)
    R, _ = cv2.Rodrigues(rvec)

    mask = np.zeros(len(tracks), dtype=bool)
    mask[inliers] = True
    check_support(mask, f"pose of image {image}")
    return _finish(reconstruction, matches, image, tracks, mask, PinholeCamera(K, R, tvec))
