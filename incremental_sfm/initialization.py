"""Two-view bootstrap of a reconstruction.

Both variants estimate the fundamental matrix robustly over the tracks the
two images share and install the second camera relative to the first one. The
first camera is created at the world frame unless the reconstruction already
holds it, in which case its pose defines the frame. Points are not
triangulated here; see triangulation.triangulate_structure.
"""
import cv2
import numpy as np
from loguru import logger

from incremental_sfm.camera import PinholeCamera, ProjectiveCamera
from incremental_sfm.config import (
    CONFIDENCE,
    F_RANSAC_THRESHOLD,
    MIN_TWO_VIEW_MATCHES,
    RANSAC_MAX_ITERATIONS,
    RANSAC_SEED,
)
from incremental_sfm.errors import InsufficientCorrespondences, NoGeometricSolution
from incremental_sfm.matches import Matches
from incremental_sfm.reconstruction import estimation_stage
from incremental_sfm.robust import check_support
from incremental_sfm.utils import apply_transform, camera_center, skew


def common_correspondences(matches, image_a, image_b):
    tracks = matches.tracks_in_images([image_a, image_b])
    if len(tracks) < MIN_TWO_VIEW_MATCHES:
        raise InsufficientCorrespondences(len(tracks), MIN_TWO_VIEW_MATCHES, "common correspondences")
    return tracks, matches.observations(image_a, tracks), matches.observations(image_b, tracks)


def inlier_matches(matches, images, tracks):
    inliers = Matches()
    for image in images:
        for track in tracks:
            inliers.insert(image, track, matches.get(image, track))
    return inliers


def estimate_fundamental(pts_a, pts_b, seed=RANSAC_SEED):
    """Robust F with x_b^T F x_a = 0. Returns (F, inlier mask)."""
    cv2.setRNGSeed(seed)
    if len(pts_a) == MIN_TWO_VIEW_MATCHES:
        F, _ = cv2.findFundamentalMat(pts_a, pts_b, cv2.FM_7POINT)
        mask = np.ones(len(pts_a), dtype=bool)
    else:
        F, mask = cv2.findFundamentalMat(
            pts_a, pts_b, cv2.FM_RANSAC, F_RANSAC_THRESHOLD, CONFIDENCE, RANSAC_MAX_ITERATIONS
        )
        mask = None if mask is None else mask.ravel().astype(bool)
    if F is None or F.shape[0] < 3 or mask is None:
        raise NoGeometricSolution("no fundamental matrix found for the correspondences")
    # the 7-point solver stacks up to three solutions
    F = F[:3]
    check_support(mask, "fundamental matrix")

    if mask.sum() >= 8:
        refined, _ = cv2.findFundamentalMat(pts_a[mask], pts_b[mask], cv2.FM_8POINT)
        if refined is not None and refined.shape == (3, 3):
            F = refined
    return F, mask


def _robust_fundamental(matches, image_a, image_b, seed):
    tracks, pts_a, pts_b = common_correspondences(matches, image_a, image_b)
    F, mask = estimate_fundamental(pts_a, pts_b, seed)
    inlier_tracks = [track for track, keep in zip(tracks, mask) if keep]
    logger.info(f"Fundamental matrix {image_a}-{image_b}: {len(inlier_tracks)}/{len(tracks)} inliers")
    return F, pts_a[mask], pts_b[mask], inlier_tracks


def projection_from_fundamental(F):
    """Canonical second camera [[e']x F | e'] for a first camera [I | 0]."""
    U, _, _ = np.linalg.svd(F)
    epipole = U[:, 2]
    return np.hstack((skew(epipole) @ F, epipole.reshape(3, 1)))


def world_alignment(P):
    """4x4 H with P H = [I | 0]."""
    return np.hstack((np.linalg.pinv(P), camera_center(P).reshape(4, 1)))


def essential_from_fundamental(F, K_a, K_b):
    E = K_b.T @ F @ K_a
    U, _, Vt = np.linalg.svd(E)
    return U @ np.diag([1.0, 1.0, 0.0]) @ Vt


def motion_from_essential(E, norm_a, norm_b):
    """(R, t) of the second camera, picked by cheirality on normalized points."""
    in_front, R, t, _ = cv2.recoverPose(E, norm_a, norm_b, np.eye(3))
    logger.debug(f"{in_front}/{len(norm_a)} points in front of both cameras")
    if in_front == 0:
        raise NoGeometricSolution("no essential matrix decomposition places points in front of both cameras")
    return R, t.ravel()


@estimation_stage
def reconstruct_two_uncalibrated(reconstruction, matches, image_a, image_b, seed=RANSAC_SEED):
    """Projective cameras for two images from their fundamental matrix.

    Returns a StageResult holding the inlier correspondences of both images.
    """
    F, _, _, inlier_tracks = _robust_fundamental(matches, image_a, image_b, seed)

    P_b = projection_from_fundamental(F)
    camera_a = reconstruction.get_camera(image_a)
    if camera_a is None:
        reconstruction.insert_camera(image_a, ProjectiveCamera(np.hstack((np.eye(3), np.zeros((3, 1))))))
    else:
        P_b = P_b @ np.linalg.inv(world_alignment(camera_a.projection_matrix))
    reconstruction.insert_camera(image_b, ProjectiveCamera(P_b))

    inliers = inlier_matches(matches, [image_a, image_b], inlier_tracks)
    reconstruction.matches.update(inliers)
    return inliers


@estimation_stage
def reconstruct_two_calibrated(reconstruction, matches, image_a, image_b, K_a, K_b, seed=RANSAC_SEED):
    """Euclidean cameras for two images of known intrinsics.

    The relative translation has unit norm; the scale of the reconstruction
    is otherwise unconstrained.
    """
    K_a = np.asarray(K_a, dtype=np.float64)
    K_b = np.asarray(K_b, dtype=np.float64)
    camera_a = reconstruction.get_camera(image_a)
    if camera_a is not None and not camera_a.is_metric:
        raise NoGeometricSolution(f"camera {image_a} is projective, a calibrated pair needs a metric first camera")
    F, pts_a, pts_b, inlier_tracks = _robust_fundamental(matches, image_a, image_b, seed)

    E = essential_from_fundamental(F, K_a, K_b)
    norm_a = apply_transform(np.linalg.inv(K_a), pts_a)
    norm_b = apply_transform(np.linalg.inv(K_b), pts_b)
    R, t = motion_from_essential(E, norm_a, norm_b)

    if camera_a is None:
        camera_a = PinholeCamera(K_a)
        reconstruction.insert_camera(image_a, camera_a)
    R_a, t_a = camera_a.orientation_matrix, camera_a.position

    # x_b = R x_a + t with x_a = R_a X + t_a
    reconstruction.insert_camera(image_b, PinholeCamera(K_b, R @ R_a, R @ t_a + t))
    logger.info(f"Initialized cameras {image_a} and {image_b} from {len(inlier_tracks)} correspondences")

    inliers = inlier_matches(matches, [image_a, image_b], inlier_tracks)
    reconstruction.matches.update(inliers)
    return inliers
