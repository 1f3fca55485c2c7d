"""Projective to metric upgrade through the dual absolute quadric.

Cameras are first normalized with a guess of their intrinsics built from the
image size, after which a camera with zero skew, unit aspect ratio and a
centred principal point has an image of the dual absolute quadric
w = P Q P^T whose off-diagonal entries vanish and whose first two diagonal
entries agree. Those four linear equations per view determine Q up to scale
from three views on.
"""
import numpy as np
from loguru import logger

from incremental_sfm.camera import PinholeCamera
from incremental_sfm.errors import DegenerateConfiguration, ReconstructionError

MIN_VIEWS = 3
NULL_SPACE_TOLERANCE = 1e-10

_QUADRIC_ENTRIES = [(i, j) for i in range(4) for j in range(i, 4)]


def normalization_matrix(width, height):
    return np.array([
        [width + height, 0, width / 2.0],
        [0, width + height, height / 2.0],
        [0, 0, 1],
    ])


def image_extent(matches):
    features = np.array([feature for _, _, feature in matches]).reshape(-1, 2)
    if len(features) == 0:
        raise DegenerateConfiguration("no observations to infer the image size from")
    width, height = features.max(axis=0)
    if width <= 0 or height <= 0:
        raise DegenerateConfiguration("observations do not span a positive image extent")
    return width, height


def _omega_coefficients(P, a, b):
    """Coefficients of w[a, b] = P[a] Q P[b]^T in the 10 entries of symmetric Q."""
    return np.array([
        P[a, i] * P[b, j] + (P[a, j] * P[b, i] if i != j else 0.0)
        for i, j in _QUADRIC_ENTRIES
    ])


def _quadric_from_vector(q):
    Q = np.zeros((4, 4))
    for value, (i, j) in zip(q, _QUADRIC_ENTRIES):
        Q[i, j] = Q[j, i] = value
    return Q


def dual_absolute_quadric(projections):
    if len(projections) < MIN_VIEWS:
        raise DegenerateConfiguration(f"{len(projections)} views, at least {MIN_VIEWS} required")

    rows = []
    for P in projections:
        P = P / np.linalg.norm(P)
        rows.append(_omega_coefficients(P, 0, 1))
        rows.append(_omega_coefficients(P, 0, 2))
        rows.append(_omega_coefficients(P, 1, 2))
        rows.append(_omega_coefficients(P, 0, 0) - _omega_coefficients(P, 1, 1))

    _, S, Vt = np.linalg.svd(np.array(rows))
    if S[-2] < NULL_SPACE_TOLERANCE * S[0]:
        raise DegenerateConfiguration("absolute quadric constraints have a null space of dimension > 1")
    return _quadric_from_vector(Vt[-1])


def rectifying_homography(Q):
    """H with Q = H diag(1, 1, 1, 0) H^T once Q is forced to rank 3."""
    values, vectors = np.linalg.eigh(Q)
    order = np.argsort(-np.abs(values))
    values, vectors = values[order], vectors[:, order]
    if values[:3].sum() < 0:
        values = -values
    if np.any(values[:3] <= 0):
        logger.warning(f"Absolute quadric is not positive semi-definite: eigenvalues {values}")
    if abs(values[2]) < NULL_SPACE_TOLERANCE * abs(values[0]):
        raise DegenerateConfiguration("absolute quadric has rank below 3")
    return vectors @ np.diag(np.append(np.sqrt(np.abs(values[:3])), 1.0))


def _depth_sign(P, points):
    if len(points) == 0:
        return 0
    depths = (points @ P[2]) * points[:, 3]
    return np.sign(np.sum(np.sign(depths)))


def _metric_projections(reconstruction, matches, H):
    """Upgraded camera matrices, with signs giving positive depths and no global reflection."""
    H_inv = np.linalg.inv(H)
    upgraded_points = {
        track: H_inv @ structure.coords for track, structure in reconstruction.structures.items()
    }

    projections = {}
    reflection_votes = 0
    for image, camera in reconstruction.cameras.items():
        P = camera.projection_matrix @ H
        observed = [upgraded_points[t] for t in matches.tracks_in_image(image) if t in upgraded_points]
        sign = _depth_sign(P, np.array(observed).reshape(-1, 4))
        if sign < 0:
            P = -P
        if sign != 0:
            reflection_votes += 1 if np.linalg.det(P[:, :3]) > 0 else -1
        projections[image] = P

    if reflection_votes < 0:
        flip = np.diag([-1.0, 1.0, 1.0, 1.0])
        H = H @ flip
        projections = {image: P @ flip for image, P in projections.items()}
    return projections, H


def upgrade_to_metric(reconstruction, matches, image_size=None):
    """Upgrades every camera and structure of a projective reconstruction in place.

    `image_size` is (width, height) of the images; it defaults to the extent
    of the observations. Cameras come out as PinholeCamera. Returns False and
    leaves the reconstruction untouched when the quadric cannot be estimated.
    """
    try:
        width, height = image_size if image_size is not None else image_extent(matches)
        K_n = normalization_matrix(width, height)
        K_n_inv = np.linalg.inv(K_n)

        normalized = [K_n_inv @ camera.projection_matrix for camera in reconstruction.cameras.values()]
        Q = dual_absolute_quadric(normalized)
        H = rectifying_homography(Q)
        projections, H = _metric_projections(reconstruction, matches, H)
    except ReconstructionError as e:
        logger.warning(f"Metric upgrade failed: {type(e).__name__}: {e}")
        return False

    H_inv = np.linalg.inv(H)
    for image, P in projections.items():
        reconstruction.insert_camera(image, PinholeCamera.from_projection_matrix(P))
    for structure in reconstruction.structures.values():
        structure.transform(H_inv)

    logger.info(
        f"Upgraded {reconstruction.get_camera_count()} cameras and "
        f"{reconstruction.get_structure_count()} structures to metric"
    )
    return True
