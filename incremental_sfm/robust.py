import numpy as np
from loguru import logger

from incremental_sfm.config import CONFIDENCE, MIN_INLIER_RATIO, RANSAC_MAX_ITERATIONS
from incremental_sfm.errors import InsufficientCorrespondences, NoGeometricSolution
from incremental_sfm.utils import (
    apply_transform,
    hartley_normalization,
    normalization_3d,
    project_points,
)


def _required_iterations(inlier_ratio, sample_size, confidence):
    good_sample = inlier_ratio ** sample_size
    if good_sample >= 1.0:
        return 0
    if good_sample <= 0.0:
        return np.inf
    return np.log(1.0 - confidence) / np.log(1.0 - good_sample)


def ransac(n_data, sample_size, fit, errors, threshold, rng,
           max_iterations=RANSAC_MAX_ITERATIONS, confidence=CONFIDENCE):
    """Generic RANSAC loop.

    `fit(indices)` returns a (possibly empty) list of candidate models,
    `errors(model)` the per-datum error compared against `threshold`.
    The loop stops early once enough samples were drawn to reach
    `confidence` for the best inlier ratio seen so far.
    """
    if n_data < sample_size:
        raise InsufficientCorrespondences(n_data, sample_size)

    best_model, best_inliers, best_count = None, None, 0
    iterations = max_iterations
    i = 0
    while i < iterations:
        sample = rng.choice(n_data, sample_size, replace=False)
        for model in fit(sample):
            with np.errstate(divide="ignore", invalid="ignore"):
                inliers = errors(model) < threshold
            count = int(inliers.sum())
            if count > best_count:
                best_model, best_inliers, best_count = model, inliers, count
                iterations = min(max_iterations, _required_iterations(count / n_data, sample_size, confidence))
        i += 1

    logger.debug(f"RANSAC: {best_count}/{n_data} inliers after {i} iterations")
    return best_model, best_inliers


def check_support(inliers, what, min_ratio=MIN_INLIER_RATIO):
    """Rejects a model backed by too small a share of the correspondences.

    A minimal sample always fits its own model, so an inlier count at or
    just above the sample size says nothing about the data.
    """
    count, total = int(np.sum(inliers)), len(inliers)
    if count < min_ratio * total:
        raise NoGeometricSolution(f"{what} supported by only {count}/{total} correspondences")


# Projection matrix resection

def dlt_resection(x, X):
    """Linear resection from >= 6 pairs of 2D points and homogeneous 3D points."""
    T2 = hartley_normalization(x)
    xn = apply_transform(T2, x)

    finite = np.abs(X[:, 3]) > 1e-12
    if finite.all():
        T3 = normalization_3d(X[:, :3] / X[:, 3:4])
        Xn = X @ T3.T
    else:
        T3 = np.eye(4)
        Xn = X
    Xn = Xn / np.linalg.norm(Xn, axis=1, keepdims=True)

    rows = []
    zeros = np.zeros(4)
    for (u, v), Xi in zip(xn, Xn):
        rows.append(np.concatenate((zeros, -Xi, v * Xi)))
        rows.append(np.concatenate((Xi, zeros, -u * Xi)))
    _, _, Vt = np.linalg.svd(np.array(rows))
    P = np.linalg.inv(T2) @ Vt[-1].reshape(3, 4) @ T3
    return P / np.linalg.norm(P)


def reprojection_errors(P, x, X):
    return np.linalg.norm(project_points(P, X) - x, axis=1)


def estimate_projection(x, X, threshold, rng):
    """Robust uncalibrated resection. Returns (P, inlier mask)."""

    def fit(sample):
        return [dlt_resection(x[sample], X[sample])]

    P, inliers = ransac(len(x), 6, fit, lambda P: reprojection_errors(P, x, X), threshold, rng)
    if P is None or inliers.sum() < 6:
        raise NoGeometricSolution("no projection matrix supported by the 2D-3D correspondences")

    refined = dlt_resection(x[inliers], X[inliers])
    with np.errstate(divide="ignore", invalid="ignore"):
        refined_inliers = reprojection_errors(refined, x, X) < threshold
    if refined_inliers.sum() >= inliers.sum():
        P, inliers = refined, refined_inliers
    check_support(inliers, "projection matrix")
    return P, inliers
