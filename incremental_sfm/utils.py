import numpy as np
from scipy.linalg import rq


def intrinsic_matrix(focal, cx, cy):
    return np.array([[focal, 0, cx], [0, focal, cy], [0, 0, 1]], dtype=np.float64)


def to_homogeneous(points):
    points = np.asarray(points, dtype=np.float64)
    return np.hstack((points, np.ones((len(points), 1))))


def as_homogeneous_points(points):
    """Accepts Nx3 affine or Nx4 homogeneous points, returns Nx4."""
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    if points.shape[1] == 3:
        return to_homogeneous(points)
    return points


def skew(v):
    return np.array([[0, -v[2], v[1]], [v[2], 0, -v[0]], [-v[1], v[0], 0]], dtype=np.float64)


def project_points(P, points):
    x = as_homogeneous_points(points) @ P.T
    return x[:, :2] / x[:, 2:3]


def hartley_normalization(points):
    """Similarity moving the centroid to the origin with mean distance sqrt(2)."""
    points = np.asarray(points, dtype=np.float64)
    centroid = points.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points - centroid, axis=1))
    scale = np.sqrt(2) / mean_dist if mean_dist > 0 else 1.0
    return np.array([
        [scale, 0, -scale * centroid[0]],
        [0, scale, -scale * centroid[1]],
        [0, 0, 1],
    ])


def normalization_3d(points):
    """Same as hartley_normalization for affine 3D points (mean distance sqrt(3))."""
    points = np.asarray(points, dtype=np.float64)
    centroid = points.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points - centroid, axis=1))
    scale = np.sqrt(3) / mean_dist if mean_dist > 0 else 1.0
    T = np.eye(4)
    T[:3, :3] *= scale
    T[:3, 3] = -scale * centroid
    return T


def apply_transform(T, points):
    x = to_homogeneous(points) @ T.T
    return x[:, :-1] / x[:, -1:]


def triangulate_dlt(projections, observations):
    """Linear N-view triangulation; returns a homogeneous 4-vector.

    Each row of the system is scaled to unit norm so that pixel-sized
    coordinates do not dominate the SVD.
    """
    rows = []
    for P, (u, v) in zip(projections, observations):
        rows.append(u * P[2] - P[0])
        rows.append(v * P[2] - P[1])
    A = np.array(rows)
    A /= np.linalg.norm(A, axis=1, keepdims=True)
    _, _, Vt = np.linalg.svd(A)
    return Vt[-1]


def camera_center(P):
    _, _, Vt = np.linalg.svd(P)
    return Vt[-1]


def decompose_projection(P):
    """Splits P = s K [R | t] into K (K[2, 2] == 1, positive diagonal), R and t."""
    K, R = rq(P[:, :3])
    D = np.diag(np.sign(np.diag(K)))
    K = K @ D
    R = D @ R
    scale = K[2, 2]
    K = K / scale
    if np.linalg.det(R) < 0:
        # P is only defined up to sign
        R = -R
        scale = -scale
    t = np.linalg.solve(K, P[:, 3]) / scale
    return K, R, t


def rotation_distance(R1, R2):
    return np.linalg.norm(R1 - R2)


def rms_error(observed, points, P):
    residuals = project_points(P, points) - np.asarray(observed, dtype=np.float64)
    return float(np.sqrt(np.mean(np.sum(residuals ** 2, axis=1))))
