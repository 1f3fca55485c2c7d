from abc import ABC, abstractmethod

import cv2
import numpy as np

from incremental_sfm.utils import as_homogeneous_points, decompose_projection, project_points

MIN_DEPTH = 1e-5


class Camera(ABC):
    """A camera model owned by a Reconstruction.

    Subclasses expose their bundle adjustment parameterization through
    params / set_params / project_params so the optimizer never needs to know
    which model it is refining. Metric cameras additionally expose a pose
    (R, t, center).
    """

    is_metric = False

    @property
    @abstractmethod
    def projection_matrix(self):
        ...

    def project(self, points):
        return project_points(self.projection_matrix, points)

    @abstractmethod
    def in_front(self, points):
        ...

    @abstractmethod
    def params(self):
        ...

    @abstractmethod
    def set_params(self, params):
        ...

    @abstractmethod
    def project_params(self, params, points):
        ...

    @abstractmethod
    def copy(self):
        ...


class PinholeCamera(Camera):
    is_metric = True

    def __init__(self, K, R=None, t=None):
        self.K = np.asarray(K, dtype=np.float64).reshape(3, 3)
        self.set_pose(np.eye(3) if R is None else R, np.zeros(3) if t is None else t)

    @classmethod
    def from_projection_matrix(cls, P):
        K, R, t = decompose_projection(np.asarray(P, dtype=np.float64))
        return cls(K, R, t)

    def set_pose(self, R, t):
        self.R = np.asarray(R, dtype=np.float64).reshape(3, 3)
        self.t = np.asarray(t, dtype=np.float64).reshape(3)

    @property
    def orientation_matrix(self):
        return self.R

    @property
    def position(self):
        return self.t

    def set_position(self, t):
        self.t = np.asarray(t, dtype=np.float64).reshape(3)

    @property
    def center(self):
        return -self.R.T @ self.t

    @property
    def projection_matrix(self):
        return self.K @ np.hstack((self.R, self.t.reshape(3, 1)))

    def in_front(self, points):
        X = as_homogeneous_points(points)
        depth = X[:, :3] @ self.R[2] + self.t[2] * X[:, 3]
        return depth * X[:, 3] > 0

    def params(self):
        rvec, _ = cv2.Rodrigues(self.R)
        return np.concatenate((rvec.ravel(), self.t))

    def set_params(self, params):
        R, _ = cv2.Rodrigues(np.asarray(params[:3], dtype=np.float64))
        self.set_pose(R, params[3:6])

    def project_params(self, params, points):
        R, _ = cv2.Rodrigues(np.asarray(params[:3], dtype=np.float64))
        pt_cam = points @ R.T + params[3:6]
        z = np.maximum(pt_cam[:, 2:3], MIN_DEPTH)
        proj = pt_cam @ self.K.T
        return proj[:, :2] / z

    def copy(self):
        return PinholeCamera(self.K.copy(), self.R.copy(), self.t.copy())

    def __repr__(self):
        return f"PinholeCamera(center={np.array2string(self.center, precision=4)})"


class ProjectiveCamera(Camera):
    """Uncalibrated camera known only through its 3x4 projection matrix."""

    def __init__(self, P):
        self.P = np.asarray(P, dtype=np.float64).reshape(3, 4)

    @property
    def projection_matrix(self):
        return self.P

    def in_front(self, points):
        # cheirality is undefined before the metric upgrade
        return np.ones(len(as_homogeneous_points(points)), dtype=bool)

    def params(self):
        return self.P.ravel().copy()

    def set_params(self, params):
        self.P = np.asarray(params, dtype=np.float64).reshape(3, 4)

    def project_params(self, params, points):
        return project_points(np.asarray(params).reshape(3, 4), points)

    def copy(self):
        return ProjectiveCamera(self.P.copy())

    def __repr__(self):
        return f"ProjectiveCamera({np.array2string(self.P, precision=4)})"
