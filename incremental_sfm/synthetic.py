from dataclasses import dataclass, field

import numpy as np

from incremental_sfm.matches import Matches
from incremental_sfm.utils import intrinsic_matrix, project_points


@dataclass
class NViewDataSet:
    """Ground truth for a synthetic scene: K[i], R[i], t[i], C[i] per view, X (Mx3), x[i] (Mx2)."""

    K: list = field(default_factory=list)
    R: list = field(default_factory=list)
    t: list = field(default_factory=list)
    C: list = field(default_factory=list)
    X: np.ndarray = None
    x: list = field(default_factory=list)

    @property
    def n(self):
        return len(self.K)

    def projection_matrix(self, i):
        return self.K[i] @ np.hstack((self.R[i], self.t[i].reshape(3, 1)))


def look_at(center, target, up):
    z = target - center
    z /= np.linalg.norm(z)
    x = np.cross(up, z)
    x /= np.linalg.norm(x)
    y = np.cross(z, x)
    return np.vstack((x, y, z))


def n_realistic_cameras(n_views, n_points, seed=0, distance=6.0, arc=1.2):
    """Cameras on an arc around a unit-cube point cloud, all looking at it.

    Elevation and roll are jittered so the sequence is not a pure rotation
    about one axis.
    """
    rng = np.random.default_rng(seed)
    d = NViewDataSet()
    d.X = rng.uniform(-1.0, 1.0, (n_points, 3))

    for theta in np.linspace(-arc / 2, arc / 2, n_views):
        elevation = rng.uniform(-0.4, 0.4)
        C = distance * np.array([np.sin(theta), elevation, -np.cos(theta)])
        up = np.array([rng.normal(0, 0.1), 1.0, rng.normal(0, 0.1)])
        R = look_at(C, rng.normal(0, 0.05, 3), up)
        K = intrinsic_matrix(1000.0, 500.0, 500.0)
        t = -R @ C

        d.K.append(K)
        d.R.append(R)
        d.t.append(t)
        d.C.append(C)
        d.x.append(project_points(K @ np.hstack((R, t.reshape(3, 1))), d.X))
    return d


def matches_from_dataset(d, n_outliers=0, seed=0):
    """Correspondence table of a data set; the first `n_outliers` features of
    every view are filed under random tracks.
    """
    rng = np.random.default_rng(seed)
    matches = Matches()
    n_points = len(d.X)
    for view in range(d.n):
        wrong_tracks = rng.choice(n_points, n_outliers, replace=False)
        for p in range(n_points):
            track = int(wrong_tracks[p]) if p < n_outliers else p
            matches.insert(view, track, d.x[view][p])
    return matches
