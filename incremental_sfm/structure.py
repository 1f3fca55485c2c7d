from abc import ABC, abstractmethod

import numpy as np

INFINITY_TOLERANCE = 1e-12


class Structure(ABC):
    """A reconstructed scene primitive owned by a Reconstruction."""

    @abstractmethod
    def transform(self, H):
        ...

    @abstractmethod
    def params(self):
        ...

    @abstractmethod
    def set_params(self, params):
        ...

    @abstractmethod
    def copy(self):
        ...


class PointStructure(Structure):
    """A 3D point stored in homogeneous coordinates.

    Projective reconstructions may place points on (or close to) the plane at
    infinity, so the fourth coordinate is kept instead of dividing it out.
    """

    def __init__(self, coords):
        coords = np.asarray(coords, dtype=np.float64).ravel()
        if coords.size == 3:
            coords = np.append(coords, 1.0)
        if coords.size != 4:
            raise ValueError(f"expected 3 or 4 coordinates, got {coords.size}")
        self.coords = self._normalized(coords)

    @staticmethod
    def _normalized(coords):
        if abs(coords[3]) > INFINITY_TOLERANCE:
            return coords / coords[3]
        return coords / np.linalg.norm(coords)

    @property
    def is_finite(self):
        return abs(self.coords[3]) > INFINITY_TOLERANCE

    @property
    def point(self):
        if not self.is_finite:
            return None
        return self.coords[:3] / self.coords[3]

    def transform(self, H):
        # H maps points: X' = H X
        self.coords = self._normalized(H @ self.coords)

    def params(self):
        return self.point.copy()

    def set_params(self, params):
        self.coords = np.append(np.asarray(params, dtype=np.float64), 1.0)

    def copy(self):
        return PointStructure(self.coords.copy())

    def __repr__(self):
        return f"PointStructure({np.array2string(self.coords, precision=4)})"
