import functools
from types import MappingProxyType
from typing import NamedTuple, NewType, Optional

from loguru import logger

from incremental_sfm.camera import Camera
from incremental_sfm.errors import ReconstructionError
from incremental_sfm.matches import Matches
from incremental_sfm.structure import Structure

# A camera carries the id of the image it was estimated from and a structure
# the id of its track.
CameraID = NewType("CameraID", int)
StructureID = NewType("StructureID", int)


class StageResult(NamedTuple):
    inliers: Matches
    success: bool
    error: Optional[ReconstructionError] = None


def estimation_stage(func):
    """Turns a stage returning its inlier Matches into one returning a StageResult.

    ReconstructionError raised by the stage is logged and reported through
    the result instead of propagating.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            inliers = func(*args, **kwargs)
        except ReconstructionError as e:
            logger.warning(f"{func.__name__} failed: {type(e).__name__}: {e}")
            return StageResult(Matches(), False, e)
        return StageResult(inliers, True)

    return wrapper


class Reconstruction:
    """Owns the cameras and structures recovered so far.

    Inserting under an existing id drops the previous entity; the store keeps
    no other reference to it. `matches` accumulates the inlier
    correspondences the estimation stages accepted.
    """

    def __init__(self):
        self._cameras = {}
        self._structures = {}
        self.matches = Matches()

    def insert_camera(self, camera_id, camera: Camera):
        self._cameras[CameraID(camera_id)] = camera

    def insert_structure(self, structure_id, structure: Structure):
        self._structures[StructureID(structure_id)] = structure

    def has_camera(self, camera_id):
        return camera_id in self._cameras

    def has_structure(self, structure_id):
        return structure_id in self._structures

    def get_camera(self, camera_id) -> Optional[Camera]:
        return self._cameras.get(camera_id)

    def get_structure(self, structure_id) -> Optional[Structure]:
        return self._structures.get(structure_id)

    def get_camera_count(self):
        return len(self._cameras)

    def get_structure_count(self):
        return len(self._structures)

    def camera_ids(self):
        return sorted(self._cameras)

    def structure_ids(self):
        return sorted(self._structures)

    @property
    def cameras(self):
        return MappingProxyType(self._cameras)

    @property
    def structures(self):
        return MappingProxyType(self._structures)

    def clear_cameras(self):
        self._cameras.clear()

    def clear_structures(self):
        self._structures.clear()

    def __repr__(self):
        return f"Reconstruction(cameras={self.get_camera_count()}, structures={self.get_structure_count()})"
