import numpy as np
from loguru import logger

from incremental_sfm.config import TRIANGULATION_THRESHOLD
from incremental_sfm.structure import PointStructure
from incremental_sfm.utils import triangulate_dlt


def _observing_cameras(reconstruction, matches, track):
    images = []
    cameras = []
    for image in matches.images_for_track(track):
        camera = reconstruction.get_camera(image)
        if camera is not None:
            images.append(image)
            cameras.append(camera)
    return images, cameras, matches.observations_of_track(track, images)


def triangulate_track(cameras, observations, threshold=TRIANGULATION_THRESHOLD):
    """Multi-view intersection of one track.

    Returns None when the point does not reproject within `threshold` in
    every view or lies behind one of the cameras.
    """
    X = triangulate_dlt([camera.projection_matrix for camera in cameras], observations)
    X_row = X.reshape(1, 4)
    for camera, observed in zip(cameras, observations):
        with np.errstate(divide="ignore", invalid="ignore"):
            error = np.linalg.norm(camera.project(X_row)[0] - observed)
        if not error < threshold or not camera.in_front(X_row)[0]:
            return None
    return X


def triangulate_structure(reconstruction, matches, image, min_views, threshold=TRIANGULATION_THRESHOLD):
    """Adds a point for every track of `image` seen by at least `min_views` cameras.

    Tracks already holding a structure are left untouched, and tracks that
    cannot be triangulated yet are skipped so a later call can retry them.
    The observations of every added point join `reconstruction.matches`.
    Returns the number of points added.
    """
    min_views = max(min_views, 2)
    added = 0
    skipped = 0
    for track in matches.tracks_in_image(image):
        if reconstruction.has_structure(track):
            continue
        images, cameras, observations = _observing_cameras(reconstruction, matches, track)
        if len(cameras) < min_views:
            continue
        X = triangulate_track(cameras, observations, threshold)
        if X is None:
            skipped += 1
            continue
        reconstruction.insert_structure(track, PointStructure(X))
        for view, observed in zip(images, observations):
            reconstruction.matches.insert(view, track, observed)
        added += 1

    logger.info(f"Triangulated {added} new points from image {image} ({skipped} rejected)")
    return added
