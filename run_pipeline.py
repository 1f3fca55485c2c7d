import sys

import numpy as np
from loguru import logger

from incremental_sfm.pipeline import reconstruct_incremental
from incremental_sfm.synthetic import matches_from_dataset, n_realistic_cameras
from incremental_sfm.utils import rms_error


def main():
    logger.remove()
    logger.add(sys.stderr, level="INFO")

    N_VIEWS = 8
    N_POINTS = 200
    N_OUTLIERS = 40

    dataset = n_realistic_cameras(N_VIEWS, N_POINTS, seed=1)
    matches = matches_from_dataset(dataset, n_outliers=N_OUTLIERS, seed=1)
    logger.info(f"Synthetic scene: {N_VIEWS} views, {N_POINTS} points, {len(matches)} observations")

    for label, intrinsics in (("calibrated", dataset.K[0]), ("uncalibrated", None)):
        recon = reconstruct_incremental(matches, intrinsics=intrinsics, image_size=(1000, 1000))
        logger.info(f"{label}: {recon}")
        for cam_id in recon.camera_ids():
            tracks = [t for t in recon.matches.tracks_in_image(cam_id) if recon.has_structure(t)]
            if not tracks:
                continue
            points = np.array([recon.get_structure(t).coords for t in tracks])
            observed = recon.matches.observations(cam_id, tracks)
            rms = rms_error(observed, points, recon.get_camera(cam_id).projection_matrix)
            logger.info(f"  camera {cam_id}: {len(tracks)} points, RMS {rms:.4f} px")

        points = np.array([s.point for s in recon.structures.values() if s.is_finite])
        if len(points):
            logger.info(f"  point cloud extent {np.ptp(points, axis=0)}")

    print("Reconstruction Finished.")


if __name__ == "__main__":
    main()
