from loguru import logger

from incremental_sfm.config import BA_INTERVAL, MIN_VIEWS_INCREMENTAL, MIN_VIEWS_INITIAL, RANSAC_SEED
from incremental_sfm.errors import NonConvergence
from incremental_sfm.initialization import reconstruct_two_calibrated, reconstruct_two_uncalibrated
from incremental_sfm.metric import upgrade_to_metric
from incremental_sfm.optimization import bundle_adjust
from incremental_sfm.ordering import select_image_order
from incremental_sfm.reconstruction import Reconstruction
from incremental_sfm.resection import resect_calibrated, resect_uncalibrated
from incremental_sfm.triangulation import triangulate_structure


def _intrinsics_for(intrinsics, image):
    if isinstance(intrinsics, dict):
        return intrinsics[image]
    return intrinsics


def _run_bundle_adjustment(reconstruction):
    try:
        return bundle_adjust(reconstruction, reconstruction.matches)
    except NonConvergence as e:
        logger.warning(f"{e} (RMS {e.rms:.4f}), keeping the previous estimate")
        return None


def reconstruct_incremental(matches, intrinsics=None, image_size=None, run_ba=True, seed=RANSAC_SEED):
    """Reconstructs the largest connected component of `matches`.

    `intrinsics` is None for an uncalibrated reconstruction (upgraded to
    metric at the end), a single K shared by every image, or a dict from
    image id to K.
    """
    reconstruction = Reconstruction()
    orders = select_image_order(matches, seed=seed)
    if not orders:
        logger.warning("No connected image pair to start from")
        return reconstruction

    order = orders[0]
    calibrated = intrinsics is not None
    idx1, idx2 = order[0], order[1]

    # Phase 1: two-view initialization
    logger.info(f"Initializing from images {idx1} and {idx2} ({'calibrated' if calibrated else 'uncalibrated'})")
    if calibrated:
        result = reconstruct_two_calibrated(
            reconstruction, matches, idx1, idx2,
            _intrinsics_for(intrinsics, idx1), _intrinsics_for(intrinsics, idx2), seed=seed,
        )
    else:
        result = reconstruct_two_uncalibrated(reconstruction, matches, idx1, idx2, seed=seed)
    if not result.success:
        return reconstruction

    triangulate_structure(reconstruction, matches, idx2, MIN_VIEWS_INITIAL)
    logger.info(f"Initialization complete with {reconstruction.get_structure_count()} points.")

    # Phase 2: incremental reconstruction
    registered = {idx1, idx2}
    for next_idx in order[2:]:
        logger.info(f"Registering Frame {next_idx}")
        if calibrated:
            result = resect_calibrated(reconstruction, matches, next_idx, _intrinsics_for(intrinsics, next_idx), seed=seed)
        else:
            result = resect_uncalibrated(reconstruction, matches, next_idx, seed=seed)
        if not result.success:
            logger.warning(f"Failed to localize frame {next_idx}. Skipping.")
            continue
        registered.add(next_idx)

        triangulate_structure(reconstruction, matches, next_idx, MIN_VIEWS_INCREMENTAL)

        if run_ba and len(registered) % BA_INTERVAL == 0:
            _run_bundle_adjustment(reconstruction)

    if not calibrated:
        upgrade_to_metric(reconstruction, reconstruction.matches, image_size)

    if run_ba:
        logger.info("Final Global Bundle Adjustment...")
        _run_bundle_adjustment(reconstruction)

    logger.info(f"Reconstruction finished: {reconstruction}")
    return reconstruction
