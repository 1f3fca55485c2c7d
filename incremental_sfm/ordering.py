from itertools import combinations

import cv2
import numpy as np
from loguru import logger
from scipy.sparse import lil_matrix
from scipy.sparse.csgraph import connected_components

from incremental_sfm.config import HOMOGRAPHY_THRESHOLD, ORDER_MIN_COMMON_MATCHES, RANSAC_SEED
from incremental_sfm.utils import apply_transform


def score_pair(matches, image_a, image_b, threshold=HOMOGRAPHY_THRESHOLD):
    """Homography inlier count times the homography RMS transfer error, or None.

    A pair that a homography explains well (planar scene, pure rotation,
    tiny baseline) scores low.
    """
    tracks = matches.tracks_in_images([image_a, image_b])
    if len(tracks) < ORDER_MIN_COMMON_MATCHES:
        return None

    pts_a = matches.observations(image_a, tracks)
    pts_b = matches.observations(image_b, tracks)
    H, mask = cv2.findHomography(pts_a, pts_b, cv2.RANSAC, threshold)
    if H is None or mask is None:
        return None

    errors = np.linalg.norm(apply_transform(H, pts_a) - pts_b, axis=1)
    error = float(np.sqrt(np.mean(errors ** 2)))
    return int(mask.sum()) * error


def _order_component(members, scores):
    edges = {pair: score for pair, score in scores.items() if pair[0] in members}
    first, second = max(edges, key=edges.get)
    ordered = [first, second]
    remaining = set(members) - {first, second}

    while remaining:
        candidates = {}
        for (a, b), score in edges.items():
            if a in remaining and b not in remaining:
                candidates[a] = max(candidates.get(a, score), score)
            elif b in remaining and a not in remaining:
                candidates[b] = max(candidates.get(b, score), score)
        next_image = max(sorted(candidates), key=candidates.get)
        ordered.append(next_image)
        remaining.remove(next_image)
    return ordered


def select_image_order(matches, seed=RANSAC_SEED):
    """Per connected component, image ids ordered for incremental reconstruction.

    The first two images of each list are the pair with the best baseline
    score. Components are returned largest first; images without any viable
    pair are left out.
    """
    images = matches.images()
    index = {image: i for i, image in enumerate(images)}

    cv2.setRNGSeed(seed)
    scores = {}
    for image_a, image_b in combinations(images, 2):
        score = score_pair(matches, image_a, image_b)
        if score is not None:
            scores[(image_a, image_b)] = score
            logger.debug(f"Pair {image_a}-{image_b}: score {score:.2f}")
    if not scores:
        logger.info(f"No viable image pair among {len(images)} images")
        return []

    adjacency = lil_matrix((len(images), len(images)), dtype=int)
    for image_a, image_b in scores:
        adjacency[index[image_a], index[image_b]] = 1

    n_components, labels = connected_components(adjacency.tocsr(), directed=False)

    orders = []
    for label in range(n_components):
        members = {image for image in images if labels[index[image]] == label}
        if len(members) < 2:
            logger.info(f"Image {members.pop()} has no viable pair, excluded from reconstruction")
            continue
        orders.append(_order_component(members, scores))

    orders.sort(key=len, reverse=True)
    logger.info(f"Selected {len(orders)} connected components: {[len(order) for order in orders]} images")
    return orders
