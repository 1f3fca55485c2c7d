from itertools import combinations

import cv2

from incremental_sfm.config import RANSAC_SEED
from incremental_sfm.matches import Matches
from incremental_sfm.ordering import score_pair, select_image_order
from incremental_sfm.synthetic import n_realistic_cameras


def add_dataset(matches, dataset, image_offset, track_offset):
    for view in range(dataset.n):
        for p, feature in enumerate(dataset.x[view]):
            matches.insert(image_offset + view, track_offset + p, feature)


def test_single_component_starts_with_best_pair(dataset, matches):
    orders = select_image_order(matches)

    assert len(orders) == 1
    assert sorted(orders[0]) == list(range(dataset.n))

    cv2.setRNGSeed(RANSAC_SEED)
    scores = {pair: score_pair(matches, *pair) for pair in combinations(matches.images(), 2)}
    best = max(scores, key=scores.get)
    assert set(orders[0][:2]) == set(best)


def test_disconnected_components_and_isolated_images():
    matches = Matches()
    add_dataset(matches, n_realistic_cameras(3, 60, seed=1), 0, 0)
    add_dataset(matches, n_realistic_cameras(4, 60, seed=2), 10, 1000)
    # too few tracks shared with image 0 to form an edge
    for track in range(5):
        matches.insert(20, track, matches.get(0, track))

    orders = select_image_order(matches)

    assert len(orders) == 2
    assert sorted(orders[0]) == [10, 11, 12, 13]
    assert sorted(orders[1]) == [0, 1, 2]
    assert all(20 not in order for order in orders)


def test_no_viable_pairs():
    assert select_image_order(Matches()) == []

    matches = Matches()
    for image in range(3):
        matches.insert(image, image, [1.0, 1.0])
    assert select_image_order(matches) == []


def test_pairs_below_threshold_are_not_scored(matches):
    sparse = Matches()
    for track in range(5):
        for image in (0, 1):
            sparse.insert(image, track, matches.get(image, track))
    assert score_pair(sparse, 0, 1) is None
    assert score_pair(matches, 0, 1) > 0


def test_same_seed_gives_same_order(outlier_matches):
    assert select_image_order(outlier_matches, seed=9) == select_image_order(outlier_matches, seed=9)
