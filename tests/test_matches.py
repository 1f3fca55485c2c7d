import numpy as np

from incremental_sfm.matches import ImageID, Matches, TrackID


def build():
    matches = Matches()
    matches.insert(0, 10, [1.0, 2.0])
    matches.insert(0, 11, [3.0, 4.0])
    matches.insert(1, 10, [5.0, 6.0])
    matches.insert(1, 12, [7.0, 8.0])
    matches.insert(2, 10, [9.0, 0.0])
    return matches


def test_insert_overwrites_existing_observation():
    matches = build()
    matches.insert(0, 10, [-1.0, -2.0])
    assert len(matches) == 5
    np.testing.assert_allclose(matches.get(0, 10), [-1.0, -2.0])


def test_queries():
    matches = build()
    assert matches.images() == [0, 1, 2]
    assert matches.tracks() == [10, 11, 12]
    assert matches.tracks_in_image(1) == [10, 12]
    assert matches.tracks_in_images([0, 1]) == [10]
    assert matches.tracks_in_images([0, 1, 2]) == [10]
    assert matches.tracks_in_images([]) == []
    assert matches.images_for_track(10) == [0, 1, 2]
    assert matches.get(2, 11) is None
    assert (1, 12) in matches
    assert (2, 12) not in matches


def test_observations_follow_track_order():
    matches = build()
    np.testing.assert_allclose(matches.observations(0, [11, 10]), [[3.0, 4.0], [1.0, 2.0]])
    assert matches.observations(0, []).shape == (0, 2)
    np.testing.assert_allclose(matches.observations_of_track(10, [2, 0]), [[9.0, 0.0], [1.0, 2.0]])


def test_copy_is_independent():
    matches = build()
    duplicate = matches.copy()
    duplicate.insert(5, 99, [0.0, 0.0])
    assert len(duplicate) == len(matches) + 1
    assert 5 not in matches.images()
    assert list(duplicate)[0][:2] == (0, 10)


def test_typed_ids_address_the_same_observations():
    matches = build()
    matches.insert(ImageID(3), TrackID(11), [2.0, 2.0])

    assert matches.images_for_track(TrackID(11)) == [0, 3]
    np.testing.assert_allclose(matches.get(ImageID(0), TrackID(10)), [1.0, 2.0])
    assert matches.tracks_in_image(3) == [11]
