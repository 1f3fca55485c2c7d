from typing import NewType

import numpy as np

ImageID = NewType("ImageID", int)
TrackID = NewType("TrackID", int)


class Matches:
    """Sparse table of 2D observations keyed by (image, track).

    Each image sees a track at most once; inserting an existing key
    overwrites the previous observation.
    """

    def __init__(self):
        self._by_image = {}
        self._by_track = {}

    def insert(self, image, track, feature):
        image, track = ImageID(image), TrackID(track)
        self._by_image.setdefault(image, {})[track] = np.asarray(feature, dtype=np.float64).reshape(2)
        self._by_track.setdefault(track, set()).add(image)

    def get(self, image: ImageID, track: TrackID):
        return self._by_image.get(image, {}).get(track)

    def __contains__(self, key):
        image, track = key
        return track in self._by_image.get(image, {})

    def __len__(self):
        return sum(len(tracks) for tracks in self._by_image.values())

    def __iter__(self):
        for image in self.images():
            features = self._by_image[image]
            for track in sorted(features):
                yield image, track, features[track]

    def images(self):
        return sorted(self._by_image)

    def tracks(self):
        return sorted(self._by_track)

    def tracks_in_image(self, image: ImageID):
        return sorted(self._by_image.get(image, {}))

    def tracks_in_images(self, images):
        """Tracks observed in every one of `images`."""
        images = list(images)
        if not images:
            return []
        common = set(self._by_image.get(images[0], {}))
        for image in images[1:]:
            common &= set(self._by_image.get(image, {}))
        return sorted(common)

    def images_for_track(self, track: TrackID):
        return sorted(self._by_track.get(track, ()))

    def observations(self, image, tracks):
        features = self._by_image.get(image, {})
        return np.array([features[track] for track in tracks], dtype=np.float64).reshape(-1, 2)

    def observations_of_track(self, track, images):
        return np.array([self._by_image[image][track] for image in images], dtype=np.float64).reshape(-1, 2)

    def update(self, other):
        for image, track, feature in other:
            self.insert(image, track, feature)

    def copy(self):
        duplicate = Matches()
        duplicate.update(self)
        return duplicate
