"""
mnist_data.py
~~~~~~~~~~~~~

Loader for the MNIST sprite sheet and label buffer.

The dataset ships as two static files:

- a PNG sprite sheet where each row is one flattened 28x28 image
  (width 784, one row per image)
- a raw byte buffer holding one one-hot uint8 label vector per image

Both are fetched once, decoded into float32 arrays and split into a
training pool and a held-out test pool. Batches are drawn by walking a
shuffled permutation of each pool, wrapping around at the end.
"""

import os
import logging
import urllib.request
from io import BytesIO
from typing import NamedTuple, Optional, Tuple

import numpy as np
from PIL import Image

from mnist_cnn import config
from mnist_cnn.errors import DataLoadError, DataNotLoadedError

logger = logging.getLogger(__name__)

IMAGE_H = 28
IMAGE_W = 28
IMAGE_SIZE = IMAGE_H * IMAGE_W
NUM_CLASSES = 10
NUM_DATASET_ELEMENTS = 65000

TRAIN_TEST_RATIO = 5 / 6

NUM_TRAIN_ELEMENTS = int(TRAIN_TEST_RATIO * NUM_DATASET_ELEMENTS)
NUM_TEST_ELEMENTS = NUM_DATASET_ELEMENTS - NUM_TRAIN_ELEMENTS

CACHE_FILENAME = 'mnist_sprite.npz'


class Batch(NamedTuple):
    """Flattened images ``[n, 784]`` and one-hot labels ``[n, 10]``."""
    xs: np.ndarray
    labels: np.ndarray


def fetch_resource(location: str) -> bytes:
    """
    Read a resource from an http(s) URL or a local file path.

    Raises:
        DataLoadError: If the resource cannot be read
    """
    try:
        if location.startswith(('http://', 'https://')):
            logger.info(f"Fetching {location}")
            with urllib.request.urlopen(location) as response:
                return response.read()
        with open(location, 'rb') as f:
            return f.read()
    except OSError as e:
        raise DataLoadError(f"Could not read {location}: {e}") from e


def decode_sprite(data: bytes, num_images: int) -> np.ndarray:
    """
    Decode the sprite sheet into a ``[num_images, 784]`` float32 array.

    Intensity is taken from the red channel and scaled to [0, 1].
    """
    try:
        with Image.open(BytesIO(data)) as img:
            pixels = np.asarray(img.convert('RGB'))
    except (OSError, ValueError) as e:
        raise DataLoadError(f"Could not decode sprite sheet: {e}") from e

    height, width = pixels.shape[:2]
    if width != IMAGE_SIZE:
        raise DataLoadError(
            f"Sprite sheet must be {IMAGE_SIZE} pixels wide, got {width}"
        )
    if height < num_images:
        raise DataLoadError(
            f"Sprite sheet holds {height} images, {num_images} required"
        )

    return pixels[:num_images, :, 0].astype(np.float32) / 255.0


def decode_labels(data: bytes, num_images: int) -> np.ndarray:
    """Decode the label buffer into a ``[num_images, 10]`` float32 array."""
    required = num_images * NUM_CLASSES
    if len(data) < required:
        raise DataLoadError(
            f"Label buffer holds {len(data)} bytes, {required} required"
        )

    labels = np.frombuffer(data, dtype=np.uint8, count=required)
    labels = labels.reshape(num_images, NUM_CLASSES).astype(np.float32)

    if not np.all(labels.sum(axis=1) == 1.0):
        raise DataLoadError("Label buffer is not one-hot encoded")
    return labels


def save_pools(filepath: str, pools: Tuple[np.ndarray, ...]) -> None:
    """
    Save decoded pools in compressed NPZ format.

    Parameters:
    -----------
    filepath : str
        Output path for the .npz file
    pools : tuple
        (train_images, train_labels, test_images, test_labels)
    """
    train_images, train_labels, test_images, test_labels = pools

    directory = os.path.dirname(filepath)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    np.savez_compressed(
        filepath,
        train_images=train_images,
        train_labels=train_labels,
        test_images=test_images,
        test_labels=test_labels
    )
    logger.info(f"Cached MNIST pools at {filepath}")


def load_pools(filepath: str) -> Tuple[np.ndarray, ...]:
    """Load pools written by :func:`save_pools`."""
    with np.load(filepath, allow_pickle=False) as data:
        return (
            data['train_images'],
            data['train_labels'],
            data['test_images'],
            data['test_labels']
        )


class MnistData:
    """
    MNIST sprite-sheet dataset split into training and test pools.

    Call :meth:`load` once, then draw batches with
    :meth:`next_data_batch`.
    """

    def __init__(
        self,
        images_path: Optional[str] = None,
        labels_path: Optional[str] = None,
        num_train: int = NUM_TRAIN_ELEMENTS,
        num_test: int = NUM_TEST_ELEMENTS,
        seed: Optional[int] = None,
        cache_dir: Optional[str] = None
    ):
        if num_train < 1 or num_test < 1:
            raise ValueError(
                f"Pools must be non-empty, got num_train={num_train}, "
                f"num_test={num_test}"
            )

        self.images_path = images_path or config.images_url()
        self.labels_path = labels_path or config.labels_url()
        self.num_train = num_train
        self.num_test = num_test
        self.cache_dir = cache_dir
        self._rng = np.random.default_rng(seed)

        self.train_images: Optional[np.ndarray] = None
        self.train_labels: Optional[np.ndarray] = None
        self.test_images: Optional[np.ndarray] = None
        self.test_labels: Optional[np.ndarray] = None

        self._train_indices: Optional[np.ndarray] = None
        self._test_indices: Optional[np.ndarray] = None
        self._train_cursor = 0
        self._test_cursor = 0

    @property
    def loaded(self) -> bool:
        return self.train_images is not None

    @property
    def cache_path(self) -> Optional[str]:
        if not self.cache_dir:
            return None
        return os.path.join(self.cache_dir, CACHE_FILENAME)

    def load(self) -> None:
        """
        Fetch, decode and split the dataset.

        Raises:
            DataLoadError: If a resource is unreadable or malformed
        """
        pools = self._load_cached()
        if pools is None:
            pools = self._load_remote()
            if self.cache_path:
                save_pools(self.cache_path, pools)

        (self.train_images, self.train_labels,
         self.test_images, self.test_labels) = pools

        self._train_indices = self._rng.permutation(self.num_train)
        self._test_indices = self._rng.permutation(self.num_test)
        self._train_cursor = 0
        self._test_cursor = 0

        logger.info(
            f"Data loaded: {self.num_train} training, {self.num_test} test"
        )

    def _load_remote(self) -> Tuple[np.ndarray, ...]:
        total = self.num_train + self.num_test

        images = decode_sprite(fetch_resource(self.images_path), total)
        labels = decode_labels(fetch_resource(self.labels_path), total)

        return (
            images[:self.num_train],
            labels[:self.num_train],
            images[self.num_train:],
            labels[self.num_train:]
        )

    def _load_cached(self) -> Optional[Tuple[np.ndarray, ...]]:
        path = self.cache_path
        if not path or not os.path.exists(path):
            return None

        try:
            pools = load_pools(path)
        except (OSError, KeyError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache {path}: {e}")
            return None

        expected = [
            (self.num_train, IMAGE_SIZE),
            (self.num_train, NUM_CLASSES),
            (self.num_test, IMAGE_SIZE),
            (self.num_test, NUM_CLASSES)
        ]
        if [pool.shape for pool in pools] != expected:
            logger.info(f"Cache {path} does not match pool sizes, rebuilding")
            return None

        logger.info(f"Loaded MNIST pools from cache {path}")
        return pools

    def next_train_batch(self, batch_size: int) -> Batch:
        self._check_ready(batch_size)
        positions = (self._train_cursor + np.arange(batch_size)) % self.num_train
        self._train_cursor = (self._train_cursor + batch_size) % self.num_train

        indices = self._train_indices[positions]
        return Batch(self.train_images[indices], self.train_labels[indices])

    def next_test_batch(self, batch_size: int) -> Batch:
        self._check_ready(batch_size)
        positions = (self._test_cursor + np.arange(batch_size)) % self.num_test
        self._test_cursor = (self._test_cursor + batch_size) % self.num_test

        indices = self._test_indices[positions]
        return Batch(self.test_images[indices], self.test_labels[indices])

    def next_data_batch(self, batch_size: int, test: bool = False) -> Batch:
        """Draw the next batch from the test pool if ``test`` else training."""
        if test:
            return self.next_test_batch(batch_size)
        return self.next_train_batch(batch_size)

    def _check_ready(self, batch_size: int) -> None:
        if not self.loaded:
            raise DataNotLoadedError("Call load() before drawing batches")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
