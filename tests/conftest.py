"""
conftest.py
~~~~~~~~~~~

Shared fixtures: a small synthetic sprite sheet and label buffer written
to a temporary directory, and a dataset loaded from them.
"""

import numpy as np
import pytest
from PIL import Image

from mnist_cnn.mnist_data import IMAGE_SIZE, NUM_CLASSES, MnistData

NUM_TRAIN = 50
NUM_TEST = 10


def write_sprite(path, pixels: np.ndarray) -> None:
    """Write ``pixels`` ([n, 784] uint8) as an RGB sprite, intensity in red."""
    rgb = np.zeros(pixels.shape + (3,), dtype=np.uint8)
    rgb[..., 0] = pixels
    # Other channels carry different values so a wrong channel is noticed
    rgb[..., 1] = 255 - pixels
    Image.fromarray(rgb).save(path)


def write_labels(path, digits: np.ndarray) -> None:
    one_hot = np.zeros((len(digits), NUM_CLASSES), dtype=np.uint8)
    one_hot[np.arange(len(digits)), digits] = 1
    path.write_bytes(one_hot.tobytes())


@pytest.fixture
def sprite_files(tmp_path):
    """
    Create a 60-image sprite sheet and matching labels.

    Returns:
        (images_path, labels_path, pixels, digits)
    """
    rng = np.random.default_rng(1234)
    total = NUM_TRAIN + NUM_TEST
    pixels = rng.integers(0, 256, size=(total, IMAGE_SIZE), dtype=np.uint8)
    digits = np.arange(total) % NUM_CLASSES

    images_path = tmp_path / "mnist_images.png"
    labels_path = tmp_path / "mnist_labels_uint8"
    write_sprite(images_path, pixels)
    write_labels(labels_path, digits)

    return str(images_path), str(labels_path), pixels, digits


@pytest.fixture
def mnist_data(sprite_files):
    """A loaded dataset with 50 training and 10 test images."""
    images_path, labels_path, _, _ = sprite_files
    data = MnistData(
        images_path=images_path,
        labels_path=labels_path,
        num_train=NUM_TRAIN,
        num_test=NUM_TEST,
        seed=0
    )
    data.load()
    return data


class OracleModel:
    """Stand-in model that predicts the true digit of every known image."""

    def __init__(self, data: MnistData):
        self._lookup = {}
        for images, labels in ((data.train_images, data.train_labels),
                               (data.test_images, data.test_labels)):
            for image, label in zip(images, labels):
                self._lookup[image.tobytes()] = int(np.argmax(label))

    def predict(self, xs, verbose=0):
        xs = np.asarray(xs, dtype=np.float32).reshape(len(xs), IMAGE_SIZE)
        out = np.zeros((len(xs), NUM_CLASSES), dtype=np.float32)
        for i, x in enumerate(xs):
            out[i, self._lookup[x.tobytes()]] = 1.0
        return out


@pytest.fixture
def oracle_model(mnist_data):
    return OracleModel(mnist_data)
