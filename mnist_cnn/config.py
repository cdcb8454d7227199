"""
config.py
~~~~~~~~~

Environment-driven configuration and logging setup.

Every setting can be overridden with an environment variable; the CLI
flags in ``mnist_cnn.demo`` take precedence over both.
"""

import os
import logging
from typing import Optional

MNIST_IMAGES_SPRITE_PATH = (
    'https://storage.googleapis.com/learnjs-data/model-builder/mnist_images.png'
)
MNIST_LABELS_PATH = (
    'https://storage.googleapis.com/learnjs-data/model-builder/mnist_labels_uint8'
)

# Names shown on the evaluation surfaces, indexed by digit
CLASS_NAMES = [
    'Zero', 'One', 'Two', 'Three', 'Four',
    'Five', 'Six', 'Seven', 'Eight', 'Nine'
]


def images_url() -> str:
    """Location of the sprite sheet (URL or local path)."""
    return os.getenv('MNIST_IMAGES_URL', MNIST_IMAGES_SPRITE_PATH)


def labels_url() -> str:
    """Location of the one-hot label buffer (URL or local path)."""
    return os.getenv('MNIST_LABELS_URL', MNIST_LABELS_PATH)


def cache_dir() -> Optional[str]:
    """Directory for the decoded ``.npz`` cache, or None to disable it."""
    return os.getenv('MNIST_CACHE_DIR') or None


def output_dir() -> str:
    return os.getenv('MNIST_OUTPUT_DIR', 'output')


def seed() -> Optional[int]:
    value = os.getenv('MNIST_SEED')
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Ignoring non-integer MNIST_SEED={value!r}"
        )
        return None


def is_production() -> bool:
    return os.getenv('FLASK_ENV') == 'production'


def port() -> int:
    return int(os.getenv('PORT', 8000))


def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # TensorFlow's own logger repeats what Keras prints to stdout
    logging.getLogger('tensorflow').setLevel(logging.WARNING)
    logging.getLogger('matplotlib').setLevel(logging.WARNING)
    logging.getLogger('PIL').setLevel(logging.WARNING)

    if is_production():
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('mnist_cnn').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
