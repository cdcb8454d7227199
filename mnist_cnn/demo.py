"""
demo.py
~~~~~~~

Headless run of the full demo:
load -> display sample -> build model -> train -> evaluate.

Every visualization is written under the output directory, one
subdirectory per visor tab.

Usage:
    python -m mnist_cnn --epochs 20 --output-dir output
"""

import sys
import argparse
import logging
from typing import List, Optional

import numpy as np

from mnist_cnn import config
from mnist_cnn.errors import DataLoadError
from mnist_cnn.evaluation import EvaluationResult, evaluate_model
from mnist_cnn.mnist_data import MnistData
from mnist_cnn.model import create_model, model_summary
from mnist_cnn.training import FitCallbacks, train_model
from mnist_cnn.visor import (
    Visor,
    render_examples,
    render_model_summary,
    render_training_history
)

logger = logging.getLogger(__name__)


def get_data(
    images_path: Optional[str] = None,
    labels_path: Optional[str] = None,
    cache_dir: Optional[str] = None,
    seed: Optional[int] = None
) -> MnistData:
    """Create and load the dataset."""
    data = MnistData(
        images_path=images_path,
        labels_path=labels_path,
        seed=seed,
        cache_dir=cache_dir
    )
    data.load()
    return data


def display_data(data: MnistData, visor: Visor, num_images: int = 10) -> None:
    """Draw ``num_images`` test examples on the 'Input Data' tab."""
    examples = data.next_data_batch(num_images, test=True)
    labels = np.argmax(examples.labels, axis=-1)

    surface = visor.surface('Input Data Examples', tab='Input Data')
    render_examples(surface, examples.xs, labels)


def run(
    data: MnistData,
    visor: Visor,
    epochs: int = 20,
    num_examples: int = 30,
    test_size: int = 500
) -> EvaluationResult:
    """Run the pipeline on already loaded data."""
    display_data(data, visor, num_examples)

    model = create_model()
    render_model_summary(
        visor.surface('Model Architecture', tab='Model'),
        model_summary(model)
    )

    fit_callbacks = FitCallbacks()
    train_model(model, data, epochs, fit_callbacks=fit_callbacks)
    render_training_history(
        visor.surface('Model Training', tab='Training'),
        fit_callbacks.epoch_history,
        fit_callbacks.batch_history,
        fit_callbacks.metrics
    )

    return evaluate_model(model, data, test_size, visor=visor)


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value!r} must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Train and evaluate a small CNN on MNIST'
    )
    parser.add_argument('--epochs', type=positive_int, default=20,
                        help='Training epochs (default: 20)')
    parser.add_argument('--examples', type=positive_int, default=30,
                        help='Sample images to display (default: 30)')
    parser.add_argument('--test-size', type=positive_int, default=500,
                        help='Test examples per evaluation metric (default: 500)')
    parser.add_argument('--output-dir', default=config.output_dir(),
                        help='Directory for rendered figures')
    parser.add_argument('--images', default=config.images_url(),
                        help='Sprite sheet URL or path')
    parser.add_argument('--labels', default=config.labels_url(),
                        help='Label buffer URL or path')
    parser.add_argument('--cache-dir', default=config.cache_dir(),
                        help='Directory for the decoded dataset cache')
    parser.add_argument('--seed', type=int, default=config.seed(),
                        help='Seed for batch shuffling')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    config.configure_logging()
    args = build_parser().parse_args(argv)

    try:
        data = get_data(args.images, args.labels, args.cache_dir, args.seed)
    except DataLoadError as e:
        logger.error(f"Error loading MNIST data: {e}")
        return 1

    visor = Visor()
    try:
        result = run(data, visor, args.epochs, args.examples, args.test_size)
        paths = visor.save(args.output_dir)
    finally:
        visor.close()

    logger.info(f"Test accuracy: {result.accuracy:.2%}")
    for path in paths:
        logger.info(f"Wrote {path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
