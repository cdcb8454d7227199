"""
training.py
~~~~~~~~~~~

Training driver for the digit classifier.

A fixed-size training batch and a validation batch are drawn from the
dataset once, then handed to ``model.fit``. Progress is recorded by
:class:`FitCallbacks`, which also forwards per-epoch summaries to an
optional callback (the API server relays these over WebSockets).
"""

import time
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from tensorflow import keras

from mnist_cnn.mnist_data import IMAGE_H, IMAGE_W, MnistData
from mnist_cnn.model import IMAGE_CHANNELS

logger = logging.getLogger(__name__)

DEFAULT_METRICS = ('loss', 'val_loss', 'acc', 'val_acc')

# Short metric names used on the charts -> names Keras writes into logs
KERAS_METRIC_NAMES = {
    'acc': 'accuracy',
    'val_acc': 'val_accuracy',
}


def get_batch(
    data: MnistData,
    size: int,
    test: bool = False
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Draw ``size`` examples shaped for the convolutional input.

    Returns:
        (xs, labels) with xs of shape [size, 28, 28, 1]
    """
    batch = data.next_data_batch(size, test)
    xs = batch.xs.reshape(size, IMAGE_H, IMAGE_W, IMAGE_CHANNELS)
    return xs, batch.labels


class FitCallbacks(keras.callbacks.Callback):
    """
    Record training metrics per batch and per epoch.

    Args:
        metrics: Metric names to track (``acc`` / ``val_acc`` are accepted
            as aliases of Keras' ``accuracy`` / ``val_accuracy``)
        callback: Called after each epoch with a summary dict
        yield_func: Called after each epoch to let other tasks run
    """

    def __init__(
        self,
        metrics: Sequence[str] = DEFAULT_METRICS,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ):
        super().__init__()
        self.metrics = list(metrics)
        self.callback = callback
        self.yield_func = yield_func
        self.batch_history: List[Dict[str, float]] = []
        self.epoch_history: List[Dict[str, float]] = []
        self.total_epochs = 0
        self._start_time = 0.0

    def _pick(self, logs: Optional[Dict[str, Any]]) -> Dict[str, float]:
        logs = logs or {}
        values = {}
        for name in self.metrics:
            key = KERAS_METRIC_NAMES.get(name, name)
            if key in logs:
                values[name] = float(logs[key])
        return values

    def on_train_begin(self, logs=None):
        self._start_time = time.time()
        self.total_epochs = self.params.get('epochs', 0)
        self.batch_history = []
        self.epoch_history = []

    def on_train_batch_end(self, batch, logs=None):
        values = self._pick(logs)
        if values:
            self.batch_history.append(values)

    def on_epoch_end(self, epoch, logs=None):
        values = self._pick(logs)
        self.epoch_history.append(values)

        elapsed_time = time.time() - self._start_time
        summary = ', '.join(f"{k}={v:.4f}" for k, v in values.items())
        logger.info(f"Epoch {epoch + 1}/{self.total_epochs}: {summary}")

        if self.callback is not None:
            self.callback({
                'epoch': epoch + 1,
                'total_epochs': self.total_epochs,
                'elapsed_time': elapsed_time,
                **values
            })

        if self.yield_func is not None:
            self.yield_func()


def train_model(
    model: keras.Model,
    data: MnistData,
    epochs: int,
    batch_size: int = 512,
    train_size: int = 5500,
    validation_size: int = 1000,
    shuffle: bool = True,
    fit_callbacks: Optional[FitCallbacks] = None,
    verbose: int = 0
) -> keras.callbacks.History:
    """
    Train ``model`` in place on batches drawn from ``data``.

    The validation batch comes from the held-out test pool.

    Raises:
        ValueError: If any size or the epoch count is not positive
    """
    for name, value in (('epochs', epochs), ('batch_size', batch_size),
                        ('train_size', train_size),
                        ('validation_size', validation_size)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"{name} must be a positive integer, got {value!r}")

    train_x, train_y = get_batch(data, train_size)
    test_x, test_y = get_batch(data, validation_size, test=True)

    if fit_callbacks is None:
        fit_callbacks = FitCallbacks()

    logger.info(
        f"Training for {epochs} epoch(s): {train_size} examples, "
        f"{validation_size} validation, batch_size={batch_size}"
    )

    return model.fit(
        train_x,
        train_y,
        batch_size=batch_size,
        validation_data=(test_x, test_y),
        epochs=epochs,
        shuffle=shuffle,
        callbacks=[fit_callbacks],
        verbose=verbose
    )
