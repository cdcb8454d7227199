"""
test_training.py
~~~~~~~~~~~~~~~~

Tests for the training driver and its progress callbacks.
"""

import pytest

from mnist_cnn.model import create_model
from mnist_cnn.training import FitCallbacks, get_batch, train_model


@pytest.mark.unit
class TestGetBatch:
    """Test reshaping of drawn batches."""

    def test_shapes(self, mnist_data):
        """Test that images are reshaped for the convolutional input."""
        xs, labels = get_batch(mnist_data, 5)

        assert xs.shape == (5, 28, 28, 1)
        assert labels.shape == (5, 10)

    def test_test_pool(self, mnist_data):
        """Test that test=True reshapes a batch from the test pool."""
        xs, _ = get_batch(mnist_data, 3, test=True)
        flat = xs.reshape(3, 784)

        pool = {row.tobytes() for row in mnist_data.test_images}
        assert all(row.tobytes() in pool for row in flat)


@pytest.mark.unit
class TestTrainModelValidation:
    """Test argument checks before any data is drawn."""

    @pytest.mark.parametrize("kwargs", [
        {'epochs': 0},
        {'epochs': 1, 'batch_size': 0},
        {'epochs': 1, 'train_size': -5},
        {'epochs': 1, 'validation_size': 0},
        {'epochs': True},
        {'epochs': 1, 'batch_size': 2.5},
    ])
    def test_invalid_arguments(self, mnist_data, kwargs):
        """Test that non-positive or non-integer sizes raise ValueError."""
        with pytest.raises(ValueError):
            train_model(object(), mnist_data, **kwargs)


@pytest.mark.integration
class TestTrainModel:
    """Train the real model briefly on the synthetic dataset."""

    def test_history_and_callbacks(self, mnist_data):
        """Test that fit records every metric once per epoch."""
        updates = []
        yields = []
        fit_callbacks = FitCallbacks(
            callback=updates.append,
            yield_func=lambda: yields.append(True)
        )

        history = train_model(
            create_model(),
            mnist_data,
            epochs=2,
            batch_size=16,
            train_size=32,
            validation_size=8,
            fit_callbacks=fit_callbacks
        )

        for key in ('loss', 'accuracy', 'val_loss', 'val_accuracy'):
            assert len(history.history[key]) == 2

        assert [update['epoch'] for update in updates] == [1, 2]
        assert all(update['total_epochs'] == 2 for update in updates)
        assert set(updates[0]) >= {'loss', 'val_loss', 'acc', 'val_acc',
                                   'elapsed_time'}
        assert len(yields) == 2

        assert len(fit_callbacks.epoch_history) == 2
        assert fit_callbacks.batch_history
        assert 'loss' in fit_callbacks.batch_history[0]
        assert 'val_loss' not in fit_callbacks.batch_history[0]

    def test_default_callbacks(self, mnist_data):
        """Test training without caller-supplied callbacks."""
        history = train_model(
            create_model(),
            mnist_data,
            epochs=1,
            batch_size=8,
            train_size=16,
            validation_size=4
        )

        assert len(history.history['loss']) == 1
