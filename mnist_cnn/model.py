"""
model.py
~~~~~~~~

Keras definition of the digit classifier.

Two convolution + max-pooling blocks extract features from the 28x28
input, then a dense softmax layer maps them onto the ten digit classes.
"""

import logging
from typing import Any, Dict, List

from tensorflow import keras
from tensorflow.keras import layers

from mnist_cnn.mnist_data import IMAGE_H, IMAGE_W, NUM_CLASSES

logger = logging.getLogger(__name__)

IMAGE_CHANNELS = 1


def create_model() -> keras.Sequential:
    """
    Build and compile the convolutional classifier.

    Returns:
        A compiled ``keras.Sequential`` model with output shape (None, 10)
    """
    cnn = keras.Sequential(
        [
            layers.Input(shape=(IMAGE_H, IMAGE_W, IMAGE_CHANNELS)),
            layers.Conv2D(
                filters=8,
                kernel_size=5,
                strides=1,
                activation='relu',
                kernel_initializer=keras.initializers.VarianceScaling()
            ),
            layers.MaxPooling2D(pool_size=(2, 2), strides=(2, 2)),
            layers.Conv2D(
                filters=16,
                kernel_size=5,
                strides=1,
                activation='relu',
                kernel_initializer=keras.initializers.VarianceScaling()
            ),
            layers.MaxPooling2D(pool_size=(2, 2), strides=(2, 2)),
            layers.Flatten(),
            layers.Dense(
                NUM_CLASSES,
                kernel_initializer=keras.initializers.VarianceScaling(),
                activation='softmax'
            ),
        ],
        name='mnist_cnn'
    )

    cnn.compile(
        optimizer=keras.optimizers.Adam(),
        loss='categorical_crossentropy',
        metrics=['accuracy'],
    )

    logger.info(f"Created model with {cnn.count_params()} parameters")
    return cnn


def model_summary(model: keras.Model) -> Dict[str, Any]:
    """
    Describe the model layer by layer.

    Returns:
        dict with ``layers`` (name, type, output_shape, params for each
        layer), ``total_params`` and the Keras ``text`` summary
    """
    layer_rows: List[Dict[str, Any]] = []
    for layer in model.layers:
        layer_rows.append({
            'name': layer.name,
            'type': type(layer).__name__,
            'output_shape': list(layer.output.shape),
            'params': int(layer.count_params())
        })

    lines: List[str] = []

    def capture(line: str, **kwargs: Any) -> None:
        lines.append(line)

    model.summary(print_fn=capture)

    return {
        'layers': layer_rows,
        'total_params': int(model.count_params()),
        'text': '\n'.join(lines)
    }
