"""
evaluation.py
~~~~~~~~~~~~~

Evaluate a trained classifier on the held-out test pool.

Produces per-class accuracy and a confusion matrix (rows are the actual
digit, columns the predicted digit) and renders both on the visor.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn import metrics

from mnist_cnn.config import CLASS_NAMES
from mnist_cnn.mnist_data import NUM_CLASSES, MnistData
from mnist_cnn.training import get_batch
from mnist_cnn.visor import (
    Visor,
    render_confusion_matrix,
    render_per_class_accuracy
)

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    class_accuracy: List[Dict[str, Any]]
    confusion_matrix: np.ndarray
    accuracy: float
    class_names: List[str] = field(default_factory=lambda: list(CLASS_NAMES))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable form used by the API server."""
        return {
            'class_accuracy': [
                {'class_name': name, **entry}
                for name, entry in zip(self.class_names, self.class_accuracy)
            ],
            'confusion_matrix': self.confusion_matrix.tolist(),
            'accuracy': self.accuracy,
            'class_names': self.class_names
        }


def predict(model, data: MnistData, test_size: int = 500) -> Tuple[np.ndarray, np.ndarray]:
    """
    Classify ``test_size`` freshly drawn test examples.

    Returns:
        (preds, labels) as integer class vectors
    """
    xs, one_hot = get_batch(data, test_size, test=True)
    labels = np.argmax(one_hot, axis=-1)
    preds = np.argmax(model.predict(xs, verbose=0), axis=-1)
    return preds, labels


def _check_vectors(
    labels,
    preds,
    num_classes: int = NUM_CLASSES
) -> Tuple[np.ndarray, np.ndarray]:
    labels = np.asarray(labels).astype(int)
    preds = np.asarray(preds).astype(int)
    if labels.ndim != 1 or preds.ndim != 1:
        raise ValueError("labels and preds must be 1-D class vectors")
    if labels.shape != preds.shape:
        raise ValueError(
            f"labels and preds differ in length: "
            f"{labels.shape[0]} != {preds.shape[0]}"
        )
    for name, values in (('labels', labels), ('preds', preds)):
        if values.size and (values.min() < 0 or values.max() >= num_classes):
            raise ValueError(
                f"{name} must be class indices in [0, {num_classes})"
            )
    return labels, preds


def confusion_matrix(labels, preds, num_classes: int = NUM_CLASSES) -> np.ndarray:
    """Count matrix indexed ``[actual][predicted]``."""
    labels, preds = _check_vectors(labels, preds, num_classes)
    return metrics.confusion_matrix(
        labels, preds, labels=list(range(num_classes))
    )


def per_class_accuracy(
    labels,
    preds,
    num_classes: int = NUM_CLASSES
) -> List[Dict[str, Any]]:
    """
    Accuracy of the predictions for each actual class.

    Returns:
        One ``{'accuracy': float, 'count': int}`` per class; classes with
        no examples report an accuracy of 0.0
    """
    matrix = confusion_matrix(labels, preds, num_classes)
    counts = matrix.sum(axis=1)
    correct = np.diag(matrix)

    return [
        {
            'accuracy': float(correct[i] / counts[i]) if counts[i] else 0.0,
            'count': int(counts[i])
        }
        for i in range(num_classes)
    ]


def evaluate_model(
    model,
    data: MnistData,
    test_size: int = 500,
    visor: Optional[Visor] = None,
    class_names: Sequence[str] = CLASS_NAMES
) -> EvaluationResult:
    """
    Compute and render per-class accuracy and the confusion matrix.

    Each metric is computed on its own test batch.
    """
    num_classes = len(class_names)

    preds, labels = predict(model, data, test_size)
    class_accuracy = per_class_accuracy(labels, preds, num_classes)

    preds, labels = predict(model, data, test_size)
    matrix = confusion_matrix(labels, preds, num_classes)

    accuracy = float(np.trace(matrix) / matrix.sum())
    logger.info(f"Evaluated {test_size} test examples: accuracy {accuracy:.2%}")

    if visor is not None:
        render_per_class_accuracy(
            visor.surface('Accuracy', tab='Evaluation'),
            class_accuracy,
            class_names
        )
        render_confusion_matrix(
            visor.surface('Confusion Matrix', tab='Evaluation'),
            matrix,
            class_names
        )

    return EvaluationResult(
        class_accuracy=class_accuracy,
        confusion_matrix=matrix,
        accuracy=accuracy,
        class_names=list(class_names)
    )
