"""
visor.py
~~~~~~~~

Matplotlib rendering of the demo's visualizations.

A :class:`Visor` groups named surfaces into tabs, the way the browser
panel does. Each surface owns one figure that the ``render_*`` functions
draw into. Surfaces can be written to disk as PNG files or encoded as
base64 for the API server.
"""

import os
import re
import base64
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)

DEFAULT_TAB = 'Visor'


class Surface:
    """A named drawing area on a visor tab."""

    def __init__(self, name: str, tab: str = DEFAULT_TAB):
        self.name = name
        self.tab = tab
        self.figure = plt.figure()

    def __repr__(self) -> str:
        return f"Surface(name={self.name!r}, tab={self.tab!r})"


class Visor:
    """Collection of surfaces keyed by (tab, name)."""

    def __init__(self):
        self._surfaces: Dict[Tuple[str, str], Surface] = {}

    def surface(self, name: str, tab: str = DEFAULT_TAB) -> Surface:
        """Return the surface called ``name`` on ``tab``, creating it if needed."""
        key = (tab, name)
        if key not in self._surfaces:
            self._surfaces[key] = Surface(name, tab)
            logger.debug(f"Created surface '{name}' on tab '{tab}'")
        return self._surfaces[key]

    @property
    def surfaces(self) -> List[Surface]:
        return list(self._surfaces.values())

    def save(self, output_dir: str) -> List[str]:
        """
        Write every surface to ``<output_dir>/<tab>/<name>.png``.

        Returns:
            The written file paths
        """
        paths = []
        for surface in self._surfaces.values():
            directory = os.path.join(output_dir, _slug(surface.tab))
            if not os.path.exists(directory):
                os.makedirs(directory)

            path = os.path.join(directory, f"{_slug(surface.name)}.png")
            surface.figure.savefig(path, format='png', bbox_inches='tight')
            paths.append(path)

        logger.info(f"Saved {len(paths)} surface(s) to {output_dir}")
        return paths

    def close(self) -> None:
        """Release all figures."""
        for surface in self._surfaces.values():
            plt.close(surface.figure)
        self._surfaces.clear()


def _slug(text: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', text.lower()).strip('_')


def figure_to_base64(fig) -> str:
    """Encode a figure as a base64 PNG string."""
    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    return base64.b64encode(buffer.getvalue()).decode('utf-8')


def render_examples(
    surface: Surface,
    images: np.ndarray,
    labels: Optional[Sequence[int]] = None,
    columns: int = 10
) -> None:
    """
    Draw flattened 28x28 images as a grid.

    Args:
        surface: Target surface
        images: Array of shape [n, 784] or [n, 28, 28(, 1)]
        labels: Optional digit shown above each image
        columns: Images per row
    """
    images = np.asarray(images)
    count = images.shape[0]
    columns = max(1, min(columns, count))
    rows = -(-count // columns)

    fig = surface.figure
    fig.clear()
    fig.set_size_inches(columns * 0.9, rows * 1.0)

    for i in range(count):
        ax = fig.add_subplot(rows, columns, i + 1)
        ax.imshow(images[i].reshape(28, 28), cmap='gray', vmin=0.0, vmax=1.0)
        if labels is not None:
            ax.set_title(str(labels[i]), fontsize=8)
        ax.axis('off')


def render_model_summary(surface: Surface, summary: Dict[str, Any]) -> None:
    """Draw the layer table produced by ``model.model_summary``."""
    rows = [
        [
            layer['name'],
            layer['type'],
            str(tuple(layer['output_shape'])),
            str(layer['params'])
        ]
        for layer in summary['layers']
    ]

    fig = surface.figure
    fig.clear()
    fig.set_size_inches(8, 0.4 * (len(rows) + 2))

    ax = fig.add_subplot(1, 1, 1)
    ax.axis('off')
    table = ax.table(
        cellText=rows,
        colLabels=['Layer Name', 'Type', 'Output Shape', '# Of Params'],
        loc='center'
    )
    table.auto_set_font_size(False)
    table.set_fontsize(9)
    ax.set_title(f"Total params: {summary['total_params']}")


def render_training_history(
    surface: Surface,
    epoch_history: List[Dict[str, float]],
    batch_history: Optional[List[Dict[str, float]]] = None,
    metrics: Sequence[str] = ('loss', 'val_loss', 'acc', 'val_acc')
) -> None:
    """
    Draw loss and accuracy curves.

    One row per granularity (batch, then epoch); the left column holds
    loss metrics, the right column accuracy metrics.
    """
    loss_metrics = [m for m in metrics if 'loss' in m]
    acc_metrics = [m for m in metrics if 'loss' not in m]

    histories = []
    if batch_history:
        histories.append(('Batch', batch_history))
    histories.append(('Epoch', epoch_history))

    fig = surface.figure
    fig.clear()
    fig.set_size_inches(10, 3.5 * len(histories))

    for row, (unit, history) in enumerate(histories):
        for col, group in enumerate((loss_metrics, acc_metrics)):
            ax = fig.add_subplot(len(histories), 2, row * 2 + col + 1)
            for name in group:
                points = [
                    (i + 1, entry[name])
                    for i, entry in enumerate(history) if name in entry
                ]
                if points:
                    xs, ys = zip(*points)
                    ax.plot(xs, ys, marker='o' if unit == 'Epoch' else None,
                            label=name)
            ax.set_xlabel(unit)
            ax.set_title(f"{'Loss' if col == 0 else 'Accuracy'} per {unit.lower()}")
            if ax.get_legend_handles_labels()[0]:
                ax.legend()

    fig.tight_layout()


def render_per_class_accuracy(
    surface: Surface,
    class_accuracy: List[Dict[str, Any]],
    class_names: Sequence[str]
) -> None:
    """Draw one bar per class annotated with its accuracy and example count."""
    accuracies = [entry['accuracy'] for entry in class_accuracy]
    counts = [entry['count'] for entry in class_accuracy]

    fig = surface.figure
    fig.clear()
    fig.set_size_inches(8, 4)

    ax = fig.add_subplot(1, 1, 1)
    positions = np.arange(len(class_accuracy))
    bars = ax.bar(positions, accuracies, color='steelblue')
    ax.set_xticks(positions)
    ax.set_xticklabels(class_names, rotation=45, ha='right')
    ax.set_ylim(0, 1.1)
    ax.set_ylabel('Accuracy')
    ax.set_title('Accuracy per class')

    for bar, accuracy, count in zip(bars, accuracies, counts):
        ax.annotate(
            f"{accuracy:.2f}\n(n={count})",
            (bar.get_x() + bar.get_width() / 2, bar.get_height()),
            ha='center', va='bottom', fontsize=7
        )

    fig.tight_layout()


def render_confusion_matrix(
    surface: Surface,
    matrix: np.ndarray,
    class_names: Sequence[str]
) -> None:
    """Draw an annotated heatmap; rows are actual classes, columns predicted."""
    matrix = np.asarray(matrix)

    fig = surface.figure
    fig.clear()
    fig.set_size_inches(8, 7)

    ax = fig.add_subplot(1, 1, 1)
    im = ax.imshow(matrix, interpolation='nearest', cmap=plt.cm.Blues)
    fig.colorbar(im, ax=ax)

    ticks = np.arange(len(class_names))
    ax.set_xticks(ticks)
    ax.set_yticks(ticks)
    ax.set_xticklabels(class_names, rotation=45, ha='right')
    ax.set_yticklabels(class_names)
    ax.set_xlabel('Predicted')
    ax.set_ylabel('Actual')
    ax.set_title('Confusion Matrix')

    threshold = matrix.max() / 2 if matrix.size else 0
    for i in range(matrix.shape[0]):
        for j in range(matrix.shape[1]):
            ax.text(
                j, i, str(matrix[i, j]),
                ha='center', va='center', fontsize=7,
                color='white' if matrix[i, j] > threshold else 'black'
            )

    fig.tight_layout()
