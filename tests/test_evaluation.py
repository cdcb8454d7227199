"""
test_evaluation.py
~~~~~~~~~~~~~~~~~~

Unit tests for prediction, per-class accuracy and the confusion matrix.
"""

import json

import numpy as np
import pytest

from conftest import NUM_TEST
from mnist_cnn.evaluation import (
    confusion_matrix,
    evaluate_model,
    per_class_accuracy,
    predict
)
from mnist_cnn.visor import Visor


class ConstantModel:
    """Predicts the same digit for every input."""

    def __init__(self, digit: int):
        self.digit = digit

    def predict(self, xs, verbose=0):
        out = np.zeros((len(xs), 10), dtype=np.float32)
        out[:, self.digit] = 1.0
        return out


@pytest.mark.unit
class TestConfusionMatrix:
    """Test the actual-by-predicted count matrix."""

    def test_known_counts(self):
        """Test counts for a hand-checked set of predictions."""
        labels = [0, 1, 2, 2]
        preds = [0, 2, 2, 1]

        matrix = confusion_matrix(labels, preds)

        assert matrix.shape == (10, 10)
        assert matrix[0, 0] == 1
        assert matrix[1, 2] == 1
        assert matrix[2, 2] == 1
        assert matrix[2, 1] == 1
        assert matrix.sum() == 4

    def test_diagonal_is_correct_predictions(self):
        """Test that the trace equals the number of correct predictions."""
        rng = np.random.default_rng(0)
        labels = rng.integers(0, 10, size=200)
        preds = np.where(rng.random(200) < 0.7, labels, rng.integers(0, 10, 200))

        matrix = confusion_matrix(labels, preds)

        assert np.trace(matrix) == np.sum(labels == preds)
        assert np.array_equal(matrix.sum(axis=1), np.bincount(labels, minlength=10))

    def test_custom_class_count(self):
        """Test a matrix for fewer classes."""
        matrix = confusion_matrix([0, 1, 1], [1, 1, 0], num_classes=2)
        assert matrix.tolist() == [[0, 1], [1, 1]]

    def test_length_mismatch_raises(self):
        """Test that labels and preds must have equal length."""
        with pytest.raises(ValueError):
            confusion_matrix([0, 1, 2], [0, 1])

    def test_two_dimensional_input_raises(self):
        """Test that one-hot input is rejected."""
        with pytest.raises(ValueError):
            confusion_matrix(np.eye(3), np.eye(3))

    def test_label_out_of_range_raises(self):
        """Test that a label outside the class range is rejected, not dropped."""
        with pytest.raises(ValueError, match="labels"):
            confusion_matrix([0, 12], [0, 0])

    def test_negative_prediction_raises(self):
        """Test that a negative predicted class is rejected."""
        with pytest.raises(ValueError, match="preds"):
            confusion_matrix([0, 1], [0, -1])

    def test_class_count_bounds_range(self):
        """Test that the range check follows num_classes."""
        with pytest.raises(ValueError):
            confusion_matrix([0, 2], [0, 1], num_classes=2)


@pytest.mark.unit
class TestPerClassAccuracy:
    """Test accuracy broken down by actual class."""

    def test_known_values(self):
        """Test accuracy and counts for hand-checked predictions."""
        result = per_class_accuracy([0, 1, 2, 2], [0, 2, 2, 1])

        assert len(result) == 10
        assert result[0] == {'accuracy': 1.0, 'count': 1}
        assert result[1] == {'accuracy': 0.0, 'count': 1}
        assert result[2] == {'accuracy': 0.5, 'count': 2}

    def test_absent_class_reports_zero(self):
        """Test that classes with no examples report accuracy 0."""
        result = per_class_accuracy([0, 0], [0, 0])

        assert result[5] == {'accuracy': 0.0, 'count': 0}


@pytest.mark.unit
class TestPredict:
    """Test class predictions on drawn test batches."""

    def test_returns_class_vectors(self, mnist_data):
        """Test that predictions and labels are integer class vectors."""
        preds, labels = predict(ConstantModel(3), mnist_data, test_size=7)

        assert preds.shape == (7,)
        assert labels.shape == (7,)
        assert np.all(preds == 3)

    def test_labels_match_test_pool(self, mnist_data, oracle_model):
        """Test that an oracle model agrees with every returned label."""
        preds, labels = predict(oracle_model, mnist_data, test_size=NUM_TEST)

        assert np.array_equal(preds, labels)


@pytest.mark.unit
class TestEvaluateModel:
    """Test the combined evaluation and its rendered surfaces."""

    def test_perfect_model(self, mnist_data, oracle_model):
        """Test metrics for a model that is always right."""
        result = evaluate_model(oracle_model, mnist_data, test_size=NUM_TEST)

        assert result.accuracy == 1.0
        assert result.confusion_matrix.sum() == NUM_TEST
        assert np.trace(result.confusion_matrix) == NUM_TEST
        assert all(
            entry['accuracy'] == 1.0
            for entry in result.class_accuracy if entry['count']
        )

    def test_constant_model(self, mnist_data):
        """Test that a constant model fills a single predicted column."""
        result = evaluate_model(ConstantModel(0), mnist_data, test_size=NUM_TEST)

        assert result.confusion_matrix[:, 0].sum() == NUM_TEST
        assert result.confusion_matrix[:, 1:].sum() == 0

    def test_renders_evaluation_surfaces(self, mnist_data, oracle_model):
        """Test that both evaluation surfaces are drawn on the visor."""
        visor = Visor()
        try:
            evaluate_model(oracle_model, mnist_data, test_size=5, visor=visor)
            names = {(s.tab, s.name) for s in visor.surfaces}
        finally:
            visor.close()

        assert names == {('Evaluation', 'Accuracy'),
                         ('Evaluation', 'Confusion Matrix')}

    def test_result_is_json_serializable(self, mnist_data, oracle_model):
        """Test the dictionary form used by the API server."""
        result = evaluate_model(oracle_model, mnist_data, test_size=5)
        payload = json.loads(json.dumps(result.to_dict()))

        assert payload['class_names'][0] == 'Zero'
        assert payload['class_accuracy'][9]['class_name'] == 'Nine'
        assert len(payload['confusion_matrix']) == 10
