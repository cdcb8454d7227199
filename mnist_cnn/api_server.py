"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the MNIST demo.

This module provides endpoints for:
- Displaying sample images from the dataset
- Creating classifiers and inspecting their architecture
- Training classifiers with real-time progress updates via WebSockets
- Evaluating classifiers (per-class accuracy and confusion matrix)

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
"""

import sys
import uuid
import logging
from typing import Dict, Any, Optional

import gevent
import numpy as np
from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

from mnist_cnn import config
from mnist_cnn.errors import DataLoadError
from mnist_cnn.evaluation import evaluate_model
from mnist_cnn.mnist_data import MnistData
from mnist_cnn.model import create_model, model_summary
from mnist_cnn.training import FitCallbacks, train_model
from mnist_cnn.visor import Visor, figure_to_base64, render_examples

config.configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__, static_folder='static')
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

is_production = config.is_production()

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Models currently held in memory: {model_id: model_info}
active_models: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST dataset - loaded once, on startup or on first use
mnist_data: Optional[MnistData] = None

ACTIVE_JOB_STATUSES = ('pending', 'training')


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_data() -> MnistData:
    """
    Load the MNIST dataset into the module-level ``mnist_data``.

    Subsequent calls return the already loaded dataset.
    """
    global mnist_data

    if mnist_data is not None and mnist_data.loaded:
        return mnist_data

    logger.info("Loading MNIST data...")
    try:
        data = MnistData(seed=config.seed(), cache_dir=config.cache_dir())
        data.load()
    except Exception as e:
        logger.exception(f"Error loading MNIST data: {e}")
        raise

    mnist_data = data
    return mnist_data


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    This prevents the training_jobs dictionary from growing indefinitely.
    Only removes jobs that are no longer active (completed or failed).
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def parse_int_arg(name: str, default: int) -> Optional[int]:
    """Read an integer query parameter; None if present but not an integer."""
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return None


def has_active_job(model_id: str) -> bool:
    return any(
        job['model_id'] == model_id and job['status'] in ACTIVE_JOB_STATUSES
        for job in training_jobs.values()
    )


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Counts only training jobs that are currently in progress
    (status='pending' or 'training').
    """
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_JOB_STATUSES
    )

    return jsonify({
        'status': 'online',
        'data_loaded': mnist_data is not None and mnist_data.loaded,
        'active_models': len(active_models),
        'training_jobs': active_training
    }), 200


@app.route('/api/examples', methods=['GET'])
def get_examples():
    """
    Render a grid of sample test images.

    Query parameters:
        count: number of images (1-100, default 30)
    """
    count = parse_int_arg('count', 30)
    if count is None or not 1 <= count <= 100:
        return jsonify({'error': 'count must be an integer between 1 and 100'}), 400

    try:
        data = load_mnist_data()
    except DataLoadError as e:
        return jsonify({'error': f'Data not available: {e}'}), 503

    examples = data.next_data_batch(count, test=True)
    labels = [int(label) for label in np.argmax(examples.labels, axis=-1)]

    visor = Visor()
    try:
        surface = visor.surface('Input Data Examples', tab='Input Data')
        render_examples(surface, examples.xs, labels)
        image = figure_to_base64(surface.figure)
    finally:
        visor.close()

    return jsonify({
        'count': count,
        'labels': labels,
        'image_data': image
    }), 200


@app.route('/api/models', methods=['POST'])
def create_model_endpoint():
    """
    Create a new classifier.

    Returns:
        JSON with model_id, layer summary, and status
    """
    model_id = str(uuid.uuid4())

    try:
        model = create_model()
        summary = model_summary(model)
    except Exception as e:
        logger.exception(f"Error creating model: {e}")
        return jsonify({'error': f'Failed to create model: {str(e)}'}), 500

    active_models[model_id] = {
        'model': model,
        'summary': summary,
        'trained': False,
        'accuracy': None
    }

    logger.info(f"Created model {model_id}")

    return jsonify({
        'model_id': model_id,
        'summary': summary,
        'status': 'created'
    }), 201


@app.route('/api/models', methods=['GET'])
def list_models():
    """List all models held in memory."""
    models = [
        {
            'model_id': model_id,
            'total_params': info['summary']['total_params'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'training': has_active_job(model_id)
        }
        for model_id, info in active_models.items()
    ]
    return jsonify({'models': models}), 200


@app.route('/api/models/<model_id>', methods=['GET'])
def get_model(model_id: str):
    """Return the architecture summary of a model."""
    if model_id not in active_models:
        return jsonify({'error': 'Model not found'}), 404

    info = active_models[model_id]
    return jsonify({
        'model_id': model_id,
        'summary': info['summary'],
        'trained': info['trained'],
        'accuracy': info['accuracy']
    }), 200


@app.route('/api/models/<model_id>', methods=['DELETE'])
def delete_model(model_id: str):
    """Delete a model from memory."""
    if model_id not in active_models:
        logger.warning(f"Delete attempted for non-existent model: {model_id}")
        return jsonify({'error': 'Model not found'}), 404

    if has_active_job(model_id):
        return jsonify({'error': 'Model is training'}), 409

    del active_models[model_id]
    logger.info(f"Deleted model {model_id}")

    return jsonify({'model_id': model_id, 'deleted': True}), 200


@app.route('/api/models', methods=['DELETE'])
def delete_all_models():
    """Delete every model that is not currently training."""
    deletable = [
        model_id for model_id in active_models
        if not has_active_job(model_id)
    ]
    for model_id in deletable:
        del active_models[model_id]

    logger.info(f"Deleted {len(deletable)} model(s)")

    return jsonify({
        'deleted_count': len(deletable),
        'message': f'Successfully deleted {len(deletable)} model(s)'
    }), 200


@app.route('/api/models/<model_id>/train', methods=['POST'])
def train_model_endpoint(model_id: str):
    """
    Start training a model in the background.

    Request body (all optional):
        {
            'epochs': 20,
            'batch_size': 512,
            'train_size': 5500,
            'validation_size': 1000
        }

    Returns:
        JSON with job_id, model_id, and status
    """
    if model_id not in active_models:
        logger.warning(f"Training requested for non-existent model: {model_id}")
        return jsonify({'error': 'Model not found'}), 404

    if has_active_job(model_id):
        return jsonify({'error': 'Model is already training'}), 409

    data = request.get_json(silent=True) or {}
    params = {
        'epochs': data.get('epochs', 20),
        'batch_size': data.get('batch_size', 512),
        'train_size': data.get('train_size', 5500),
        'validation_size': data.get('validation_size', 1000)
    }

    # Validate training parameters
    for name, value in params.items():
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            return jsonify({'error': f'{name} must be a positive integer'}), 400

    cleanup_finished_training_jobs()

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'model_id': model_id,
        'status': 'pending',
        'progress': 0,
        'epochs': params['epochs']
    }

    logger.info(
        f"Created training job {job_id} for model {model_id}: "
        f"epochs={params['epochs']}, batch_size={params['batch_size']}, "
        f"train_size={params['train_size']}, "
        f"validation_size={params['validation_size']}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(train_model_task, model_id, job_id, params)

    return jsonify({
        'job_id': job_id,
        'model_id': model_id,
        'status': 'training_started'
    }), 202


def train_model_task(model_id: str, job_id: str, params: Dict[str, int]) -> None:
    """
    Background task that trains a model.

    Sends progress updates via WebSocket as training progresses.
    """
    model = active_models[model_id]['model']

    def on_epoch_complete(update: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (update['epoch'] / update['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'model_id': model_id,
            'progress': progress,
            **update
        })

    def yield_to_other_tasks():
        # Let gevent send the message and serve requests between epochs
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        data = load_mnist_data()

        fit_callbacks = FitCallbacks(
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks
        )
        train_model(model, data, fit_callbacks=fit_callbacks, **params)

        final = fit_callbacks.epoch_history[-1] if fit_callbacks.epoch_history else {}
        accuracy = final.get('val_acc')

        active_models[model_id]['trained'] = True
        active_models[model_id]['accuracy'] = accuracy

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100
        training_jobs[job_id]['history'] = fit_callbacks.epoch_history

        if accuracy is not None:
            logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")
        else:
            logger.info(f"Training completed for job {job_id}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'model_id': model_id,
            'status': 'completed',
            'accuracy': accuracy,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'model_id': model_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id not in training_jobs:
        logger.warning(f"Status requested for non-existent job: {job_id}")
        return jsonify({'error': 'Training job not found'}), 404

    return jsonify(training_jobs[job_id]), 200


@app.route('/api/models/<model_id>/evaluation', methods=['GET'])
def evaluate_model_endpoint(model_id: str):
    """
    Evaluate a trained model on the test pool.

    Query parameters:
        test_size: test examples per metric (default 500)

    Returns JSON with per-class accuracy, confusion matrix and the
    rendered figures as base64 PNG.
    """
    if model_id not in active_models:
        logger.warning(f"Evaluation requested for non-existent model: {model_id}")
        return jsonify({'error': 'Model not found'}), 404

    info = active_models[model_id]
    if not info['trained']:
        return jsonify({'error': 'Model has not been trained'}), 409
    if has_active_job(model_id):
        return jsonify({'error': 'Model is training'}), 409

    test_size = parse_int_arg('test_size', 500)
    if test_size is None or test_size < 1:
        return jsonify({'error': 'test_size must be a positive integer'}), 400

    visor = Visor()
    try:
        result = evaluate_model(info['model'], load_mnist_data(), test_size, visor=visor)
        images = {
            surface.name: figure_to_base64(surface.figure)
            for surface in visor.surfaces
        }
    except Exception as e:
        logger.exception(f"Error evaluating model {model_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500
    finally:
        visor.close()

    return jsonify({
        'model_id': model_id,
        'test_size': test_size,
        **result.to_dict(),
        'images': images
    }), 200


# ============================================================================
# STATIC FILE SERVING
# ============================================================================

@app.route('/')
def index():
    """Serve the main frontend page."""
    return send_from_directory(app.static_folder, 'index.html')


@app.route('/<path:path>')
def serve_static(path: str):
    """Serve static files (CSS, JS, images, etc.)."""
    return send_from_directory(app.static_folder, path)


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    port = config.port()

    try:
        load_mnist_data()
    except DataLoadError:
        sys.exit(1)

    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise


if __name__ == '__main__':
    main()
