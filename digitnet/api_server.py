"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for neural network training.

This module provides endpoints for:
- Creating and managing in-memory neural networks
- Training networks with real-time progress updates via WebSockets
- Predicting classes and scoring accuracy on caller-supplied samples
- Rendering the training loss curve as a PNG image

Samples are sent as already-parsed JSON arrays; the server does not load
datasets or persist networks. Networks live only as long as the process.

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- Matplotlib for rendering loss curves
"""

import sys
import math
import uuid
import base64
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitnet import linalg
from digitnet.config import load_settings, configure_logging
from digitnet.errors import ConstructionError, ShapeMismatchError
from digitnet.network import NeuralNetwork, EarlyStopping

# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = load_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not settings.is_production,
    engineio_logger=not settings.is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

DEFAULT_INPUT_SIZE = 784
DEFAULT_OUTPUT_SIZE = 10


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def error_response(message: str, status: int, **extra: Any):
    body = {'error': message}
    body.update(extra)
    return jsonify(body), status


def shape_error_response(e: ShapeMismatchError):
    """Translate a ShapeMismatchError into a 400 naming the bad sample."""
    return error_response(str(e), 400, index=e.index)


def parse_dataset(
    data: Dict[str, Any],
    features_key: str = 'features',
    labels_key: str = 'labels'
) -> Tuple[List[Any], List[Any]]:
    """
    Pull an aligned (features, labels) pair out of a request body.

    Raises:
        ValueError: If either field is missing or not a list, or their
            lengths disagree
    """
    features = data.get(features_key)
    labels = data.get(labels_key)

    if not isinstance(features, list) or not isinstance(labels, list):
        raise ValueError(
            f"'{features_key}' and '{labels_key}' must both be lists"
        )
    if len(features) != len(labels):
        raise ValueError(
            f"'{features_key}' has {len(features)} rows but "
            f"'{labels_key}' has {len(labels)} entries"
        )
    return features, labels


def get_idle_network(network_id: str):
    """
    Look up a network that is not currently training.

    Returns:
        (network_info, None) on success or (None, error response)
    """
    if network_id not in active_networks:
        logger.warning(f"Request for non-existent network: {network_id}")
        return None, error_response('Network not found', 404)

    info = active_networks[network_id]
    if info['training']:
        return None, error_response('Network is currently training', 409)
    return info, None


def create_loss_curve_image(losses: List[float], title: str) -> str:
    """
    Create a base64-encoded PNG plot of per-epoch losses.

    Args:
        losses: Average loss of each epoch
        title: Plot title

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(5, 3))
    plt.plot(range(1, len(losses) + 1), losses, marker='o')
    plt.xlabel('Epoch')
    plt.ylabel('Average loss')
    plt.title(title)
    plt.grid(True, alpha=0.3)

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def cleanup_finished_training_jobs(network_id: Optional[str] = None) -> None:
    """
    Remove completed or failed training jobs from memory.

    Args:
        network_id: Only remove jobs belonging to this network
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
        and (network_id is None or job_info['network_id'] == network_id)
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of active networks and training jobs that are
    currently in progress (status='pending' or 'training').
    """
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body (all optional):
        {'input_size': 784, 'hidden_size': 30, 'output_size': 10, 'seed': 1}

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    input_size = data.get('input_size', DEFAULT_INPUT_SIZE)
    hidden_size = data.get('hidden_size', settings.hidden_size)
    output_size = data.get('output_size', DEFAULT_OUTPUT_SIZE)
    seed = data.get('seed', settings.seed)

    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)
                             or seed < 0):
        return error_response('seed must be a non-negative integer', 400)

    try:
        net = NeuralNetwork(input_size, hidden_size, output_size, rng=seed)
    except ConstructionError as e:
        logger.warning(f"Invalid architecture requested: {e}")
        return error_response(f'Invalid architecture: {e}', 400)

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {
        'network': net,
        'architecture': list(net.sizes),
        'trained': False,
        'training': False,
        'accuracy': None,
        'loss_history': []
    }

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': list(net.sizes),
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all networks held in memory."""
    networks = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'training': info['training'],
            'accuracy': info['accuracy'],
            'epochs_trained': len(info['loss_history'])
        }
        for nid, info in active_networks.items()
    ]

    logger.debug(f"Listing {len(networks)} networks")
    return jsonify({'networks': networks}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory."""
    info, error = get_idle_network(network_id)
    if error:
        return error

    del active_networks[network_id]
    cleanup_finished_training_jobs(network_id)
    logger.info(f"Deleted network {network_id}")

    return jsonify({'network_id': network_id, 'deleted': True}), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete every network that is not currently training."""
    idle_ids = [
        nid for nid, info in active_networks.items() if not info['training']
    ]
    for network_id in idle_ids:
        del active_networks[network_id]
        cleanup_finished_training_jobs(network_id)

    skipped = len(active_networks)
    logger.info(
        f"Deleted {len(idle_ids)} network(s), skipped {skipped} in training"
    )

    return jsonify({
        'deleted_count': len(idle_ids),
        'skipped_training': skipped,
        'message': f'Successfully deleted {len(idle_ids)} network(s)'
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'features': [[...], ...],
            'labels': [...],
            'epochs': 5,                     # optional
            'learning_rate': 0.01,           # optional
            'validation_features': [...],    # optional
            'validation_labels': [...],      # optional
            'early_stopping_patience': 3,    # optional, off by default
            'early_stopping_min_delta': 0.0  # optional
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    info, error = get_idle_network(network_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', settings.epochs)
    learning_rate = data.get('learning_rate', settings.learning_rate)
    patience = data.get('early_stopping_patience')
    min_delta = data.get('early_stopping_min_delta', 0.0)

    # Validate training parameters
    if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
        return error_response('epochs must be a positive integer', 400)
    if isinstance(learning_rate, bool) or \
            not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return error_response('learning_rate must be a positive number', 400)
    early_stopping = None
    if patience is not None:
        if isinstance(min_delta, bool) or \
                not isinstance(min_delta, (int, float)):
            return error_response('early_stopping_min_delta must be a number', 400)
        try:
            early_stopping = EarlyStopping(patience, float(min_delta))
        except ValueError as e:
            return error_response(str(e), 400)

    try:
        features, labels = parse_dataset(data)
        validation = None
        if 'validation_features' in data or 'validation_labels' in data:
            validation = parse_dataset(
                data, 'validation_features', 'validation_labels'
            )
    except ValueError as e:
        return error_response(str(e), 400)
    if not features:
        return error_response('features must not be empty', 400)

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }
    info['training'] = True

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, lr={learning_rate}, samples={len(features)}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, features, labels, epochs, learning_rate,
        validation, early_stopping
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    features: List[Any],
    labels: List[Any],
    epochs: int,
    learning_rate: float,
    validation: Optional[Tuple[List[Any], List[Any]]] = None,
    early_stopping: Optional[EarlyStopping] = None
) -> None:
    """
    Background task that trains a neural network.

    Sends progress updates via WebSocket as training progresses.
    """
    info = active_networks[network_id]
    net = info['network']
    job = training_jobs[job_id]

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        job['status'] = 'training'
        job['progress'] = progress
        # NaN and Infinity are not valid JSON tokens
        loss = data['loss'] if math.isfinite(data['loss']) else None
        job['loss'] = loss
        info['loss_history'].append(data['loss'])

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'loss': loss,
            'accuracy': data['accuracy'],
            'elapsed_time': data['elapsed_time'],
            'degenerate_samples': data['degenerate_samples'],
            'progress': progress
        })

    # Let gevent serve other requests between epochs
    def yield_to_other_tasks():
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        net.train(
            features,
            labels,
            epochs,
            learning_rate,
            validation=validation,
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks,
            early_stopping=early_stopping
        )

        if validation is not None:
            accuracy = net.test(*validation)
        else:
            accuracy = net.test(features, labels)

        info['trained'] = True
        info['accuracy'] = accuracy

        job['status'] = 'completed'
        job['accuracy'] = accuracy
        job['progress'] = 100

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': float(accuracy),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)
        if isinstance(e, ShapeMismatchError):
            job['index'] = e.index

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)

    finally:
        info['training'] = False


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id not in training_jobs:
        logger.warning(f"Status requested for non-existent job: {job_id}")
        return error_response('Training job not found', 404)

    return jsonify(training_jobs[job_id]), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Predict classes for one feature vector or a list of them.

    Request body:
        {'features': [0.0, 0.5, ...]} or {'features': [[...], [...]]}

    Returns:
        JSON with predictions and the output probabilities of each sample
    """
    info, error = get_idle_network(network_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    features = data.get('features')
    if not isinstance(features, list):
        return error_response("'features' must be a list", 400)

    # A flat list of numbers is a single sample
    single = not features or not isinstance(features[0], list)
    samples = [features] if single else features

    net = info['network']
    predictions = []
    probabilities = []
    for index, x in enumerate(samples):
        try:
            output = net.feedforward(x)
        except ShapeMismatchError as e:
            return error_response(str(e), 400, index=None if single else index)
        predictions.append(linalg.argmax(output))
        probabilities.append([float(p) for p in output])

    return jsonify({
        'network_id': network_id,
        'predictions': predictions,
        'probabilities': probabilities
    }), 200


@app.route('/api/networks/<network_id>/test', methods=['POST'])
def test_network(network_id: str):
    """
    Score a network on labelled samples.

    Request body:
        {'features': [[...], ...], 'labels': [...]}
    """
    info, error = get_idle_network(network_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    try:
        features, labels = parse_dataset(data)
    except ValueError as e:
        return error_response(str(e), 400)

    try:
        accuracy = info['network'].test(features, labels)
    except ShapeMismatchError as e:
        return shape_error_response(e)

    return jsonify({
        'network_id': network_id,
        'accuracy': accuracy,
        'total': len(labels)
    }), 200


@app.route('/api/networks/<network_id>/loss_curve', methods=['GET'])
def get_loss_curve(network_id: str):
    """Return a PNG plot of the per-epoch training losses."""
    if network_id not in active_networks:
        return error_response('Network not found', 404)

    losses = list(active_networks[network_id]['loss_history'])
    if not losses:
        return error_response('Network has not been trained yet', 404)

    return jsonify({
        'network_id': network_id,
        'epochs': len(losses),
        'image_data': create_loss_curve_image(
            losses, f"Training loss ({len(losses)} epochs)"
        )
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = settings.port
    logger.info(f"Starting server at http://localhost:{port}/")

    # Start the server with WebSocket support
    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not settings.is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
