"""
Flask web interface for the Visual Flow compiler.

Exposes the editing session over a REST API and pushes every published
preview to connected editors as a Socket.IO ``preview_published`` event.

Routes:
    GET    /api/health
    GET    /api/flow                 : current graph and latest preview
    PUT    /api/flow                 : replace the whole graph
    POST   /api/flow/mutations       : apply one editing operation
    POST   /api/flow/validate        : validate the current graph
    GET    /api/flow/preview         : latest published preview
    POST   /api/flow/deploy          : compile and publish the current graph
    GET    /api/flows                : saved flows
    POST   /api/flows                : save the current graph
    GET    /api/flows/<flow_id>      : load a saved flow into the session
    DELETE /api/flows/<flow_id>
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO, emit

from visual_flow_core import __version__
from visual_flow_core.config import FlowConfig
from visual_flow_core.exceptions import (
    DeploymentError, FlowError, FlowNotFoundError, GraphError, GraphMutationError,
)
from visual_flow_core.flow_store import SQLiteFlowStore
from visual_flow_core.models import graph_from_dict, graph_to_dict
from visual_flow_core.packager import Deployer
from visual_flow_core.preview_sync import PreviewResult, PreviewSynchronizer
from visual_flow_core.publishers import DirectoryPublisher, HttpPublisher, InMemoryPublisher, Publisher
from visual_flow_core.session import EditingSession


logger = logging.getLogger(__name__)

flow_bp = Blueprint('flow', __name__)


def _session() -> EditingSession:
    return current_app.config['FLOW_SESSION']


def _fail(message: str, status: int, **extra):
    body = {'success': False, 'error': message}
    body.update(extra)
    return jsonify(body), status


# ─────────────────────────────────────────────────────────────────────
# Error handlers
# ─────────────────────────────────────────────────────────────────────

@flow_bp.errorhandler(FlowNotFoundError)
def handle_not_found(e: FlowNotFoundError):
    return _fail(e.message, 404)


@flow_bp.errorhandler(GraphMutationError)
def handle_mutation_error(e: GraphMutationError):
    return _fail(e.message, 400, operation=e.operation, details=e.details)


@flow_bp.errorhandler(GraphError)
def handle_graph_error(e: GraphError):
    return _fail(e.message, 400, details=e.details)


@flow_bp.errorhandler(DeploymentError)
def handle_deployment_error(e: DeploymentError):
    # Invalid flows are the caller's problem; publisher failures are upstream ones
    status = 502 if e.retryable else 422
    return _fail(e.message, status, retryable=e.retryable,
                 endpoint_id=e.endpoint_id, details=e.details)


@flow_bp.errorhandler(FlowError)
def handle_flow_error(e: FlowError):
    logger.error(f"{type(e).__name__}: {e.message}")
    return _fail(e.message, 500, type=type(e).__name__)


# ─────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────

@flow_bp.route('/api/health', methods=['GET'])
def health():
    """Liveness probe."""
    return jsonify({'success': True, 'data': {'status': 'ok', 'version': __version__}})


@flow_bp.route('/api/flow', methods=['GET'])
def get_flow():
    return jsonify({'success': True, 'data': _session().to_dict()})


@flow_bp.route('/api/flow', methods=['PUT'])
def replace_flow():
    """Replace the session graph with the posted one."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _fail('Request body must be a JSON graph object', 400)

    graph = graph_from_dict(data.get('graph', data))
    epoch = _session().replace_graph(graph)
    return jsonify({'success': True, 'data': {'epoch': epoch, 'graph': graph_to_dict(graph)}})


@flow_bp.route('/api/flow/mutations', methods=['POST'])
def apply_mutation():
    """Apply one editing operation, e.g. ``{"op": "addNode", "node": {...}}``."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _fail('Request body must be a JSON operation object', 400)

    graph, epoch = _session().apply_payload(data)
    return jsonify({'success': True, 'data': {'epoch': epoch, 'graph': graph_to_dict(graph)}})


@flow_bp.route('/api/flow/validate', methods=['POST'])
def validate_flow():
    result = _session().validate()
    return jsonify({'success': True, 'data': result.to_dict()})


@flow_bp.route('/api/flow/preview', methods=['GET'])
def get_preview():
    session = _session()
    preview = session.preview
    return jsonify({
        'success': True,
        'data': {
            'epoch': session.synchronizer.epoch,
            'state': session.synchronizer.state.value,
            'preview': preview.to_dict() if preview else None,
        }
    })


@flow_bp.route('/api/flow/deploy', methods=['POST'])
def deploy_flow():
    """Compile the current graph and publish it; ``{"newVersion": true}`` forces a new id."""
    data = request.get_json(silent=True) or {}
    record = _session().deploy(new_version=bool(data.get('newVersion', False)))
    return jsonify({'success': True, 'data': record.to_dict()})


@flow_bp.route('/api/flows', methods=['GET'])
def list_flows():
    return jsonify({'success': True, 'data': _session().store.list_flows()})


@flow_bp.route('/api/flows', methods=['POST'])
def save_flow():
    """Save the session graph. ``{"name": ..., "description": ...}``"""
    data = request.get_json(silent=True) or {}
    session = _session()
    flow_id = session.save(name=data.get('name'), description=data.get('description', ''))
    return jsonify({'success': True, 'data': {'id': flow_id, 'name': session.flow_name}})


@flow_bp.route('/api/flows/<flow_id>', methods=['GET'])
def load_flow(flow_id):
    """Load a saved flow into the session."""
    session = _session()
    epoch = session.load(flow_id)
    return jsonify({'success': True, 'data': {'epoch': epoch, **session.to_dict()}})


@flow_bp.route('/api/flows/<flow_id>', methods=['DELETE'])
def delete_flow(flow_id):
    deleted = _session().store.delete_flow(flow_id)
    if not deleted:
        raise FlowNotFoundError(flow_id)
    return jsonify({'success': True, 'data': {'deleted': True}})


# ─────────────────────────────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────────────────────────────

def build_publisher(config: FlowConfig, store: SQLiteFlowStore) -> Publisher:
    """Pick the publisher from settings: HTTP url, else a directory, else memory."""
    url = store.resolve_setting('publisher_url', 'VISUAL_FLOW_PUBLISHER_URL', config.publisher_url)
    if url:
        return HttpPublisher(url)
    publish_dir = store.resolve_setting('publish_dir', 'VISUAL_FLOW_PUBLISH_DIR', config.publish_dir)
    if publish_dir:
        return DirectoryPublisher(publish_dir)
    return InMemoryPublisher()


def create_app(config: Optional[FlowConfig] = None,
               publisher: Optional[Publisher] = None) -> Flask:
    """Create the Flask app, its Socket.IO server and the editing session.

    The SocketIO instance is available as ``app.extensions['socketio']``.
    """
    config = config or FlowConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.secret_key
    CORS(app)
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

    def on_published(epoch: int, result: PreviewResult):
        socketio.emit('preview_published', {'epoch': epoch, 'preview': result.to_dict()})

    executor = ThreadPoolExecutor(max_workers=config.preview_workers,
                                  thread_name_prefix='preview') if config.preview_workers > 0 else None
    store = SQLiteFlowStore(config.db_path)
    session = EditingSession(
        synchronizer=PreviewSynchronizer(on_published=on_published, executor=executor),
        deployer=Deployer(publisher or build_publisher(config, store)),
        store=store,
    )
    app.config['FLOW_CONFIG'] = config
    app.config['FLOW_SESSION'] = session
    app.register_blueprint(flow_bp)

    @socketio.on('connect')
    def handle_connect():
        """Send the current preview to a newly connected editor."""
        preview = session.preview
        emit('preview_published', {
            'epoch': session.synchronizer.epoch,
            'preview': preview.to_dict() if preview else None,
        })

    session.refresh()
    logger.info(f"Flow editor ready (db={config.db_path}, preview workers={config.preview_workers})")
    return app


def main():
    app = create_app()
    socketio = app.extensions['socketio']
    host = os.environ.get('VISUAL_FLOW_HOST', '0.0.0.0')
    port = int(os.environ.get('VISUAL_FLOW_PORT', '5002'))
    print(f"Access the flow editor API at: http://localhost:{port}/api/health")
    socketio.run(app, host=host, port=port, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
