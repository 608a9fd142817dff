"""
Revision Engine Flask Routes
============================
JSON endpoints for snapshot comparison and live change-tracking sessions.

All responses use the envelope {success: true, ...} or
{success: false, error: {code, message, details, correlation_id}}.
"""

import time
from functools import wraps
from typing import Any, Dict

from flask import Blueprint, request, jsonify, g

from config_logging import (
    __version__, get_config, get_logger, RevisionError, SessionNotFoundError, StructuredLogger,
    ValidationError
)
from .differ import SnapshotDiffer
from .models import Author, EditOp
from .sessions import get_session_manager

logger = get_logger('revision_engine.routes')

# Create blueprint
revision_blueprint = Blueprint('revision_engine', __name__)


# =============================================================================
# STANDARDIZED ERROR HANDLING DECORATOR
# =============================================================================

def handle_revision_errors(f):
    """
    Decorator for standardized API error handling in revision routes.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        start_time = time.time()
        try:
            result = f(*args, **kwargs)

            elapsed = time.time() - start_time
            if elapsed > 5.0:
                logger.warning(f"Slow revision API call: {f.__name__} took {elapsed:.1f}s")

            return result

        except RevisionError as e:
            if e.status_code >= 500:
                logger.error(f"{e.code} in {f.__name__}: {e}")
            else:
                logger.warning(f"{e.code} in {f.__name__}: {e}")
            body = e.to_dict()
            body['error']['correlation_id'] = getattr(g, 'correlation_id', 'unknown')
            return jsonify(body), e.status_code
        except Exception as e:
            logger.exception(f"Unexpected error in {f.__name__}: {e}")
            return jsonify({
                'success': False,
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                    'correlation_id': getattr(g, 'correlation_id', 'unknown')
                }
            }), 500

    return decorated


@revision_blueprint.before_request
def assign_correlation_id():
    g.correlation_id = request.headers.get('X-Correlation-ID') or StructuredLogger.new_correlation_id()
    StructuredLogger.set_correlation_id(g.correlation_id)


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _json_body(allow_empty: bool = False) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None and allow_empty and not request.get_data():
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _text_field(data: Dict[str, Any], name: str, required: bool = True) -> str:
    value = data.get(name)
    if value is None and not required:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"'{name}' must be a string", field=name)
    limit = get_config().max_document_chars
    if len(value) > limit:
        raise ValidationError(f"'{name}' exceeds {limit} characters", field=name,
                              length=len(value))
    return value


def _author_field(data: Dict[str, Any]):
    raw = data.get('author')
    if raw is None:
        return None
    if isinstance(raw, str):
        return Author(raw)
    if isinstance(raw, dict) and raw.get('id'):
        try:
            return Author.from_dict(raw)
        except ValueError as e:
            raise ValidationError(f"Invalid author: {e}", field='author') from e
    raise ValidationError("'author' must be an id or an object with an id", field='author')


def _edit_ops(data: Dict[str, Any]):
    raw_ops = data.get('edits')
    if raw_ops is None:
        raw_ops = [data]
    if not isinstance(raw_ops, list):
        raise ValidationError("'edits' must be a list", field='edits')
    ops = []
    for index, raw in enumerate(raw_ops):
        if not isinstance(raw, dict):
            raise ValidationError(f"Edit {index} must be an object", field='edits')
        try:
            ops.append(EditOp.from_dict(raw))
        except ValueError as e:
            raise ValidationError(f"Edit {index}: {e}", field='edits') from e
    return ops


def _tracker_state(tracker) -> Dict[str, Any]:
    return {
        'document': tracker.document,
        'version': tracker.version,
        'changes': [c.to_dict() for c in tracker.current_changes()]
    }


# =============================================================================
# SNAPSHOT COMPARISON
# =============================================================================

@revision_blueprint.route('/diff', methods=['POST'])
@handle_revision_errors
def diff_snapshots():
    """
    Compare two snapshots.

    Request body:
        { baseline: str, current: str, granularity?: 'word'|'sentence'|'line' }

    Returns:
        { success: true, report: {...} }
    """
    data = _json_body()
    baseline = _text_field(data, 'baseline')
    current = _text_field(data, 'current')
    granularity = data.get('granularity', 'word')

    report = SnapshotDiffer().compare(baseline, current, granularity)
    return jsonify({
        'success': True,
        'report': report.to_dict()
    })


@revision_blueprint.route('/merge', methods=['POST'])
@handle_revision_errors
def merge_snapshots():
    """
    Build the text produced by accepting a subset of a diff's changes.

    Request body:
        { baseline: str, current: str, accepted_ids: [str], granularity?: str }

    Returns:
        { success: true, text: str }
    """
    data = _json_body()
    baseline = _text_field(data, 'baseline')
    current = _text_field(data, 'current')
    accepted_ids = data.get('accepted_ids', [])
    if not isinstance(accepted_ids, list) or not all(isinstance(i, str) for i in accepted_ids):
        raise ValidationError("'accepted_ids' must be a list of change ids", field='accepted_ids')

    text = SnapshotDiffer().merge(baseline, current, accepted_ids, data.get('granularity', 'word'))
    return jsonify({
        'success': True,
        'text': text
    })


@revision_blueprint.route('/align', methods=['POST'])
@handle_revision_errors
def align_paragraphs():
    """
    Align paragraphs between two versions.

    Request body:
        { baseline: str, current: str } or
        { baseline_chunks: [str], current_chunks: [str] }
    """
    data = _json_body()
    differ = SnapshotDiffer()
    if 'baseline_chunks' in data or 'current_chunks' in data:
        old_chunks = data.get('baseline_chunks') or []
        new_chunks = data.get('current_chunks') or []
        if (not isinstance(old_chunks, list) or not isinstance(new_chunks, list)
                or not all(isinstance(c, str) for c in old_chunks + new_chunks)):
            raise ValidationError("Chunks must be lists of strings", field='chunks')
        pairs = differ.align_chunks(old_chunks, new_chunks)
    else:
        pairs = differ.align_snapshots(_text_field(data, 'baseline'), _text_field(data, 'current'))
    return jsonify({
        'success': True,
        'pairs': [p.to_dict() for p in pairs]
    })


# =============================================================================
# TRACKING SESSIONS
# =============================================================================

@revision_blueprint.route('/sessions', methods=['POST'])
@handle_revision_errors
def create_session():
    """
    Open a tracking session.

    Request body:
        { document: str, author?: str|{id, display_name, kind}, enabled?: bool }
    """
    data = _json_body()
    document = _text_field(data, 'document', required=False)
    session_id = get_session_manager().create_session(
        document,
        author=_author_field(data),
        enabled=bool(data.get('enabled', True)),
        metadata=data.get('metadata') if isinstance(data.get('metadata'), dict) else None
    )
    return jsonify({
        'success': True,
        'session_id': session_id
    }), 201


@revision_blueprint.route('/sessions', methods=['GET'])
@handle_revision_errors
def list_sessions():
    return jsonify({
        'success': True,
        'sessions': get_session_manager().list_sessions()
    })


@revision_blueprint.route('/sessions/<session_id>', methods=['GET'])
@handle_revision_errors
def get_session(session_id: str):
    session = get_session_manager().get_session(session_id)
    with session.lock:
        return jsonify({
            'success': True,
            'session': session.to_dict(include_document=True)
        })


@revision_blueprint.route('/sessions/<session_id>', methods=['DELETE'])
@handle_revision_errors
def close_session(session_id: str):
    if not get_session_manager().close_session(session_id):
        raise SessionNotFoundError(session_id)
    return jsonify({'success': True, 'session_id': session_id})


@revision_blueprint.route('/sessions/<session_id>/changes', methods=['GET'])
@handle_revision_errors
def get_changes(session_id: str):
    with get_session_manager().session(session_id) as tracker:
        return jsonify({'success': True, **_tracker_state(tracker)})


@revision_blueprint.route('/sessions/<session_id>/edits', methods=['POST'])
@handle_revision_errors
def apply_edits(session_id: str):
    """
    Apply edit operations in order.

    Request body:
        { edits: [{start, end, text, source?}], author?: ... }
        or a single {start, end, text, source?}
    """
    data = _json_body()
    ops = _edit_ops(data)
    author = _author_field(data)
    with get_session_manager().session(session_id) as tracker:
        tracker.apply_edits(ops, author)
        return jsonify({'success': True, **_tracker_state(tracker)})


@revision_blueprint.route('/sessions/<session_id>/accept', methods=['POST'])
@handle_revision_errors
def accept_changes(session_id: str):
    """
    Accept one change ({change_id}) or every pending change ({} or {all: true}).
    """
    data = _json_body(allow_empty=True)
    change_id = data.get('change_id')
    with get_session_manager().session(session_id) as tracker:
        patch = tracker.accept(change_id) if change_id else tracker.accept_all()
        return jsonify({'success': True, 'patch': patch.to_dict(), **_tracker_state(tracker)})


@revision_blueprint.route('/sessions/<session_id>/reject', methods=['POST'])
@handle_revision_errors
def reject_changes(session_id: str):
    """
    Reject one change ({change_id}) or every pending change ({} or {all: true}).
    """
    data = _json_body(allow_empty=True)
    change_id = data.get('change_id')
    with get_session_manager().session(session_id) as tracker:
        patch = tracker.reject(change_id) if change_id else tracker.reject_all()
        return jsonify({'success': True, 'patch': patch.to_dict(), **_tracker_state(tracker)})


@revision_blueprint.route('/sessions/<session_id>/undo', methods=['POST'])
@handle_revision_errors
def external_undo(session_id: str):
    """
    The host undid history: drop pending changes, optionally resyncing the text.

    Request body:
        { document?: str }
    """
    data = _json_body(allow_empty=True)
    document = _text_field(data, 'document') if 'document' in data else None
    with get_session_manager().session(session_id) as tracker:
        tracker.notify_external_undo(document)
        return jsonify({'success': True, **_tracker_state(tracker)})


@revision_blueprint.route('/sessions/<session_id>/tracking', methods=['POST'])
@handle_revision_errors
def set_tracking(session_id: str):
    """Turn recording on or off: { enabled: bool }."""
    data = _json_body()
    if not isinstance(data.get('enabled'), bool):
        raise ValidationError("'enabled' must be a boolean", field='enabled')
    with get_session_manager().session(session_id) as tracker:
        tracker.set_enabled(data['enabled'])
        return jsonify({'success': True, 'enabled': tracker.enabled})


@revision_blueprint.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        'success': True,
        'module': 'revision_engine',
        'version': __version__,
        'status': 'healthy',
        'sessions': len(get_session_manager())
    })
