import time, pathlib
from flask import Blueprint, Response, jsonify, current_app

from .. import metrics
from ..logging_utils import get_suppressed_snapshot

system_bp = Blueprint('system', __name__)

_START_TIME = time.time()

def _get_commit_short() -> str:
    # Try to read git commit if repository available
    try:
        root = pathlib.Path(__file__).resolve().parent.parent.parent
        git_dir = root / '.git'
        head_file = git_dir / 'HEAD'
        if not head_file.exists():
            return 'unknown'
        head_content = head_file.read_text().strip()
        if head_content.startswith('ref:'):
            ref_path = git_dir / head_content.split(' ', 1)[1]
            if ref_path.exists():
                return ref_path.read_text().strip()[:7] or 'unknown'
            return 'unknown'
        return head_content[:7]
    except OSError:
        return 'unknown'

_COMMIT = _get_commit_short()

@system_bp.route('/health', methods=['GET'])
def health():
    # lightweight status; catalog is already loaded by create_app
    engine = current_app.extensions['stackaudit.engine']
    uptime = time.time() - _START_TIME
    return jsonify({
        'status': 'ok',
        'uptime_seconds': round(uptime, 2),
        'signatures': len(engine.catalog),
        'analyzer_enabled': engine.settings.ai_enabled,
        'suppressed_errors': get_suppressed_snapshot(),
    })

@system_bp.route('/version', methods=['GET'])
def version():
    engine = current_app.extensions['stackaudit.engine']
    uptime = time.time() - _START_TIME
    return jsonify({
        'version': engine.settings.version,
        'git_commit': _COMMIT,
        'uptime_seconds': round(uptime, 2),
        'catalog': {p: v['version'] for p, v in engine.catalog.summary()['platforms'].items()},
        'features': {
            'analyzer': engine.settings.ai_enabled,
            'analyzer_model': engine.settings.ai_model,
        }
    })

@system_bp.route('/metrics/prometheus', methods=['GET'])
def metrics_prometheus():
    return Response(metrics.get_metrics(), mimetype=metrics.get_content_type())
