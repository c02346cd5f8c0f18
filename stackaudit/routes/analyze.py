from flask import Blueprint, request, jsonify, current_app
import logging, time
from typing import Any, Dict, List, Tuple

from ..escalation import document_size
from ..exceptions import DocumentTooLargeError, ValidationError

bp = Blueprint('analyze', __name__)

log = logging.getLogger('stackaudit.api')


def _engine():
    return current_app.extensions['stackaudit.engine']


def _normalize_headers(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError('headers field must be an object', details={'field': 'headers'})
    headers: Dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            value = ', '.join(value)
        if not isinstance(value, str):
            raise ValidationError('header values must be strings', details={'field': 'headers', 'header': key})
        headers[str(key).strip().lower()] = value
    return headers


def validate_document(data: Any, max_bytes: int) -> Tuple[str, Dict[str, str], str]:
    """Return ``(html, headers, url)`` or raise ValidationError."""
    if not isinstance(data, dict):
        raise ValidationError('document must be a JSON object')
    html = data.get('html')
    if not isinstance(html, str):
        raise ValidationError('missing html field', details={'field': 'html'})
    url = data.get('url') or ''
    if not isinstance(url, str):
        raise ValidationError('url field must be a string', details={'field': 'url'})
    size = document_size(html)
    if size > max_bytes:
        raise DocumentTooLargeError(size, max_bytes)
    return html, _normalize_headers(data.get('headers')), url


@bp.route('/analyze', methods=['POST'])
def analyze_rate_wrapper():
    limiter = current_app.extensions.get('limiter')
    if limiter:
        @limiter.limit(_engine().settings.rate_limit)
        def inner():
            return analyze_impl()
        return inner()
    return analyze_impl()


def analyze_impl():
    engine = _engine()
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('invalid JSON body')
    html, headers, url = validate_document(data, engine.settings.max_document_bytes)
    start = time.time()
    report = engine.analyze(html, headers, url)
    log.debug('analyze url=%s elapsed=%.3fs', url, time.time() - start)
    return jsonify(report.to_dict())


@bp.route('/analyze/bulk', methods=['POST'])
def bulk_rate_wrapper():
    limiter = current_app.extensions.get('limiter')
    if limiter:
        @limiter.limit(_engine().settings.bulk_rate_limit)
        def inner():
            return analyze_bulk_impl()
        return inner()
    return analyze_bulk_impl()


def analyze_bulk_impl():
    """Body ``{"documents": [{html, headers, url}, ...]}``; results keep input order.

    A document that fails validation or analysis gets an error entry in its
    slot instead of failing the whole batch.
    """
    engine = _engine()
    data = request.get_json(silent=True) or {}
    documents = data.get('documents') if isinstance(data, dict) else None
    if not isinstance(documents, list):
        raise ValidationError('documents field must be a list', details={'field': 'documents'})
    if not documents:
        raise ValidationError('documents list empty', details={'field': 'documents'})
    limit = engine.settings.bulk_max_documents
    if len(documents) > limit:
        raise ValidationError(f'too many documents (max {limit})', details={'count': len(documents), 'limit': limit})

    results: List[Any] = [None] * len(documents)
    valid: List[Dict[str, Any]] = []
    valid_idx: List[int] = []
    for i, doc in enumerate(documents):
        try:
            html, headers, url = validate_document(doc, engine.settings.max_document_bytes)
        except ValidationError as e:
            url = doc.get('url') if isinstance(doc, dict) else None
            results[i] = {'url': url or '', 'error': e.message, 'error_code': e.error_code, 'status': 'error'}
            continue
        valid.append({'html': html, 'headers': headers, 'url': url})
        valid_idx.append(i)

    start = time.time()
    for i, out in zip(valid_idx, engine.analyze_bulk(valid)):
        results[i] = out
    errors = sum(1 for r in results if isinstance(r, dict) and r.get('status') == 'error')
    log.info('bulk analyze count=%d errors=%d elapsed=%.3fs', len(results), errors, time.time() - start)
    return jsonify({'count': len(results), 'errors': errors, 'results': results})


@bp.route('/catalog', methods=['GET'])
def catalog_summary():
    return jsonify(_engine().catalog.summary())
