"""Throttled logging for failures an analysis recovers from.

An analyzer outage or a broken pattern stage degrades every report until it
is fixed, so the same line would otherwise be written once per request.
Each failure site gets a sample of full log lines, then one line per
cooldown window carrying the number of writes swallowed in between.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .exceptions import AnalyzerError

_SiteKey = Tuple[str, str, int]


@dataclass
class _SiteState:
    count: int = 0
    last_emit: float = 0.0
    last_error: str = ''


_LOCK = threading.Lock()
_SITES: Dict[_SiteKey, _SiteState] = {}


def _error_label(exc: BaseException) -> str:
    return getattr(exc, 'error_code', None) or type(exc).__name__


def _format_fields(fields: Dict[str, Any]) -> str:
    return ''.join(f' {name}={value}' for name, value in fields.items() if value not in (None, ''))


def log_suppressed(
    logger: logging.Logger,
    exc: BaseException,
    context: str,
    *,
    level: int = logging.WARNING,
    sample: int = 5,
    cooldown: float = 120.0,
    **fields: Any,
) -> int:
    """Emit a throttled log entry for a degraded-but-recovered failure.

    Parameters
    ----------
    logger: logging.Logger
        Target logger to write into.
    exc: BaseException
        The failure; its ``error_code`` (or type name) is kept per site.
    context: str
        Failure site; counts aggregate per (logger, context, level).
    level: int
        Logging level; defaults to ``WARNING``.
    sample: int
        Emit the first ``sample`` occurrences before throttling kicks in.
    cooldown: float
        Minimum seconds between emissions once the sample budget is spent.
    **fields:
        Request context appended as ``key=value`` pairs (platform, url...).
        Empty values are left out.

    Returns
    -------
    int
        Times this site has requested logging, suppressed writes included.
    """
    now = time.time()
    key: _SiteKey = (logger.name, context, level)
    with _LOCK:
        state = _SITES.setdefault(key, _SiteState())
        state.count += 1
        state.last_error = _error_label(exc)
        count = state.count
        emit = count <= sample or (now - state.last_emit) >= cooldown
        if emit:
            state.last_emit = now
    if emit:
        logger.log(level, '%s err=%s%s (suppressed=%d)', context, exc, _format_fields(fields), max(0, count - 1))
    return count


def log_analyzer_failure(logger: logging.Logger, error: AnalyzerError, *, platform: str, url: str = '') -> int:
    """Throttled line for a failed analyzer call, one site per failure kind.

    Quota failures (missing or rejected credentials, rate limiting) need an
    operator and are logged at ERROR; timeouts and bad replies at WARNING.
    """
    kind = getattr(error, 'kind', 'error')
    level = logging.ERROR if kind == 'quota' else logging.WARNING
    return log_suppressed(logger, error, f'analyzer {kind}', level=level,
                          platform=platform, url=url, code=_error_label(error))


def get_suppressed_snapshot() -> Dict[str, Dict[str, Any]]:
    """Per-site counters for /health, keyed ``logger:context:LEVEL``."""
    with _LOCK:
        return {
            f'{logger_name}:{context}:{logging.getLevelName(level)}': {
                'count': state.count,
                'last_emit': state.last_emit,
                'last_error': state.last_error,
            }
            for (logger_name, context, level), state in _SITES.items()
        }


def reset_suppressed_state() -> None:
    """Clear suppression counters. Useful for unit tests."""
    with _LOCK:
        _SITES.clear()
