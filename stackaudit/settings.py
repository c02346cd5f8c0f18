"""Environment driven configuration.

All knobs are read from ``STACKAUDIT_*`` variables (plus ``ANTHROPIC_API_KEY``).
Bad numeric values fall back to the default with a warning rather than
preventing startup.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

log = logging.getLogger('stackaudit.settings')

DEFAULT_AI_ENDPOINT = 'https://api.anthropic.com/v1/messages'
DEFAULT_AI_MODEL = 'claude-3-haiku-20240307'


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning('invalid integer for %s=%r, using default %d', name, raw, default)
        return default
    if value < minimum:
        log.warning('%s=%d below minimum %d, using default %d', name, value, minimum, default)
        return default
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning('invalid number for %s=%r, using default %s', name, raw, default)
        return default
    if value <= 0:
        log.warning('%s=%s must be positive, using default %s', name, raw, default)
        return default
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class Settings:
    ai_enabled: bool = True
    ai_timeout_s: float = 30.0
    ai_model: str = DEFAULT_AI_MODEL
    ai_endpoint: str = DEFAULT_AI_ENDPOINT
    ai_max_tokens: int = 4000
    ai_html_prefix: int = 8000
    api_key: Optional[str] = None
    bulk_concurrency: int = 4
    bulk_max_documents: int = 25
    max_document_bytes: int = 5 * 1024 * 1024
    catalog_dir: Optional[str] = None
    rate_limit: str = '60 per minute'
    bulk_rate_limit: str = '20 per minute'
    version: str = '0.1.0'

    def with_overrides(self, **changes) -> 'Settings':
        return replace(self, **changes)


def load_settings() -> Settings:
    """Build a Settings snapshot from the current environment."""
    return Settings(
        ai_enabled=_bool_env('STACKAUDIT_AI_ENABLED', True),
        ai_timeout_s=_float_env('STACKAUDIT_AI_TIMEOUT_S', 30.0),
        ai_model=os.environ.get('STACKAUDIT_AI_MODEL') or DEFAULT_AI_MODEL,
        ai_endpoint=os.environ.get('STACKAUDIT_AI_ENDPOINT') or DEFAULT_AI_ENDPOINT,
        ai_max_tokens=_int_env('STACKAUDIT_AI_MAX_TOKENS', 4000, minimum=1),
        ai_html_prefix=_int_env('STACKAUDIT_AI_HTML_PREFIX', 8000, minimum=0),
        api_key=os.environ.get('ANTHROPIC_API_KEY') or None,
        bulk_concurrency=_int_env('STACKAUDIT_BULK_CONCURRENCY', 4, minimum=1),
        bulk_max_documents=_int_env('STACKAUDIT_BULK_MAX_DOCUMENTS', 25, minimum=1),
        max_document_bytes=_int_env('STACKAUDIT_MAX_DOCUMENT_BYTES', 5 * 1024 * 1024, minimum=1),
        catalog_dir=os.environ.get('STACKAUDIT_CATALOG_DIR') or None,
        rate_limit=os.environ.get('STACKAUDIT_RATE_LIMIT', '60 per minute'),
        bulk_rate_limit=os.environ.get('STACKAUDIT_BULK_RATE_LIMIT', '20 per minute'),
        version=os.environ.get('STACKAUDIT_VERSION', '0.1.0'),
    )
