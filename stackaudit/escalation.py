"""Escalation policy: should the AI analyzer run for this document?

Pure function of the pattern findings, the platform and the document size.
Rules are evaluated in order and the first match wins.
"""
from __future__ import annotations

from typing import Sequence

from .models import Confidence, Escalation, Finding, Platform

LARGE_DOCUMENT_BYTES = 500 * 1024
WORDPRESS_HIGH_CONFIDENCE_TARGET = 5
LARGE_DOCUMENT_HIGH_CONFIDENCE_TARGET = 3
SUFFICIENT_HIGH_CONFIDENCE = 5
SUFFICIENT_TOTAL = 3

# platforms with a shallow static catalog where the analyzer recovers long-tail extensions
_NON_WORDPRESS_RECOGNIZED = frozenset(
    p for p in Platform if p not in (Platform.WORDPRESS, Platform.CUSTOM, Platform.UNKNOWN)
)


def document_size(html: str) -> int:
    """UTF-8 size in bytes. Lone surrogates (legal in decoded JSON) count as 3 bytes."""
    return len(html.encode('utf-8', 'surrogatepass'))


def decide_escalation(findings: Sequence[Finding], platform: Platform, document_size_bytes: int) -> Escalation:
    total = len(findings)
    high = sum(1 for f in findings if f.confidence == Confidence.HIGH)

    if platform == Platform.WORDPRESS and high < WORDPRESS_HIGH_CONFIDENCE_TARGET:
        return Escalation(True, f'WordPress site with only {high} high-confidence findings '
                                f'(target {WORDPRESS_HIGH_CONFIDENCE_TARGET})')
    if platform == Platform.WORDPRESS and total == 0:
        return Escalation(True, 'WordPress site with no pattern findings')
    if platform in _NON_WORDPRESS_RECOGNIZED:
        return Escalation(True, f'non-WordPress platform ({platform.value}) with a limited signature catalog')
    if document_size_bytes > LARGE_DOCUMENT_BYTES and high < LARGE_DOCUMENT_HIGH_CONFIDENCE_TARGET:
        return Escalation(True, f'large document ({document_size_bytes} bytes) with only {high} '
                                f'high-confidence findings')
    if high >= SUFFICIENT_HIGH_CONFIDENCE:
        return Escalation(False, f'{high} high-confidence findings are sufficient')
    if total >= SUFFICIENT_TOTAL:
        return Escalation(False, f'{total} pattern findings are sufficient')
    return Escalation(True, f'weak pattern signal ({total} findings)')
