"""Result merger: fuzzy identity join of pattern and AI findings.

Two findings are the same extension when one name is a case-insensitive
substring of the other ("WP Rocket" vs "wp rocket cache"). This is an
approximate join: short names can swallow unrelated longer ones
("SEO" inside "SEOPress"), which is accepted for parity with how the
reports have always been deduplicated.
"""
from __future__ import annotations

import logging
from typing import List, Sequence

from .models import Category, Finding, Source, report_order

log = logging.getLogger('stackaudit.merge')

AI_ENHANCED_MARK = '(AI-enhanced)'
AI_DETECTED_MARK = '(AI-detected)'


def names_match(a: str, b: str) -> bool:
    """Fuzzy identity: either name contains the other, ignoring case."""
    x, y = (a or '').strip().casefold(), (b or '').strip().casefold()
    if not x or not y:
        return False
    return x in y or y in x


def _append_marker(description: str, marker: str) -> str:
    if marker in description:
        return description
    return f'{description} {marker}'.strip()


def fold_into(kept: Finding, duplicates: Sequence[Finding]) -> Finding:
    """Fold every duplicate of ``kept`` into it with one update.

    ``kept`` keeps its identity and name. Evidence and recommendations are
    unioned in order, the best confidence wins, and the first non-empty
    value fills each blank field.
    """
    if not duplicates:
        return kept
    evidence = list(kept.evidence)
    recommendations = list(kept.recommendations)
    confidence = kept.confidence
    category, version = kept.category, kept.version
    subcategory, description = kept.subcategory, kept.description
    from_ai = False
    for dup in duplicates:
        evidence.extend(e for e in dup.evidence if e not in evidence)
        recommendations.extend(r for r in dup.recommendations if r not in recommendations)
        if dup.confidence.rank < confidence.rank:
            confidence = dup.confidence
        if category == Category.OTHER and dup.category != Category.OTHER:
            category = dup.category
        version = version or dup.version
        subcategory = subcategory or dup.subcategory
        description = description or dup.description
        from_ai = from_ai or dup.source == Source.AI
    if from_ai:
        description = _append_marker(description, AI_ENHANCED_MARK)
    kept.evidence, kept.recommendations = evidence, recommendations
    kept.confidence, kept.category = confidence, category
    kept.version, kept.subcategory, kept.description = version, subcategory, description
    kept.enriched = True
    return kept


def sort_findings(findings: Sequence[Finding]) -> List[Finding]:
    """Report order: confidence (high first), then name."""
    return sorted(findings, key=report_order)


def _place(finding: Finding, kept: List[Finding], pending: List[List[Finding]]) -> bool:
    """Keep ``finding`` or queue it against the entry it duplicates; True when queued."""
    for idx, existing in enumerate(kept):
        if names_match(finding.name, existing.name):
            pending[idx].append(finding)
            return True
    kept.append(finding)
    pending.append([])
    return False


def _apply_folds(kept: Sequence[Finding], pending: Sequence[Sequence[Finding]]) -> None:
    for finding, duplicates in zip(kept, pending):
        if duplicates:
            fold_into(finding, duplicates)


def fold_duplicates(findings: Sequence[Finding]) -> List[Finding]:
    kept: List[Finding] = []
    pending: List[List[Finding]] = []
    for finding in findings:
        _place(finding, kept, pending)
    _apply_folds(kept, pending)
    return kept


def merge_findings(pattern_findings: Sequence[Finding], ai_findings: Sequence[Finding] = ()) -> List[Finding]:
    """Deduplicate pattern findings, fold AI findings in, return sorted.

    The result is pairwise non-duplicate under ``names_match``: names are
    never rewritten, and anything that matches a kept entry is folded into it.
    """
    kept: List[Finding] = []
    pending: List[List[Finding]] = []
    for finding in pattern_findings:
        _place(finding, kept, pending)
    pattern_total = len(kept)
    enriched = 0
    for finding in ai_findings:
        if _place(finding, kept, pending):
            enriched += 1
        else:
            finding.description = _append_marker(finding.description, AI_DETECTED_MARK)
    _apply_folds(kept, pending)
    if ai_findings:
        log.debug('merge pattern=%d ai=%d enriched=%d added=%d',
                  pattern_total, len(ai_findings), enriched, len(kept) - pattern_total)
    return sort_findings(kept)
