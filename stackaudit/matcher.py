"""Pattern matcher: one document against a subset of the signature catalog.

Pattern groups are tried per signature in fixed order and the first group
that is satisfied decides the finding's confidence:

    paths    1 hit in content or headers  -> high
    headers  1 hit in header lines        -> high
    html     min(2, n) distinct hits      -> medium
    css      1 hit                        -> medium
    js       1 hit, case-sensitive        -> low

Evidence lists every pattern of the winning group that hit. No I/O, no
shared state: identical input gives identical output.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import Confidence, Finding, Signature, Source

log = logging.getLogger('stackaudit.matcher')

VERSION_FROM_QUERY = re.compile(r'[?&](?:ver|v|version)=(\d[\w\.\-]*)', re.I)
_URL_END = re.compile(r'["\'\s<>)]')


def header_text(headers: Optional[Mapping[str, str]]) -> str:
    """Headers as lower-cased ``key: value`` lines, in mapping order."""
    if not headers:
        return ''
    lines = []
    for key, value in headers.items():
        lines.append(f'{str(key).strip().lower()}: {str(value).strip().lower()}')
    return '\n'.join(lines)


def _hits(patterns: Sequence[str], *haystacks: str, fold: bool = True) -> List[str]:
    found = []
    for pattern in patterns:
        needle = pattern.lower() if fold else pattern
        if any(needle in hay for hay in haystacks):
            found.append(pattern)
    return found


def _version_near(content: str, pattern: str) -> Optional[str]:
    """``?ver=`` style asset version on the URL that contains ``pattern``."""
    idx = content.find(pattern.lower())
    if idx < 0:
        return None
    window = content[idx: idx + 240]
    end = _URL_END.search(window, len(pattern))
    if end:
        window = window[:end.start()]
    m = VERSION_FROM_QUERY.search(window)
    return m.group(1) if m else None


def match_groups(sig: Signature, content: str, raw_html: str, htext: str) -> Optional[Tuple[str, Confidence, List[str]]]:
    """Return ``(group, confidence, evidence)`` for the first satisfied group."""
    paths = sig.group('paths')
    if paths:
        hits = _hits(paths, content, htext)
        if hits:
            return 'paths', Confidence.HIGH, hits
    headers = sig.group('headers')
    if headers:
        hits = _hits(headers, htext)
        if hits:
            return 'headers', Confidence.HIGH, hits
    html = sig.group('html')
    if html:
        hits = _hits(html, content)
        if len(hits) >= min(2, len(html)):
            return 'html', Confidence.MEDIUM, hits
    css = sig.group('css')
    if css:
        hits = _hits(css, content)
        if hits:
            return 'css', Confidence.MEDIUM, hits
    js = sig.group('js')
    if js:
        hits = _hits(js, raw_html, fold=False)
        if hits:
            return 'js', Confidence.LOW, hits
    return None


def finding_from_signature(sig: Signature, confidence: Confidence, evidence: List[str],
                           version: Optional[str] = None) -> Finding:
    return Finding(
        name=sig.name,
        platform=sig.platform,
        category=sig.category,
        subcategory=sig.subcategory,
        confidence=confidence,
        risk_level=sig.risk_level,
        performance_impact=sig.performance_impact,
        evidence=list(evidence),
        source=Source.PATTERN,
        version=version,
        description=sig.description,
    )


def match_signatures(html: Optional[str], headers: Optional[Mapping[str, str]],
                     signatures: Iterable[Signature]) -> List[Finding]:
    """Scan one document; findings come back in signature order."""
    raw_html = html or ''
    content = raw_html.lower()
    htext = header_text(headers)
    findings: List[Finding] = []
    for sig in signatures:
        result = match_groups(sig, content, raw_html, htext)
        if result is None:
            continue
        group, confidence, evidence = result
        version = None
        if group == 'paths':
            for pattern in evidence:
                version = _version_near(content, pattern)
                if version:
                    break
        findings.append(finding_from_signature(sig, confidence, evidence, version))
    log.debug('pattern scan complete signatures_matched=%d', len(findings))
    return findings
