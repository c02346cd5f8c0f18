"""Categorizer, scorer and recommendation generator.

Everything here is a pure function of an already merged, sorted finding
list; the engine only supplies run metadata (method, timings, escalation).
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from .models import (
    AnalysisReport,
    Category,
    Confidence,
    Escalation,
    Finding,
    Method,
    PerformanceImpact,
    Platform,
    RiskLevel,
    Timings,
)
from .specialists import specialist_advice

SECURITY_RISK_LEVELS = frozenset({RiskLevel.HIGH, RiskLevel.CRITICAL})
PERFORMANCE_HEAVY_IMPACTS = frozenset({PerformanceImpact.MEDIUM, PerformanceImpact.HIGH})

# category absent -> canned suggestion
RECOMMENDATION_RULES: Tuple[Tuple[Category, str], ...] = (
    (Category.SEO, 'No SEO extension detected - add one to manage meta tags and sitemaps'),
    (Category.SECURITY, 'No security extension detected - add a firewall or hardening extension'),
    (Category.PERFORMANCE, 'No caching or optimization extension detected - add one to improve load times'),
    (Category.BACKUP, 'No backup solution detected - schedule regular off-site backups'),
    (Category.FORMS, 'No form extension detected - add one for contact and lead capture forms'),
)


def categorize(findings: Sequence[Finding]) -> Dict[str, List[Finding]]:
    """Group by category value; categories appear in first-seen order."""
    grouped: Dict[str, List[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.category.value, []).append(finding)
    return grouped


def security_risks(findings: Sequence[Finding]) -> List[Finding]:
    return [f for f in findings if f.risk_level in SECURITY_RISK_LEVELS]


def performance_heavy(findings: Sequence[Finding]) -> List[Finding]:
    return [f for f in findings if f.performance_impact in PERFORMANCE_HEAVY_IMPACTS]


def generate_recommendations(findings: Sequence[Finding], platform: Platform = Platform.UNKNOWN) -> List[str]:
    present = {f.category for f in findings}
    recommendations = [text for category, text in RECOMMENDATION_RULES if category not in present]

    builders = [f for f in findings if f.category == Category.PAGE_BUILDER]
    if len(builders) > 1:
        names = ', '.join(f.name for f in builders)
        recommendations.append(f'Multiple page builders detected ({names}) - consider using only one '
                               'for better performance')
    for finding in security_risks(findings):
        recommendations.append(f'{finding.name} is flagged as {finding.risk_level.value} risk - '
                               'review whether it is needed and keep it updated')
    for finding in findings:
        for text in finding.recommendations:
            recommendations.append(f'{finding.name}: {text}')

    extra, _ = specialist_advice(platform, findings)
    recommendations.extend(extra)
    return list(dict.fromkeys(recommendations))


def overall_confidence(method: Method, findings: Sequence[Finding], escalated: bool) -> Confidence:
    """Confidence band for the whole report.

    A successful analyzer pass is trusted outright; a pattern-only report is
    banded on high-confidence hits when escalation was declined and on the
    raw count when the analyzer was wanted but did not deliver.
    """
    if method == Method.FALLBACK:
        return Confidence.LOW
    if method in (Method.PATTERN_WITH_AI, Method.AI_ONLY):
        return Confidence.HIGH
    if escalated:
        count = len(findings)
    else:
        count = sum(1 for f in findings if f.confidence == Confidence.HIGH)
    if count > 5:
        return Confidence.HIGH
    if count > 2:
        return Confidence.MEDIUM
    return Confidence.LOW


def build_report(
    platform: Platform,
    findings: Sequence[Finding],
    method: Method,
    timings: Timings,
    *,
    url: str = '',
    escalation: Optional[Escalation] = None,
    pattern_match_count: int = 0,
    ai_enhanced_count: int = 0,
    analyzer_error: Optional[str] = None,
) -> AnalysisReport:
    """Assemble the report from a merged finding list (already in report order)."""
    findings = list(findings)
    _, missing = specialist_advice(platform, findings)
    escalated = bool(escalation and escalation.invoke_ai)
    return AnalysisReport(
        platform=platform,
        url=url,
        findings_by_category=categorize(findings),
        security_risks=security_risks(findings),
        performance_heavy=performance_heavy(findings),
        recommendations=generate_recommendations(findings, platform),
        missing_essentials=missing,
        method=method,
        confidence=overall_confidence(method, findings, escalated),
        metrics=timings,
        pattern_match_count=pattern_match_count,
        ai_enhanced_count=ai_enhanced_count,
        escalation=escalation,
        analyzer_error=analyzer_error,
    )


def generate_detection_summary(report: AnalysisReport) -> str:
    """Multi-line, human readable run summary for the logs."""
    breakdown = ', '.join(f'{cat}({len(items)})' for cat, items in report.findings_by_category.items())
    lines = [
        f'Platform: {report.platform.value}',
        f'Method: {report.method.value}',
        f'Total Found: {report.total_found}',
        f'Pattern Matches: {report.pattern_match_count}',
        f'AI Enhanced: {report.ai_enhanced_count}',
        f'Confidence: {report.confidence.value}',
        f'Time: {report.metrics.total_ms}ms (pattern: {report.metrics.pattern_ms}ms, ai: {report.metrics.ai_ms}ms)',
        f'Categories: {breakdown or "none"}',
    ]
    if report.escalation is not None:
        lines.append(f'Escalation: {"invoked" if report.escalation.invoke_ai else "declined"} '
                     f'({report.escalation.reason})')
    if report.analyzer_error:
        lines.append(f'Analyzer Error: {report.analyzer_error}')
    return '\n'.join(lines)
