import json

from stackaudit.merge import merge_findings
from stackaudit.models import (
    AnalysisReport,
    Category,
    Confidence,
    Escalation,
    Finding,
    Method,
    PerformanceImpact,
    Platform,
    RiskLevel,
    Source,
    Timings,
)
from stackaudit.report import (
    RECOMMENDATION_RULES,
    build_report,
    categorize,
    generate_detection_summary,
    generate_recommendations,
    overall_confidence,
)


def _f(name, category, confidence=Confidence.HIGH, risk=RiskLevel.LOW, impact=PerformanceImpact.LOW, **kw):
    return Finding(name=name, platform='wordpress', category=category, confidence=confidence,
                   risk_level=risk, performance_impact=impact, source=kw.pop('source', Source.PATTERN), **kw)


def _sample():
    return merge_findings([
        _f('Yoast SEO', Category.SEO),
        _f('Elementor', Category.PAGE_BUILDER, impact=PerformanceImpact.HIGH),
        _f('Divi Builder', Category.PAGE_BUILDER, Confidence.MEDIUM, impact=PerformanceImpact.MEDIUM),
        _f('File Manager', Category.UTILITY, risk=RiskLevel.CRITICAL),
        _f('Revolution Slider', Category.CONTENT, Confidence.LOW, risk=RiskLevel.HIGH, impact=PerformanceImpact.HIGH),
        _f('Query Monitor', Category.UTILITY, risk=RiskLevel.MEDIUM),
    ])


def _report(findings=None, method=Method.PATTERN_ONLY, escalation=None):
    findings = _sample() if findings is None else findings
    return build_report(Platform.WORDPRESS, findings, method, Timings(3, 0, 5), url='https://wp.example',
                        escalation=escalation or Escalation(False, 'enough'), pattern_match_count=len(findings))


def test_categorize_keeps_report_order_within_category():
    grouped = categorize(_sample())
    assert list(grouped['page-builder'][i].name for i in range(2)) == ['Elementor', 'Divi Builder']
    assert sum(len(v) for v in grouped.values()) == 6


def test_views_are_subsets_of_the_same_objects():
    report = _report()
    assert {f.name for f in report.security_risks} == {'File Manager', 'Revolution Slider'}
    assert {f.name for f in report.performance_heavy} == {'Elementor', 'Divi Builder', 'Revolution Slider'}
    flat_ids = {id(f) for f in report.findings}
    assert all(id(f) in flat_ids for f in report.security_risks + report.performance_heavy)


def test_total_found_equals_flattened_count():
    report = _report()
    assert report.total_found == 6 == len(report.findings)
    assert report.to_dict()['totalFound'] == sum(len(v) for v in report.findings_by_category.values())


def test_recommendation_rule_table_and_conflicts():
    recs = generate_recommendations(_sample(), Platform.CUSTOM)
    absent = {Category.SECURITY, Category.PERFORMANCE, Category.BACKUP, Category.FORMS}
    for category, text in RECOMMENDATION_RULES:
        assert (text in recs) == (category in absent)
    assert any(r.startswith('Multiple page builders detected (Elementor, Divi Builder)') for r in recs)
    assert any(r.startswith('File Manager is flagged as critical risk') for r in recs)
    assert len(recs) == len(set(recs))


def test_no_findings_gets_every_canned_suggestion():
    recs = generate_recommendations([], Platform.UNKNOWN)
    assert recs == [text for _, text in RECOMMENDATION_RULES]


def test_finding_recommendations_are_carried():
    findings = [_f('Jetpack', Category.UTILITY, recommendations=['Disable unused modules'])]
    assert 'Jetpack: Disable unused modules' in generate_recommendations(findings, Platform.CUSTOM)


def test_wordpress_report_carries_missing_essentials():
    report = _report()
    missing = {m['category'] for m in report.missing_essentials}
    assert missing == {'Caching Plugin', 'Security Plugin', 'Backup Plugin'}
    caching = [m for m in report.missing_essentials if m['category'] == 'Caching Plugin'][0]
    assert caching['severity'] == 'high'


def test_overall_confidence_bands():
    high = [_f(f'p{i}', Category.UTILITY) for i in range(6)]
    medium_only = [_f(f'm{i}', Category.UTILITY, Confidence.MEDIUM) for i in range(6)]
    assert overall_confidence(Method.PATTERN_WITH_AI, [], True) == Confidence.HIGH
    assert overall_confidence(Method.AI_ONLY, [], True) == Confidence.HIGH
    assert overall_confidence(Method.FALLBACK, high, True) == Confidence.LOW
    assert overall_confidence(Method.PATTERN_ONLY, high, False) == Confidence.HIGH
    assert overall_confidence(Method.PATTERN_ONLY, high[:3], False) == Confidence.MEDIUM
    assert overall_confidence(Method.PATTERN_ONLY, high[:2], False) == Confidence.LOW
    # declined escalation counts only high-confidence findings
    assert overall_confidence(Method.PATTERN_ONLY, medium_only, False) == Confidence.LOW
    # a failed analyzer call bands on the raw count
    assert overall_confidence(Method.PATTERN_ONLY, medium_only, True) == Confidence.HIGH
    assert overall_confidence(Method.PATTERN_ONLY, [], True) == Confidence.LOW


def test_round_trip_preserves_counts_membership_and_order():
    report = _report(escalation=Escalation(True, 'weak signal'))
    report.analyzer_error = 'ANALYZER_TIMEOUT'
    data = json.loads(json.dumps(report.to_dict()))
    restored = AnalysisReport.from_dict(data)
    assert restored.total_found == report.total_found
    assert [f.name for f in restored.findings] == [f.name for f in report.findings]
    assert {k: [f.name for f in v] for k, v in restored.findings_by_category.items()} == \
        {k: [f.name for f in v] for k, v in report.findings_by_category.items()}
    assert [f.name for f in restored.security_risks] == [f.name for f in report.security_risks]
    flat_ids = {id(f) for f in restored.findings}
    assert all(id(f) in flat_ids for f in restored.security_risks + restored.performance_heavy)
    assert restored.escalation == report.escalation
    assert restored.metrics == report.metrics
    assert restored.missing_essentials == report.missing_essentials
    assert restored.to_dict() == report.to_dict()


def test_flat_findings_are_sorted():
    names = [f.name for f in _report().findings]
    assert names == ['Elementor', 'File Manager', 'Query Monitor', 'Yoast SEO', 'Divi Builder', 'Revolution Slider']


def test_detection_summary():
    report = _report(escalation=Escalation(False, '6 high-confidence findings are sufficient'))
    summary = generate_detection_summary(report)
    assert 'Method: pattern-only' in summary
    assert 'Total Found: 6' in summary
    assert 'Time: 5ms (pattern: 3ms, ai: 0ms)' in summary
    assert 'page-builder(2)' in summary
    assert 'Escalation: declined (6 high-confidence findings are sufficient)' in summary
