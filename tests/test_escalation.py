import pytest

from stackaudit.escalation import LARGE_DOCUMENT_BYTES, decide_escalation, document_size
from stackaudit.models import Category, Confidence, Finding, PerformanceImpact, Platform, RiskLevel, Source


def _findings(high=0, medium=0, low=0):
    out = []
    for confidence, count in ((Confidence.HIGH, high), (Confidence.MEDIUM, medium), (Confidence.LOW, low)):
        for i in range(count):
            out.append(Finding(
                name=f'{confidence.value}-ext-{i}', platform='x', category=Category.UTILITY,
                confidence=confidence, risk_level=RiskLevel.LOW,
                performance_impact=PerformanceImpact.LOW, source=Source.PATTERN,
            ))
    return out


def test_wordpress_with_few_high_confidence_escalates():
    decision = decide_escalation(_findings(high=4, medium=3), Platform.WORDPRESS, 1000)
    assert decision.invoke_ai is True
    assert 'WordPress' in decision.reason
    assert '4 high-confidence' in decision.reason


def test_wordpress_without_findings_escalates():
    assert decide_escalation([], Platform.WORDPRESS, 1000).invoke_ai is True


def test_wordpress_with_enough_high_confidence_declines():
    decision = decide_escalation(_findings(high=6), Platform.WORDPRESS, 1000)
    assert decision.invoke_ai is False
    assert '6 high-confidence findings are sufficient' == decision.reason


@pytest.mark.parametrize('platform', [
    Platform.DRUPAL, Platform.JOOMLA, Platform.SHOPIFY, Platform.MAGENTO,
    Platform.PRESTASHOP, Platform.WIX, Platform.SQUARESPACE, Platform.WEBFLOW,
])
def test_recognized_non_wordpress_platform_always_escalates(platform):
    decision = decide_escalation(_findings(high=10), platform, 1000)
    assert decision.invoke_ai is True
    assert 'non-WordPress platform' in decision.reason
    assert platform.value in decision.reason


def test_large_document_with_few_high_confidence_escalates():
    decision = decide_escalation(_findings(high=2, medium=5), Platform.CUSTOM, LARGE_DOCUMENT_BYTES + 1)
    assert decision.invoke_ai is True
    assert 'large document' in decision.reason
    # exactly at the threshold is not "large"
    assert decide_escalation(_findings(high=2, medium=5), Platform.CUSTOM, LARGE_DOCUMENT_BYTES).invoke_ai is False


def test_custom_site_with_many_high_confidence_declines():
    assert decide_escalation(_findings(high=5), Platform.CUSTOM, LARGE_DOCUMENT_BYTES * 2).invoke_ai is False


def test_total_findings_sufficient():
    decision = decide_escalation(_findings(medium=2, low=1), Platform.UNKNOWN, 1000)
    assert decision.invoke_ai is False
    assert decision.reason == '3 pattern findings are sufficient'


def test_weak_signal_escalates():
    decision = decide_escalation(_findings(high=1, low=1), Platform.CUSTOM, 1000)
    assert decision.invoke_ai is True
    assert 'weak pattern signal' in decision.reason
    assert decide_escalation([], Platform.UNKNOWN, 0).invoke_ai is True


def test_decision_is_pure():
    findings = _findings(high=3, medium=1)
    first = decide_escalation(findings, Platform.WORDPRESS, 2048)
    second = decide_escalation(findings, Platform.WORDPRESS, 2048)
    assert first == second
    assert len(findings) == 4


def test_document_size_counts_utf8_bytes():
    assert document_size('') == 0
    assert document_size('café') == 5
    # lone surrogates survive JSON decoding and count as three bytes each
    assert document_size('caf\ud800') == 6
