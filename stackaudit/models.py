"""Core data types for extension detection.

Signatures are static catalog entries; Findings are created per analysis run
and never outlive the report that carries them. AnalysisReport is what the
engine hands back to the API layer (serialized as the audit's plugin block).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class Category(str, Enum):
    SECURITY = 'security'
    PERFORMANCE = 'performance'
    SEO = 'seo'
    ECOMMERCE = 'ecommerce'
    ANALYTICS = 'analytics'
    SOCIAL = 'social'
    BACKUP = 'backup'
    FORMS = 'forms'
    PAGE_BUILDER = 'page-builder'
    CONTENT = 'content'
    PAYMENT = 'payment'
    MARKETING = 'marketing'
    INTEGRATION = 'integration'
    UTILITY = 'utility'
    CDN = 'cdn'
    FRAMEWORK = 'framework'
    HOSTING = 'hosting'
    THEME = 'theme'
    OTHER = 'other'


class Confidence(str, Enum):
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'

    @property
    def rank(self) -> int:
        """Sort rank: high first."""
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.HIGH: 0, Confidence.MEDIUM: 1, Confidence.LOW: 2}


def report_order(finding: 'Finding') -> Tuple[int, str, str]:
    """Sort key for every rendered finding list: confidence, then name."""
    return (finding.confidence.rank, finding.name.casefold(), finding.name)


class RiskLevel(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class PerformanceImpact(str, Enum):
    MINIMAL = 'minimal'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class Platform(str, Enum):
    WORDPRESS = 'wordpress'
    DRUPAL = 'drupal'
    JOOMLA = 'joomla'
    SHOPIFY = 'shopify'
    MAGENTO = 'magento'
    PRESTASHOP = 'prestashop'
    WIX = 'wix'
    SQUARESPACE = 'squarespace'
    WEBFLOW = 'webflow'
    CUSTOM = 'custom'
    UNKNOWN = 'unknown'


# Catalog-only pseudo platform: signatures that apply to every site.
UNIVERSAL = 'universal'


class Method(str, Enum):
    PATTERN_ONLY = 'pattern-only'
    PATTERN_WITH_AI = 'pattern-with-ai'
    AI_ONLY = 'ai-only'
    FALLBACK = 'fallback'


class Source(str, Enum):
    PATTERN = 'pattern'
    AI = 'ai'


# Pattern groups in descending specificity; the matcher walks them in this order.
PATTERN_GROUPS: Tuple[str, ...] = ('paths', 'headers', 'html', 'css', 'js')


@dataclass(frozen=True)
class Signature:
    name: str
    platform: str
    category: Category
    patterns: Mapping[str, Tuple[str, ...]]
    confidence_tier: Confidence
    risk_level: RiskLevel
    performance_impact: PerformanceImpact
    description: str = ''
    subcategory: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.platform, self.name)

    def group(self, name: str) -> Tuple[str, ...]:
        return self.patterns.get(name, ())


@dataclass
class Finding:
    name: str
    platform: str
    category: Category
    confidence: Confidence
    risk_level: RiskLevel
    performance_impact: PerformanceImpact
    source: Source
    evidence: List[str] = field(default_factory=list)
    subcategory: Optional[str] = None
    version: Optional[str] = None
    description: str = ''
    recommendations: List[str] = field(default_factory=list)
    enriched: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'platform': self.platform,
            'category': self.category.value,
            'subcategory': self.subcategory,
            'confidence': self.confidence.value,
            'riskLevel': self.risk_level.value,
            'performanceImpact': self.performance_impact.value,
            'evidence': list(self.evidence),
            'source': self.source.value,
            'version': self.version,
            'description': self.description,
            'recommendations': list(self.recommendations),
            'enriched': self.enriched,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Finding':
        return cls(
            name=data['name'],
            platform=data['platform'],
            category=Category(data['category']),
            subcategory=data.get('subcategory'),
            confidence=Confidence(data['confidence']),
            risk_level=RiskLevel(data['riskLevel']),
            performance_impact=PerformanceImpact(data['performanceImpact']),
            evidence=list(data.get('evidence') or []),
            source=Source(data['source']),
            version=data.get('version'),
            description=data.get('description') or '',
            recommendations=list(data.get('recommendations') or []),
            enriched=bool(data.get('enriched', False)),
        )


@dataclass
class Escalation:
    invoke_ai: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {'invoked': self.invoke_ai, 'reason': self.reason}


@dataclass
class Timings:
    pattern_ms: int = 0
    ai_ms: int = 0
    total_ms: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {'patternMs': self.pattern_ms, 'aiMs': self.ai_ms, 'totalMs': self.total_ms}


@dataclass
class AnalysisReport:
    platform: Platform
    findings_by_category: Dict[str, List[Finding]]
    security_risks: List[Finding]
    performance_heavy: List[Finding]
    recommendations: List[str]
    method: Method
    metrics: Timings
    confidence: Confidence = Confidence.LOW
    url: str = ''
    pattern_match_count: int = 0
    ai_enhanced_count: int = 0
    escalation: Optional[Escalation] = None
    analyzer_error: Optional[str] = None
    missing_essentials: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def findings(self) -> List[Finding]:
        """Flattened findings in report order."""
        out: List[Finding] = []
        for items in self.findings_by_category.values():
            out.extend(items)
        return sorted(out, key=report_order)

    @property
    def total_found(self) -> int:
        return sum(len(items) for items in self.findings_by_category.values())

    def to_dict(self) -> Dict[str, Any]:
        flat = self.findings
        # views are serialized by position so from_dict can re-link them
        index = {id(f): i for i, f in enumerate(flat)}
        return {
            'platform': self.platform.value,
            'url': self.url,
            'totalFound': self.total_found,
            'findings': [f.to_dict() for f in flat],
            'findingsByCategory': {
                cat: [f.to_dict() for f in items] for cat, items in self.findings_by_category.items()
            },
            'securityRisks': [f.to_dict() for f in self.security_risks],
            'performanceHeavy': [f.to_dict() for f in self.performance_heavy],
            'securityRiskIndex': [index[id(f)] for f in self.security_risks],
            'performanceHeavyIndex': [index[id(f)] for f in self.performance_heavy],
            'recommendations': list(self.recommendations),
            'missingEssentials': [dict(m) for m in self.missing_essentials],
            'method': self.method.value,
            'confidence': self.confidence.value,
            'patternMatchCount': self.pattern_match_count,
            'aiEnhancedCount': self.ai_enhanced_count,
            'escalation': self.escalation.to_dict() if self.escalation else None,
            'analyzerError': self.analyzer_error,
            'metrics': self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisReport':
        grouped = data.get('findingsByCategory') or {}
        if 'findings' in data:
            flat = [Finding.from_dict(item) for item in data['findings']]
        else:
            flat = sorted((Finding.from_dict(item) for items in grouped.values() for item in items),
                          key=report_order)
        # buckets are re-derived from the flat list so both share Finding objects
        by_category: Dict[str, List[Finding]] = {cat: [] for cat in grouped}
        for finding in flat:
            by_category.setdefault(finding.category.value, []).append(finding)
        security = [flat[i] for i in data.get('securityRiskIndex') or []]
        heavy = [flat[i] for i in data.get('performanceHeavyIndex') or []]
        esc = data.get('escalation')
        metrics = data.get('metrics') or {}
        return cls(
            platform=Platform(data['platform']),
            url=data.get('url') or '',
            findings_by_category=by_category,
            security_risks=security,
            performance_heavy=heavy,
            recommendations=list(data.get('recommendations') or []),
            missing_essentials=[dict(m) for m in data.get('missingEssentials') or []],
            method=Method(data['method']),
            confidence=Confidence(data.get('confidence') or 'low'),
            pattern_match_count=int(data.get('patternMatchCount') or 0),
            ai_enhanced_count=int(data.get('aiEnhancedCount') or 0),
            escalation=Escalation(bool(esc['invoked']), esc.get('reason') or '') if esc else None,
            analyzer_error=data.get('analyzerError'),
            metrics=Timings(
                pattern_ms=int(metrics.get('patternMs') or 0),
                ai_ms=int(metrics.get('aiMs') or 0),
                total_ms=int(metrics.get('totalMs') or 0),
            ),
        )
