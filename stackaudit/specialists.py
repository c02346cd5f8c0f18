"""Platform specialists.

Each recognized platform can add advice on top of the generic rule table in
``report``: gaps that only make sense for that ecosystem (a Shopify store
without a reviews app, Drupal's Devel module on a production site) and, for
WordPress, the "missing essentials" list with severities.

Specialists are plain functions ``(findings) -> (recommendations, missing)``
over the merged finding list; hosted builders have none.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence, Tuple

from .models import Category, Confidence, Finding, Platform

Advice = Tuple[List[str], List[Dict[str, Any]]]
Specialist = Callable[[Sequence[Finding]], Advice]

TOO_MANY_EXTENSIONS = 15
MIN_PAYMENT_INTEGRATIONS = 2

# (label, category, subcategory or None, severity, suggestion)
WORDPRESS_ESSENTIALS: Tuple[Tuple[str, Category, Any, str, str], ...] = (
    ('SEO Plugin', Category.SEO, None, 'medium',
     'Add an SEO plugin like Yoast SEO or Rank Math for better search engine visibility'),
    ('Caching Plugin', Category.PERFORMANCE, 'caching', 'high',
     'Install a caching plugin like WP Rocket or W3 Total Cache to improve performance'),
    ('Security Plugin', Category.SECURITY, None, 'medium',
     'Consider installing a security plugin like Wordfence or Sucuri for website protection'),
    ('Backup Plugin', Category.BACKUP, None, 'medium',
     'Install a backup plugin like UpdraftPlus to protect your website data'),
)


def _in_category(findings: Sequence[Finding], category: Category) -> List[Finding]:
    return [f for f in findings if f.category == category]


def _with_subcategory(findings: Sequence[Finding], subcategory: str) -> List[Finding]:
    return [f for f in findings if (f.subcategory or '').lower() == subcategory]


def _named(findings: Sequence[Finding], name: str) -> List[Finding]:
    needle = name.casefold()
    return [f for f in findings if f.name.casefold() == needle]


def check_missing_essentials(findings: Sequence[Finding]) -> List[Dict[str, Any]]:
    """WordPress essentials absent from the finding list, with a severity each."""
    missing = []
    for label, category, subcategory, severity, suggestion in WORDPRESS_ESSENTIALS:
        present = _in_category(findings, category)
        if subcategory:
            present = _with_subcategory(present, subcategory)
        if not present:
            missing.append({'category': label, 'missing': suggestion, 'severity': severity})
    return missing


def wordpress_advice(findings: Sequence[Finding]) -> Advice:
    recommendations = []
    caching = _with_subcategory(_in_category(findings, Category.PERFORMANCE), 'caching')
    if len(caching) > 1:
        names = ', '.join(f.name for f in caching)
        recommendations.append(f'Multiple caching plugins detected ({names}) - keep one to avoid conflicting caches')
    if len(findings) > TOO_MANY_EXTENSIONS:
        recommendations.append('Consider reviewing plugins for unnecessary ones - too many plugins can impact performance')
    return recommendations, check_missing_essentials(findings)


def drupal_advice(findings: Sequence[Finding]) -> Advice:
    recommendations = []
    devel = [f for f in _named(findings, 'Devel') if f.confidence == Confidence.HIGH]
    if devel:
        recommendations.append('CRITICAL: Devel module detected - it should be disabled on production sites')
    if not _named(findings, 'Advanced CSS/JS Aggregation'):
        recommendations.append('Install the Advanced CSS/JS Aggregation module to optimize asset delivery')
    return recommendations, []


def joomla_advice(findings: Sequence[Finding]) -> Advice:
    recommendations = []
    builders = _in_category(findings, Category.PAGE_BUILDER)
    if builders:
        recommendations.append(f'{builders[0].name} detected - page builders add markup weight, '
                               'enable its asset optimization options')
    if _in_category(findings, Category.SECURITY):
        if not _in_category(findings, Category.BACKUP):
            recommendations.append('Add Akeeba Backup for site backup protection')
        if not _with_subcategory(findings, 'firewall'):
            recommendations.append('Install Admin Tools or RSFirewall for security hardening')
    return recommendations, []


def shopify_advice(findings: Sequence[Finding]) -> Advice:
    recommendations = []
    if not _with_subcategory(findings, 'reviews'):
        recommendations.append('Add a review app like Judge.me or Loox to build social proof')
    if not _with_subcategory(findings, 'upsell'):
        recommendations.append('Install ReConvert or Bold Upsell to increase average order value')
    if len(findings) > TOO_MANY_EXTENSIONS:
        recommendations.append('You have many apps installed - consider consolidating to improve site speed')
    return recommendations, []


def _payment_gap(findings: Sequence[Finding], suggestion: str) -> List[str]:
    if len(_in_category(findings, Category.PAYMENT)) < MIN_PAYMENT_INTEGRATIONS:
        return [suggestion]
    return []


def magento_advice(findings: Sequence[Finding]) -> Advice:
    return _payment_gap(findings, 'Add multiple payment gateways (Stripe, PayPal, Braintree) for customer convenience'), []


def prestashop_advice(findings: Sequence[Finding]) -> Advice:
    recommendations = _payment_gap(findings, 'Add multiple payment options (Stripe, PayPal) for customers')
    if not _in_category(findings, Category.ANALYTICS):
        recommendations.append('Install an analytics module for visitor tracking')
    if not _in_category(findings, Category.SOCIAL):
        recommendations.append('Add social media sharing buttons to increase reach')
    return recommendations, []


SPECIALISTS: Dict[Platform, Specialist] = {
    Platform.WORDPRESS: wordpress_advice,
    Platform.DRUPAL: drupal_advice,
    Platform.JOOMLA: joomla_advice,
    Platform.SHOPIFY: shopify_advice,
    Platform.MAGENTO: magento_advice,
    Platform.PRESTASHOP: prestashop_advice,
}


def specialist_advice(platform: Platform, findings: Sequence[Finding]) -> Advice:
    """Platform-specific recommendations and missing essentials (empty when none apply)."""
    specialist = SPECIALISTS.get(platform)
    if specialist is None:
        return [], []
    return specialist(findings)
