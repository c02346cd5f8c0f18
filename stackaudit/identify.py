"""Platform identification.

Ordered sniffing rules:
  1. explicit generator declaration (<meta name="generator">, X-Generator header)
  2. path / header fingerprints, tested platform by platform in a fixed order
     so WordPress markers win over the looser CMS markers further down
  3. 'custom' for a real document with no platform evidence, else 'unknown'

identify_platform never raises; any internal failure degrades to 'unknown'.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Mapping, Optional, Tuple

from .matcher import header_text
from .models import Platform

log = logging.getLogger('stackaudit.identify')

META_GENERATOR = re.compile(r'<meta[^>]+name=["\']generator["\'][^>]+content=["\']([^"\']+)["\']', re.I)
META_GENERATOR_REVERSED = re.compile(r'<meta[^>]+content=["\']([^"\']+)["\'][^>]+name=["\']generator["\']', re.I)

# generator value substring -> platform, first hit wins
GENERATOR_TOKENS: List[Tuple[str, Platform]] = [
    ('wordpress', Platform.WORDPRESS),
    ('woocommerce', Platform.WORDPRESS),
    ('drupal', Platform.DRUPAL),
    ('joomla', Platform.JOOMLA),
    ('magento', Platform.MAGENTO),
    ('prestashop', Platform.PRESTASHOP),
    ('shopify', Platform.SHOPIFY),
    ('wix.com', Platform.WIX),
    ('squarespace', Platform.SQUARESPACE),
    ('webflow', Platform.WEBFLOW),
]

# (content markers, header markers); dict order is the priority order
PLATFORM_MARKERS: Dict[Platform, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    Platform.WORDPRESS: (
        ('/wp-content/', '/wp-includes/', '/wp-json/', 'wp-emoji-release.min.js'),
        ('x-pingback:', 'rel="https://api.w.org/"'),
    ),
    Platform.DRUPAL: (
        ('drupal-settings-json', '/sites/default/files/', '/sites/all/modules/', '/core/misc/drupal.js',
         'drupal.settings', '/modules/contrib/'),
        ('x-drupal-cache:', 'x-drupal-dynamic-cache:'),
    ),
    Platform.JOOMLA: (
        ('/media/jui/', '/media/system/js/', '/components/com_', 'option=com_', 'joomla.jtext'),
        ('x-content-encoded-by: joomla',),
    ),
    Platform.MAGENTO: (
        ('mage/cookies', 'text/x-magento-init', '/static/frontend/magento/', 'magento_ui/'),
        ('x-magento-cache-debug', 'x-magento-tags'),
    ),
    Platform.PRESTASHOP: (
        ('var prestashop', 'prestashop.urls', 'prestashop.page', '/modules/ps_'),
        ('x-powered-by: prestashop',),
    ),
    Platform.SHOPIFY: (
        ('cdn.shopify.com', 'shopify.com/s/files', 'window.shopify', 'shopifycloud', 'shopify-analytics'),
        ('x-shopify-stage', 'x-shopid', 'x-sorting-hat-shopid'),
    ),
    Platform.WIX: (
        ('static.wixstatic.com', 'static.parastorage.com', 'wix-warmup-data'),
        ('x-wix-request-id',),
    ),
    Platform.SQUARESPACE: (
        ('static1.squarespace.com', 'squarespace-cdn.com', 'static.squarespace.com'),
        ('server: squarespace',),
    ),
    Platform.WEBFLOW: (
        ('data-wf-page', 'data-wf-site', 'assets.website-files.com', 'assets-global.website-files.com'),
        (),
    ),
}

NON_TRIVIAL_MIN_CHARS = 256
_TAG_RE = re.compile(r'<[a-z!][^>]*>', re.I)


def generator_values(html: Optional[str], headers: Optional[Mapping[str, str]] = None) -> List[str]:
    """All declared generator strings: meta tags first, then X-Generator."""
    values: List[str] = []
    if html:
        for rx in (META_GENERATOR, META_GENERATOR_REVERSED):
            values.extend(m.group(1).strip() for m in rx.finditer(html))
    for key, value in (headers or {}).items():
        if str(key).lower() == 'x-generator' and value:
            values.append(str(value).strip())
    return values


def platform_from_generator(values: List[str]) -> Optional[Platform]:
    for value in values:
        lowered = value.lower()
        for token, platform in GENERATOR_TOKENS:
            if token in lowered:
                return platform
    return None


def is_non_trivial(html: str) -> bool:
    stripped = html.strip()
    return len(stripped) >= NON_TRIVIAL_MIN_CHARS and bool(_TAG_RE.search(stripped))


def _identify(html: str, headers: Mapping[str, str]) -> Platform:
    declared = platform_from_generator(generator_values(html, headers))
    if declared is not None:
        log.debug('platform from generator: %s', declared.value)
        return declared
    content = html.lower()
    htext = header_text(headers)
    for platform, (content_markers, header_markers) in PLATFORM_MARKERS.items():
        if any(m in content for m in content_markers) or any(m in htext for m in header_markers):
            log.debug('platform from markers: %s', platform.value)
            return platform
    return Platform.CUSTOM if is_non_trivial(html) else Platform.UNKNOWN


def identify_platform(html: Optional[str], headers: Optional[Mapping[str, str]] = None) -> Platform:
    """Return exactly one Platform for any input."""
    try:
        return _identify(html if isinstance(html, str) else '', headers if isinstance(headers, Mapping) else {})
    except Exception as exc:  # never let identification break an audit
        log.warning('platform identification failed err=%s', exc)
        return Platform.UNKNOWN
