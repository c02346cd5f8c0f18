"""Signature catalog.

One JSON file per platform under ``data/`` (or ``STACKAUDIT_CATALOG_DIR``).
Each file holds ``{"platform", "version", "signatures": [...]}``. Files are
validated strictly at load time: anything malformed raises
CatalogParseError, which create_app lets propagate so the process refuses
to start with a broken catalog.

The loaded Catalog is immutable (tuples and frozen dataclasses) and cached
per directory, so concurrent analyses read it without locking.
"""
from __future__ import annotations

import json
import logging
import os
import pathlib
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..exceptions import CatalogParseError
from ..models import (
    PATTERN_GROUPS,
    UNIVERSAL,
    Category,
    Confidence,
    PerformanceImpact,
    Platform,
    RiskLevel,
    Signature,
)

log = logging.getLogger('stackaudit.catalog')

DATA_DIR = pathlib.Path(__file__).resolve().parent / 'data'

# platforms that may own signatures; custom/unknown only ever get universal
CATALOG_PLATFORMS: Tuple[str, ...] = tuple(
    p.value for p in Platform if p not in (Platform.CUSTOM, Platform.UNKNOWN)
) + (UNIVERSAL,)

_REQUIRED_KEYS = ('name', 'category', 'patterns', 'confidenceTier', 'riskLevel', 'performanceImpact')


class Catalog:
    """Read-only signature index keyed by ``(platform, name)``."""

    def __init__(self, signatures: Iterable[Signature], versions: Optional[Mapping[str, str]] = None):
        by_key: Dict[Tuple[str, str], Signature] = {}
        by_platform: Dict[str, List[Signature]] = {}
        for sig in signatures:
            if sig.key in by_key:
                raise CatalogParseError(sig.platform, f'duplicate signature name {sig.name!r}')
            by_key[sig.key] = sig
            by_platform.setdefault(sig.platform, []).append(sig)
        self._by_key = MappingProxyType(by_key)
        self._by_platform = MappingProxyType({k: tuple(v) for k, v in by_platform.items()})
        self.versions = MappingProxyType(dict(versions or {}))

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key) -> bool:
        return key in self._by_key

    def get(self, platform: str, name: str) -> Optional[Signature]:
        return self._by_key.get((platform, name))

    def platforms(self) -> Tuple[str, ...]:
        return tuple(self._by_platform.keys())

    def platform_signatures(self, platform: str) -> Tuple[Signature, ...]:
        return self._by_platform.get(platform, ())

    def for_platform(self, platform) -> Tuple[Signature, ...]:
        """Signatures that apply to ``platform``: its own set plus universal.

        custom/unknown (or a platform with no file) get the universal set only.
        """
        value = platform.value if isinstance(platform, Platform) else str(platform)
        own = () if value == UNIVERSAL else self._by_platform.get(value, ())
        return own + self._by_platform.get(UNIVERSAL, ())

    def summary(self) -> Dict[str, Any]:
        return {
            'total': len(self),
            'platforms': {
                name: {'signatures': len(self.platform_signatures(name)), 'version': self.versions.get(name)}
                for name in sorted(self.platforms())
            },
        }


def _enum(enum_cls, raw: Any, source: str, field: str, name: str):
    try:
        return enum_cls(raw)
    except ValueError:
        raise CatalogParseError(source, f'{name!r}: invalid {field} {raw!r}') from None


def _parse_patterns(raw: Any, source: str, name: str) -> Dict[str, Tuple[str, ...]]:
    if not isinstance(raw, dict) or not raw:
        raise CatalogParseError(source, f'{name!r}: patterns must be a non-empty object')
    out: Dict[str, Tuple[str, ...]] = {}
    for group, values in raw.items():
        if group not in PATTERN_GROUPS:
            raise CatalogParseError(source, f'{name!r}: unknown pattern group {group!r}')
        if not isinstance(values, list) or not values:
            raise CatalogParseError(source, f'{name!r}: pattern group {group!r} must be a non-empty list')
        for v in values:
            if not isinstance(v, str) or not v.strip():
                raise CatalogParseError(source, f'{name!r}: empty or non-string pattern in {group!r}')
        # order-preserving dedupe
        out[group] = tuple(dict.fromkeys(values))
    return out


def parse_signature(entry: Any, platform: str, source: str) -> Signature:
    """Validate one raw signature object and build the immutable Signature."""
    if not isinstance(entry, dict):
        raise CatalogParseError(source, 'signature entries must be objects')
    missing = [k for k in _REQUIRED_KEYS if k not in entry]
    name = entry.get('name')
    if missing:
        raise CatalogParseError(source, f'{name!r}: missing keys {", ".join(missing)}')
    if not isinstance(name, str) or not name.strip():
        raise CatalogParseError(source, 'signature name must be a non-empty string')
    subcategory = entry.get('subcategory')
    if subcategory is not None and not isinstance(subcategory, str):
        raise CatalogParseError(source, f'{name!r}: subcategory must be a string')
    return Signature(
        name=name.strip(),
        platform=platform,
        category=_enum(Category, entry['category'], source, 'category', name),
        subcategory=subcategory or None,
        patterns=MappingProxyType(_parse_patterns(entry['patterns'], source, name)),
        confidence_tier=_enum(Confidence, entry['confidenceTier'], source, 'confidenceTier', name),
        risk_level=_enum(RiskLevel, entry['riskLevel'], source, 'riskLevel', name),
        performance_impact=_enum(PerformanceImpact, entry['performanceImpact'], source, 'performanceImpact', name),
        description=str(entry.get('description') or ''),
    )


def parse_catalog_document(doc: Any, source: str) -> Tuple[str, str, List[Signature]]:
    """Return ``(platform, version, signatures)`` for one decoded file."""
    if not isinstance(doc, dict):
        raise CatalogParseError(source, 'top level must be an object')
    platform = doc.get('platform')
    if platform not in CATALOG_PLATFORMS:
        raise CatalogParseError(source, f'unknown platform {platform!r}')
    raw_sigs = doc.get('signatures')
    if not isinstance(raw_sigs, list):
        raise CatalogParseError(source, 'signatures must be a list')
    version = str(doc.get('version') or '')
    return platform, version, [parse_signature(e, platform, source) for e in raw_sigs]


def load_catalog(directory: Optional[str | os.PathLike] = None) -> Catalog:
    """Read and validate every ``*.json`` file in ``directory``."""
    base = pathlib.Path(directory) if directory else DATA_DIR
    if not base.is_dir():
        raise CatalogParseError(str(base), 'catalog directory not found')
    files = sorted(base.glob('*.json'))
    if not files:
        raise CatalogParseError(str(base), 'no signature files')
    signatures: List[Signature] = []
    versions: Dict[str, str] = {}
    for path in files:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                doc = json.load(f)
        except (OSError, ValueError) as exc:
            raise CatalogParseError(path.name, f'unreadable: {exc}') from exc
        platform, version, sigs = parse_catalog_document(doc, path.name)
        if platform in versions:
            raise CatalogParseError(path.name, f'platform {platform!r} defined twice')
        versions[platform] = version
        signatures.extend(sigs)
        log.debug('catalog file loaded file=%s platform=%s signatures=%d', path.name, platform, len(sigs))
    catalog = Catalog(signatures, versions)
    log.info('signature catalog loaded dir=%s platforms=%d signatures=%d', base, len(versions), len(catalog))
    return catalog


@lru_cache(maxsize=4)
def _cached_catalog(directory: Optional[str]) -> Catalog:
    return load_catalog(directory)


def get_catalog(directory: Optional[str] = None) -> Catalog:
    """Process-wide catalog; loaded once per directory and never mutated."""
    if directory is None:
        directory = os.environ.get('STACKAUDIT_CATALOG_DIR') or None
    return _cached_catalog(str(directory) if directory else None)


def clear_catalog_cache() -> None:
    """Drop cached catalogs (tests only)."""
    _cached_catalog.cache_clear()
