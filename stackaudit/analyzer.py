"""AI analyzer adapter.

Builds bounded content excerpts from a document, asks the LLM backend for a
structured extension list and coerces the reply into Findings. Every
failure (timeout, bad credentials, unparseable reply, cancellation) comes
back as a failed AnalyzerResult carrying a typed AnalyzerError; ``analyze``
itself never raises, so a flaky backend can only downgrade a report, never
break it.

The transport is a plain callable ``(request, deadline, token) -> reply text``.
``deadline`` is a ``time.monotonic()`` instant and ``token`` a CancelToken;
a transport must give up once either fires so the worker running it is
released. The default posts to the Anthropic Messages API with ``requests``
and streams the body so both are checked between chunks.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests

from .exceptions import (
    AnalyzerCancelled,
    AnalyzerError,
    AnalyzerProtocolError,
    AnalyzerQuotaError,
    AnalyzerTimeout,
)
from .escalation import document_size
from .models import Category, Confidence, Finding, PerformanceImpact, Platform, RiskLevel, Source
from .settings import Settings

log = logging.getLogger('stackaudit.analyzer')

ANTHROPIC_VERSION = '2023-06-01'
CONNECT_TIMEOUT_S = 5.0
READ_CHUNK_BYTES = 8192

HEAD_SECTION_LIMIT = 3000
SCRIPT_SOURCE_LIMIT = 20
LINK_SOURCE_LIMIT = 15
META_TAG_LIMIT = 10
SERVER_HEADER_LIMIT = 10
EVIDENCE_LIMIT = 10

_HEAD_RE = re.compile(r'<head[^>]*>([\s\S]*?)</head>', re.I)
_SCRIPT_TAG_RE = re.compile(r'<script[^>]*>', re.I)
_LINK_TAG_RE = re.compile(r'<link[^>]*>', re.I)
_META_TAG_RE = re.compile(r'<meta[^>]*>', re.I)
_FORM_TAG_RE = re.compile(r'<form[^>]*>', re.I)
_SRC_RE = re.compile(r'src=["\']([^"\']+)["\']', re.I)
_HREF_RE = re.compile(r'href=["\']([^"\']+)["\']', re.I)

# categories the model tends to invent, folded onto the closed set
CATEGORY_ALIASES: Dict[str, Category] = {
    'caching': Category.PERFORMANCE,
    'cache': Category.PERFORMANCE,
    'optimization': Category.PERFORMANCE,
    'reviews': Category.MARKETING,
    'email': Category.MARKETING,
    'upsell': Category.MARKETING,
    'conversion': Category.MARKETING,
    'shipping': Category.ECOMMERCE,
    'builder': Category.PAGE_BUILDER,
    'page builder': Category.PAGE_BUILDER,
    'pagebuilder': Category.PAGE_BUILDER,
    'media': Category.CONTENT,
    'gallery': Category.CONTENT,
    'admin': Category.UTILITY,
}


@dataclass
class ContentExcerpts:
    head_section: str
    script_source_names: List[str]
    link_source_names: List[str]
    meta_tags: List[str]
    server_headers: List[str]
    html_prefix: str
    content_bytes: int = 0
    script_count: int = 0
    link_count: int = 0
    form_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'headSection': self.head_section,
            'scriptSourceNames': list(self.script_source_names),
            'linkSourceNames': list(self.link_source_names),
            'metaTags': list(self.meta_tags),
            'serverHeaders': list(self.server_headers),
            'htmlPrefix': self.html_prefix,
        }


@dataclass
class AnalyzerRequest:
    """What the analyzer is asked about: ``{platform, url, contentExcerpts}``."""

    platform: str
    url: str
    excerpts: ContentExcerpts

    def to_dict(self) -> Dict[str, Any]:
        return {'platform': self.platform, 'url': self.url, 'contentExcerpts': self.excerpts.to_dict()}

    @property
    def prompt(self) -> str:
        return build_prompt(self)


class CancelToken:
    """Cancellation signal for one analyzer call.

    Callbacks registered with ``on_cancel`` run once, on the cancelling
    thread; the default transport uses one to close its open response.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                log.debug('cancel callback failed err=%s', exc)

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()


Transport = Callable[[AnalyzerRequest, float, CancelToken], str]


@dataclass
class AnalyzerResult:
    """Tagged result: either ``findings`` or ``error`` is meaningful."""

    findings: List[Finding] = field(default_factory=list)
    error: Optional[AnalyzerError] = None
    dropped: int = 0
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def outcome(self) -> str:
        return 'ok' if self.error is None else self.error.kind

    @classmethod
    def failure(cls, error: AnalyzerError, elapsed_ms: int = 0) -> 'AnalyzerResult':
        return cls(findings=[], error=error, elapsed_ms=elapsed_ms)


def _basename(ref: str) -> str:
    return ref[ref.rfind('/') + 1:]


def build_excerpts(html: Optional[str], headers: Optional[Mapping[str, str]], prefix_budget: int = 8000) -> ContentExcerpts:
    html = html or ''
    head = _HEAD_RE.search(html)
    scripts = _SCRIPT_TAG_RE.findall(html)
    links = _LINK_TAG_RE.findall(html)
    script_names = []
    for tag in scripts[:SCRIPT_SOURCE_LIMIT]:
        m = _SRC_RE.search(tag)
        script_names.append(_basename(m.group(1)) if m else 'inline')
    link_names = []
    for tag in links[:LINK_SOURCE_LIMIT]:
        m = _HREF_RE.search(tag)
        link_names.append(_basename(m.group(1)) if m else 'unknown')
    server_headers = [f'{k}: {v}' for k, v in (headers or {}).items()][:SERVER_HEADER_LIMIT]
    return ContentExcerpts(
        head_section=(head.group(1) if head else '')[:HEAD_SECTION_LIMIT],
        script_source_names=script_names,
        link_source_names=link_names,
        meta_tags=_META_TAG_RE.findall(html)[:META_TAG_LIMIT],
        server_headers=server_headers,
        html_prefix=html[:max(0, prefix_budget)],
        content_bytes=document_size(html),
        script_count=len(scripts),
        link_count=len(links),
        form_count=len(_FORM_TAG_RE.findall(html)),
    )


def build_prompt(request: AnalyzerRequest) -> str:
    """Instructions plus the structured request, embedded as JSON."""
    platform, excerpts = request.platform, request.excerpts
    categories = '|'.join(c.value for c in Category)
    payload = json.dumps(request.to_dict(), indent=2)
    return f"""As an expert web technology analyst, identify the plugins, extensions and apps running on this {platform} website.

WEBSITE: {request.url or 'unknown'}
PLATFORM: {platform}

WEBSITE CHARACTERISTICS:
- Content Size: {round(excerpts.content_bytes / 1024)}KB
- Script Elements: {excerpts.script_count}
- Stylesheet Links: {excerpts.link_count}
- Forms: {excerpts.form_count}

ANALYSIS REQUEST (head section, first {SCRIPT_SOURCE_LIMIT} script and {LINK_SOURCE_LIMIT} stylesheet names, meta tags, server headers, HTML sample):
{payload}

Respond with JSON only, in this format:

{{
  "platform": "{platform}",
  "detectedPlugins": [
    {{
      "name": "[plugin/extension name]",
      "category": "[{categories}]",
      "subcategory": "[specific subcategory such as caching, firewall, social-sharing]",
      "confidence": "[high|medium|low]",
      "version": "[version if detectable]",
      "description": "[what it does]",
      "riskLevel": "[low|medium|high|critical]",
      "performanceImpact": "[minimal|low|medium|high]",
      "recommendations": ["specific recommendations for this plugin"],
      "detectionEvidence": ["specific HTML/CSS/JS evidence found"]
    }}
  ]
}}

Only report extensions with clear evidence in the material above, and cite that evidence."""


def extract_json_object(text: str) -> Any:
    """Decode the JSON object between the first '{' and the last '}'."""
    if not isinstance(text, str):
        raise AnalyzerProtocolError('analyzer reply is not text')
    body = text.strip()
    first, last = body.find('{'), body.rfind('}')
    if first != -1 and last > first:
        body = body[first:last + 1]
    try:
        return json.loads(body)
    except ValueError as exc:
        raise AnalyzerProtocolError(f'analyzer reply is not valid JSON: {exc}',
                                    details={'excerpt': text[:200]}) from exc


def _enum_or(enum_cls, raw: Any, default):
    if isinstance(raw, str):
        try:
            return enum_cls(raw.strip().lower())
        except ValueError:
            pass
    return default


def _coerce_category(raw: Any) -> Category:
    if not isinstance(raw, str):
        return Category.OTHER
    key = raw.strip().lower()
    if key in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[key]
    return _enum_or(Category, key, Category.OTHER)


def _str_list(raw: Any, limit: Optional[int] = None) -> List[str]:
    if not isinstance(raw, list):
        return []
    out = [s.strip() for s in raw if isinstance(s, str) and s.strip()]
    return out[:limit] if limit else out


def _opt_str(raw: Any) -> Optional[str]:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def coerce_finding(entry: Any, platform: str) -> Optional[Finding]:
    """One reply entry -> Finding, or None when it has no usable name."""
    if not isinstance(entry, dict):
        return None
    name = entry.get('name')
    if not isinstance(name, str) or not name.strip():
        return None
    return Finding(
        name=name.strip(),
        platform=platform,
        category=_coerce_category(entry.get('category')),
        subcategory=_opt_str(entry.get('subcategory')),
        confidence=_enum_or(Confidence, entry.get('confidence'), Confidence.LOW),
        risk_level=_enum_or(RiskLevel, entry.get('riskLevel'), RiskLevel.LOW),
        performance_impact=_enum_or(PerformanceImpact, entry.get('performanceImpact'), PerformanceImpact.LOW),
        evidence=_str_list(entry.get('detectionEvidence'), EVIDENCE_LIMIT),
        source=Source.AI,
        version=_opt_str(entry.get('version')),
        description=_opt_str(entry.get('description')) or '',
        recommendations=_str_list(entry.get('recommendations')),
    )


def parse_reply(text: str, platform: str) -> Tuple[List[Finding], int]:
    """Return ``(findings, dropped_entries)``; raise AnalyzerProtocolError on bad shape."""
    doc = extract_json_object(text)
    if not isinstance(doc, dict):
        raise AnalyzerProtocolError('analyzer reply is not a JSON object')
    entries = doc.get('detectedPlugins')
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise AnalyzerProtocolError('detectedPlugins is not a list')
    findings: List[Finding] = []
    dropped = 0
    for entry in entries:
        finding = coerce_finding(entry, platform)
        if finding is None:
            dropped += 1
            continue
        findings.append(finding)
    return findings, dropped


def _read_body(resp, deadline: float, token: CancelToken, budget: float) -> bytes:
    """Read the streamed body, giving up on cancel or once the deadline passes."""
    chunks: List[bytes] = []
    try:
        for chunk in resp.iter_content(chunk_size=READ_CHUNK_BYTES):
            if token.cancelled:
                raise AnalyzerCancelled()
            if time.monotonic() >= deadline:
                raise AnalyzerTimeout(budget)
            if chunk:
                chunks.append(chunk)
    except (requests.RequestException, OSError, ValueError) as exc:
        # closing the response from the cancelling thread surfaces here
        if token.cancelled:
            raise AnalyzerCancelled() from exc
        if time.monotonic() >= deadline or isinstance(exc, requests.Timeout):
            raise AnalyzerTimeout(budget) from exc
        raise AnalyzerError(f'analyzer response read failed: {exc}') from exc
    if token.cancelled:
        raise AnalyzerCancelled()
    return b''.join(chunks)


def anthropic_transport(settings: Settings, session: Optional[requests.Session] = None) -> Transport:
    """Transport posting to the Messages API; HTTP errors map onto AnalyzerError.

    The whole exchange (connect, status, body) is bounded by ``deadline``;
    cancelling the token closes the open response so a blocked read returns.
    """
    http = session or requests.Session()

    def send(request: AnalyzerRequest, deadline: float, token: CancelToken) -> str:
        if not settings.api_key:
            raise AnalyzerQuotaError('ANTHROPIC_API_KEY is not configured')
        if token.cancelled:
            raise AnalyzerCancelled()
        budget = settings.ai_timeout_s
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AnalyzerTimeout(budget)
        payload = {
            'model': settings.ai_model,
            'max_tokens': settings.ai_max_tokens,
            'messages': [{'role': 'user', 'content': request.prompt}],
        }
        headers = {
            'x-api-key': settings.api_key,
            'anthropic-version': ANTHROPIC_VERSION,
            'content-type': 'application/json',
        }
        try:
            resp = http.post(settings.ai_endpoint, json=payload, headers=headers,
                             timeout=(min(remaining, CONNECT_TIMEOUT_S), remaining), stream=True)
        except requests.Timeout as exc:
            raise AnalyzerTimeout(budget) from exc
        except requests.RequestException as exc:
            if token.cancelled:
                raise AnalyzerCancelled() from exc
            raise AnalyzerError(f'analyzer transport failed: {exc}') from exc
        token.on_cancel(resp.close)
        try:
            if resp.status_code in (401, 403, 429):
                raise AnalyzerQuotaError(f'analyzer rejected request status={resp.status_code}',
                                         details={'status': resp.status_code})
            if resp.status_code >= 400:
                raise AnalyzerError(f'analyzer returned status={resp.status_code}',
                                    details={'status': resp.status_code})
            raw = _read_body(resp, deadline, token, budget)
        finally:
            resp.close()
        try:
            body = json.loads(raw)
        except ValueError as exc:
            raise AnalyzerProtocolError('analyzer response body is not JSON') from exc
        blocks = body.get('content') if isinstance(body, dict) else None
        if not isinstance(blocks, list) or not blocks or not isinstance(blocks[0], dict) \
                or blocks[0].get('type') != 'text':
            raise AnalyzerProtocolError('unexpected response format from analyzer')
        return str(blocks[0].get('text') or '')

    return send


class AIAnalyzer:
    """Adapter between the engine and the external analyzer backend."""

    def __init__(self, settings: Settings, transport: Optional[Transport] = None):
        self.settings = settings
        self.transport = transport or anthropic_transport(settings)

    def analyze(self, platform: Platform, html: Optional[str], headers: Optional[Mapping[str, str]],
                url: str = '', token: Optional[CancelToken] = None) -> AnalyzerResult:
        """Run one call; its deadline starts now, not when the work was queued."""
        started = time.perf_counter()
        deadline = time.monotonic() + self.settings.ai_timeout_s
        token = token or CancelToken()
        platform_value = platform.value if isinstance(platform, Platform) else str(platform)
        try:
            if token.cancelled:
                raise AnalyzerCancelled()
            excerpts = build_excerpts(html, headers, self.settings.ai_html_prefix)
            request = AnalyzerRequest(platform=platform_value, url=url, excerpts=excerpts)
            reply = self.transport(request, deadline, token)
            findings, dropped = parse_reply(reply, platform_value)
        except AnalyzerError as exc:
            return AnalyzerResult.failure(exc, _elapsed_ms(started))
        except Exception as exc:
            # anything unexpected from a third-party transport is still a typed failure
            return AnalyzerResult.failure(AnalyzerProtocolError(f'analyzer failed: {exc}'), _elapsed_ms(started))
        if dropped:
            log.info('analyzer reply had %d unusable entries url=%s', dropped, url)
        log.debug('analyzer returned %d findings url=%s', len(findings), url)
        return AnalyzerResult(findings=findings, dropped=dropped, elapsed_ms=_elapsed_ms(started))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
