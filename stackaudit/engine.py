"""Detection pipeline.

identify platform -> pattern scan -> escalation decision -> (optional)
analyzer call -> merge -> report.

The pipeline has two terminal shapes: pattern-only, or pattern plus
analyzer. The analyzer runs on a shared worker pool and the calling thread
waits for it with a hard deadline; a timeout, a failed call or an analyzer
that is switched off all land on the pattern-only report. Only a caller
cancellation escapes as an exception.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .analyzer import AIAnalyzer, AnalyzerResult, CancelToken, Transport
from .catalog import Catalog, get_catalog
from .escalation import decide_escalation, document_size
from .exceptions import AnalysisCancelled, AnalyzerProtocolError, AnalyzerTimeout
from .identify import identify_platform
from .logging_utils import log_analyzer_failure, log_suppressed
from .matcher import match_signatures
from .merge import merge_findings
from .metrics import record_analysis, record_analyzer_call, track_active_analysis
from .models import AnalysisReport, Finding, Method, Platform, Source, Timings
from .report import build_report, generate_detection_summary
from .settings import Settings, load_settings

log = logging.getLogger('stackaudit.engine')

# Analyzer calls from every engine share this pool; each call is bounded by a
# deadline from pickup and a cancel token so workers always come back.
ANALYZER_WORKERS = 8
_ANALYZER_POOL = ThreadPoolExecutor(max_workers=ANALYZER_WORKERS, thread_name_prefix='stackaudit-analyzer')
CANCEL_POLL_S = 0.05


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def select_method(pattern_failed: bool, ai_result: Optional[AnalyzerResult]) -> Method:
    ai_ok = ai_result is not None and ai_result.ok
    if ai_ok:
        return Method.AI_ONLY if pattern_failed else Method.PATTERN_WITH_AI
    if pattern_failed:
        return Method.FALLBACK
    return Method.PATTERN_ONLY


class Engine:
    """Owns the catalog, settings and analyzer used for every analysis."""

    def __init__(self, settings: Optional[Settings] = None, catalog: Optional[Catalog] = None,
                 analyzer: Optional[AIAnalyzer] = None, transport: Optional[Transport] = None):
        self.settings = settings or load_settings()
        self.catalog = catalog if catalog is not None else get_catalog(self.settings.catalog_dir)
        self.analyzer = analyzer or AIAnalyzer(self.settings, transport)

    def analyze(self, html: Optional[str], headers: Optional[Mapping[str, str]] = None, url: str = '',
                cancel_event: Optional[threading.Event] = None) -> AnalysisReport:
        with track_active_analysis():
            return self._analyze(html or '', dict(headers or {}), url or '', cancel_event)

    def _pattern_stage(self, html: str, headers: Dict[str, str], platform: Platform):
        try:
            return match_signatures(html, headers, self.catalog.for_platform(platform)), False
        except Exception as exc:
            log_suppressed(log, exc, 'pattern stage failed', platform=platform.value)
            return [], True

    def _analyze(self, html: str, headers: Dict[str, str], url: str,
                 cancel_event: Optional[threading.Event]) -> AnalysisReport:
        started = time.perf_counter()
        platform = identify_platform(html, headers)

        pattern_started = time.perf_counter()
        pattern_findings, pattern_failed = self._pattern_stage(html, headers, platform)
        pattern_ms = _elapsed_ms(pattern_started)
        pattern_count = len(pattern_findings)

        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled('pattern')

        escalation = decide_escalation(pattern_findings, platform, document_size(html))
        log.debug('escalation url=%s platform=%s invoke=%s reason=%s',
                  url, platform.value, escalation.invoke_ai, escalation.reason)

        ai_result: Optional[AnalyzerResult] = None
        if escalation.invoke_ai and self.settings.ai_enabled:
            ai_result = self._run_analyzer(platform, html, headers, url, cancel_event)
            record_analyzer_call(ai_result.outcome)
            if not ai_result.ok:
                log_analyzer_failure(log, ai_result.error, platform=platform.value, url=url)
        elif escalation.invoke_ai:
            log.debug('analyzer disabled; escalation not executed url=%s', url)

        ai_findings: List[Finding] = ai_result.findings if ai_result is not None and ai_result.ok else []
        merged = merge_findings(pattern_findings, ai_findings)
        method = select_method(pattern_failed, ai_result)
        timings = Timings(
            pattern_ms=pattern_ms,
            ai_ms=ai_result.elapsed_ms if ai_result is not None else 0,
            total_ms=_elapsed_ms(started),
        )
        report = build_report(
            platform,
            merged,
            method,
            timings,
            url=url,
            escalation=escalation,
            pattern_match_count=pattern_count,
            ai_enhanced_count=len(ai_findings),
            analyzer_error=ai_result.error.error_code if ai_result is not None and ai_result.error else None,
        )
        record_analysis(platform.value, method.value, timings,
                        pattern_count=sum(1 for f in merged if f.source == Source.PATTERN),
                        ai_count=sum(1 for f in merged if f.source == Source.AI))
        log.info('analysis complete url=%s platform=%s method=%s found=%d total_ms=%d',
                 url, platform.value, method.value, report.total_found, timings.total_ms)
        if log.isEnabledFor(logging.DEBUG):
            log.debug('detection summary\n%s', generate_detection_summary(report))
        return report

    def _run_analyzer(self, platform: Platform, html: str, headers: Dict[str, str], url: str,
                      cancel_event: Optional[threading.Event]) -> AnalyzerResult:
        """Wait for the analyzer, polling ``cancel_event``.

        The deadline runs from the moment a pool worker picks the call up, so
        time spent queued behind other engines' calls does not eat into it;
        a call still queued after ``ai_timeout_s`` is given up on as well.
        Giving up fires the call's CancelToken so the worker is released.
        """
        timeout = self.settings.ai_timeout_s
        started = time.perf_counter()
        submitted = time.monotonic()
        token = CancelToken()
        picked_up: List[float] = []

        def call() -> AnalyzerResult:
            picked_up.append(time.monotonic())
            return self.analyzer.analyze(platform, html, headers, url, token=token)

        future = _ANALYZER_POOL.submit(call)
        while True:
            if cancel_event is not None and cancel_event.is_set():
                token.cancel()
                future.cancel()
                record_analyzer_call('cancelled')
                raise AnalysisCancelled('ai')
            deadline = (picked_up[0] if picked_up else submitted) + timeout
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                token.cancel()
                future.cancel()
                return AnalyzerResult.failure(AnalyzerTimeout(timeout), _elapsed_ms(started))
            try:
                return future.result(timeout=min(remaining, CANCEL_POLL_S))
            except FutureTimeout:
                continue
            except Exception as exc:
                # a replacement analyzer broke the never-raise contract
                return AnalyzerResult.failure(AnalyzerProtocolError(f'analyzer failed: {exc}'),
                                              _elapsed_ms(started))

    def analyze_bulk(self, documents: Sequence[Mapping[str, Any]],
                     cancel_event: Optional[threading.Event] = None) -> List[Dict[str, Any]]:
        """Analyze documents concurrently; results keep the input order."""
        results: List[Optional[Dict[str, Any]]] = [None] * len(documents)
        if not documents:
            return []
        workers = min(self.settings.bulk_concurrency, len(documents))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='stackaudit-bulk') as executor:
            future_to_idx = {
                executor.submit(self.analyze, d.get('html'), d.get('headers'), d.get('url') or '', cancel_event): i
                for i, d in enumerate(documents)
            }
            for future in as_completed(future_to_idx):
                idx = future_to_idx[future]
                try:
                    results[idx] = future.result().to_dict()
                except Exception as e:
                    url = documents[idx].get('url') or ''
                    log.warning('bulk analysis failed url=%s err=%s', url, e)
                    results[idx] = {'url': url, 'error': str(e), 'status': 'error'}
        return [r for r in results if r is not None]


_default_engine: Optional[Engine] = None
_default_lock = threading.Lock()


def get_engine() -> Engine:
    """Process-wide engine built from the environment on first use."""
    global _default_engine
    with _default_lock:
        if _default_engine is None:
            _default_engine = Engine()
        return _default_engine


def analyze_document(html: Optional[str], headers: Optional[Mapping[str, str]] = None, url: str = '',
                     cancel_event: Optional[threading.Event] = None) -> AnalysisReport:
    return get_engine().analyze(html, headers, url, cancel_event)
