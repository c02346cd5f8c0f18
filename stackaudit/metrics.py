"""Prometheus metrics for StackAudit.

Exposed at the /metrics/prometheus endpoint.
"""

import time

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

# ============ Metrics Definitions ============

ANALYSES_TOTAL = Counter(
    'stackaudit_analyses_total',
    'Total number of completed analyses',
    ['platform', 'method']
)

ANALYZER_CALLS = Counter(
    'stackaudit_analyzer_calls_total',
    'AI analyzer invocations by outcome',
    ['outcome']  # ok, timeout, protocol, quota, error, cancelled
)

ANALYSIS_DURATION = Histogram(
    'stackaudit_analysis_duration_seconds',
    'Time spent per analysis stage',
    ['stage'],  # pattern, ai, total
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60]
)

FINDINGS_DETECTED = Counter(
    'stackaudit_findings_detected',
    'Findings emitted, by where they came from',
    ['source']  # pattern, ai
)

ACTIVE_ANALYSES = Gauge(
    'stackaudit_active_analyses',
    'Number of analyses currently running'
)


# ============ Helper Functions ============

def record_analysis(platform: str, method: str, timings, pattern_count: int = 0, ai_count: int = 0):
    """Record a completed analysis.

    Args:
        platform: Identified platform value
        method: Detection method value
        timings: models.Timings for the run
        pattern_count: Findings surviving from the pattern stage
        ai_count: Findings contributed only by the analyzer
    """
    ANALYSES_TOTAL.labels(platform=platform, method=method).inc()
    ANALYSIS_DURATION.labels(stage='pattern').observe(timings.pattern_ms / 1000.0)
    if timings.ai_ms:
        ANALYSIS_DURATION.labels(stage='ai').observe(timings.ai_ms / 1000.0)
    ANALYSIS_DURATION.labels(stage='total').observe(timings.total_ms / 1000.0)
    if pattern_count:
        FINDINGS_DETECTED.labels(source='pattern').inc(pattern_count)
    if ai_count:
        FINDINGS_DETECTED.labels(source='ai').inc(ai_count)


def record_analyzer_call(outcome: str):
    ANALYZER_CALLS.labels(outcome=outcome).inc()


def track_active_analysis():
    """Context manager to track active analysis count."""
    class AnalysisTracker:
        def __enter__(self):
            ACTIVE_ANALYSES.inc()
            self.start_time = time.time()
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            ACTIVE_ANALYSES.dec()
            return False

    return AnalysisTracker()


def get_metrics():
    """Get current metrics in Prometheus format.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest()


def get_content_type():
    """Get Prometheus content type header value."""
    return CONTENT_TYPE_LATEST
