"""
Module: observability.py
Description: Logging and in-process metrics for the FinPersona backend.

Features:
    - key=value structured log lines with a per-user scope
    - Counters, gauges and timing samples exposed on GET /metrics
    - @timed / timed_block for detection and simulation latency

Usage:
    from services.observability import logger, metrics, timed

    @timed("cashflow_simulation")
    def simulate(...):
        logger.info("Simulating", months=timeframe)
"""

import os
import time
import asyncio
import logging
import functools
from datetime import datetime
from typing import Dict, Any, Optional, Callable
from collections import defaultdict
from contextlib import contextmanager


LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_TIMING_SAMPLES = 1000
USER_ID_PREFIX = 8


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Wraps a stdlib logger and renders keyword fields as "key=value".

    Scope fields (the user being analyzed) are appended to every line
    emitted inside user_scope().
    """

    def __init__(self, name: str = "finpersona", level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            self.logger.addHandler(handler)

        self._scope: Dict[str, Any] = {}

    @contextmanager
    def user_scope(self, user_id: str):
        """Tag every line in the block with a shortened user id."""
        previous = self._scope
        self._scope = {**previous, "user_id": user_id[:USER_ID_PREFIX]}
        try:
            yield
        finally:
            self._scope = previous

    def _render(self, message: str, fields: Dict[str, Any]) -> str:
        merged = {**self._scope, **fields}
        if not merged:
            return message
        return message + " | " + " ".join(f"{k}={v}" for k, v in merged.items())

    def debug(self, message: str, **fields) -> None:
        self.logger.debug(self._render(message, fields))

    def info(self, message: str, **fields) -> None:
        self.logger.info(self._render(message, fields))

    def warning(self, message: str, **fields) -> None:
        self.logger.warning(self._render(message, fields))

    def error(self, message: str, **fields) -> None:
        self.logger.error(self._render(message, fields))


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    Process-local counters, gauges and timing samples.

    Tagged metrics are keyed "name:tag=value,...". Timings keep the most
    recent MAX_TIMING_SAMPLES values per key.
    """

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timings: Dict[str, list] = defaultdict(list)
        self._start_time = datetime.utcnow()

    @staticmethod
    def _key(name: str, tags: Optional[Dict[str, str]]) -> str:
        if not tags:
            return name
        return name + ":" + ",".join(f"{k}={v}" for k, v in sorted(tags.items()))

    def increment(self, name: str, value: int = 1, tags: Dict[str, str] = None) -> None:
        self.counters[self._key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: Dict[str, str] = None) -> None:
        self.gauges[self._key(name, tags)] = value

    def timing(self, name: str, duration_ms: float, tags: Dict[str, str] = None) -> None:
        samples = self.timings[self._key(name, tags)]
        samples.append(duration_ms)
        del samples[:-MAX_TIMING_SAMPLES]

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot for the /metrics route."""
        timings = {}
        for name, samples in self.timings.items():
            if not samples:
                continue
            ordered = sorted(samples)
            timings[name] = {
                "count": len(ordered),
                "avg_ms": sum(ordered) / len(ordered),
                "min_ms": ordered[0],
                "max_ms": ordered[-1],
                "p50_ms": ordered[len(ordered) // 2],
                "p95_ms": ordered[int(len(ordered) * 0.95)] if len(ordered) >= 20 else None,
            }

        return {
            "uptime_seconds": (datetime.utcnow() - self._start_time).total_seconds(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": timings,
        }

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()


# =============================================================================
# Timing Helpers
# =============================================================================

def _record(name: str, start: float, ok: bool) -> None:
    duration_ms = (time.perf_counter() - start) * 1000
    metrics.increment(f"{name}.{'success' if ok else 'error'}")
    metrics.timing(name, duration_ms)
    logger.debug(f"{name} finished", ok=ok, duration_ms=f"{duration_ms:.2f}")


def timed(name: str = None):
    """
    Record call count, outcome and latency of a sync or async function.

    Example:
        @timed("anomaly_detection")
        def detect(self, user_id, new_transactions):
            ...
    """
    def decorator(func: Callable) -> Callable:
        metric_name = name or func.__name__

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception:
                    _record(metric_name, start, ok=False)
                    raise
                _record(metric_name, start, ok=True)
                return result
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception:
                _record(metric_name, start, ok=False)
                raise
            _record(metric_name, start, ok=True)
            return result
        return sync_wrapper

    return decorator


@contextmanager
def timed_block(name: str):
    """
    Same bookkeeping as @timed for an inline block.

    Example:
        with timed_block("scenario_interpretation"):
            analysis = await interpret_scenario(text, snapshot)
    """
    start = time.perf_counter()
    try:
        yield
    except Exception:
        _record(name, start, ok=False)
        raise
    _record(name, start, ok=True)


# =============================================================================
# Global Instances
# =============================================================================

logger = StructuredLogger()

metrics = MetricsCollector()


# =============================================================================
# Domain Events
# =============================================================================

def log_detection_start(transaction_count: int, history_count: int) -> None:
    logger.info("Anomaly detection started",
                new_transactions=transaction_count, history=history_count)
    metrics.increment("detection.started")


def log_detection_complete(anomaly_count: int) -> None:
    logger.info("Anomaly detection completed", anomalies=anomaly_count)
    metrics.increment("detection.completed")
    metrics.gauge("last_anomalies_count", anomaly_count)


def log_anomaly_detected(anomaly) -> None:
    logger.info(
        "Anomaly detected",
        kind=anomaly.kind,
        category=anomaly.category,
        severity=anomaly.severity,
        amount=f"{anomaly.amount:.2f}",
    )
    metrics.increment("anomalies.detected", tags={"kind": anomaly.kind, "severity": anomaly.severity})


def log_scenario_fallback(reason: str) -> None:
    """Deterministic interpretation replaced the AI strategy."""
    logger.warning("Scenario AI unavailable, using fallback", reason=reason)
    metrics.increment("scenario.fallback")


def log_openai_call(endpoint: str, tokens: int, duration_ms: float) -> None:
    logger.debug("OpenAI API call", endpoint=endpoint, tokens=tokens, duration_ms=f"{duration_ms:.2f}")
    metrics.increment("openai.calls")
    metrics.increment("openai.tokens", tokens)
    metrics.timing("openai.latency", duration_ms)
