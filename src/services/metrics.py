"""CloudWatch custom metrics emitter with background batching.

Publishes agent-level metrics: model calls, tool executions and action
status transitions.

Design
------
* Data points are collected in a thread-safe in-memory buffer.
* When enabled, a daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS`` and once more at process exit.
* When disabled (``METRICS_ENABLED != "true"``, the local default), data
  points are logged at DEBUG level and dropped on flush.
* Each ``put_metric_data`` call sends up to 1 000 data points (the
  CloudWatch API limit per request).

The runtime owns one ``MetricsClient`` and injects it into the orchestrator,
executor and action store.

>>> metrics = MetricsClient()
>>> metrics.record_tool_call("check_calendar", success=True, latency_ms=212.0)
>>> metrics.record_action_transition("executed")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "NovaAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self, *, enabled: bool | None = None) -> None:
        if enabled is None:
            enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_model_call(
        self,
        *,
        success: bool,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        now = datetime.now(UTC)
        status = "success" if success else "failure"
        self._append("Model/RequestCount", _dims(Status=status), 1, "Count", now)
        self._append("Model/Latency", _dims(Status=status), latency_ms, "Milliseconds", now)
        if not success:
            self._append(
                "Model/ErrorCount", _dims(ErrorType=error_type or "unknown"), 1, "Count", now,
            )
        logger.debug("Metric: model %s latency=%.1fms error=%s", status, latency_ms, error_type)

    def record_tool_call(
        self,
        capability: str,
        *,
        success: bool,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        now = datetime.now(UTC)
        status = "success" if success else "failure"
        self._append(
            "Tool/ExecutionCount", _dims(Capability=capability, Status=status), 1, "Count", now,
        )
        self._append(
            "Tool/Latency", _dims(Capability=capability), latency_ms, "Milliseconds", now,
        )
        if not success:
            self._append(
                "Tool/ErrorCount",
                _dims(Capability=capability, ErrorType=error_type or "unknown"),
                1,
                "Count",
                now,
            )
        logger.debug(
            "Metric: tool %s %s latency=%.1fms error=%s",
            capability, status, latency_ms, error_type,
        )

    def record_action_transition(self, status: str) -> None:
        self._append("Action/Transition", _dims(Status=status), 1, "Count", datetime.now(UTC))
        logger.debug("Metric: action → %s", status)

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    def _append(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        unit: str,
        timestamp: datetime,
    ) -> None:
        with self._lock:
            self._buffer.append(
                {
                    "MetricName": name,
                    "Dimensions": dimensions,
                    "Timestamp": timestamp,
                    "Value": value,
                    "Unit": unit,
                }
            )

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)
