"""
merkledrop/metrics.py

Prometheus metrics collection for merkledrop.

Tracks claim outcomes, rejections, in-flight sagas and ledger call
latency for a claim coordinator.
"""

import time
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Any, Optional

if TYPE_CHECKING:
    from .protocol.claims import ClaimCoordinator
    from .protocol.saga import ClaimSaga

logger = logging.getLogger("merkledrop.metrics")

LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]


class MetricsCollector:
    """
    Prometheus metrics collector for a claim coordinator.

    Usage:
        coordinator = ClaimCoordinator(registry, ledger)
        prometheus_output = coordinator.metrics.collect()
    """

    METRICS = {
        "merkledrop_claims_started_total": {
            "type": "counter",
            "help": "Claims that passed verification and were marked claimed",
        },
        "merkledrop_claims_completed_total": {
            "type": "counter",
            "help": "Claims paid out by the ledger",
        },
        "merkledrop_claims_rolled_back_total": {
            "type": "counter",
            "help": "Claims compensated after a failed ledger call, by stage",
        },
        "merkledrop_claims_rejected_total": {
            "type": "counter",
            "help": "Claims rejected before any state change, by reason",
        },
        "merkledrop_sagas_in_flight": {
            "type": "gauge",
            "help": "Claim sagas awaiting a ledger response",
        },
        "merkledrop_claimed_accounts": {
            "type": "gauge",
            "help": "Accounts currently marked claimed",
        },
        "merkledrop_ledger_call_seconds": {
            "type": "histogram",
            "help": "Ledger call latency in seconds",
        },
        "merkledrop_ledger_call_failures_total": {
            "type": "counter",
            "help": "Failed ledger calls, by stage",
        },
        "merkledrop_uptime_seconds": {
            "type": "counter",
            "help": "Coordinator uptime in seconds",
        },
    }

    def __init__(self, coordinator: "ClaimCoordinator"):
        """
        Initialize metrics collector.

        Args:
            coordinator: ClaimCoordinator to collect gauges from
        """
        self.coordinator = coordinator
        self._start_time = time.time()

        self._claims_started = 0
        self._claims_completed = 0
        self._rolled_back: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)
        self._ledger_failures: Dict[str, int] = defaultdict(int)

        self._latency_counts = {b: 0 for b in LATENCY_BUCKETS}
        self._latency_sum = 0.0
        self._latency_count = 0

    def record_claim_started(self) -> None:
        self._claims_started += 1

    def record_rejection(self, reason: str) -> None:
        self._rejections[reason] += 1

    def record_terminal(self, saga: "ClaimSaga") -> None:
        """Record a saga that reached completed or rolled_back."""
        if saga.succeeded:
            self._claims_completed += 1
        elif saga.rolled_back:
            stage = saga.error.stage if saga.error else "unknown"
            self._rolled_back[stage] += 1

    def record_ledger_call(self, stage: str, latency_seconds: float, ok: bool = True) -> None:
        """Record one ledger call's latency and outcome."""
        self._latency_sum += latency_seconds
        self._latency_count += 1
        for bucket in LATENCY_BUCKETS:
            if latency_seconds <= bucket:
                self._latency_counts[bucket] += 1
        if not ok:
            self._ledger_failures[stage] += 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float):
            header(name)
            lines.append(f"{name} {value}")

        def add_labelled(name: str, label: str, values: Dict[str, int]):
            header(name)
            for key in sorted(values):
                lines.append(f'{name}{{{label}="{key}"}} {values[key]}')

        try:
            add_metric("merkledrop_claims_started_total", self._claims_started)
            add_metric("merkledrop_claims_completed_total", self._claims_completed)
            add_labelled("merkledrop_claims_rolled_back_total", "stage", self._rolled_back)
            add_labelled("merkledrop_claims_rejected_total", "reason", self._rejections)
            add_labelled("merkledrop_ledger_call_failures_total", "stage", self._ledger_failures)

            add_metric("merkledrop_sagas_in_flight", len(self.coordinator.in_flight()))
            add_metric("merkledrop_claimed_accounts", self.coordinator.registry.claimed_count())
            add_metric("merkledrop_uptime_seconds", time.time() - self._start_time)

            if self._latency_count > 0:
                header("merkledrop_ledger_call_seconds")
                for bucket in LATENCY_BUCKETS:
                    lines.append(
                        f'merkledrop_ledger_call_seconds_bucket{{le="{bucket}"}} {self._latency_counts[bucket]}'
                    )
                lines.append(f'merkledrop_ledger_call_seconds_bucket{{le="+Inf"}} {self._latency_count}')
                lines.append(f"merkledrop_ledger_call_seconds_sum {self._latency_sum}")
                lines.append(f"merkledrop_ledger_call_seconds_count {self._latency_count}")

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        try:
            return {
                "claims_started": self._claims_started,
                "claims_completed": self._claims_completed,
                "claims_rolled_back": dict(self._rolled_back),
                "claims_rejected": dict(self._rejections),
                "ledger_call_failures": dict(self._ledger_failures),
                "ledger_calls": self._latency_count,
                "sagas_in_flight": len(self.coordinator.in_flight()),
                "claimed_accounts": self.coordinator.registry.claimed_count(),
                "merkle_root": self.coordinator.read_root(),
                "uptime_seconds": time.time() - self._start_time,
            }
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return {"error": str(e)}

    def average_ledger_latency(self) -> Optional[float]:
        if not self._latency_count:
            return None
        return self._latency_sum / self._latency_count

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._claims_started = 0
        self._claims_completed = 0
        self._rolled_back.clear()
        self._rejections.clear()
        self._ledger_failures.clear()
        self._latency_counts = {b: 0 for b in LATENCY_BUCKETS}
        self._latency_sum = 0.0
        self._latency_count = 0
