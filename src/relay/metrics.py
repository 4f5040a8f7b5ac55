"""Prometheus-compatible metrics for relay observability.

Tracks connection churn, inbound frame outcomes and fan-out delivery in
memory and renders them in Prometheus exposition format for the /metrics
endpoint. One RelayMetrics instance is created by the server and passed to
the components that record into it.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

METRIC_PREFIX = "relay_"


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter.

        Args:
            amount: Amount to increment by (default: 1.0)
        """
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        """Set gauge value."""
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class RelayMetrics:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}

        self._init_connection_metrics()
        self._init_frame_metrics()
        self._init_broadcast_metrics()

    def _init_connection_metrics(self) -> None:
        """Initialize connection lifecycle metrics."""
        self._counters["connections_total"] = Counter(
            name="connections_total",
            help="Total number of sessions opened",
        )
        self._counters["disconnections_total"] = Counter(
            name="disconnections_total",
            help="Total number of sessions closed",
        )
        self._gauges["active_sessions"] = Gauge(
            name="active_sessions",
            help="Number of sessions currently registered",
        )

    def _init_frame_metrics(self) -> None:
        """Initialize inbound frame metrics."""
        self._counters["frames_received_total"] = Counter(
            name="frames_received_total",
            help="Total number of inbound frames",
        )
        self._counters["frames_malformed_total"] = Counter(
            name="frames_malformed_total",
            help="Inbound frames discarded because they could not be decoded",
        )
        self._counters["frames_dropped_total"] = Counter(
            name="frames_dropped_total",
            help="Inbound frames dropped for an unknown type or sender",
        )

    def _init_broadcast_metrics(self) -> None:
        """Initialize fan-out delivery metrics."""
        self._counters["messages_broadcast_total"] = Counter(
            name="messages_broadcast_total",
            help="Total number of messages handed to the broadcast engine",
        )
        self._counters["send_failures_total"] = Counter(
            name="send_failures_total",
            help="Per-recipient send failures during fan-out",
        )

    # === Connection metrics ===

    def record_session_open(self) -> None:
        with self._lock:
            self._counters["connections_total"].inc()
            self._gauges["active_sessions"].inc()

    def record_session_close(self) -> None:
        with self._lock:
            self._counters["disconnections_total"].inc()
            self._gauges["active_sessions"].dec()

    # === Frame metrics ===

    def record_frame_received(self) -> None:
        with self._lock:
            self._counters["frames_received_total"].inc()

    def record_frame_malformed(self) -> None:
        with self._lock:
            self._counters["frames_malformed_total"].inc()

    def record_frame_dropped(self) -> None:
        with self._lock:
            self._counters["frames_dropped_total"].inc()

    # === Broadcast metrics ===

    def record_broadcast(self, failures: int = 0) -> None:
        """Record one fan-out and its per-recipient failures.

        Args:
            failures: Number of recipients whose send failed
        """
        with self._lock:
            self._counters["messages_broadcast_total"].inc()
            if failures:
                self._counters["send_failures_total"].inc(failures)

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                name = METRIC_PREFIX + counter.name
                lines.append(f"# HELP {name} {counter.help}")
                lines.append(f"# TYPE {name} counter")
                lines.append(f"{name}{self._format_labels(counter.labels)} {counter.value}")

            for gauge in self._gauges.values():
                name = METRIC_PREFIX + gauge.name
                lines.append(f"# HELP {name} {gauge.help}")
                lines.append(f"# TYPE {name} gauge")
                lines.append(f"{name}{self._format_labels(gauge.labels)} {gauge.value}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output.

        Returns:
            Formatted label string (e.g., '{label1="value1",label2="value2"}')
        """
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    def get_summary(self) -> dict[str, float]:
        """Get current metric values keyed by metric name."""
        with self._lock:
            summary = {name: counter.value for name, counter in self._counters.items()}
            summary.update({name: gauge.value for name, gauge in self._gauges.items()})
            return summary
