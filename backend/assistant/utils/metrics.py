"""Prometheus metrics for the chat pipeline."""

from prometheus_client import Counter, Histogram

# External collaborator calls (model, blob store, extraction)
external_call_latency_ms = Histogram(
    "external_call_latency_ms",
    "External call latency in milliseconds",
    ["call", "outcome"],
    buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
)

external_call_errors_total = Counter(
    "external_call_errors_total",
    "Total external call errors",
    ["call", "reason"],
)

# Pipeline stages
chat_intents_total = Counter(
    "chat_intents_total",
    "Detected message intents",
    ["intent"],
)

extraction_failures_total = Counter(
    "extraction_failures_total",
    "Document extraction failures",
    ["category"],
)

context_fragments_total = Counter(
    "context_fragments_total",
    "Resolved document representations injected into model context",
    ["representation"],
)

command_outcomes_total = Counter(
    "command_outcomes_total",
    "Command execution outcomes",
    ["command", "outcome"],
)


class PrometheusCallMetrics:
    """Prometheus-based external call metrics implementation."""

    def record_latency(self, call: str, outcome: str, latency_ms: float) -> None:
        """Record external call latency."""
        external_call_latency_ms.labels(call=call, outcome=outcome).observe(latency_ms)

    def inc_error(self, call: str, reason: str) -> None:
        """Increment error counter."""
        external_call_errors_total.labels(call=call, reason=reason).inc()
