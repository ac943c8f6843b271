"""Prometheus metrics for push connections and message fan-out."""

from prometheus_client import Counter, Gauge, Histogram

realtime_connections_active = Gauge(
    "polychat_realtime_connections_active",
    "Currently registered push connections",
)

realtime_connections_total = Counter(
    "polychat_realtime_connections_total",
    "Push connection lifecycle events",
    ["event"],
)

broadcast_deliveries_total = Counter(
    "polychat_broadcast_deliveries_total",
    "Frames pushed to connections by scope and result",
    ["scope", "result"],
)

messages_sent_total = Counter(
    "polychat_messages_sent_total",
    "Messages accepted by the fan-out service by final state",
    ["state"],
)

recipient_renderings_total = Counter(
    "polychat_recipient_renderings_total",
    "Per-recipient renderings by kind",
    ["kind"],
)

fanout_duration_seconds = Histogram(
    "polychat_fanout_duration_seconds",
    "Time from persistence to all recipient units settling",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)
