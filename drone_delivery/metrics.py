"""
Prometheus metrics: orders placed, status transitions, drone assignments / conflicts / releases.
"""
from prometheus_client import Counter, generate_latest

orders_placed_total = Counter(
    "orders_placed_total",
    "Total orders created by customers",
)

order_status_transitions_total = Counter(
    "order_status_transitions_total",
    "Total order status writes, by previous and new status",
    ["from_status", "to_status"],
)

# Dispatch: exclusivity outcomes
drone_assignments_total = Counter(
    "drone_assignments_total",
    "Total successful drone-to-order assignments",
)
drone_assignment_conflicts_total = Counter(
    "drone_assignment_conflicts_total",
    "Total assignment attempts rejected because the drone or order was already bound",
)
drone_releases_total = Counter(
    "drone_releases_total",
    "Total drones returned to AVAILABLE on delivery",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
