"""
Prometheus metrics for the scheduling engine.
"""

from prometheus_client import Counter, Histogram

DISTRIBUTIONS = Counter(
    "tetrix_distributions_total",
    "Distributions computed, by mode and outcome",
    ["mode", "outcome"],
)

CONFLICTS_DETECTED = Counter(
    "tetrix_conflicts_detected_total",
    "Conflicts detected, by type",
    ["conflict_type"],
)

SUGGESTIONS_GENERATED = Counter(
    "tetrix_suggestions_generated_total",
    "Resolution suggestions generated, by type",
    ["suggestion_type"],
)

LEDGER_WRITE_SECONDS = Histogram(
    "tetrix_ledger_write_seconds",
    "Time spent in an atomic write-then-scan unit",
)
