"""Health score calculation.

score = 100 * exp(-DECAY * total_weight) * metrics_factor

Each violation weighs its kind weight (error 3, warning 2, info 1) scaled by
severity. The exponential keeps early defects expensive and long tails of
similar defects cheap. The metrics factor is bounded to [0.72, 1] and only
applies once there is at least one violation, so a clean file set is always
100 regardless of its metrics.
"""

import math
from typing import Iterable, Optional

from .models import FileMetrics, HealthScore, Violation, ViolationKind

DECAY = 0.1

KIND_WEIGHTS = {
    ViolationKind.ERROR: 3.0,
    ViolationKind.WARNING: 2.0,
    ViolationKind.INFO: 1.0,
}

LOW_MAINTAINABILITY = 30
LOW_MAINTAINABILITY_FACTOR = 0.8
HIGH_COMPLEXITY = 20
HIGH_COMPLEXITY_FACTOR = 0.9


def violation_weight(violation: Violation) -> float:
    """Weight of a single violation: kind weight times a severity factor."""
    severity_factor = 1 + 0.5 * (max(violation.severity, 1) - 1)
    return KIND_WEIGHTS[violation.kind] * severity_factor


def metrics_factor(metrics: Optional[FileMetrics]) -> float:
    if metrics is None or metrics.lines_of_code == 0:
        return 1.0
    factor = 1.0
    if metrics.maintainability_index < LOW_MAINTAINABILITY:
        factor *= LOW_MAINTAINABILITY_FACTOR
    if metrics.cyclomatic_complexity > HIGH_COMPLEXITY:
        factor *= HIGH_COMPLEXITY_FACTOR
    return factor


def calculate_health_score(
    violations: Iterable[Violation],
    metrics: Optional[FileMetrics] = None,
) -> HealthScore:
    """Compute the health score for a set of violations.

    Pure: identical inputs always produce identical output.
    """
    violations = list(violations)
    if not violations:
        return HealthScore(value=100, raw=100.0)

    total = sum(violation_weight(v) for v in violations)
    factor = metrics_factor(metrics)
    raw = 100.0 * math.exp(-DECAY * total) * factor
    value = int(round(min(100.0, max(0.0, raw))))
    return HealthScore(value=value, raw=raw, weighted_severity=total, metrics_factor=factor)
