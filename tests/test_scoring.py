"""Tests for the health score."""

import pytest

from collab_quality_gate.models import FileMetrics, Violation, ViolationKind
from collab_quality_gate.scoring import calculate_health_score, metrics_factor

NOMINAL = FileMetrics(
    cyclomatic_complexity=4,
    cognitive_complexity=5,
    lines_of_code=200,
    maintainability_index=80,
    function_count=10,
)

POOR = FileMetrics(
    cyclomatic_complexity=35,
    cognitive_complexity=40,
    lines_of_code=2000,
    maintainability_index=12,
    function_count=60,
)


def _violations(n, kind=ViolationKind.ERROR, severity=1):
    return [
        Violation(kind=kind, file="/src/app.py", line=i + 1, message="bad", rule="X1", severity=severity)
        for i in range(n)
    ]


@pytest.mark.parametrize("metrics", [None, NOMINAL, POOR, FileMetrics()])
def test_zero_violations_is_100(metrics):
    assert calculate_health_score([], metrics).value == 100


@pytest.mark.parametrize("n", [1, 5, 20, 200])
@pytest.mark.parametrize("metrics", [None, NOMINAL, POOR])
def test_score_bounds(n, metrics):
    for kind in ViolationKind:
        score = calculate_health_score(_violations(n, kind, severity=5), metrics)
        assert 0 <= score.value <= 100


def test_fifty_errors_scores_below_10():
    assert calculate_health_score(_violations(50), NOMINAL).value < 10


def test_monotonic_degradation():
    previous = calculate_health_score([], NOMINAL).value
    violations = []
    for i in range(40):
        violations.append(_violations(1)[0].model_copy(update={"line": i}))
        current = calculate_health_score(violations, NOMINAL).value
        assert current <= previous
        previous = current


def test_heavier_violation_never_raises_score():
    base = _violations(3, ViolationKind.WARNING)
    with_info = base + _violations(1, ViolationKind.INFO)
    with_error = base + _violations(1, ViolationKind.ERROR, severity=3)
    assert calculate_health_score(with_error).raw <= calculate_health_score(with_info).raw


@pytest.mark.parametrize("kind", list(ViolationKind))
def test_diminishing_penalty(kind):
    scores = [calculate_health_score(_violations(n, kind), NOMINAL).raw for n in range(0, 30)]
    deltas = [scores[n] - scores[n + 1] for n in range(1, len(scores) - 1)]
    for earlier, later in zip(deltas, deltas[1:]):
        assert later < earlier


def test_metrics_factor_is_bounded():
    assert metrics_factor(None) == 1.0
    assert metrics_factor(NOMINAL) == 1.0
    assert metrics_factor(POOR) == pytest.approx(0.72)
    # Unmeasured files do not adjust the score.
    assert metrics_factor(FileMetrics(maintainability_index=0, cyclomatic_complexity=99)) == 1.0


def test_poor_metrics_lower_score():
    violations = _violations(2)
    assert calculate_health_score(violations, POOR).raw < calculate_health_score(violations, NOMINAL).raw


def test_score_is_deterministic():
    violations = _violations(7, ViolationKind.WARNING, severity=2)
    assert calculate_health_score(violations, POOR) == calculate_health_score(violations, POOR)
