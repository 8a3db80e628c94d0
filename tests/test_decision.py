"""Tests for the Decision Engine."""

import itertools

import pytest

from collab_quality_gate.decision import (
    IMPACT_ORDER,
    STRATEGY_TABLE,
    DecisionEngine,
    lookup_strategy,
    next_step,
)
from collab_quality_gate.models import (
    CheatingVerdict,
    FunctionalImpact,
    ImprovementNecessity,
    NextStep,
    ProblemType,
    Strategy,
)
from collab_quality_gate.patterns import PatternDetector

ALL_TRIPLES = list(itertools.product(ProblemType, FunctionalImpact, ImprovementNecessity))

FIX_STRATEGIES = {Strategy.IMMEDIATE_FIX, Strategy.GRADUAL_REFACTOR}


def test_strategy_table_is_total():
    assert len(ALL_TRIPLES) == 64
    assert set(STRATEGY_TABLE) == set(itertools.product(ProblemType, ImprovementNecessity))
    for row in STRATEGY_TABLE.values():
        assert len(row) == len(IMPACT_ORDER)
    for problem_type, impact, necessity in ALL_TRIPLES:
        assert isinstance(lookup_strategy(problem_type, impact, necessity), Strategy)


@pytest.mark.parametrize("problem_type,impact,necessity", ALL_TRIPLES)
def test_high_impact_never_fixes(problem_type, impact, necessity):
    strategy = lookup_strategy(problem_type, impact, necessity)
    if impact in (FunctionalImpact.HIGH, FunctionalImpact.BREAKING):
        assert strategy not in FIX_STRATEGIES
    if problem_type == ProblemType.TOOL_ARTIFACT or necessity == ImprovementNecessity.UNNECESSARY:
        assert strategy == Strategy.NO_ACTION


def test_false_positive_is_tool_artifact():
    decision = DecisionEngine().decide(
        "The linter flags this as unused but it is a false positive",
        "Suppress the warning",
    )
    assert decision.problem_type == ProblemType.TOOL_ARTIFACT
    assert decision.improvement_necessity == ImprovementNecessity.UNNECESSARY
    assert decision.strategy == Strategy.NO_ACTION


def test_good_score_is_acceptable_complexity():
    decision = DecisionEngine().decide(
        "Function has several branches flagged by the analyzer",
        "Split the function into helpers",
        current_score=85,
    )
    assert decision.problem_type == ProblemType.ACCEPTABLE_COMPLEXITY
    assert decision.improvement_necessity == ImprovementNecessity.OPTIONAL
    assert decision.strategy == Strategy.MONITOR_ONLY


def test_core_subsystem_is_high_impact_monitor_only():
    decision = DecisionEngine().decide(
        "Duplicated parsing logic across handlers",
        "Rewrite the core request parser",
        current_score=55,
    )
    assert decision.functional_impact == FunctionalImpact.HIGH
    assert decision.strategy == Strategy.MONITOR_ONLY
    assert any("High-impact" in c for c in decision.preventive_constraints)


def test_security_issue_is_fixed_immediately():
    decision = DecisionEngine().decide(
        "SQL injection through an unescaped query parameter",
        "Use parameterized queries in the report endpoint",
        current_score=60,
    )
    assert decision.improvement_necessity == ImprovementNecessity.CRITICAL
    assert decision.strategy == Strategy.IMMEDIATE_FIX


def test_default_real_issue_is_gradual_refactor():
    decision = DecisionEngine().decide(
        "Long parameter lists in the export helpers",
        "Introduce a small options object",
        current_score=60,
    )
    assert decision.problem_type == ProblemType.REAL_ISSUE
    assert decision.strategy == Strategy.GRADUAL_REFACTOR


@pytest.mark.parametrize("description", ["", None, "fix", "   "])
def test_ambiguous_input_is_conservative(description):
    decision = DecisionEngine().decide(description, "")
    assert decision.strategy in (Strategy.MONITOR_ONLY, Strategy.NO_ACTION)


@pytest.mark.parametrize("problem_type,impact,necessity", ALL_TRIPLES)
def test_cheating_override_wins(problem_type, impact, necessity):
    verdict = CheatingVerdict(
        flags={"file_forging": True},
        score=7,
        detected_patterns=["File forging: create empty test file"],
        intervention_required=True,
    )
    decision = DecisionEngine().decide(
        f"security crash in {problem_type.value} {necessity.value}",
        f"rewrite {impact.value} module",
        current_score=10,
        cheating_verdict=verdict,
    )
    assert decision.strategy == Strategy.NO_ACTION
    assert decision.cheating_prevented
    assert "File forging" in decision.reasoning


def test_cheating_verdict_without_intervention_does_not_override():
    verdict = CheatingVerdict(score=2, intervention_required=False)
    decision = DecisionEngine().decide(
        "SQL injection through an unescaped query parameter",
        "Use parameterized queries",
        current_score=60,
        cheating_verdict=verdict,
    )
    assert decision.strategy == Strategy.IMMEDIATE_FIX


def test_forged_test_file_end_to_end():
    detector = PatternDetector()
    verdict = detector.detect_cheating("create empty test file to improve coverage")
    assert verdict.intervention_required

    decision = DecisionEngine(detector).decide(
        "Coverage below threshold",
        "Add a test file",
        current_score=45,
        cheating_verdict=verdict,
    )
    assert decision.strategy == Strategy.NO_ACTION


def test_conversation_context_is_scanned_when_no_verdict():
    decision = DecisionEngine().decide(
        "Coverage below threshold",
        "Add a test file",
        conversation_context="create empty test file to improve coverage",
    )
    assert decision.strategy == Strategy.NO_ACTION
    assert decision.cheating_prevented


def test_decision_is_fully_populated():
    decision = DecisionEngine().decide("Long parameter lists in the export helpers", "Refactor")
    assert decision.reasoning
    assert decision.risk_assessment
    assert decision.recommended_actions
    assert decision.preventive_constraints


def test_next_step():
    engine = DecisionEngine()
    no_action = engine.decide("this is a false positive from the tool", "ignore it")
    assert next_step(no_action).next_step == NextStep.PROCEED

    monitor = engine.decide("Function has many branches", "Split it", current_score=90)
    assert next_step(monitor).next_step == NextStep.VERIFY

    fix = engine.decide("SQL injection in the search endpoint", "Parameterize the query", current_score=50)
    continuation = next_step(fix)
    assert continuation.next_step == NextStep.PLAN_FIX
    assert not continuation.should_continue


def test_acceptable_score_caps_necessity():
    decision = DecisionEngine().decide(
        "Occasional crash in the report exporter",
        "Add a guard",
        current_score=85,
    )
    assert decision.problem_type == ProblemType.ACCEPTABLE_COMPLEXITY
    assert decision.improvement_necessity == ImprovementNecessity.OPTIONAL
    assert decision.strategy == Strategy.MONITOR_ONLY
