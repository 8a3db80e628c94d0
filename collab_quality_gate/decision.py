"""Quality improvement decisions.

Classifies an issue along three axes (problem type, functional impact,
improvement necessity) and reads the strategy off STRATEGY_TABLE. A cheating
verdict that requires intervention overrides everything and yields NO_ACTION.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import (
    CheatingVerdict,
    Decision,
    FunctionalImpact,
    ImprovementNecessity,
    NextStep,
    ProblemType,
    Strategy,
    WorkflowContinuation,
)
from .patterns import PatternDetector

logger = logging.getLogger(__name__)

ACCEPTABLE_SCORE = 70
CRITICAL_SCORE = 40
MIN_DESCRIPTION_LENGTH = 10

_IF = Strategy.IMMEDIATE_FIX
_GR = Strategy.GRADUAL_REFACTOR
_MON = Strategy.MONITOR_ONLY
_NO = Strategy.NO_ACTION

IMPACT_ORDER = (
    FunctionalImpact.NONE,
    FunctionalImpact.LOW,
    FunctionalImpact.HIGH,
    FunctionalImpact.BREAKING,
)

# (problem type, necessity) -> strategy for each impact in IMPACT_ORDER.
# HIGH and BREAKING impact never map to a fix strategy.
STRATEGY_TABLE: dict[tuple[ProblemType, ImprovementNecessity], tuple[Strategy, ...]] = {
    (ProblemType.REAL_ISSUE, ImprovementNecessity.CRITICAL): (_IF, _IF, _MON, _MON),
    (ProblemType.REAL_ISSUE, ImprovementNecessity.BENEFICIAL): (_GR, _GR, _MON, _NO),
    (ProblemType.REAL_ISSUE, ImprovementNecessity.OPTIONAL): (_GR, _MON, _MON, _NO),
    (ProblemType.REAL_ISSUE, ImprovementNecessity.UNNECESSARY): (_NO, _NO, _NO, _NO),
    (ProblemType.TOOL_ARTIFACT, ImprovementNecessity.CRITICAL): (_NO, _NO, _NO, _NO),
    (ProblemType.TOOL_ARTIFACT, ImprovementNecessity.BENEFICIAL): (_NO, _NO, _NO, _NO),
    (ProblemType.TOOL_ARTIFACT, ImprovementNecessity.OPTIONAL): (_NO, _NO, _NO, _NO),
    (ProblemType.TOOL_ARTIFACT, ImprovementNecessity.UNNECESSARY): (_NO, _NO, _NO, _NO),
    (ProblemType.ACCEPTABLE_COMPLEXITY, ImprovementNecessity.CRITICAL): (_IF, _GR, _MON, _MON),
    (ProblemType.ACCEPTABLE_COMPLEXITY, ImprovementNecessity.BENEFICIAL): (_GR, _MON, _MON, _NO),
    (ProblemType.ACCEPTABLE_COMPLEXITY, ImprovementNecessity.OPTIONAL): (_MON, _MON, _MON, _NO),
    (ProblemType.ACCEPTABLE_COMPLEXITY, ImprovementNecessity.UNNECESSARY): (_NO, _NO, _NO, _NO),
    (ProblemType.BUSINESS_LOGIC, ImprovementNecessity.CRITICAL): (_IF, _GR, _MON, _MON),
    (ProblemType.BUSINESS_LOGIC, ImprovementNecessity.BENEFICIAL): (_MON, _MON, _MON, _NO),
    (ProblemType.BUSINESS_LOGIC, ImprovementNecessity.OPTIONAL): (_MON, _MON, _MON, _NO),
    (ProblemType.BUSINESS_LOGIC, ImprovementNecessity.UNNECESSARY): (_NO, _NO, _NO, _NO),
}

_TOOL_ARTIFACT_RE = re.compile(
    r"\bfalse[- ]positives?\b|\btool artifacts?\b|\blinter (?:noise|bug)\b|\bspurious (?:warning|finding)s?\b",
    re.IGNORECASE,
)
_BUSINESS_LOGIC_RE = re.compile(r"\bbusiness (?:logic|rules?|requirements?)\b|\bdomain rules?\b", re.IGNORECASE)
_HIGH_IMPACT_RE = re.compile(r"\b(?:core|main)\b", re.IGNORECASE)
_BREAKING_RE = re.compile(r"\bbreaking\b|\bpublic api\b|\bbackwards?[- ]incompatible\b", re.IGNORECASE)
_COSMETIC_RE = re.compile(r"\b(?:cosmetic|whitespace|formatting|typo|rename (?:a )?variable)\b", re.IGNORECASE)
_CRITICAL_RE = re.compile(
    r"\b(?:security|vulnerab\w*|injection|crash(?:es|ing)?|data loss|corrupt\w*)\b",
    re.IGNORECASE,
)

RECOMMENDED_ACTIONS = {
    Strategy.IMMEDIATE_FIX: [
        "Fix the issue now with a minimal, targeted change",
        "Write a failing test before the fix",
    ],
    Strategy.GRADUAL_REFACTOR: [
        "Plan the refactor as small, independently verified steps",
        "Run the full test suite after each step",
    ],
    Strategy.MONITOR_ONLY: [
        "Track the quality metrics over time",
        "Avoid unnecessary code changes",
    ],
    Strategy.NO_ACTION: [
        "No code change is needed",
        "Current code quality is acceptable",
    ],
}


def lookup_strategy(
    problem_type: ProblemType,
    impact: FunctionalImpact,
    necessity: ImprovementNecessity,
) -> Strategy:
    """Strategy for a classification triple. Raises KeyError only if the table is incomplete."""
    return STRATEGY_TABLE[(problem_type, necessity)][IMPACT_ORDER.index(impact)]


def classify_problem(description: str, current_score: Optional[float]) -> ProblemType:
    if _TOOL_ARTIFACT_RE.search(description):
        return ProblemType.TOOL_ARTIFACT
    if current_score is not None and current_score >= ACCEPTABLE_SCORE:
        return ProblemType.ACCEPTABLE_COMPLEXITY
    if _BUSINESS_LOGIC_RE.search(description):
        return ProblemType.BUSINESS_LOGIC
    return ProblemType.REAL_ISSUE


def classify_impact(description: str, proposed_action: str) -> FunctionalImpact:
    text = f"{description} {proposed_action}"
    if _BREAKING_RE.search(text):
        return FunctionalImpact.BREAKING
    if _HIGH_IMPACT_RE.search(proposed_action):
        return FunctionalImpact.HIGH
    if _COSMETIC_RE.search(text):
        return FunctionalImpact.NONE
    return FunctionalImpact.LOW


def classify_necessity(
    problem_type: ProblemType,
    description: str,
    current_score: Optional[float],
) -> ImprovementNecessity:
    if problem_type == ProblemType.TOOL_ARTIFACT:
        return ImprovementNecessity.UNNECESSARY
    if len(description.strip()) < MIN_DESCRIPTION_LENGTH:
        # Too little to go on; stay conservative.
        return ImprovementNecessity.OPTIONAL
    if problem_type == ProblemType.ACCEPTABLE_COMPLEXITY:
        # An acceptable score caps necessity, whatever the wording.
        return ImprovementNecessity.OPTIONAL
    if _CRITICAL_RE.search(description) or (current_score is not None and current_score < CRITICAL_SCORE):
        return ImprovementNecessity.CRITICAL
    return ImprovementNecessity.BENEFICIAL


def assess_risk(impact: FunctionalImpact, strategy: Strategy) -> str:
    if impact in (FunctionalImpact.HIGH, FunctionalImpact.BREAKING) or strategy == Strategy.NO_ACTION:
        return "High risk: proceed with care"
    if impact == FunctionalImpact.LOW:
        return "Medium risk: verify changes appropriately"
    return "Low risk: relatively safe"


def preventive_constraints(strategy: Strategy, impact: FunctionalImpact) -> list[str]:
    constraints = [
        "Do not change code only to raise a quality score",
        "Every improvement must be covered by a verifying test",
    ]
    if impact in (FunctionalImpact.HIGH, FunctionalImpact.BREAKING):
        constraints.append("High-impact changes need additional safety verification")
    if strategy == Strategy.NO_ACTION:
        constraints.append("No code modifications are permitted")
    return constraints


class DecisionEngine:
    """Maps an issue to an improvement strategy. Deterministic and never raises."""

    def __init__(self, detector: Optional[PatternDetector] = None):
        self.detector = detector or PatternDetector()

    def decide(
        self,
        issue_description: Optional[str],
        proposed_action: Optional[str],
        current_score: Optional[float] = None,
        cheating_verdict: Optional[CheatingVerdict] = None,
        conversation_context: Optional[str] = None,
        tool_call_history: Optional[list[str]] = None,
    ) -> Decision:
        """Decide how to respond to a quality issue.

        Args:
            issue_description: What the analyzer or agent reported.
            proposed_action: What the agent intends to do about it.
            current_score: Current health score, if known.
            cheating_verdict: A verdict from the pattern detector. When it
                requires intervention, the result is always NO_ACTION.
            conversation_context: Raw conversation text. Scanned for cheating
                when no verdict is supplied.
            tool_call_history: Recent tool-call names for the cheating scan.

        Returns:
            A fully populated Decision.
        """
        description = issue_description or ""
        action = proposed_action or ""

        if cheating_verdict is None and (conversation_context or tool_call_history):
            cheating_verdict = self.detector.detect_cheating(conversation_context, tool_call_history)

        if cheating_verdict is not None and cheating_verdict.intervention_required:
            problem_type, impact, necessity = self._classify(description, action, current_score)
            patterns = "; ".join(cheating_verdict.detected_patterns) or "unspecified patterns"
            logger.warning("Cheating override applied: %s", patterns)
            return Decision(
                problem_type=problem_type,
                functional_impact=impact,
                improvement_necessity=necessity,
                strategy=Strategy.NO_ACTION,
                reasoning=(
                    f"Quality cheating detected (score {cheating_verdict.score}): {patterns}. "
                    "Improvements aimed at the score rather than the code are refused."
                ),
                risk_assessment=assess_risk(impact, Strategy.NO_ACTION),
                recommended_actions=[
                    "Stop and restate the real functional problem",
                    "Improve behaviour and tests, not the score",
                ],
                preventive_constraints=preventive_constraints(Strategy.NO_ACTION, impact)
                + ["Do not create placeholder or empty files to satisfy quality checks"],
                cheating_prevented=True,
            )

        problem_type, impact, necessity = self._classify(description, action, current_score)
        strategy = lookup_strategy(problem_type, impact, necessity)
        logger.info(
            "Decision: %s (type=%s, impact=%s, necessity=%s)",
            strategy.value,
            problem_type.value,
            impact.value,
            necessity.value,
        )
        return Decision(
            problem_type=problem_type,
            functional_impact=impact,
            improvement_necessity=necessity,
            strategy=strategy,
            reasoning=(
                f"Problem type: {problem_type.value}, functional impact: {impact.value}, "
                f"improvement necessity: {necessity.value}"
            ),
            risk_assessment=assess_risk(impact, strategy),
            recommended_actions=list(RECOMMENDED_ACTIONS[strategy]),
            preventive_constraints=preventive_constraints(strategy, impact),
        )

    @staticmethod
    def _classify(
        description: str,
        action: str,
        current_score: Optional[float],
    ) -> tuple[ProblemType, FunctionalImpact, ImprovementNecessity]:
        try:
            problem_type = classify_problem(description, current_score)
            impact = classify_impact(description, action)
            necessity = classify_necessity(problem_type, description, current_score)
        except Exception as e:
            logger.warning("Classification failed, falling back to monitor only: %s", e)
            return ProblemType.REAL_ISSUE, FunctionalImpact.LOW, ImprovementNecessity.OPTIONAL
        return problem_type, impact, necessity


def next_step(decision: Decision) -> WorkflowContinuation:
    """Tell the task workflow what to do with a decision."""
    if decision.cheating_prevented:
        return WorkflowContinuation(
            should_continue=False,
            next_step=NextStep.STOP,
            reason="Quality cheating prevented; restate the real problem before continuing",
        )
    if decision.strategy == Strategy.NO_ACTION:
        return WorkflowContinuation(
            should_continue=True,
            next_step=NextStep.PROCEED,
            reason="No improvement needed; continue with the next task",
        )
    if decision.strategy == Strategy.MONITOR_ONLY:
        return WorkflowContinuation(
            should_continue=True,
            next_step=NextStep.VERIFY,
            reason="Verify the task and keep monitoring quality",
        )
    return WorkflowContinuation(
        should_continue=False,
        next_step=NextStep.PLAN_FIX,
        reason=f"Plan the {decision.strategy.value.replace('_', ' ')} before continuing",
    )
