"""Conversation pattern detection.

Classifies free-form conversational text into weighted risk categories. Each
category is a ``RiskRule``: a fixed weight and an ordered list of compiled
matchers. A category is hit when any of its matchers matches, and a hit adds
the weight exactly once. Detection is pure and never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import DEFAULT_SETTINGS
from .models import (
    CheatingVerdict,
    ConversationAssessment,
    Intervention,
    ResponseRiskVerdict,
    RiskAction,
    RiskLevel,
    RiskVerdict,
)

logger = logging.getLogger(__name__)

MAX_MATCHES_REPORTED = 3

IMMEDIATE_SEARCH_SCORE = 6
VERIFY_SCORE = 3
MONITOR_SCORE = 1
RESPONSE_INTERVENTION_SCORE = 4
CHEATING_INTERVENTION_SCORE = 5

# Behavioural signal: too many quality checks in a short window.
HISTORY_WINDOW = 5
HISTORY_MIN_QUALITY_CALLS = 3
HISTORY_WEIGHT = 2
HISTORY_FLAG = "frequent_quality_checks"


@dataclass(frozen=True)
class RiskRule:
    name: str
    label: str
    weight: int
    matchers: tuple[re.Pattern, ...]

    def find(self, text: str) -> list[str]:
        """Return up to MAX_MATCHES_REPORTED matched snippets, in matcher order."""
        found: list[str] = []
        for matcher in self.matchers:
            for match in matcher.finditer(text):
                found.append(match.group(0))
                if len(found) >= MAX_MATCHES_REPORTED:
                    return found
        return found


def _rule(name: str, label: str, weight: int, *patterns: str) -> RiskRule:
    return RiskRule(name, label, weight, tuple(re.compile(p, re.IGNORECASE) for p in patterns))


RISK_RULES: tuple[RiskRule, ...] = (
    _rule(
        "uncertainty", "Uncertainty", 2,
        r"\b(?:I think|I believe|I assume|probably|might be|could be|seems like|appears to)\b",
        r"\b(?:based on my knowledge|from what I know|as far as I know|typically|usually)\b",
        r"\b(?:should|would|may|might|likely to) work\b",
    ),
    _rule(
        "research_intent", "Research intent", 3,
        r"\b(?:how to|how can I|what is the best way|best practices?|latest approach)\b",
        r"\b(?:search for|look up|find information|research|investigate)\b",
        r"\b(?:current status|latest version|recent updates|newest)\b",
    ),
    _rule(
        "help_seeking", "Help seeking", 2,
        r"\b(?:help me|can you help|I need help|assist me|guide me)\b",
        r"(?:\bI'm stuck\b|\bI'm confused\b|\bI don't know\b|\bnot sure\b|\buncertain\b)",
        r"\b(?:what should I do|how do I|where do I start)\b",
    ),
    _rule(
        "technical_problem", "Technical problem", 3,
        r"\b(?:errors?|bugs?|issues?|problems?|fail(?:s|ed|ing|ure)?|crash(?:es|ed)?|broken|not working)\b",
        r"\b(?:exceptions?|timeouts?|connection|performance|slow|memory)\b",
        r"\b(?:deprecated|outdated|legacy|compatibility|version conflict)\b",
    ),
    _rule(
        "time_sensitivity", "Time sensitivity", 2,
        r"\b(?:urgent|asap|quickly|immediately|right now|deadline)\b",
        r"\b(?:latest|newest|current|recent|up-to-date|modern)\b",
        r"\b(?:this year|recently|just released|new version)\b",
    ),
)

RESPONSE_RISK_RULES: tuple[RiskRule, ...] = (
    _rule(
        "overconfidence", "Overconfidence", 3,
        r"\b(?:perfectly fine|no problems?|simple fix|easy solution|straightforward)\b",
        r"\b(?:definitely|certainly|obviously|clearly|without doubt)\b",
    ),
    _rule(
        "assumptions", "Assumptions", 2,
        r"\b(?:I assume|assuming|presumably|likely|probably)\b",
        r"\b(?:should be|would be|might be|could be)\b",
    ),
    _rule(
        "outdated_references", "Outdated references", 2,
        r"\b(?:in the past|traditionally|historically|old version)\b",
        r"\b(?:before 20\d\d|legacy)\b",
    ),
    _rule(
        "vague_statements", "Vague statements", 1,
        r"\b(?:somehow|somewhere|various|multiple|several)\b",
        r"\b(?:in some way|to some extent|kind of|sort of)\b",
    ),
)

CHEATING_RULES: tuple[RiskRule, ...] = (
    _rule(
        "score_manipulation", "Score manipulation", 3,
        r"\b(?:improve|increase|boost|raise)\b.*\b(?:score|rating|coverage|quality)\b",
        r"\bquality score\b.*\b(?:better|higher)\b|\bscore\b.*\bhigher\b",
        r"\bfor (?:a |the )?(?:better |higher )?score\b|\bto get\b.*\bpoints\b",
    ),
    _rule(
        "file_forging", "File forging", 4,
        r"\bcreate\b.*\btest\b.*\bimprove\b|\badd\b.*\btests?\b.*\bcoverage\b",
        r"\bcreate\b.*\b(?:empty|blank|dummy)\b.*\bfiles?\b|\bdummy\b.*\bfiles?\b",
        r"\b(?:fake|stub(?:bed)?)\b.*\bimplementation\b|\bplaceholder\b.*\bcode\b",
    ),
    _rule(
        "blind_refactoring", "Blind refactoring", 3,
        r"\brefactor\b.*\bcomplex\b.*\bfunctions?\b|\bsimplify\b.*\bfunctions?\b",
        r"\b(?:reduce|lower)\b.*\bcomplexity\b",
        r"\bmodify\b.*\bunrelated\b.*\bcode\b",
    ),
    _rule(
        "loop_retry", "Retry loop", 2,
        r"\b(?:run|try)\b.*\bagain\b",
        r"\brepeat(?:ed)?\b.*\bcalls?\b|\bcall\b.*\bmultiple\b.*\btimes\b",
    ),
    _rule(
        "surface_fix", "Surface fix", 2,
        r"\bsurface\b.*\bfix\b|\bcosmetic\b.*\bchanges?\b",
        r"\bsimple\b.*\bchange\b|\bquick\b.*\bfix\b",
        r"\bjust\b.*\bmodify\b|\bonly\b.*\bneed\b.*\bto\b",
    ),
)


def _evaluate(rules: Sequence[RiskRule], text: object) -> tuple[dict[str, bool], int, list[str]]:
    # Cues may be split across lines or arrive as non-string payloads.
    text = "" if text is None else " ".join(str(text).split())
    flags = {rule.name: False for rule in rules}
    score = 0
    detected: list[str] = []
    for rule in rules:
        found = rule.find(text)
        if found:
            flags[rule.name] = True
            score += rule.weight
            detected.append(f"{rule.label}: {', '.join(found)}")
    return flags, score, detected


def recommend_action(score: int, flags: dict[str, bool]) -> RiskAction:
    """Map a general risk score to a recommended action."""
    if score >= IMMEDIATE_SEARCH_SCORE or (flags.get("research_intent") and flags.get("technical_problem")):
        return RiskAction.IMMEDIATE_SEARCH
    if score >= VERIFY_SCORE:
        return RiskAction.VERIFY
    if score >= MONITOR_SCORE:
        return RiskAction.MONITOR
    return RiskAction.NONE


class PatternDetector:
    """Scores conversational text against the risk rule tables."""

    def __init__(self, quality_tool_names: Optional[Sequence[str]] = None):
        names = quality_tool_names if quality_tool_names is not None else DEFAULT_SETTINGS["qualityToolNames"]
        self.quality_tool_names = [n.lower() for n in names]

    def detect(self, text: Optional[str]) -> RiskVerdict:
        """Classify *text* into the general risk categories."""
        flags, score, detected = _evaluate(RISK_RULES, text)
        action = recommend_action(score, flags)
        return RiskVerdict(
            flags=flags,
            score=score,
            detected_patterns=detected,
            intervention_required=action == RiskAction.IMMEDIATE_SEARCH,
            recommended_action=action,
        )

    def detect_response_risks(self, text: Optional[str]) -> ResponseRiskVerdict:
        """Flag overconfident or vague statements in an AI response."""
        flags, score, detected = _evaluate(RESPONSE_RISK_RULES, text)
        return ResponseRiskVerdict(
            flags=flags,
            score=score,
            detected_patterns=detected,
            intervention_required=score >= RESPONSE_INTERVENTION_SCORE,
        )

    def detect_cheating(
        self,
        text: Optional[str],
        tool_call_history: Optional[Sequence[str]] = None,
    ) -> CheatingVerdict:
        """Detect language and behaviour that games a quality score.

        Args:
            text: Conversation text to scan.
            tool_call_history: Names of recent tool calls, oldest first. Only
                the last HISTORY_WINDOW entries are considered.

        Returns:
            CheatingVerdict with intervention_required set at score >= 5.
        """
        flags, score, detected = _evaluate(CHEATING_RULES, text)

        quality_calls = self._count_quality_calls(tool_call_history or [])
        flags[HISTORY_FLAG] = quality_calls >= HISTORY_MIN_QUALITY_CALLS
        if flags[HISTORY_FLAG]:
            score += HISTORY_WEIGHT
            detected.append(
                f"Frequent quality checks: {quality_calls} of the last {HISTORY_WINDOW} tool calls"
            )

        verdict = CheatingVerdict(
            flags=flags,
            score=score,
            detected_patterns=detected,
            intervention_required=score >= CHEATING_INTERVENTION_SCORE,
        )
        if verdict.intervention_required:
            logger.warning("Quality cheating detected (score=%d): %s", score, "; ".join(detected))
        return verdict

    def _count_quality_calls(self, history: Sequence[str]) -> int:
        recent = [str(name).lower() for name in list(history)[-HISTORY_WINDOW:]]
        return sum(1 for name in recent if any(marker in name for marker in self.quality_tool_names))

    def assess(
        self,
        user_input: Optional[str] = "",
        ai_response: Optional[str] = "",
        conversation_history: Optional[Sequence[str]] = None,
        tool_call_history: Optional[Sequence[str]] = None,
    ) -> ConversationAssessment:
        """Combine all three verdicts. Cheating prevention always wins."""
        history_text = " ".join(str(h) for h in conversation_history or [])
        conversation_text = " ".join(str(t) for t in (history_text, user_input) if t)

        risk = self.detect(conversation_text)
        response_risk = self.detect_response_risks(ai_response)
        cheating = self.detect_cheating(" ".join(str(t) for t in (conversation_text, ai_response) if t), tool_call_history)

        if cheating.intervention_required:
            return ConversationAssessment(
                risk=risk,
                response_risk=response_risk,
                cheating=cheating,
                overall_risk=RiskLevel.CRITICAL,
                intervention=Intervention.PREVENT_CHEATING,
                reason="Quality cheating behaviour detected: " + "; ".join(cheating.detected_patterns),
            )

        total = risk.score + response_risk.score
        if total >= 8 or response_risk.intervention_required:
            level, intervention = RiskLevel.CRITICAL, Intervention.FORCE_SEARCH
            reason = "High-risk response; verify with current sources before acting"
        elif total >= 5 or risk.recommended_action == RiskAction.IMMEDIATE_SEARCH:
            level, intervention = RiskLevel.HIGH, Intervention.FORCE_SEARCH
            reason = "Research or technical problem indicators; search before answering"
        elif total >= 3 or risk.recommended_action == RiskAction.VERIFY:
            level, intervention = RiskLevel.MEDIUM, Intervention.VERIFY
            reason = "Moderate risk; verify key claims"
        elif total >= 1:
            level, intervention = RiskLevel.LOW, Intervention.MONITOR
            reason = "Low risk; keep monitoring"
        else:
            level, intervention = RiskLevel.LOW, Intervention.NONE
            reason = "No risk indicators"

        return ConversationAssessment(
            risk=risk,
            response_risk=response_risk,
            cheating=cheating,
            overall_risk=level,
            intervention=intervention,
            reason=reason,
        )


_detector: Optional[PatternDetector] = None


def get_detector() -> PatternDetector:
    """Get or create the module-level detector with default tool names."""
    global _detector
    if _detector is None:
        _detector = PatternDetector()
    return _detector
