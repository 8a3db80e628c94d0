"""Quality gate orchestration: conversation risk, analysis, decision, cleanup."""

import logging
from pathlib import Path
from typing import Optional

from .analyzer import MetricsInput, QualityAnalyzer, resolve_path
from .cleanup import CleanupManager, Deadline
from .config import get_quality_tool_names, get_thresholds
from .decision import DecisionEngine, next_step
from .models import (
    AnalysisReport,
    CheckStatus,
    CleanupMode,
    Decision,
    GateReport,
    LayoutFinding,
    NextStep,
    Strategy,
    TaskDescriptor,
    Violation,
    WorkflowContinuation,
)
from .patterns import PatternDetector
from .tools.linting import collect_violations

logger = logging.getLogger(__name__)


def _cleanup_mode_for(strategy: Strategy, requested: CleanupMode) -> Optional[CleanupMode]:
    """Cleanup mode implied by a strategy, or None for no cleanup."""
    if strategy == Strategy.NO_ACTION:
        return None
    if strategy == Strategy.MONITOR_ONLY:
        return CleanupMode.ANALYSIS_ONLY
    return requested


def _describe_issue(analysis: AnalysisReport) -> str:
    """Build an issue description from the failing checks."""
    problems = [
        f"{c.category}: {c.message}" for c in analysis.checks if c.status != CheckStatus.PASS
    ]
    if not problems:
        return f"No failing checks; health score {analysis.health_score.value}/100"
    return "; ".join(problems)


def _continuation(
    analysis: Optional[AnalysisReport],
    decision: Decision,
    findings: list[LayoutFinding],
) -> WorkflowContinuation:
    if analysis is not None and not analysis.files_checked:
        return WorkflowContinuation(
            should_continue=False,
            next_step=NextStep.STOP,
            reason="No declared files could be analysed",
        )
    if analysis is not None and not analysis.passed and decision.strategy == Strategy.NO_ACTION:
        return WorkflowContinuation(
            should_continue=False,
            next_step=NextStep.STOP,
            reason="Quality checks failed but no improvement strategy applies; review manually",
        )
    high = [f for f in findings if f.severity == "high"]
    if high:
        return WorkflowContinuation(
            should_continue=False,
            next_step=NextStep.FIX_LAYOUT,
            reason=f"{len(high)} high-severity layout finding(s) must be resolved first",
        )
    return next_step(decision)


def run_quality_gate(
    task: TaskDescriptor,
    conversation_context: str = "",
    tool_call_history: Optional[list[str]] = None,
    violations: Optional[list[Violation]] = None,
    metrics: MetricsInput = None,
    issue_description: Optional[str] = None,
    proposed_action: Optional[str] = None,
    deadline: Optional[Deadline] = None,
) -> GateReport:
    """Run the full gate for one task.

    Conversation risk is assessed first. If cheating prevention is required
    the gate returns a NO_ACTION decision without analysing or touching files.
    Otherwise the declared files are analysed (linting them when no
    violations are supplied), a strategy is chosen, and cleanup runs in the
    mode the strategy allows.
    """
    report = GateReport(project=task.project)
    try:
        detector = PatternDetector(get_quality_tool_names())
        engine = DecisionEngine(detector)

        report.assessment = detector.assess(
            user_input=conversation_context,
            tool_call_history=tool_call_history,
        )
        if report.assessment.cheating.intervention_required:
            logger.warning("[%s] Quality gate stopped: cheating prevention", task.project)
            report.decision = engine.decide(
                issue_description or task.description,
                proposed_action or "",
                cheating_verdict=report.assessment.cheating,
            )
            report.continuation = next_step(report.decision)
            return report

        if violations is None:
            root = Path(task.project_root) if task.project_root else None
            paths = [str(resolve_path(f.path, root)) for f in task.related_files]
            violations, lint_errors = collect_violations(paths)
            for error in lint_errors:
                logger.info("[%s] Lint unavailable: %s", task.project, error)

        analyzer = QualityAnalyzer(get_thresholds())
        report.analysis = analyzer.analyze(
            task.related_files,
            violations,
            metrics,
            scope=task.review_scope,
            project_root=task.project_root,
        )

        report.decision = engine.decide(
            issue_description or _describe_issue(report.analysis),
            proposed_action or task.description,
            current_score=report.analysis.health_score.value,
            cheating_verdict=report.assessment.cheating,
        )

        mode = _cleanup_mode_for(report.decision.strategy, task.cleanup_mode)
        if mode is not None:
            report.cleanup = CleanupManager().cleanup(task.project_root, mode, deadline)

        findings = report.cleanup.findings if report.cleanup else []
        report.continuation = _continuation(report.analysis, report.decision, findings)

        logger.info(
            "[%s] Quality gate: health=%d strategy=%s next=%s",
            task.project,
            report.analysis.health_score.value,
            report.decision.strategy.value,
            report.continuation.next_step.value,
        )
    except Exception as e:
        logger.exception("[%s] Quality gate failed", task.project)
        report.error = f"Quality gate failed: {e}"
    return report
