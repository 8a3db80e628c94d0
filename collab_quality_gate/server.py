"""Quality Gate MCP server."""

import logging
from typing import Optional

from fastmcp import FastMCP

from .analyzer import QualityAnalyzer
from .cleanup import CleanupManager
from .config import get_quality_tool_names, get_server_port, get_thresholds
from .decision import DecisionEngine, next_step
from .gates import run_quality_gate as _run_quality_gate
from .models import (
    CheatingVerdict,
    CleanupMode,
    FileMetrics,
    RelatedFile,
    ReviewScope,
    TaskDescriptor,
    Violation,
)
from .patterns import PatternDetector
from .tools.linting import run_lint as _run_lint

logger = logging.getLogger(__name__)

mcp = FastMCP("Collab Intelligence Quality Gate")


def _parse_metrics(metrics: Optional[dict]):
    """Accept either one aggregate or a {path: metrics} mapping."""
    if not metrics:
        return None
    if all(isinstance(v, dict) for v in metrics.values()):
        return {path: FileMetrics.model_validate(m) for path, m in metrics.items()}
    return FileMetrics.model_validate(metrics)


def detect_conversation_risk_impl(
    user_input: str = "",
    ai_response: str = "",
    conversation_history: Optional[list[str]] = None,
    tool_call_history: Optional[list[str]] = None,
) -> dict:
    detector = PatternDetector(get_quality_tool_names())
    assessment = detector.assess(user_input, ai_response, conversation_history, tool_call_history)
    return assessment.model_dump(mode="json")


def detect_quality_cheating_impl(text: str, tool_call_history: Optional[list[str]] = None) -> dict:
    detector = PatternDetector(get_quality_tool_names())
    return detector.detect_cheating(text, tool_call_history).model_dump(mode="json")


def analyze_quality_impl(
    files: list[str],
    violations: Optional[list[dict]] = None,
    metrics: Optional[dict] = None,
    scope: str = "comprehensive",
    project_root: Optional[str] = None,
) -> dict:
    try:
        parsed = [Violation.model_validate(v) for v in (violations or [])]
        parsed_metrics = _parse_metrics(metrics)
        review_scope = ReviewScope(scope)
    except ValueError as e:
        return {"error": f"Invalid input: {e}"}
    report = QualityAnalyzer(get_thresholds()).analyze(files, parsed, parsed_metrics, review_scope, project_root)
    return report.model_dump(mode="json")


def decide_quality_improvement_impl(
    issue_description: str,
    proposed_action: str,
    current_score: Optional[float] = None,
    cheating_verdict: Optional[dict] = None,
    conversation_context: Optional[str] = None,
) -> dict:
    try:
        verdict = CheatingVerdict.model_validate(cheating_verdict) if cheating_verdict else None
    except ValueError as e:
        return {"error": f"Invalid cheating verdict: {e}"}
    engine = DecisionEngine(PatternDetector(get_quality_tool_names()))
    decision = engine.decide(issue_description, proposed_action, current_score, verdict, conversation_context)
    return {
        "decision": decision.model_dump(mode="json"),
        "continuation": next_step(decision).model_dump(mode="json"),
    }


def cleanup_project_impl(project_path: str, mode: str = "analysis_only") -> dict:
    try:
        cleanup_mode = CleanupMode(mode)
    except ValueError:
        return {"error": f"Unknown cleanup mode: {mode}"}
    return CleanupManager().cleanup(project_path, cleanup_mode).model_dump(mode="json")


def run_quality_gate_impl(
    project: str,
    project_root: str,
    related_files: Optional[list[dict]] = None,
    review_scope: str = "comprehensive",
    cleanup_mode: str = "analysis_only",
    description: str = "",
    conversation_context: str = "",
    tool_call_history: Optional[list[str]] = None,
    violations: Optional[list[dict]] = None,
    metrics: Optional[dict] = None,
) -> dict:
    try:
        task = TaskDescriptor(
            project=project,
            project_root=project_root,
            related_files=[RelatedFile.model_validate(f) for f in (related_files or [])],
            review_scope=ReviewScope(review_scope),
            cleanup_mode=CleanupMode(cleanup_mode),
            description=description,
        )
        parsed = [Violation.model_validate(v) for v in violations] if violations is not None else None
        parsed_metrics = _parse_metrics(metrics)
    except ValueError as e:
        return {"error": f"Invalid input: {e}"}
    report = _run_quality_gate(
        task,
        conversation_context=conversation_context,
        tool_call_history=tool_call_history,
        violations=parsed,
        metrics=parsed_metrics,
    )
    return report.model_dump(mode="json")


@mcp.tool()
def detect_conversation_risk(
    user_input: str = "",
    ai_response: str = "",
    conversation_history: Optional[list[str]] = None,
    tool_call_history: Optional[list[str]] = None,
) -> dict:
    """Assess conversational risk, including quality-cheating behaviour.

    Cheating prevention has absolute priority over every other intervention.

    Returns:
        {risk, response_risk, cheating, overall_risk, intervention, reason}
    """
    return detect_conversation_risk_impl(user_input, ai_response, conversation_history, tool_call_history)


@mcp.tool()
def detect_quality_cheating(text: str, tool_call_history: Optional[list[str]] = None) -> dict:
    """Detect language or tool usage that games a quality score."""
    return detect_quality_cheating_impl(text, tool_call_history)


@mcp.tool()
def analyze_quality(
    files: list[str],
    violations: Optional[list[dict]] = None,
    metrics: Optional[dict] = None,
    scope: str = "comprehensive",
    project_root: Optional[str] = None,
) -> dict:
    """Score the declared files and run the categorized quality checks.

    Args:
        files: Declared file set (absolute, or relative to project_root).
        violations: Static-analysis findings from an external analyzer.
        metrics: One aggregate metrics object, or {path: metrics}.
        scope: comprehensive | diagnostic | security_only | quality_only.
        project_root: Base directory for relative paths.
    """
    return analyze_quality_impl(files, violations, metrics, scope, project_root)


@mcp.tool()
def decide_quality_improvement(
    issue_description: str,
    proposed_action: str,
    current_score: Optional[float] = None,
    cheating_verdict: Optional[dict] = None,
    conversation_context: Optional[str] = None,
) -> dict:
    """Decide whether and how to act on a quality issue."""
    return decide_quality_improvement_impl(
        issue_description, proposed_action, current_score, cheating_verdict, conversation_context
    )


@mcp.tool()
def cleanup_project(project_path: str, mode: str = "analysis_only") -> dict:
    """Remove temporary files from a project, bounded by the safety policy.

    Args:
        project_path: Absolute project root. System directories are refused.
        mode: analysis_only (default, deletes nothing) | safe | aggressive.
    """
    return cleanup_project_impl(project_path, mode)


@mcp.tool()
def run_lint(
    files: Optional[list[str]] = None,
    language: Optional[str] = None,
) -> dict:
    """Run linting on files using the appropriate linter."""
    return _run_lint(files, language)


@mcp.tool()
def run_quality_gate(
    project: str,
    project_root: str,
    related_files: Optional[list[dict]] = None,
    review_scope: str = "comprehensive",
    cleanup_mode: str = "analysis_only",
    description: str = "",
    conversation_context: str = "",
    tool_call_history: Optional[list[str]] = None,
    violations: Optional[list[dict]] = None,
    metrics: Optional[dict] = None,
) -> dict:
    """Run the full quality gate for one task.

    Returns:
        {project, assessment, analysis, decision, cleanup, continuation, error}
    """
    return run_quality_gate_impl(
        project,
        project_root,
        related_files,
        review_scope,
        cleanup_mode,
        description,
        conversation_context,
        tool_call_history,
        violations,
        metrics,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    mcp.run(transport="sse", port=get_server_port())
