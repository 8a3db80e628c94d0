"""Quality analysis over a declared file set.

Violations and metrics come from an external static analyzer; this module
scopes them to the declared files, computes the health score, and runs the
categorized sub-checks selected by the review scope.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .config import DEFAULT_SETTINGS
from .models import (
    AnalysisReport,
    CheckStatus,
    FileMetrics,
    QualityCheckResult,
    RelatedFile,
    RelatedFileType,
    ReviewScope,
    Violation,
    ViolationCategory,
    ViolationKind,
    ViolationSummary,
)
from .scoring import calculate_health_score

logger = logging.getLogger(__name__)

CODE_STANDARDS = "Code Standards"
COMPLEXITY = "Code Complexity"
TEST_COVERAGE = "Test Coverage"
SECURITY = "Security"
INPUT_VALIDATION = "Input Validation"
ERROR_HANDLING = "Error Handling"
PERFORMANCE = "Performance"
FILES = "Files"

SCOPE_CHECKS = {
    ReviewScope.QUALITY_ONLY: [CODE_STANDARDS, COMPLEXITY, TEST_COVERAGE],
    ReviewScope.SECURITY_ONLY: [SECURITY, INPUT_VALIDATION],
    ReviewScope.DIAGNOSTIC: [ERROR_HANDLING, PERFORMANCE],
    ReviewScope.COMPREHENSIVE: [
        CODE_STANDARDS, COMPLEXITY, TEST_COVERAGE, SECURITY,
        INPUT_VALIDATION, ERROR_HANDLING, PERFORMANCE,
    ],
}

CHECK_WEIGHTS = {
    CODE_STANDARDS: 0.25,
    COMPLEXITY: 0.30,
    TEST_COVERAGE: 0.20,
    SECURITY: 0.15,
    INPUT_VALIDATION: 0.05,
    ERROR_HANDLING: 0.05,
    PERFORMANCE: 0.05,
    FILES: 0.05,
}

MAX_DETAILS = 10
WARNING_THRESHOLD = 5
MAX_LOOP_DEPTH = 2

TEST_DIR_NAMES = {"tests", "test", "__tests__", "spec", "__spec__"}

_TEST_FILE_RE = re.compile(r"(?:^test_.*|.*_test\.\w+$|.*\.(?:test|spec)\.\w+$)", re.IGNORECASE)
_ASSERTION_RE = re.compile(r"\bassert|\bexpect\s*\(|\bshould\b|\.assert\w*\(")
_DANGEROUS_CALL_RE = re.compile(r"(?<![\w.])(?:eval|exec)\s*\(|\bnew\s+Function\s*\(")
_REQUEST_INPUT_RE = re.compile(
    r"\breq\.(?:body|params|query)\b|\brequest\.(?:json|form|args|get_json|body|query_params|POST|GET)\b"
)
_VALIDATION_RE = re.compile(r"validat|schema|zod|pydantic|BaseModel|marshmallow", re.IGNORECASE)
_ASYNC_RE = re.compile(r"\bawait\b|\bPromise\b")
_ERROR_HANDLING_RE = re.compile(r"\btry\b|\bcatch\b|\bexcept\b")
_LOOP_RE = re.compile(r"^(\s*)(?:for|while)\b")

MetricsInput = Union[FileMetrics, dict[str, FileMetrics], None]


def is_test_name(filename: str) -> bool:
    return bool(_TEST_FILE_RE.match(filename))


def resolve_path(path: Union[str, Path], root: Optional[Path]) -> Path:
    """Absolute form of *path*, relative paths taken from *root*."""
    p = Path(path)
    if not p.is_absolute() and root is not None:
        p = root / p
    return p.resolve()


def is_test_file(path: Union[str, Path]) -> bool:
    """True for test files by name or by living in a test directory."""
    p = Path(path)
    if is_test_name(p.name):
        return True
    return any(part.lower() in TEST_DIR_NAMES for part in p.parts[:-1])


def aggregate_metrics(metrics: Iterable[FileMetrics]) -> Optional[FileMetrics]:
    """Combine per-file metrics: counts are summed, the rest averaged."""
    metrics = list(metrics)
    if not metrics:
        return None
    n = len(metrics)
    return FileMetrics(
        cyclomatic_complexity=sum(m.cyclomatic_complexity for m in metrics) / n,
        cognitive_complexity=sum(m.cognitive_complexity for m in metrics) / n,
        lines_of_code=sum(m.lines_of_code for m in metrics),
        maintainability_index=sum(m.maintainability_index for m in metrics) / n,
        class_count=sum(m.class_count for m in metrics),
        method_count=sum(m.method_count for m in metrics),
        function_count=sum(m.function_count for m in metrics),
        halstead_volume=sum(m.halstead_volume for m in metrics) / n,
    )


def summarize_violations(violations: Iterable[Violation]) -> ViolationSummary:
    violations = list(violations)
    kinds = Counter(v.kind for v in violations)
    return ViolationSummary(
        total=len(violations),
        errors=kinds[ViolationKind.ERROR],
        warnings=kinds[ViolationKind.WARNING],
        infos=kinds[ViolationKind.INFO],
        by_category=dict(Counter(v.category.value for v in violations)),
        by_file=dict(Counter(v.file for v in violations)),
    )


def max_loop_depth(source: str) -> int:
    """Deepest loop nesting in indentation-formatted source."""
    stack: list[int] = []
    deepest = 0
    for line in source.splitlines():
        if not line.strip():
            continue
        indent = len(line) - len(line.lstrip())
        while stack and stack[-1] >= indent:
            stack.pop()
        if _LOOP_RE.match(line):
            stack.append(indent)
            deepest = max(deepest, len(stack))
    return deepest


def _format_violation(v: Violation) -> str:
    return f"{Path(v.file).name}:{v.line}:{v.column} - {v.message} ({v.rule})"


def check_score(check: QualityCheckResult) -> float:
    """Per-check score used for the weighted overall score."""
    if check.status == CheckStatus.PASS:
        return 100.0
    severity = 3 if check.status == CheckStatus.FAIL else 2
    return 100.0 * math.exp(-0.1 * max(1, len(check.details)) * severity)


def overall_score(checks: list[QualityCheckResult]) -> int:
    if not checks:
        return 0
    total_weight = sum(CHECK_WEIGHTS.get(c.category, 0.05) for c in checks)
    weighted = sum(check_score(c) * CHECK_WEIGHTS.get(c.category, 0.05) for c in checks)
    return int(round(weighted / total_weight))


class _Context:
    """Per-call view of the inputs shared by the sub-checks."""

    def __init__(
        self,
        files: list[RelatedFile],
        paths: dict[str, Path],
        sources: dict[str, str],
        violations: list[Violation],
        metrics: Optional[FileMetrics],
        thresholds: dict,
    ):
        self.files = files
        self.paths = paths
        self.sources = sources
        self.violations = violations
        self.metrics = metrics
        self.thresholds = thresholds

    def by_category(self, category: ViolationCategory) -> list[Violation]:
        return [v for v in self.violations if v.category == category]


class QualityAnalyzer:
    """Scores a declared file set and runs the categorized sub-checks."""

    def __init__(self, thresholds: Optional[dict] = None):
        self.thresholds = {**DEFAULT_SETTINGS["thresholds"], **(thresholds or {})}
        self._checks: dict[str, Callable[[_Context], QualityCheckResult]] = {
            CODE_STANDARDS: self._check_code_standards,
            COMPLEXITY: self._check_complexity,
            TEST_COVERAGE: self._check_test_coverage,
            SECURITY: self._check_security,
            INPUT_VALIDATION: self._check_input_validation,
            ERROR_HANDLING: self._check_error_handling,
            PERFORMANCE: self._check_performance,
        }

    def analyze(
        self,
        files: Optional[Iterable[Union[str, RelatedFile]]],
        violations: Optional[Iterable[Violation]] = None,
        metrics: MetricsInput = None,
        scope: ReviewScope = ReviewScope.COMPREHENSIVE,
        project_root: Optional[str] = None,
    ) -> AnalysisReport:
        """Analyze the declared files.

        Args:
            files: Declared file set, as paths or RelatedFile entries.
                Relative paths resolve against project_root.
            violations: Findings from the external analyzer. Only findings
                for declared files that exist on disk are counted.
            metrics: A single aggregate, or per-file metrics keyed by path.
            scope: Which sub-checks to run.
            project_root: Base directory for relative paths.

        Returns:
            AnalysisReport. Never raises; an empty file set fails closed.
        """
        try:
            return self._analyze(files, violations, metrics, scope, project_root)
        except Exception as e:
            logger.exception("Quality analysis failed")
            return AnalysisReport(
                passed=False,
                health_score=calculate_health_score([]),
                overall_score=0,
                checks=[
                    QualityCheckResult(
                        category=FILES,
                        status=CheckStatus.FAIL,
                        message=f"Quality analysis failed: {e}",
                    )
                ],
            )

    def _analyze(self, files, violations, metrics, scope, project_root) -> AnalysisReport:
        related = [f if isinstance(f, RelatedFile) else RelatedFile(path=str(f)) for f in (files or [])]
        root = Path(project_root) if project_root else None

        if not related:
            logger.warning("Quality analysis requested with no files")
            return AnalysisReport(
                passed=False,
                health_score=calculate_health_score([]),
                overall_score=0,
                checks=[
                    QualityCheckResult(
                        category=FILES,
                        status=CheckStatus.FAIL,
                        message="Quality analysis failed: no files to check",
                        suggestions=["Declare the task's related files before running the quality gate"],
                    )
                ],
            )

        paths = {f.path: resolve_path(f.path, root) for f in related}
        existing = {key: path for key, path in paths.items() if path.is_file()}
        missing = [key for key in paths if key not in existing]
        for key in missing:
            logger.warning("Declared file not found: %s", paths[key])

        sources: dict[str, str] = {}
        for key, path in existing.items():
            try:
                sources[key] = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Could not read %s: %s", path, e)
                missing.append(key)
        readable = {key: existing[key] for key in sources}

        declared = {str(p) for p in readable.values()}
        scoped = [v for v in (violations or []) if str(resolve_path(v.file, root)) in declared]
        aggregate = self._scope_metrics(metrics, readable, root)

        ctx = _Context(related, readable, sources, scoped, aggregate, self.thresholds)
        health = calculate_health_score(scoped, aggregate)

        checks: list[QualityCheckResult] = []
        for name in SCOPE_CHECKS[ReviewScope(scope)]:
            checks.append(self._run_check(name, ctx, health.value))

        if missing:
            checks.append(
                QualityCheckResult(
                    category=FILES,
                    status=CheckStatus.WARNING,
                    message=f"{len(missing)} declared file(s) could not be read",
                    details=[f"File not found or unreadable: {paths[key]}" for key in missing],
                    suggestions=["Update the task's related files to match the working tree"],
                )
            )

        passed = all(c.status != CheckStatus.FAIL for c in checks) and bool(readable)
        recommendations = self._recommendations(checks, health.value)

        logger.info(
            "Analyzed %d file(s): health=%d, %d violation(s), scope=%s",
            len(readable),
            health.value,
            len(scoped),
            ReviewScope(scope).value,
        )

        return AnalysisReport(
            passed=passed,
            health_score=health,
            summary=summarize_violations(scoped),
            checks=checks,
            overall_score=overall_score(checks),
            files_checked=[str(p) for p in readable.values()],
            missing_files=[str(paths[key]) for key in missing],
            metrics=aggregate,
            recommendations=recommendations,
        )

    def _scope_metrics(self, metrics: MetricsInput, readable: dict[str, Path], root: Optional[Path]) -> Optional[FileMetrics]:
        if metrics is None or isinstance(metrics, FileMetrics):
            return metrics
        declared = {str(p) for p in readable.values()}
        return aggregate_metrics(
            m for path, m in metrics.items() if str(resolve_path(path, root)) in declared
        )

    def _run_check(self, name: str, ctx: _Context, health: int) -> QualityCheckResult:
        try:
            result = self._checks[name](ctx)
        except Exception as e:
            logger.warning("%s check failed: %s", name, e)
            return QualityCheckResult(
                category=name,
                status=CheckStatus.FAIL,
                message=f"{name} check failed: {e}",
            )
        if name == CODE_STANDARDS:
            result.details.append(f"Health score: {health}/100")
        return result

    @staticmethod
    def _recommendations(checks: list[QualityCheckResult], health: int) -> list[str]:
        recommendations: list[str] = []
        for check in checks:
            for suggestion in check.suggestions:
                if suggestion not in recommendations:
                    recommendations.append(suggestion)
        if health < 50:
            recommendations.insert(0, "Health score is low: fix error-level violations first")
        return recommendations

    # ------------------------------------------------------------------
    # Sub-checks
    # ------------------------------------------------------------------

    def _check_code_standards(self, ctx: _Context) -> QualityCheckResult:
        errors = [v for v in ctx.violations if v.kind == ViolationKind.ERROR]
        warnings = [v for v in ctx.violations if v.kind == ViolationKind.WARNING]

        details: list[str] = []
        suggestions: list[str] = []
        if errors:
            status = CheckStatus.FAIL
            message = f"Found {len(errors)} errors and {len(warnings)} warnings"
            details.extend(_format_violation(v) for v in errors[:MAX_DETAILS])
            suggestions.append("Fix error-level violations reported by the static analyzer")
        elif len(warnings) > WARNING_THRESHOLD:
            status = CheckStatus.WARNING
            message = f"Found {len(warnings)} warnings"
            details.extend(_format_violation(v) for v in warnings[:WARNING_THRESHOLD])
            suggestions.append("Reduce warning count below the review threshold")
        else:
            status = CheckStatus.PASS
            message = "Code standards check passed"

        details.append(f"Files analyzed: {len(ctx.paths)}")
        details.append(f"Total violations: {len(ctx.violations)}")
        return QualityCheckResult(
            category=CODE_STANDARDS, status=status, message=message, details=details, suggestions=suggestions
        )

    def _check_complexity(self, ctx: _Context) -> QualityCheckResult:
        status = CheckStatus.PASS
        details: list[str] = []
        suggestions: list[str] = []

        complexity = ctx.by_category(ViolationCategory.COMPLEXITY)
        if complexity:
            status = CheckStatus.WARNING
            details.extend(_format_violation(v) for v in complexity[:WARNING_THRESHOLD])
            suggestions.append("Break complex functions into smaller ones")
            suggestions.append("Reduce nested conditions and loops")

        m = ctx.metrics
        if m is not None and m.lines_of_code > 0:
            if m.cyclomatic_complexity > ctx.thresholds["cyclomaticComplexity"]:
                status = CheckStatus.WARNING if status == CheckStatus.PASS else status
                details.append(
                    f"Average cyclomatic complexity {m.cyclomatic_complexity:.1f} exceeds {ctx.thresholds['cyclomaticComplexity']}"
                )
            if m.maintainability_index < ctx.thresholds["maintainabilityIndex"]:
                status = CheckStatus.FAIL
                details.append(
                    f"Maintainability index: {m.maintainability_index:.1f} (threshold: {ctx.thresholds['maintainabilityIndex']})"
                )
                suggestions.append("Refactor code to improve maintainability")
            details.append(f"Average cyclomatic complexity: {m.cyclomatic_complexity:.1f}")
            details.append(f"Average cognitive complexity: {m.cognitive_complexity:.1f}")
            details.append(f"Lines of code: {m.lines_of_code}")

        message = (
            "Code complexity within acceptable limits" if status == CheckStatus.PASS
            else "Code complexity issues detected"
        )
        return QualityCheckResult(category=COMPLEXITY, status=status, message=message, details=details, suggestions=suggestions)

    def _check_test_coverage(self, ctx: _Context) -> QualityCheckResult:
        issues: list[str] = []
        suggestions: list[str] = []

        tests = [f for f in ctx.files if is_test_file(f.path)]
        code = [
            f for f in ctx.files
            if f.type in (RelatedFileType.TO_MODIFY, RelatedFileType.CREATE) and not is_test_file(f.path)
        ]
        if code and not tests:
            issues.append("No test files found for implementation")
            suggestions.append("Add unit tests for new functionality")

        for test in tests:
            source = ctx.sources.get(test.path)
            if source is not None and not _ASSERTION_RE.search(source):
                issues.append(f"Test file {ctx.paths[test.path]} appears to have no assertions")
                suggestions.append("Add real assertions that verify behaviour")

        testing = ctx.by_category(ViolationCategory.TESTING)
        issues.extend(_format_violation(v) for v in testing[:MAX_DETAILS])

        return QualityCheckResult(
            category=TEST_COVERAGE,
            status=CheckStatus.PASS if not issues else CheckStatus.WARNING,
            message="Test coverage check passed" if not issues else f"Found {len(issues)} test coverage issues",
            details=issues,
            suggestions=suggestions,
        )

    def _check_security(self, ctx: _Context) -> QualityCheckResult:
        issues = [_format_violation(v) for v in ctx.by_category(ViolationCategory.SECURITY)[:MAX_DETAILS]]
        suggestions: list[str] = []
        for key, source in ctx.sources.items():
            if _DANGEROUS_CALL_RE.search(source):
                issues.append(f"Dangerous dynamic code execution in {ctx.paths[key]}")
                suggestions.append("Avoid eval()/exec() and dynamic Function constructors")

        return QualityCheckResult(
            category=SECURITY,
            status=CheckStatus.PASS if not issues else CheckStatus.FAIL,
            message="Security check passed" if not issues else f"Found {len(issues)} security issues",
            details=issues,
            suggestions=suggestions,
        )

    def _check_input_validation(self, ctx: _Context) -> QualityCheckResult:
        issues = [_format_violation(v) for v in ctx.by_category(ViolationCategory.VALIDATION)[:MAX_DETAILS]]
        suggestions: list[str] = []
        for key, source in ctx.sources.items():
            if _REQUEST_INPUT_RE.search(source) and not _VALIDATION_RE.search(source):
                issues.append(f"Missing input validation in {ctx.paths[key]}")
                suggestions.append("Validate request input with a schema before use")

        return QualityCheckResult(
            category=INPUT_VALIDATION,
            status=CheckStatus.PASS if not issues else CheckStatus.WARNING,
            message="Input validation check passed" if not issues else f"Found {len(issues)} validation issues",
            details=issues,
            suggestions=suggestions,
        )

    def _check_error_handling(self, ctx: _Context) -> QualityCheckResult:
        issues = [_format_violation(v) for v in ctx.by_category(ViolationCategory.ERROR_HANDLING)[:MAX_DETAILS]]
        suggestions: list[str] = []
        for key, source in ctx.sources.items():
            if _ASYNC_RE.search(source) and not _ERROR_HANDLING_RE.search(source):
                issues.append(f"Missing error handling for async operations in {ctx.paths[key]}")
                suggestions.append("Handle errors around awaited operations")

        return QualityCheckResult(
            category=ERROR_HANDLING,
            status=CheckStatus.PASS if not issues else CheckStatus.WARNING,
            message="Error handling check passed" if not issues else f"Found {len(issues)} error handling issues",
            details=issues,
            suggestions=suggestions,
        )

    def _check_performance(self, ctx: _Context) -> QualityCheckResult:
        issues = [_format_violation(v) for v in ctx.by_category(ViolationCategory.PERFORMANCE)[:MAX_DETAILS]]
        suggestions: list[str] = []
        for key, source in ctx.sources.items():
            depth = max_loop_depth(source)
            if depth > MAX_LOOP_DEPTH:
                issues.append(f"Loops nested {depth} deep in {ctx.paths[key]}")
                suggestions.append("Flatten nested loops or use a more efficient algorithm")

        return QualityCheckResult(
            category=PERFORMANCE,
            status=CheckStatus.PASS if not issues else CheckStatus.WARNING,
            message="Performance check passed" if not issues else f"Found {len(issues)} performance issues",
            details=issues,
            suggestions=suggestions,
        )
