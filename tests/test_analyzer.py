"""Tests for the Quality Analyzer."""

import pytest

from collab_quality_gate.analyzer import (
    CODE_STANDARDS,
    COMPLEXITY,
    ERROR_HANDLING,
    FILES,
    INPUT_VALIDATION,
    PERFORMANCE,
    SCOPE_CHECKS,
    SECURITY,
    TEST_COVERAGE,
    QualityAnalyzer,
    aggregate_metrics,
    is_test_file,
    max_loop_depth,
)
from collab_quality_gate.models import (
    CheckStatus,
    FileMetrics,
    RelatedFile,
    RelatedFileType,
    ReviewScope,
    Violation,
    ViolationCategory,
    ViolationKind,
)

NOMINAL = FileMetrics(
    cyclomatic_complexity=3,
    cognitive_complexity=4,
    lines_of_code=40,
    maintainability_index=85,
    function_count=3,
)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "tests").mkdir()
    (tmp_path / "src" / "app.py").write_text(
        "def add(a, b):\n    return a + b\n", encoding="utf-8"
    )
    (tmp_path / "tests" / "test_app.py").write_text(
        "from app import add\n\n\ndef test_add():\n    assert add(1, 2) == 3\n", encoding="utf-8"
    )
    return tmp_path


def _files(root):
    return [
        RelatedFile(path=str(root / "src" / "app.py"), type=RelatedFileType.TO_MODIFY),
        RelatedFile(path=str(root / "tests" / "test_app.py"), type=RelatedFileType.CREATE),
    ]


def test_clean_files_all_pass(project):
    report = QualityAnalyzer().analyze(_files(project), [], NOMINAL)
    assert report.health_score.value == 100
    assert report.passed
    assert [c.category for c in report.checks] == SCOPE_CHECKS[ReviewScope.COMPREHENSIVE]
    assert all(c.status == CheckStatus.PASS for c in report.checks)
    assert report.overall_score == 100


def test_empty_file_set_fails_closed():
    report = QualityAnalyzer().analyze([], [], NOMINAL)
    assert not report.passed
    assert len(report.checks) == 1
    assert report.checks[0].status == CheckStatus.FAIL
    assert "no files to check" in report.checks[0].message


def test_missing_file_reported_without_aborting(project):
    files = _files(project) + [RelatedFile(path=str(project / "src" / "gone.py"))]
    report = QualityAnalyzer().analyze(files, [], NOMINAL)
    assert report.missing_files == [str((project / "src" / "gone.py").resolve())]
    files_check = [c for c in report.checks if c.category == FILES]
    assert files_check and files_check[0].status == CheckStatus.WARNING
    assert len(report.files_checked) == 2


def test_violations_outside_declared_files_are_ignored(project):
    violations = [
        Violation(kind=ViolationKind.ERROR, file=str(project / "src" / "app.py"), rule="E1"),
        Violation(kind=ViolationKind.ERROR, file=str(project / "other.py"), rule="E1"),
    ]
    report = QualityAnalyzer().analyze(_files(project), violations, NOMINAL)
    assert report.summary.total == 1
    assert report.summary.errors == 1


def test_relative_paths_resolve_against_project_root(project):
    violations = [Violation(kind=ViolationKind.WARNING, file="src/app.py", rule="W1")]
    report = QualityAnalyzer().analyze(["src/app.py", "tests/test_app.py"], violations, project_root=str(project))
    assert report.summary.warnings == 1
    assert report.health_score.value < 100


def test_error_violation_fails_code_standards(project):
    violations = [
        Violation(kind=ViolationKind.ERROR, file=str(project / "src" / "app.py"), line=2, message="undefined name", rule="F821")
    ]
    report = QualityAnalyzer().analyze(_files(project), violations, NOMINAL)
    standards = next(c for c in report.checks if c.category == CODE_STANDARDS)
    assert standards.status == CheckStatus.FAIL
    assert any("F821" in d for d in standards.details)
    assert not report.passed


def test_scopes_run_disjoint_subsets(project):
    analyzer = QualityAnalyzer()
    quality = analyzer.analyze(_files(project), [], NOMINAL, scope=ReviewScope.QUALITY_ONLY)
    security = analyzer.analyze(_files(project), [], NOMINAL, scope=ReviewScope.SECURITY_ONLY)
    diagnostic = analyzer.analyze(_files(project), [], NOMINAL, scope="diagnostic")

    assert [c.category for c in quality.checks] == [CODE_STANDARDS, COMPLEXITY, TEST_COVERAGE]
    assert [c.category for c in security.checks] == [SECURITY, INPUT_VALIDATION]
    assert [c.category for c in diagnostic.checks] == [ERROR_HANDLING, PERFORMANCE]
    assert not set(SCOPE_CHECKS[ReviewScope.QUALITY_ONLY]) & set(SCOPE_CHECKS[ReviewScope.SECURITY_ONLY])


def test_dangerous_eval_fails_security(tmp_path):
    source = tmp_path / "handler.py"
    source.write_text("def run(expr):\n    return eval(expr)\n", encoding="utf-8")
    report = QualityAnalyzer().analyze([str(source)], [], scope=ReviewScope.SECURITY_ONLY)
    security = next(c for c in report.checks if c.category == SECURITY)
    assert security.status == CheckStatus.FAIL


def test_unvalidated_request_input_warns(tmp_path):
    source = tmp_path / "routes.js"
    source.write_text("app.post('/x', (req, res) => res.send(req.body.name));\n", encoding="utf-8")
    report = QualityAnalyzer().analyze([str(source)], [], scope=ReviewScope.SECURITY_ONLY)
    validation = next(c for c in report.checks if c.category == INPUT_VALIDATION)
    assert validation.status == CheckStatus.WARNING


def test_await_without_error_handling_warns(tmp_path):
    source = tmp_path / "client.py"
    source.write_text("async def fetch(session):\n    return await session.get('/x')\n", encoding="utf-8")
    report = QualityAnalyzer().analyze([str(source)], [], scope=ReviewScope.DIAGNOSTIC)
    handling = next(c for c in report.checks if c.category == ERROR_HANDLING)
    assert handling.status == CheckStatus.WARNING


def test_deeply_nested_loops_warn(tmp_path):
    source = tmp_path / "grid.py"
    source.write_text(
        "def walk(grid):\n"
        "    for row in grid:\n"
        "        for cell in row:\n"
        "            for item in cell:\n"
        "                print(item)\n",
        encoding="utf-8",
    )
    report = QualityAnalyzer().analyze([str(source)], [], scope=ReviewScope.DIAGNOSTIC)
    performance = next(c for c in report.checks if c.category == PERFORMANCE)
    assert performance.status == CheckStatus.WARNING


def test_assertion_free_test_file_warns(tmp_path):
    code = tmp_path / "app.py"
    code.write_text("x = 1\n", encoding="utf-8")
    test = tmp_path / "test_app.py"
    test.write_text("def test_nothing():\n    pass\n", encoding="utf-8")
    report = QualityAnalyzer().analyze([str(code), str(test)], [], scope=ReviewScope.QUALITY_ONLY)
    coverage = next(c for c in report.checks if c.category == TEST_COVERAGE)
    assert coverage.status == CheckStatus.WARNING
    assert any("no assertions" in d for d in coverage.details)


def test_code_without_tests_warns(tmp_path):
    code = tmp_path / "app.py"
    code.write_text("x = 1\n", encoding="utf-8")
    report = QualityAnalyzer().analyze([str(code)], [], scope=ReviewScope.QUALITY_ONLY)
    coverage = next(c for c in report.checks if c.category == TEST_COVERAGE)
    assert coverage.status == CheckStatus.WARNING


def test_low_maintainability_fails_complexity(project):
    metrics = FileMetrics(cyclomatic_complexity=25, lines_of_code=900, maintainability_index=20)
    report = QualityAnalyzer().analyze(_files(project), [], metrics, scope=ReviewScope.QUALITY_ONLY)
    complexity = next(c for c in report.checks if c.category == COMPLEXITY)
    assert complexity.status == CheckStatus.FAIL


def test_failing_check_does_not_stop_siblings(project, monkeypatch):
    analyzer = QualityAnalyzer()

    def boom(ctx):
        raise RuntimeError("analyzer crashed")

    monkeypatch.setitem(analyzer._checks, SECURITY, boom)
    report = analyzer.analyze(_files(project), [], NOMINAL)
    security = next(c for c in report.checks if c.category == SECURITY)
    assert security.status == CheckStatus.FAIL
    assert "analyzer crashed" in security.message
    others = [c for c in report.checks if c.category != SECURITY]
    assert len(others) == 6
    assert all(c.status == CheckStatus.PASS for c in others)


def test_per_file_metrics_are_aggregated(project):
    metrics = {
        str(project / "src" / "app.py"): FileMetrics(lines_of_code=10, cyclomatic_complexity=2, maintainability_index=90),
        str(project / "tests" / "test_app.py"): FileMetrics(lines_of_code=30, cyclomatic_complexity=4, maintainability_index=70),
        str(project / "undeclared.py"): FileMetrics(lines_of_code=999),
    }
    report = QualityAnalyzer().analyze(_files(project), [], metrics)
    assert report.metrics.lines_of_code == 40
    assert report.metrics.cyclomatic_complexity == 3
    assert report.metrics.maintainability_index == 80


def test_analysis_is_deterministic(project):
    violations = [
        Violation(kind=ViolationKind.WARNING, file=str(project / "src" / "app.py"), rule="W1", category=ViolationCategory.COMPLEXITY)
    ]
    analyzer = QualityAnalyzer()
    first = analyzer.analyze(_files(project), violations, NOMINAL)
    second = analyzer.analyze(_files(project), violations, NOMINAL)
    assert first == second


def test_helpers():
    assert is_test_file("tests/helpers.py")
    assert is_test_file("src/app.test.ts")
    assert is_test_file("test_app.py")
    assert not is_test_file("src/app.py")
    assert max_loop_depth("for a in b:\n    pass\nfor c in d:\n    pass\n") == 1
    assert aggregate_metrics([]) is None
