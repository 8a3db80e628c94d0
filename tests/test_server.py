"""Tests for the Quality Gate server tools."""

from collab_quality_gate.server import (
    analyze_quality_impl,
    cleanup_project_impl,
    decide_quality_improvement_impl,
    detect_conversation_risk_impl,
    detect_quality_cheating_impl,
    mcp,
    run_quality_gate_impl,
)


def test_server_name():
    assert mcp.name == "Collab Intelligence Quality Gate"


def test_detect_conversation_risk_structure():
    result = detect_conversation_risk_impl(user_input="I think the retry loop probably hides the timeout")
    for key in ("risk", "response_risk", "cheating", "overall_risk", "intervention", "reason"):
        assert key in result
    assert result["risk"]["score"] > 0


def test_detect_quality_cheating():
    result = detect_quality_cheating_impl("create empty test file to improve coverage")
    assert result["intervention_required"]
    assert result["flags"]["file_forging"]


def test_analyze_quality(tmp_path):
    source = tmp_path / "app.py"
    source.write_text("x = 1\n", encoding="utf-8")
    result = analyze_quality_impl(
        files=["app.py"],
        violations=[{"kind": "warning", "file": "app.py", "rule": "W291"}],
        metrics={"lines_of_code": 1, "maintainability_index": 90},
        scope="quality_only",
        project_root=str(tmp_path),
    )
    assert result["summary"]["warnings"] == 1
    assert 0 <= result["health_score"]["value"] < 100


def test_analyze_quality_invalid_input():
    assert "error" in analyze_quality_impl(files=["a.py"], scope="everything")
    assert "error" in analyze_quality_impl(files=["a.py"], violations=[{"kind": "fatal", "file": "a.py"}])


def test_decide_quality_improvement():
    result = decide_quality_improvement_impl(
        "SQL injection in the search endpoint",
        "Parameterize the query",
        current_score=50,
    )
    assert result["decision"]["strategy"] == "immediate_fix"
    assert result["continuation"]["next_step"] == "plan_fix"


def test_decide_with_cheating_verdict():
    verdict = detect_quality_cheating_impl("create empty test file to improve coverage")
    result = decide_quality_improvement_impl("Coverage below threshold", "Add a test file", 45, verdict)
    assert result["decision"]["strategy"] == "no_action"
    assert result["continuation"]["next_step"] == "stop"


def test_cleanup_project_rejects_system_directory():
    result = cleanup_project_impl("/etc", mode="aggressive")
    assert result["files_removed"] == 0
    assert result["security_rejected"]


def test_cleanup_project_unknown_mode(tmp_path):
    assert "error" in cleanup_project_impl(str(tmp_path), mode="everything")


def test_cleanup_project_defaults_to_analysis(tmp_path):
    (tmp_path / "a.tmp").write_text("x", encoding="utf-8")
    result = cleanup_project_impl(str(tmp_path))
    assert result["mode"] == "analysis_only"
    assert result["files_removed"] == 0
    assert (tmp_path / "a.tmp").exists()


def test_run_quality_gate(tmp_path):
    (tmp_path / "app.py").write_text("x = 1\n", encoding="utf-8")
    result = run_quality_gate_impl(
        project="demo",
        project_root=str(tmp_path),
        related_files=[{"path": "app.py"}],
        violations=[],
    )
    assert result["error"] is None
    assert result["project"] == "demo"
    assert result["analysis"]["files_checked"]


def test_run_quality_gate_invalid_input(tmp_path):
    result = run_quality_gate_impl(project="demo", project_root=str(tmp_path), cleanup_mode="nuke")
    assert "error" in result
