"""Linter wrapper: runs the language's linter and maps its output to Violations."""

import json
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from ..config import get_lint_command
from ..models import Violation, ViolationCategory, ViolationKind

logger = logging.getLogger(__name__)

LINT_TIMEOUT_SECONDS = 60

LINTERS = {
    "python": ["ruff", "check", "--output-format=json"],
    "typescript": ["eslint", "--format=json"],
    "javascript": ["eslint", "--format=json"],
}

# Ruff rule prefixes, longest first so "C90" wins over "C".
RUFF_CATEGORIES = [
    ("C90", ViolationCategory.COMPLEXITY),
    ("PLR", ViolationCategory.COMPLEXITY),
    ("BLE", ViolationCategory.ERROR_HANDLING),
    ("TRY", ViolationCategory.ERROR_HANDLING),
    ("PERF", ViolationCategory.PERFORMANCE),
    ("PT", ViolationCategory.TESTING),
    ("S", ViolationCategory.SECURITY),
    ("E", ViolationCategory.STANDARDS),
    ("W", ViolationCategory.STANDARDS),
    ("F", ViolationCategory.STANDARDS),
]

ESLINT_CATEGORIES = {
    "complexity": ViolationCategory.COMPLEXITY,
    "max-depth": ViolationCategory.COMPLEXITY,
    "max-lines": ViolationCategory.MAINTAINABILITY,
    "max-lines-per-function": ViolationCategory.MAINTAINABILITY,
    "max-params": ViolationCategory.SOLID,
    "max-classes-per-file": ViolationCategory.SOLID,
    "no-eval": ViolationCategory.SECURITY,
    "no-implied-eval": ViolationCategory.SECURITY,
    "no-new-func": ViolationCategory.SECURITY,
    "no-empty": ViolationCategory.ERROR_HANDLING,
    "no-throw-literal": ViolationCategory.ERROR_HANDLING,
    "prefer-promise-reject-errors": ViolationCategory.ERROR_HANDLING,
    "no-await-in-loop": ViolationCategory.PERFORMANCE,
}

# Ruff reports no severity; these prefixes are treated as errors.
RUFF_ERROR_PREFIXES = ("E9", "F", "S")


def detect_language(filepath: str) -> Optional[str]:
    """Detect language from file extension."""
    ext = Path(filepath).suffix.lower()
    language_map = {
        ".py": "python",
        ".ts": "typescript",
        ".tsx": "typescript",
        ".js": "javascript",
        ".jsx": "javascript",
    }
    return language_map.get(ext)


def categorize_ruff(code: str) -> ViolationCategory:
    for prefix, category in RUFF_CATEGORIES:
        if code.startswith(prefix):
            return category
    return ViolationCategory.STANDARDS


def categorize_eslint(rule: Optional[str]) -> ViolationCategory:
    if not rule:
        return ViolationCategory.STANDARDS
    return ESLINT_CATEGORIES.get(rule.split("/")[-1], ViolationCategory.STANDARDS)


def parse_ruff_output(stdout: str) -> list[Violation]:
    """Parse `ruff check --output-format=json` output."""
    violations = []
    for item in json.loads(stdout):
        code = item.get("code") or ""
        kind = ViolationKind.ERROR if code.startswith(RUFF_ERROR_PREFIXES) else ViolationKind.WARNING
        violations.append(
            Violation(
                kind=kind,
                file=item.get("filename") or "",
                line=item.get("location", {}).get("row") or 0,
                column=item.get("location", {}).get("column") or 0,
                message=item.get("message") or "",
                rule=code,
                category=categorize_ruff(code),
                severity=2 if kind == ViolationKind.ERROR else 1,
                source_analyzer="ruff",
            )
        )
    return violations


def parse_eslint_output(stdout: str) -> list[Violation]:
    """Parse `eslint --format=json` output. Severity 2 is an error, 1 a warning."""
    violations = []
    for file_result in json.loads(stdout):
        for msg in file_result.get("messages", []):
            severity = msg.get("severity") or 1
            violations.append(
                Violation(
                    kind=ViolationKind.ERROR if severity >= 2 else ViolationKind.WARNING,
                    file=file_result.get("filePath") or "",
                    line=msg.get("line") or 0,
                    column=msg.get("column") or 0,
                    message=msg.get("message") or "",
                    rule=msg.get("ruleId") or "",
                    category=categorize_eslint(msg.get("ruleId")),
                    severity=severity,
                    source_analyzer="eslint",
                )
            )
    return violations


def _linter_command(language: str) -> list[str]:
    override = get_lint_command(language)
    if override:
        return shlex.split(override)
    return list(LINTERS[language])


def run_lint(
    files: Optional[list[str]] = None,
    language: Optional[str] = None,
) -> dict:
    """Run linting using the appropriate linter.

    Returns a dict with ``violations`` (serialized), ``total`` and, on
    failure, ``error``. Never raises.
    """
    if files is None or len(files) == 0:
        return {"violations": [], "total": 0, "error": "No files specified"}

    if language is None:
        language = detect_language(files[0])

    if language is None or language not in LINTERS:
        return {
            "violations": [],
            "total": 0,
            "error": f"Unsupported or undetected language: {language}",
        }

    linter_cmd = _linter_command(language)

    try:
        result = subprocess.run(
            linter_cmd + files,
            capture_output=True,
            text=True,
            timeout=LINT_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        return {
            "violations": [],
            "total": 0,
            "error": f"Linter timed out after {LINT_TIMEOUT_SECONDS} seconds",
        }
    except FileNotFoundError:
        return {
            "violations": [],
            "total": 0,
            "error": f"Linter '{linter_cmd[0]}' not found. Install it to use linting.",
        }

    violations: list[Violation] = []
    if result.stdout:
        try:
            if language == "python":
                violations = parse_ruff_output(result.stdout)
            else:
                violations = parse_eslint_output(result.stdout)
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError):
            return {
                "violations": [],
                "total": 0,
                "error": "Failed to parse linter output",
                "raw_output": result.stdout[:500],
            }

    return {
        "violations": [v.model_dump(mode="json") for v in violations],
        "total": len(violations),
    }


def collect_violations(files: list[str]) -> tuple[list[Violation], list[str]]:
    """Lint *files* grouped by language.

    Returns ``(violations, errors)``. A linter failure for one language is
    recorded in ``errors`` and does not stop the others.
    """
    by_language: dict[str, list[str]] = {}
    for f in files:
        language = detect_language(f)
        if language is not None:
            by_language.setdefault(language, []).append(f)

    violations: list[Violation] = []
    errors: list[str] = []
    for language, group in by_language.items():
        result = run_lint(group, language)
        if "error" in result:
            logger.warning("Lint failed for %s: %s", language, result["error"])
            errors.append(f"{language}: {result['error']}")
            continue
        violations.extend(Violation.model_validate(v) for v in result["violations"])
    return violations, errors
