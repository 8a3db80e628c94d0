"""Safety gate for destructive cleanup.

Every cleanup target is validated here before anything is scanned or removed.
Checks run over normalised path segments rather than raw strings, so trailing
separators, ``..`` components and Windows case-insensitivity cannot smuggle a
system directory past the gate.
"""

from __future__ import annotations

import fnmatch
import ntpath
import os
import posixpath
import re
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import CleanupMode

POSIX_CRITICAL_PATHS = [
    "/",
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/home",
    "/lib",
    "/lib64",
    "/opt",
    "/proc",
    "/root",
    "/sbin",
    "/sys",
    "/usr",
    "/var",
    # macOS
    "/Applications",
    "/Library",
    "/System",
    "/Users",
    "/Volumes",
    "/private",
]

WINDOWS_CRITICAL_PATHS = [
    "C:\\",
    "C:\\Windows",
    "C:\\Windows\\System32",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
    "C:\\ProgramData",
    "C:\\Users",
]

_WINDOWS_PATH_RE = re.compile(r"^(?:[A-Za-z]:|\\\\)")
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x1f\x7f]")


class SafetyPolicy(BaseModel):
    """Declarative cleanup policy. Loaded once per process, never mutated."""

    model_config = ConfigDict(frozen=True)

    temp_file_patterns: list[str] = Field(
        default_factory=lambda: ["*.tmp", "*.temp", "*~", "*.bak", "*.swp", "*.log"]
    )
    test_temp_patterns: list[str] = Field(
        default_factory=lambda: ["*.test.log", "coverage*.tmp", "test*.tmp", "spec*.tmp"]
    )
    artifact_patterns: list[str] = Field(
        default_factory=lambda: [".DS_Store", "Thumbs.db", "desktop.ini", "*.cache"]
    )
    protected_dirs: list[str] = Field(
        default_factory=lambda: [
            "node_modules", ".git", ".hg", ".svn", "dist", "build", ".next", ".nuxt",
            ".venv", "venv", ".tox", ".idea", ".vscode", "__pycache__",
        ]
    )
    extra_critical_paths: list[str] = Field(default_factory=list)
    max_concurrency: int = Field(default=8, ge=1)
    batch_size: int = Field(default=50, ge=1)
    batch_timeout_seconds: float = Field(default=30, gt=0)
    max_path_length: int = Field(default=4096, ge=1)

    def patterns_for(self, mode: CleanupMode) -> list[str]:
        """Filename patterns eligible for removal in *mode*."""
        if mode == CleanupMode.ANALYSIS_ONLY or mode == CleanupMode.SAFE:
            return self.temp_file_patterns + self.test_temp_patterns
        return self.temp_file_patterns + self.test_temp_patterns + self.artifact_patterns

    def critical_paths(self) -> list[str]:
        paths = POSIX_CRITICAL_PATHS + WINDOWS_CRITICAL_PATHS + list(self.extra_critical_paths)
        home = os.path.expanduser("~")
        if home and home != "~":
            paths.append(home)
        return paths


class PathValidation:
    """Result of validating a cleanup target."""

    def __init__(self, valid: bool, reason: Optional[str] = None, normalized: Optional[str] = None):
        self.valid = valid
        self.reason = reason
        self.normalized = normalized

    def to_dict(self) -> dict:
        return {"valid": self.valid, "reason": self.reason, "normalized": self.normalized}


def is_windows_path(path: str) -> bool:
    return bool(_WINDOWS_PATH_RE.match(path)) or ("\\" in path and "/" not in path)


def path_segments(path: str) -> tuple[bool, tuple[str, ...]]:
    """Split *path* into normalised segments.

    Returns ``(is_windows, segments)``. Windows segments are case-folded and
    the anchor (drive or UNC share) is the first segment.
    """
    if is_windows_path(path):
        normalized = ntpath.normpath(path)
        parts = PureWindowsPath(normalized).parts
        return True, tuple(p.casefold() for p in parts)

    collapsed = re.sub(r"/{2,}", "/", path)
    normalized = posixpath.normpath(collapsed)
    return False, PurePosixPath(normalized).parts


def _is_same_or_ancestor(candidate: tuple[bool, tuple[str, ...]], critical: tuple[bool, tuple[str, ...]]) -> bool:
    cand_windows, cand_parts = candidate
    crit_windows, crit_parts = critical
    if cand_windows != crit_windows:
        return False
    if not cand_parts:
        return False
    if cand_windows and len(cand_parts) == 1:
        # Any bare drive or share root, not just C:\
        return True
    return crit_parts[: len(cand_parts)] == cand_parts


def find_critical_conflict(path: str, policy: SafetyPolicy) -> Optional[str]:
    """Return the critical path that *path* is or contains, if any."""
    candidate = path_segments(path)
    for critical in policy.critical_paths():
        if _is_same_or_ancestor(candidate, path_segments(critical)):
            return critical
    return None


def validate_project_path(project_path: Optional[str], policy: Optional[SafetyPolicy] = None) -> PathValidation:
    """Validate a cleanup target.

    Args:
        project_path: The directory the caller wants cleaned.
        policy: Safety policy; defaults are used when omitted.

    Returns:
        PathValidation. ``reason`` is a human-readable security warning when
        the target is rejected.
    """
    policy = policy or SafetyPolicy()

    if project_path is None or not str(project_path).strip():
        return PathValidation(False, "Security: empty project path rejected")

    raw = str(project_path)
    if _CONTROL_CHAR_RE.search(raw):
        return PathValidation(False, "Security: project path contains control characters")
    if len(raw) > policy.max_path_length:
        return PathValidation(False, f"Security: project path exceeds {policy.max_path_length} characters")

    windows, parts = path_segments(raw)
    absolute = PureWindowsPath(raw).is_absolute() if windows else raw.startswith("/")
    if not absolute:
        return PathValidation(False, f"Security: project path must be absolute: {raw}")

    conflict = find_critical_conflict(raw, policy)
    if conflict is not None:
        return PathValidation(
            False,
            f"Security: refusing to clean {raw}: it is or contains the system directory {conflict}",
        )

    normalized = ntpath.normpath(raw) if windows else posixpath.normpath(re.sub(r"/{2,}", "/", raw))

    # A symlink can point a harmless-looking path at a system directory.
    if not windows and os.path.lexists(normalized):
        real = os.path.realpath(normalized)
        conflict = find_critical_conflict(real, policy)
        if conflict is not None:
            return PathValidation(
                False,
                f"Security: refusing to clean {raw}: it resolves to {real}, which is or contains the system directory {conflict}",
            )
        normalized = real

    return PathValidation(True, normalized=normalized)


def is_protected_path(path: Path, root: Path, policy: SafetyPolicy) -> bool:
    """True if any segment of *path* is deny-listed, including segments above *root*."""
    try:
        path.relative_to(root)
    except ValueError:
        # Outside the project root is never eligible.
        return True
    protected = {d.casefold() for d in policy.protected_dirs}
    return any(part.casefold() in protected for part in path.parts)


def matches_any(filename: str, patterns: list[str]) -> Optional[str]:
    """Return the first pattern matching *filename* (case-insensitive)."""
    lowered = filename.lower()
    for pattern in patterns:
        if fnmatch.fnmatchcase(lowered, pattern.lower()):
            return pattern
    return None
