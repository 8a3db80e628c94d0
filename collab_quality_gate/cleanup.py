"""Project cleanup: scan, layout analysis, and batched deletion of temp files.

Every call goes through the safety gate first. Scanning is breadth-first, one
directory level per batch; deletion runs in batches of ``batch_size``. Both
fan out on a bounded thread pool and share a Deadline, so a slow filesystem
yields a partial result with a warning instead of a hang.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import time
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Optional, Union

from .analyzer import TEST_DIR_NAMES, is_test_name
from .config import get_safety_policy
from .models import CleanupMode, CleanupResult, LayoutFinding, LayoutFindingKind
from .safety import SafetyPolicy, is_protected_path, matches_any, validate_project_path

logger = logging.getLogger(__name__)

# Names expected to repeat across directories.
CONVENTIONAL_NAMES = [
    "__init__.py", "__main__.py", "conftest.py", "index.*", "main.*", "mod.rs",
    "README*", "LICENSE*", "CHANGELOG*", "Makefile", "Dockerfile",
    "package.json", "tsconfig.json", "pyproject.toml", "setup.py", "setup.cfg",
    ".gitignore", ".gitkeep", ".npmignore", ".eslintrc*", "*.d.ts",
]

ISOLATED_DIR_NAMES = {"test_scripts", "html", "startup", "demo", "temp", "tmp"}

MAX_DUPLICATE_FINDINGS = 20

_REMOVED = "removed"
_GONE = "gone"
_SKIPPED = "skipped"
_EXPIRED = "expired"
_FAILED = "failed"


class Deadline:
    """A point on the monotonic clock that cooperating workers check."""

    def __init__(self, seconds: float, parent: Optional["Deadline"] = None):
        expires = time.monotonic() + seconds
        if parent is not None:
            expires = min(expires, parent.expires)
        self.expires = expires

    def remaining(self) -> float:
        return max(0.0, self.expires - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires


class _ScanState:
    def __init__(self):
        self.files: list[Path] = []
        self.directories: list[Path] = []


class CleanupManager:
    """Safety-checked cleanup of a single project directory."""

    def __init__(self, policy: Optional[SafetyPolicy] = None):
        self.policy = policy or get_safety_policy()

    def cleanup(
        self,
        project_path: Optional[str],
        mode: Union[CleanupMode, str] = CleanupMode.ANALYSIS_ONLY,
        deadline: Optional[Deadline] = None,
    ) -> CleanupResult:
        """Clean temporary files from *project_path*.

        Args:
            project_path: Absolute path of the project root.
            mode: ANALYSIS_ONLY reports candidates, SAFE removes temp files,
                AGGRESSIVE also removes OS/editor artifacts.
            deadline: Optional overall deadline. Each batch is further limited
                by the policy's batch timeout.

        Returns:
            CleanupResult. Never raises; a rejected path yields zero removals
            and a security warning.
        """
        result = CleanupResult()
        try:
            result.mode = CleanupMode(mode)
            return self._cleanup(project_path, result.mode, deadline, result)
        except Exception as e:
            logger.exception("Cleanup of %s failed", project_path)
            result.warnings.append(f"Cleanup aborted: {e}")
            return result

    def _cleanup(
        self,
        project_path: Optional[str],
        mode: CleanupMode,
        deadline: Optional[Deadline],
        result: CleanupResult,
    ) -> CleanupResult:
        validation = validate_project_path(project_path, self.policy)
        if not validation.valid:
            logger.warning("Cleanup rejected: %s", validation.reason)
            result.security_rejected = True
            result.warnings.append(validation.reason)
            return result

        root = Path(validation.normalized)
        if not root.is_dir():
            result.warnings.append(f"Project path is not a directory: {root}")
            return result
        if is_protected_path(root, root, self.policy):
            logger.warning("Cleanup of %s limited to analysis: inside a protected directory", root)
            result.warnings.append(f"Project path {root} is inside a protected directory; no files will be removed")

        pool = ThreadPoolExecutor(max_workers=self.policy.max_concurrency, thread_name_prefix="qgate-cleanup")
        try:
            scan = self._scan(root, pool, deadline, result)
            result.files_analyzed = len(scan.files)

            patterns = self.policy.patterns_for(CleanupMode.AGGRESSIVE if mode == CleanupMode.ANALYSIS_ONLY else mode)
            candidates = [f for f in scan.files if self._is_candidate(f, root, patterns)]
            result.candidates = sorted(str(f) for f in candidates)

            result.findings = analyze_layout(root, scan.files, scan.directories, set(candidates))
            result.suggestions.extend(f.suggestion for f in result.findings if f.suggestion)

            if mode == CleanupMode.ANALYSIS_ONLY:
                self._suggest(candidates, result)
            elif not result.timed_out:
                self._delete(candidates, root, pool, deadline, result)
        finally:
            # Workers check the deadline, so abandoned ones finish quickly.
            pool.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "Cleanup of %s (%s): analyzed=%d removed=%d warnings=%d",
            root,
            mode.value,
            result.files_analyzed,
            result.files_removed,
            len(result.warnings),
        )
        return result

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _scan(
        self,
        root: Path,
        pool: ThreadPoolExecutor,
        deadline: Optional[Deadline],
        result: CleanupResult,
    ) -> _ScanState:
        state = _ScanState()
        level = [root]
        depth = 0
        while level:
            timeout_message = f"Scan of directory level {depth} timed out; results are partial"
            batch_deadline = Deadline(self.policy.batch_timeout_seconds, deadline)
            if batch_deadline.expired:
                self._abandon({}, result, timeout_message)
                break

            futures = {pool.submit(self._list_dir, d, batch_deadline): d for d in level}
            next_level: list[Path] = []
            skipped = 0
            try:
                for future in as_completed(futures, timeout=batch_deadline.remaining()):
                    listing = future.result()
                    if listing is None:
                        skipped += 1
                        continue
                    files, subdirs, warning = listing
                    state.files.extend(files)
                    state.directories.extend(subdirs)
                    next_level.extend(subdirs)
                    if warning:
                        result.warnings.append(warning)
            except FuturesTimeoutError:
                self._abandon(futures, result, timeout_message)
                break
            if skipped:
                self._abandon(futures, result, timeout_message)
                break
            level = sorted(next_level)
            depth += 1
        state.files.sort()
        return state

    def _list_dir(
        self,
        directory: Path,
        deadline: Deadline,
    ) -> Optional[tuple[list[Path], list[Path], Optional[str]]]:
        """List one directory. Returns None if the deadline passed first."""
        if deadline.expired:
            return None
        files: list[Path] = []
        subdirs: list[Path] = []
        protected = {d.casefold() for d in self.policy.protected_dirs}
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        if entry.name.casefold() not in protected:
                            subdirs.append(Path(entry.path))
                    elif entry.is_file(follow_symlinks=False):
                        files.append(Path(entry.path))
        except OSError as e:
            logger.warning("Cannot read directory %s: %s", directory, e)
            return files, subdirs, f"Cannot read directory {directory}: {e}"
        return files, subdirs, None

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def _is_candidate(self, path: Path, root: Path, patterns: list[str]) -> bool:
        return matches_any(path.name, patterns) is not None and not is_protected_path(path, root, self.policy)

    def _suggest(self, candidates: list[Path], result: CleanupResult) -> None:
        temp_patterns = self.policy.patterns_for(CleanupMode.SAFE)
        temp = [c for c in candidates if matches_any(c.name, temp_patterns)]
        artifacts = [c for c in candidates if not matches_any(c.name, temp_patterns)]
        if temp:
            result.suggestions.append(f"{len(temp)} temporary file(s) can be removed with mode=safe")
        if artifacts:
            result.suggestions.append(f"{len(artifacts)} OS/editor artifact file(s) can be removed with mode=aggressive")

    def _delete(
        self,
        candidates: list[Path],
        root: Path,
        pool: ThreadPoolExecutor,
        deadline: Optional[Deadline],
        result: CleanupResult,
    ) -> None:
        size = self.policy.batch_size
        removed: list[str] = []
        for index in range(0, len(candidates), size):
            batch = candidates[index : index + size]
            batch_number = index // size + 1
            batch_deadline = Deadline(self.policy.batch_timeout_seconds, deadline)
            if batch_deadline.expired:
                self._abandon({}, result, f"Deletion stopped before batch {batch_number}: deadline reached")
                break

            futures = {pool.submit(self._remove, path, root, batch_deadline): path for path in batch}
            expired = 0
            try:
                for future in as_completed(futures, timeout=batch_deadline.remaining()):
                    outcome, path, message = future.result()
                    if outcome == _REMOVED:
                        removed.append(path)
                    elif outcome == _FAILED:
                        result.warnings.append(message)
                    elif outcome == _EXPIRED:
                        expired += 1
            except FuturesTimeoutError:
                self._abandon(futures, result, f"Deletion batch {batch_number} timed out after {self.policy.batch_timeout_seconds}s")
                break
            if expired:
                self._abandon(futures, result, f"Deletion batch {batch_number} hit the deadline; {expired} file(s) left in place")
                break

        result.removed_files = sorted(removed)
        result.files_removed = len(removed)

    def _remove(self, path: Path, root: Path, deadline: Deadline) -> tuple[str, str, Optional[str]]:
        if deadline.expired:
            return _EXPIRED, str(path), None
        # Re-check right before unlinking; the tree may have changed since the scan.
        if path.is_symlink() or is_protected_path(path, root, self.policy):
            return _SKIPPED, str(path), None
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("Already removed: %s", path)
            return _GONE, str(path), None
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
            return _FAILED, str(path), f"Could not remove {path}: {e}"
        logger.debug("Removed %s", path)
        return _REMOVED, str(path), None

    @staticmethod
    def _abandon(futures: dict[Future, Path], result: CleanupResult, message: str) -> None:
        for future in futures:
            future.cancel()
        logger.warning(message)
        result.timed_out = True
        result.warnings.append(message)


def _is_conventional(name: str) -> bool:
    return any(fnmatch.fnmatchcase(name.lower(), pattern.lower()) for pattern in CONVENTIONAL_NAMES)


def analyze_layout(
    root: Path,
    files: list[Path],
    directories: list[Path],
    ignored: Optional[set[Path]] = None,
) -> list[LayoutFinding]:
    """Flag layout problems. Findings are suggestions only; nothing is moved."""
    ignored = ignored or set()
    findings: list[LayoutFinding] = []
    relevant = [f for f in files if f not in ignored]

    by_name: dict[str, list[Path]] = defaultdict(list)
    for f in relevant:
        if not _is_conventional(f.name):
            by_name[f.name].append(f)
    duplicates = [(name, paths) for name, paths in sorted(by_name.items()) if len({p.parent for p in paths}) > 1]
    for name, paths in duplicates[:MAX_DUPLICATE_FINDINGS]:
        findings.append(
            LayoutFinding(
                kind=LayoutFindingKind.DUPLICATE_BASENAME,
                severity="medium",
                message=f"'{name}' exists in {len(paths)} directories",
                paths=[str(p) for p in paths],
                suggestion=f"Check whether the copies of {name} duplicate functionality and merge them",
            )
        )

    for f in relevant:
        relative_dirs = f.relative_to(root).parts[:-1]
        if is_test_name(f.name) and not any(d.lower() in TEST_DIR_NAMES for d in relative_dirs):
            findings.append(
                LayoutFinding(
                    kind=LayoutFindingKind.MISPLACED_TEST,
                    severity="high",
                    message=f"Test file outside a test directory: {f.relative_to(root)}",
                    paths=[str(f)],
                    suggestion=f"Move {f.name} into a standard test directory (tests/, __tests__/, spec/)",
                )
            )

    test_dirs = [d for d in directories if d.name.lower() in TEST_DIR_NAMES]
    if relevant and not test_dirs:
        findings.append(
            LayoutFinding(
                kind=LayoutFindingKind.MISSING_TEST_DIRECTORY,
                severity="medium",
                message="No test directory found",
                suggestion="Create a tests/ directory for the project's tests",
            )
        )

    top_level = sorted(d for d in directories if d.parent == root)
    for d in top_level:
        if d.name.lower() in ISOLATED_DIR_NAMES:
            findings.append(
                LayoutFinding(
                    kind=LayoutFindingKind.ISOLATED_DIRECTORY,
                    severity="medium",
                    message=f"Isolated directory in project root: {d.name}/",
                    paths=[str(d)],
                    suggestion=f"Move the contents of {d.name}/ into the standard layout or remove it",
                )
            )

    top_test_dirs = [d for d in top_level if d.name.lower() in TEST_DIR_NAMES]
    if len(top_test_dirs) > 1:
        names = ", ".join(d.name for d in top_test_dirs)
        findings.append(
            LayoutFinding(
                kind=LayoutFindingKind.MULTIPLE_TEST_DIRECTORIES,
                severity="low",
                message=f"Multiple test directories: {names}",
                paths=[str(d) for d in top_test_dirs],
                suggestion=f"Consolidate tests into {top_test_dirs[0].name}/",
            )
        )

    return findings
