"""Project configuration loader for the Quality Gate server.

Reads .qgate/project-config.json from the project directory (QGATE_PROJECT_DIR,
falling back to the working directory) and merges it over the defaults below.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from .safety import SafetyPolicy

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".qgate"
CONFIG_FILE_NAME = "project-config.json"

DEFAULT_SETTINGS = {
    "safety": {
        "tempFilePatterns": ["*.tmp", "*.temp", "*~", "*.bak", "*.swp", "*.log"],
        "testTempPatterns": ["*.test.log", "coverage*.tmp", "test*.tmp", "spec*.tmp"],
        "artifactPatterns": [".DS_Store", "Thumbs.db", "desktop.ini", "*.cache"],
        "protectedDirs": [
            "node_modules", ".git", ".hg", ".svn", "dist", "build", ".next", ".nuxt",
            ".venv", "venv", ".tox", ".idea", ".vscode", "__pycache__",
        ],
        "extraCriticalPaths": [],
        "maxConcurrency": 8,
        "batchSize": 50,
        "batchTimeoutSeconds": 30,
        "maxPathLength": 4096,
    },
    "thresholds": {
        "cyclomaticComplexity": 10,
        "cognitiveComplexity": 15,
        "maintainabilityIndex": 50,
        "linesOfCode": 300,
        "passingScore": 70,
    },
    "qualityToolNames": [
        "analyze_quality",
        "run_quality_gate",
        "run_lint",
        "code_review_and_cleanup",
        "quality_analyzer",
    ],
}

DEFAULT_QUALITY_CONFIG = {
    "lintCommands": {},
}

DEFAULT_SERVER_CONFIG = {
    "port": 3104,
}


def get_project_dir() -> Path:
    return Path(os.environ.get("QGATE_PROJECT_DIR", os.getcwd()))


def default_config_path() -> Path:
    return get_project_dir() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def load_project_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load project configuration from .qgate/project-config.json.

    Returns default configuration if file doesn't exist or is invalid.
    """
    path = config_path or default_config_path()

    if not path.exists():
        return _get_default_config()

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return _get_default_config()

    if not isinstance(config, dict):
        logger.warning("Ignoring config %s: top level is not an object", path)
        return _get_default_config()

    effective = _get_default_config()
    _deep_merge(effective, config)
    return effective


def _get_default_config() -> Dict[str, Any]:
    """Return default project configuration."""
    return {
        "version": 1,
        "settings": _deep_copy(DEFAULT_SETTINGS),
        "quality": _deep_copy(DEFAULT_QUALITY_CONFIG),
        "server": _deep_copy(DEFAULT_SERVER_CONFIG),
    }


def _deep_copy(d: dict) -> dict:
    """Simple deep copy for JSON-compatible dicts."""
    return json.loads(json.dumps(d))


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base, recursing into nested dicts."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif value is not None:
            base[key] = value


def get_thresholds(config_path: Optional[Path] = None) -> Dict[str, float]:
    """Get the complexity/maintainability thresholds from project config."""
    config = load_project_config(config_path)
    return config.get("settings", {}).get("thresholds", DEFAULT_SETTINGS["thresholds"])


def get_quality_tool_names(config_path: Optional[Path] = None) -> list[str]:
    """Tool names that count as quality checks in the cheating history signal."""
    config = load_project_config(config_path)
    return list(config.get("settings", {}).get("qualityToolNames", DEFAULT_SETTINGS["qualityToolNames"]))


def get_lint_command(language: str, config_path: Optional[Path] = None) -> Optional[str]:
    """Get the lint command override for a specific language."""
    config = load_project_config(config_path)
    return config.get("quality", {}).get("lintCommands", {}).get(language)


def get_server_port(config_path: Optional[Path] = None) -> int:
    config = load_project_config(config_path)
    return int(config.get("server", {}).get("port", DEFAULT_SERVER_CONFIG["port"]))


def build_safety_policy(config_path: Optional[Path] = None) -> SafetyPolicy:
    """Build a SafetyPolicy from settings.safety."""
    safety = load_project_config(config_path)["settings"]["safety"]
    return SafetyPolicy(
        temp_file_patterns=safety["tempFilePatterns"],
        test_temp_patterns=safety["testTempPatterns"],
        artifact_patterns=safety["artifactPatterns"],
        protected_dirs=safety["protectedDirs"],
        extra_critical_paths=safety["extraCriticalPaths"],
        max_concurrency=safety["maxConcurrency"],
        batch_size=safety["batchSize"],
        batch_timeout_seconds=safety["batchTimeoutSeconds"],
        max_path_length=safety["maxPathLength"],
    )


# The safety policy is process-wide and read-only once loaded.
_policy: Optional[SafetyPolicy] = None
_policy_lock = threading.Lock()


def get_safety_policy() -> SafetyPolicy:
    """Get or create the process-wide safety policy."""
    global _policy
    with _policy_lock:
        if _policy is None:
            try:
                _policy = build_safety_policy()
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Invalid safety settings, using defaults: %s", e)
                _policy = SafetyPolicy()
            logger.info(
                "Safety policy loaded (max_concurrency=%d, batch_size=%d)",
                _policy.max_concurrency,
                _policy.batch_size,
            )
        return _policy


def reset_safety_policy() -> None:
    """Drop the cached policy so the next call reloads it."""
    global _policy
    with _policy_lock:
        _policy = None
