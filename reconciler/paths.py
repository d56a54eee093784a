"""Path utilities for locating agent transcript files."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from reconciler import config

logger = logging.getLogger("reconciler.paths")

_PROJECT_HASH_PATTERN = re.compile(r"[/_.~]")
TRANSCRIPT_SUFFIX = ".jsonl"


def hash_project_path(project_path: str) -> str:
    """Convert '/Users/foo/my_app' to '-Users-foo-my-app'."""
    return _PROJECT_HASH_PATTERN.sub("-", project_path)


def project_dir(project_path: str, claude_dir: Optional[Path] = None) -> Path:
    root = claude_dir if claude_dir is not None else config.CLAUDE_DIR
    return root / "projects" / hash_project_path(project_path)


def session_file_path(session_id: str, project_path: str, claude_dir: Optional[Path] = None) -> Path:
    return project_dir(project_path, claude_dir) / f"{session_id}{TRANSCRIPT_SUFFIX}"


def find_latest_transcript(directory: Path) -> Optional[Path]:
    """Return the most recently modified transcript in `directory`, if any."""
    if not directory.is_dir():
        return None
    candidates: list[tuple[float, Path]] = []
    try:
        for path in directory.glob(f"*{TRANSCRIPT_SUFFIX}"):
            try:
                candidates.append((path.stat().st_mtime, path))
            except OSError:
                continue
    except OSError as exc:
        logger.warning("Error scanning %s: %s", directory, exc)
        return None
    if not candidates:
        return None
    return max(candidates)[1]
