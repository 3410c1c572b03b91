"""Mirror the PRD file into a GitHub issue body via the `gh` CLI."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

GH_TIMEOUT_SECONDS = 60


def is_gh_available() -> bool:
    """Whether `gh` is installed and authenticated."""

    try:
        completed = subprocess.run(  # noqa: S603
            ["gh", "auth", "status"],  # noqa: S607
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return completed.returncode == 0


def sync_prd_to_issue(prd_file: Path, issue_number: int, work_dir: Path) -> bool:
    """Replace the body of `issue_number` with the PRD content; `False` on any failure."""

    if not is_gh_available():
        logger.warning("Cannot sync: gh CLI not installed or not authenticated")
        return False

    prd_path = prd_file if prd_file.is_absolute() else work_dir / prd_file
    try:
        content = prd_path.read_text("utf-8")
    except OSError:
        logger.warning("Cannot sync: %s not found", prd_file)
        return False

    logger.debug("Syncing %s to issue #%d", prd_file, issue_number)
    try:
        completed = subprocess.run(  # noqa: S603
            ["gh", "issue", "edit", str(issue_number), "--body", content],  # noqa: S607
            cwd=work_dir,
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        logger.warning("Failed to sync PRD to issue #%d: %s", issue_number, error)
        return False

    if completed.returncode != 0:
        logger.warning(
            "Failed to sync PRD to issue #%d: %s",
            issue_number,
            completed.stderr.strip(),
        )
        return False
    logger.info("Synced PRD -> GitHub issue #%d", issue_number)
    return True
