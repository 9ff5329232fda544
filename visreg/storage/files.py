"""Optional filesystem store for screenshots, kept out of the run/result records."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from visreg.diff.imaging import ImagePayload, payload_to_bytes
from visreg.models.project import Baseline

logger = logging.getLogger(__name__)

SUBDIRS = ("baselines", "current", "diffs")

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]")


def safe_name(part: str) -> str:
    """Reduce a user-supplied value to a single path component."""
    cleaned = _UNSAFE_RE.sub("_", str(part)).replace("..", "_")
    return cleaned.strip(".") or "_"


class ScreenshotStore:
    """Writes PNGs under ``baselines/``, ``current/`` and ``diffs/``.

    File names follow ``{project_id}_{test_id}_{YYYY-MM-DD}_{HH-MM-SS}_{role}.png``.
    Write failures are logged and reported as missing paths, never raised.
    """

    def __init__(self, root: Path, enabled: bool = True):
        self.root = Path(root)
        self.enabled = enabled
        if enabled:
            for sub in SUBDIRS:
                (self.root / sub).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _stamp(when: Optional[datetime] = None) -> str:
        when = when or datetime.now()
        return when.strftime("%Y-%m-%d_%H-%M-%S")

    def _write(self, path: Path, payload: ImagePayload) -> Optional[str]:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload_to_bytes(payload))
        except Exception as e:
            logger.warning("Failed to save screenshot %s: %s", path, e)
            return None
        logger.debug("Saved screenshot %s", path)
        return str(path)

    def save_screenshots(
        self,
        project_id: str,
        test_id: str,
        current: Optional[ImagePayload] = None,
        diff: Optional[ImagePayload] = None,
        baseline: Optional[ImagePayload] = None,
        when: Optional[datetime] = None,
    ) -> dict[str, str]:
        """Save the images given; returns role -> path for the ones written."""
        if not self.enabled:
            return {}
        prefix = f"{safe_name(project_id)}_{safe_name(test_id)}_{self._stamp(when)}"
        targets = (
            ("baseline", "baselines", baseline),
            ("current", "current", current),
            ("diff", "diffs", diff),
        )
        paths = {}
        for role, sub, payload in targets:
            if payload is None:
                continue
            written = self._write(self.root / sub / f"{prefix}_{role}.png", payload)
            if written:
                paths[role] = written
        return paths

    def save_baseline(self, baseline: Baseline) -> Optional[str]:
        if not self.enabled:
            return None
        name = (
            f"{safe_name(baseline.project_id)}_{safe_name(baseline.name)}"
            f"_v{baseline.version}_{safe_name(baseline.id)}.png"
        )
        return self._write(self.root / "baselines" / name, baseline.image)

    def cleanup_old_files(self, days: int = 7) -> int:
        """Delete current/diff screenshots older than ``days``; baselines are kept."""
        if not self.enabled:
            return 0
        cutoff = time.time() - days * 86400
        removed = 0
        for sub in ("current", "diffs"):
            directory = self.root / sub
            if not directory.exists():
                continue
            for path in directory.glob("*.png"):
                try:
                    if path.stat().st_mtime < cutoff:
                        path.unlink()
                        removed += 1
                except OSError as e:
                    logger.warning("Could not remove %s: %s", path, e)
        if removed:
            logger.info("Removed %d screenshot(s) older than %d days", removed, days)
        return removed
