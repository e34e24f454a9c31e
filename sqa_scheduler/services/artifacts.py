from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from sqa_scheduler.constants import ARTIFACT_DIR_RE, REPORT_DIR_NAME, RESULTS_DIR_NAME

LOGGER = logging.getLogger("sqa.artifacts")


class ArtifactAccessError(PermissionError):
    """The requested artifact lies outside its artifacts directory."""


class ArtifactStore:
    """Locate Playwright output folders under the project root and map their files to URLs."""

    def __init__(self, root: Optional[Path] = None, base_url: str = "/artifacts") -> None:
        resolved_root = root or Path.cwd()
        self._root = resolved_root.resolve()
        self._base_url = base_url.rstrip("/")

    @property
    def report_dir(self) -> Path:
        return self._root / REPORT_DIR_NAME

    @property
    def results_dir(self) -> Path:
        return self._root / RESULTS_DIR_NAME

    def report_candidates(self) -> List[Path]:
        return [self.report_dir / "report.json", self.results_dir / "report.json"]

    def href(self, path: Optional[str]) -> Optional[str]:
        """Re-root ``path`` at the first known output folder in it; None when no marker is present."""
        if not path:
            return None
        parts = [part for part in str(path).replace("\\", "/").split("/") if part]
        for index, part in enumerate(parts):
            tail = parts[index + 1 :]
            if not tail:
                continue
            if part in (RESULTS_DIR_NAME, REPORT_DIR_NAME):
                prefix = f"/{part}"
            elif ARTIFACT_DIR_RE.match(part):
                prefix = f"{self._base_url}/{part}"
            else:
                continue
            return prefix + "/" + "/".join(quote(segment) for segment in tail)
        return None

    def resolve(self, dir_name: str, relative: str) -> Path:
        """Return the file ``relative`` inside artifact folder ``dir_name``.

        Raises FileNotFoundError for unknown folders or files and ArtifactAccessError
        when the path escapes the folder.
        """
        if not ARTIFACT_DIR_RE.match(dir_name or ""):
            raise FileNotFoundError(dir_name)
        base = (self._root / dir_name).resolve()
        target = (base / relative).resolve()
        try:
            target.relative_to(base)
        except ValueError:
            LOGGER.warning("Rejected artifact path outside %s: %s", dir_name, relative)
            raise ArtifactAccessError(relative) from None
        if not target.is_file():
            raise FileNotFoundError(str(target))
        return target
