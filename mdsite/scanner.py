from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Optional

from .config import GlobbingConfig, SiteConfig


def matches_any(relative: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        candidates = [pattern]
        # "**/x" also matches "x" at the root of the scanned directory
        while candidates[-1].startswith("**/"):
            candidates.append(candidates[-1][3:])
        for candidate in candidates:
            if fnmatch.fnmatch(relative.lower(), candidate.lower()):
                return True
    return False


def scan(root: Path, globbing: GlobbingConfig, excludes: Optional[list[str]] = None) -> list[str]:
    if not root.is_dir():
        return []
    skipped = list(globbing.excludes) + list(excludes or [])
    found = set()
    for pattern in globbing.includes:
        for path in root.glob(pattern):
            if not path.is_file():
                continue
            relative = path.relative_to(root).as_posix()
            if not matches_any(relative, skipped):
                found.add(relative)
    return sorted(found)


class SourceScanner:
    def __init__(self, config: SiteConfig):
        self.config = config

    def _nested_excludes(self) -> list[str]:
        root = self.config.input.root.resolve()
        excludes = []
        for directory in (self.config.input.views_dir, self.config.output_dir):
            relative = os.path.relpath(directory.resolve(), root)
            if not relative.startswith("..") and relative != ".":
                excludes.append(f"{Path(relative).as_posix()}/**")
        return excludes

    def scan_sources(self) -> list[str]:
        return scan(self.config.input.root, self.config.input.sources, self._nested_excludes())

    def scan_assets(self) -> list[str]:
        return scan(self.config.input.assets_dir, self.config.input.assets)
