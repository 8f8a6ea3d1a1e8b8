"""Multi-factor importance scoring of repository files.

Each file gets named components (structure, file type, recency, size, code
density and, when its weight is positive, import-graph connectivity). The
score is their sum clamped to [0, 1]; a file is selected when it reaches the
inclusion threshold.
"""

from __future__ import annotations

import json
import os
import posixpath
import re
import time
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

from condense_repo.config import ScoredFile
from condense_repo.exceptions import InvalidRepositoryError
from condense_repo.file_manipulation import relpath
from condense_repo.logging import logger
from condense_repo.patterns import PatternMatcher
from condense_repo.scoring.density import LineClassifierDensity, StructuralDensity
from condense_repo.scoring.dependency_graph import DependencyGraph
from condense_repo.settings import ScoringConfig

if TYPE_CHECKING:
    from collections.abc import Sequence

    from condense_repo.scoring.density import DensityAnalyzer

ENTRY_POINT_PATTERNS = ("main.*", "index.*", "app.*", "server.*", "start.*", "init.*", "bootstrap.*")
SECONDS_PER_DAY = 86_400
COMPONENTS = ("structure", "file_type", "recency", "size", "density")


@lru_cache(maxsize=256)
def _wildcard_regex(pattern: str) -> re.Pattern[str]:
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def matches_any(text: str, patterns: Sequence[str], *, whole: bool = False) -> bool:
    """Match a text against simple `*` wildcard patterns.

    Args:
        text (str): file name or relative path
        patterns (Sequence[str]): wildcard patterns, `*` matching anything
        whole (bool): require the pattern to cover the whole text instead of
            occurring anywhere in it

    Returns:
        bool: whether one pattern matches
    """
    for pattern in patterns:
        regex = _wildcard_regex(pattern)
        if (regex.fullmatch(text) if whole else regex.search(text)) is not None:
            return True
    return False


class FileScorer:
    """Scores the files of a repository.

    Args:
        config (ScoringConfig | None): weights, thresholds and pattern lists
        matcher (PatternMatcher | None): file filter, built for each scanned
            repository when None
        now (float | None): fixed epoch time used for recency, the clock when None
        density (DensityAnalyzer | None): density analyzer, chosen from
            `config.use_tree_sitter` when None
    """

    def __init__(
        self,
        config: ScoringConfig | None = None,
        matcher: PatternMatcher | None = None,
        *,
        now: float | None = None,
        density: DensityAnalyzer | None = None,
    ) -> None:
        self._config = config or ScoringConfig()
        self._matcher = matcher
        self._now = now
        self._custom_density = density
        self._density = density or self._default_density(self._config)

    @staticmethod
    def _default_density(config: ScoringConfig) -> DensityAnalyzer:
        return StructuralDensity() if config.use_tree_sitter else LineClassifierDensity()

    @property
    def config(self) -> ScoringConfig:
        return self._config

    def set_config(self, config: ScoringConfig) -> None:
        """Replace the whole configuration."""
        self._config = config
        if self._custom_density is None:
            self._density = self._default_density(config)

    # Repository

    def collect(self, root: Path, matcher: PatternMatcher) -> list[str]:
        """List the relative paths of the files eligible for scoring, sorted."""
        found: list[str] = []
        for dirpath, dirs, files in os.walk(root):
            base = Path(dirpath)
            dirs[:] = sorted(d for d in dirs if not matcher.is_dir_ignored(relpath(base / d, root)))
            for name in files:
                rel = relpath(base / name, root)
                if matcher.should_process(rel) and (base / name).is_file():
                    found.append(rel)
        return sorted(found)

    def score_repository(self, root: Path) -> list[ScoredFile]:
        """Score every eligible file of a repository.

        Args:
            root (Path): repository root

        Raises:
            InvalidRepositoryError: if root is missing or not a directory

        Returns:
            list[ScoredFile]: scored files, best first; equal scores keep
                relative path order
        """
        if not root.is_dir():
            raise InvalidRepositoryError(folder=root)
        root = root.resolve()
        matcher = self._matcher or PatternMatcher.for_repository(root)
        rels = self.collect(root, matcher)
        graph = DependencyGraph.build(root, rels) if self._config.dependency_graph_weight > 0 else None
        scored = [self.score_file(root / rel, root, graph=graph) for rel in rels]
        scored.sort(key=lambda s: s.score, reverse=True)
        logger.info(
            "Scored %d files under %s, %d selected",
            len(scored),
            root,
            sum(1 for s in scored if s.included),
        )
        return scored

    def score_file(self, path: Path, root: Path, *, graph: DependencyGraph | None = None) -> ScoredFile:
        """Score one file.

        Args:
            path (Path): the file
            root (Path): repository root
            graph (DependencyGraph | None): import graph of the repository;
                connectivity is 0 without one

        Returns:
            ScoredFile: the score with its components
        """
        cfg = self._config
        rel = relpath(path, root)
        components = {
            "structure": self.structure_score(rel),
            "file_type": self.file_type_score(rel),
            "recency": self.recency_score(path),
            "size": self.size_score(path),
            "density": self.density_score(path),
        }
        if cfg.dependency_graph_weight > 0:
            raw = graph.connectivity(rel) if graph is not None else 0.0
            components["connectivity"] = raw * cfg.dependency_graph_weight
        score = min(1.0, max(0.0, sum(components.values())))
        logger.debug("Scored %s: %.3f", rel, score)
        return ScoredFile(
            path=path,
            rel=rel,
            score=score,
            component_scores=components,
            threshold=cfg.inclusion_threshold,
        )

    def get_selected_files(self, scored: Sequence[ScoredFile]) -> list[Path]:
        return [s.path for s in scored if s.included]

    # Components

    def is_source_file(self, rel: str) -> bool:
        return posixpath.splitext(rel)[1].lower() in self._config.source_code_extensions

    def is_config_file(self, rel: str) -> bool:
        return posixpath.splitext(rel)[1].lower() in self._config.config_file_extensions

    def is_documentation_file(self, rel: str) -> bool:
        return posixpath.splitext(rel)[1].lower() in self._config.documentation_extensions

    def is_test_file(self, rel: str) -> bool:
        # Leading slash so that "*/tests/*" also catches a top level tests directory
        return matches_any(f"/{rel}", self._config.test_file_patterns)

    @staticmethod
    def is_entry_point(rel: str) -> bool:
        return matches_any(posixpath.basename(rel), ENTRY_POINT_PATTERNS, whole=True)

    def structure_score(self, rel: str) -> float:
        """Location bonuses: root file, important file, important directory and entry point."""
        cfg = self._config
        score = 0.0
        name = posixpath.basename(rel)
        if "/" not in rel:
            score += cfg.root_files_weight
            if matches_any(name, cfg.important_file_patterns, whole=True):
                score += cfg.root_files_weight * 0.5
        if any(rel.startswith(prefix) for prefix in cfg.important_dir_patterns):
            score += cfg.top_level_dirs_weight
        if self.is_entry_point(rel):
            score += cfg.entry_points_weight
        return score

    def file_type_score(self, rel: str) -> float:
        """Weight of the file category; test files get the test weight whatever their category."""
        cfg = self._config
        if self.is_test_file(rel):
            return cfg.test_files_weight
        if self.is_source_file(rel):
            return cfg.source_code_weight
        if self.is_config_file(rel):
            return cfg.config_files_weight
        if self.is_documentation_file(rel):
            return cfg.documentation_weight
        return 0.0

    def recency_score(self, path: Path) -> float:
        """Linear decay from the full weight at age 0 to nothing at the recency window."""
        cfg = self._config
        if cfg.recently_modified_weight <= 0 or cfg.recent_time_window_days <= 0:
            return 0.0
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            logger.warning("Could not read modification time of %s: %s", path, e)
            return 0.0
        now = self._now if self._now is not None else time.time()
        days = max(0, int((now - mtime) // SECONDS_PER_DAY))
        if days > cfg.recent_time_window_days:
            return 0.0
        return (1.0 - days / cfg.recent_time_window_days) * cfg.recently_modified_weight

    def size_score(self, path: Path) -> float:
        """Smaller files score higher, files above the large file threshold get nothing."""
        cfg = self._config
        if cfg.file_size_weight <= 0 or cfg.large_file_threshold <= 0:
            return 0.0
        try:
            size = path.stat().st_size
        except OSError as e:
            logger.warning("Could not read size of %s: %s", path, e)
            return 0.0
        if size > cfg.large_file_threshold:
            return 0.0
        return (1.0 - size / cfg.large_file_threshold) * cfg.file_size_weight

    def density_score(self, path: Path) -> float:
        """Weighted code density of source files; other files get nothing."""
        cfg = self._config
        if cfg.code_density_weight <= 0 or not self.is_source_file(path.name):
            return 0.0
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read %s for density: %s", path, e)
            return 0.0
        raw = self._density.analyze(content, path)
        return min(1.0, max(0.0, raw)) * cfg.code_density_weight

    # Report

    def report(self, scored: Sequence[ScoredFile]) -> dict[str, Any]:
        """Build the scoring report.

        Args:
            scored (Sequence[ScoredFile]): scored files

        Returns:
            dict[str, Any]: `config` echo, per file scores with components and a `summary` block
        """
        total = len(scored)
        included = sum(1 for s in scored if s.included)
        return {
            "config": self._config.model_dump(mode="json"),
            "files": [
                {
                    "path": s.rel,
                    "score": s.score,
                    "included": s.included,
                    "components": dict(s.component_scores),
                }
                for s in scored
            ],
            "summary": {
                "total_files": total,
                "included_files": included,
                "inclusion_percentage": included / total * 100.0 if total else 0.0,
            },
        }

    def report_json(self, scored: Sequence[ScoredFile]) -> str:
        return json.dumps(self.report(scored), indent=2)
