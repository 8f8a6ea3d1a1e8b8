"""Importance scoring of repository files."""

from __future__ import annotations

from condense_repo.scoring.density import DensityAnalyzer, LineClassifierDensity, StructuralDensity
from condense_repo.scoring.dependency_graph import DependencyGraph, FileIndex, resolve_import, scan_imports
from condense_repo.scoring.scorer import FileScorer, matches_any

__all__ = [
    "DensityAnalyzer",
    "DependencyGraph",
    "FileIndex",
    "FileScorer",
    "LineClassifierDensity",
    "StructuralDensity",
    "matches_any",
    "resolve_import",
    "scan_imports",
]
