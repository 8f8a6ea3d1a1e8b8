"""Import graph between the files of a repository.

Imports are found line by line with per-language regexes, then resolved
against an index of the repository files: absolute paths first, then paths
relative to the importing file (as written, with a source extension, or as a
directory index file), and finally a lookup by bare file name. Imports that
resolve to nothing are dropped.
"""

from __future__ import annotations

import math
import posixpath
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

from condense_repo.config import FileType, guess_file_type
from condense_repo.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

RELATIVE_EXTENSIONS = (".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".rb", ".php", ".go", ".rs")
INDEX_FILES = ("index.js", "index.ts", "index.jsx", "index.tsx", "__init__.py")
CONNECTIVITY_LOG_SCALE = 5.0

_RUST_SKIPPED_SEGMENTS = frozenset({"crate", "self", "super"})
_RUST_EXTERNAL_ROOTS = ("std::", "core::", "alloc::")


class ImportSpec(NamedTuple):
    """An import target as written in a source file.

    Attributes:
        target: imported path or module name
        by_name: whether the bare file name lookup may resolve it
    """

    target: str
    by_name: bool = True


@dataclass(frozen=True)
class _ImportRules:
    single: tuple[re.Pattern[str], ...]
    block_start: re.Pattern[str] | None = None
    block_end: re.Pattern[str] | None = None
    block_item: re.Pattern[str] | None = None
    comment_prefixes: tuple[str, ...] = ("//", "#")


_JS_RULES = _ImportRules(
    single=(
        re.compile(r"\b(?:import|export)\s+.*?from\s+['\"](?P<target>.+?)['\"]"),
        re.compile(r"\bimport\s+['\"](?P<target>.+?)['\"]"),
        re.compile(r"\brequire\s*\(\s*['\"](?P<target>.+?)['\"]\s*\)"),
    ),
    block_start=re.compile(r"^\s*(?:import|export)\s+(?:type\s+)?(?:[\w$]+\s*,\s*)?\{[^}]*$"),
    block_end=re.compile(r"^[^{]*\}\s*from\s+['\"](?P<target>.+?)['\"]"),
    comment_prefixes=("//", "/*", "*"),
)
_C_RULES = _ImportRules(
    single=(re.compile(r"^\s*#\s*include\s*[<\"](?P<target>.+?)[>\"]"),),
    comment_prefixes=("//", "/*", "*"),
)

_RULES: dict[FileType, _ImportRules] = {
    FileType.JAVASCRIPT: _JS_RULES,
    FileType.TYPESCRIPT: _JS_RULES,
    FileType.C: _C_RULES,
    FileType.CPP: _C_RULES,
    FileType.JAVA: _ImportRules(
        single=(re.compile(r"^\s*import\s+(?:static\s+)?(?P<target>[\w.*]+)\s*;"),),
        comment_prefixes=("//", "/*", "*"),
    ),
    FileType.GO: _ImportRules(
        single=(re.compile(r"^\s*import\s+(?:[\w.]+\s+)?\"(?P<target>.+?)\""),),
        block_start=re.compile(r"^\s*import\s*\(\s*$"),
        block_end=re.compile(r"^\s*\)"),
        block_item=re.compile(r"\"(?P<target>.+?)\""),
    ),
    FileType.RUST: _ImportRules(
        single=(
            re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?use\s+(?P<target>[\w:]+)"),
            re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?mod\s+(?P<target>\w+)\s*;"),
        ),
        block_start=re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?use\s+(?P<target>[\w:]+?)(?:::)?\{[^}]*$"),
        block_end=re.compile(r"\}"),
    ),
    FileType.RUBY: _ImportRules(
        single=(
            re.compile(r"\brequire_relative\s*\(?\s*['\"](?P<relative>.+?)['\"]"),
            re.compile(r"\b(?:require|load)\s*\(?\s*['\"](?P<target>.+?)['\"]"),
        ),
        comment_prefixes=("#",),
    ),
    FileType.PHP: _ImportRules(
        single=(
            re.compile(r"\b(?:require|include)(?:_once)?\s*\(?\s*['\"](?P<target>.+?)['\"]"),
            re.compile(r"^\s*use\s+(?P<target>[\w\\]+)"),
        ),
    ),
}

_PY_FROM = re.compile(r"^\s*from\s+(?P<module>\.*[\w.]*)\s+import\s+(?P<names>.*)$")
_PY_IMPORT = re.compile(r"^\s*import\s+(?P<modules>[\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)")
_PY_NAME = re.compile(r"^\s*(\w+)")


def _match_target(match: re.Match[str]) -> str | None:
    groups = match.groupdict()
    if groups.get("relative"):
        target = groups["relative"]
        return target if target.startswith(".") else f"./{target}"
    return groups.get("target") or None


def _python_names(module: str, names: str) -> list[ImportSpec]:
    prefix = module if module.endswith(".") else f"{module}."
    out: list[ImportSpec] = []
    for chunk in names.split(","):
        m = _PY_NAME.match(chunk.strip().strip("()"))
        if m:
            out.append(ImportSpec(prefix + m.group(1), by_name=False))
    return out


def _scan_python(lines: Iterable[str]) -> list[ImportSpec]:
    found: list[ImportSpec] = []
    block: str | None = None
    for line in lines:
        stripped = line.strip()
        if block is not None:
            body = stripped.split("#", 1)[0]
            found.extend(_python_names(block, body.split(")", 1)[0]))
            if ")" in body:
                block = None
            continue
        if not stripped or stripped.startswith("#"):
            continue
        m = _PY_FROM.match(line)
        if m:
            module, names = m.group("module"), m.group("names").split("#", 1)[0].strip()
            if module.strip("."):
                found.append(ImportSpec(module))
            if names.startswith("(") and ")" not in names:
                block = module
                names = names[1:]
            found.extend(_python_names(module, names))
            continue
        m = _PY_IMPORT.match(line)
        if m:
            found.extend(ImportSpec(part.split()[0]) for part in m.group("modules").split(","))
    return found


def scan_imports(text: str, file_type: FileType) -> list[ImportSpec]:
    """List the imports of a source text.

    Args:
        text (str): the source text
        file_type (FileType): its language family

    Returns:
        list[ImportSpec]: the import targets in source order, unresolved
    """
    lines = text.splitlines()
    if file_type is FileType.PYTHON:
        return _scan_python(lines)
    rules = _RULES.get(file_type)
    if rules is None:
        return []
    found: list[ImportSpec] = []
    block: str | None = None
    for line in lines:
        if block is not None:
            if rules.block_item is not None:
                found.extend(ImportSpec(m.group("target")) for m in rules.block_item.finditer(line))
            end = rules.block_end.search(line) if rules.block_end is not None else None
            if end is not None:
                target = end.groupdict().get("target") or block
                if target:
                    found.append(ImportSpec(target))
                block = None
            continue
        stripped = line.strip()
        if not stripped or stripped.startswith(rules.comment_prefixes):
            continue
        if rules.block_start is not None:
            start = rules.block_start.search(line)
            if start is not None:
                block = start.groupdict().get("target") or ""
                continue
        for pattern in rules.single:
            for m in pattern.finditer(line):
                target = _match_target(m)
                if target:
                    found.append(ImportSpec(target))
    return found


class FileIndex:
    """Repository files by relative path and by file name, with and without extension."""

    def __init__(self, rel_paths: Iterable[str]) -> None:
        self.paths = frozenset(rel_paths)
        self._by_name: dict[str, list[str]] = defaultdict(list)
        for rel in sorted(self.paths):
            name = posixpath.basename(rel)
            self._by_name[name].append(rel)
            stem, ext = posixpath.splitext(name)
            if ext:
                self._by_name[stem].append(rel)

    def __contains__(self, rel: object) -> bool:
        return rel in self.paths

    def __len__(self) -> int:
        return len(self.paths)

    def lookup(self, name: str, suffix: str = "") -> str | None:
        """Find a file by name, preferring files ending with `suffix`."""
        candidates = self._by_name.get(name)
        if not candidates:
            return None
        if suffix:
            for candidate in candidates:
                if candidate.endswith(suffix):
                    return candidate
        return candidates[0]


def _join(directory: str, target: str) -> str | None:
    joined = posixpath.normpath(posixpath.join(directory, target))
    if joined == ".":
        return ""
    if joined == ".." or joined.startswith("../"):
        return None
    return joined


def _probe(index: FileIndex, base: str) -> str | None:
    if base and base in index:
        return base
    if base:
        for ext in RELATIVE_EXTENSIONS:
            if base + ext in index:
                return base + ext
    for name in INDEX_FILES:
        candidate = posixpath.join(base, name)
        if candidate in index:
            return candidate
    return None


def _candidate_names(target: str, file_type: FileType) -> list[str]:
    if file_type is FileType.JAVA:
        if target.endswith("*"):
            return []
        return [target.rsplit(".", 1)[-1] + ".java"]
    if file_type is FileType.RUST:
        if target.startswith(_RUST_EXTERNAL_ROOTS):
            return []
        return [seg for seg in reversed(target.split("::")) if seg and seg not in _RUST_SKIPPED_SEGMENTS]
    if file_type is FileType.PHP:
        return [target.replace("\\", "/").rsplit("/", 1)[-1]]
    name = posixpath.basename(target.rstrip("/"))
    return [name] if name else []


def _resolve_python(spec: ImportSpec, source_dir: str, index: FileIndex) -> str | None:
    dots = len(spec.target) - len(spec.target.lstrip("."))
    parts = [p for p in spec.target[dots:].split(".") if p]
    if dots:
        base = source_dir
        for _ in range(dots - 1):
            base = posixpath.dirname(base)
        bases = [base]
    else:
        bases = list(dict.fromkeys(("", source_dir)))
    for base in bases:
        path = posixpath.join(base, *parts) if parts else base
        candidates = [f"{path}.py"] if path else []
        candidates.append(posixpath.join(path, "__init__.py"))
        for candidate in candidates:
            if candidate in index:
                return candidate
    if not dots and parts and spec.by_name:
        return index.lookup(f"{parts[-1]}.py")
    return None


def resolve_import(spec: ImportSpec, source_rel: str, file_type: FileType, index: FileIndex) -> str | None:
    """Resolve an import to a repository file.

    Args:
        spec (ImportSpec): the import as scanned
        source_rel (str): relative path of the importing file
        file_type (FileType): language family of the importing file
        index (FileIndex): the repository files

    Returns:
        str | None: relative path of the imported file, None when unresolved
    """
    target = spec.target
    if not target:
        return None
    source_dir = posixpath.dirname(source_rel)
    if file_type is FileType.PYTHON:
        return _resolve_python(spec, source_dir, index)
    if target.startswith("/"):
        found = _probe(index, posixpath.normpath(target.lstrip("/")))
        if found is not None:
            return found
    if target.startswith(("./", "../")):
        base = _join(source_dir, target)
        found = _probe(index, base) if base is not None else None
        if found is not None:
            return found
    if file_type in {FileType.C, FileType.CPP}:
        base = _join(source_dir, target)
        if base and base in index:
            return base
        if target in index:
            return target
    if not spec.by_name:
        return None
    suffix = posixpath.splitext(source_rel)[1]
    for name in _candidate_names(target, file_type):
        found = index.lookup(name, suffix)
        if found is not None:
            return found
    return None


class DependencyGraph:
    """Resolved import edges between repository files."""

    def __init__(self, edges: Mapping[str, Iterable[str]]) -> None:
        self._edges: dict[str, tuple[str, ...]] = {
            source: tuple(sorted(set(targets) - {source})) for source, targets in edges.items()
        }
        self._in_degree: dict[str, int] = {}

    @classmethod
    def build(cls, root: Path, rel_paths: Sequence[str]) -> DependencyGraph:
        """Scan and resolve the imports of every source file.

        Args:
            root (Path): repository root
            rel_paths (Sequence[str]): the files eligible for scoring

        Returns:
            DependencyGraph: the graph
        """
        index = FileIndex(rel_paths)
        edges: dict[str, set[str]] = {}
        for rel in rel_paths:
            file_type = guess_file_type(rel)
            if file_type is not FileType.PYTHON and file_type not in _RULES:
                continue
            try:
                text = (root / rel).read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Could not scan imports of %s: %s", rel, e)
                continue
            resolved = (resolve_import(spec, rel, file_type, index) for spec in scan_imports(text, file_type))
            edges[rel] = {target for target in resolved if target is not None and target != rel}
        graph = cls(edges)
        logger.debug("Dependency graph: %d files, %d edges", len(graph), graph.edge_count)
        return graph

    def __len__(self) -> int:
        return len(self._edges)

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self._edges.values())

    def imports(self, rel: str) -> tuple[str, ...]:
        return self._edges.get(rel, ())

    def out_degree(self, rel: str) -> int:
        return len(self.imports(rel))

    def in_degree(self, rel: str) -> int:
        """Count the files importing `rel`.

        An importer counts once when one of its targets is `rel` or contains
        the file name of `rel`, so files sharing a name share importers.
        """
        if rel not in self._in_degree:
            name = posixpath.basename(rel)
            self._in_degree[rel] = sum(
                1
                for source, targets in self._edges.items()
                if source != rel and any(t == rel or name in t for t in targets)
            )
        return self._in_degree[rel]

    def connectivity(self, rel: str) -> float:
        """Raw connectivity in [0, 1]: `log2(in + out + 1) / 5`, 0 without edges."""
        total = self.in_degree(rel) + self.out_degree(rel)
        if total == 0:
            return 0.0
        return min(1.0, math.log2(total + 1) / CONNECTIVITY_LOG_SCALE)
