"""Code density analyzers.

Both analyzers map a source text to a raw score in [0, 1]; the scorer
multiplies it by the configured density weight.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from condense_repo.config import FileType, guess_file_type
from condense_repo.exceptions import BackendUnavailableError
from condense_repo.logging import logger
from condense_repo.treesitter import TreeSitterBackend, count_nodes

if TYPE_CHECKING:
    from pathlib import Path

_LINE_COMMENT_PREFIXES = ("//", "#", "--", ";")


class DensityAnalyzer(Protocol):
    """Anything that rates how much of a source text is real code."""

    def analyze(self, content: str, path: Path | str) -> float: ...


@dataclass(frozen=True)
class _LanguageRules:
    function: re.Pattern[str] | None
    klass: re.Pattern[str] | None
    imports: re.Pattern[str] | None
    comment_start: re.Pattern[str]
    comment_end: re.Pattern[str]


_C_COMMENT = (re.compile(r"/\*"), re.compile(r"\*/"))

_RULES: dict[FileType, _LanguageRules] = {
    FileType.PYTHON: _LanguageRules(
        function=re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(.*\)\s*(?:->.*)?:"),
        klass=re.compile(r"^\s*class\s+\w+.*:"),
        imports=re.compile(r"^\s*(?:import|from)\s+\w+"),
        comment_start=re.compile(r"^\s*(?:\"\"\"|''')"),
        comment_end=re.compile(r"(?:\"\"\"|''')\s*$"),
    ),
    FileType.JAVASCRIPT: _LanguageRules(
        function=re.compile(r"function\s+\w+\s*\(|const\s+\w+\s*=\s*\(|\w+\s*=\s*\(|\w+\s*\(.*\)\s*\{"),
        klass=re.compile(r"class\s+\w+"),
        imports=re.compile(r"\b(?:import|require)\b"),
        comment_start=_C_COMMENT[0],
        comment_end=_C_COMMENT[1],
    ),
    FileType.CPP: _LanguageRules(
        function=re.compile(r"\w+\s+\w+\s*\(.*\)\s*(?:const)?\s*\{?"),
        klass=re.compile(r"\b(?:class|struct)\s+\w+"),
        imports=re.compile(r"#include"),
        comment_start=_C_COMMENT[0],
        comment_end=_C_COMMENT[1],
    ),
    FileType.JAVA: _LanguageRules(
        function=re.compile(r"(?:public|private|protected)?\s*(?:static)?\s*\w+\s+\w+\s*\(.*\)\s*\{?"),
        klass=re.compile(r"(?:public|private|protected)?\s*(?:static)?\s*class\s+\w+"),
        imports=re.compile(r"import\s+\w+"),
        comment_start=_C_COMMENT[0],
        comment_end=_C_COMMENT[1],
    ),
    FileType.RUBY: _LanguageRules(
        function=re.compile(r"\bdef\s+\w+"),
        klass=re.compile(r"\bclass\s+\w+"),
        imports=re.compile(r"\b(?:require|include)\b"),
        comment_start=re.compile(r"^=begin"),
        comment_end=re.compile(r"^=end"),
    ),
}
_RULES[FileType.TYPESCRIPT] = _RULES[FileType.JAVASCRIPT]
_RULES[FileType.C] = _RULES[FileType.CPP]
_GENERIC = _LanguageRules(None, None, None, _C_COMMENT[0], _C_COMMENT[1])


@dataclass(frozen=True)
class LineCounts:
    """Line classification of a source text."""

    total: int = 0
    code: int = 0
    comment: int = 0
    blank: int = 0
    functions: int = 0
    classes: int = 0
    imports: int = 0
    max_depth: int = 0


def classify_lines(content: str, file_type: FileType) -> LineCounts:
    """Sort the lines of a text into code, comment and blank lines.

    Block comments run from a start marker to the next end marker; a line
    carrying both markers is one comment line.

    Args:
        content (str): the source text
        file_type (FileType): its language family

    Returns:
        LineCounts: the counts
    """
    rules = _RULES.get(file_type, _GENERIC)
    total = code = comment = blank = functions = classes = imports = 0
    depth = max_depth = 0
    in_block = False
    for raw in content.splitlines():
        total += 1
        line = raw.strip()
        if in_block:
            comment += 1
            if rules.comment_end.search(line):
                in_block = False
            continue
        start = rules.comment_start.search(line)
        if start:
            comment += 1
            in_block = not rules.comment_end.search(line, start.end())
            continue
        if not line:
            blank += 1
            continue
        if line.startswith(_LINE_COMMENT_PREFIXES):
            comment += 1
            continue
        if rules.function and rules.function.search(line):
            functions += 1
        if rules.klass and rules.klass.search(line):
            classes += 1
        if rules.imports and rules.imports.search(line):
            imports += 1
        for ch in line:
            if ch == "{":
                depth += 1
                max_depth = max(max_depth, depth)
            elif ch == "}":
                depth = max(0, depth - 1)
        code += 1
    return LineCounts(
        total=total,
        code=code,
        comment=comment,
        blank=blank,
        functions=functions,
        classes=classes,
        imports=imports,
        max_depth=max_depth,
    )


def density_from_counts(counts: LineCounts) -> float:
    """Turn line counts into a density score in [0, 1].

    Base is the share of code lines, scaled by 0.6. A capped bonus rewards
    function and class definitions and another a 10 to 30% comment ratio;
    uncommented code above 20 lines and import-heavy glue files are penalised.
    """
    density = counts.code / max(counts.total, 1)
    structure_bonus = 0.0
    if counts.functions or counts.classes:
        structure_bonus = min(0.2, (counts.functions + 2 * counts.classes) * 0.02)
    comment_penalty = 0.1 if counts.comment == 0 and counts.code > 20 else 0.0  # noqa: PLR2004
    comment_bonus = 0.0
    if counts.comment > 0:
        ratio = counts.comment / max(counts.code, 1)
        if 0.1 <= ratio <= 0.3:  # noqa: PLR2004
            comment_bonus = 0.1
    import_penalty = 0.1 if counts.imports > 5 and counts.code < counts.imports * 3 else 0.0  # noqa: PLR2004
    score = density * 0.6 + structure_bonus + comment_bonus - comment_penalty - import_penalty
    return min(1.0, max(0.0, score))


class LineClassifierDensity:
    """Density from per-language line classification."""

    name = "line-classifier"

    def analyze(self, content: str, path: Path | str) -> float:
        return density_from_counts(classify_lines(content, guess_file_type(path)))


_FUNCTION_NODES = frozenset(
    {
        "function_definition",
        "function_declaration",
        "function_item",
        "method_definition",
        "method_declaration",
        "constructor_declaration",
        "arrow_function",
    },
)
_CLASS_NODES = frozenset(
    {
        "class_definition",
        "class_declaration",
        "class_specifier",
        "struct_specifier",
        "struct_item",
        "interface_declaration",
        "impl_item",
        "class",
        "module",
    },
)
_CONDITIONAL_NODES = frozenset(
    {
        "if_statement",
        "if_expression",
        "elif_clause",
        "switch_statement",
        "switch_expression",
        "case_statement",
        "conditional_expression",
        "ternary_expression",
        "match_expression",
        "if",
        "unless",
    },
)


class StructuralDensity:
    """Density from syntax-tree node counts.

    Score is `0.1 * functions + 0.2 * classes + 0.05 * conditionals`, capped
    at 1. Any backend problem falls back to the line classifier.
    """

    name = "structural"

    def __init__(
        self,
        backend: TreeSitterBackend | None = None,
        fallback: DensityAnalyzer | None = None,
    ) -> None:
        self._backend = backend or TreeSitterBackend()
        self._fallback = fallback or LineClassifierDensity()

    def analyze(self, content: str, path: Path | str) -> float:
        file_type = guess_file_type(path)
        if not self._backend.supports(file_type):
            return self._fallback.analyze(content, path)
        try:
            tree = self._backend.parse(content, file_type)
            functions = count_nodes(tree, _FUNCTION_NODES)
            classes = count_nodes(tree, _CLASS_NODES)
            conditionals = count_nodes(tree, _CONDITIONAL_NODES)
        except BackendUnavailableError:
            return self._fallback.analyze(content, path)
        except (ValueError, RuntimeError) as e:
            logger.warning("Structural density failed for %s: %s", path, e)
            return self._fallback.analyze(content, path)
        return min(1.0, 0.1 * functions + 0.2 * classes + 0.05 * conditionals)
