from __future__ import annotations

import re
from typing import TYPE_CHECKING

from condense_repo.config import EntityType, FileType, NamedEntity, guess_file_type
from condense_repo.ner.base import dedupe

if TYPE_CHECKING:
    from pathlib import Path

_C_FAMILY = frozenset({FileType.C, FileType.CPP})
_JS_FAMILY = frozenset({FileType.JAVASCRIPT, FileType.TYPESCRIPT})

_C_FUNCTION_EXCLUDES = frozenset({"if", "for", "while", "switch", "catch", "return", "sizeof"})
_JS_METHOD_EXCLUDES = frozenset({"if", "for", "while", "switch", "catch", "constructor"})
_PY_VARIABLE_EXCLUDES = frozenset({"if", "for", "while", "def"})
_JAVA_METHOD_EXCLUDES = frozenset({"if", "for", "while", "switch", "catch", "return", "new"})

# (regex, group, excluded names) per entity kind and language family.
_Rule = tuple[re.Pattern[str], int, frozenset[str]]
_NONE: frozenset[str] = frozenset()


def _rule(pattern: str, group: int = 1, excludes: frozenset[str] = _NONE) -> _Rule:
    return (re.compile(pattern, re.MULTILINE), group, excludes)


_C_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"\b(?:class|struct)\s+(\w+)")],
    EntityType.FUNCTION: [
        _rule(
            r"(\w+)\s*\([^{;]*\)\s*(?:const)?\s*(?:noexcept)?\s*(?:override)?\s*(?:final)?"
            r"\s*(?:=\s*0)?\s*(?:=\s*delete)?\s*(?:=\s*default)?\s*(?:;|\{)",
            excludes=_C_FUNCTION_EXCLUDES,
        ),
    ],
    EntityType.VARIABLE: [
        _rule(
            r"\b(?:int|float|double|char|bool|unsigned|long|short|size_t|uint\d+_t|int\d+_t"
            r"|std::string|string|auto|constexpr|const|static)\s+(\w+)\s*(?:=|;|\[)",
        ),
    ],
    EntityType.ENUM: [_rule(r"\benum\s+(?:class\s+)?(\w+)")],
    EntityType.IMPORT: [_rule(r"#include\s*[<\"]([^>\"]+)[>\"]")],
}

_PY_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"^\s*class\s+(\w+)")],
    EntityType.FUNCTION: [_rule(r"^\s*(?:async\s+)?def\s+(\w+)\s*\(")],
    EntityType.VARIABLE: [_rule(r"^\s*(\w+)\s*(?::\s*[^=\n]+)?=\s*[^=]", excludes=_PY_VARIABLE_EXCLUDES)],
    EntityType.ENUM: [_rule(r"^\s*class\s+(\w+)\s*\((?:[\w.]*\.)?(?:Str|Int)?Enum\)")],
    EntityType.IMPORT: [_rule(r"^\s*from\s+([\w.]+)\s+import\b"), _rule(r"^\s*import\s+([\w.]+)")],
}

_JS_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"\bclass\s+(\w+)")],
    EntityType.FUNCTION: [
        _rule(r"\bfunction\s+(\w+)\s*\("),
        _rule(r"\bconst\s+(\w+)\s*=\s*(?:async\s+)?\([^{]*\)\s*=>"),
        _rule(r"(\w+)\s*\([^{]*\)\s*\{", excludes=_JS_METHOD_EXCLUDES | {"function"}),
    ],
    EntityType.VARIABLE: [_rule(r"\b(?:let|var)\s+(\w+)\s*=")],
    EntityType.ENUM: [_rule(r"\benum\s+(\w+)")],
    EntityType.IMPORT: [_rule(r"\bimport\s[^'\"]*?from\s+['\"]([^'\"]+)['\"]"), _rule(r"\brequire\(\s*['\"]([^'\"]+)['\"]")],
}

_JAVA_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"\b(?:class|interface|record)\s+(\w+)")],
    EntityType.FUNCTION: [
        _rule(
            r"^\s*(?:(?:public|private|protected|static|final|abstract|synchronized)\s+)+[\w<>\[\],\s]+?\s+(\w+)\s*\(",
            excludes=_JAVA_METHOD_EXCLUDES,
        ),
    ],
    EntityType.ENUM: [_rule(r"\benum\s+(\w+)")],
    EntityType.IMPORT: [_rule(r"^\s*import\s+(?:static\s+)?([\w.*]+)\s*;")],
}

_GO_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"^\s*type\s+(\w+)\s+(?:struct|interface)\b")],
    EntityType.FUNCTION: [_rule(r"^\s*func\s+(?:\([^)]*\)\s*)?(\w+)\s*\(")],
    EntityType.VARIABLE: [_rule(r"^\s*(?:var|const)\s+(\w+)")],
    EntityType.IMPORT: [_rule(r"^\s*import\s+(?:\w+\s+)?\"([^\"]+)\""), _rule(r"^\s+(?:\w+\s+)?\"([^\"]+)\"\s*$")],
}

_RUST_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:struct|trait)\s+(\w+)")],
    EntityType.FUNCTION: [_rule(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+(\w+)")],
    EntityType.VARIABLE: [_rule(r"\blet\s+(?:mut\s+)?(\w+)"), _rule(r"^\s*(?:pub\s+)?(?:const|static)\s+(\w+)\s*:")],
    EntityType.ENUM: [_rule(r"^\s*(?:pub(?:\([^)]*\))?\s+)?enum\s+(\w+)")],
    EntityType.IMPORT: [_rule(r"^\s*use\s+([\w:]+)")],
}

_RUBY_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"^\s*(?:class|module)\s+([\w:]+)")],
    EntityType.FUNCTION: [_rule(r"^\s*def\s+(?:self\.)?(\w+[?!=]?)")],
    EntityType.IMPORT: [_rule(r"^\s*(?:require|require_relative|load)\s+['\"]([^'\"]+)['\"]")],
}

_PHP_RULES: dict[EntityType, list[_Rule]] = {
    EntityType.CLASS: [_rule(r"\b(?:class|interface|trait)\s+(\w+)")],
    EntityType.FUNCTION: [_rule(r"\bfunction\s+(\w+)\s*\(")],
    EntityType.VARIABLE: [_rule(r"^\s*\$(\w+)\s*=")],
    EntityType.ENUM: [_rule(r"\benum\s+(\w+)")],
    EntityType.IMPORT: [_rule(r"^\s*use\s+([\w\\]+)"), _rule(r"\b(?:require|include)(?:_once)?\s*\(?\s*['\"]([^'\"]+)['\"]")],
}

RULES: dict[FileType, dict[EntityType, list[_Rule]]] = {
    FileType.C: _C_RULES,
    FileType.CPP: _C_RULES,
    FileType.PYTHON: _PY_RULES,
    FileType.JAVASCRIPT: _JS_RULES,
    FileType.TYPESCRIPT: _JS_RULES,
    FileType.JAVA: _JAVA_RULES,
    FileType.GO: _GO_RULES,
    FileType.RUST: _RUST_RULES,
    FileType.RUBY: _RUBY_RULES,
    FileType.PHP: _PHP_RULES,
}

ENTITY_ORDER: tuple[EntityType, ...] = (
    EntityType.CLASS,
    EntityType.FUNCTION,
    EntityType.VARIABLE,
    EntityType.ENUM,
    EntityType.IMPORT,
)


class PatternExtractor:
    """Regex entity extraction, the fallback of every other extractor.

    Never raises: unknown languages simply yield no entities.
    """

    name = "pattern"

    def extract_entities(self, content: str, path: Path | str) -> list[NamedEntity]:
        """List the entities of a source text, kind by kind.

        Args:
            content (str): the source text
            path (Path | str): the file path, used to pick the language rules

        Returns:
            list[NamedEntity]: classes, then functions, variables, enums and imports
        """
        rules = RULES.get(guess_file_type(path))
        if not rules or not content:
            return []
        entities: list[NamedEntity] = []
        for kind in ENTITY_ORDER:
            for regex, group, excludes in rules.get(kind, ()):
                for m in regex.finditer(content):
                    name = m.group(group)
                    if name and name not in excludes:
                        entities.append(NamedEntity(name=name, type=kind))
        return dedupe(entities)
