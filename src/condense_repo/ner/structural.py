from __future__ import annotations

from typing import TYPE_CHECKING

from condense_repo.config import EntityType, FileType, NamedEntity, guess_file_type
from condense_repo.exceptions import BackendUnavailableError
from condense_repo.logging import logger
from condense_repo.ner.base import BackendStatus, dedupe
from condense_repo.ner.pattern import PatternExtractor
from condense_repo.treesitter import TreeSitterBackend, node_text

if TYPE_CHECKING:
    from pathlib import Path

_C_QUERIES = {
    EntityType.FUNCTION: "(function_definition declarator: (function_declarator declarator: (identifier) @name))",
    EntityType.CLASS: "(class_specifier name: (type_identifier) @name) (struct_specifier name: (type_identifier) @name)",
    EntityType.IMPORT: "(preproc_include path: (_) @name)",
}

QUERIES: dict[FileType, dict[EntityType, str]] = {
    FileType.PYTHON: {
        EntityType.FUNCTION: "(function_definition name: (identifier) @name)",
        EntityType.CLASS: "(class_definition name: (identifier) @name)",
        EntityType.IMPORT: (
            "(import_statement name: (dotted_name) @name) (import_from_statement module_name: (dotted_name) @name)"
        ),
    },
    FileType.C: {
        EntityType.FUNCTION: _C_QUERIES[EntityType.FUNCTION],
        EntityType.CLASS: "(struct_specifier name: (type_identifier) @name)",
        EntityType.IMPORT: _C_QUERIES[EntityType.IMPORT],
    },
    FileType.CPP: _C_QUERIES,
    FileType.JAVASCRIPT: {
        EntityType.FUNCTION: "(function_declaration name: (identifier) @name)",
        EntityType.CLASS: "(class_declaration name: (identifier) @name)",
        EntityType.IMPORT: "(import_statement source: (string) @name)",
    },
    FileType.TYPESCRIPT: {
        EntityType.FUNCTION: "(function_declaration name: (identifier) @name)",
        EntityType.CLASS: "(class_declaration name: (type_identifier) @name)",
        EntityType.IMPORT: "(import_statement source: (string) @name)",
    },
}


class StructuralExtractor:
    """Entity extraction from tree-sitter queries.

    Functions, classes and imports come from syntax-tree captures. Languages
    without queries, a missing backend or a failing parse delegate to the
    pattern extractor.
    """

    name = "structural"

    def __init__(self, backend: TreeSitterBackend | None = None) -> None:
        self._backend = backend or TreeSitterBackend()
        self._fallback = PatternExtractor()

    def status(self) -> BackendStatus:
        """Bring the backend up if needed and report whether it works."""
        if self._backend.available:
            return BackendStatus.ok(self.name)
        return BackendStatus.unavailable(self.name, "tree_sitter_languages could not be imported")

    def extract_entities(self, content: str, path: Path | str) -> list[NamedEntity]:
        file_type = guess_file_type(path)
        queries = QUERIES.get(file_type)
        if queries is None:
            return self._fallback.extract_entities(content, path)
        try:
            tree = self._backend.parse(content, file_type)
            entities: list[NamedEntity] = []
            for kind, query in queries.items():
                for node, _capture in self._backend.captures(tree, file_type, query):
                    name = node_text(node).strip("'\"<>")
                    if name:
                        entities.append(NamedEntity(name=name, type=kind))
        except BackendUnavailableError as e:
            logger.debug("Structural extraction unavailable for %s: %s", path, e.reason)
            return self._fallback.extract_entities(content, path)
        except (ValueError, RuntimeError) as e:
            logger.warning("Structural extraction failed for %s: %s", path, e)
            return self._fallback.extract_entities(content, path)
        return dedupe(entities)
