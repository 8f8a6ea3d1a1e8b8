"""Lazy access to the tree-sitter grammars bundled by `tree_sitter_languages`.

The grammars are an optional extra. Nothing is imported until the first
parse; a failed import or grammar load marks the backend unavailable for the
lifetime of the instance and callers fall back to their regex analysis.
"""

from __future__ import annotations

import importlib
import threading
from typing import TYPE_CHECKING, Any

from condense_repo.config import FileType
from condense_repo.exceptions import BackendUnavailableError
from condense_repo.logging import logger

if TYPE_CHECKING:
    from types import ModuleType

GRAMMARS: dict[FileType, str] = {
    FileType.PYTHON: "python",
    FileType.JAVASCRIPT: "javascript",
    FileType.TYPESCRIPT: "typescript",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.JAVA: "java",
    FileType.GO: "go",
    FileType.RUST: "rust",
    FileType.RUBY: "ruby",
    FileType.PHP: "php",
}


class TreeSitterBackend:
    """Parser and query cache over the bundled grammars."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._initialized = False
        self._module: ModuleType | None = None
        self._failure = ""
        self._queries: dict[tuple[str, str], Any] = {}

    def _ensure_loaded(self) -> ModuleType:
        with self._lock:
            if not self._initialized:
                self._initialized = True
                try:
                    self._module = importlib.import_module("tree_sitter_languages")
                except ImportError as e:
                    self._failure = str(e)
                    logger.warning("tree-sitter unavailable, using regex analysis: %s", e)
            if self._module is None:
                raise BackendUnavailableError(backend="tree-sitter", reason=self._failure)
            return self._module

    @property
    def available(self) -> bool:
        try:
            self._ensure_loaded()
        except BackendUnavailableError:
            return False
        return True

    @staticmethod
    def supports(file_type: FileType) -> bool:
        return file_type in GRAMMARS

    def parse(self, content: str, file_type: FileType) -> Any:  # noqa: ANN401
        """Parse a source text.

        Args:
            content (str): source text
            file_type (FileType): language family of the text

        Raises:
            BackendUnavailableError: if the grammars cannot be loaded or the language has none

        Returns:
            Any: the tree-sitter `Tree`
        """
        module = self._ensure_loaded()
        grammar = GRAMMARS.get(file_type)
        if grammar is None:
            raise BackendUnavailableError(backend="tree-sitter", reason=f"no grammar for {file_type}")
        try:
            parser = module.get_parser(grammar)
        except Exception as e:
            raise BackendUnavailableError(backend="tree-sitter", reason=str(e)) from e
        return parser.parse(content.encode("utf-8"))

    def captures(self, tree: Any, file_type: FileType, query_source: str) -> list[tuple[Any, str]]:  # noqa: ANN401
        """Run a query over a parsed tree.

        Args:
            tree (Any): tree returned by `parse`
            file_type (FileType): language family the tree was parsed with
            query_source (str): tree-sitter query text

        Raises:
            BackendUnavailableError: if the query cannot be compiled for the grammar

        Returns:
            list[tuple[Any, str]]: `(node, capture_name)` pairs
        """
        module = self._ensure_loaded()
        grammar = GRAMMARS[file_type]
        key = (grammar, query_source)
        with self._lock:
            query = self._queries.get(key)
        if query is None:
            try:
                query = module.get_language(grammar).query(query_source)
            except Exception as e:
                raise BackendUnavailableError(backend="tree-sitter", reason=str(e)) from e
            with self._lock:
                self._queries[key] = query
        return list(query.captures(tree.root_node))


def node_text(node: Any) -> str:  # noqa: ANN401
    return node.text.decode("utf-8", errors="replace")


def count_nodes(tree: Any, node_types: frozenset[str]) -> int:  # noqa: ANN401
    """Count the nodes of the given types in a tree, iteratively."""
    total = 0
    cursor = tree.walk()
    visited_children = False
    while True:
        if not visited_children:
            if cursor.node.type in node_types:
                total += 1
            if cursor.goto_first_child():
                continue
        if cursor.goto_next_sibling():
            visited_children = False
        elif cursor.goto_parent():
            visited_children = True
        else:
            break
    return total
