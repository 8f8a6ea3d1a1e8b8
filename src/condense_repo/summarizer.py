from __future__ import annotations

import re
from typing import TYPE_CHECKING

from condense_repo.config import EntityType, FileType, NamedEntity
from condense_repo.file_manipulation import is_readme_file
from condense_repo.ner import create_extractor
from condense_repo.ner.pattern import ENTITY_ORDER

if TYPE_CHECKING:
    from collections.abc import Sequence

    from condense_repo.config import FileRecord
    from condense_repo.ner import EntityExtractor
    from condense_repo.settings import SummarizationOptions

SNIPPET_LINES = 10
MIN_SNIPPET_LINES = 5
MAX_SIGNATURE_LINES = 8

_BRACE_LANGUAGES = frozenset(
    {
        FileType.JAVASCRIPT,
        FileType.TYPESCRIPT,
        FileType.C,
        FileType.CPP,
        FileType.JAVA,
        FileType.GO,
        FileType.RUST,
        FileType.PHP,
        FileType.SWIFT,
    },
)
_HASH_COMMENT_LANGUAGES = frozenset({FileType.PYTHON, FileType.RUBY, FileType.BASH})

_MODIFIERS = r"(?:(?:public|private|protected|static|final|abstract|synchronized|virtual|inline|export|default|async)\s+)*"
_SIGNATURE_STARTS: dict[FileType, re.Pattern[str]] = {
    FileType.PYTHON: re.compile(r"^\s*(?:async\s+def|def|class)\s+\w+"),
    FileType.JAVASCRIPT: re.compile(
        rf"^\s*{_MODIFIERS}(?:function\*?\s+\w+|class\s+\w+|(?:const|let|var)\s+\w+\s*=\s*(?:async\s+)?(?:\([^)]*\)|\w+)\s*=>)",
    ),
    FileType.C: re.compile(
        r"^\s*(?:(?:class|struct|enum)\s+\w+[^;]*$|(?!(?:if|for|while|switch|return|else|do)\b)[\w:<>*&~,\s]+?\b[\w:~]+\s*\([^;]*$)",
    ),
    FileType.JAVA: re.compile(
        rf"^\s*{_MODIFIERS}(?!(?:return|new|throw|else|if|for|while|switch)\b)"
        r"(?:(?:class|interface|enum|record)\s+\w+|[\w<>\[\],.?]+(?:\s+[\w<>\[\],.?]+)*\s+\w+\s*\()",
    ),
    FileType.GO: re.compile(r"^\s*(?:func\s|type\s+\w+\s+(?:struct|interface)\b)"),
    FileType.RUST: re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?(?:fn|struct|enum|trait|impl)\b"),
    FileType.RUBY: re.compile(r"^\s*(?:def|class|module)\s+"),
    FileType.PHP: re.compile(rf"^\s*{_MODIFIERS}(?:function|class|interface|trait)\s+\w+"),
    FileType.SWIFT: re.compile(rf"^\s*{_MODIFIERS}(?:func|class|struct|enum|protocol)\s+\w+"),
}
_SIGNATURE_STARTS[FileType.TYPESCRIPT] = _SIGNATURE_STARTS[FileType.JAVASCRIPT]
_SIGNATURE_STARTS[FileType.CPP] = _SIGNATURE_STARTS[FileType.C]

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_TRIPLE_QUOTED = re.compile(r"(\"\"\"|''').*?\1", re.DOTALL)
_RUBY_BLOCK = re.compile(r"^=begin\b.*?^=end\b", re.DOTALL | re.MULTILINE)

_GROUP_TITLES: dict[EntityType, str] = {
    EntityType.CLASS: "Classes",
    EntityType.FUNCTION: "Functions",
    EntityType.VARIABLE: "Variables",
    EntityType.ENUM: "Enums",
    EntityType.IMPORT: "Imports",
    EntityType.OTHER: "Other",
}


def _paren_depth(text: str) -> int:
    return text.count("(") - text.count(")")


def extract_signatures(text: str, file_type: FileType) -> list[str]:
    """Extract function and class signatures with their bodies elided.

    Args:
        text (str): the source text
        file_type (FileType): its language family

    Returns:
        list[str]: one entry per signature, possibly spanning several lines
    """
    start = _SIGNATURE_STARTS.get(file_type)
    if start is None:
        return []
    lines = text.splitlines()
    out: list[str] = []
    i = 0
    while i < len(lines):
        if not start.match(lines[i]):
            i += 1
            continue
        buf: list[str] = []
        j = i
        signature = None
        while j < len(lines) and j - i < MAX_SIGNATURE_LINES:
            buf.append(lines[j])
            joined = "\n".join(buf)
            if file_type in _BRACE_LANGUAGES:
                if _paren_depth(joined) <= 0 and "{" in lines[j]:
                    signature = joined[: joined.rindex("{")].rstrip() + " { ... }"
                    break
                if _paren_depth(joined) <= 0 and lines[j].rstrip().endswith(";"):
                    signature = joined.rstrip()
                    break
            elif file_type is FileType.PYTHON:
                if _paren_depth(joined) <= 0 and joined.rstrip().endswith(":"):
                    signature = joined.rstrip() + " ..."
                    break
            else:
                signature = joined.rstrip()
                break
            j += 1
        if signature is not None:
            out.append(signature)
            i = j + 1
        else:
            i += 1
    return out


def extract_comments(text: str, file_type: FileType) -> list[str]:
    """Extract block comments, runs of line comments and docstrings.

    Args:
        text (str): the source text
        file_type (FileType): its language family

    Returns:
        list[str]: comment blocks in source order
    """
    found: list[tuple[int, str]] = []
    if file_type in _BRACE_LANGUAGES:
        found.extend((m.start(), m.group(0)) for m in _BLOCK_COMMENT.finditer(text))
        marker = "//"
    elif file_type in _HASH_COMMENT_LANGUAGES:
        marker = "#"
        if file_type is FileType.PYTHON:
            found.extend((m.start(), m.group(0)) for m in _TRIPLE_QUOTED.finditer(text))
        elif file_type is FileType.RUBY:
            found.extend((m.start(), m.group(0)) for m in _RUBY_BLOCK.finditer(text))
    else:
        return []

    offset = 0
    run: list[str] = []
    run_start = 0
    for line in text.splitlines(keepends=True):
        stripped = line.strip()
        if stripped.startswith(marker) and not stripped.startswith("#!"):
            if not run:
                run_start = offset
            run.append(stripped)
        elif run:
            found.append((run_start, "\n".join(run)))
            run = []
        offset += len(line)
    if run:
        found.append((run_start, "\n".join(run)))
    return [block for _, block in sorted(found, key=lambda item: item[0])]


def extract_snippets(lines: Sequence[str], count: int) -> list[tuple[int, str]]:
    """Pick `count` evenly spaced snippets of the text.

    Nothing is returned when the text is too short for snippets of at least
    `MIN_SNIPPET_LINES` lines.

    Args:
        lines (Sequence[str]): the text lines
        count (int): number of snippets

    Returns:
        list[tuple[int, str]]: `(first line number, snippet text)` pairs
    """
    if count <= 0:
        return []
    stride = len(lines) // count
    size = min(SNIPPET_LINES, stride)
    if size < MIN_SNIPPET_LINES:
        return []
    out: list[tuple[int, str]] = []
    for k in range(count):
        begin = k * stride + (stride - size) // 2
        out.append((begin + 1, "\n".join(lines[begin : begin + size])))
    return out


def select_entities(entities: Sequence[NamedEntity], options: SummarizationOptions) -> list[NamedEntity]:
    """Keep the enabled entity kinds, kind by kind, up to `max_entities`."""
    enabled = {
        EntityType.CLASS: options.include_classes,
        EntityType.FUNCTION: options.include_functions,
        EntityType.VARIABLE: options.include_variables,
        EntityType.ENUM: options.include_enums,
        EntityType.IMPORT: options.include_imports,
    }
    kept: list[NamedEntity] = []
    for kind in ENTITY_ORDER:
        if enabled[kind]:
            kept.extend(e for e in entities if e.type is kind)
    return kept[: options.max_entities]


def format_entities(entities: Sequence[NamedEntity], *, group_by_type: bool) -> str:
    """Render an entity listing, grouped under a title per kind or one per line."""
    if not entities:
        return ""
    if not group_by_type:
        return "\n".join(f"- {e.name} ({e.type})" for e in entities)
    lines: list[str] = []
    for kind in (*ENTITY_ORDER, EntityType.OTHER):
        names = [e.name for e in entities if e.type is kind]
        if names:
            lines.append(f"{_GROUP_TITLES[kind]}: {', '.join(names)}")
    return "\n".join(lines)


class Summarizer:
    """Builds the reduced representation of large files."""

    def __init__(self, options: SummarizationOptions, extractor: EntityExtractor | None = None) -> None:
        self.options = options
        self._extractor = extractor

    @property
    def extractor(self) -> EntityExtractor:
        if self._extractor is None:
            self._extractor = create_extractor(self.options)
        return self._extractor

    def should_summarize(self, record: FileRecord) -> bool:
        """Decide whether a record is summarized instead of exported verbatim.

        README files are kept whole when `include_readme` is set.
        """
        if not self.options.enabled or record.byte_size <= self.options.file_size_threshold:
            return False
        return not (self.options.include_readme and is_readme_file(record.path))

    def entities(self, record: FileRecord) -> list[NamedEntity]:
        found = self.extractor.extract_entities(record.text(), record.path)
        return select_entities(found, self.options)

    def annotate(self, record: FileRecord) -> FileRecord:
        """Return a copy of the record carrying its summary parts.

        Args:
            record (FileRecord): a processed record

        Returns:
            FileRecord: the enriched copy; the input record is left untouched
        """
        opts = self.options
        lines = record.text().splitlines()
        update: dict[str, object] = {"summarized": self.should_summarize(record)}
        if opts.include_first_n_lines:
            update["first_lines"] = "\n".join(lines[: opts.first_n_lines_count])
        if opts.include_snippets:
            update["snippets"] = tuple(snippet for _, snippet in extract_snippets(lines, opts.snippets_count))
        if opts.include_entity_recognition:
            entities = self.entities(record)
            update["entities"] = tuple(entities)
            update["formatted_entities"] = format_entities(entities, group_by_type=opts.group_entities_by_type)
        return record.model_copy(update=update)

    def render(self, record: FileRecord) -> str:
        """Return the text to export for a record: full text or summary."""
        if not self.should_summarize(record):
            return record.text()
        return self.summarize(record)

    def summarize(self, record: FileRecord) -> str:
        """Build the summary of a record, section by section.

        Args:
            record (FileRecord): a processed record

        Returns:
            str: the summary, capped at `max_summary_lines` lines
        """
        opts = self.options
        text = record.text()
        lines = text.splitlines()
        out: list[str] = [f"[summary of {record.rel or record.path.name}: {record.line_count} lines, {record.byte_size} bytes]"]

        if opts.include_entity_recognition:
            entities = self.entities(record)
            if entities:
                out.extend(("", "[entities]", format_entities(entities, group_by_type=opts.group_entities_by_type)))
        if opts.include_first_n_lines and opts.first_n_lines_count > 0:
            out.extend(("", f"[first {min(opts.first_n_lines_count, len(lines))} lines]"))
            out.extend(lines[: opts.first_n_lines_count])
        if opts.include_signatures:
            signatures = extract_signatures(text, record.file_type)
            if signatures:
                out.extend(("", "[signatures]", *signatures))
        if opts.include_docstrings:
            comments = extract_comments(text, record.file_type)
            if comments:
                out.extend(("", "[comments]", *comments))
        if opts.include_snippets:
            snippets = extract_snippets(lines, opts.snippets_count)
            for first, snippet in snippets:
                out.extend(("", f"[snippet at line {first}]", snippet))

        rendered = "\n".join(out).splitlines()
        if len(rendered) > opts.max_summary_lines:
            rendered = [*rendered[: opts.max_summary_lines], "[summary truncated]"]
        return "\n".join(rendered) + "\n"
