from __future__ import annotations

import io
import json
import re
from typing import TYPE_CHECKING

from condense_repo.file_manipulation import build_tree_lines, now_iso

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from condense_repo.config import FileRecord

    RenderFn = Callable[[FileRecord], str]


_BACKTICK_RUN = re.compile(r"`+")


def _fence_for(body: str) -> str:
    """Return a code fence longer than any backtick run inside `body`."""
    longest = max((len(run) for run in _BACKTICK_RUN.findall(body)), default=0)
    return "`" * max(3, longest + 1)


def _body(rec: FileRecord, summarize: RenderFn | None) -> str:
    if rec.error:
        return f"[error: {rec.error}]"
    if rec.skipped or not rec.processed:
        return f"[skipped: binary or oversized file, {rec.byte_size} bytes]"
    return summarize(rec) if summarize is not None else rec.text()


def build_markdown(
    root: Path,
    records: Sequence[FileRecord],
    *,
    summarize: RenderFn | None = None,
) -> str:
    """Build the markdown export of a set of file records.

    The export starts with a header carrying totals, then the file tree and
    one fenced section per file, in relative path order. Skipped and errored
    files keep a section with a one line notice.

    Args:
        root (Path): the repository root
        records (Sequence[FileRecord]): the records to export
        summarize (RenderFn | None): returns the text exported for a record,
            full content or summary; the raw content is used when None

    Returns:
        str: the markdown document
    """
    ordered = sorted(records, key=lambda r: r.rel.lower())
    total_lines = sum(r.line_count for r in ordered if r.processed)
    total_bytes = sum(r.byte_size for r in ordered)

    out = io.StringIO()
    out.write("# Condensed repository\n")
    out.write(f"root={root}\n")
    out.write(f"generated_at={now_iso()}\n\n")
    out.write("| files | lines | size (KB) |\n")
    out.write("|---|---|---|\n")
    out.write(f"| {len(ordered)} | {total_lines} | {total_bytes / 1024:.1f} |\n\n")

    out.write("## Structure\n")
    out.write("```text\n")
    out.write("\n".join(build_tree_lines(root.name, [r.rel for r in ordered])))
    out.write("\n```\n\n")

    for rec in ordered:
        body = _body(rec, summarize)
        lang = rec.language or "text"
        fence = _fence_for(body)
        out.write(f"### {rec.rel}\n")
        out.write(f"{fence}{lang}\n{body.rstrip()}\n{fence}\n\n")

    return out.getvalue().rstrip() + "\n"


def records_to_json(records: Sequence[FileRecord], *, summarize: RenderFn | None = None) -> str:
    """Serialize records as a JSON list, content decoded as text.

    Args:
        records (Sequence[FileRecord]): the records to export
        summarize (RenderFn | None): returns the text exported for a record

    Returns:
        str: the JSON document
    """
    items = []
    for rec in sorted(records, key=lambda r: r.rel.lower()):
        item = rec.model_dump(mode="json", exclude={"content", "path"})
        item["content"] = _body(rec, summarize) if rec.processed and not rec.error else None
        items.append(item)
    return json.dumps(items, indent=2, ensure_ascii=False)
