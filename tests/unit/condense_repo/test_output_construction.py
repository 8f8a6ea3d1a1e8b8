import json
from pathlib import Path

import pytest

from condense_repo.config import FileRecord
from condense_repo.output_construction import build_markdown, records_to_json


def text_record(root: Path, rel: str, text: str) -> FileRecord:
    data = text.encode("utf-8")
    return FileRecord(
        path=root / rel,
        rel=rel,
        content=data,
        byte_size=len(data),
        line_count=text.count("\n"),
        processed=True,
    )


@pytest.fixture
def records(tmp_path: Path) -> list[FileRecord]:
    return [
        text_record(tmp_path, "src/app.py", "print('hi')\n"),
        text_record(tmp_path, "README.md", "# Demo\n```sh\nmake\n```\n"),
        FileRecord(path=tmp_path / "data.bin", rel="data.bin", byte_size=3, skipped=True),
        FileRecord(path=tmp_path / "gone.py", rel="gone.py", error="No such file"),
    ]


@pytest.mark.unit
def test_build_markdown_layout(tmp_path: Path, records: list[FileRecord]) -> None:
    md = build_markdown(tmp_path, records)

    assert md.startswith("# Condensed repository\n")
    assert f"root={tmp_path}\n" in md
    assert "| 4 | 5 |" in md
    assert "## Structure\n```text\n" in md
    assert "### src/app.py\n```python\nprint('hi')\n```" in md
    assert "### README.md\n````markdown\n# Demo\n```sh\nmake\n```\n````" in md
    assert "### data.bin\n```text\n[skipped: binary or oversized file, 3 bytes]\n```" in md
    assert "### gone.py\n```python\n[error: No such file]\n```" in md
    assert md.index("### data.bin") < md.index("### gone.py") < md.index("### README.md") < md.index("### src/app.py")
    assert md.endswith("```\n")


@pytest.mark.unit
def test_build_markdown_uses_summaries(tmp_path: Path, records: list[FileRecord]) -> None:
    md = build_markdown(tmp_path, records, summarize=lambda rec: f"summary of {rec.rel}")

    assert "### src/app.py\n```python\nsummary of src/app.py\n```" in md
    assert "[skipped: binary or oversized file, 3 bytes]" in md


@pytest.mark.unit
def test_records_to_json(records: list[FileRecord]) -> None:
    items = json.loads(records_to_json(records))
    by_rel = {item["rel"]: item for item in items}

    assert [item["rel"] for item in items] == ["data.bin", "gone.py", "README.md", "src/app.py"]
    assert by_rel["src/app.py"]["content"] == "print('hi')\n"
    assert by_rel["src/app.py"]["language"] == "python"
    assert by_rel["data.bin"]["content"] is None
    assert by_rel["gone.py"]["content"] is None
    assert by_rel["gone.py"]["error"] == "No such file"
    assert "path" not in by_rel["README.md"]


@pytest.mark.unit
def test_build_markdown_fence_outgrows_longest_backtick_run(tmp_path: Path) -> None:
    body = "Nested:\n````md\n```py\nx = 1\n```\n````\n"

    md = build_markdown(tmp_path, [text_record(tmp_path, "NOTES.md", body)])

    assert f"### NOTES.md\n`````markdown\n{body.rstrip()}\n`````\n" in md
