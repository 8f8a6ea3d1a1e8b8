import json
from collections.abc import Iterator
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from condense_repo import cli
from condense_repo.logging import reset_logging, setup_logging

BIG_MODULE = '"""Shapes."""\nimport math\n\n\nclass Circle:\n    def area(self, r):\n        return math.pi * r * r\n\n' + (
    "# filler line\n" * 40
)


@pytest.fixture
def restore_logging() -> Iterator[None]:
    yield
    reset_logging()
    setup_logging()


def make_repo(root: Path) -> Path:
    files = {
        "README.md": "# Shapes\n" + "Long readme line.\n" * 20,
        "src/shapes.py": BIG_MODULE,
        "src/tiny.py": "X = 1\n",
        "notes.log": "debug\n",
        "secret/key.txt": "hidden\n",
        ".gitignore": "secret/\n",
    }
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.mark.integration
@pytest.mark.usefixtures("restore_logging")
def test_summarized_export_with_config_and_log_file(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    config = tmp_path / "condense.yaml"
    config.write_text(
        "threads: 2\nsummarization:\n  first_n_lines_count: 2\n  include_entity_recognition: true\n",
        encoding="utf-8",
    )
    output = tmp_path / "out.md"
    log_file = tmp_path / "run.log"

    code = cli.main(
        [
            "--repo",
            str(repo),
            "--output",
            str(output),
            "--config",
            str(config),
            "--log-file",
            str(log_file),
            "--summarize",
            "--summary-threshold",
            "200",
        ],
    )

    assert code == 0
    md = output.read_text(encoding="utf-8")
    assert "[summary of src/shapes.py:" in md
    assert "Classes: Circle" in md
    assert "[first 2 lines]" in md
    assert "X = 1" in md
    assert "Long readme line." in md
    assert "[summary of README.md" not in md
    assert "key.txt" not in md
    assert "notes.log" not in md
    assert "Collecting files" in log_file.read_text(encoding="utf-8")


@pytest.mark.integration
def test_scoring_export_selects_by_threshold(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    output = tmp_path / "out.json"
    report = tmp_path / "report.json"

    code = cli.main(
        ["--repo", str(repo), "--output", str(output), "--scoring", "--threshold", "0.9", "--report", str(report)],
    )

    assert code == 0
    data = json.loads(report.read_text(encoding="utf-8"))
    selected = {f["path"] for f in data["files"] if f["included"]}
    exported = {item["rel"] for item in json.loads(output.read_text(encoding="utf-8"))}
    assert exported == selected
    assert "README.md" in selected
    assert data["config"]["inclusion_threshold"] == 0.9
    assert data["summary"]["included_files"] == len(selected)


@pytest.mark.integration
def test_include_and_exclude_globs(tmp_path: Path, mocker: MockerFixture) -> None:
    repo = make_repo(tmp_path / "repo")
    output = tmp_path / "out.json"
    scorer = mocker.patch.object(cli, "FileScorer")

    code = cli.main(
        [
            "--repo",
            str(repo),
            "--output",
            str(output),
            "--include-glob",
            "src/**",
            "--exclude-glob",
            "tiny.py",
            "--parallel-collect",
        ],
    )

    assert code == 0
    assert [item["rel"] for item in json.loads(output.read_text(encoding="utf-8"))] == ["src/shapes.py"]
    scorer.assert_not_called()
