import json
from pathlib import Path

import pytest

from condense_repo import __version__, cli
from condense_repo.exceptions import ConfigurationError
from condense_repo.settings import NerMethod


def make_repo(root: Path) -> Path:
    files = {
        "README.md": "# Demo\n",
        "src/main.cpp": "int main() {\n  return 0;\n}\n",
        "build/out.o": "obj",
    }
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.mark.unit
def test_parse_args_defaults() -> None:
    settings = cli.parse_args([])

    assert settings.output == Path("condensed.md")
    assert not settings.scoring
    assert settings.use_gitignore
    assert not settings.summarization.enabled


@pytest.mark.unit
def test_parse_args_overrides() -> None:
    settings = cli.parse_args(
        [
            "--repo",
            "some/repo",
            "--threads",
            "2",
            "--include-glob",
            "src/**",
            "--include-glob",
            "*.md",
            "--no-gitignore",
            "--scoring",
            "--threshold",
            "0.6",
            "--summarize",
            "--summary-threshold",
            "10",
            "--ner-method",
            "structural",
            "--entities",
        ],
    )

    assert settings.repo == Path("some/repo")
    assert settings.threads == 2
    assert settings.include_glob == ["src/**", "*.md"]
    assert not settings.use_gitignore
    assert settings.scoring
    assert settings.scoring_config.inclusion_threshold == 0.6
    assert settings.summarization.enabled
    assert settings.summarization.file_size_threshold == 10
    assert settings.summarization.ner_method is NerMethod.STRUCTURAL
    assert settings.summarization.include_entity_recognition


@pytest.mark.unit
def test_parse_args_rejects_out_of_range_threshold() -> None:
    with pytest.raises(ConfigurationError):
        cli.parse_args(["--threshold", "2"])


@pytest.mark.unit
def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--version"])

    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


@pytest.mark.unit
def test_main_rejects_missing_repository(tmp_path: Path) -> None:
    output = tmp_path / "out.md"

    assert cli.main(["--repo", str(tmp_path / "missing"), "--output", str(output)]) == 2
    assert cli.main(["--repo", str(tmp_path / "missing"), "--output", str(output), "--scoring"]) == 2
    assert not output.exists()


@pytest.mark.unit
def test_main_rejects_invalid_threshold(tmp_path: Path) -> None:
    assert cli.main(["--repo", str(make_repo(tmp_path)), "--threshold", "-1"]) == 2


@pytest.mark.unit
def test_main_writes_markdown(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = make_repo(tmp_path / "repo")
    output = tmp_path / "out.md"

    assert cli.main(["--repo", str(repo), "--output", str(output), "--threads", "2"]) == 0

    md = output.read_text(encoding="utf-8")
    assert "### README.md" in md
    assert "### src/main.cpp" in md
    assert "out.o" not in md
    assert f"Wrote {output} format=md files=2" in capsys.readouterr().out


@pytest.mark.unit
def test_main_writes_json_when_forced(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    output = tmp_path / "out.txt"

    assert cli.main(["--repo", str(repo), "--output", str(output), "--format", "json"]) == 0

    items = json.loads(output.read_text(encoding="utf-8"))
    assert [item["rel"] for item in items] == ["README.md", "src/main.cpp"]


@pytest.mark.unit
def test_main_json_from_output_suffix(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    output = tmp_path / "out.json"

    assert cli.main(["--repo", str(repo), "--output", str(output)]) == 0

    assert isinstance(json.loads(output.read_text(encoding="utf-8")), list)


@pytest.mark.unit
def test_main_scoring_writes_report(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    output = tmp_path / "out.md"
    report = tmp_path / "scores.json"

    code = cli.main(["--repo", str(repo), "--output", str(output), "--scoring", "--report", str(report)])

    assert code == 0
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["summary"]["total_files"] == 2
    assert {f["path"] for f in data["files"]} == {"README.md", "src/main.cpp"}
    assert "### src/main.cpp" in output.read_text(encoding="utf-8")


@pytest.mark.unit
def test_report_is_not_written_without_scoring(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    report = tmp_path / "scores.json"

    assert cli.main(["--repo", str(repo), "--output", str(tmp_path / "out.md"), "--report", str(report)]) == 0
    assert not report.exists()
