"""
condense_repo: condense a source repository into one document for an LLM.

Overview
--------
The repository is walked with the default ignore rules, the root
`.gitignore` and the user globs, and every eligible text file is read by a
pool of worker threads. The result is written as:

1) **Markdown (`--format md`)**: a header with totals, the file tree and one
   fenced section per file. With `--summarize`, files above the summary
   threshold are replaced by a summary (entities, first lines, signatures,
   comments, snippets). README files stay whole.

2) **JSON (`--format json`)**: the list of file records.

With `--scoring`, every file is first given an importance score (structure,
type, recency, size, code density, import connectivity) and only files
reaching `--threshold` are exported; `--report` writes the scoring report.

Usage
-----
    - Markdown export of the current directory:
        condense-repo --output repo.md

    - Only the most important files, with a scoring report:
        condense-repo --scoring --threshold 0.5 --report scores.json --output repo.md

    - Summaries with structural entity extraction:
        condense-repo --summarize --entities --ner-method structural --output repo.md
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import TYPE_CHECKING, Any

from condense_repo import __version__
from condense_repo.exceptions import ConfigurationError, InvalidRepositoryError
from condense_repo.logging import logger, reset_logging, setup_logging
from condense_repo.output_construction import build_markdown, records_to_json
from condense_repo.patterns import PatternMatcher
from condense_repo.processor import FileProcessor
from condense_repo.scoring import FileScorer
from condense_repo.settings import NerMethod, ScoringConfig, SummarizationOptions, load_settings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from condense_repo.config import FileRecord
    from condense_repo.settings import Settings

_SUMMARY_FLAGS = {
    "summarize": "enabled",
    "summary_threshold": "file_size_threshold",
    "ner_method": "ner_method",
    "entities": "include_entity_recognition",
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="condense-repo",
        description="Condense a repository into a single markdown or JSON document.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--repo", type=str, default=None, help="Repository root (default: current directory).")
    p.add_argument("--output", type=str, default=None, help="Output file (.md or .json).")
    p.add_argument("--format", type=str, choices=["md", "json"], default=None, help="Force format.")
    p.add_argument("--config", type=str, default=None, help="YAML settings file.")
    p.add_argument("--log-file", type=str, default=None, help="Log file path.")

    p.add_argument("--threads", type=int, default=None, help="Worker threads.")
    p.add_argument(
        "--parallel-collect",
        action="store_true",
        default=None,
        help="Walk the tree with several threads.",
    )
    p.add_argument(
        "--include-glob",
        action="append",
        default=None,
        help="Include glob (repeatable).",
    )
    p.add_argument(
        "--exclude-glob",
        action="append",
        default=None,
        help="Exclude glob (repeatable).",
    )
    p.add_argument("--no-gitignore", action="store_true", default=None, help="Ignore the root .gitignore.")

    scoring = p.add_argument_group("scoring")
    scoring.add_argument("--scoring", action="store_true", default=None, help="Export only important files.")
    scoring.add_argument("--threshold", type=float, default=None, help="Inclusion threshold in [0, 1].")
    scoring.add_argument("--report", type=str, default=None, help="Write the scoring report (JSON).")

    summary = p.add_argument_group("summaries")
    summary.add_argument("--summarize", action="store_true", default=None, help="Summarize large files.")
    summary.add_argument(
        "--summary-threshold",
        type=int,
        default=None,
        help="Byte size above which a file is summarized.",
    )
    summary.add_argument(
        "--ner-method",
        type=str,
        choices=[m.value for m in NerMethod],
        default=None,
        help="Entity extraction method.",
    )
    summary.add_argument("--entities", action="store_true", default=None, help="List named entities in summaries.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse the command line into settings.

    Only the options given on the command line override the YAML file and
    environment values.

    Args:
        argv (Sequence[str] | None): arguments, `sys.argv[1:]` when None

    Raises:
        ConfigurationError: if the settings file or the resulting values are invalid

    Returns:
        Settings: the validated settings
    """
    given: dict[str, Any] = {k: v for k, v in vars(build_parser().parse_args(argv)).items() if v is not None}
    config = given.pop("config", None)
    threshold = given.pop("threshold", None)
    summary = {_SUMMARY_FLAGS[k]: given.pop(k) for k in list(given) if k in _SUMMARY_FLAGS}
    if given.pop("no_gitignore", False):
        given["use_gitignore"] = False

    settings = load_settings(Path(config) if config else None, **given)
    if threshold is None and not summary:
        return settings
    try:
        scoring_config = settings.scoring_config
        if threshold is not None:
            scoring_config = ScoringConfig(**(scoring_config.model_dump() | {"inclusion_threshold": threshold}))
        options = SummarizationOptions(**(settings.summarization.model_dump() | summary))
    except ValueError as e:
        raise ConfigurationError(source=Path(config or "."), reason=str(e)) from e
    return settings.model_copy(update={"scoring_config": scoring_config, "summarization": options})


def _output_format(settings: Settings) -> str:
    fmt = (settings.format or "").strip().lower()
    if not fmt:
        fmt = "json" if settings.output.suffix.lower() == ".json" else "md"
    return fmt


def collect_records(settings: Settings, repo: Path, processor: FileProcessor) -> list[FileRecord]:
    """Read the files to export, all eligible files or the selected ones in scoring mode."""
    if not settings.scoring:
        if settings.report:
            logger.warning("--report is only written in scoring mode")
        return processor.process_directory(repo, parallel=settings.parallel_collect)

    scorer = FileScorer(settings.scoring_config, processor.matcher)
    scored = scorer.score_repository(repo)
    if settings.report:
        settings.report.write_text(scorer.report_json(scored), encoding="utf-8")
        logger.info("Wrote scoring report %s", settings.report)
    return processor.process_files(scorer.get_selected_files(scored), repo)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = parse_args(argv)
    except ConfigurationError as e:
        logger.error("Invalid configuration %s: %s", e.source, e.reason)
        return 2
    if settings.log_file:
        reset_logging()
        setup_logging(settings.log_file)

    repo = Path(settings.repo).resolve()
    matcher = PatternMatcher.for_repository(
        repo,
        include=settings.include_glob,
        exclude=settings.exclude_glob,
        use_gitignore=settings.use_gitignore,
    )
    processor = FileProcessor(matcher, threads=settings.threads, options=settings.summarization)

    try:
        records = collect_records(settings, repo, processor)
    except InvalidRepositoryError as e:
        logger.error("Invalid repository %s: %s", e.folder, e.message)
        return 2

    summarize = processor.summarize if settings.summarization.enabled else None
    fmt = _output_format(settings)
    if fmt == "md":
        content = build_markdown(repo, records, summarize=summarize)
    else:
        content = records_to_json(records, summarize=summarize)
    settings.output.write_text(content, encoding="utf-8")

    print(f"Wrote {settings.output} format={fmt} files={len(records)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
