import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest
from pytest_mock import MockerFixture

from condense_repo.config import EntityType, NamedEntity
from condense_repo.exceptions import BackendUnavailableError
from condense_repo.ner import (
    BackendStatus,
    EntityExtractor,
    HybridDispatcher,
    LearnedExtractor,
    PatternExtractor,
    StructuralExtractor,
    create_extractor,
    decode_bio,
    map_entity_type,
    select_extractor,
)
from condense_repo.ner.learned import DEFAULT_LABELS
from condense_repo.settings import NerMethod, SummarizationOptions
from condense_repo.treesitter import TreeSitterBackend

PY_SOURCE = "import os\n\nclass Foo:\n    def bar(self):\n        x = 1\n"
CPP_SOURCE = "#include <vector>\nclass Widget {};\nint run(int n) {\n  if (n) { return 1; }\n  while (n) {}\n}\n"

VOCAB = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "class", "Foo", "bar"]
LABEL_BY_WORD = {"Foo": DEFAULT_LABELS.index("B-CLASS"), "bar": DEFAULT_LABELS.index("B-FUNC")}


class FakeSession:
    """Labels `Foo` as a class and `bar` as a function, everything else as O."""

    def __init__(self) -> None:
        self.runs = 0

    def get_inputs(self) -> list[Any]:
        return [SimpleNamespace(name="input_ids", type="tensor(int64)")]

    def get_outputs(self) -> list[Any]:
        return [SimpleNamespace(name="logits")]

    def run(self, output_names: list[str], feeds: dict[str, Any]) -> list[Any]:
        self.runs += 1
        ids = feeds["input_ids"][0]
        logits = np.zeros((1, len(ids), len(DEFAULT_LABELS)))
        for pos, token_id in enumerate(ids):
            label = LABEL_BY_WORD.get(VOCAB[token_id], 0) if token_id < len(VOCAB) else 0
            logits[0, pos, label] = 10.0
        return [logits]


def write_model(tmp_path: Path) -> Path:
    model = tmp_path / "model.onnx"
    model.write_bytes(b"fake")
    (tmp_path / "vocab.txt").write_text("\n".join(VOCAB) + "\n", encoding="utf-8")
    return model


def learned_options(model: Path, **kwargs: Any) -> SummarizationOptions:
    return SummarizationOptions(ml_model_path=str(model), **kwargs)


def unavailable_backend(mocker: MockerFixture) -> Any:
    backend = mocker.Mock(spec=TreeSitterBackend)
    backend.available = False
    backend.parse.side_effect = BackendUnavailableError(backend="tree-sitter", reason="missing")
    return backend


@pytest.mark.unit
def test_pattern_extractor_python() -> None:
    entities = PatternExtractor().extract_entities(PY_SOURCE, "mod.py")

    assert entities == [
        NamedEntity(name="Foo", type=EntityType.CLASS),
        NamedEntity(name="bar", type=EntityType.FUNCTION),
        NamedEntity(name="x", type=EntityType.VARIABLE),
        NamedEntity(name="os", type=EntityType.IMPORT),
    ]


@pytest.mark.unit
def test_pattern_extractor_cpp_skips_keywords() -> None:
    entities = PatternExtractor().extract_entities(CPP_SOURCE, "widget.cpp")
    functions = {e.name for e in entities if e.type is EntityType.FUNCTION}

    assert "run" in functions
    assert not functions & {"if", "while"}
    assert NamedEntity(name="Widget", type=EntityType.CLASS) in entities
    assert NamedEntity(name="vector", type=EntityType.IMPORT) in entities


@pytest.mark.unit
def test_pattern_extractor_unknown_language() -> None:
    assert PatternExtractor().extract_entities("whatever", "notes.txt") == []


@pytest.mark.unit
def test_extractors_satisfy_protocol() -> None:
    assert isinstance(PatternExtractor(), EntityExtractor)
    assert isinstance(HybridDispatcher(SummarizationOptions(use_tree_sitter=False)), EntityExtractor)


@pytest.mark.unit
def test_structural_falls_back_when_backend_unavailable(mocker: MockerFixture) -> None:
    extractor = StructuralExtractor(backend=unavailable_backend(mocker))

    assert not extractor.status().available
    assert extractor.extract_entities(PY_SOURCE, "mod.py") == PatternExtractor().extract_entities(PY_SOURCE, "mod.py")


@pytest.mark.unit
def test_structural_falls_back_on_parse_error(mocker: MockerFixture) -> None:
    backend = mocker.Mock(spec=TreeSitterBackend)
    backend.parse.side_effect = ValueError("bad tree")

    entities = StructuralExtractor(backend=backend).extract_entities(PY_SOURCE, "mod.py")

    assert entities == PatternExtractor().extract_entities(PY_SOURCE, "mod.py")


@pytest.mark.unit
def test_structural_uses_captures(mocker: MockerFixture) -> None:
    backend = mocker.Mock(spec=TreeSitterBackend)
    node = SimpleNamespace(text=b"Foo")
    backend.captures.side_effect = lambda tree, file_type, query: [(node, "name")] if "class" in query else []

    entities = StructuralExtractor(backend=backend).extract_entities(PY_SOURCE, "mod.py")

    assert entities == [NamedEntity(name="Foo", type=EntityType.CLASS)]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("tokens", "labels", "expected"),
    [
        (["my", "var", "x"], ["B-VAR", "I-VAR", "O"], [("my var", "VAR")]),
        (["a", "b"], ["I-FUNC", "B-FUNC"], [("b", "FUNC")]),
        (["A", "B"], ["B-CLASS", "I-FUNC"], [("A", "CLASS")]),
        (["a"], ["O"], []),
    ],
)
def test_decode_bio(tokens: list[str], labels: list[str], expected: list[tuple[str, str]]) -> None:
    assert decode_bio(tokens, labels) == expected


@pytest.mark.unit
def test_map_entity_type() -> None:
    assert map_entity_type("FUNC") is EntityType.FUNCTION
    assert map_entity_type("IMP") is EntityType.IMPORT
    assert map_entity_type("XYZ") is EntityType.OTHER


@pytest.mark.unit
def test_learned_without_model_uses_patterns(tmp_path: Path) -> None:
    extractor = LearnedExtractor(learned_options(tmp_path / "missing.onnx"))

    status = extractor.status()

    assert not status.available
    assert "not found" in status.reason
    assert extractor.extract_entities(PY_SOURCE, "mod.py") == PatternExtractor().extract_entities(PY_SOURCE, "mod.py")


@pytest.mark.unit
def test_learned_decodes_model_labels(tmp_path: Path) -> None:
    session = FakeSession()
    factory_calls: list[str] = []

    def factory(path: str) -> FakeSession:
        factory_calls.append(path)
        return session

    extractor = LearnedExtractor(learned_options(write_model(tmp_path)), session_factory=factory)

    entities = extractor.extract_entities("class Foo\nbar baz\n", "mod.py")
    extractor.extract_entities("class Foo\n", "other.py")

    assert entities == [
        NamedEntity(name="Foo", type=EntityType.CLASS),
        NamedEntity(name="bar", type=EntityType.FUNCTION),
    ]
    assert len(factory_calls) == 1


@pytest.mark.unit
def test_learned_confidence_threshold_drops_labels(tmp_path: Path) -> None:
    options = learned_options(write_model(tmp_path), ml_confidence_threshold=0.99999)
    extractor = LearnedExtractor(options, session_factory=lambda _path: FakeSession())

    assert extractor.extract_entities("class Foo\n", "mod.py") == []


@pytest.mark.unit
def test_learned_cache_skips_inference(tmp_path: Path) -> None:
    session = FakeSession()
    extractor = LearnedExtractor(learned_options(write_model(tmp_path)), session_factory=lambda _path: session)

    first = extractor.extract_entities("class Foo\n", "mod.py")
    runs = session.runs
    second = extractor.extract_entities("class Foo\n", "mod.py")

    assert first == second
    assert session.runs == runs
    extractor.clear_cache()
    extractor.extract_entities("class Foo\n", "mod.py")
    assert session.runs == runs * 2


@pytest.mark.unit
def test_learned_over_budget_uses_patterns(tmp_path: Path, mocker: MockerFixture) -> None:
    clock = mocker.Mock(side_effect=[0.0, 10.0])
    options = learned_options(write_model(tmp_path), max_ml_processing_time_ms=5000, cache_ml_results=False)
    extractor = LearnedExtractor(options, session_factory=lambda _path: FakeSession(), clock=clock)

    entities = extractor.extract_entities(PY_SOURCE, "mod.py")

    assert entities == PatternExtractor().extract_entities(PY_SOURCE, "mod.py")


class InferenceFailure(Exception):
    pass


class FailingSession(FakeSession):
    def run(self, output_names: list[str], feeds: dict[str, Any]) -> list[Any]:
        raise InferenceFailure("shape mismatch")


class GatedSession(FakeSession):
    """Holds every run until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, output_names: list[str], feeds: dict[str, Any]) -> list[Any]:
        self.entered.set()
        self.release.wait(timeout=5)
        return super().run(output_names, feeds)


@pytest.mark.unit
def test_learned_inference_failure_uses_patterns(tmp_path: Path) -> None:
    extractor = LearnedExtractor(learned_options(write_model(tmp_path)), session_factory=lambda _path: FailingSession())

    entities = extractor.extract_entities(PY_SOURCE, "mod.py")

    assert entities == PatternExtractor().extract_entities(PY_SOURCE, "mod.py")


@pytest.mark.unit
def test_learned_concurrent_misses_run_inference_once(tmp_path: Path) -> None:
    session = GatedSession()
    extractor = LearnedExtractor(learned_options(write_model(tmp_path)), session_factory=lambda _path: session)
    results: list[list[NamedEntity]] = []

    def extract() -> None:
        results.append(extractor.extract_entities("class Foo\n", "mod.py"))

    first = threading.Thread(target=extract)
    first.start()
    assert session.entered.wait(timeout=5)
    others = [threading.Thread(target=extract) for _ in range(4)]
    for t in others:
        t.start()
    session.release.set()
    for t in [first, *others]:
        t.join(timeout=5)

    assert session.runs == 1
    assert len(results) == 5
    assert all(r == [NamedEntity(name="Foo", type=EntityType.CLASS)] for r in results)


@pytest.mark.unit
def test_learned_cache_hit_skips_time_budget(tmp_path: Path, mocker: MockerFixture) -> None:
    clock = mocker.Mock(side_effect=[0.0, 0.0])
    extractor = LearnedExtractor(
        learned_options(write_model(tmp_path)),
        session_factory=lambda _path: FakeSession(),
        clock=clock,
    )

    first = extractor.extract_entities("class Foo\n", "mod.py")
    second = extractor.extract_entities("class Foo\n", "mod.py")

    assert first == second == [NamedEntity(name="Foo", type=EntityType.CLASS)]
    assert clock.call_count == 2


class FakeExtractor:
    def __init__(self, name: str, *, available: bool = True) -> None:
        self.name = name
        self._available = available

    def status(self) -> BackendStatus:
        return BackendStatus.ok(self.name) if self._available else BackendStatus.unavailable(self.name, "down")

    def extract_entities(self, content: str, path: Path | str) -> list[NamedEntity]:
        return [NamedEntity(name=self.name, type=EntityType.OTHER)]


@pytest.mark.unit
def test_hybrid_survives_backend_construction_failure() -> None:
    def broken(_options: SummarizationOptions) -> Any:
        msg = "onnxruntime missing"
        raise RuntimeError(msg)

    options = SummarizationOptions(use_ml_for_large_files=True, ml_ner_size_threshold=1)
    dispatcher = HybridDispatcher(
        options,
        structural_factory=lambda: FakeExtractor("structural"),
        learned_factory=broken,
    )

    assert not dispatcher.learned_status.available
    assert "onnxruntime missing" in dispatcher.learned_status.reason
    assert dispatcher.structural_status.available
    assert dispatcher.extract_entities("x = 1", "a.py")[0].name == "structural"


@pytest.mark.unit
def test_hybrid_routes_large_content_to_learned() -> None:
    options = SummarizationOptions(use_ml_for_large_files=True, ml_ner_size_threshold=10)
    dispatcher = HybridDispatcher(
        options,
        structural_factory=lambda: FakeExtractor("structural"),
        learned_factory=lambda _options: FakeExtractor("learned"),
    )

    assert dispatcher.select("x" * 10).name == "learned"
    assert dispatcher.select("x").name == "structural"


@pytest.mark.unit
def test_hybrid_uses_patterns_when_backends_disabled_or_down() -> None:
    disabled = HybridDispatcher(SummarizationOptions(use_tree_sitter=False))
    down = HybridDispatcher(
        SummarizationOptions(),
        structural_factory=lambda: FakeExtractor("structural", available=False),
    )

    assert disabled.structural_status.reason == "disabled"
    assert disabled.learned_status.reason == "disabled"
    assert isinstance(disabled.select("x"), PatternExtractor)
    assert isinstance(down.select("x"), PatternExtractor)


@pytest.mark.unit
def test_select_extractor_pattern_and_hybrid() -> None:
    pattern = select_extractor(SummarizationOptions(ner_method=NerMethod.PATTERN))
    hybrid = select_extractor(SummarizationOptions(ner_method=NerMethod.HYBRID))

    assert isinstance(pattern.extractor, PatternExtractor)
    assert not pattern.degraded
    assert isinstance(hybrid.extractor, HybridDispatcher)
    assert isinstance(create_extractor(), PatternExtractor)


@pytest.mark.unit
def test_select_extractor_learned_degrades_without_model(tmp_path: Path) -> None:
    options = SummarizationOptions(ner_method=NerMethod.LEARNED, ml_model_path=str(tmp_path / "none.onnx"))

    selection = select_extractor(options)

    assert isinstance(selection.extractor, PatternExtractor)
    assert selection.requested is NerMethod.LEARNED
    assert selection.degraded
    assert "not found" in selection.fallback_reason
