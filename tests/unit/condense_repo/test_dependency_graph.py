from pathlib import Path

import pytest

from condense_repo.config import FileType
from condense_repo.scoring import DependencyGraph, FileIndex, resolve_import, scan_imports
from condense_repo.scoring.dependency_graph import ImportSpec


def write_files(root: Path, files: dict[str, str]) -> list[str]:
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return sorted(files)


@pytest.mark.unit
def test_relative_typescript_import_resolves_with_extension(tmp_path: Path) -> None:
    rels = write_files(tmp_path, {"a.ts": "import {X} from './b'\n", "b.ts": "export const X = 1;\n", "c.md": "# c\n"})

    graph = DependencyGraph.build(tmp_path, rels)

    assert graph.imports("a.ts") == ("b.ts",)
    assert graph.in_degree("b.ts") == 1
    assert graph.connectivity("a.ts") == pytest.approx(0.2)
    assert graph.connectivity("b.ts") == pytest.approx(0.2)
    assert graph.connectivity("c.md") == 0.0


@pytest.mark.unit
def test_unresolved_import_adds_no_edge(tmp_path: Path) -> None:
    rels = write_files(tmp_path, {"a.ts": "import {X} from './b'\nimport React from 'react'\n"})

    graph = DependencyGraph.build(tmp_path, rels)

    assert graph.imports("a.ts") == ()
    assert graph.edge_count == 0


@pytest.mark.unit
def test_multiline_javascript_import(tmp_path: Path) -> None:
    rels = write_files(
        tmp_path,
        {
            "src/app.js": "import {\n  A,\n  B\n} from './lib/util';\n",
            "src/lib/util.js": "export const A = 1;\n",
        },
    )

    graph = DependencyGraph.build(tmp_path, rels)

    assert graph.imports("src/app.js") == ("src/lib/util.js",)


@pytest.mark.unit
def test_python_absolute_and_relative_imports(tmp_path: Path) -> None:
    rels = write_files(
        tmp_path,
        {
            "main.py": "from pkg import mod\nimport os\n",
            "pkg/__init__.py": "",
            "pkg/mod.py": "from . import helpers\n",
            "pkg/helpers.py": "X = 1\n",
        },
    )

    graph = DependencyGraph.build(tmp_path, rels)

    assert graph.imports("main.py") == ("pkg/__init__.py", "pkg/mod.py")
    assert graph.imports("pkg/mod.py") == ("pkg/helpers.py",)


@pytest.mark.unit
def test_python_parenthesized_import_block() -> None:
    source = "from pkg import (\n    mod,  # the module\n    other,\n)\nimport a.b, c as d\n"

    targets = [spec.target for spec in scan_imports(source, FileType.PYTHON)]

    assert targets == ["pkg", "pkg.mod", "pkg.other", "a.b", "c"]


@pytest.mark.unit
def test_c_include_resolves_next_to_source(tmp_path: Path) -> None:
    rels = write_files(
        tmp_path,
        {"src/main.c": '#include <stdio.h>\n#include "util.h"\n', "src/util.h": "int util(void);\n"},
    )

    graph = DependencyGraph.build(tmp_path, rels)

    assert graph.imports("src/main.c") == ("src/util.h",)


@pytest.mark.unit
def test_self_import_is_dropped(tmp_path: Path) -> None:
    rels = write_files(tmp_path, {"a.py": "import a\n"})

    graph = DependencyGraph.build(tmp_path, rels)

    assert graph.imports("a.py") == ()
    assert graph.connectivity("a.py") == 0.0


@pytest.mark.unit
def test_edges_are_deduplicated() -> None:
    graph = DependencyGraph({"a.py": ["b.py", "b.py", "a.py"]})

    assert graph.imports("a.py") == ("b.py",)
    assert graph.out_degree("a.py") == 1
    assert graph.edge_count == 1


@pytest.mark.unit
def test_in_degree_matches_targets_containing_the_name() -> None:
    graph = DependencyGraph({"a.js": ["lib/util.js"], "b.js": ["other/util.js"], "c.js": []})

    assert graph.in_degree("lib/util.js") == 2


@pytest.mark.unit
def test_go_import_block() -> None:
    source = 'package main\n\nimport (\n\t"fmt"\n\tu "example.com/pkg/util"\n)\n'

    assert [spec.target for spec in scan_imports(source, FileType.GO)] == ["fmt", "example.com/pkg/util"]


@pytest.mark.unit
def test_comment_lines_are_not_scanned() -> None:
    source = "// import x from './x'\nconst y = require('./y');\n"

    assert scan_imports(source, FileType.JAVASCRIPT) == [ImportSpec("./y")]


@pytest.mark.unit
def test_ruby_require_relative_is_relative() -> None:
    assert scan_imports("require_relative 'lib/tool'\n", FileType.RUBY) == [ImportSpec("./lib/tool")]


@pytest.mark.unit
def test_resolve_java_import_by_class_file() -> None:
    index = FileIndex(["java/Util.java", "js/Util.js"])

    found = resolve_import(ImportSpec("com.acme.Util"), "java/App.java", FileType.JAVA, index)

    assert found == "java/Util.java"
    assert resolve_import(ImportSpec("com.acme.*"), "java/App.java", FileType.JAVA, index) is None


@pytest.mark.unit
def test_index_lookup_prefers_suffix() -> None:
    index = FileIndex(["java/Util.java", "js/Util.js"])

    assert index.lookup("Util", ".js") == "js/Util.js"
    assert index.lookup("Util") == "java/Util.java"
    assert index.lookup("Missing") is None
    assert "js/Util.js" in index
    assert len(index) == 2


@pytest.mark.unit
def test_relative_import_escaping_root_resolves_only_by_name() -> None:
    index = FileIndex(["a.js"])

    assert resolve_import(ImportSpec("../../a", by_name=False), "src/b.js", FileType.JAVASCRIPT, index) is None
    assert resolve_import(ImportSpec("../../a"), "src/b.js", FileType.JAVASCRIPT, index) == "a.js"


@pytest.mark.unit
def test_relative_import_miss_falls_back_to_name_lookup() -> None:
    index = FileIndex(["src/app.ts", "lib/util.ts"])

    assert resolve_import(ImportSpec("./util"), "src/app.ts", FileType.TYPESCRIPT, index) == "lib/util.ts"
    assert resolve_import(ImportSpec("./missing"), "src/app.ts", FileType.TYPESCRIPT, index) is None
