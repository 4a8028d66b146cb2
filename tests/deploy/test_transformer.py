"""Tests for the build step."""

from __future__ import annotations

import sys

import pytest

from syncdeploy.core.paths import ProjectPaths
from syncdeploy.deploy.transformer import BuildCategory, Transformer
from syncdeploy.deploy.types import BuildError
from tests.fakes import write_file

# Writes the uppercased source file to stdout
UPPERCASE = [
    sys.executable,
    "-c",
    "import sys; sys.stdout.write(open(sys.argv[1]).read().upper())",
    "{src}",
]
FAILING = [sys.executable, "-c", "import sys; sys.stderr.write('syntax error'); sys.exit(2)"]


class TestCategoryFor:
    """Tests for extension dispatch."""

    @pytest.mark.parametrize(
        ("rel_path", "expected"),
        [
            ("components/App.jsx", BuildCategory.COMPONENT),
            ("scripts/main.js", BuildCategory.SCRIPT),
            ("css/site.css", BuildCategory.STYLESHEET),
            ("public_html/index.php", BuildCategory.MARKUP),
            ("about.html", BuildCategory.MARKUP),
            ("img/logo.png", BuildCategory.RAW),
        ],
    )
    def test_extensions(self, paths: ProjectPaths, rel_path: str, expected: BuildCategory) -> None:
        assert Transformer(paths).category_for(rel_path) == expected

    def test_raw_copy_paths_override_extension(self, paths: ProjectPaths) -> None:
        transformer = Transformer(paths, raw_copy_paths=["/public_html/scripts/c2runtime.js"])

        assert transformer.category_for("public_html/scripts/c2runtime.js") == BuildCategory.RAW
        assert transformer.category_for("public_html/scripts/main.js") == BuildCategory.SCRIPT


class TestTransform:
    """Tests for building artifacts."""

    def test_raw_copy_without_command(self, paths: ProjectPaths) -> None:
        """Categories without a command are copied unchanged."""
        write_file(paths.to_src("css/site.css"), "body {}")

        artifact = Transformer(paths).transform("css/site.css")

        assert artifact == paths.to_dest("css/site.css")
        assert artifact.read_text() == "body {}"

    def test_command_stdout_becomes_artifact(self, paths: ProjectPaths) -> None:
        write_file(paths.to_src("main.js"), "let a = 1;")

        artifact = Transformer(paths, {"script": UPPERCASE}).transform("main.js")

        assert artifact.read_text() == "LET A = 1;"

    def test_component_artifact_renamed(self, paths: ProjectPaths) -> None:
        """A .jsx component is written as .js."""
        write_file(paths.to_src("ui/App.jsx"), "<App />")

        artifact = Transformer(paths, {"component": UPPERCASE}).transform("ui/App.jsx")

        assert artifact == paths.to_dest("ui/App.js")
        assert artifact.read_text() == "<APP />"

    def test_raw_copy_path_skips_command(self, paths: ProjectPaths) -> None:
        write_file(paths.to_src("public_html/scripts/c2runtime.js"), "runtime")
        transformer = Transformer(
            paths,
            {"script": FAILING},
            raw_copy_paths=["/public_html/scripts/c2runtime.js"],
        )

        artifact = transformer.transform("public_html/scripts/c2runtime.js")

        assert artifact.read_text() == "runtime"

    def test_failing_command_raises_build_error(self, paths: ProjectPaths) -> None:
        write_file(paths.to_src("main.js"), "let")

        with pytest.raises(BuildError, match="syntax error"):
            Transformer(paths, {"script": FAILING}).transform("main.js")

    def test_missing_source_raises_build_error(self, paths: ProjectPaths) -> None:
        with pytest.raises(BuildError):
            Transformer(paths).transform("gone.png")

    def test_missing_executable_raises_build_error(self, paths: ProjectPaths) -> None:
        write_file(paths.to_src("main.js"))

        with pytest.raises(BuildError):
            Transformer(paths, {"script": ["no-such-build-tool-xyz", "{src}"]}).transform("main.js")


class TestConfiguration:
    """Tests for build command validation."""

    def test_unknown_category(self, paths: ProjectPaths) -> None:
        with pytest.raises(ValueError, match="Unknown build category"):
            Transformer(paths, {"typescript": ["tsc"]})

    def test_empty_command(self, paths: ProjectPaths) -> None:
        with pytest.raises(ValueError, match="Empty build command"):
            Transformer(paths, {"script": []})
