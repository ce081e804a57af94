"""Tests for the bundled examples."""

from __future__ import annotations

import pytest

from pluqqy.core.examples import CATEGORIES, EXAMPLE_SETS, example_sets, install_examples
from pluqqy.core.references import find_dangling
from pluqqy.errors import ValidationError


class TestCatalog:
    def test_every_category_has_a_set(self):
        assert {s.category for s in EXAMPLE_SETS} == set(CATEGORIES)

    def test_all_and_single(self):
        assert len(example_sets("all")) == len(EXAMPLE_SETS)
        assert [s.category for s in example_sets("Web")] == ["web"]

    def test_unknown_category(self):
        with pytest.raises(ValidationError, match="invalid category"):
            example_sets("mobile")

    def test_files_are_prefixed(self):
        for example_set in EXAMPLE_SETS:
            for component in example_set.components:
                assert component.filename.startswith("example-")
                assert component.filename.endswith(".md")
            for pipeline in example_set.pipelines:
                assert pipeline.filename.startswith("example-")


class TestInstall:
    def test_installs_category(self, store, registry):
        result = install_examples(store, registry, "claude")
        assert result.installed_components == [
            "components/contexts/example-claude-parser.md",
            "components/prompts/example-extract-to-pluqqy.md",
            "components/rules/example-preserve-intent.md",
        ]
        assert result.installed_pipelines == ["pipelines/example-claude-distiller.yaml"]
        component = store.read_component("components/rules/example-preserve-intent.md")
        assert component.display_name == "Preserve Intent"
        assert "claude" in component.tags
        assert registry.get_tag("migration") is not None

    def test_pipelines_resolve_within_their_set(self, store, registry):
        install_examples(store, registry, "general")
        assert find_dangling(store) == []
        pipeline = store.read_pipeline("pipelines/example-feature-development.yaml")
        assert [r.order for r in pipeline.components] == [1, 2, 3, 4, 5]

    def test_skips_existing_unless_forced(self, store, registry):
        path = "components/rules/example-preserve-intent.md"
        store.write_component(path, "# Mine\n")
        result = install_examples(store, registry, "claude")
        assert result.skipped == [path]
        assert "1 existing files skipped" in result.message()
        assert store.read_component(path).content == "# Mine\n"

        forced = install_examples(store, registry, "claude", force=True)
        assert forced.skipped == []
        assert "Preserve Intent" in store.read_component(path).display_name
