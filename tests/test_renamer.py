"""Tests for the rename engine and reference index."""

from __future__ import annotations

import pytest

from pluqqy.core.references import find_affected, find_dangling, remove_references
from pluqqy.core.renamer import update_display_name
from pluqqy.errors import NotFound, PartialPropagation, ValidationError

from tests.helpers import add_component, add_pipeline


@pytest.fixture
def project(store):
    foo = add_component(store, "prompts", "foo", "# Foo\n\nbody\n", ["x"])
    add_pipeline(store, "alpha", [foo])
    add_pipeline(store, "beta", [foo], archived=True)
    return store


class TestRenameComponent:
    def test_rewrites_live_pipelines_and_flags_archived(self, project, renamer):
        events = []
        result = renamer.rename_component(
            "components/prompts/foo.md",
            "Bar Baz",
            "prompts",
            progress=lambda p, i, n: events.append((p, i, n)),
        )
        assert result.new_path == "components/prompts/bar-baz.md"
        assert result.old_name == "Foo" and result.new_name == "Bar Baz"
        assert result.updated_pipelines == ["pipelines/alpha.yaml"]
        assert events == [("pipelines/alpha.yaml", 1, 1)]

        assert not project.component_exists("components/prompts/foo.md")
        renamed = project.read_component("components/prompts/bar-baz.md")
        assert renamed.display_name == "Bar Baz"
        assert renamed.tags == ["x"]

        alpha = project.read_pipeline("pipelines/alpha.yaml")
        assert alpha.components[0].path == "../components/prompts/bar-baz.md"
        beta = project.read_pipeline("pipelines/beta.yaml", archived=True)
        assert beta.components[0].path == "../components/prompts/foo.md"

        dangling = find_dangling(project)
        assert [(d.label, d.reason) for d in dangling] == [("archive/pipelines/beta.yaml", "missing")]

    def test_round_trip_restores_bytes(self, project, renamer):
        component_before = (project.root / "components/prompts/foo.md").read_bytes()
        alpha_before = (project.root / "pipelines/alpha.yaml").read_bytes()
        renamer.rename_component("components/prompts/foo.md", "Bar Baz", "prompt")
        renamer.rename_component("components/prompts/bar-baz.md", "Foo", "prompt")
        assert (project.root / "components/prompts/foo.md").read_bytes() == component_before
        assert (project.root / "pipelines/alpha.yaml").read_bytes() == alpha_before

    def test_same_slug_is_noop_success(self, project, renamer):
        result = renamer.rename_component("components/prompts/foo.md", "FOO", "prompts")
        assert result.new_path == result.old_path
        assert result.updated_pipelines == []
        assert project.read_component("components/prompts/foo.md").display_name == "FOO"

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101, "***"])
    def test_invalid_names_have_no_side_effects(self, project, renamer, name):
        with pytest.raises(ValidationError):
            renamer.rename_component("components/prompts/foo.md", name, "prompts")
        assert project.component_exists("components/prompts/foo.md")

    def test_collision(self, project, renamer):
        add_component(project, "prompts", "taken", "t")
        with pytest.raises(ValidationError):
            renamer.rename_component("components/prompts/foo.md", "Taken", "prompts")
        assert project.component_exists("components/prompts/foo.md")

    def test_same_name_other_kind_allowed(self, project, renamer):
        add_component(project, "rules", "bar", "r")
        result = renamer.rename_component("components/prompts/foo.md", "bar", "prompts")
        assert result.new_path == "components/prompts/bar.md"

    def test_kind_mismatch(self, project, renamer):
        with pytest.raises(ValidationError):
            renamer.rename_component("components/prompts/foo.md", "New", "rules")

    def test_missing_component(self, project, renamer):
        with pytest.raises(NotFound):
            renamer.rename_component("components/prompts/nope.md", "New", "prompts")

    def test_archived_component_updates_archived_pipeline(self, store, renamer):
        old = add_component(store, "rules", "old", "# Old\n", archived=True)
        add_pipeline(store, "arch", [old], archived=True)
        result = renamer.rename_component(old, "New", "rules", archived=True)
        assert result.updated_pipelines == ["archive/pipelines/arch.yaml"]
        arch = store.read_pipeline("pipelines/arch.yaml", archived=True)
        assert arch.components[0].path == "../components/rules/new.md"

    def test_partial_propagation(self, project, renamer, monkeypatch):
        def refuse(pipeline):
            raise ValidationError("read-only")

        monkeypatch.setattr(project, "write_pipeline", refuse)
        with pytest.raises(PartialPropagation) as excinfo:
            renamer.rename_component("components/prompts/foo.md", "Moved", "prompts")
        assert excinfo.value.failed == ["pipelines/alpha.yaml"]
        assert excinfo.value.succeeded == []
        assert project.component_exists("components/prompts/moved.md")


class TestRenamePipeline:
    def test_renames_file_and_name(self, project, renamer):
        result = renamer.rename_pipeline("pipelines/alpha.yaml", "Alpha Two")
        assert result.new_path == "pipelines/alpha-two.yaml"
        pipeline = project.read_pipeline("pipelines/alpha-two.yaml")
        assert pipeline.name == "Alpha Two"
        assert not (project.root / "pipelines/alpha.yaml").exists()

    def test_collision(self, project, renamer):
        add_pipeline(project, "gamma", [])
        with pytest.raises(ValidationError):
            renamer.rename_pipeline("pipelines/alpha.yaml", "Gamma")


class TestReferences:
    def test_find_affected_by_tree(self, project):
        live = find_affected(project, "components/prompts/foo.md", archived=False)
        assert [p.path for p in live] == ["pipelines/alpha.yaml"]

    def test_remove_references(self, project):
        other = add_component(project, "rules", "r", "r")
        add_pipeline(project, "mixed", ["components/prompts/foo.md", other, "components/prompts/foo.md"])
        updated = remove_references(project, "components/prompts/foo.md")
        assert updated == ["pipelines/alpha.yaml", "pipelines/mixed.yaml"]
        mixed = project.read_pipeline("pipelines/mixed.yaml")
        assert [r.path for r in mixed.components] == ["../components/rules/r.md"]

    def test_dangling_archived_reference(self, store):
        path = add_component(store, "prompts", "gone", "x", archived=True)
        add_pipeline(store, "live", [path])
        assert [d.reason for d in find_dangling(store)] == ["archived"]


class TestDisplayNameUpdate:
    def test_heading(self):
        assert update_display_name("intro\n# Old\n\ntext\n# Second\n", "New") == "intro\n# New\n\ntext\n# Second\n"

    def test_front_matter_name(self):
        text = "---\nname: Old\n---\nbody\n"
        assert update_display_name(text, "New") == "---\nname: New\n---\nbody\n"

    def test_no_heading_left_alone(self):
        assert update_display_name("plain\n", "New") == "plain\n"
