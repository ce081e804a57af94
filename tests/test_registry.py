"""Tests for the tag registry."""

from __future__ import annotations

import threading

import pytest
import yaml

from pluqqy.core.registry import TagRegistry
from pluqqy.core.tasks import CancelToken
from pluqqy.errors import Cancelled, Malformed, ValidationError
from pluqqy.utils.naming import tag_color

from tests.helpers import add_component, add_pipeline


class TestRegistryEntries:
    def test_ensure_is_idempotent(self, registry):
        first = registry.ensure_tag("API")
        second = registry.ensure_tag("api")
        assert first.name == second.name == "api"
        assert [t.name for t in registry.list_tags()] == ["api"]

    def test_persisted_format(self, registry, store):
        registry.ensure_tag("web")
        data = yaml.safe_load((store.root / "tags.yaml").read_text())
        assert data["tags"][0]["name"] == "web"
        assert data["tags"][0]["color"].startswith("#")

    def test_reads_bare_list(self, store):
        (store.root / "tags.yaml").write_text("- name: Legacy\n  color: '#000000'\n")
        registry = TagRegistry(store)
        assert registry.get_tag("legacy").color == "#000000"

    def test_invalid_name(self, registry):
        with pytest.raises(ValidationError):
            registry.ensure_tag("no_underscores")

    def test_set_color(self, registry):
        registry.ensure_tag("ops")
        assert registry.set_color("ops", "#ABCDEF").color == "#abcdef"
        with pytest.raises(ValidationError):
            registry.set_color("ops", "red")

    def test_malformed_file_raises_on_lookup(self, store):
        (store.root / "tags.yaml").write_text("tags: [unclosed\n")
        with pytest.raises(Malformed):
            TagRegistry(store).get_tag("api")

    def test_color_falls_back_when_file_is_malformed(self, store):
        (store.root / "tags.yaml").write_text("tags: [unclosed\n")
        assert TagRegistry(store).color_for("API") == tag_color("api")


class TestUsage:
    def test_counts_both_trees_once_per_file(self, registry, store):
        add_component(store, "prompts", "a", "a", ["x"])
        add_component(store, "rules", "b", "b", ["x"], archived=True)
        add_pipeline(store, "p", [], tags=["x"])
        usage = registry.count_usage("X")
        assert (usage.component_count, usage.pipeline_count, usage.total) == (2, 1, 3)

    def test_usage_report_includes_unregistered(self, registry, store):
        registry.ensure_tag("idle")
        add_component(store, "prompts", "a", "a", ["used"])
        report = registry.usage_report()
        assert report["idle"].total == 0
        assert report["used"].component_count == 1


class TestOrphanCleanup:
    def test_removes_only_unused(self, registry, store):
        registry.ensure_tags(["keep", "drop"])
        add_component(store, "prompts", "a", "a", ["keep"])
        assert registry.cleanup_orphans(["keep", "drop"]) == ["drop"]
        assert [t.name for t in registry.list_tags()] == ["keep"]

    def test_rechecks_at_execution_time(self, registry, store):
        path = add_component(store, "prompts", "a", "a", ["t"])
        registry.ensure_tag("t")
        store.write_component(path, "a", [])
        add_component(store, "prompts", "b", "b", ["t"])
        assert registry.cleanup_orphans(["t"]) == []
        assert registry.get_tag("t") is not None

    def test_idempotent(self, registry):
        registry.ensure_tag("gone")
        assert registry.cleanup_orphans(["gone"]) == ["gone"]
        assert registry.cleanup_orphans(["gone"]) == []

    def test_all_entries_when_no_candidates(self, registry):
        registry.ensure_tags(["a", "b"])
        assert sorted(registry.cleanup_orphans()) == ["a", "b"]

    def test_usage_scan_runs_without_the_lock(self, registry, monkeypatch):
        registry.ensure_tag("orphan")
        original = registry.count_usage
        lock_free: list[bool] = []

        def try_lock():
            acquired = registry._lock.acquire(blocking=False)
            if acquired:
                registry._lock.release()
            lock_free.append(acquired)

        def counting(name):
            other = threading.Thread(target=try_lock)
            other.start()
            other.join()
            return original(name)

        monkeypatch.setattr(registry, "count_usage", counting)
        assert registry.cleanup_orphans() == ["orphan"]
        assert lock_free == [True]


class TestDeleteEverywhere:
    def test_strips_all_files_and_reports_progress(self, registry, store):
        c1 = add_component(store, "prompts", "one", "one\n", ["t", "other"])
        add_component(store, "rules", "two", "two\n", ["other"])
        add_pipeline(store, "pipe", [c1], tags=["t"])
        c3 = add_component(store, "contexts", "three", "three\n", ["t"], archived=True)
        registry.ensure_tags(["t", "other"])

        events = []
        result = registry.delete_tag_everywhere("t", progress=lambda f, i, n: events.append((f, i, n)))

        assert events == [
            ("components/prompts/one.md", 1, 3),
            ("pipelines/pipe.yaml", 2, 3),
            ("archive/components/contexts/three.md", 3, 3),
        ]
        assert result.ok and result.registry_removed
        assert result.message() == "✓ Tag 't' deleted from registry and 3 files"
        assert store.read_component(c1).tags == ["other"]
        assert store.read_component(c3, archived=True).tags == []
        assert store.read_pipeline("pipelines/pipe.yaml").tags == []
        assert registry.get_tag("t") is None
        assert registry.count_usage("t").total == 0
        assert registry.get_tag("other") is not None

    def test_cancel_during_scan(self, registry, store):
        add_component(store, "prompts", "one", "one", ["t"])
        registry.ensure_tag("t")
        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            registry.delete_tag_everywhere("t", cancel=token)
        assert store.read_component("components/prompts/one.md").tags == ["t"]
        assert registry.get_tag("t") is not None

    def test_failure_keeps_entry_and_continues(self, registry, store, monkeypatch):
        add_component(store, "prompts", "one", "one", ["t"])
        add_component(store, "prompts", "two", "two", ["t"])
        registry.ensure_tag("t")
        original = registry._strip_tag

        def flaky(item, tag):
            if item.path.endswith("one.md"):
                raise ValidationError("disk says no")
            original(item, tag)

        monkeypatch.setattr(registry, "_strip_tag", flaky)
        result = registry.delete_tag_everywhere("t")
        assert not result.ok
        assert result.files_updated == ["components/prompts/two.md"]
        assert result.message().startswith("× Tag 't' partially deleted")
        assert registry.get_tag("t") is not None


class TestReload:
    def test_registers_found_tags(self, registry, store):
        add_component(store, "prompts", "a", "a", ["alpha"])
        add_pipeline(store, "p", [], tags=["beta"], archived=True)
        result = registry.reload()
        assert sorted(result.new_tags) == ["alpha", "beta"]
        assert (result.components_scanned, result.pipelines_scanned) == (1, 1)
        assert result.total_tags == 2

    def test_cancellable(self, registry, store):
        add_component(store, "prompts", "a", "a", ["alpha"])
        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            registry.reload(cancel=token)
        assert registry.list_tags() == []

    def test_records_unreadable_files(self, registry, store):
        (store.root / "components" / "prompts" / "bad.md").write_text("---\ntags: [x\n---\n")
        result = registry.reload()
        assert result.failed_files == ["components/prompts/bad.md"]
