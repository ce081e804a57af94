"""Tests for the interactive list view."""

from __future__ import annotations

import io
import threading

import pytest
from rich.console import Console

from pluqqy.cli.main import _services
from pluqqy.core.tasks import TAGS_KEY, TaskRunner
from pluqqy.tui.app import ListView

from tests.helpers import add_component, add_pipeline


def scripted(lines: list[str]):
    pending = iter(lines)
    return lambda prompt: next(pending)


@pytest.fixture
def view(store):
    path = add_component(store, "prompts", "greeting", "# Greeting\n\nHi there\n", ["api"])
    add_pipeline(store, "alpha", [path], name="Alpha")
    v = ListView(_services(store), console=Console(file=io.StringIO(), width=120))
    v.refresh()
    return v


async def settle(view: ListView) -> None:
    await view.runner.drain()
    await view.pump_messages()


class TestListView:
    @pytest.mark.asyncio
    async def test_set_pipeline(self, view, store):
        view.runner = TaskRunner()
        await view.handle("s 2")
        await settle(view)
        assert view.status.startswith("✓ Set Alpha")
        assert "Hi there" in (store.root / "PLUQQY.md").read_text()

    @pytest.mark.asyncio
    async def test_delete_needs_confirmation(self, view, store):
        view.runner = TaskRunner()
        await view.handle("d 1")
        assert view.confirm.is_active
        assert not view.runner.is_busy(view.key_for(view.items[0]))
        await view.handle("y")
        await settle(view)
        assert view.status == "✓ Deleted Greeting"
        assert not store.component_exists("components/prompts/greeting.md")
        assert store.read_pipeline("pipelines/alpha.yaml").components == []

    @pytest.mark.asyncio
    async def test_delete_cancelled(self, view, store):
        view.runner = TaskRunner()
        await view.handle("d 1")
        await view.handle("n")
        assert not view.confirm.is_active
        assert store.component_exists("components/prompts/greeting.md")

    @pytest.mark.asyncio
    async def test_rename_reports_result(self, view, store):
        view.runner = TaskRunner()
        await view.handle("r 1 Salutation")
        await settle(view)
        assert view.status.startswith("✓ Renamed")
        assert store.read_pipeline("pipelines/alpha.yaml").components[0].path == (
            "../components/prompts/salutation.md"
        )

    @pytest.mark.asyncio
    async def test_archive_toggle(self, view, store):
        view.runner = TaskRunner()
        await view.handle("a 1")
        await settle(view)
        assert view.status.startswith("✓ Archived")
        assert store.component_exists("components/prompts/greeting.md", archived=True)

    @pytest.mark.asyncio
    async def test_errors_become_status(self, view):
        view.runner = TaskRunner()
        await view.handle("s 9")
        assert view.status.startswith("×")
        await view.handle("zz")
        assert view.status == "× Unknown command: zz"

    @pytest.mark.asyncio
    async def test_filter(self, view):
        await view.handle("/type:pipeline")
        assert [p.name for p in view.items] == ["Alpha"]

    @pytest.mark.asyncio
    async def test_run_loop_with_builder(self, view, store):
        view.read_line = scripted(["n", "+ 1", "name Beta", "w", "q", "q"])
        await view.run()
        saved = store.read_pipeline("pipelines/beta.yaml")
        assert [r.path for r in saved.components] == ["../components/prompts/greeting.md"]
        assert not view.running

    @pytest.mark.asyncio
    async def test_submit_creates_runner_on_demand(self, view, store):
        assert view.runner is None
        await view.handle("s 1")
        await settle(view)
        assert view.status.startswith("✓ Set Greeting")

    @pytest.mark.asyncio
    async def test_malformed_registry_still_renders(self, view, store):
        (store.root / "tags.yaml").write_text("tags: [unclosed\n")
        await view.refresh_async()
        console = Console(file=io.StringIO(), width=120)
        console.print(view.render())
        assert "Greeting" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_tag_usage_reported_from_worker(self, view):
        await view.handle("t")
        await settle(view)
        assert view.status == "✓ 1 tags"
        assert "api" in view.console.file.getvalue()

    @pytest.mark.asyncio
    async def test_check_reported_from_worker(self, view, store):
        add_pipeline(store, "broken", ["components/rules/gone.md"])
        await view.handle("c")
        await settle(view)
        assert view.status == "× 1 dangling references"
        assert "../components/rules/gone.md (missing)" in view.console.file.getvalue()

    @pytest.mark.asyncio
    async def test_clone_with_suggested_name(self, view, store):
        await view.handle("k 1")
        await settle(view)
        assert view.status == "✓ Cloned prompt 'Greeting' as '(Copy) Greeting'"
        assert store.read_component("components/prompts/copy-greeting.md").display_name == "(Copy) Greeting"
        assert "(Copy) Greeting" in [item.display_name for item in view.results.components]


class TestTagJobExclusion:
    @pytest.fixture
    def gate(self, view):
        """Holds a job on the tags key until released."""
        released = threading.Event()
        yield released
        released.set()

    @pytest.mark.asyncio
    async def test_reload_refused_while_tag_job_runs(self, view, gate):
        view.tasks.submit(TAGS_KEY, "delete tag", gate.wait)
        await view.handle("tr")
        assert view.status.startswith("× an operation on tags is still in progress")
        gate.set()
        await settle(view)

    @pytest.mark.asyncio
    async def test_edit_refused_while_tag_job_runs(self, view, gate, monkeypatch):
        launched = []
        monkeypatch.setattr("pluqqy.tui.app.launch_editor", lambda *args: launched.append(args))
        view.tasks.submit(TAGS_KEY, "delete tag", gate.wait)
        await view.handle("e 1")
        assert view.status.startswith("× an operation on tags")
        assert launched == []
        gate.set()
        await settle(view)

    @pytest.mark.asyncio
    async def test_builder_save_refused_while_tag_job_runs(self, view, store, gate):
        view.tasks.submit(TAGS_KEY, "delete tag", gate.wait)
        view.read_line = scripted(["n", "+ 1", "name Beta", "w", "q", "y", "q"])
        await view.build(None)
        assert view.status.startswith("× an operation on tags")
        assert not (store.root / "pipelines" / "beta.yaml").exists()
        gate.set()
        await settle(view)


class TestInput:
    @pytest.mark.asyncio
    async def test_end_of_input_quits(self, view):
        def closed(prompt):
            raise EOFError

        view.read_line = closed
        await view.run()
        assert not view.running

    @pytest.mark.asyncio
    async def test_interrupt_in_builder_quits(self, view, store):
        lines = iter(["n", "+ 1"])

        def reader(prompt):
            for line in lines:
                return line
            raise KeyboardInterrupt

        view.read_line = reader
        await view.run()
        assert not view.running
        assert not (store.root / "pipelines" / "untitled.yaml").exists()

    @pytest.mark.asyncio
    async def test_builder_rejects_unknown_item_number(self, view, store):
        view.read_line = scripted(["+ 7", "q"])
        await view.build(None)
        assert view.status == "× no item 7"

    @pytest.mark.asyncio
    async def test_edit_hands_path_to_editor(self, view, store, monkeypatch):
        launched = []
        monkeypatch.setattr("pluqqy.tui.app.launch_editor", lambda command, location: launched.append(location))
        await view.handle("e 1")
        assert launched == [str(store.abspath("components/prompts/greeting.md"))]
        assert view.status == "✓ Edited Greeting"
