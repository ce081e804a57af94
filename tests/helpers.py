"""Helpers to populate a test project."""

from __future__ import annotations

from pluqqy.db.models import ComponentRef, Pipeline
from pluqqy.db.store import ProjectStore


def add_component(
    store: ProjectStore,
    kind: str,
    slug: str,
    body: str,
    tags: list[str] | None = None,
    archived: bool = False,
) -> str:
    path = store.component_path(kind, slug)
    store.write_component(path, body, tags or [], archived=archived)
    return path


def add_pipeline(
    store: ProjectStore,
    slug: str,
    component_paths: list[str],
    tags: list[str] | None = None,
    archived: bool = False,
    name: str | None = None,
) -> Pipeline:
    pipeline = Pipeline(
        name=name or slug,
        tags=tags or [],
        components=[
            ComponentRef(type=path.split("/")[1], path=f"../{path}") for path in component_paths
        ],
        path=store.pipeline_path(slug),
        archived=archived,
    )
    store.write_pipeline(pipeline)
    return pipeline
