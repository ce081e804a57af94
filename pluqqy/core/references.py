"""Reference index: which pipelines point at which component files."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from pluqqy.db.models import Pipeline
from pluqqy.db.store import ProjectStore
from pluqqy.errors import PartialPropagation, PluqqyError

logger = structlog.get_logger()


@dataclass(frozen=True)
class DanglingReference:
    """A pipeline reference that does not resolve within its own tree.

    ``reason`` is ``missing`` (no such file), ``archived`` (a live pipeline
    whose component only exists in the archive) or ``invalid`` (not a
    sanctioned reference path).
    """

    pipeline: str
    archived: bool
    ref: str
    reason: str

    @property
    def label(self) -> str:
        return f"archive/{self.pipeline}" if self.archived else self.pipeline


def all_pipelines(store: ProjectStore) -> list[Pipeline]:
    return store.list_pipelines(archived=False) + store.list_pipelines(archived=True)


def references_to(store: ProjectStore, pipeline: Pipeline, path: str, archived: bool) -> list[int]:
    """Indexes of ``pipeline``'s references that resolve to the given component file."""
    indexes: list[int] = []
    for index, ref in enumerate(pipeline.components):
        try:
            resolved = store.resolve_reference(pipeline, ref)
        except PluqqyError:
            continue
        if resolved.exists and resolved.path == path and resolved.archived == archived:
            indexes.append(index)
    return indexes


def find_affected(store: ProjectStore, path: str, archived: bool = False) -> list[Pipeline]:
    """Pipelines in either tree whose references resolve to the component."""
    return [p for p in all_pipelines(store) if references_to(store, p, path, archived)]


def find_dangling(store: ProjectStore) -> list[DanglingReference]:
    """Reconciliation scan over both trees."""
    dangling: list[DanglingReference] = []
    for pipeline in all_pipelines(store):
        for ref in pipeline.components:
            try:
                resolved = store.resolve_reference(pipeline, ref)
            except PluqqyError:
                reason = "invalid"
            else:
                if not resolved.exists:
                    reason = "missing"
                elif resolved.fallback:
                    reason = "archived"
                else:
                    continue
            dangling.append(DanglingReference(pipeline.path, pipeline.archived, ref.path, reason))
    if dangling:
        logger.info("references.dangling", count=len(dangling))
    return dangling


def remove_references(store: ProjectStore, path: str, archived: bool = False) -> list[str]:
    """Drop every reference to a component; returns the pipelines rewritten.

    Used before hard-deleting a component. Each pipeline is rewritten
    atomically; a failure leaves earlier rewrites in place.
    """
    updated: list[str] = []
    failed: list[str] = []
    for pipeline in find_affected(store, path, archived):
        drop = set(references_to(store, pipeline, path, archived))
        pipeline.components = [r for i, r in enumerate(pipeline.components) if i not in drop]
        label = f"archive/{pipeline.path}" if pipeline.archived else pipeline.path
        try:
            store.write_pipeline(pipeline)
        except PluqqyError as e:
            logger.warning("references.remove_failed", pipeline=label, error=str(e))
            failed.append(label)
            continue
        updated.append(label)
    if failed:
        raise PartialPropagation(
            f"references to {path} removed from {len(updated)} of {len(updated) + len(failed)} pipelines",
            succeeded=updated,
            failed=failed,
        )
    logger.info("references.removed", component=path, pipelines=updated)
    return updated
