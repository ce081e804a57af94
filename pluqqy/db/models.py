"""Models for the on-disk artifacts.

These mirror the files under the project directory for type safety in
Python code: component markdown, pipeline YAML, the tag registry and
settings.yaml.
"""

from __future__ import annotations

import posixpath
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pluqqy.errors import ValidationError
from pluqqy.utils.tokens import estimate_tokens

COMPONENTS_DIR = "components"
PIPELINES_DIR = "pipelines"
ARCHIVE_DIR = "archive"


class ComponentKind(str, Enum):
    """The three kinds of reusable fragment; the value is the subdirectory name."""

    CONTEXTS = "contexts"
    PROMPTS = "prompts"
    RULES = "rules"

    @classmethod
    def parse(cls, value: str | ComponentKind) -> ComponentKind:
        """Accept plural or singular spellings, case-insensitively."""
        if isinstance(value, ComponentKind):
            return value
        normalized = str(value).strip().lower()
        if not normalized.endswith("s"):
            normalized += "s"
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"unknown component type '{value}' (expected context, prompt or rule)"
            ) from None

    @property
    def singular(self) -> str:
        return self.value[:-1]


KIND_ORDER: list[ComponentKind] = [
    ComponentKind.CONTEXTS,
    ComponentKind.PROMPTS,
    ComponentKind.RULES,
]


class Component(BaseModel):
    """A markdown fragment, as read from disk."""

    kind: ComponentKind
    path: str
    display_name: str
    content: str
    tags: list[str] = Field(default_factory=list)
    archived: bool = False
    last_modified: datetime | None = None
    front_matter: dict[str, Any] = Field(default_factory=dict)

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path)

    @property
    def slug(self) -> str:
        return posixpath.splitext(self.filename)[0]

    @property
    def reference(self) -> str:
        """The path a pipeline uses to point at this component."""
        return f"../{self.path}"

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.content)


class ComponentRef(BaseModel):
    """One entry in a pipeline's component sequence."""

    type: ComponentKind
    path: str
    order: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> ComponentKind:
        return ComponentKind.parse(value)

    @property
    def component_path(self) -> str:
        """Tree-relative path of the referenced component."""
        return posixpath.normpath(posixpath.join(PIPELINES_DIR, self.path))


class Pipeline(BaseModel):
    """A named, ordered composition of component references."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    tags: list[str] = Field(default_factory=list)
    output_path: str | None = Field(
        default=None, validation_alias=AliasChoices("outputPath", "output_path")
    )
    components: list[ComponentRef] = Field(default_factory=list)
    path: str = Field(default="", exclude=True)
    archived: bool = Field(default=False, exclude=True)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, value: Any) -> Any:
        return value or []

    @field_validator("components", mode="before")
    @classmethod
    def _components_default(cls, value: Any) -> Any:
        return value or []

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path)

    def to_yaml_dict(self) -> dict[str, Any]:
        """Serializable form; ``order`` is rewritten to the sequence position."""
        data: dict[str, Any] = {"name": self.name}
        if self.tags:
            data["tags"] = list(self.tags)
        if self.output_path:
            data["outputPath"] = self.output_path
        data["components"] = [
            {"type": ref.type.value, "path": ref.path, "order": index}
            for index, ref in enumerate(self.components, start=1)
        ]
        return data


class TagRegistryEntry(BaseModel):
    """Row from tags.yaml."""

    name: str
    color: str
    description: str | None = None


class Section(BaseModel):
    """One entry of the section layout: which kind goes under which heading."""

    type: ComponentKind
    heading: str

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> ComponentKind:
        return ComponentKind.parse(value)


def default_sections() -> list[Section]:
    return [
        Section(type=ComponentKind.CONTEXTS, heading="## CONTEXT"),
        Section(type=ComponentKind.PROMPTS, heading="## PROMPTS"),
        Section(type=ComponentKind.RULES, heading="## IMPORTANT RULES"),
    ]


class OutputSettings(BaseModel):
    output_path: str = "PLUQQY.md"
    show_headings: bool = True
    sections: list[Section] = Field(default_factory=default_sections)

    @field_validator("sections", mode="before")
    @classmethod
    def _sections_default(cls, value: Any) -> Any:
        return value or default_sections()


class EditorSettings(BaseModel):
    command: str = ""


class UISettings(BaseModel):
    show_preview: bool = True


class ProjectSettings(BaseModel):
    """Contents of settings.yaml; missing keys fall back to defaults."""

    output: OutputSettings = Field(default_factory=OutputSettings)
    editor: EditorSettings = Field(default_factory=EditorSettings)
    ui: UISettings = Field(default_factory=UISettings)

    @property
    def sections(self) -> list[Section]:
        return self.output.sections
