"""Bundled example components and pipelines, installable by category."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from pluqqy.core.registry import TagRegistry
from pluqqy.db.models import ComponentKind, ComponentRef, Pipeline
from pluqqy.db.store import ProjectStore
from pluqqy.errors import ValidationError

logger = structlog.get_logger()

CATEGORIES = ("general", "web", "ai", "claude")
ALL = "all"


@dataclass(frozen=True)
class ExampleComponent:
    name: str
    filename: str
    kind: ComponentKind
    tags: tuple[str, ...]
    content: str

    @property
    def path(self) -> str:
        return ProjectStore.component_path(self.kind, self.filename[:-3])


@dataclass(frozen=True)
class ExamplePipeline:
    name: str
    filename: str
    description: str
    tags: tuple[str, ...]
    components: tuple[str, ...]

    @property
    def path(self) -> str:
        return ProjectStore.pipeline_path(self.filename[:-5])

    def refs(self) -> list[ComponentRef]:
        refs = []
        for order, path in enumerate(self.components, start=1):
            kind = ComponentKind.parse(path.split("/")[2])
            refs.append(ComponentRef(type=kind, path=path, order=order))
        return refs


@dataclass(frozen=True)
class ExampleSet:
    category: str
    name: str
    description: str
    components: tuple[ExampleComponent, ...]
    pipelines: tuple[ExamplePipeline, ...]


@dataclass
class InstallResult:
    installed_components: list[str] = field(default_factory=list)
    installed_pipelines: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def message(self) -> str:
        text = (
            f"✓ Installed {len(self.installed_components)} components and "
            f"{len(self.installed_pipelines)} pipelines"
        )
        if self.skipped:
            text += f" ({len(self.skipped)} existing files skipped; use --force to overwrite)"
        return text


CONTEXT = ComponentKind.CONTEXTS
PROMPT = ComponentKind.PROMPTS
RULES = ComponentKind.RULES

EXAMPLE_SETS: tuple[ExampleSet, ...] = (
    ExampleSet(
        category="general",
        name="General Development",
        description="Common development patterns for any project",
        components=(
            ExampleComponent(
                "Project Overview",
                "example-project-overview.md",
                CONTEXT,
                ("example", "context", "project"),
                "# Project: {{PROJECT_NAME}}\n\n"
                "## Purpose\n{{PROJECT_DESCRIPTION}}\n\n"
                "## Tech Stack\n"
                "- **Language**: {{PRIMARY_LANGUAGE}}\n"
                "- **Framework**: {{FRAMEWORK}}\n"
                "- **Testing**: {{TEST_FRAMEWORK}}\n\n"
                "## Important Conventions\n- {{CONVENTION_1}}\n- {{CONVENTION_2}}\n",
            ),
            ExampleComponent(
                "Code Architecture",
                "example-code-architecture.md",
                CONTEXT,
                ("example", "context", "architecture"),
                "# Code Architecture\n\n"
                "## Layers\n"
                "- **Presentation**: {{UI_LAYER}}\n"
                "- **Domain**: {{DOMAIN_LAYER}}\n"
                "- **Data access**: {{DATA_LAYER}}\n\n"
                "## Boundaries\nDescribe which modules may import which, and where side effects live.\n",
            ),
            ExampleComponent(
                "Implement Feature",
                "example-implement-feature.md",
                PROMPT,
                ("example", "prompt", "feature"),
                "# Implement Feature\n\n"
                "Implement the following feature: {{FEATURE_DESCRIPTION}}\n\n"
                "1. Restate the requirements and list open questions.\n"
                "2. Outline the changes file by file before writing code.\n"
                "3. Implement with tests for the main path and the edge cases.\n",
            ),
            ExampleComponent(
                "Fix Bug",
                "example-fix-bug.md",
                PROMPT,
                ("example", "prompt", "bug", "fix"),
                "# Fix Bug\n\n"
                "Bug report: {{BUG_DESCRIPTION}}\n\n"
                "Reproduce it with a failing test first, find the root cause, "
                "then make the smallest change that fixes it.\n",
            ),
            ExampleComponent(
                "Coding Standards",
                "example-coding-standards.md",
                RULES,
                ("example", "rules", "standards"),
                "# Coding Standards\n\n"
                "- Follow the existing style of the file you are editing.\n"
                "- Prefer clear names over comments.\n"
                "- Keep functions small and focused.\n",
            ),
            ExampleComponent(
                "Security First",
                "example-security-first.md",
                RULES,
                ("example", "rules", "security"),
                "# Security First\n\n"
                "- Validate all external input.\n"
                "- Never log secrets or credentials.\n"
                "- Use parameterized queries and never build shell commands from user input.\n",
            ),
            ExampleComponent(
                "Test Driven Development",
                "example-test-driven.md",
                RULES,
                ("example", "rules", "testing", "tdd"),
                "# Test Driven Development\n\n"
                "Write a failing test, make it pass, then refactor. "
                "Every bug fix starts with a test that reproduces it.\n",
            ),
        ),
        pipelines=(
            ExamplePipeline(
                "Feature Development",
                "example-feature-development.yaml",
                "Complete pipeline for developing new features",
                ("example", "feature", "development"),
                (
                    "../components/rules/example-coding-standards.md",
                    "../components/rules/example-test-driven.md",
                    "../components/contexts/example-project-overview.md",
                    "../components/contexts/example-code-architecture.md",
                    "../components/prompts/example-implement-feature.md",
                ),
            ),
            ExamplePipeline(
                "Bug Fixing",
                "example-bug-fixing.yaml",
                "Pipeline for debugging and fixing issues",
                ("example", "bug", "fix", "debug"),
                (
                    "../components/rules/example-security-first.md",
                    "../components/contexts/example-code-architecture.md",
                    "../components/prompts/example-fix-bug.md",
                ),
            ),
        ),
    ),
    ExampleSet(
        category="web",
        name="Web Development",
        description="Frontend and backend patterns for web applications",
        components=(
            ExampleComponent(
                "React Architecture",
                "example-react-architecture.md",
                CONTEXT,
                ("example", "web", "react", "frontend"),
                "# React Architecture\n\n"
                "- Components live in `src/components/`, one per file.\n"
                "- State management: {{STATE_LIBRARY}}\n"
                "- Styling: {{STYLING_APPROACH}}\n",
            ),
            ExampleComponent(
                "REST API Design",
                "example-rest-api-design.md",
                CONTEXT,
                ("example", "web", "api", "backend"),
                "# REST API Design\n\n"
                "- Resources are plural nouns: `/users`, `/orders/{id}`.\n"
                "- Errors return JSON with `code` and `message`.\n"
                "- Base URL: {{API_BASE_URL}}\n",
            ),
            ExampleComponent(
                "Create React Component",
                "example-create-react-component.md",
                PROMPT,
                ("example", "web", "react", "component"),
                "# Create React Component\n\n"
                "Create a component named {{COMPONENT_NAME}} that {{COMPONENT_PURPOSE}}. "
                "Include props types, a story or usage example, and tests.\n",
            ),
            ExampleComponent(
                "Add API Endpoint",
                "example-add-api-endpoint.md",
                PROMPT,
                ("example", "web", "api", "endpoint"),
                "# Add API Endpoint\n\n"
                "Add `{{HTTP_METHOD}} {{ENDPOINT_PATH}}` that {{ENDPOINT_PURPOSE}}. "
                "Validate the request body, document the response, and add integration tests.\n",
            ),
            ExampleComponent(
                "Web Accessibility",
                "example-web-accessibility.md",
                RULES,
                ("example", "web", "accessibility", "a11y"),
                "# Web Accessibility\n\n"
                "- Every interactive element is reachable by keyboard.\n"
                "- Images have alt text; form fields have labels.\n"
                "- Color is never the only signal.\n",
            ),
        ),
        pipelines=(
            ExamplePipeline(
                "Frontend Feature",
                "example-frontend-feature.yaml",
                "Build accessible frontend features",
                ("example", "web", "frontend"),
                (
                    "../components/rules/example-web-accessibility.md",
                    "../components/contexts/example-react-architecture.md",
                    "../components/prompts/example-create-react-component.md",
                ),
            ),
            ExamplePipeline(
                "Backend API",
                "example-backend-api.yaml",
                "Add endpoints that follow the API conventions",
                ("example", "web", "backend"),
                (
                    "../components/contexts/example-rest-api-design.md",
                    "../components/prompts/example-add-api-endpoint.md",
                ),
            ),
        ),
    ),
    ExampleSet(
        category="ai",
        name="AI Assistant Optimization",
        description="Optimize AI coding assistants for better results",
        components=(
            ExampleComponent(
                "Codebase Overview",
                "example-codebase-overview.md",
                CONTEXT,
                ("example", "ai", "context", "codebase"),
                "# Codebase Overview\n\n"
                "## Entry points\n- {{MAIN_ENTRY_POINT}}\n\n"
                "## Where things live\n- {{DIRECTORY_1}}: {{PURPOSE_1}}\n- {{DIRECTORY_2}}: {{PURPOSE_2}}\n",
            ),
            ExampleComponent(
                "Explain Code",
                "example-explain-code.md",
                PROMPT,
                ("example", "ai", "explain", "documentation"),
                "# Explain Code\n\n"
                "Explain what {{CODE_LOCATION}} does: its inputs, outputs and side effects, "
                "then anything surprising.\n",
            ),
            ExampleComponent(
                "Concise AI Responses",
                "example-concise-responses.md",
                RULES,
                ("example", "ai", "rules", "concise"),
                "# Concise Responses\n\n"
                "- Answer first, explain after.\n"
                "- Show only the code that changes.\n"
                "- Skip restating the question.\n",
            ),
        ),
        pipelines=(
            ExamplePipeline(
                "AI Assistant Setup",
                "example-ai-assistant-setup.yaml",
                "Optimize AI assistants for your codebase",
                ("example", "ai", "setup"),
                (
                    "../components/rules/example-concise-responses.md",
                    "../components/contexts/example-codebase-overview.md",
                ),
            ),
            ExamplePipeline(
                "Code Explanation",
                "example-code-explanation.yaml",
                "Get clear explanations of complex code",
                ("example", "ai", "explain"),
                (
                    "../components/rules/example-concise-responses.md",
                    "../components/contexts/example-codebase-overview.md",
                    "../components/prompts/example-explain-code.md",
                ),
            ),
        ),
    ),
    ExampleSet(
        category="claude",
        name="CLAUDE.md Distiller",
        description="Convert existing CLAUDE.md files into Pluqqy components",
        components=(
            ExampleComponent(
                "CLAUDE File Parser",
                "example-claude-parser.md",
                CONTEXT,
                ("example", "claude", "migration", "parser"),
                "# CLAUDE.md Structure\n\n"
                "A CLAUDE.md file usually mixes project context, standing rules and "
                "task instructions. Sort each section into one of those three kinds.\n",
            ),
            ExampleComponent(
                "Extract to Pluqqy",
                "example-extract-to-pluqqy.md",
                PROMPT,
                ("example", "claude", "migration", "extract"),
                "# Extract to Pluqqy\n\n"
                "Read {{CLAUDE_FILE_PATH}} and produce one markdown file per context, "
                "prompt and rule, each with a name and tags in its front-matter.\n",
            ),
            ExampleComponent(
                "Preserve Intent",
                "example-preserve-intent.md",
                RULES,
                ("example", "claude", "migration", "rules"),
                "# Preserve Intent\n\n"
                "- Keep the original wording of every rule.\n"
                "- Do not merge instructions that say different things.\n",
            ),
        ),
        pipelines=(
            ExamplePipeline(
                "CLAUDE Distiller",
                "example-claude-distiller.yaml",
                "Extract Pluqqy components from existing CLAUDE.md files",
                ("example", "claude", "migration", "distill"),
                (
                    "../components/rules/example-preserve-intent.md",
                    "../components/contexts/example-claude-parser.md",
                    "../components/prompts/example-extract-to-pluqqy.md",
                ),
            ),
        ),
    ),
)


def example_sets(category: str = ALL) -> list[ExampleSet]:
    """Example sets for ``category``; ``all`` returns every set."""
    category = category.strip().lower()
    if category == ALL:
        return list(EXAMPLE_SETS)
    if category not in CATEGORIES:
        raise ValidationError(f"invalid category '{category}' (choose from {', '.join((*CATEGORIES, ALL))})")
    return [s for s in EXAMPLE_SETS if s.category == category]


def install_examples(
    store: ProjectStore, registry: TagRegistry, category: str = "general", force: bool = False
) -> InstallResult:
    """Write a category's examples into the live tree.

    Existing files are skipped unless ``force`` is set.
    """
    result = InstallResult()
    tags: dict[str, None] = {}
    for example_set in example_sets(category):
        for component in example_set.components:
            if store.component_exists(component.path) and not force:
                result.skipped.append(component.path)
                continue
            store.write_component(component.path, component.content, list(component.tags), name=component.name)
            result.installed_components.append(component.path)
            tags.update(dict.fromkeys(component.tags))
        for example in example_set.pipelines:
            if store.abspath(example.path).exists() and not force:
                result.skipped.append(example.path)
                continue
            store.write_pipeline(
                Pipeline(name=example.name, tags=list(example.tags), components=example.refs(), path=example.path)
            )
            result.installed_pipelines.append(example.path)
            tags.update(dict.fromkeys(example.tags))
    registry.ensure_tags(list(tags))
    logger.info(
        "examples.installed",
        category=category,
        components=len(result.installed_components),
        pipelines=len(result.installed_pipelines),
        skipped=len(result.skipped),
    )
    return result
