"""Prompt templates for content expansion and feature-dev analysis."""

from __future__ import annotations

from typing import TYPE_CHECKING

from nsma.models.project import PromptMode

if TYPE_CHECKING:
    from nsma.models.item import RemoteItem
    from nsma.models.project import Project

FEATURE_DEV_HEADING = "## Feature-Dev Analysis"
_NESTED_LINE = "\n  "


def _phases_context(project: Project) -> str:
    if not project.phases:
        return "No phases defined"
    return "\n".join(
        f"- **{phase.name}**: {phase.description or 'No description'}" for phase in project.phases
    )


def _modules_context(project: Project, files_separator: str = " ") -> str:
    if not project.modules:
        return "No modules defined"
    lines: list[str] = []
    for module in project.modules:
        files = (
            ", ".join(f"`{path}`" for path in module.file_paths)
            if module.file_paths
            else "No files specified"
        )
        lines.append(
            f"- **{module.name}**: {module.description or 'No description'}"
            f"{files_separator}(Files: {files})"
        )
    return "\n".join(lines)


def project_root_of(project: Project) -> str:
    root = project.project_root
    return str(root) if root is not None else "Unknown"


def build_system_prompt(project: Project) -> str:
    """Default system prompt for expanding a brief idea, with the project's taxonomy."""
    default = f"""You are a software development assistant helping to expand brief task \
ideas into detailed, actionable development prompts.

## Project Context
**Project Name**: {project.name}
**Project Slug**: {project.slug}

### Available Phases
{_phases_context(project)}

### Available Modules
{_modules_context(project)}

## Your Task
Transform the brief idea provided into a comprehensive development prompt. Your output \
should be in markdown format and include:

1. **Objective**: A clear, expanded description of what needs to be done (2-3 sentences)
2. **Implementation Approach**: Step-by-step implementation guidance (3-5 numbered steps)
3. **Key Considerations**: Important edge cases, security concerns, or dependencies
4. **Success Criteria**: Specific, measurable criteria for completion (checkbox format)

## Guidelines
- Be specific and actionable
- Reference the module's file paths when relevant
- Consider the item type (Feature, Bug Fix, etc.) when suggesting an approach
- Keep the total output concise but comprehensive (aim for 200-400 words)
- Do NOT include any preamble, output the formatted prompt content only"""
    return apply_custom_prompt(default, project)


def apply_custom_prompt(default: str, project: Project) -> str:
    """Combine the default prompt with the project's custom prompt, if any."""
    custom = project.ai_prompt_custom.strip()
    if not custom:
        return default
    if project.ai_prompt_mode == PromptMode.REPLACE:
        return custom
    return f"{default}\n\n## Project-Specific Instructions\n{custom}"


def build_user_prompt(item: RemoteItem) -> str:
    return f"""## Task to Expand

**Title**: {item.title}
**Type**: {item.type or 'Feature'}
**Priority**: {item.priority or 'Medium'}
**Affected Module**: {item.affected_module or 'Not specified'}

**Brief Description**:
{item.description or item.title}

Please expand this into a detailed development prompt."""


def build_feature_dev_system_prompt(project: Project) -> str:
    return f"""You are a senior software architect providing implementation guidance for a \
development task.

## Project Context
- **Project**: {project.name}
- **Slug**: {project.slug}
- **Root Path**: {project_root_of(project)}

### Project Phases
{_phases_context(project)}

### Project Modules
{_modules_context(project, files_separator=_NESTED_LINE)}

## Your Task
Analyze the development task and provide implementation guidance in four sections:

### Architecture Analysis
How the task fits existing patterns, affected layers and integration points.

### Code Exploration Results
Key files and functions to read first, related conventions, relevant imports.

### Implementation Blueprint
A step-by-step plan with specific file paths, in an order that minimizes conflicts.

### Testing Strategy
Kinds of tests needed, test files to create or modify, key scenarios and edge cases.

Reference actual file paths from the module configuration. Do NOT include any preamble."""


def build_feature_dev_prompt(item: RemoteItem, base_content: str) -> str:
    return f"""## Development Task to Analyze

**Title**: {item.title}
**Type**: {item.type}
**Priority**: {item.priority or 'Medium'}
**Affected Module**: {item.affected_module or 'Not specified'}

## Base Prompt Content (Already Generated)
{base_content}

---

Provide detailed feature-dev analysis with Architecture Analysis, Code Exploration Results, \
Implementation Blueprint, and Testing Strategy sections."""


def format_feature_dev_sections(analysis: str) -> str:
    """Wrap an analysis so it can be appended to a rendered prompt file."""
    return (
        f"\n\n---\n\n{FEATURE_DEV_HEADING}\n\n{analysis.strip()}\n\n"
        "---\n*Enhanced with feature-dev analysis*\n"
    )
