"""File-backed portfolio content store.

Layout under ``content_dir``::

    portfolio.json        about / experiences / projects / skills
    knowledge/*.md        free-form notes appended with lower priority
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from app.adapters.content.base import AbstractContentStore

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"


class AboutContent(BaseModel):
    name: str = ""
    headline: str = ""
    summary: str = ""


class ExperienceContent(BaseModel):
    id: str
    role: str = ""
    company: str = ""
    start_date: str | None = None
    end_date: str | None = None
    summary: str = ""
    highlights: list[str] = Field(default_factory=list)


class ProjectContent(BaseModel):
    id: str
    title: str
    description: str = ""
    technologies: list[str] = Field(default_factory=list)
    outcomes: list[str] = Field(default_factory=list)


class SkillCategory(BaseModel):
    name: str
    skills: list[str] = Field(default_factory=list)


class PortfolioContent(BaseModel):
    """Structured contents of ``portfolio.json``."""

    about: AboutContent | None = None
    experiences: list[ExperienceContent] = Field(default_factory=list)
    projects: list[ProjectContent] = Field(default_factory=list)
    skills: list[SkillCategory] = Field(default_factory=list)


@dataclass(frozen=True)
class ContextSection:
    """One block of prompt context; higher priority sorts first."""

    type: str
    title: str
    content: str
    priority: float


def _year(value: str | None, fallback: str) -> str:
    return value[:4] if value else fallback


def _format_about(about: AboutContent) -> str:
    lines = ["## About"]
    if about.name:
        lines.append(f"Name: {about.name}")
    if about.headline:
        lines.append(f"Headline: {about.headline}")
    if about.summary:
        lines.append(about.summary)
    return "\n".join(lines)


def _format_experience(exp: ExperienceContent) -> str:
    period = f"{_year(exp.start_date, '')} - {_year(exp.end_date, 'Present')}"
    lines = [f"## Experience: {exp.role} at {exp.company} ({period})"]
    if exp.summary:
        lines.append(exp.summary)
    lines.extend(f"- {item}" for item in exp.highlights)
    return "\n".join(lines)


def _format_project(project: ProjectContent) -> str:
    lines = [f"## Project: {project.title}"]
    if project.description:
        lines.append(project.description)
    if project.technologies:
        lines.append(f"Technologies: {', '.join(project.technologies)}")
    lines.extend(f"- Outcome: {item}" for item in project.outcomes)
    return "\n".join(lines)


def _format_skills(skills: list[SkillCategory]) -> str:
    lines = ["## Skills"]
    lines.extend(f"{category.name}: {', '.join(category.skills)}" for category in skills)
    return "\n".join(lines)


def compile_context_sections(
    portfolio: PortfolioContent,
    raw_notes: list[tuple[str, str]],
) -> list[ContextSection]:
    """Turn portfolio content into context sections sorted by priority.

    Args:
        portfolio: Parsed portfolio.json content.
        raw_notes: ``(title, text)`` pairs from knowledge notes.

    Returns:
        Sections, highest priority first.
    """
    sections: list[ContextSection] = []

    if portfolio.about is not None:
        sections.append(ContextSection("about", "About", _format_about(portfolio.about), 10))

    for index, exp in enumerate(portfolio.experiences):
        sections.append(
            ContextSection("experience", exp.role, _format_experience(exp), 9 - index * 0.1)
        )

    for index, project in enumerate(portfolio.projects):
        sections.append(
            ContextSection("project", project.title, _format_project(project), 7 - index * 0.1)
        )

    if portfolio.skills:
        sections.append(ContextSection("skill", "Skills", _format_skills(portfolio.skills), 6))

    for index, (title, text) in enumerate(raw_notes):
        sections.append(ContextSection("raw", title, text.strip(), 5 - index * 0.1))

    # sorted() is stable, so equal priorities keep declaration order
    return sorted(sections, key=lambda section: section.priority, reverse=True)


class FileContentStore(AbstractContentStore):
    """Loads portfolio facts from a content directory on every call."""

    def __init__(self, content_dir: str | Path) -> None:
        self.content_dir = Path(content_dir)

    def _read_portfolio(self) -> PortfolioContent:
        path = self.content_dir / "portfolio.json"
        if not path.is_file():
            return PortfolioContent()
        try:
            return PortfolioContent.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "content.portfolio_invalid",
                extra={"path": str(path), "error_type": type(exc).__name__},
            )
            return PortfolioContent()

    def _read_notes(self) -> list[tuple[str, str]]:
        notes_dir = self.content_dir / "knowledge"
        if not notes_dir.is_dir():
            return []
        return [
            (path.stem, path.read_text(encoding="utf-8"))
            for path in sorted(notes_dir.glob("*.md"))
        ]

    def _load_sync(self) -> str:
        sections = compile_context_sections(self._read_portfolio(), self._read_notes())
        logger.debug(
            "content.loaded",
            extra={"section_count": len(sections), "content_dir": str(self.content_dir)},
        )
        return SECTION_SEPARATOR.join(section.content for section in sections)

    async def load_context(self) -> str:
        return await asyncio.to_thread(self._load_sync)
