"""
Skill Lookup

Skills are task-specific procedures an agent can load on demand. Built-in
skills have a fixed phase mapping; custom skills live in
.context/skills/<slug>/SKILL.md and declare their phases in frontmatter:

    ---
    name: release-notes
    description: Draft release notes from merged changes
    phases: [V, C]
    ---
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .schema import PrevcPhase
from .utils import parse_frontmatter

logger = logging.getLogger(__name__)


SKILL_TO_PHASES: dict[str, list[PrevcPhase]] = {
    "commit-message": [PrevcPhase.E, PrevcPhase.C],
    "pr-review": [PrevcPhase.R, PrevcPhase.V],
    "code-review": [PrevcPhase.R, PrevcPhase.V],
    "test-generation": [PrevcPhase.E, PrevcPhase.V],
    "documentation": [PrevcPhase.P, PrevcPhase.C],
    "refactoring": [PrevcPhase.E],
    "bug-investigation": [PrevcPhase.E, PrevcPhase.V],
    "feature-breakdown": [PrevcPhase.P],
    "api-design": [PrevcPhase.P, PrevcPhase.R],
    "security-audit": [PrevcPhase.R, PrevcPhase.V],
}

BUILT_IN_SKILLS: list[str] = list(SKILL_TO_PHASES)


@dataclass
class Skill:
    """A built-in or custom skill."""
    slug: str
    name: str
    description: str = ""
    phases: list[PrevcPhase] = field(default_factory=list)
    path: Optional[Path] = None
    is_built_in: bool = False


def _parse_phases(raw) -> list[PrevcPhase]:
    if isinstance(raw, str):
        raw = [part.strip() for part in raw.strip("[]").split(",")]
    if not isinstance(raw, list):
        return []
    phases = []
    for value in raw:
        code = str(value).strip().strip("'\"").upper()
        if code in PrevcPhase.__members__:
            phases.append(PrevcPhase(code))
    return phases


def load_skill(skill_file: Path) -> Optional[Skill]:
    """Read a SKILL.md file. Returns None when it cannot be read."""
    try:
        content = skill_file.read_text(encoding='utf-8')
    except OSError as e:
        logger.warning(f"Cannot read skill {skill_file}: {e}")
        return None
    slug = skill_file.parent.name
    metadata = parse_frontmatter(content) or {}
    phases = _parse_phases(metadata.get("phases"))
    if not phases and slug in SKILL_TO_PHASES:
        phases = list(SKILL_TO_PHASES[slug])
    return Skill(
        slug=slug,
        name=str(metadata.get("name") or slug),
        description=str(metadata.get("description") or ""),
        phases=phases,
        path=skill_file,
        is_built_in=slug in SKILL_TO_PHASES,
    )


def discover_skills(skills_dir: Path) -> list[Skill]:
    """Built-in skills, overridden or extended by skills on disk."""
    skills: dict[str, Skill] = {
        slug: Skill(slug=slug, name=slug, phases=list(phases), is_built_in=True)
        for slug, phases in SKILL_TO_PHASES.items()
    }
    if skills_dir.is_dir():
        for skill_file in sorted(skills_dir.glob("*/SKILL.md")):
            skill = load_skill(skill_file)
            if skill is not None:
                skills[skill.slug] = skill
    return list(skills.values())


def get_skills_for_phase(skills_dir: Path, phase: PrevcPhase) -> list[str]:
    """Slugs of skills relevant to a phase, built-ins first."""
    return [skill.slug for skill in discover_skills(skills_dir) if phase in skill.phases]
