"""
Agent Catalogue

Maps phases and roles to the built-in agent types, picks agents for a
task description by keyword, and discovers custom agents defined as
markdown files under .context/agents/.
"""

import logging
from pathlib import Path
from typing import Optional

from .roles import ROLE_CONFIG
from .schema import PHASE_ORDER, PrevcPhase

logger = logging.getLogger(__name__)


AGENT_DESCRIPTIONS: dict[str, str] = {
    "code-reviewer": "Reviews code for quality, style, and best practices",
    "bug-fixer": "Identifies and fixes bugs with targeted solutions",
    "feature-developer": "Implements new features following architecture",
    "refactoring-specialist": "Improves code structure and eliminates code smells",
    "test-writer": "Creates comprehensive test suites",
    "documentation-writer": "Writes and maintains documentation",
    "performance-optimizer": "Identifies and resolves performance bottlenecks",
    "security-auditor": "Audits code for security vulnerabilities",
    "backend-specialist": "Develops server-side logic and APIs",
    "frontend-specialist": "Builds user interfaces and interactions",
    "architect-specialist": "Designs system architecture and patterns",
    "devops-specialist": "Manages deployment and CI/CD pipelines",
    "database-specialist": "Designs and optimizes database solutions",
    "mobile-specialist": "Develops mobile applications",
}

AGENT_TYPES: list[str] = list(AGENT_DESCRIPTIONS)

PHASE_TO_AGENTS: dict[PrevcPhase, list[str]] = {
    PrevcPhase.P: ["architect-specialist", "documentation-writer", "frontend-specialist"],
    PrevcPhase.R: ["architect-specialist", "code-reviewer", "security-auditor"],
    PrevcPhase.E: [
        "feature-developer",
        "backend-specialist",
        "frontend-specialist",
        "database-specialist",
        "mobile-specialist",
        "bug-fixer",
    ],
    PrevcPhase.V: ["test-writer", "code-reviewer", "security-auditor", "performance-optimizer"],
    PrevcPhase.C: ["documentation-writer", "devops-specialist"],
}

ROLE_TO_AGENTS: dict[str, list[str]] = {
    "planner": ["architect-specialist", "documentation-writer"],
    "designer": ["frontend-specialist"],
    "architect": ["architect-specialist", "backend-specialist", "database-specialist"],
    "developer": [
        "feature-developer",
        "bug-fixer",
        "backend-specialist",
        "frontend-specialist",
        "mobile-specialist",
        "database-specialist",
    ],
    "qa": ["test-writer", "security-auditor", "performance-optimizer"],
    "reviewer": ["code-reviewer", "security-auditor"],
    "documenter": ["documentation-writer"],
    "solo-dev": [
        "refactoring-specialist",
        "bug-fixer",
        "feature-developer",
        "test-writer",
        "documentation-writer",
    ],
}

PHASE_TO_DOCS: dict[PrevcPhase, list[str]] = {
    PrevcPhase.P: ["architecture", "glossary", "readme"],
    PrevcPhase.R: ["architecture", "security", "data-flow"],
    PrevcPhase.E: ["architecture", "api", "data-flow", "getting-started"],
    PrevcPhase.V: ["testing", "security", "api"],
    PrevcPhase.C: ["deployment", "readme", "contributing"],
}

TASK_KEYWORDS: dict[str, list[str]] = {
    # Architecture
    "architecture": ["architect-specialist"],
    "design": ["architect-specialist", "frontend-specialist"],
    "system": ["architect-specialist", "backend-specialist"],
    "scalability": ["architect-specialist", "performance-optimizer"],
    # Development
    "feature": ["feature-developer"],
    "implement": ["feature-developer", "backend-specialist"],
    "build": ["feature-developer"],
    "create": ["feature-developer"],
    # Bugs
    "bug": ["bug-fixer"],
    "fix": ["bug-fixer"],
    "error": ["bug-fixer"],
    "issue": ["bug-fixer"],
    # Testing
    "test": ["test-writer"],
    "coverage": ["test-writer"],
    "unit": ["test-writer"],
    "integration": ["test-writer"],
    # Code quality
    "review": ["code-reviewer"],
    "refactor": ["refactoring-specialist", "code-reviewer"],
    "clean": ["refactoring-specialist"],
    "optimize": ["performance-optimizer", "refactoring-specialist"],
    # Security
    "security": ["security-auditor"],
    "vulnerability": ["security-auditor"],
    "auth": ["security-auditor", "backend-specialist"],
    "permission": ["security-auditor"],
    # Performance
    "performance": ["performance-optimizer"],
    "speed": ["performance-optimizer"],
    "memory": ["performance-optimizer"],
    "cache": ["performance-optimizer", "backend-specialist"],
    # Documentation
    "document": ["documentation-writer"],
    "readme": ["documentation-writer"],
    "docs": ["documentation-writer"],
    # Backend
    "api": ["backend-specialist", "documentation-writer"],
    "server": ["backend-specialist"],
    "endpoint": ["backend-specialist"],
    "microservice": ["backend-specialist"],
    # Frontend
    "ui": ["frontend-specialist"],
    "component": ["frontend-specialist"],
    "style": ["frontend-specialist"],
    "responsive": ["frontend-specialist"],
    # Database
    "database": ["database-specialist"],
    "query": ["database-specialist"],
    "migration": ["database-specialist"],
    "schema": ["database-specialist"],
    # DevOps
    "deploy": ["devops-specialist"],
    "ci": ["devops-specialist"],
    "pipeline": ["devops-specialist"],
    "docker": ["devops-specialist"],
    # Mobile
    "mobile": ["mobile-specialist"],
    "ios": ["mobile-specialist"],
    "android": ["mobile-specialist"],
    "app": ["mobile-specialist", "frontend-specialist"],
}

DEFAULT_TASK_AGENTS = ["feature-developer", "code-reviewer"]


def _unique(items) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def is_valid_agent_type(agent: str) -> bool:
    return agent in AGENT_DESCRIPTIONS


def get_agent_description(agent: str) -> str:
    return AGENT_DESCRIPTIONS.get(agent, "Specialized development agent")


def get_agents_for_phase(phase: PrevcPhase) -> list[str]:
    return list(PHASE_TO_AGENTS.get(phase, []))


def get_agents_for_role(role: str) -> list[str]:
    return list(ROLE_TO_AGENTS.get(role, []))


def get_primary_agent_for_role(role: str) -> Optional[str]:
    agents = ROLE_TO_AGENTS.get(role, [])
    return agents[0] if agents else None


def get_docs_for_phase(phase: PrevcPhase) -> list[str]:
    return list(PHASE_TO_DOCS.get(phase, []))


def select_agents_by_task(task_description: str) -> list[str]:
    """Agents whose keywords appear in the task, in keyword table order."""
    lowered = task_description.lower()
    matched = _unique(
        agent
        for keyword, agents in TASK_KEYWORDS.items()
        if keyword in lowered
        for agent in agents
    )
    return matched or list(DEFAULT_TASK_AGENTS)


def get_task_agent_sequence(task_description: str, include_review: bool = True) -> list[str]:
    """Task agents followed by testing, review and documentation."""
    sequence = select_agents_by_task(task_description)
    tail = ["test-writer"]
    if include_review:
        tail.append("code-reviewer")
    tail.append("documentation-writer")
    return _unique(sequence + tail)


def get_agent_handoff_sequence(phases: list[PrevcPhase]) -> list[str]:
    """Ordered, de-duplicated agents across the given phases."""
    ordered = [phase for phase in PHASE_ORDER if phase in phases]
    return _unique(agent for phase in ordered for agent in PHASE_TO_AGENTS[phase])


def specialist_to_agent(specialist: str) -> Optional[str]:
    """Resolve a specialist name to an agent type."""
    if is_valid_agent_type(specialist):
        return specialist
    for role, config in ROLE_CONFIG.items():
        if specialist in config.specialists:
            return get_primary_agent_for_role(role)
    return None


def discover_custom_agents(agents_dir: Path) -> list[str]:
    """Agent names defined as <name>.md files in the agents directory.

    Built-in agent types are not repeated.
    """
    if not agents_dir.is_dir():
        return []
    custom = sorted(
        path.stem for path in agents_dir.glob("*.md")
        if path.stem.lower() != "readme" and not is_valid_agent_type(path.stem)
    )
    if custom:
        logger.debug(f"Discovered custom agents: {custom}")
    return custom
