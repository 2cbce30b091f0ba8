"""
PREVC Roles

Roles describe responsibilities inside a phase. Each role maps to one or
more concrete agent types that can fill it.
"""

from dataclasses import dataclass, field
from typing import Optional

from .schema import PrevcPhase


PREVC_ROLES: list[str] = [
    "planner",     # P
    "designer",    # P, R
    "architect",   # R
    "developer",   # E
    "qa",          # V
    "reviewer",    # V
    "documenter",  # C
    "solo-dev",    # P through C
]


@dataclass(frozen=True)
class RoleDefinition:
    """Responsibilities and expected outputs of a role."""
    phases: list[PrevcPhase]
    display_name: str
    responsibilities: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    specialists: list[str] = field(default_factory=list)


ROLE_CONFIG: dict[str, RoleDefinition] = {
    "planner": RoleDefinition(
        phases=[PrevcPhase.P],
        display_name="Planner",
        responsibilities=[
            "Conduct discovery and requirements gathering",
            "Create specifications and project scope",
            "Define acceptance criteria",
            "Generate PRD or Tech Spec",
            "Identify risks and dependencies",
        ],
        outputs=["prd", "tech-spec", "requirements"],
    ),
    "designer": RoleDefinition(
        phases=[PrevcPhase.P, PrevcPhase.R],
        display_name="Designer",
        responsibilities=[
            "Create wireframes and prototypes",
            "Define design system and components",
            "Ensure accessibility and usability",
            "Document UI/UX patterns",
            "Validate user flows",
        ],
        outputs=["wireframes", "design-spec", "ui-components"],
        specialists=["frontend-specialist"],
    ),
    "architect": RoleDefinition(
        phases=[PrevcPhase.R],
        display_name="Architect",
        responsibilities=[
            "Define system architecture",
            "Create ADRs (Architecture Decision Records)",
            "Choose technologies and patterns",
            "Ensure scalability and maintainability",
            "Review technical impact of decisions",
        ],
        outputs=["architecture", "adr", "tech-decisions"],
        specialists=["architect-specialist"],
    ),
    "developer": RoleDefinition(
        phases=[PrevcPhase.E],
        display_name="Developer",
        responsibilities=[
            "Implement code according to specifications",
            "Follow defined patterns and architecture",
            "Create basic unit tests",
            "Document code when necessary",
            "Solve technical problems",
        ],
        outputs=["code", "unit-tests"],
        specialists=[
            "feature-developer",
            "bug-fixer",
            "backend-specialist",
            "frontend-specialist",
            "mobile-specialist",
            "database-specialist",
            "devops-specialist",
        ],
    ),
    "qa": RoleDefinition(
        phases=[PrevcPhase.V],
        display_name="QA Engineer",
        responsibilities=[
            "Create and execute integration tests",
            "Validate security and performance",
            "Ensure quality gates",
            "Report and track bugs",
            "Validate acceptance criteria",
        ],
        outputs=["test-report", "qa-approval", "bug-report"],
        specialists=["test-writer", "security-auditor", "performance-optimizer"],
    ),
    "reviewer": RoleDefinition(
        phases=[PrevcPhase.V],
        display_name="Reviewer",
        responsibilities=[
            "Review code and architecture",
            "Ensure compliance with standards",
            "Suggest improvements and optimizations",
            "Validate best practices",
            "Approve or request changes",
        ],
        outputs=["review-comments", "approval"],
        specialists=["code-reviewer"],
    ),
    "documenter": RoleDefinition(
        phases=[PrevcPhase.C],
        display_name="Documenter",
        responsibilities=[
            "Create technical documentation",
            "Update README and APIs",
            "Prepare handoff to production",
            "Generate changelog and release notes",
            "Document important decisions",
        ],
        outputs=["documentation", "changelog", "readme"],
        specialists=["documentation-writer"],
    ),
    "solo-dev": RoleDefinition(
        phases=[PrevcPhase.P, PrevcPhase.R, PrevcPhase.E, PrevcPhase.V, PrevcPhase.C],
        display_name="Solo Dev",
        responsibilities=[
            "Execute complete flow for small tasks",
            "Bug fixes and quick refactorings",
            "Low complexity features",
            "Maintenance of existing code",
            "Adjustments and specific tweaks",
        ],
        outputs=["code", "tests", "docs"],
        specialists=["refactoring-specialist", "bug-fixer"],
    ),
}


def is_valid_role(role: str) -> bool:
    return role in ROLE_CONFIG


def get_role_config(role: str) -> Optional[RoleDefinition]:
    return ROLE_CONFIG.get(role)


def get_roles_for_phase(phase: PrevcPhase) -> list[str]:
    """Roles participating in a phase, solo-dev excluded."""
    return [
        role for role, config in ROLE_CONFIG.items()
        if phase in config.phases and role != "solo-dev"
    ]


def get_role_display_name(role: str) -> str:
    config = ROLE_CONFIG.get(role)
    return config.display_name if config else role


def get_specialists_for_role(role: str) -> list[str]:
    config = ROLE_CONFIG.get(role)
    return list(config.specialists) if config else []


def get_role_for_specialist(specialist: str) -> Optional[str]:
    """First role (in catalogue order) listing the agent as a specialist."""
    for role, config in ROLE_CONFIG.items():
        if specialist in config.specialists:
            return role
    return None
