"""
Tests for the static phase, role, agent and skill catalogues.
"""

import pytest

from prevc.agents import (
    discover_custom_agents,
    get_agent_handoff_sequence,
    get_task_agent_sequence,
    select_agents_by_task,
    specialist_to_agent,
)
from prevc.errors import InvalidPhaseError
from prevc.phases import (
    get_next_phase,
    get_phase_name,
    get_previous_phase,
    is_phase_optional,
    is_valid_phase,
    parse_phase,
)
from prevc.roles import get_role_for_specialist, get_roles_for_phase, is_valid_role
from prevc.schema import PrevcPhase
from prevc.skills import discover_skills, get_skills_for_phase, load_skill


class TestPhases:

    def test_parse_phase(self):
        assert parse_phase("r") == PrevcPhase.R
        assert parse_phase(PrevcPhase.C) == PrevcPhase.C
        with pytest.raises(InvalidPhaseError):
            parse_phase("X")
        assert not is_valid_phase("planning")

    def test_order(self):
        assert get_next_phase(PrevcPhase.P) == PrevcPhase.R
        assert get_next_phase(PrevcPhase.C) is None
        assert get_previous_phase(PrevcPhase.P) is None
        assert get_phase_name("V") == "Validation"

    def test_optional_phases(self):
        assert [p for p in PrevcPhase if is_phase_optional(p)] == [PrevcPhase.R, PrevcPhase.C]


class TestRoles:

    def test_roles_for_phase(self):
        assert "architect" in get_roles_for_phase(PrevcPhase.R)
        assert is_valid_role("solo-dev")
        assert not is_valid_role("manager")

    def test_specialist_lookup(self):
        assert get_role_for_specialist("frontend-specialist") == "designer"
        assert specialist_to_agent("code-reviewer") == "code-reviewer"
        assert specialist_to_agent("unknown-specialist") is None


class TestAgents:

    def test_task_keywords(self):
        assert select_agents_by_task("Fix the flaky bug")[0] == "bug-fixer"
        assert select_agents_by_task("Something vague") == ["feature-developer", "code-reviewer"]

    def test_task_sequence_ends_with_docs(self):
        sequence = get_task_agent_sequence("Implement the feature", include_review=False)
        assert sequence[-1] == "documentation-writer"
        assert "code-reviewer" not in sequence

    def test_handoff_sequence_is_unique(self):
        sequence = get_agent_handoff_sequence([PrevcPhase.V, PrevcPhase.R])
        assert sequence[0] == "architect-specialist"
        assert len(sequence) == len(set(sequence))

    def test_custom_agents_missing_dir(self, tmp_path):
        assert discover_custom_agents(tmp_path / "agents") == []


class TestSkills:

    def test_built_in_skills_for_phase(self, tmp_path):
        skills = get_skills_for_phase(tmp_path / "skills", PrevcPhase.P)
        assert skills == ["documentation", "feature-breakdown", "api-design"]

    def test_custom_skill_overrides_built_in(self, tmp_path):
        skill_dir = tmp_path / "skills" / "refactoring"
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text("---\ndescription: Safe refactors\nphases: [E, V]\n---\n")

        skill = load_skill(skill_dir / "SKILL.md")
        assert skill.is_built_in is True
        assert skill.phases == [PrevcPhase.E, PrevcPhase.V]
        assert skill.description == "Safe refactors"
        slugs = [s.slug for s in discover_skills(tmp_path / "skills")]
        assert slugs.count("refactoring") == 1

    def test_skill_without_frontmatter_phases(self, tmp_path):
        skill_dir = tmp_path / "skills" / "notes"
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text("# Notes\n")
        assert load_skill(skill_dir / "SKILL.md").phases == []
