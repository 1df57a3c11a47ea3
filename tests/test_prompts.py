"""Tests for system prompt rendering."""

from __future__ import annotations

from datetime import UTC, datetime

from src.models import EmployeeProfile, ManagerRef
from src.prompts import get_system_prompt

NOW = datetime(2025, 12, 5, 9, 30, tzinfo=UTC)


def _profile(manager=None) -> EmployeeProfile:
    return EmployeeProfile(
        full_name="Sarah Johnson", role="Software Engineer", department="Engineering",
        source="structured", manager=manager,
    )


class TestSystemPrompt:
    def test_current_date(self):
        prompt = get_system_prompt(now=NOW)
        assert "Today is **05 December 2025** (Friday)" in prompt
        assert "**09:30 UTC**" in prompt

    def test_no_profile_has_no_user_section(self):
        assert "About the User" not in get_system_prompt(now=NOW)

    def test_profile_with_directory_manager(self):
        manager = _profile().model_copy(
            update={"full_name": "Michael Chen", "email": "michael.chen@novatech.com"},
        )
        prompt = get_system_prompt(_profile(manager), now=NOW)
        assert "You are talking to **Sarah Johnson**, Software Engineer in Engineering." in prompt
        assert "Their supervisor is **Michael Chen** (michael.chen@novatech.com)." in prompt
        assert '"your supervisor" means Michael Chen' in prompt

    def test_placeholder_manager(self):
        prompt = get_system_prompt(
            _profile(ManagerRef(name="Engineering Manager", email="engineering.manager@novatech.com")),
            now=NOW,
        )
        assert "Their supervisor is **Engineering Manager**" in prompt

    def test_profile_without_manager(self):
        prompt = get_system_prompt(_profile(), now=NOW)
        assert "Their supervisor" not in prompt
        assert '"your supervisor" means their manager' in prompt

    def test_date_guidance(self):
        prompt = get_system_prompt(now=NOW)
        assert "DD-MM-YYYY" in prompt
        assert "last day off" in prompt
