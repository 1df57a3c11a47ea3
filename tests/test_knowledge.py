"""Tests for the hybrid knowledge resolver and the read-only knowledge handlers."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.errors import CancellationError
from src.models import EmployeeProfile, ManagerRef
from src.services.knowledge import DirectoryRepository, KnowledgeResolver
from src.tools import knowledge as knowledge_tools
from src.tools.registry import (
    GetSupervisorInfoParams,
    GetTeamMembersParams,
    GetVacationPolicyParams,
    SearchKnowledgeBaseParams,
)


def _broken_directory() -> MagicMock:
    directory = MagicMock(spec=DirectoryRepository)
    down = OperationalError("SELECT 1", {}, Exception("database is down"))
    for name in (
        "employee_by_id", "employee_by_email", "employees_by_name",
        "employees_by_department", "employees_by_role",
        "search_faqs", "search_tasks", "search_employees",
    ):
        getattr(directory, name).side_effect = down
    return directory


@pytest.fixture
def dana(semantic_index, embedder):
    """An employee that only exists in the semantic index."""
    semantic_index.add(
        "employees",
        "Dana Ruiz, Sales Manager, Sales (dana.ruiz@novatech.com)",
        {
            "Employee_ID": "E050", "First_Name": "Dana", "Last_Name": "Ruiz",
            "Email": "dana.ruiz@novatech.com", "Department": "Sales",
            "Role": "Sales Manager", "Manager_ID": "E002",
        },
    )
    embedder.calls.clear()


# ── Structured path ──────────────────────────────────────────────────


class TestStructuredLookups:
    def test_employee_by_id_skips_embeddings(self, resolver, embedder):
        profile = resolver.resolve_employee("E001")

        assert profile.full_name == "Sarah Johnson"
        assert profile.source == "structured"
        assert embedder.calls == []

    def test_employee_id_is_case_insensitive(self, resolver):
        assert resolver.resolve_employee("e003").full_name == "Priya Patel"

    def test_employee_by_email(self, resolver):
        profile = resolver.resolve_employee("Michael.Chen@novatech.com")
        assert profile.employee_id == "E002"

    def test_employee_by_partial_name(self, resolver, embedder):
        profile = resolver.resolve_employee("priya")
        assert profile.employee_id == "E003"
        assert embedder.calls == []

    def test_manager_resolved_from_directory(self, resolver):
        profile = resolver.resolve_employee("Sarah Johnson")
        assert isinstance(profile.manager, EmployeeProfile)
        assert profile.manager.full_name == "Michael Chen"

    def test_placeholder_manager(self, resolver, embedder):
        profile = resolver.resolve_employee("E002")

        assert isinstance(profile.manager, ManagerRef)
        assert profile.manager.name == "Engineering Manager"
        assert profile.manager.email == "engineering.manager@novatech.com"
        assert embedder.calls == []

    def test_unknown_manager_id_is_a_stub(self, resolver):
        manager = resolver.resolve_manager("E777")
        assert manager == ManagerRef(name="E777", manager_id="E777")

    def test_blank_key(self, resolver):
        assert resolver.resolve_employee("   ") is None

    def test_faq_search_skips_embeddings(self, resolver, embedder):
        results = resolver.search("How many vacation days do I get?")

        assert results[0].metadata["id"] == "F001"
        assert results[0].source == "structured"
        assert embedder.calls == []

    def test_category_restricts_tables(self, resolver):
        results = resolver.search("laptop setup", category="tasks")
        assert [r.category for r in results] == ["tasks"]
        assert results[0].metadata["id"] == "T001"

    def test_find_employees_by_department(self, resolver):
        team = resolver.find_employees(department="engineering")
        assert [e.full_name for e in team] == ["Michael Chen", "Sarah Johnson"]


# ── Semantic fallback ────────────────────────────────────────────────


class TestSemanticFallback:
    def test_search_falls_back_when_structured_is_empty(self, resolver, semantic_index, embedder):
        semantic_index.add("faqs", "Parking is available in lot B.", {"id": "F099"})
        embedder.calls.clear()

        results = resolver.search("parking")

        assert embedder.calls == ["parking"]
        assert [r.metadata["id"] for r in results] == ["F099"]
        assert results[0].source == "semantic"
        assert results[0].score == pytest.approx(1.0)

    def test_below_threshold_is_dropped(self, resolver, semantic_index):
        semantic_index.add("faqs", "Holiday parking rules for sick vacation laptops.", {"id": "F098"})
        assert resolver.search("parking") == []

    def test_employee_from_semantic_index(self, resolver, dana, embedder):
        profile = resolver.resolve_employee("sales manager")

        assert embedder.calls
        assert profile.full_name == "Dana Ruiz"
        assert profile.source == "semantic"
        assert profile.manager.full_name == "Michael Chen"

    def test_find_employees_filters_semantic_hits(self, resolver, dana):
        team = resolver.find_employees(department="Sales", role="manager")
        assert [e.employee_id for e in team] == ["E050"]
        assert resolver.find_employees(department="Support", role="manager") == []


# ── Failure handling ─────────────────────────────────────────────────


class TestResolverFailures:
    @pytest.fixture
    def broken(self, semantic_index):
        return KnowledgeResolver(_broken_directory(), semantic_index)

    def test_database_failure_falls_back_to_semantic(self, broken, semantic_index, embedder):
        semantic_index.add("faqs", "Parking is available in lot B.", {"id": "F099"})
        results = broken.search("parking")
        assert [r.source for r in results] == ["semantic"]

    def test_total_failure_returns_empty(self, broken, embedder):
        embedder.fail_with = RuntimeError("embedding service unavailable")

        assert broken.resolve_employee("E001") is None
        assert broken.search("vacation") == []
        assert broken.find_employees(department="Engineering") == []

    def test_cancellation_propagates(self, broken, embedder):
        embedder.fail_with = CancellationError()
        with pytest.raises(CancellationError):
            broken.search("vacation")


# ── Handlers ─────────────────────────────────────────────────────────


class TestKnowledgeHandlers:
    def test_supervisor_info(self, tool_context):
        result = knowledge_tools.get_supervisor_info(
            tool_context, GetSupervisorInfoParams(employee_name="Sarah"),
        )
        assert result.summary == "Sarah Johnson's supervisor is Michael Chen (michael.chen@novatech.com)."
        assert result.data["supervisor"]["employee_id"] == "E002"
        assert result.data["queryMethod"] == "structured"

    def test_supervisor_unknown_employee(self, tool_context):
        result = knowledge_tools.get_supervisor_info(
            tool_context, GetSupervisorInfoParams(employee_name="E404"),
        )
        assert result.data is None
        assert result.summary == 'Could not find employee information for "E404".'

    def test_team_members(self, tool_context):
        result = knowledge_tools.get_team_members(
            tool_context, GetTeamMembersParams(department="Engineering"),
        )
        assert result.data["count"] == 2
        assert result.summary == "Found 2 team member(s) in Engineering."

    def test_vacation_policy(self, tool_context):
        result = knowledge_tools.get_vacation_policy(
            tool_context, GetVacationPolicyParams(policy_type="vacation_days"),
        )
        assert result.data["results"][0]["metadata"]["id"] == "F001"
        assert result.summary.endswith("about vacation days.")

    def test_search_knowledge_base(self, tool_context):
        result = knowledge_tools.search_knowledge_base(
            tool_context, SearchKnowledgeBaseParams(query="reset password", category="faqs"),
        )
        assert result.data["resultCount"] == 1
        assert result.summary == 'Found 1 result(s) for "reset password" in faqs.'
