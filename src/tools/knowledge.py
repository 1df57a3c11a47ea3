"""Read-only directory and knowledge handlers.  None of these need OAuth."""

from __future__ import annotations

from typing import Any

from src.models import EmployeeProfile, KnowledgeResult, ManagerRef, ToolResult
from src.tools.context import ToolContext
from src.tools.registry import (
    GetSupervisorInfoParams,
    GetTeamMembersParams,
    GetVacationPolicyParams,
    SearchKnowledgeBaseParams,
)

POLICY_QUERIES = {
    "vacation_days": "vacation days annual leave entitlement",
    "sick_leave": "sick leave sick days illness policy",
    "approval_process": "vacation approval request process supervisor",
    "public_holidays": "public holidays company holidays",
}


def _query_method(items: list[EmployeeProfile] | list[KnowledgeResult]) -> str | None:
    return items[0].source if items else None


def _result_view(result: KnowledgeResult) -> dict[str, Any]:
    return result.model_dump(include={"category", "content", "metadata", "source"})


def _manager_view(manager: EmployeeProfile | ManagerRef | None) -> dict[str, Any] | None:
    if manager is None:
        return None
    if isinstance(manager, EmployeeProfile):
        return manager.model_dump(exclude={"manager"}, exclude_none=True)
    return manager.model_dump(exclude_none=True)


def get_team_members(ctx: ToolContext, params: GetTeamMembersParams) -> ToolResult:
    employees = ctx.resolver.find_employees(
        department=params.department,
        role=params.role,
        search_name=params.search_name,
        token=ctx.token,
    )
    summary = f"Found {len(employees)} team member(s)"
    if params.department:
        summary += f" in {params.department}"
    if params.role:
        summary += f" with role {params.role}"
    return ToolResult(
        data={
            "count": len(employees),
            "employees": [e.model_dump(exclude={"manager"}, exclude_none=True) for e in employees],
            "queryMethod": _query_method(employees),
        },
        summary=summary + ".",
    )


def get_supervisor_info(ctx: ToolContext, params: GetSupervisorInfoParams) -> ToolResult:
    profile = ctx.resolver.resolve_employee(params.employee_name, ctx.token)
    if profile is None:
        return ToolResult(
            data=None,
            summary=f'Could not find employee information for "{params.employee_name}".',
        )

    supervisor = profile.manager
    data = {
        "employee": profile.model_dump(exclude={"manager"}, exclude_none=True),
        "supervisor": _manager_view(supervisor),
        "queryMethod": profile.source,
    }
    if supervisor is None:
        return ToolResult(
            data=data, summary=f"No supervisor information found for {profile.full_name}.",
        )

    name = supervisor.full_name if isinstance(supervisor, EmployeeProfile) else supervisor.name
    contact = f" ({supervisor.email})" if supervisor.email else ""
    return ToolResult(data=data, summary=f"{profile.full_name}'s supervisor is {name}{contact}.")


def get_vacation_policy(ctx: ToolContext, params: GetVacationPolicyParams) -> ToolResult:
    query = params.specific_question or POLICY_QUERIES[params.policy_type]
    documents = ctx.resolver.policy_documents(query, 5, ctx.token)
    label = params.policy_type.replace("_", " ")
    return ToolResult(
        data={
            "policyType": params.policy_type,
            "results": [_result_view(d) for d in documents],
            "queryMethod": _query_method(documents),
        },
        summary=f"Retrieved {len(documents)} policy document(s) about {label}.",
    )


def search_knowledge_base(ctx: ToolContext, params: SearchKnowledgeBaseParams) -> ToolResult:
    results = ctx.resolver.search(
        params.query, params.limit, category=params.category, token=ctx.token,
    )
    suffix = f" in {params.category}" if params.category != "all" else ""
    return ToolResult(
        data={
            "query": params.query,
            "category": params.category,
            "resultCount": len(results),
            "results": [_result_view(r) for r in results],
        },
        summary=f'Found {len(results)} result(s) for "{params.query}"{suffix}.',
    )
