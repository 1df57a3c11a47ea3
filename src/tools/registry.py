"""Capability catalog: every tool the agent may invoke.

Each capability carries the JSON-shaped parameter schema sent to the model
(this wire format is what the model integration depends on), a typed
pydantic model used to validate the model's arguments, and the approval
classification.  The catalog is read-only after construction and safe to
share across threads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from types import MappingProxyType
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from src.errors import InvalidParametersError, UnknownCapabilityError

logger = logging.getLogger(__name__)


# ── Parsing helpers ──────────────────────────────────────────────────


def parse_date(value: Any) -> Any:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp and keep the date part."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            return datetime.fromisoformat(text).date()
    return value


def parse_datetime(value: Any) -> Any:
    """Accept an ISO 8601 timestamp (``Z`` suffix allowed) or a bare date."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    return value


# ── Typed parameter models ───────────────────────────────────────────


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


IsoDate = Annotated[date, BeforeValidator(parse_date)]
IsoDateTime = Annotated[datetime, BeforeValidator(parse_datetime)]


class CheckCalendarParams(_Params):
    start_date: IsoDate
    end_date: IsoDate
    calendar_ids: list[str] = Field(default_factory=list)


class Reminder(_Params):
    method: Literal["email", "popup"]
    minutes: int = Field(ge=0)


class BookCalendarEventParams(_Params):
    title: str
    start_date: IsoDateTime
    end_date: IsoDateTime
    description: str | None = None
    attendees: list[str] = Field(default_factory=list)
    reminders: list[Reminder] | None = None
    all_day: bool | None = None


class SendEmailParams(_Params):
    # Address shape and blank subject/body are checked by the email handler
    # so a staged action can still fail individually at approval time.
    to: str
    subject: str
    body: str
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)


class GetTeamMembersParams(_Params):
    department: str | None = None
    role: str | None = None
    search_name: str | None = None


class GetSupervisorInfoParams(_Params):
    employee_name: str


PolicyType = Literal["vacation_days", "sick_leave", "approval_process", "public_holidays"]


class GetVacationPolicyParams(_Params):
    policy_type: PolicyType
    specific_question: str | None = None


class SearchKnowledgeBaseParams(_Params):
    query: str
    category: Literal["employees", "faqs", "tasks", "all"] = "all"
    limit: int = Field(default=5, ge=1, le=10)


# ── Capability definition ────────────────────────────────────────────


@dataclass(frozen=True)
class Capability:
    name: str
    description: str
    parameters: Mapping[str, Any]
    params_model: type[_Params]
    approval_required: bool
    describe: Callable[[Mapping[str, Any]], str]

    def __post_init__(self):
        object.__setattr__(self, "parameters", _freeze(self.parameters))

    def schema(self) -> dict[str, Any]:
        """The ``{name, description, parameters}`` shape sent to the model."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": _thaw(self.parameters),
        }


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value


def _short_date(value: Any) -> str:
    try:
        return parse_datetime(value).strftime("%d %b %Y")
    except (TypeError, ValueError, AttributeError):
        return str(value)


def _describe_team_members(p: Mapping[str, Any]) -> str:
    filters = []
    if p.get("department"):
        filters.append(f"department: {p['department']}")
    if p.get("role"):
        filters.append(f"role: {p['role']}")
    suffix = " (" + ", ".join(filters) + ")" if filters else ""
    return f"Get team members{suffix}"


# ── Catalog contents ─────────────────────────────────────────────────

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

CAPABILITIES: tuple[Capability, ...] = (
    Capability(
        name="check_calendar",
        description=(
            "Check Google Calendar for events in a specific date range. Use this to "
            "verify if team members have vacation or meetings scheduled. Can check "
            "multiple calendars at once."
        ),
        parameters={
            "type": "object",
            "properties": {
                "start_date": {
                    "type": "string",
                    "format": "date",
                    "description": 'Start date in YYYY-MM-DD format (e.g., "2024-12-20")',
                },
                "end_date": {
                    "type": "string",
                    "format": "date",
                    "description": 'End date in YYYY-MM-DD format (e.g., "2024-12-27")',
                },
                "calendar_ids": {
                    **_STRING_LIST,
                    "description": (
                        "Optional: List of calendar IDs to check. If not provided, "
                        "checks primary calendar."
                    ),
                },
            },
            "required": ["start_date", "end_date"],
        },
        params_model=CheckCalendarParams,
        approval_required=False,
        describe=lambda p: f"Check calendar from {p.get('start_date')} to {p.get('end_date')}",
    ),
    Capability(
        name="book_calendar_event",
        description=(
            "Create a new event on the user's Google Calendar. Use this for booking "
            "vacation, meetings, or reminders."
        ),
        parameters={
            "type": "object",
            "properties": {
                "title": {
                    "type": "string",
                    "description": 'Event title (e.g., "Vacation - Annual Leave")',
                },
                "start_date": {
                    "type": "string",
                    "format": "date-time",
                    "description": (
                        'Start date and time in ISO 8601 format (e.g., "2024-12-20T00:00:00Z")'
                    ),
                },
                "end_date": {
                    "type": "string",
                    "format": "date-time",
                    "description": (
                        'End date and time in ISO 8601 format (e.g., "2024-12-27T23:59:59Z")'
                    ),
                },
                "description": {
                    "type": "string",
                    "description": "Optional: Detailed description of the event",
                },
                "attendees": {
                    **_STRING_LIST,
                    "description": "Optional: Email addresses of attendees to invite",
                },
                "reminders": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "method": {
                                "type": "string",
                                "enum": ["email", "popup"],
                                "description": "Reminder method",
                            },
                            "minutes": {
                                "type": "integer",
                                "description": "Minutes before event to send reminder",
                            },
                        },
                    },
                    "description": "Optional: Custom reminders for the event",
                },
                "all_day": {
                    "type": "boolean",
                    "description": (
                        "Optional: Book as a whole-day event. Defaults to true for "
                        "vacation, leave, holiday and similar titles."
                    ),
                },
            },
            "required": ["title", "start_date", "end_date"],
        },
        params_model=BookCalendarEventParams,
        approval_required=True,
        describe=lambda p: (
            f'Book calendar event "{p.get("title")}" from '
            f"{_short_date(p.get('start_date'))} to {_short_date(p.get('end_date'))}"
        ),
    ),
    Capability(
        name="send_email",
        description=(
            "Send an email via Gmail. Use this to contact supervisors, team members, "
            "or HR. Always be professional and include relevant context."
        ),
        parameters={
            "type": "object",
            "properties": {
                "to": {
                    "type": "string",
                    "description": 'Recipient email address (e.g., "supervisor@company.com")',
                },
                "subject": {"type": "string", "description": "Email subject line"},
                "body": {
                    "type": "string",
                    "description": "Email body content. Can include HTML formatting.",
                },
                "cc": {**_STRING_LIST, "description": "Optional: CC recipients"},
                "bcc": {**_STRING_LIST, "description": "Optional: BCC recipients"},
            },
            "required": ["to", "subject", "body"],
        },
        params_model=SendEmailParams,
        approval_required=True,
        describe=lambda p: f'Send email to {p.get("to")} with subject "{p.get("subject")}"',
    ),
    Capability(
        name="get_team_members",
        description=(
            "Get information about team members from the company knowledge base. "
            "Can filter by department, role, or search by name."
        ),
        parameters={
            "type": "object",
            "properties": {
                "department": {
                    "type": "string",
                    "description": (
                        'Optional: Filter by department (e.g., "Engineering", "HR", "Marketing")'
                    ),
                },
                "role": {
                    "type": "string",
                    "description": (
                        'Optional: Filter by job role (e.g., "Manager", "Developer", "Designer")'
                    ),
                },
                "search_name": {
                    "type": "string",
                    "description": "Optional: Search by employee name",
                },
            },
        },
        params_model=GetTeamMembersParams,
        approval_required=False,
        describe=_describe_team_members,
    ),
    Capability(
        name="get_supervisor_info",
        description=(
            "Get the current user's supervisor information including email and "
            "contact details."
        ),
        parameters={
            "type": "object",
            "properties": {
                "employee_name": {
                    "type": "string",
                    "description": "The employee's name to look up their supervisor",
                },
            },
            "required": ["employee_name"],
        },
        params_model=GetSupervisorInfoParams,
        approval_required=False,
        describe=lambda p: f"Get supervisor information for {p.get('employee_name')}",
    ),
    Capability(
        name="get_vacation_policy",
        description=(
            "Get company vacation policy, sick leave policy, or approval process from "
            "the knowledge base."
        ),
        parameters={
            "type": "object",
            "properties": {
                "policy_type": {
                    "type": "string",
                    "enum": ["vacation_days", "sick_leave", "approval_process", "public_holidays"],
                    "description": "Type of policy information to retrieve",
                },
                "specific_question": {
                    "type": "string",
                    "description": "Optional: Specific question about the policy",
                },
            },
            "required": ["policy_type"],
        },
        params_model=GetVacationPolicyParams,
        approval_required=False,
        describe=lambda p: (
            f"Get {str(p.get('policy_type', '')).replace('_', ' ')} policy information"
        ),
    ),
    Capability(
        name="search_knowledge_base",
        description=(
            "Search the company knowledge base for any information. Use this for "
            "general queries about company policies, procedures, or information."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query text"},
                "category": {
                    "type": "string",
                    "enum": ["employees", "faqs", "tasks", "all"],
                    "description": "Optional: Limit search to specific category",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 10,
                    "description": "Optional: Number of results to return (default: 5)",
                },
            },
            "required": ["query"],
        },
        params_model=SearchKnowledgeBaseParams,
        approval_required=False,
        describe=lambda p: f'Search knowledge base for: "{p.get("query")}"',
    ),
)


# ── Catalog ──────────────────────────────────────────────────────────


class CapabilityCatalog:
    """Read-only registry of capabilities keyed by name."""

    def __init__(self, capabilities: Iterable[Capability] = CAPABILITIES):
        by_name: dict[str, Capability] = {}
        for cap in capabilities:
            if cap.name in by_name:
                raise ValueError(f"Duplicate capability: {cap.name}")
            by_name[cap.name] = cap
        self._by_name = MappingProxyType(by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._by_name)

    def get(self, name: str) -> Capability:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownCapabilityError(name) from None

    def classify(self, name: str) -> bool:
        """Return whether *name* needs human approval.

        Unknown names return ``False``; callers run :meth:`validate` first,
        which rejects them.
        """
        cap = self._by_name.get(name)
        return cap.approval_required if cap else False

    def describe(self, name: str, parameters: Mapping[str, Any]) -> str:
        """Human-readable one-liner for approval prompts and audit logs."""
        cap = self._by_name.get(name)
        if cap is None:
            return f"Execute {name}"
        return cap.describe(parameters or {})

    def validate(self, name: str, parameters: Mapping[str, Any] | None) -> _Params:
        """Validate *parameters* and return the typed parameter model.

        Raises:
            UnknownCapabilityError: *name* is not in the catalog.
            InvalidParametersError: required fields are missing or malformed.
        """
        cap = self.get(name)
        try:
            return cap.params_model.model_validate(dict(parameters or {}))
        except PydanticValidationError as exc:
            missing: list[str] = []
            invalid: list[str] = []
            for err in exc.errors():
                field = ".".join(str(part) for part in err["loc"]) or name
                bucket = missing if err["type"] == "missing" else invalid
                if field not in bucket:
                    bucket.append(field)
            logger.info("Rejected %s parameters: missing=%s invalid=%s", name, missing, invalid)
            raise InvalidParametersError(name, missing=missing, invalid=invalid) from None

    def schemas(self) -> list[dict[str, Any]]:
        return [cap.schema() for cap in self._by_name.values()]
