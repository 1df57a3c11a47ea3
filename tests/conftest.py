"""Shared test fixtures for the Nova agent test suite."""

from __future__ import annotations

import os
import re
from datetime import timedelta

import httpx
import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("DATABASE_URL", "sqlite://")


USER_ID = "user-1"

EMPLOYEES = [
    {
        "id": "E001", "first_name": "Sarah", "last_name": "Johnson", "full_name": "Sarah Johnson",
        "email": "sarah.johnson@novatech.com", "department": "Engineering",
        "role": "Software Engineer", "manager_id": "E002",
    },
    {
        "id": "E002", "first_name": "Michael", "last_name": "Chen", "full_name": "Michael Chen",
        "email": "michael.chen@novatech.com", "department": "Engineering",
        "role": "Engineering Manager", "manager_id": "M002",
    },
    {
        "id": "E003", "first_name": "Priya", "last_name": "Patel", "full_name": "Priya Patel",
        "email": "priya.patel@novatech.com", "department": "HR",
        "role": "HR Specialist", "manager_id": "M003",
    },
]

FAQS = [
    {
        "id": "F001", "question": "How many vacation days do I get?",
        "answer": "Full-time employees receive 25 vacation days per year.", "category": "Time Off",
    },
    {
        "id": "F002", "question": "How do I report sick leave?",
        "answer": "Notify your supervisor before 9am and log it in the HR portal.",
        "category": "Time Off",
    },
    {
        "id": "F003", "question": "How do I reset my password?",
        "answer": "Use the self-service portal or contact the IT helpdesk.", "category": "IT",
    },
]

TASKS = [
    {
        "id": "T001", "category": "IT Setup", "task_name": "Set up laptop",
        "description": "Collect your laptop from IT and install the standard tools.",
        "department": "Engineering", "owner": "IT", "priority": "High", "deadline": "Day 1",
    },
]


class FakeEmbedder:
    """Deterministic bag-of-words embedder over a tiny vocabulary."""

    VOCABULARY = (
        "vacation", "sick", "holiday", "laptop", "engineering", "manager", "password", "parking",
    )

    def __init__(self):
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    @property
    def dimensions(self) -> int:
        return len(self.VOCABULARY)

    def embed(self, text, *, token=None, use_cache=True):
        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        words = re.findall(r"[a-z]+", text.lower())
        return [float(sum(1 for w in words if w.startswith(v))) for v in self.VOCABULARY]


@pytest.fixture
def engine():
    from src.services.database import create_db_engine, init_db

    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seeded_engine(engine):
    """Engine with a small employee directory, FAQs and onboarding tasks."""
    from src.services.database import Employee, Faq, OnboardingTask, new_session

    with new_session(engine) as session:
        session.add_all([Employee(**row) for row in EMPLOYEES])
        session.add_all([Faq(**row) for row in FAQS])
        session.add_all([OnboardingTask(**row) for row in TASKS])
        session.commit()
    return engine


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def semantic_index(seeded_engine, embedder):
    from src.services.knowledge import SemanticIndex

    return SemanticIndex(seeded_engine, embedder, threshold=0.5)


@pytest.fixture
def resolver(seeded_engine, semantic_index):
    from src.services.knowledge import DirectoryRepository, KnowledgeResolver

    return KnowledgeResolver(DirectoryRepository(seeded_engine), semantic_index)


@pytest.fixture
def catalog():
    from src.tools.registry import CapabilityCatalog

    return CapabilityCatalog()


@pytest.fixture
def metrics():
    from src.services.metrics import MetricsClient

    return MetricsClient(enabled=False)


@pytest.fixture
def store(seeded_engine, catalog, metrics):
    from src.services.action_store import PendingActionStore

    return PendingActionStore(seeded_engine, catalog, metrics=metrics)


@pytest.fixture
def google_api():
    """Programmable fake of the Calendar + Gmail REST API.

    ``google_api.routes[(method, path)]`` maps to a callable taking the
    ``httpx.Request`` and returning an ``httpx.Response``; every request is
    appended to ``google_api.requests``.
    """

    class FakeGoogleAPI:
        def __init__(self):
            self.requests: list[httpx.Request] = []
            self.routes = {
                ("GET", "/calendar/v3/calendars/primary/events"):
                    lambda req: httpx.Response(200, json={"items": []}),
                ("POST", "/calendar/v3/calendars/primary/events"):
                    lambda req: httpx.Response(
                        200,
                        json={"id": "evt-1", "htmlLink": "https://calendar.google.com/event?eid=evt-1"},
                    ),
                ("POST", "/gmail/v1/users/me/messages/send"):
                    lambda req: httpx.Response(200, json={"id": "msg-1", "threadId": "thr-1"}),
            }

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            route = self.routes.get((request.method, request.url.path))
            if route is None:
                return httpx.Response(404, json={"error": {"message": "Not Found"}})
            return route(request)

        def requests_to(self, method: str, path: str) -> list[httpx.Request]:
            return [r for r in self.requests if r.method == method and r.url.path == path]

    return FakeGoogleAPI()


@pytest.fixture
def google_client(google_api):
    from src.services.google_client import GoogleClient

    http = httpx.Client(
        base_url="https://www.googleapis.com", transport=httpx.MockTransport(google_api.handler),
    )
    client = GoogleClient(http_client=http)
    yield client
    client.close()


@pytest.fixture
def credential_store(seeded_engine):
    from src.services.oauth import CredentialStore

    return CredentialStore(seeded_engine)


@pytest.fixture
def connected_user(credential_store):
    """``USER_ID`` with a Google token that is valid for another hour."""
    from src.services.database import utc_now

    return credential_store.save(
        USER_ID,
        access_token="valid-access-token",
        refresh_token="refresh-token-1",
        token_expiry=utc_now() + timedelta(hours=1),
    )


@pytest.fixture
def credentials(credential_store):
    from src.services.oauth import GoogleCredentials

    def refuse(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    return GoogleCredentials(
        credential_store,
        http_client=httpx.Client(transport=httpx.MockTransport(refuse)),
        client_id="client-id",
        client_secret="client-secret",
    )


@pytest.fixture
def executor(catalog, resolver, google_client, credentials, metrics):
    from src.tools.executor import ToolExecutor

    return ToolExecutor(
        USER_ID,
        catalog=catalog,
        resolver=resolver,
        google=google_client,
        credentials=credentials,
        metrics=metrics,
    )


@pytest.fixture
def tool_context(resolver, google_client, credentials):
    from src.cancellation import CancellationToken
    from src.tools.context import ToolContext

    return ToolContext(
        user_id=USER_ID,
        token=CancellationToken.none(),
        resolver=resolver,
        google=google_client,
        credentials=credentials,
        request_timeout=5.0,
    )
