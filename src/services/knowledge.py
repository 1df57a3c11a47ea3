"""Hybrid knowledge resolver: structured lookup first, semantic search second.

Two retrieval paths with different result shapes:

  **structured** — SQL against ``kb_employees`` / ``kb_faqs`` /
                   ``kb_onboarding_tasks`` (keyed lookups, fuzzy name match,
                   keyword scoring).  Fast and exact.
  **semantic**   — cosine similarity between the query embedding and every
                   row of ``knowledge_base``, filtered by a similarity
                   threshold and top-k.  Slower, one remote call per query.

``KnowledgeResolver`` tries the structured path and only falls through to the
semantic path when the structured path comes back empty or fails.  Results
from either path are normalized into ``EmployeeProfile`` / ``KnowledgeResult``
tagged with their ``source``.  Apart from cancellation, nothing raised by
either path escapes the resolver: total failure yields ``None`` or ``[]``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import numpy as np
from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlmodel import select

from src.cancellation import CancellationToken
from src.config import SEMANTIC_MATCH_THRESHOLD
from src.errors import CancellationError
from src.models import EmployeeProfile, KnowledgeResult, ManagerRef
from src.services.database import Employee, Faq, KnowledgeChunk, OnboardingTask, new_session
from src.services.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

# Manager ids used in the HR export that have no directory row of their own.
MANAGER_PLACEHOLDERS: dict[str, ManagerRef] = {
    "M002": ManagerRef(
        name="Engineering Manager",
        email="engineering.manager@novatech.com",
        department="Engineering",
        manager_id="M002",
    ),
    "M003": ManagerRef(
        name="HR Director", email="hr.director@novatech.com", department="HR", manager_id="M003",
    ),
    "M004": ManagerRef(
        name="IT Director", email="it.director@novatech.com", department="IT", manager_id="M004",
    ),
    "CEO": ManagerRef(
        name="Chief Executive Officer",
        email="ceo@novatech.com",
        department="Executive",
        manager_id="CEO",
    ),
}

_EMPLOYEE_ID_RE = re.compile(r"^E\d+$", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z0-9]+")
_STOP_WORDS = frozenset(
    "the and for are you your what how who when where which does with from about this that "
    "can have has our any all get".split()
)


def _tokens(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 2 and w not in _STOP_WORDS}


def _keyword_score(query_words: set[str], heading: str, body: str) -> float:
    """Word-overlap score with a bonus for words found in the heading."""
    if not query_words:
        return 0.0
    heading_words = _tokens(heading)
    text_words = heading_words | _tokens(body)
    matches = len(query_words & text_words)
    if not matches:
        return 0.0
    return matches + 0.5 * len(query_words & heading_words)


# ── Structured path ──────────────────────────────────────────────────


class DirectoryRepository:
    """SQL queries over the structured knowledge tables.

    Infrastructure errors (``SQLAlchemyError``) propagate; the resolver
    decides what to do with them.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    def employee_by_id(self, employee_id: str) -> Employee | None:
        with new_session(self._engine) as session:
            return session.get(Employee, employee_id.upper())

    def employee_by_email(self, email: str) -> Employee | None:
        with new_session(self._engine) as session:
            stmt = select(Employee).where(func.lower(Employee.email) == email.strip().lower())
            return session.exec(stmt).first()

    def employees_by_name(self, name: str, limit: int = 20) -> list[Employee]:
        """Case-insensitive substring match on full, first or last name."""
        pattern = f"%{name.strip()}%"
        with new_session(self._engine) as session:
            stmt = (
                select(Employee)
                .where(
                    or_(
                        Employee.full_name.ilike(pattern),
                        Employee.first_name.ilike(pattern),
                        Employee.last_name.ilike(pattern),
                    )
                )
                .order_by(Employee.full_name)
                .limit(limit)
            )
            return list(session.exec(stmt).all())

    def employees_by_department(self, department: str, role: str | None = None) -> list[Employee]:
        with new_session(self._engine) as session:
            stmt = select(Employee).where(Employee.department.ilike(department.strip()))
            if role:
                stmt = stmt.where(Employee.role.ilike(f"%{role.strip()}%"))
            return list(session.exec(stmt.order_by(Employee.full_name)).all())

    def employees_by_role(self, role: str) -> list[Employee]:
        with new_session(self._engine) as session:
            stmt = select(Employee).where(Employee.role.ilike(f"%{role.strip()}%"))
            return list(session.exec(stmt.order_by(Employee.full_name)).all())

    def search_faqs(
        self, query: str, *, category: str | None = None, limit: int = 5,
    ) -> list[tuple[float, Faq]]:
        words = _tokens(query)
        with new_session(self._engine) as session:
            stmt = select(Faq)
            if category:
                stmt = stmt.where(Faq.category.ilike(category))
            rows = session.exec(stmt).all()
        scored = [(_keyword_score(words, f.question, f.answer), f) for f in rows]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        return scored[:limit]

    def search_tasks(self, query: str, *, limit: int = 5) -> list[tuple[float, OnboardingTask]]:
        words = _tokens(query)
        with new_session(self._engine) as session:
            rows = session.exec(select(OnboardingTask)).all()
        scored = [
            (_keyword_score(words, t.task_name, f"{t.category} {t.description or ''} {t.owner or ''}"), t)
            for t in rows
        ]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        return scored[:limit]

    def search_employees(self, query: str, *, limit: int = 5) -> list[tuple[float, Employee]]:
        words = _tokens(query)
        with new_session(self._engine) as session:
            rows = session.exec(select(Employee)).all()
        scored = [
            (_keyword_score(words, e.full_name, f"{e.department} {e.role} {e.email}"), e)
            for e in rows
        ]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        return scored[:limit]


# ── Semantic path ────────────────────────────────────────────────────


class SemanticIndex:
    """Vector similarity over ``knowledge_base`` rows."""

    def __init__(
        self,
        engine: Engine,
        embedder: EmbeddingClient,
        *,
        threshold: float = SEMANTIC_MATCH_THRESHOLD,
    ):
        self._engine = engine
        self._embedder = embedder
        self._threshold = threshold

    def add(self, category: str, content: str, metadata: dict[str, Any]) -> KnowledgeChunk:
        """Embed and store one row (used by ingestion)."""
        vector = self._embedder.embed(content, use_cache=False)
        chunk = KnowledgeChunk(
            category=category, content=content, row_metadata=metadata, embedding=vector,
        )
        with new_session(self._engine) as session:
            session.add(chunk)
            session.commit()
            session.refresh(chunk)
        return chunk

    def clear(self, category: str | None = None) -> int:
        with new_session(self._engine) as session:
            stmt = select(KnowledgeChunk)
            if category:
                stmt = stmt.where(KnowledgeChunk.category == category)
            rows = session.exec(stmt).all()
            for row in rows:
                session.delete(row)
            session.commit()
            return len(rows)

    def search(
        self,
        query: str,
        limit: int = 5,
        *,
        category: str | None = None,
        token: CancellationToken | None = None,
    ) -> list[KnowledgeResult]:
        """Top-``limit`` rows with cosine similarity >= threshold.

        Similarity is computed over the whole corpus; ``category`` filters
        the ranked matches before truncation.
        """
        query_vec = np.asarray(self._embedder.embed(query, token=token), dtype=float)

        with new_session(self._engine) as session:
            rows = session.exec(select(KnowledgeChunk)).all()
        rows = [r for r in rows if len(r.embedding) == query_vec.shape[0]]
        if not rows:
            return []

        matrix = np.asarray([r.embedding for r in rows], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
        scores = (matrix @ query_vec) / np.where(norms == 0, 1.0, norms)

        results: list[KnowledgeResult] = []
        for idx in np.argsort(-scores):
            score = float(scores[idx])
            if score < self._threshold:
                break
            row = rows[int(idx)]
            if category and row.category != category:
                continue
            results.append(
                KnowledgeResult(
                    category=row.category,
                    content=row.content,
                    metadata=dict(row.row_metadata or {}),
                    score=round(score, 4),
                    source="semantic",
                )
            )
            if len(results) >= limit:
                break
        logger.debug("Semantic search %r → %d result(s)", query[:60], len(results))
        return results


# ── Normalization ────────────────────────────────────────────────────


def profile_from_row(row: Employee) -> EmployeeProfile:
    return EmployeeProfile(
        employee_id=row.id,
        full_name=row.full_name,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        department=row.department,
        role=row.role,
        manager_id=row.manager_id,
        work_location=row.work_location,
        hire_date=row.hire_date,
        onboarding_status=row.onboarding_status,
        source="structured",
    )


def profile_from_metadata(meta: dict[str, Any]) -> EmployeeProfile:
    """Build a profile from a semantic row's CSV-style metadata keys."""
    first = meta.get("First_Name")
    last = meta.get("Last_Name")
    full = meta.get("Full_Name") or " ".join(p for p in (first, last) if p) or "Unknown"
    return EmployeeProfile(
        employee_id=meta.get("Employee_ID"),
        full_name=full,
        first_name=first,
        last_name=last,
        email=meta.get("Email"),
        department=meta.get("Department"),
        role=meta.get("Role"),
        manager_id=meta.get("Manager_ID") or meta.get("Supervisor"),
        work_location=meta.get("Work_Location"),
        hire_date=meta.get("Hire_Date"),
        onboarding_status=meta.get("Onboarding_Status"),
        source="semantic",
    )


def _matches_all(result: KnowledgeResult, terms: list[str]) -> bool:
    haystack = f"{result.content} {result.metadata}".lower()
    return all(term.lower() in haystack for term in terms)


# ── Resolver ─────────────────────────────────────────────────────────


class KnowledgeResolver:
    """Structured-first, semantic-fallback lookups that never raise."""

    def __init__(
        self,
        directory: DirectoryRepository,
        semantic: SemanticIndex,
        *,
        manager_placeholders: dict[str, ManagerRef] | None = None,
    ):
        self._directory = directory
        self._semantic = semantic
        self._placeholders = (
            MANAGER_PLACEHOLDERS if manager_placeholders is None else manager_placeholders
        )

    # ── internal: guarded path calls ─────────────────────────────────

    def _structured(self, label: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except CancellationError:
            raise
        except Exception as exc:
            logger.warning("Structured %s lookup failed, falling back to semantic: %s", label, exc)
            return None

    def _semantic_search(
        self,
        query: str,
        limit: int,
        *,
        category: str | None,
        token: CancellationToken | None,
    ) -> list[KnowledgeResult]:
        try:
            return self._semantic.search(query, limit, category=category, token=token)
        except CancellationError:
            raise
        except Exception as exc:
            logger.warning("Semantic search failed for %r: %s", query[:60], exc)
            return []

    # ── employees ────────────────────────────────────────────────────

    def resolve_employee(
        self, key: str, token: CancellationToken | None = None,
    ) -> EmployeeProfile | None:
        """Look up one employee by id (``E001``), email, or name."""
        key = (key or "").strip()
        if not key:
            return None

        if _EMPLOYEE_ID_RE.match(key):
            row = self._structured("employee id", self._directory.employee_by_id, key)
        elif "@" in key:
            row = self._structured("employee email", self._directory.employee_by_email, key)
        else:
            rows = self._structured("employee name", self._directory.employees_by_name, key, 1)
            row = rows[0] if rows else None

        if row is not None:
            profile = profile_from_row(row)
        else:
            profile = self._employee_from_semantic(key, token)
            if profile is None:
                return None

        profile.manager = self.resolve_manager(profile.manager_id, token)
        return profile

    def _employee_from_semantic(
        self, key: str, token: CancellationToken | None,
    ) -> EmployeeProfile | None:
        lowered = key.lower()
        for hit in self._semantic_search(key, 10, category="employees", token=token):
            meta = hit.metadata
            if (
                str(meta.get("Employee_ID", "")).lower() == lowered
                or str(meta.get("Email", "")).lower() == lowered
                or lowered in hit.content.lower()
            ):
                return profile_from_metadata(meta)
        return None

    def resolve_manager(
        self, manager_id: str | None, token: CancellationToken | None = None,
    ) -> EmployeeProfile | ManagerRef | None:
        """Resolve a ``manager_id`` reference.

        Placeholder ids bypass both paths.  An id that neither path knows
        comes back as a name-only stub.
        """
        if not manager_id:
            return None
        if manager_id in self._placeholders:
            return self._placeholders[manager_id].model_copy()

        row = self._structured("manager id", self._directory.employee_by_id, manager_id)
        if row is not None:
            return profile_from_row(row)

        for hit in self._semantic_search(manager_id, 10, category="employees", token=token):
            if hit.metadata.get("Employee_ID") == manager_id:
                return profile_from_metadata(hit.metadata)

        return ManagerRef(name=manager_id, manager_id=manager_id)

    def find_employees(
        self,
        *,
        department: str | None = None,
        role: str | None = None,
        search_name: str | None = None,
        limit: int = 20,
        token: CancellationToken | None = None,
    ) -> list[EmployeeProfile]:
        rows: list[Employee] | None = None
        if search_name:
            rows = self._structured("team name", self._directory.employees_by_name, search_name, limit)
        elif department:
            rows = self._structured(
                "team department", self._directory.employees_by_department, department, role,
            )
        elif role:
            rows = self._structured("team role", self._directory.employees_by_role, role)

        if rows:
            return [profile_from_row(r) for r in rows[:limit]]

        query = search_name or " ".join(p for p in (department, role) if p) or "employees"
        terms = [t for t in (department, role, search_name) if t]
        hits = self._semantic_search(query, limit, category="employees", token=token)
        return [profile_from_metadata(h.metadata) for h in hits if _matches_all(h, terms)][:limit]

    # ── general search ───────────────────────────────────────────────

    def search(
        self,
        query: str,
        limit: int = 5,
        *,
        category: str = "all",
        token: CancellationToken | None = None,
    ) -> list[KnowledgeResult]:
        """Ranked results for *query*; ``category`` is employees|faqs|tasks|all."""
        results = self._structured("knowledge", self._structured_search, query, limit, category)
        if results:
            return results
        return self._semantic_search(
            query, limit, category=None if category == "all" else category, token=token,
        )

    def _structured_search(self, query: str, limit: int, category: str) -> list[KnowledgeResult]:
        results: list[KnowledgeResult] = []
        if category in ("faqs", "all"):
            for score, faq in self._directory.search_faqs(query, limit=limit):
                results.append(
                    KnowledgeResult(
                        category="faqs",
                        content=f"{faq.question} {faq.answer}",
                        metadata={"id": faq.id, "question": faq.question,
                                  "answer": faq.answer, "category": faq.category},
                        score=score,
                        source="structured",
                    )
                )
        if category in ("tasks", "all"):
            for score, task in self._directory.search_tasks(query, limit=limit):
                results.append(
                    KnowledgeResult(
                        category="tasks",
                        content=f"{task.task_name}: {task.description or ''}".strip(),
                        metadata=task.model_dump(),
                        score=score,
                        source="structured",
                    )
                )
        if category in ("employees", "all"):
            for score, emp in self._directory.search_employees(query, limit=limit):
                results.append(
                    KnowledgeResult(
                        category="employees",
                        content=f"{emp.full_name}, {emp.role}, {emp.department} ({emp.email})",
                        metadata=emp.model_dump(),
                        score=score,
                        source="structured",
                    )
                )
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    def policy_documents(
        self, query: str, limit: int = 5, token: CancellationToken | None = None,
    ) -> list[KnowledgeResult]:
        """FAQ-only search used for policy questions."""
        return self.search(query, limit, category="faqs", token=token)
