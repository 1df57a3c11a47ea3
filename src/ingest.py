"""Load the company knowledge CSVs into the hybrid knowledge store.

Each file is loaded twice: into its relational table (for the structured
lookups) and, row by row, into the embedding index (for semantic search).
Existing rows of the same kind are replaced.

Usage:
    python -m src.ingest --data-dir data/
    python -m src.ingest --employees data/NovaTech_Employees.csv --skip-embeddings
"""

from __future__ import annotations

import argparse
import csv
import logging
import time
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import delete
from sqlalchemy.engine import Engine

from src.config import DATABASE_URL
from src.services.database import (
    Employee,
    Faq,
    OnboardingTask,
    create_db_engine,
    init_db,
    new_session,
)
from src.services.embeddings import EmbeddingClient
from src.services.knowledge import SemanticIndex

logger = logging.getLogger(__name__)

DEFAULT_FILES = {
    "employees": "NovaTech_Employees.csv",
    "faqs": "NovaTech_FAQs.csv",
    "tasks": "NovaTech_Onboarding_Tasks.csv",
}


def read_csv(path: Path) -> list[dict[str, str]]:
    with path.open(newline="", encoding="utf-8-sig") as fh:
        return [
            {k.strip(): (v or "").strip() for k, v in row.items() if k}
            for row in csv.DictReader(fh)
        ]


def _or_none(value: str | None) -> str | None:
    return value or None


# ── Relational tables ────────────────────────────────────────────────


def load_employees(engine: Engine, rows: list[dict[str, str]]) -> int:
    employees = [
        Employee(
            id=row["Employee_ID"],
            first_name=row.get("First_Name", ""),
            last_name=row.get("Last_Name", ""),
            full_name=row.get("Full_Name") or f"{row.get('First_Name', '')} {row.get('Last_Name', '')}".strip(),
            email=row["Email"],
            department=row.get("Department", ""),
            role=row.get("Role", ""),
            manager_id=_or_none(row.get("Manager_ID")),
            hire_date=_or_none(row.get("Hire_Date")),
            work_location=row.get("Work_Location") or "Office",
            onboarding_status=row.get("Onboarding_Status") or "Not Started",
        )
        for row in rows
        if row.get("Employee_ID") and row.get("Email")
    ]
    with new_session(engine) as session:
        session.execute(delete(Employee))
        session.add_all(employees)
        session.commit()
    logger.info("Inserted %d/%d employees into kb_employees", len(employees), len(rows))
    return len(employees)


def load_faqs(engine: Engine, rows: list[dict[str, str]]) -> int:
    faqs = [
        Faq(
            id=row["FAQ_ID"],
            question=row.get("Question", ""),
            answer=row.get("Answer", ""),
            category=row.get("Category", "General"),
        )
        for row in rows
        if row.get("FAQ_ID")
    ]
    with new_session(engine) as session:
        session.execute(delete(Faq))
        session.add_all(faqs)
        session.commit()
    logger.info("Inserted %d/%d FAQs into kb_faqs", len(faqs), len(rows))
    return len(faqs)


def load_tasks(engine: Engine, rows: list[dict[str, str]]) -> int:
    tasks = [
        OnboardingTask(
            id=row["Task_ID"],
            category=row.get("Category", "General"),
            task_name=row.get("Task_Name", ""),
            description=_or_none(row.get("Description")),
            department=_or_none(row.get("Department")),
            owner=_or_none(row.get("Owner")),
            priority=row.get("Priority") or "Medium",
            deadline=_or_none(row.get("Deadline")),
        )
        for row in rows
        if row.get("Task_ID")
    ]
    with new_session(engine) as session:
        session.execute(delete(OnboardingTask))
        session.add_all(tasks)
        session.commit()
    logger.info("Inserted %d/%d tasks into kb_onboarding_tasks", len(tasks), len(rows))
    return len(tasks)


LOADERS = {
    "employees": load_employees,
    "faqs": load_faqs,
    "tasks": load_tasks,
}


# ── Embedding index ──────────────────────────────────────────────────


def index_rows(
    index: SemanticIndex,
    category: str,
    rows: list[dict[str, str]],
    *,
    delay: float = 1.0,
) -> int:
    """Embed every row as one chunk; ``delay`` spaces out the API calls."""
    removed = index.clear(category)
    if removed:
        logger.info("Removed %d existing %s chunk(s)", removed, category)
    created = 0
    for i, row in enumerate(rows, start=1):
        content = " ".join(v for v in row.values() if v)
        if not content:
            continue
        logger.debug("Embedding %s row %d/%d", category, i, len(rows))
        index.add(category, content, row)
        created += 1
        if delay and i < len(rows):
            time.sleep(delay)
    logger.info("Created %d %s embedding(s)", created, category)
    return created


# ── CLI ──────────────────────────────────────────────────────────────


def _resolve_files(args: argparse.Namespace) -> dict[str, Path]:
    files: dict[str, Path] = {}
    for category, default_name in DEFAULT_FILES.items():
        explicit = getattr(args, category)
        if explicit:
            files[category] = Path(explicit)
        elif args.data_dir and (Path(args.data_dir) / default_name).exists():
            files[category] = Path(args.data_dir) / default_name
    return files


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Load knowledge CSVs into the Nova knowledge store")
    parser.add_argument("--data-dir", help="Directory holding the default CSV file names")
    parser.add_argument("--employees", help="Employees CSV")
    parser.add_argument("--faqs", help="FAQs CSV")
    parser.add_argument("--tasks", help="Onboarding tasks CSV")
    parser.add_argument("--database-url", default=DATABASE_URL)
    parser.add_argument("--skip-embeddings", action="store_true", help="Only load the relational tables")
    parser.add_argument("--delay", type=float, default=1.0, help="Seconds between embedding calls")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    files = _resolve_files(args)
    if not files:
        parser.error("no CSV files found; pass --data-dir or explicit file paths")

    engine = create_db_engine(args.database_url)
    init_db(engine)
    corpora = {category: read_csv(path) for category, path in files.items()}
    logger.info("Parsed: %s", ", ".join(f"{len(rows)} {c}" for c, rows in corpora.items()))

    for category, rows in corpora.items():
        LOADERS[category](engine, rows)

    if not args.skip_embeddings:
        index = SemanticIndex(engine, EmbeddingClient())
        total = sum(
            index_rows(index, category, rows, delay=args.delay)
            for category, rows in corpora.items()
        )
        logger.info("Knowledge base ready: %d embedding(s)", total)

    engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
