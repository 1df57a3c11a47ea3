"""Tests for loading the knowledge CSVs."""

from __future__ import annotations

from sqlmodel import select

from src import ingest
from src.services.database import (
    Employee,
    Faq,
    KnowledgeChunk,
    OnboardingTask,
    create_db_engine,
    new_session,
)

EMPLOYEES_CSV = """\ufeffEmployee_ID,First_Name,Last_Name,Email,Department,Role,Manager_ID,Hire_Date
E001,Sarah,Johnson,sarah.johnson@novatech.com,Engineering,Software Engineer,E002,2025-11-03
E002,Michael,Chen,michael.chen@novatech.com,Engineering,Engineering Manager,M002,
E999,No,Email,,Sales,Rep,,
"""

FAQS_CSV = """FAQ_ID,Question,Answer,Category
F001,How many vacation days do I get?,25 days per year.,Time Off
"""

TASKS_CSV = """Task_ID,Category,Task_Name,Description,Department,Owner,Priority,Deadline
T001,IT Setup,Set up laptop,Collect your laptop from IT.,,IT,,Day 1
"""


def _write(tmp_path, name: str, text: str):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestReadCsv:
    def test_strips_bom_and_whitespace(self, tmp_path):
        path = _write(tmp_path, "e.csv", "\ufeffA , B\n x , y \n")
        assert ingest.read_csv(path) == [{"A": "x", "B": "y"}]


class TestLoaders:
    def test_load_employees_skips_rows_without_email(self, engine, tmp_path):
        rows = ingest.read_csv(_write(tmp_path, "e.csv", EMPLOYEES_CSV))

        assert ingest.load_employees(engine, rows) == 2

        with new_session(engine) as session:
            sarah = session.get(Employee, "E001")
            michael = session.get(Employee, "E002")
        assert sarah.full_name == "Sarah Johnson"
        assert sarah.work_location == "Office"
        assert michael.hire_date is None

    def test_reload_replaces_rows(self, engine, tmp_path):
        rows = ingest.read_csv(_write(tmp_path, "f.csv", FAQS_CSV))
        ingest.load_faqs(engine, rows)
        ingest.load_faqs(engine, rows)
        with new_session(engine) as session:
            assert len(session.exec(select(Faq)).all()) == 1

    def test_task_defaults(self, engine, tmp_path):
        rows = ingest.read_csv(_write(tmp_path, "t.csv", TASKS_CSV))
        ingest.load_tasks(engine, rows)
        with new_session(engine) as session:
            task = session.get(OnboardingTask, "T001")
        assert task.priority == "Medium"
        assert task.department is None
        assert task.deadline == "Day 1"


class TestIndexRows:
    def test_one_chunk_per_row(self, semantic_index, engine, embedder):
        rows = [
            {"FAQ_ID": "F001", "Question": "Vacation days?", "Answer": "25"},
            {"FAQ_ID": "", "Question": "", "Answer": ""},
        ]

        assert ingest.index_rows(semantic_index, "faqs", rows, delay=0) == 1

        with new_session(engine) as session:
            (chunk,) = session.exec(select(KnowledgeChunk)).all()
        assert chunk.category == "faqs"
        assert chunk.content == "F001 Vacation days? 25"
        assert chunk.row_metadata == rows[0]
        assert embedder.calls == ["F001 Vacation days? 25"]

    def test_reindex_replaces_category(self, semantic_index, engine):
        rows = [{"FAQ_ID": "F001", "Question": "Vacation days?"}]
        ingest.index_rows(semantic_index, "faqs", rows, delay=0)
        ingest.index_rows(semantic_index, "faqs", rows, delay=0)
        semantic_index.add("tasks", "Set up laptop", {"Task_ID": "T001"})
        ingest.index_rows(semantic_index, "faqs", rows, delay=0)

        with new_session(engine) as session:
            categories = sorted(c.category for c in session.exec(select(KnowledgeChunk)).all())
        assert categories == ["faqs", "tasks"]


class TestMain:
    def test_loads_tables_from_data_dir(self, tmp_path):
        _write(tmp_path, "NovaTech_Employees.csv", EMPLOYEES_CSV)
        _write(tmp_path, "NovaTech_FAQs.csv", FAQS_CSV)
        db_url = f"sqlite:///{tmp_path / 'nova.db'}"

        exit_code = ingest.main(
            ["--data-dir", str(tmp_path), "--database-url", db_url, "--skip-embeddings"],
        )

        assert exit_code == 0
        engine = create_db_engine(db_url)
        with new_session(engine) as session:
            assert len(session.exec(select(Employee)).all()) == 2
            assert len(session.exec(select(Faq)).all()) == 1
            assert session.exec(select(OnboardingTask)).all() == []
        engine.dispose()
