import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from encoding_repair.config import Settings, get_settings
from encoding_repair.db import get_engine, make_engine
from encoding_repair.main import app
from encoding_repair.models import TableSpec

TABLES = [
    TableSpec(name="users", columns=["first_name", "last_name", "email", "role"]),
    TableSpec(name="clients", columns=["name", "description"]),
    TableSpec(name="projects", id_column="project_id", columns=["name", "description"]),
    TableSpec(name="timesheet", columns=["description", "notes"]),
]

SCHEMA = [
    "CREATE TABLE users (id INTEGER PRIMARY KEY, first_name TEXT, last_name TEXT, email TEXT, role TEXT)",
    "CREATE TABLE clients (id INTEGER PRIMARY KEY, name TEXT, description TEXT)",
    "CREATE TABLE projects (project_id INTEGER PRIMARY KEY, name TEXT, description TEXT)",
]

ROWS = {
    "users": [
        {"id": 1, "first_name": "Jo??o", "last_name": "Silva", "email": "joao@example.pt", "role": "administra????o"},
        {"id": 2, "first_name": "Maria", "last_name": "Gon??alves", "email": "maria@example.pt", "role": "user"},
        {"id": 3, "first_name": "Inês", "last_name": "Santos", "email": "ines@example.pt", "role": "user"},
    ],
    "clients": [
        {"id": 1, "name": "DescriÃ§Ã£o Lda", "description": "â€œGestÃ£oâ€\x9d de projetos"},
        {"id": 2, "name": "Clean Client", "description": "Sem problemas"},
    ],
    "projects": [
        {"project_id": 10, "name": "configura????o", "description": "Projeto de instala????o"},
        {"project_id": 11, "name": "Portal", "description": None},
    ],
}


def _insert(conn, table, rows):
    cols = list(rows[0])
    stmt = text(
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(':' + c for c in cols)})"
    )
    conn.execute(stmt, rows)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'timetracker.db'}")
    with eng.begin() as conn:
        for ddl in SCHEMA:
            conn.execute(text(ddl))
        for table, rows in ROWS.items():
            _insert(conn, table, rows)
    yield eng
    eng.dispose()


@pytest.fixture
def tables():
    return list(TABLES)


@pytest.fixture
def api(engine, tables):
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: Settings(tables=tables)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
