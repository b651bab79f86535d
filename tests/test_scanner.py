import pytest
from sqlalchemy import event, text

from encoding_repair.db import StoreUnavailableError, connect, make_engine
from encoding_repair.models import TableSpec
from encoding_repair.scanner import TextField, build_update, fix_table, scan_table
from encoding_repair.service import (
    check_corruption,
    diagnose_corruption,
    fix_encoding,
    fix_one_field,
)


def fetch_one(engine, sql):
    with engine.connect() as conn:
        return conn.execute(text(sql)).mappings().one()


def test_missing_table_is_not_found(engine):
    with connect(engine) as conn:
        scan = scan_table(conn, TableSpec(name="timesheet", columns=["notes"]))
    assert scan.status.status == "not_found"
    assert scan.status.corrupted == 0
    assert scan.fields == []
    assert scan.failure is None


def test_scan_table_finds_fields(engine):
    with connect(engine) as conn:
        scan = scan_table(
            conn, TableSpec(name="users", columns=["first_name", "last_name", "role"])
        )
    assert scan.status.status == "checked"
    assert scan.status.rows == 3
    assert {(f.row_id, f.column) for f in scan.fields} == {
        (1, "first_name"),
        (1, "role"),
        (2, "last_name"),
    }


def test_scan_respects_limit(engine):
    with connect(engine) as conn:
        scan = scan_table(conn, TableSpec(name="users", columns=["first_name", "last_name"]), limit=1)
    assert scan.status.rows == 1
    assert [f.row_id for f in scan.fields] == [1]


def test_absent_candidate_columns_ignored(engine):
    with connect(engine) as conn:
        scan = scan_table(conn, TableSpec(name="clients", columns=["name", "notes"]))
    assert scan.status.status == "checked"
    assert [f.column for f in scan.fields] == ["name"]


def test_unknown_identifier_column_is_soft_failure(engine):
    with connect(engine) as conn:
        scan = scan_table(conn, TableSpec(name="projects", columns=["name"]))
    assert scan.status.status == "error"
    assert scan.failure.table == "projects"
    assert "identifier column" in scan.failure.error


def test_check_corruption_report(engine, tables):
    report = check_corruption(engine, tables)

    assert report.total_corrupted == 7
    statuses = {t.table: t.status for t in report.tables}
    assert statuses == {
        "users": "checked",
        "clients": "checked",
        "projects": "checked",
        "timesheet": "not_found",
    }
    samples = {(s.table, s.column, s.original): s.fixed for s in report.samples_found}
    assert samples[("users", "first_name", "Jo??o")] == "João"
    assert samples[("projects", "name", "configura????o")] == "configuração"
    assert samples[("clients", "description", "â€œGestÃ£oâ€\x9d de projetos")] == "“Gestão” de projetos"


def test_check_corruption_is_read_only(engine, tables):
    check_corruption(engine, tables)
    assert fetch_one(engine, "SELECT first_name FROM users WHERE id = 1")["first_name"] == "Jo??o"


def test_check_corruption_caps_samples(engine, tables):
    report = check_corruption(engine, tables, sample_cap=2)
    assert report.total_corrupted == 7
    assert len(report.samples_found) == 2


def test_fix_encoding_writes_back(engine, tables):
    result = fix_encoding(engine, tables)

    assert result.records_fixed == 4
    assert result.total_changes == 7
    assert result.failures == []

    user = fetch_one(engine, "SELECT * FROM users WHERE id = 1")
    assert user["first_name"] == "João"
    assert user["role"] == "administração"
    assert user["last_name"] == "Silva"

    project = fetch_one(engine, "SELECT * FROM projects WHERE project_id = 10")
    assert project["name"] == "configuração"
    assert project["description"] == "Projeto de instalação"

    client = fetch_one(engine, "SELECT * FROM clients WHERE id = 1")
    assert client["name"] == "Descrição Lda"


def test_fix_encoding_second_pass_changes_nothing(engine, tables):
    fix_encoding(engine, tables)
    again = fix_encoding(engine, tables)
    assert again.records_fixed == 0
    assert check_corruption(engine, tables).total_corrupted == 0


def test_fix_encoding_caps_changes(engine, tables):
    result = fix_encoding(engine, tables, change_cap=3)
    assert result.total_changes == 7
    assert len(result.changes) == 3


def test_update_only_touches_changed_columns(engine):
    statements = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", capture)
    try:
        with connect(engine) as conn:
            fixed = fix_table(
                conn, TableSpec(name="users", columns=["first_name", "last_name", "email", "role"])
            )
    finally:
        event.remove(engine, "before_cursor_execute", capture)

    assert fixed.rows_fixed == 2
    updates = [s for s in statements if s.lstrip().upper().startswith("UPDATE")]
    assert len(updates) == 2
    first, second = updates
    assert "first_name" in first and "role" in first
    assert "last_name" not in first and "email" not in first
    assert "last_name" in second and "first_name" not in second


def test_build_update_skips_unrepairable_fields():
    fields = [
        TextField("users", 1, "first_name", "Jo??o"),
        TextField("users", 1, "last_name", "What??"),
    ]
    assert build_update(fields) == {"first_name": "João"}


def test_row_write_failure_is_soft(engine, tables):
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO clients (id, name, description) VALUES (3, 'Jo??o', 'x')"))
        conn.execute(
            text(
                "CREATE TRIGGER lock_client BEFORE UPDATE ON clients "
                "WHEN OLD.id = 1 BEGIN SELECT RAISE(ABORT, 'client locked'); END"
            )
        )

    result = fix_encoding(engine, tables)

    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.table == "clients"
    assert failure.id == 1
    assert "client locked" in failure.error
    # users 2 + clients row 3 + projects 1
    assert result.records_fixed == 4
    assert fetch_one(engine, "SELECT name FROM clients WHERE id = 3")["name"] == "João"
    assert fetch_one(engine, "SELECT name FROM clients WHERE id = 1")["name"] == "DescriÃ§Ã£o Lda"


def test_bytes_values_are_scanned(engine):
    with engine.begin() as conn:
        conn.execute(
            text("INSERT INTO users (id, first_name) VALUES (4, :name)"), {"name": b"Jo??o"}
        )
    spec = TableSpec(name="users", columns=["first_name"])

    with connect(engine) as conn:
        fixed = fix_table(conn, spec)

    assert fixed.rows_fixed == 2
    assert fetch_one(engine, "SELECT first_name FROM users WHERE id = 4")["first_name"] == "João"


def test_diagnose_corruption(engine, tables):
    report = diagnose_corruption(engine, tables, limit=50)

    assert set(report.corrupted_samples) == {"users", "clients", "projects"}
    client = report.corrupted_samples["clients"]
    assert [s.field for s in client] == ["name", "description"]
    assert client[0].signatures == ["double_utf8"]
    assert client[1].signatures == ["double_utf8", "smart_quote"]
    assert client[0].char_codes[0] == {"char": "D", "code": 68, "hex": "44"}


def test_diagnose_limits_samples_per_table(engine, tables):
    report = diagnose_corruption(engine, tables, per_table=1)
    assert all(len(samples) == 1 for samples in report.corrupted_samples.values())


def test_unreachable_store_raises(tmp_path, tables):
    broken = make_engine(f"sqlite:///{tmp_path / 'missing' / 'timetracker.db'}")
    with pytest.raises(StoreUnavailableError):
        check_corruption(broken, tables)
    with pytest.raises(StoreUnavailableError):
        fix_encoding(broken, tables)


def test_fix_one_field():
    assert fix_one_field("Gon??alves") == "Gonçalves"
    assert fix_one_field(None) is None


def test_non_utf8_text_is_scanned_and_rewritten(engine, tables):
    # "João" stored as Latin-1 bytes in a TEXT column
    with engine.begin() as conn:
        conn.execute(
            text("INSERT INTO users (id, first_name) VALUES (9, CAST(X'4a6fe36f' AS TEXT))")
        )
    spec = TableSpec(name="users", columns=["first_name", "last_name", "role"])

    with connect(engine) as conn:
        scan = scan_table(conn, spec)
    assert scan.status.status == "checked"
    assert scan.failure is None
    assert {(f.row_id, f.column) for f in scan.fields} == {
        (1, "first_name"),
        (1, "role"),
        (2, "last_name"),
        (9, "first_name"),
    }
    latin1 = [f for f in scan.fields if f.row_id == 9][0]
    assert latin1.value == "João"
    assert latin1.invalid_utf8

    with connect(engine) as conn:
        fixed = fix_table(conn, spec)
    assert fixed.failures == []
    assert fixed.rows_fixed == 3
    assert fetch_one(engine, "SELECT first_name FROM users WHERE id = 9")["first_name"] == "João"
    with engine.connect() as conn:
        stored = conn.execute(text("SELECT hex(first_name) AS h FROM users WHERE id = 9")).scalar()
    assert stored == "4A6FC3A36F"

    assert "users" not in diagnose_corruption(engine, tables).corrupted_samples


def test_diagnose_names_non_utf8_values(engine, tables):
    with engine.begin() as conn:
        conn.execute(
            text("INSERT INTO clients (id, name) VALUES (5, CAST(X'4a6fe36f' AS TEXT))")
        )
    report = diagnose_corruption(engine, tables)
    sample = [s for s in report.corrupted_samples["clients"] if s.id == 5][0]
    assert sample.value == "João"
    assert sample.signatures == ["invalid_utf8"]


def test_table_status_counts(engine):
    users = TableSpec(name="users", columns=["first_name", "last_name", "email", "role"])
    projects = TableSpec(name="projects", id_column="project_id", columns=["name", "description"])

    with connect(engine) as conn:
        scan = scan_table(conn, users)
    assert scan.status.rows == 3
    assert scan.status.examined == 12
    assert scan.status.corrupted == 3
    assert scan.status.fixed == 0

    with connect(engine) as conn:
        fixed = fix_table(conn, projects)
    # project 11 has no description
    assert fixed.status.examined == 3
    assert fixed.status.corrupted == 2
    assert fixed.status.fixed == 2


def test_fix_encoding_reports_per_table_counts(engine, tables):
    result = fix_encoding(engine, tables)
    counts = {t.table: (t.examined, t.corrupted, t.fixed) for t in result.tables}
    assert counts == {
        "users": (12, 3, 3),
        "clients": (4, 2, 2),
        "projects": (3, 2, 2),
        "timesheet": (0, 0, 0),
    }
