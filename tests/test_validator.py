import pytest

from schema_lens.core.errors import UnknownDialectError
from schema_lens.core.ir import Schema
from schema_lens.core.parser import parse_ddl, parse_schema
from schema_lens.core.registry import DialectRegistry
from schema_lens.core.validator import validate
from schema_lens.policy.config_schema import ToolkitConfig


def located(result):
    return {(d.code, str(d.location)) for d in result.all}


def test_minimal_table_is_postgres_compatible():
    table = parse_ddl("CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL);")
    result = validate(Schema(tables=[table]), "postgres")
    assert result.valid
    assert result.errors == []
    assert result.format() == "Schema is fully PostgreSQL-compatible."


def test_dsql_rejects_serial_jsonb_and_arrays():
    schema = parse_schema("CREATE TABLE t (id SERIAL PRIMARY KEY, data JSONB, tags TEXT[]);")
    result = validate(schema, "dsql")
    assert not result.valid
    assert [(d.code, str(d.location)) for d in result.errors] == [
        ("DSQL-TYPE-001", "t.id"),
        ("DSQL-TYPE-002", "t.data"),
        ("DSQL-TYPE-014", "t.tags"),
    ]


def test_cockroach_flags_exclusion_and_spgist():
    schema = parse_schema(
        """
        CREATE TABLE bookings (
            id INT PRIMARY KEY,
            room INT,
            during TSRANGE,
            EXCLUDE USING gist (room WITH =, during WITH &&)
        );
        CREATE INDEX idx_room ON bookings USING spgist (room);
        """
    )
    result = validate(schema, "cockroachdb")
    codes = result.codes()
    assert "CRDB_E100" in codes
    assert "CRDB_E200" in codes
    assert not result.valid


def test_diagnostic_formatting():
    schema = parse_schema("CREATE TABLE t (id SERIAL PRIMARY KEY);")
    result = validate(schema, "dsql")
    text = result.errors[0].format()
    lines = text.splitlines()
    assert lines[0].startswith("[ERROR] DSQL-TYPE-001: ")
    assert "  Location: t.id" in lines
    assert any(line.startswith("  Alternative: ") for line in lines)
    assert any(line.startswith("  Docs: https://") for line in lines)
    assert result.format().startswith("=== 1 Error(s) ===\n\n[ERROR] DSQL-TYPE-001")


def test_walk_order_is_stable():
    sql = """
    CREATE TABLE a (id SERIAL PRIMARY KEY, doc JSONB);
    CREATE TABLE b (id SERIAL PRIMARY KEY, a_id INT REFERENCES a(id));
    CREATE SEQUENCE s;
    """
    first = validate(parse_schema(sql), "dsql")
    second = validate(parse_schema(sql), "dsql")
    assert first.codes() == second.codes()
    assert first.codes().index("DSQL-TYPE-002") < first.codes().index("DSQL-CONS-002")
    assert first.codes()[-1] == "DSQL-SEQ-001"


def test_ignore_codes_suppress_diagnostics():
    schema = parse_schema("CREATE TABLE t (id SERIAL PRIMARY KEY, data JSONB);")
    result = validate(schema, "dsql", ToolkitConfig(ignore_codes=["DSQL-TYPE-002"]))
    assert result.codes() == ["DSQL-TYPE-001"]


def test_column_scope_only_hides_the_same_subject():
    schema = parse_schema(
        """
        CREATE TABLE a (id INT PRIMARY KEY);
        CREATE TABLE b (
            id INT PRIMARY KEY,
            a_id INT REFERENCES a(id) DEFERRABLE,
            a2 INT,
            CONSTRAINT fk2 FOREIGN KEY (a2) REFERENCES a (id) DEFERRABLE
        );
        """
    )
    result = validate(schema, "dsql")
    deferrable = [str(d.location) for d in result.all if d.code == "DSQL-CONS-006"]
    assert deferrable == ["b.a_id", "b.fk2"]


def test_column_scope_wins_over_covering_constraint():
    schema = parse_schema(
        """
        CREATE TABLE a (id INT PRIMARY KEY);
        CREATE TABLE b (
            a_id INT REFERENCES a(id) DEFERRABLE,
            CONSTRAINT fk_a FOREIGN KEY (a_id) REFERENCES a (id) DEFERRABLE
        );
        """
    )
    deferrable = [str(d.location) for d in validate(schema, "dsql").all if d.code == "DSQL-CONS-006"]
    assert deferrable == ["b.a_id"]


def test_adding_a_column_keeps_existing_diagnostics():
    base = """
        CREATE TABLE a (id INT PRIMARY KEY);
        CREATE TABLE b (id INT PRIMARY KEY, a2 INT{extra},
            CONSTRAINT fk2 FOREIGN KEY (a2) REFERENCES a (id) DEFERRABLE);
    """
    before = validate(parse_schema(base.format(extra="")), "dsql")
    after = validate(parse_schema(base.format(extra=", a_id INT REFERENCES a(id) DEFERRABLE")), "dsql")
    seen = {(d.code, str(d.location)) for d in after.all}
    assert {(d.code, str(d.location)) for d in before.all} <= seen


def test_pattern_scan_does_not_repeat_structural_codes():
    schema = parse_schema("CREATE EXTENSION pgcrypto; CREATE EXTENSION postgis; LISTEN jobs;")
    result = validate(schema, "dsql")
    extensions = [d for d in result.all if d.code == "DSQL-EXT-001"]
    assert [d.message for d in extensions] == [
        'Extension "pgcrypto" is not supported in DSQL. No extensions are available.',
        'Extension "postgis" is not supported in DSQL. No extensions are available.',
    ]
    assert result.codes().count("DSQL-MISC-001") == 1


def test_adding_entities_never_removes_diagnostics():
    base = parse_schema("CREATE TABLE t (id SERIAL PRIMARY KEY, data JSONB);")
    grown = parse_schema(
        "CREATE TABLE t (id SERIAL PRIMARY KEY, data JSONB, tags TEXT[], at TIMESTAMP);"
        "CREATE INDEX idx_data ON t USING gin (data);"
        "CREATE TABLE u (id MONEY);"
    )
    for dialect in ("postgres", "dsql", "cockroachdb", "nile"):
        assert located(validate(base, dialect)) <= located(validate(grown, dialect))


def test_core_checks_run_for_every_dialect():
    schema = parse_schema(
        """
        CREATE TABLE orders (id INT PRIMARY KEY, user_id INT REFERENCES users(id), LIKE other);
        CREATE TABLE shards (id INT, region TEXT, PRIMARY KEY (id)) PARTITION BY HASH (id, region);
        CREATE INDEX idx_nowhere ON nowhere (id);
        """
    )
    for dialect in DialectRegistry.supported_dialects():
        codes = validate(schema, dialect).codes()
        for code in ("SCHEMA-REF-001", "SCHEMA-PARSE-001", "SCHEMA-PARSE-002", "SCHEMA-PART-001"):
            assert code in codes, (dialect, code)


def test_dangling_column_reference_message():
    schema = parse_schema("CREATE TABLE a (id INT PRIMARY KEY); CREATE TABLE b (a_id INT REFERENCES a(code));")
    result = validate(schema, "postgres")
    ref = [d for d in result.all if d.code == "SCHEMA-REF-002"]
    assert ref[0].message == 'Foreign key references column "a.code" which does not exist.'
    assert result.valid


def test_postgres_limits():
    long_name = "x" * 64
    columns = ", ".join(f"c{i} INT" for i in range(33))
    index_columns = ", ".join(f"c{i}" for i in range(33))
    schema = parse_schema(
        f"CREATE TABLE {long_name} (id INT PRIMARY KEY);"
        f"CREATE TABLE wide ({columns});"
        f"CREATE INDEX idx_wide ON wide ({index_columns});"
    )
    result = validate(schema, "postgres")
    assert ("PG-IDENT-001", long_name) in located(result)
    assert ("PG-LIMIT-002", "wide.idx_wide") in located(result)
    assert [d.code for d in result.errors] == ["PG-LIMIT-002"]
    assert "(33 defined)" in result.errors[0].message


def test_dialect_aliases_and_unknown_dialects():
    schema = parse_schema("CREATE TABLE t (id INT PRIMARY KEY);")
    assert validate(schema, "crdb").dialect == "cockroachdb"
    assert validate(schema, "PostgreSQL").dialect == "postgres"
    assert validate(schema, "aurora-dsql").label == "DSQL"
    with pytest.raises(UnknownDialectError) as exc:
        validate(schema, "oracle")
    assert isinstance(exc.value, KeyError)
    assert "oracle" in str(exc.value)


def test_summary_is_serialisable():
    schema = parse_schema("CREATE TABLE t (id SERIAL PRIMARY KEY);")
    summary = validate(schema, "dsql").summary()
    assert summary["valid"] is False
    assert summary["errors"] == 1
    assert summary["diagnostics"][0]["code"] == "DSQL-TYPE-001"
    assert summary["diagnostics"][0]["location"] == {"table": "t", "column": "id"}
