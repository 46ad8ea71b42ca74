import pytest

from schema_lens.core.parser import parse_schema
from schema_lens.core.rewriter import (
    format_changes,
    needs_dsql_rewrite,
    rewrite_for_dsql,
    rewrite_statements_for_dsql,
)
from schema_lens.core.validator import validate

SOURCE = """
CREATE TABLE users (id SERIAL PRIMARY KEY, profile JSONB, balance MONEY);
CREATE TABLE orders (
    id BIGSERIAL PRIMARY KEY,
    user_id INT REFERENCES users(id) ON DELETE CASCADE,
    note XML
);
CREATE INDEX CONCURRENTLY idx_profile ON users USING gin (profile);
"""


def test_serial_and_jsonb_are_replaced_but_arrays_stay():
    result = rewrite_for_dsql("CREATE TABLE t (id SERIAL PRIMARY KEY, data JSONB, tags TEXT[])")
    assert result.modified
    assert "SERIAL" not in result.sql
    assert "JSONB" not in result.sql
    assert "TEXT[]" in result.sql
    assert "id UUID DEFAULT gen_random_uuid() PRIMARY KEY" in result.sql
    assert [c.rule_code for c in result.changes] == ["DSQL-TYPE-001", "DSQL-TYPE-002"]


def test_bigserial_is_not_matched_as_serial():
    result = rewrite_for_dsql("CREATE TABLE t (id BIGSERIAL PRIMARY KEY)")
    assert [c.description for c in result.changes] == ["Replace BIGSERIAL with UUID + gen_random_uuid()"]
    assert result.changes[0].original == "BIGSERIAL"


def test_clean_sql_is_untouched():
    sql = "CREATE TABLE t (id UUID PRIMARY KEY, name TEXT)"
    result = rewrite_for_dsql(sql)
    assert result.sql == sql
    assert result.changes == []
    assert not result.modified
    assert not needs_dsql_rewrite(sql)
    assert needs_dsql_rewrite("CREATE TABLE t (id SERIAL)")


def test_rewrite_is_idempotent():
    once = rewrite_statements_for_dsql(SOURCE)
    twice = rewrite_statements_for_dsql(once.sql)
    assert twice.sql == once.sql
    assert twice.changes == []


def test_rewritten_sql_clears_the_rewritten_codes():
    rewritten = rewrite_statements_for_dsql(SOURCE)
    fixed = {c.rule_code for c in rewritten.changes}
    assert {"DSQL-TYPE-001", "DSQL-TYPE-002", "DSQL-TYPE-003", "DSQL-TYPE-004",
            "DSQL-CONS-002", "DSQL-IDX-006", "DSQL-IDX-001"} <= fixed

    before = validate(parse_schema(SOURCE), "dsql")
    after = validate(parse_schema(rewritten.sql), "dsql")
    assert fixed & set(before.codes())
    assert not fixed & set(after.codes())
    assert after.valid


@pytest.mark.parametrize(
    "sql,expected",
    [
        (
            "CREATE TEMP TABLE scratch (id UUID PRIMARY KEY, data JSON) ON COMMIT DROP",
            {"DSQL-TBL-001", "DSQL-TYPE-002", "DSQL-TBL-007"},
        ),
        (
            "CREATE UNLOGGED TABLE logs (id UUID PRIMARY KEY, at DATE) WITH (fillfactor = 70) TABLESPACE fast",
            {"DSQL-TBL-002", "DSQL-TBL-006", "DSQL-TBL-004"},
        ),
        (
            "CREATE TABLE events (id UUID PRIMARY KEY, at DATE) PARTITION BY RANGE (at);"
            "CREATE TABLE child (id UUID PRIMARY KEY) INHERITS (events)",
            {"DSQL-TBL-005", "DSQL-TBL-003"},
        ),
        (
            "CREATE TABLE a (id UUID PRIMARY KEY);"
            "CREATE TABLE b (id UUID PRIMARY KEY, a_id UUID, "
            "CONSTRAINT fk FOREIGN KEY (a_id) REFERENCES a (id) DEFERRABLE INITIALLY DEFERRED)",
            {"DSQL-CONS-006", "DSQL-CONS-001"},
        ),
        (
            "CREATE TABLE t (id INT GENERATED ALWAYS AS IDENTITY PRIMARY KEY, n SMALLSERIAL)",
            {"DSQL-MOD-001", "DSQL-TYPE-001"},
        ),
    ],
)
def test_rewrite_clears_its_codes(sql, expected):
    rewritten = rewrite_statements_for_dsql(sql)
    fixed = {c.rule_code for c in rewritten.changes}
    assert fixed == expected
    assert expected <= set(validate(parse_schema(sql), "dsql").codes())
    after = validate(parse_schema(rewritten.sql), "dsql")
    assert not fixed & set(after.codes())
    assert parse_schema(rewritten.sql).skipped_statements == []


def test_foreign_key_strip_keeps_valid_syntax():
    sql = (
        "CREATE TABLE orders (id UUID PRIMARY KEY, user_id UUID, "
        "CONSTRAINT fk_user FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE)"
    )
    result = rewrite_for_dsql(sql)
    assert "FOREIGN KEY" not in result.sql
    assert "/* DSQL: FOREIGN KEY constraint removed, not enforced */" in result.sql
    assert result.sql.endswith("not enforced */)")
    assert [c.rule_code for c in result.changes] == ["DSQL-CONS-001"]


def test_script_rewrite_joins_statements():
    result = rewrite_statements_for_dsql("CREATE TABLE a (id SERIAL);\nCREATE TABLE b (x INT);\n")
    assert result.sql == "CREATE TABLE a (id UUID DEFAULT gen_random_uuid());\n\nCREATE TABLE b (x INT);"
    assert len(result.changes) == 1
    assert rewrite_statements_for_dsql("  ").sql == ""


def test_format_changes():
    assert format_changes([]) == "No DSQL transformations needed."
    changes = rewrite_for_dsql("CREATE TABLE t (id SERIAL, r INT REFERENCES p(id) DEFERRABLE)").changes
    text = format_changes(changes).splitlines()
    assert text[0] == f"DSQL Transformations ({len(changes)}):"
    assert "  [DSQL-TYPE-001] Replace SERIAL with UUID + gen_random_uuid()" in text
    assert "    - SERIAL" in text
    assert "    + UUID DEFAULT gen_random_uuid()" in text
    assert "    + (removed)" in text
