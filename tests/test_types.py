import pytest

from schema_lens.core.errors import SchemaInvariantError
from schema_lens.core.types import TypeDescriptor, builder_name, parse_type


@pytest.mark.parametrize(
    "text,builder",
    [
        ("INTEGER", "integer()"),
        ("int4", "integer()"),
        ("varchar(64)", "varchar(64)"),
        ("CHARACTER VARYING(64)", "varchar(64)"),
        ("NUMERIC(10, 2)", "decimal(10, 2)"),
        ("decimal(12)", "decimal(12)"),
        ("TIMESTAMP(3) WITH TIME ZONE", "timestamptz(3)"),
        ("timestamptz", "timestamptz()"),
        ("double precision", "doublePrecision()"),
        ("float8", "doublePrecision()"),
        ("FLOAT(10)", "real()"),
        ("bool", "boolean()"),
        ("bit varying(8)", "bitVarying(8)"),
        ("pg_lsn", "pgLsn()"),
        ("INTERVAL DAY TO SECOND(3)", "interval('DAY TO SECOND', 3)"),
    ],
)
def test_builder_forms(text, builder):
    assert parse_type(text).builder == builder


def test_array_suffixes_set_dimensions():
    t = parse_type("TEXT[]")
    assert t.array and t.dimensions == 1 and t.base == "TEXT"
    t = parse_type("integer[][]")
    assert t.dimensions == 2
    t = parse_type("int ARRAY")
    assert t.array and t.base == "INTEGER"
    assert parse_type("int[3]").dimensions == 1


def test_unknown_types_become_custom():
    t = parse_type("geometry(Point, 4326)")
    assert t.custom
    assert t.base == "geometry(point, 4326)"
    assert t.key == "geometry"
    assert t.builder == "customType('geometry(point, 4326)')"
    assert builder_name(t) == "customType"


def test_lookup_keys():
    assert parse_type("VARCHAR(10)").key == "varchar"
    assert parse_type("CHAR(2)").key == "char"
    assert parse_type("timestamp with time zone").key == "timestamptz"
    assert parse_type("timestamp without time zone").key == "timestamp"
    assert parse_type("timetz").key == "timetz"
    assert parse_type("varbit").key == "varbit"
    assert parse_type("serial8").key == "bigserial"


def test_params_are_captured_per_family():
    assert parse_type("varchar(255)").params.length == 255
    p = parse_type("numeric(38,4)").params
    assert (p.precision, p.scale) == (38, 4)
    p = parse_type("time(6)").params
    assert p.precision == 6 and p.timezone is None


def test_to_sql_renders_canonical_spelling():
    assert parse_type("varchar(20)[]").to_sql() == "CHARACTER VARYING(20)[]"
    assert parse_type("numeric(10,2)").to_sql() == "NUMERIC(10,2)"
    assert parse_type("timestamptz(3)").to_sql() == "TIMESTAMP(3) WITH TIME ZONE"


def test_dimensions_must_agree_with_array_flag():
    with pytest.raises(SchemaInvariantError):
        TypeDescriptor(base="TEXT", array=True, dimensions=0)
    with pytest.raises(SchemaInvariantError):
        TypeDescriptor(base="TEXT", array=False, dimensions=2)
