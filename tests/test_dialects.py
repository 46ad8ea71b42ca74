import pytest

from schema_lens.core.parser import parse_ddl, parse_schema
from schema_lens.core.validator import validate
from schema_lens.dialects.cockroachdb import database_regions, valid_cron
from schema_lens.dialects.nile import classify
from schema_lens.policy.config_schema import ToolkitConfig


def by_code(result, code):
    return [d for d in result.all if d.code == code]


# DSQL

def test_dsql_network_type_fix_uses_configured_replacement():
    schema = parse_schema("CREATE TABLE hosts (id UUID PRIMARY KEY, mac MACADDR);")
    default = by_code(validate(schema, "dsql"), "DSQL-TYPE-009")[0]
    assert default.auto_fix.original_type == "macaddr"
    assert default.auto_fix.replacement_type == "varchar(17)"

    configured = by_code(validate(schema, "dsql", ToolkitConfig(macaddr_replacement="text")), "DSQL-TYPE-009")[0]
    assert configured.auto_fix.replacement_type == "text"
    assert str(configured.location) == "hosts.mac"


def test_dsql_type_limits_are_warnings():
    schema = parse_schema("CREATE TABLE t (id UUID PRIMARY KEY, body VARCHAR(70000), amount NUMERIC(40, 38));")
    result = validate(schema, "dsql")
    assert result.valid
    assert located_codes(result) == [
        ("DSQL-LIMIT-001", "t.body"),
        ("DSQL-LIMIT-003", "t.amount"),
        ("DSQL-LIMIT-004", "t.amount"),
    ]


def located_codes(result):
    return [(d.code, str(d.location)) for d in result.all]


def test_dsql_index_checks():
    schema = parse_schema(
        """
        CREATE TABLE docs (id UUID PRIMARY KEY, body JSONB, blob BYTEA);
        CREATE INDEX idx_body ON docs USING gin (body);
        CREATE INDEX CONCURRENTLY idx_blob ON docs (blob);
        """
    )
    pairs = located_codes(validate(schema, "dsql"))
    assert ("DSQL-IDX-001", "docs.idx_body") in pairs
    assert ("DSQL-IDX-006", "docs.idx_blob") in pairs
    assert ("DSQL-IDX-LIMIT-003", "docs.idx_blob") in pairs


def test_dsql_routines_triggers_and_views():
    schema = parse_schema(
        """
        CREATE TABLE t (id UUID PRIMARY KEY, updated_at TIMESTAMPTZ);
        CREATE FUNCTION touch() RETURNS trigger AS $$
        BEGIN
            NEW.updated_at := now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        CREATE TRIGGER trg_touch BEFORE UPDATE ON t FOR EACH ROW EXECUTE FUNCTION touch();
        DO $$ BEGIN RAISE NOTICE 'hi'; END $$;
        CREATE MATERIALIZED VIEW recent AS SELECT id FROM t;
        """
    )
    pairs = located_codes(validate(schema, "dsql"))
    assert ("DSQL-FN-001", "touch") in pairs
    assert ("DSQL-TRIG-003", "touch") in pairs
    assert ("DSQL-FN-007", "do_block_1") in pairs
    assert ("DSQL-TRIG-001", "t.trg_touch") in pairs
    assert ("DSQL-VIEW-001", "recent") in pairs


def test_dsql_table_flags():
    schema = parse_schema(
        "CREATE UNLOGGED TABLE cache (k TEXT PRIMARY KEY) WITH (fillfactor = 70) TABLESPACE fast;"
    )
    codes = validate(schema, "dsql").codes()
    assert codes == ["DSQL-TBL-002", "DSQL-TBL-004", "DSQL-TBL-006"]


# CockroachDB

@pytest.mark.parametrize(
    "expression,ok",
    [
        ("@daily", True),
        ("0 * * * *", True),
        ("*/15 0-6 * * 1,3", True),
        ("every hour", False),
        ("0 * * *", False),
    ],
)
def test_cron_expressions(expression, ok):
    assert valid_cron(expression) is ok


def test_crdb_ttl_requires_expiration_and_valid_cron():
    bad = parse_schema(
        "CREATE TABLE events (id INT PRIMARY KEY, at TIMESTAMPTZ) WITH (ttl_job_cron = 'every hour');"
    )
    result = validate(bad, "cockroachdb")
    assert by_code(result, "CRDB_E710")
    assert by_code(result, "CRDB_E711")[0].message == 'Invalid cron expression "every hour" for TTL job schedule.'

    good = parse_schema(
        "CREATE TABLE events (id INT PRIMARY KEY, at TIMESTAMPTZ) "
        "WITH (ttl_expire_after = '30 days', ttl_job_cron = '@daily');"
    )
    assert validate(good, "cockroachdb").all == []


def test_crdb_hash_sharded_indexes():
    schema = parse_schema(
        """
        CREATE TABLE events (id INT PRIMARY KEY, name TEXT, at TIMESTAMPTZ DEFAULT now());
        CREATE INDEX idx_name ON events USING hash (name) WITH (bucket_count = 1);
        CREATE INDEX idx_at ON events USING hash (at) WITH (bucket_count = 300);
        """
    )
    pairs = located_codes(validate(schema, "cockroachdb"))
    assert ("CRDB_E720", "events.idx_name") in pairs
    assert ("CRDB_W720", "events.idx_name") in pairs
    assert ("CRDB_W721", "events.idx_at") in pairs
    assert ("CRDB_W720", "events.idx_at") not in pairs


def test_crdb_missing_primary_key_and_locality():
    schema = parse_schema(
        "CREATE TABLE logs (line TEXT); CREATE TABLE settings (k TEXT PRIMARY KEY) LOCALITY GLOBAL;"
    )
    pairs = located_codes(validate(schema, "cockroachdb"))
    assert ("CRDB_E730", "logs") in pairs
    assert ("CRDB_E701", "settings") in pairs


def test_crdb_regions_are_read_from_database_statements():
    sql = 'CREATE DATABASE app PRIMARY REGION "us-east1" REGIONS "us-west1", "europe-west1";'
    assert database_regions(parse_schema(sql)) == ["us-east1", "us-west1", "europe-west1"]

    survival = parse_schema('ALTER DATABASE app ADD REGION "us-east1"; ALTER DATABASE app SURVIVE REGION FAILURE;')
    result = validate(survival, "cockroachdb")
    assert by_code(result, "CRDB_E702")


def test_crdb_triggers_and_plpgsql_bodies():
    schema = parse_schema(
        """
        CREATE TABLE t (id INT PRIMARY KEY, v INT);
        CREATE FUNCTION audit() RETURNS trigger AS $$
        BEGIN
            PERFORM pg_sleep(0);
            RAISE NOTICE '%', TG_ARGV[0];
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        CREATE TRIGGER trg_v AFTER UPDATE OF v ON t FOR EACH ROW EXECUTE FUNCTION audit();
        CREATE TRIGGER trg_trunc AFTER TRUNCATE ON t FOR EACH STATEMENT EXECUTE FUNCTION audit();
        """
    )
    pairs = located_codes(validate(schema, "cockroachdb"))
    assert ("CRDB_I600", "audit") in pairs
    assert ("CRDB_E603", "audit") in pairs
    assert ("CRDB_E500", "t.trg_v") in pairs
    assert ("CRDB_W500", "t.trg_v") in pairs
    assert ("CRDB_E501", "t.trg_trunc") in pairs


# Nile

def test_nile_table_classification():
    assert classify(parse_ddl("CREATE TABLE users (id UUID)")) == "builtin"
    assert classify(parse_ddl("CREATE TABLE todos (tenant_id UUID, id UUID)")) == "tenant"
    assert classify(parse_ddl("CREATE TABLE plans (id UUID)")) == "shared"


def test_nile_well_formed_tenant_table():
    schema = parse_schema(
        "CREATE TABLE todos (tenant_id UUID NOT NULL, id UUID NOT NULL, title TEXT, PRIMARY KEY (tenant_id, id));"
    )
    result = validate(schema, "nile")
    assert result.valid
    assert located_codes(result) == [("NILE-TX-003", ""), ("NILE-TC-001", "todos.tenant_id")]


def test_nile_malformed_tenant_table():
    schema = parse_schema("CREATE TABLE notes (tenant_id INT, id SERIAL PRIMARY KEY);")
    pairs = located_codes(validate(schema, "nile"))
    assert ("NILE-TC-002", "notes.tenant_id") in pairs
    assert ("NILE-TC-003", "notes.tenant_id") in pairs
    assert ("NILE-PK-003", "notes") in pairs
    assert ("NILE-CT-001", "notes.id") in pairs


def test_nile_cross_kind_foreign_keys_and_uniques():
    schema = parse_schema(
        """
        CREATE TABLE plans (id UUID PRIMARY KEY, owner_tenant UUID);
        CREATE TABLE todos (
            tenant_id UUID NOT NULL,
            id UUID NOT NULL,
            plan_id UUID REFERENCES plans(id),
            slug TEXT,
            PRIMARY KEY (tenant_id, id),
            CONSTRAINT uq_slug UNIQUE (slug)
        );
        """
    )
    result = validate(schema, "nile")
    fk = by_code(result, "NILE-FK-001")[0]
    assert str(fk.location) == "todos.plan_id"
    assert fk.message == 'Foreign key from tenant table to shared table "plans" is not supported in Nile'
    unique = by_code(result, "NILE-CON-001")[0]
    assert str(unique.location) == "todos.uq_slug"
    assert unique.alternative == "Add tenant_id to the UNIQUE constraint: UNIQUE(tenant_id, slug)"


def test_nile_routines_and_sequences():
    schema = parse_schema(
        """
        CREATE TABLE todos (tenant_id UUID NOT NULL, id BIGINT NOT NULL, PRIMARY KEY (tenant_id, id));
        CREATE SEQUENCE loose_seq;
        CREATE SEQUENCE todo_seq OWNED BY todos.id;
        CREATE FUNCTION bump() RETURNS void AS $$ BEGIN NULL; END; $$ LANGUAGE plpgsql;
        CREATE TRIGGER trg AFTER INSERT ON todos FOR EACH ROW EXECUTE FUNCTION bump();
        """
    )
    pairs = located_codes(validate(schema, "nile"))
    assert ("NILE-SEQ-002", "loose_seq") in pairs
    assert ("NILE-SEQ-004", "todo_seq") in pairs
    assert ("NILE-TF-002", "bump") in pairs
    assert ("NILE-TF-005", "bump") in pairs
    assert ("NILE-TF-001", "todos.trg") in pairs
