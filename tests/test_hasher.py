import hashlib
import json

import pytest

from schema_lens.core.hasher import MIN_DIGEST_BITS, canonical_json, canonicalize, hash_schema
from schema_lens.core.parser import parse_ddl, parse_schema

BASE = """
CREATE TABLE users (id UUID PRIMARY KEY, email TEXT NOT NULL UNIQUE);
CREATE TABLE posts (
    id UUID PRIMARY KEY,
    author_id UUID REFERENCES users(id),
    title TEXT,
    CONSTRAINT uq_title UNIQUE (author_id, title),
    CONSTRAINT chk_title CHECK (length(title) > 0)
);
CREATE INDEX idx_posts_author ON posts (author_id);
CREATE INDEX idx_posts_title ON posts (title);
"""

REORDERED = """
CREATE TABLE posts (
    id UUID PRIMARY KEY,
    author_id UUID REFERENCES users(id),
    title TEXT,
    CONSTRAINT chk_title CHECK (length(title) > 0),
    CONSTRAINT uq_title UNIQUE (author_id, title)
);
CREATE INDEX idx_posts_title ON posts (title);
CREATE INDEX idx_posts_author ON posts (author_id);
CREATE TABLE users (id UUID PRIMARY KEY, email TEXT NOT NULL UNIQUE);
"""


def test_hash_is_sha256_hex_by_default():
    digest = hash_schema(parse_schema(BASE))
    assert len(digest) == 64
    assert digest == hashlib.sha256(canonical_json(parse_schema(BASE)).encode("utf-8")).hexdigest()


def test_declaration_order_does_not_change_the_hash():
    assert hash_schema(parse_schema(BASE)) == hash_schema(parse_schema(REORDERED))
    assert parse_schema(BASE) == parse_schema(REORDERED)


def test_column_order_changes_the_hash():
    assert hash_schema(parse_schema("CREATE TABLE t (a INT, b TEXT);")) != hash_schema(
        parse_schema("CREATE TABLE t (b TEXT, a INT);")
    )
    assert parse_ddl("CREATE TABLE t (a INT, b TEXT)") != parse_ddl("CREATE TABLE t (b TEXT, a INT)")
    assert hash_schema(parse_ddl("CREATE TABLE t (a INT, b INT, PRIMARY KEY (a, b))")) != hash_schema(
        parse_ddl("CREATE TABLE t (a INT, b INT, PRIMARY KEY (b, a))")
    )


def test_comments_do_not_change_the_hash():
    commented = parse_schema(BASE + "COMMENT ON COLUMN users.email IS 'login address';")
    assert commented.table("users").column("email").comment == "login address"
    assert hash_schema(commented) == hash_schema(parse_schema(BASE))


def test_structural_changes_do_change_the_hash():
    base = hash_schema(parse_schema(BASE))
    assert hash_schema(parse_schema(BASE.replace("title TEXT", "title VARCHAR(200)"))) != base
    assert hash_schema(parse_schema(BASE.replace("email TEXT NOT NULL", "email TEXT"))) != base
    assert hash_schema(parse_schema(BASE.replace("(length(title) > 0)", "(length(title) > 1)"))) != base


def test_algorithms():
    schema = parse_schema(BASE)
    assert len(hash_schema(schema, "sha512")) == 128
    assert len(hash_schema(schema, "sha1")) == 40
    assert MIN_DIGEST_BITS == 160
    with pytest.raises(ValueError, match="128-bit"):
        hash_schema(schema, "md5")
    with pytest.raises(ValueError, match="unknown hash algorithm"):
        hash_schema(schema, "no-such-hash")


def test_canonical_form_drops_bookkeeping():
    schema = parse_schema(BASE + "LISTEN jobs;")
    canonical = canonicalize(schema)
    assert "source_sql" not in canonical
    assert "skipped_statements" not in canonical
    assert [t["name"] for t in canonical["tables"]] == ["posts", "users"]
    assert json.loads(canonical_json(schema)) == canonical


def test_table_equality_follows_the_canonical_form():
    a = parse_ddl("CREATE TABLE t (a INT, b TEXT, CONSTRAINT u1 UNIQUE (a), CONSTRAINT c1 CHECK (a > 0))")
    b = parse_ddl("CREATE TABLE t (a INT, b TEXT, CONSTRAINT c1 CHECK (a > 0), CONSTRAINT u1 UNIQUE (a))")
    c = parse_ddl("CREATE TABLE t (a INT, b TEXT NOT NULL)")
    assert a == b
    assert hash(a) == hash(b)
    assert a != c
    assert len({a, b, c}) == 2
    assert hash_schema(a) == hash_schema(b)
