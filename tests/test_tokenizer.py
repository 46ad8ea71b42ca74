from schema_lens.core.tokenizer import (
    find_closing_paren,
    iter_tokens,
    split_statements,
    split_table_body,
    strip_comments,
    tokenize,
)


def test_tokenize_splits_on_whitespace_and_keeps_paren_groups():
    assert tokenize("email VARCHAR(255) NOT NULL") == ["email", "VARCHAR", "(255)", "NOT", "NULL"]
    assert tokenize("price NUMERIC(10, 2)") == ["price", "NUMERIC", "(10, 2)"]


def test_tokenize_keeps_quoted_text_whole():
    assert tokenize("status TEXT DEFAULT 'on hold'") == ["status", "TEXT", "DEFAULT", "'on hold'"]
    assert tokenize('"Order Id" INT') == ['"Order Id"', "INT"]
    assert tokenize("note TEXT DEFAULT 'it''s, fine'") == ["note", "TEXT", "DEFAULT", "'it''s, fine'"]


def test_tokenize_commas_split_at_depth_zero():
    assert tokenize("a,b , c") == ["a", "b", "c"]


def test_tokenize_unbalanced_input_is_flushed():
    assert tokenize("CHECK (a > 0") == ["CHECK", "(a > 0"]
    assert tokenize("") == []


def test_iter_tokens_reports_offsets():
    sql = "id  INT"
    tokens = list(iter_tokens(sql))
    assert [(t.text, t.start, t.end) for t in tokens] == [("id", 0, 2), ("INT", 4, 7)]
    assert all(sql[t.start:t.end] == t.text for t in tokens)


def test_split_table_body_only_splits_top_level_commas():
    body = "id INT, price NUMERIC(10,2), CHECK (a IN ('x,y', 'z'))"
    assert split_table_body(body) == ["id INT", "price NUMERIC(10,2)", "CHECK (a IN ('x,y', 'z'))"]


def test_find_closing_paren():
    text = "(a (b) 'c)' d)"
    assert find_closing_paren(text, 0) == len(text) - 1
    assert find_closing_paren("(a (b)", 0) == -1


def test_strip_comments_keeps_quoted_text():
    sql = "SELECT '--not a comment' -- trailing\n/* block /* nested */ */ FROM t"
    stripped = strip_comments(sql)
    assert "'--not a comment'" in stripped
    assert "trailing" not in stripped
    assert "nested" not in stripped
    assert stripped.strip().endswith("FROM t")


def test_split_statements_respects_dollar_quotes():
    sql = """
    CREATE TABLE a (id INT);
    CREATE FUNCTION f() RETURNS int AS $$ BEGIN RETURN 1; END; $$ LANGUAGE plpgsql;
    -- a comment; with a semicolon
    INSERT INTO a VALUES (';')
    """
    statements = split_statements(sql)
    assert len(statements) == 3
    assert statements[0] == "CREATE TABLE a (id INT)"
    assert "RETURN 1; END;" in statements[1]
    assert statements[2] == "INSERT INTO a VALUES (';')"
